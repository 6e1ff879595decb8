"""
Learning pathway models for Milestack.

Defines LearningPathway, PathwayCheckpoint, CheckpointAttempt and
PathwayProgress for structured modules with ordered checkpoints.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum
from sqlalchemy import (
    Boolean, Integer, String, DateTime, Text,
    ForeignKey, UniqueConstraint, Index, CheckConstraint, JSON
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from milestack.core.database import Base


class DifficultyLevel(str, Enum):
    """Difficulty levels for pathways."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class CheckpointType(str, Enum):
    """Types of pathway checkpoints."""
    CONCEPT_EXPLANATION = "concept-explanation"
    SKILL_ASSESSMENT = "skill-assessment"
    CODE_REVIEW = "code-review"


class AttemptStatus(str, Enum):
    """Outcome of a checkpoint attempt."""
    PASSED = "passed"
    FAILED = "failed"


class LearningPathway(Base):
    """
    Structured learning module made of ordered checkpoints.
    """
    __tablename__ = "learning_pathways"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Basic information
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    difficulty: Mapped[str] = mapped_column(
        String(20),
        default=DifficultyLevel.BEGINNER.value,
        nullable=False
    )
    estimated_duration: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # minutes
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    # Visibility
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    # Relationships
    checkpoints = relationship(
        "PathwayCheckpoint",
        back_populates="pathway",
        cascade="all, delete-orphan",
        order_by="PathwayCheckpoint.order_index"
    )
    progress_records = relationship("PathwayProgress", back_populates="pathway", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("total_points >= 0", name="check_pathway_points_positive"),
        CheckConstraint("estimated_duration >= 0", name="check_pathway_duration_positive"),
        Index("idx_pathway_active_category", "is_active", "category"),
    )

    def __repr__(self) -> str:
        return f"<LearningPathway(id={self.id}, title='{self.title}', category='{self.category}')>"

    def recalculate_total_points(self) -> int:
        """Set total points to the sum of checkpoint points."""
        self.total_points = sum(c.points for c in self.checkpoints)
        return self.total_points

    def to_dict(self, include_checkpoints: bool = False) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "difficulty": self.difficulty,
            "estimated_duration": self.estimated_duration,
            "total_points": self.total_points,
            "tags": self.tags,
            "is_active": self.is_active,
            "is_public": self.is_public,
            "checkpoints_count": len(self.checkpoints),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_checkpoints:
            data["checkpoints"] = [c.to_dict() for c in self.checkpoints]
        return data


class PathwayCheckpoint(Base):
    """
    Assessed step of a pathway.

    The content JSON depends on the checkpoint type: expected concepts for
    concept explanations, questions for skill assessments and expected
    issues for code reviews.
    """
    __tablename__ = "pathway_checkpoints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    pathway_id: Mapped[int] = mapped_column(Integer, ForeignKey("learning_pathways.id"), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    checkpoint_type: Mapped[str] = mapped_column(String(30), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)

    points: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    passing_score: Mapped[int] = mapped_column(Integer, default=80, nullable=False)
    time_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # minutes
    content: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    pathway = relationship("LearningPathway", back_populates="checkpoints")
    attempts = relationship("CheckpointAttempt", back_populates="checkpoint", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("pathway_id", "order_index", name="uq_checkpoint_order"),
        CheckConstraint("points >= 0", name="check_checkpoint_points_positive"),
        CheckConstraint("max_attempts > 0", name="check_max_attempts_positive"),
        CheckConstraint("passing_score >= 0 AND passing_score <= 100", name="check_passing_score_range"),
    )

    def __repr__(self) -> str:
        return f"<PathwayCheckpoint(id={self.id}, type='{self.checkpoint_type}', order={self.order_index})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pathway_id": self.pathway_id,
            "title": self.title,
            "description": self.description,
            "type": self.checkpoint_type,
            "order_index": self.order_index,
            "points": self.points,
            "max_attempts": self.max_attempts,
            "passing_score": self.passing_score,
            "time_limit": self.time_limit,
            "content": self.content,
        }


class CheckpointAttempt(Base):
    """
    A graded submission for a checkpoint.
    """
    __tablename__ = "checkpoint_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    checkpoint_id: Mapped[int] = mapped_column(Integer, ForeignKey("pathway_checkpoints.id"), nullable=False)

    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    responses: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    time_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # seconds

    # Assessment output
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    strengths: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    weaknesses: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    recommendations: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    analysis: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=AttemptStatus.FAILED.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    checkpoint = relationship("PathwayCheckpoint", back_populates="attempts")

    __table_args__ = (
        UniqueConstraint("user_id", "checkpoint_id", "attempt_number", name="uq_checkpoint_attempt_number"),
        CheckConstraint("score >= 0 AND score <= 100", name="check_checkpoint_score_range"),
        Index("idx_checkpoint_attempt_user", "user_id", "checkpoint_id"),
    )

    def __repr__(self) -> str:
        return f"<CheckpointAttempt(id={self.id}, checkpoint_id={self.checkpoint_id}, score={self.score})>"

    @property
    def passed(self) -> bool:
        return self.status == AttemptStatus.PASSED.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "checkpoint_id": self.checkpoint_id,
            "attempt_number": self.attempt_number,
            "responses": self.responses,
            "score": self.score,
            "points_earned": self.points_earned,
            "time_spent": self.time_spent,
            "feedback": self.feedback,
            "strengths": self.strengths,
            "weaknesses": self.weaknesses,
            "recommendations": self.recommendations,
            "analysis": self.analysis,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PathwayProgress(Base):
    """
    Tracks a user's progress through a pathway.
    """
    __tablename__ = "pathway_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    pathway_id: Mapped[int] = mapped_column(Integer, ForeignKey("learning_pathways.id"), nullable=False)

    completed_checkpoints: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_checkpoints: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    time_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)  # seconds
    current_checkpoint_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("pathway_checkpoints.id"),
        nullable=True
    )

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    pathway = relationship("LearningPathway", back_populates="progress_records")

    __table_args__ = (
        UniqueConstraint("user_id", "pathway_id", name="uq_user_pathway_progress"),
        CheckConstraint("completed_checkpoints >= 0", name="check_completed_checkpoints_positive"),
        CheckConstraint("completed_checkpoints <= total_checkpoints", name="check_completed_within_total"),
    )

    def __repr__(self) -> str:
        return f"<PathwayProgress(user_id={self.user_id}, pathway_id={self.pathway_id}, done={self.completed_checkpoints})>"

    @property
    def progress_percentage(self) -> int:
        if self.total_checkpoints == 0:
            return 0
        return round(self.completed_checkpoints / self.total_checkpoints * 100)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def to_dict(self) -> dict:
        return {
            "pathway_id": self.pathway_id,
            "completed_checkpoints": self.completed_checkpoints,
            "total_checkpoints": self.total_checkpoints,
            "progress_percentage": self.progress_percentage,
            "points_earned": self.points_earned,
            "time_spent": self.time_spent,
            "current_checkpoint_id": self.current_checkpoint_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
