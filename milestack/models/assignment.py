"""
Assignment models for Milestack.

Defines Assignment, AssignmentAnalysis, LearningMilestone and
MilestoneAttempt: an uploaded assignment is analysed into an ordered
chain of milestones that unlock one after another.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum
from sqlalchemy import (
    Boolean, Integer, String, DateTime, Text, Float,
    ForeignKey, UniqueConstraint, Index, CheckConstraint, JSON
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from milestack.core.database import Base


class AnalysisStatus(str, Enum):
    """Processing state of an uploaded assignment."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETE = "complete"
    FAILED = "failed"


class MilestoneStatus(str, Enum):
    """Status of a learning milestone."""
    LOCKED = "locked"
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class Assignment(Base):
    """
    Assignment document uploaded by a student.
    """
    __tablename__ = "assignments"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    # Basic information
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    course_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Stored file
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)  # sha256 hex
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    analysis_status: Mapped[str] = mapped_column(
        String(20),
        default=AnalysisStatus.UPLOADED.value,
        nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    # Relationships
    user = relationship("User", back_populates="assignments")
    analysis = relationship(
        "AssignmentAnalysis",
        back_populates="assignment",
        uselist=False,
        cascade="all, delete-orphan"
    )
    milestones = relationship(
        "LearningMilestone",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="LearningMilestone.milestone_order"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "file_hash", name="uq_assignment_user_hash"),
        CheckConstraint("file_size >= 0", name="check_file_size_positive"),
        Index("idx_assignment_user_status", "user_id", "analysis_status"),
    )

    def __repr__(self) -> str:
        return f"<Assignment(id={self.id}, title='{self.title}', status='{self.analysis_status}')>"

    @property
    def completed_milestones(self) -> int:
        return len([m for m in self.milestones if m.status == MilestoneStatus.COMPLETED.value])

    @property
    def progress_percentage(self) -> int:
        """Share of completed milestones, rounded to a whole percent."""
        total = len(self.milestones)
        if total == 0:
            return 0
        return round(self.completed_milestones / total * 100)

    @property
    def progress_status(self) -> str:
        """completed, in-progress or not-started."""
        total = len(self.milestones)
        done = self.completed_milestones
        if total > 0 and done == total:
            return "completed"
        if done > 0 or any(m.status == MilestoneStatus.IN_PROGRESS.value for m in self.milestones):
            return "in-progress"
        return "not-started"

    @property
    def total_points(self) -> int:
        return sum(m.points_reward for m in self.milestones)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "course_name": self.course_name,
            "original_filename": self.original_filename,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "file_hash": self.file_hash,
            "analysis_status": self.analysis_status,
            "progress": self.progress_percentage,
            "status": self.progress_status,
            "total_milestones": len(self.milestones),
            "completed_milestones": self.completed_milestones,
            "total_points": self.total_points,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AssignmentAnalysis(Base):
    """
    AI analysis of an assignment.
    """
    __tablename__ = "assignment_analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    assignment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("assignments.id"),
        unique=True,
        nullable=False
    )

    concepts: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    languages: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    difficulty_score: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    prerequisites: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    estimated_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    learning_gaps: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    assignment = relationship("Assignment", back_populates="analysis")

    __table_args__ = (
        CheckConstraint("difficulty_score >= 1 AND difficulty_score <= 10", name="check_difficulty_range"),
    )

    def __repr__(self) -> str:
        return f"<AssignmentAnalysis(assignment_id={self.assignment_id}, difficulty={self.difficulty_score})>"

    def to_dict(self) -> dict:
        return {
            "concepts": self.concepts,
            "languages": self.languages,
            "difficulty": self.difficulty_score,
            "estimated_hours": self.estimated_hours,
            "prerequisites": self.prerequisites,
            "learning_gaps": self.learning_gaps,
        }


class LearningMilestone(Base):
    """
    One step of an assignment's learning pathway.
    """
    __tablename__ = "learning_milestones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    assignment_id: Mapped[int] = mapped_column(Integer, ForeignKey("assignments.id"), nullable=False)

    milestone_order: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    competency_requirement: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    points_reward: Mapped[int] = mapped_column(Integer, default=10, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=MilestoneStatus.LOCKED.value,
        nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    assignment = relationship("Assignment", back_populates="milestones")
    attempts = relationship(
        "MilestoneAttempt",
        back_populates="milestone",
        cascade="all, delete-orphan",
        order_by="MilestoneAttempt.attempt_number"
    )

    __table_args__ = (
        UniqueConstraint("assignment_id", "milestone_order", name="uq_milestone_order"),
        CheckConstraint("points_reward >= 0", name="check_milestone_points_positive"),
        Index("idx_milestone_assignment_status", "assignment_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<LearningMilestone(id={self.id}, order={self.milestone_order}, status='{self.status}')>"

    @property
    def best_score(self) -> Optional[int]:
        if not self.attempts:
            return None
        return max(a.final_score for a in self.attempts)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "order": self.milestone_order,
            "title": self.title,
            "description": self.description,
            "competency_requirement": self.competency_requirement,
            "points_reward": self.points_reward,
            "status": self.status,
            "attempts": len(self.attempts),
            "best_score": self.best_score,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class MilestoneAttempt(Base):
    """
    A graded answer to a milestone's competency check.
    """
    __tablename__ = "milestone_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    milestone_id: Mapped[int] = mapped_column(Integer, ForeignKey("learning_milestones.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    attempt_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)

    context_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    understanding_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completeness_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    final_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    passed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    grading_source: Mapped[str] = mapped_column(String(20), default="rules", nullable=False)  # agent or rules
    feedback: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    milestone = relationship("LearningMilestone", back_populates="attempts")

    __table_args__ = (
        CheckConstraint("final_score >= 0 AND final_score <= 100", name="check_milestone_attempt_score"),
        CheckConstraint("attempt_number > 0", name="check_milestone_attempt_number_positive"),
        Index("idx_milestone_attempt_user", "user_id", "milestone_id"),
    )

    def __repr__(self) -> str:
        return f"<MilestoneAttempt(id={self.id}, milestone_id={self.milestone_id}, score={self.final_score})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "milestone_id": self.milestone_id,
            "attempt_number": self.attempt_number,
            "answer": self.answer,
            "context_score": self.context_score,
            "understanding_score": self.understanding_score,
            "completeness_score": self.completeness_score,
            "final_score": self.final_score,
            "passed": self.passed,
            "grading_source": self.grading_source,
            "feedback": self.feedback,
            "points_awarded": self.points_awarded,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
