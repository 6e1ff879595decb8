"""
Achievement models for Milestack.
"""

from datetime import datetime
from typing import Dict, Any
from sqlalchemy import (
    Boolean, Integer, String, DateTime, Text,
    ForeignKey, UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from milestack.core.database import Base


class AchievementTemplate(Base):
    """
    Badge definition with its unlock criteria.

    criteria holds ``type`` (points, streak, mastery, collaboration,
    integrity), ``target`` and optionally ``topic`` or ``timeframe``.
    """
    __tablename__ = "achievement_templates"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)  # slug
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # learning, collaboration, integrity, points
    icon: Mapped[str] = mapped_column(String(20), nullable=False)
    points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    criteria: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    achievements = relationship("Achievement", back_populates="template", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<AchievementTemplate(id='{self.id}', category='{self.category}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "icon": self.icon,
            "points": self.points,
            "criteria": self.criteria,
        }


class Achievement(Base):
    """
    Achievement unlocked by a user.
    """
    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    template_id: Mapped[str] = mapped_column(String(100), ForeignKey("achievement_templates.id"), nullable=False)

    progress: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    points_awarded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    template = relationship("AchievementTemplate", back_populates="achievements")

    __table_args__ = (
        UniqueConstraint("user_id", "template_id", name="uq_user_achievement"),
        Index("idx_achievement_user_unlocked", "user_id", "unlocked_at"),
    )

    def __repr__(self) -> str:
        return f"<Achievement(user_id={self.user_id}, template_id='{self.template_id}')>"

    def to_dict(self) -> dict:
        data = self.template.to_dict() if self.template else {"id": self.template_id}
        data.update({
            "unlocked": True,
            "progress": self.progress,
            "points_awarded": self.points_awarded,
            "unlocked_at": self.unlocked_at.isoformat() if self.unlocked_at else None,
        })
        return data
