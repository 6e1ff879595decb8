"""
AI tutoring models for Milestack.

Defines AISession and AISessionMessage for paid copilot sessions and
AIAssistanceLog for one-off questions.
"""

from datetime import datetime
from typing import Optional
from enum import Enum
from sqlalchemy import (
    Integer, String, DateTime, Text,
    ForeignKey, Index, CheckConstraint
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from milestack.core.database import Base


class SessionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"
    EXPIRED = "expired"


class MessageRole(str, Enum):
    STUDENT = "student"
    AI = "ai"


class AISession(Base):
    """
    Time-boxed copilot session paid for with points.
    """
    __tablename__ = "ai_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    assignment_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("assignments.id"), nullable=True)

    topic: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=SessionStatus.ACTIVE.value, nullable=False)
    points_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    messages = relationship(
        "AISessionMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="AISessionMessage.id"
    )

    __table_args__ = (
        CheckConstraint("points_spent >= 0", name="check_session_points_positive"),
        Index("idx_ai_session_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<AISession(id={self.id}, user_id={self.user_id}, status='{self.status}')>"

    @property
    def is_expired(self) -> bool:
        return datetime.utcnow() > self.expires_at

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "topic": self.topic,
            "status": self.status,
            "points_spent": self.points_spent,
            "message_count": len(self.messages),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


class AISessionMessage(Base):
    __tablename__ = "ai_session_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    session_id: Mapped[int] = mapped_column(Integer, ForeignKey("ai_sessions.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    session = relationship("AISession", back_populates="messages")

    def __repr__(self) -> str:
        return f"<AISessionMessage(session_id={self.session_id}, role='{self.role}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AIAssistanceLog(Base):
    """
    Record of AI help a student paid for, used in integrity reports.
    """
    __tablename__ = "ai_assistance_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    assignment_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("assignments.id"), nullable=True)
    session_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("ai_sessions.id"), nullable=True)

    assistance_level: Mapped[int] = mapped_column(Integer, nullable=False)  # 1-4
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=False)
    points_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("assistance_level >= 1 AND assistance_level <= 4", name="check_assistance_level_range"),
        Index("idx_ai_log_user_assignment", "user_id", "assignment_id"),
    )

    def __repr__(self) -> str:
        return f"<AIAssistanceLog(id={self.id}, user_id={self.user_id}, level={self.assistance_level})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "session_id": self.session_id,
            "level": self.assistance_level,
            "category": self.category,
            "question": self.question,
            "response": self.response,
            "points_spent": self.points_spent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
