"""
Points economy models for Milestack.

Defines UserPoints (balance), PointTransaction (ledger) and
FraudDetectionLog.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum
from sqlalchemy import (
    Boolean, Integer, String, DateTime, Text,
    ForeignKey, Index, CheckConstraint, JSON
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from milestack.core.database import Base


class TransactionType(str, Enum):
    EARNED = "earned"
    SPENT = "spent"


class EarnCategory(str, Enum):
    """Ways students earn points."""
    CONCEPT_EXPLANATION = "concept-explanation"
    MINI_CHALLENGE = "mini-challenge"
    CODE_REVIEW = "code-review"
    PEER_HELP = "peer-help"


class SpendCategory(str, Enum):
    """AI assistance levels students spend points on."""
    CONCEPTUAL_HINTS = "conceptual-hints"
    PSEUDOCODE_GUIDANCE = "pseudocode-guidance"
    CODE_REVIEW_SESSION = "code-review-session"
    AI_COPILOT = "ai-copilot"


class FraudAction(str, Enum):
    NONE = "none"
    FLAG = "flag"
    BLOCK = "block"
    REVIEW = "review"


class UserPoints(Base):
    """
    Current points balance of a user.
    """
    __tablename__ = "user_points"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    current_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Daily limit tracking (UTC day)
    daily_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_earned_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    user = relationship("User", back_populates="points")

    __table_args__ = (
        CheckConstraint("current_balance >= 0", name="check_balance_positive"),
        CheckConstraint("total_earned >= 0", name="check_total_earned_positive"),
        CheckConstraint("total_spent >= 0", name="check_total_spent_positive"),
    )

    def __repr__(self) -> str:
        return f"<UserPoints(user_id={self.user_id}, balance={self.current_balance})>"

    def to_dict(self) -> dict:
        return {
            "current_balance": self.current_balance,
            "total_earned": self.total_earned,
            "total_spent": self.total_spent,
            "daily_earned": self.daily_earned,
            "last_earned_date": self.last_earned_date.isoformat() if self.last_earned_date else None,
        }


class PointTransaction(Base):
    """
    Ledger entry. Earned amounts are positive, spent amounts negative.
    """
    __tablename__ = "point_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False)

    # Where the points came from
    source_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    source_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    topic: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # leaderboard category

    quality_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("amount <> 0", name="check_amount_nonzero"),
        Index("idx_transaction_user_type_created", "user_id", "transaction_type", "created_at"),
        Index("idx_transaction_topic", "topic"),
    )

    def __repr__(self) -> str:
        return f"<PointTransaction(id={self.id}, user_id={self.user_id}, amount={self.amount})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount": self.amount,
            "type": self.transaction_type,
            "category": self.category,
            "reason": self.reason,
            "source_id": self.source_id,
            "source_type": self.source_type,
            "topic": self.topic,
            "quality_score": self.quality_score,
            "verified": self.verified,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class FraudDetectionLog(Base):
    """
    Result of scoring an earning attempt for suspicious activity.
    """
    __tablename__ = "fraud_detection_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    flags: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    action_taken: Mapped[str] = mapped_column(String(20), default=FraudAction.NONE.value, nullable=False)

    # Admin review
    reviewed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reviewed_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    review_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="check_risk_score_range"),
        Index("idx_fraud_user_action", "user_id", "action_taken"),
        Index("idx_fraud_reviewed_created", "reviewed", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<FraudDetectionLog(id={self.id}, user_id={self.user_id}, risk={self.risk_score}, action='{self.action_taken}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "activity_type": self.activity_type,
            "risk_score": self.risk_score,
            "flags": self.flags,
            "details": self.details,
            "action_taken": self.action_taken,
            "reviewed": self.reviewed,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
