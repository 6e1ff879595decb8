"""
Academic integrity models for Milestack.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from sqlalchemy import (
    Boolean, Integer, String, DateTime,
    ForeignKey, Index, JSON
)
from sqlalchemy.orm import Mapped, mapped_column

from milestack.core.database import Base


class HonorCodeSignature(Base):
    """
    Signed acceptance of the honor code.

    The signature is an HMAC of the signer, version and timestamp so a
    stored row cannot be edited without detection.
    """
    __tablename__ = "honor_code_signatures"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    assignment_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("assignments.id"), nullable=True)

    signature: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[str] = mapped_column(String(20), nullable=False)
    institution: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    signed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_honor_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<HonorCodeSignature(id={self.id}, user_id={self.user_id}, version='{self.version}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "signature": self.signature,
            "version": self.version,
            "institution": self.institution,
            "is_active": self.is_active,
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
        }


class IntegrityReport(Base):
    """
    Generated transparency report for one assignment.
    """
    __tablename__ = "integrity_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    assignment_id: Mapped[int] = mapped_column(Integer, ForeignKey("assignments.id"), nullable=False)

    report_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    signature: Mapped[str] = mapped_column(String(64), nullable=False)

    # Sharing
    share_token: Mapped[Optional[str]] = mapped_column(String(128), unique=True, index=True, nullable=True)
    shared_with: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    shared_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    generated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_integrity_report_user_assignment", "user_id", "assignment_id"),
    )

    def __repr__(self) -> str:
        return f"<IntegrityReport(id={self.id}, assignment_id={self.assignment_id}, shared={bool(self.share_token)})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "report": self.report_data,
            "signature": self.signature,
            "shared_with": self.shared_with,
            "shared_at": self.shared_at.isoformat() if self.shared_at else None,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }
