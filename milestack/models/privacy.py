"""
Privacy and GDPR compliance models for Milestack.

Defines PrivacySettings, ConsentRecord, DataExportRequest,
DataDeletionRequest and PrivacyAuditLog.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum
from sqlalchemy import (
    Boolean, Integer, String, DateTime, Text,
    ForeignKey, Index, CheckConstraint, JSON
)
from sqlalchemy.orm import Mapped, mapped_column

from milestack.core.database import Base


class RequestStatus(str, Enum):
    """Processing status of export and deletion requests."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    PDF = "pdf"


DEFAULT_GDPR_CONSENT = {
    "dataProcessing": True,
    "dataSharing": False,
    "analytics": True,
    "marketing": False,
}


class PrivacySettings(Base):
    """
    Per-user privacy preferences.
    """
    __tablename__ = "privacy_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    share_with_instructors: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    allow_anonymous_analytics: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    data_retention_days: Mapped[int] = mapped_column(Integer, default=365, nullable=False)
    export_data_on_request: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    delete_data_on_request: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    lms_integration: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    custom_institution_policies: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    gdpr_consent: Mapped[Dict[str, bool]] = mapped_column(
        JSON,
        default=lambda: dict(DEFAULT_GDPR_CONSENT),
        nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "data_retention_days >= 1 AND data_retention_days <= 2555",
            name="check_retention_range"
        ),
    )

    def __repr__(self) -> str:
        return f"<PrivacySettings(user_id={self.user_id}, retention={self.data_retention_days})>"

    def to_dict(self) -> dict:
        return {
            "share_with_instructors": self.share_with_instructors,
            "allow_anonymous_analytics": self.allow_anonymous_analytics,
            "data_retention_days": self.data_retention_days,
            "export_data_on_request": self.export_data_on_request,
            "delete_data_on_request": self.delete_data_on_request,
            "lms_integration": self.lms_integration,
            "custom_institution_policies": self.custom_institution_policies,
            "gdpr_consent": self.gdpr_consent,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ConsentRecord(Base):
    """
    History entry for every consent grant or withdrawal.
    """
    __tablename__ = "consent_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    consent_type: Mapped[str] = mapped_column(String(50), nullable=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_consent_user_type", "user_id", "consent_type"),
    )

    def __repr__(self) -> str:
        return f"<ConsentRecord(user_id={self.user_id}, type='{self.consent_type}', granted={self.granted})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "consent_type": self.consent_type,
            "granted": self.granted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DataExportRequest(Base):
    __tablename__ = "data_export_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    export_format: Mapped[str] = mapped_column(String(10), nullable=False)
    data_categories: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=RequestStatus.PENDING.value, nullable=False)

    file_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<DataExportRequest(id={self.id}, user_id={self.user_id}, status='{self.status}')>"

    @property
    def is_expired(self) -> bool:
        return bool(self.expires_at and self.expires_at < datetime.utcnow())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "format": self.export_format,
            "data_categories": self.data_categories,
            "status": self.status,
            "error_message": self.error_message,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


class DataDeletionRequest(Base):
    __tablename__ = "data_deletion_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    data_categories: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=RequestStatus.PENDING.value, nullable=False)

    deleted_counts: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<DataDeletionRequest(id={self.id}, user_id={self.user_id}, status='{self.status}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reason": self.reason,
            "data_categories": self.data_categories,
            "status": self.status,
            "deleted_counts": self.deleted_counts,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class PrivacyAuditLog(Base):
    """
    Audit trail of privacy-related actions, visible to the user.
    """
    __tablename__ = "privacy_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_privacy_audit_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<PrivacyAuditLog(user_id={self.user_id}, action='{self.action}')>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
