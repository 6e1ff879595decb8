"""
Audit and platform administration models for Milestack.

Defines AuditLog, RateLimit and SystemSettings.
"""

import json
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum
from sqlalchemy import (
    Boolean, Integer, String, DateTime, Text,
    ForeignKey, UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import Mapped, mapped_column, Session

from milestack.core.database import Base


class AuditAction(str, Enum):
    """Types of account and data actions to log."""
    SIGNUP = "signup"
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    ACCOUNT_LOCKED = "account_locked"
    LOGOUT = "logout"
    EMAIL_VERIFIED = "email_verified"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET = "password_reset"
    PASSWORD_CHANGED = "password_changed"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXPORT = "export"
    SETTINGS_CHANGE = "settings_change"
    FRAUD_REVIEW = "fraud_review"


class AuditLog(Base):
    """
    Audit trail for security-relevant actions.
    """
    __tablename__ = "audit_logs"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Acting user (unknown for failed logins against missing accounts)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource: Mapped[str] = mapped_column(String(50), nullable=False)  # user, assignment, pathway, ...
    resource_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Action metadata
    details: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # Supports IPv6
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Results
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    # Table constraints
    __table_args__ = (
        Index("idx_audit_log_user_action", "user_id", "action"),
        Index("idx_audit_log_resource", "resource", "resource_id"),
        Index("idx_audit_log_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action='{self.action}', resource='{self.resource}')>"

    @classmethod
    def log_action(
        cls,
        action: str,
        resource: str,
        user_id: Optional[int] = None,
        resource_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ) -> "AuditLog":
        """Factory method to create audit log entries."""
        return cls(
            user_id=user_id,
            action=action.value if isinstance(action, Enum) else action,
            resource=resource,
            resource_id=resource_id,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
            success=success,
            error_message=error_message
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "details": self.details,
            "success": self.success,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class RateLimit(Base):
    """
    Fixed-window attempt counter per identifier and action.
    """
    __tablename__ = "rate_limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    identifier: Mapped[str] = mapped_column(String(255), nullable=False)  # IP address or e-mail
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("identifier", "action", name="uq_rate_limit_identifier_action"),
        Index("idx_rate_limit_window", "window_start"),
    )

    def __repr__(self) -> str:
        return f"<RateLimit(identifier='{self.identifier}', action='{self.action}', attempts={self.attempts})>"


class SystemSettings(Base):
    """
    Platform-wide settings editable by administrators.
    """
    __tablename__ = "system_settings"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Setting identification
    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    value_type: Mapped[str] = mapped_column(String(20), nullable=False)  # string, integer, float, boolean, json

    # Setting metadata
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # general, features, security
    description: Mapped[str] = mapped_column(Text, nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_editable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Validation
    validation_rules: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    default_value: Mapped[str] = mapped_column(Text, nullable=False)

    # Audit
    last_modified_by: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    __table_args__ = (
        Index("idx_system_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<SystemSettings(key='{self.key}', category='{self.category}')>"

    def get_typed_value(self) -> Any:
        """Get the value converted to its proper type."""
        if self.value_type == "integer":
            return int(self.value)
        elif self.value_type == "float":
            return float(self.value)
        elif self.value_type == "boolean":
            return self.value.lower() in ("true", "1", "yes", "on")
        elif self.value_type == "json":
            return json.loads(self.value)
        return self.value

    def set_typed_value(self, value: Any) -> None:
        """
        Set the value with proper type conversion.

        Raises:
            ValueError: If the value does not match the setting's type or rules
        """
        if self.value_type == "json":
            self.value = json.dumps(value)
            return

        if self.value_type == "boolean":
            if not isinstance(value, bool):
                raise ValueError(f"{self.key} expects a boolean")
            self.value = "true" if value else "false"
            return

        if self.value_type in ("integer", "float"):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{self.key} expects a number")
            rules = self.validation_rules or {}
            if "min" in rules and value < rules["min"]:
                raise ValueError(f"{self.key} must be at least {rules['min']}")
            if "max" in rules and value > rules["max"]:
                raise ValueError(f"{self.key} must be at most {rules['max']}")
            self.value = str(int(value) if self.value_type == "integer" else float(value))
            return

        self.value = str(value)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "value": self.get_typed_value(),
            "value_type": self.value_type,
            "category": self.category,
            "description": self.description,
            "is_public": self.is_public,
            "is_editable": self.is_editable,
        }

    @classmethod
    def get_value(cls, db: Session, key: str, default: Any = None) -> Any:
        """Typed value of a setting, or the default when it was never stored."""
        setting = db.query(cls).filter(cls.key == key).first()
        if setting is None:
            for item in cls.get_default_settings():
                if item["key"] == key:
                    return cls(**item).get_typed_value()
            return default
        return setting.get_typed_value()

    @classmethod
    def get_default_settings(cls) -> List[Dict[str, Any]]:
        """Get default platform settings."""
        return [
            {
                "key": "site_name",
                "value": "Milestack",
                "value_type": "string",
                "category": "general",
                "description": "The name of the platform",
                "is_public": True,
                "is_editable": True,
                "default_value": "Milestack"
            },
            {
                "key": "enable_registration",
                "value": "true",
                "value_type": "boolean",
                "category": "features",
                "description": "Allow new user registrations",
                "is_public": True,
                "is_editable": True,
                "default_value": "true"
            },
            {
                "key": "enable_ai_assistance",
                "value": "true",
                "value_type": "boolean",
                "category": "features",
                "description": "Allow students to spend points on AI assistance",
                "is_public": True,
                "is_editable": True,
                "default_value": "true"
            },
            {
                "key": "support_email",
                "value": "support@milestack.dev",
                "value_type": "string",
                "category": "general",
                "description": "Contact address shown to students",
                "is_public": True,
                "is_editable": True,
                "default_value": "support@milestack.dev"
            },
            {
                "key": "ai_ask_daily_limit",
                "value": "20",
                "value_type": "integer",
                "category": "features",
                "description": "Maximum AI questions per student per day",
                "is_public": False,
                "is_editable": True,
                "default_value": "20",
                "validation_rules": {"min": 1, "max": 500}
            },
        ]
