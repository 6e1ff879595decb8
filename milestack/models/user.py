"""
User models for Milestack.

Defines the User table with authentication fields, account protection
state and consents, plus refresh-token sessions and the extended
student profile.
"""

from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any
from sqlalchemy import (
    Boolean, Integer, String, DateTime, Text, ForeignKey,
    Index, CheckConstraint, JSON
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from milestack.core.database import Base


class User(Base):
    """
    User model for authentication and account management.
    """
    __tablename__ = "users"

    # Primary key
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)

    # Authentication fields
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False
    )
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)

    # Profile fields
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    profile_picture: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    profile_data: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Status fields
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # E-mail verification
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_verification_token: Mapped[Optional[str]] = mapped_column(String(128), index=True, nullable=True)
    email_verification_expires: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    email_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Password reset tracking
    password_reset_token: Mapped[Optional[str]] = mapped_column(String(128), index=True, nullable=True)
    password_reset_expires: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Account protection
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Consents
    terms_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    privacy_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ferpa_consent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    gdpr_consent: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    # Streak tracking
    current_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_active_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    # Relationships
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    profile = relationship("UserProfile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    points = relationship("UserPoints", back_populates="user", uselist=False, cascade="all, delete-orphan")
    assignments = relationship("Assignment", back_populates="user", cascade="all, delete-orphan")

    # Table constraints
    __table_args__ = (
        CheckConstraint("login_attempts >= 0", name="check_login_attempts_positive"),
        CheckConstraint("current_streak >= 0", name="check_streak_positive"),
        CheckConstraint("longest_streak >= current_streak", name="check_longest_streak"),
        Index("idx_user_email_active", "email", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"

    @property
    def full_name(self) -> str:
        """First and last name joined."""
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_locked(self) -> bool:
        """Check if the account is locked after too many failed logins."""
        return bool(self.locked_until and self.locked_until > datetime.utcnow())

    def register_failed_login(self, max_attempts: int, lock_minutes: int) -> None:
        """Count a failed login and lock the account once the limit is reached."""
        self.login_attempts += 1
        if self.login_attempts >= max_attempts:
            self.locked_until = datetime.utcnow() + timedelta(minutes=lock_minutes)
            self.login_attempts = 0

    def register_successful_login(self) -> None:
        """Reset protection counters after a successful login."""
        now = datetime.utcnow()
        self.login_attempts = 0
        self.locked_until = None
        self.last_login_at = now
        self.update_streak(now)

    def update_streak(self, activity_date: datetime) -> None:
        """Update user's learning streak."""
        if not self.last_active_date:
            # First activity
            self.current_streak = 1
            self.longest_streak = max(self.longest_streak, 1)
        else:
            days_diff = (activity_date.date() - self.last_active_date.date()).days

            if days_diff == 0:
                # Same day activity, no change
                pass
            elif days_diff == 1:
                self.current_streak += 1
                if self.current_streak > self.longest_streak:
                    self.longest_streak = self.current_streak
            else:
                # Streak broken
                self.current_streak = 1

        self.last_active_date = activity_date

    def to_dict(self, include_sensitive: bool = False) -> dict:
        """Convert user to dictionary representation."""
        data = {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "profile_picture": self.profile_picture,
            "is_active": self.is_active,
            "is_admin": self.is_admin,
            "is_email_verified": self.is_email_verified,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
        }

        if include_sensitive:
            data.update({
                "terms_accepted": self.terms_accepted,
                "privacy_accepted": self.privacy_accepted,
                "ferpa_consent": self.ferpa_consent,
                "gdpr_consent": self.gdpr_consent,
                "profile_data": self.profile_data,
                "email_verified_at": self.email_verified_at.isoformat() if self.email_verified_at else None,
            })

        return data


class UserSession(Base):
    """
    Refresh-token session created at login.
    """
    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    refresh_token: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="sessions")

    __table_args__ = (
        Index("idx_session_user_active", "user_id", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<UserSession(id={self.id}, user_id={self.user_id}, active={self.is_active})>"

    @property
    def is_valid(self) -> bool:
        """Active and not yet expired."""
        return self.is_active and self.expires_at > datetime.utcnow()


class UserProfile(Base):
    """
    Extended academic profile filled in during onboarding.
    """
    __tablename__ = "user_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    university: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    major: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    year: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    programming_languages: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    experience_level: Mapped[str] = mapped_column(String(20), default="beginner", nullable=False)
    learning_goals: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    institution_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    data_usage_consent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    marketing_consent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    research_participation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    honor_code_accepted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False
    )

    user = relationship("User", back_populates="profile")

    def __repr__(self) -> str:
        return f"<UserProfile(user_id={self.user_id}, complete={self.is_complete})>"

    def to_dict(self) -> dict:
        return {
            "full_name": self.full_name,
            "university": self.university,
            "major": self.major,
            "year": self.year,
            "bio": self.bio,
            "programming_languages": self.programming_languages,
            "experience_level": self.experience_level,
            "learning_goals": self.learning_goals,
            "institution_name": self.institution_name,
            "data_usage_consent": self.data_usage_consent,
            "marketing_consent": self.marketing_consent,
            "research_participation": self.research_participation,
            "honor_code_accepted": self.honor_code_accepted,
            "is_complete": self.is_complete,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
