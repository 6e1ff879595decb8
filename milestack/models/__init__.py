"""
Database models for Milestack.

This module contains all SQLAlchemy models for the application:
- User models for authentication, sessions and profiles
- Assignment models for uploads, analyses and milestones
- Pathway models for checkpoints and progress
- Points, achievement and AI tutoring models
- Integrity and privacy models
- Admin models for auditing, rate limiting and platform settings
"""

from milestack.core.database import Base

# Import all models to ensure they're registered with SQLAlchemy
from .user import User, UserSession, UserProfile
from .assignment import Assignment, AssignmentAnalysis, LearningMilestone, MilestoneAttempt
from .pathway import LearningPathway, PathwayCheckpoint, CheckpointAttempt, PathwayProgress
from .points import UserPoints, PointTransaction, FraudDetectionLog
from .achievement import AchievementTemplate, Achievement
from .ai import AISession, AISessionMessage, AIAssistanceLog
from .integrity import HonorCodeSignature, IntegrityReport
from .privacy import (
    PrivacySettings,
    ConsentRecord,
    DataExportRequest,
    DataDeletionRequest,
    PrivacyAuditLog,
)
from .admin import AuditLog, RateLimit, SystemSettings

# Export all models
__all__ = [
    "Base",
    "User",
    "UserSession",
    "UserProfile",
    "Assignment",
    "AssignmentAnalysis",
    "LearningMilestone",
    "MilestoneAttempt",
    "LearningPathway",
    "PathwayCheckpoint",
    "CheckpointAttempt",
    "PathwayProgress",
    "UserPoints",
    "PointTransaction",
    "FraudDetectionLog",
    "AchievementTemplate",
    "Achievement",
    "AISession",
    "AISessionMessage",
    "AIAssistanceLog",
    "HonorCodeSignature",
    "IntegrityReport",
    "PrivacySettings",
    "ConsentRecord",
    "DataExportRequest",
    "DataDeletionRequest",
    "PrivacyAuditLog",
    "AuditLog",
    "RateLimit",
    "SystemSettings",
]
