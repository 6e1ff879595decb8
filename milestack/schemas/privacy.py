"""
Integrity, privacy and profile schemas.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


# ==================== INTEGRITY ====================

class HonorCodeSign(BaseModel):
    assignment_id: Optional[int] = None
    institution: Optional[str] = Field(None, max_length=255)


class ShareReportRequest(BaseModel):
    instructor_email: Optional[str] = None


# ==================== PRIVACY ====================

class PrivacySettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their value."""
    share_with_instructors: Optional[bool] = None
    allow_anonymous_analytics: Optional[bool] = None
    data_retention_days: Optional[int] = Field(None, ge=1, le=2555)
    export_data_on_request: Optional[bool] = None
    delete_data_on_request: Optional[bool] = None
    lms_integration: Optional[bool] = None
    custom_institution_policies: Optional[bool] = None
    gdpr_consent: Optional[Dict[str, bool]] = None


class ConsentRequest(BaseModel):
    consent_type: Optional[str] = None
    granted: Optional[bool] = None


class ConsentWithdraw(BaseModel):
    consent_type: Optional[str] = None


class DataExportCreate(BaseModel):
    format: str = "json"
    data_categories: List[str] = Field(default_factory=list)


class DataDeletionCreate(BaseModel):
    reason: Optional[str] = None
    data_categories: List[str] = Field(default_factory=lambda: ["all"])


# ==================== PROFILE ====================

class ProfileSetup(BaseModel):
    full_name: Optional[str] = None
    university: Optional[str] = None
    major: Optional[str] = None
    year: Optional[str] = None
    bio: Optional[str] = None
    programming_languages: Dict[str, Any] = Field(default_factory=dict)
    experience_level: str = "beginner"
    learning_goals: List[str] = Field(default_factory=list)
    institution_name: Optional[str] = None
    honor_code_accepted: bool = False
    digital_signature: Optional[str] = None
    data_usage_consent: bool = False
    marketing_consent: bool = False
    research_participation: bool = False


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    university: Optional[str] = None
    major: Optional[str] = None
    year: Optional[str] = None
    bio: Optional[str] = None
    programming_languages: Optional[Dict[str, Any]] = None
    experience_level: Optional[str] = None
    learning_goals: Optional[List[str]] = None
    institution_name: Optional[str] = None
    marketing_consent: Optional[bool] = None
    research_participation: Optional[bool] = None
