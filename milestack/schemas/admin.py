"""
Admin, portfolio and download schemas.
"""

from typing import Optional, Dict, Any
from pydantic import BaseModel, Field

from milestack.models.points import FraudAction


class PlatformSettingsUpdate(BaseModel):
    """Mapping of setting key to its new value."""
    settings: Dict[str, Any] = Field(..., min_length=1)


class FraudReviewRequest(BaseModel):
    log_id: int
    action: FraudAction
    notes: Optional[str] = Field(None, max_length=2000)


class PortfolioExportRequest(BaseModel):
    format: str = "pdf"


class DownloadGenerateRequest(BaseModel):
    format: str = "clean"
