"""
Points economy schemas.
"""

from typing import Optional
from pydantic import BaseModel, Field

from milestack.models.points import EarnCategory, SpendCategory


class EarnPointsRequest(BaseModel):
    amount: int = Field(..., gt=0)
    category: EarnCategory
    reason: str = Field(..., min_length=1, max_length=500)
    source_id: Optional[str] = None
    source_type: Optional[str] = None
    quality_score: Optional[int] = Field(None, ge=0, le=100)


class SpendPointsRequest(BaseModel):
    amount: int = Field(..., gt=0)
    category: SpendCategory
    reason: str = Field(..., min_length=1, max_length=500)
    source_id: Optional[str] = None
