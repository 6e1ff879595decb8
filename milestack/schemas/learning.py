"""
Schemas for assignments, milestones, pathways and checkpoints.
"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from milestack.models.pathway import CheckpointType, DifficultyLevel


# ==================== ASSIGNMENTS ====================

class AnalyzeRequest(BaseModel):
    assignment_id: Optional[int] = None


class AssignmentDelete(BaseModel):
    confirmation_title: Optional[str] = None


class MilestoneAttemptRequest(BaseModel):
    answer: Optional[str] = None


# ==================== PATHWAYS ====================

class CheckpointCreate(BaseModel):
    """
    Checkpoint definition inside a pathway.
    """
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: CheckpointType
    points: int = Field(10, ge=0)
    max_attempts: int = Field(3, gt=0)
    passing_score: int = Field(80, ge=0, le=100)
    time_limit: Optional[int] = Field(None, gt=0)
    content: Dict[str, Any] = Field(default_factory=dict)


class PathwayCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: str = Field(..., min_length=1, max_length=100)
    difficulty: DifficultyLevel = DifficultyLevel.BEGINNER
    estimated_duration: int = Field(0, ge=0)
    tags: List[str] = Field(default_factory=list)
    is_public: bool = True
    checkpoints: List[CheckpointCreate] = Field(default_factory=list)


class PathwayUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    difficulty: Optional[DifficultyLevel] = None
    estimated_duration: Optional[int] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    is_active: Optional[bool] = None


class PathwayProgressUpdate(BaseModel):
    time_spent: int = Field(0, ge=0)


class CheckpointAttemptRequest(BaseModel):
    responses: Optional[Dict[str, Any]] = None
    time_spent: int = Field(0, ge=0)
