"""
AI tutoring schemas.
"""

from typing import Optional
from pydantic import BaseModel, Field


class AskRequest(BaseModel):
    question: Optional[str] = None
    level: int = Field(1, ge=1, le=4)
    assignment_id: Optional[int] = None
    context: Optional[str] = None


class SessionStartRequest(BaseModel):
    assignment_id: Optional[int] = None
    topic: Optional[str] = Field(None, max_length=255)


class SessionMessageRequest(BaseModel):
    message: Optional[str] = None
