"""
Personal analytics router for Milestack.
"""

from typing import Dict, Any
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.user import User
from milestack.routers.auth import get_current_user
from milestack.services.achievements import achievements_service
from milestack.services.points import points_service


router = APIRouter()


@router.get("/points")
async def points_analytics(
    days: int = Query(30, ge=1, le=365),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Earned and spent points by category with a daily series."""
    return {
        "success": True,
        "data": points_service.get_analytics(db, current_user.id, days=days)
    }


@router.get("/achievements")
async def achievements_analytics(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {
        "success": True,
        "data": achievements_service.get_analytics(db, current_user)
    }
