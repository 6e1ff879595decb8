"""
Points economy router for Milestack.
"""

import logging
from typing import Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.points import TransactionType
from milestack.models.user import User
from milestack.routers.auth import get_current_user
from milestack.schemas.points import EarnPointsRequest, SpendPointsRequest
from milestack.services.achievements import achievements_service
from milestack.services.points import points_service, PointsError


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/balance")
async def get_balance(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Current balance with today's earning allowance."""
    return {
        "success": True,
        "data": points_service.get_balance_summary(db, current_user.id)
    }


@router.post("/earn")
async def earn_points(
    request_data: EarnPointsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Earn points for a learning action.

    Refusals answer 400, fraud blocks 403.
    """
    try:
        result = points_service.award_points(
            db,
            current_user.id,
            request_data.amount,
            request_data.category.value,
            reason=request_data.reason,
            source_id=request_data.source_id,
            source_type=request_data.source_type,
            quality_score=request_data.quality_score,
        )
    except PointsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    new_achievements = achievements_service.check_achievements(db, current_user)

    return {
        "success": True,
        "data": {**result, "new_achievements": new_achievements}
    }


@router.post("/spend")
async def spend_points(
    request_data: SpendPointsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        result = points_service.spend_points(
            db,
            current_user.id,
            request_data.amount,
            request_data.category.value,
            reason=request_data.reason,
            source_id=request_data.source_id,
        )
    except PointsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    logger.info(f"User {current_user.id} spent {request_data.amount} points on {request_data.category.value}")

    return {"success": True, "data": result}


@router.get("/history")
async def get_history(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    type: Optional[TransactionType] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {
        "success": True,
        "data": points_service.get_history(
            db,
            current_user.id,
            limit=limit,
            offset=offset,
            transaction_type=type.value if type else None
        )
    }
