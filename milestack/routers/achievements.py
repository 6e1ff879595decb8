"""
Achievements router for Milestack.
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.user import User
from milestack.routers.admin import get_current_admin_user
from milestack.routers.auth import get_current_user
from milestack.services.achievements import achievements_service


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def get_achievements(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """All achievements with unlock state and progress."""
    return {
        "success": True,
        "data": achievements_service.get_user_achievements(db, current_user)
    }


@router.post("/check")
async def check_achievements(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Evaluate every achievement and unlock those whose target is met.
    """
    unlocked = achievements_service.check_achievements(db, current_user)

    return {
        "success": True,
        "data": {
            "new_achievements": unlocked,
            "count": len(unlocked),
            "points_awarded": sum(a["points"] for a in unlocked),
        }
    }


@router.post("/init")
async def init_achievements(
    admin_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    created = achievements_service.initialize_templates(db)
    logger.info(f"Admin {admin_user.id} seeded {created} achievement templates")

    return {
        "success": True,
        "data": {"created": created},
        "message": f"Initialized {created} achievement templates"
    }
