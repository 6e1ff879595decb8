"""
Admin user review router for Milestack.
"""

from typing import Dict, Any
from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.points import FraudDetectionLog, FraudAction
from milestack.models.user import User


router = APIRouter()


@router.get("/flagged")
async def get_flagged_users(
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Users with unreviewed flagged or blocked activity, highest risk first.
    """
    rows = db.query(
        FraudDetectionLog.user_id,
        func.count(FraudDetectionLog.id),
        func.max(FraudDetectionLog.risk_score),
        func.max(FraudDetectionLog.created_at)
    ).filter(
        FraudDetectionLog.reviewed.is_(False),
        FraudDetectionLog.action_taken.in_([FraudAction.FLAG.value, FraudAction.BLOCK.value])
    ).group_by(FraudDetectionLog.user_id).all()

    users = {u.id: u for u in db.query(User).filter(User.id.in_([r[0] for r in rows])).all()} if rows else {}

    flagged = [
        {
            "user_id": user_id,
            "email": users[user_id].email if user_id in users else None,
            "name": users[user_id].full_name if user_id in users else None,
            "open_flags": count,
            "max_risk_score": max_risk,
            "last_flagged_at": last_at.isoformat() if last_at else None,
        }
        for user_id, count, max_risk, last_at in rows
    ]
    flagged.sort(key=lambda u: (u["max_risk_score"], u["open_flags"]), reverse=True)

    return {
        "success": True,
        "data": {"users": flagged, "total": len(flagged)}
    }
