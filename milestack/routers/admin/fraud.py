"""
Admin fraud detection router for Milestack.

Review queue for scored earning attempts plus risk analytics.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.admin import AuditLog, AuditAction
from milestack.models.points import FraudDetectionLog, FraudAction
from milestack.models.user import User
from milestack.routers.admin import get_current_admin_user
from milestack.schemas.admin import FraudReviewRequest


logger = logging.getLogger(__name__)

router = APIRouter()

HIGH_RISK = 70
MEDIUM_RISK = 40
BUCKET_SIZE = 20


@router.get("")
async def list_fraud_logs(
    user_id: Optional[int] = None,
    reviewed: Optional[bool] = None,
    action: Optional[FraudAction] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    List fraud detection logs with filtering.
    """
    query = db.query(FraudDetectionLog)

    # Apply filters
    if user_id is not None:
        query = query.filter(FraudDetectionLog.user_id == user_id)
    if reviewed is not None:
        query = query.filter(FraudDetectionLog.reviewed.is_(reviewed))
    if action is not None:
        query = query.filter(FraudDetectionLog.action_taken == action.value)

    total = query.count()
    logs = query.order_by(
        FraudDetectionLog.created_at.desc(), FraudDetectionLog.id.desc()
    ).offset(offset).limit(limit).all()

    return {
        "success": True,
        "data": {
            "logs": [log.to_dict() for log in logs],
            "total": total,
            "limit": limit,
            "offset": offset,
        }
    }


@router.post("/review")
async def review_fraud_log(
    request_data: FraudReviewRequest,
    admin_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Mark a log reviewed and set the final action.
    """
    log = db.query(FraudDetectionLog).filter(FraudDetectionLog.id == request_data.log_id).first()
    if not log:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Fraud log not found"
        )

    previous_action = log.action_taken
    log.action_taken = request_data.action.value
    log.reviewed = True
    log.reviewed_by = admin_user.id
    log.reviewed_at = datetime.utcnow()
    log.review_notes = request_data.notes

    db.add(AuditLog.log_action(
        action=AuditAction.FRAUD_REVIEW,
        resource="fraud_detection_log",
        user_id=admin_user.id,
        resource_id=log.id,
        details={
            "student_id": log.user_id,
            "previous_action": previous_action,
            "new_action": log.action_taken,
        }
    ))
    db.commit()
    db.refresh(log)

    logger.warning(
        f"Admin {admin_user.id} reviewed fraud log {log.id}: {previous_action} -> {log.action_taken}"
    )

    return {
        "success": True,
        "data": {"log": log.to_dict()},
        "message": "Fraud log reviewed"
    }


@router.get("/analytics")
async def get_fraud_analytics(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Risk bands, activity breakdown, risk distribution and daily trend.
    """
    since = datetime.utcnow() - timedelta(days=days)
    logs = db.query(FraudDetectionLog).filter(FraudDetectionLog.created_at >= since).all()

    bands = {"high": 0, "medium": 0, "low": 0}
    activity: Dict[str, Dict[str, Any]] = {}
    distribution = {f"{start}-{start + BUCKET_SIZE - 1}": 0 for start in range(0, 100, BUCKET_SIZE)}
    trend: Dict[str, Dict[str, int]] = {}

    for log in logs:
        if log.risk_score >= HIGH_RISK:
            bands["high"] += 1
        elif log.risk_score >= MEDIUM_RISK:
            bands["medium"] += 1
        else:
            bands["low"] += 1

        entry = activity.setdefault(log.activity_type, {"count": 0, "total_risk": 0})
        entry["count"] += 1
        entry["total_risk"] += log.risk_score

        # 100 falls into the last bucket
        start = min(log.risk_score // BUCKET_SIZE, 100 // BUCKET_SIZE - 1) * BUCKET_SIZE
        distribution[f"{start}-{start + BUCKET_SIZE - 1}"] += 1

        day = trend.setdefault(log.created_at.date().isoformat(), {"total": 0, "high_risk": 0})
        day["total"] += 1
        if log.risk_score >= HIGH_RISK:
            day["high_risk"] += 1

    return {
        "success": True,
        "data": {
            "period_days": days,
            "total_logs": len(logs),
            "pending_review": len([l for l in logs if not l.reviewed]),
            "risk_levels": bands,
            "activity_breakdown": {
                name: {
                    "count": values["count"],
                    "average_risk": round(values["total_risk"] / values["count"], 1),
                }
                for name, values in activity.items()
            },
            "risk_distribution": distribution,
            "daily_trend": [{"date": d, **values} for d, values in sorted(trend.items())],
        }
    }
