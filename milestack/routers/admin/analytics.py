"""
Admin analytics router for Milestack.
"""

from datetime import datetime, timedelta
from typing import Dict, Any
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.ai import AIAssistanceLog
from milestack.models.assignment import Assignment, MilestoneAttempt
from milestack.models.integrity import HonorCodeSignature, IntegrityReport
from milestack.models.pathway import CheckpointAttempt
from milestack.models.points import PointTransaction, TransactionType, FraudDetectionLog, FraudAction
from milestack.models.user import User


router = APIRouter()


@router.get("/overview")
async def get_overview(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Platform activity over the last `days` days.
    """
    since = datetime.utcnow() - timedelta(days=days)

    new_users = db.query(User).filter(User.created_at >= since).count()
    active_users = db.query(User).filter(User.last_active_date >= since).count()

    earned, spent = 0, 0
    for transaction_type, total in db.query(
        PointTransaction.transaction_type, func.sum(PointTransaction.amount)
    ).filter(
        PointTransaction.created_at >= since
    ).group_by(PointTransaction.transaction_type).all():
        if transaction_type == TransactionType.EARNED.value:
            earned = int(total or 0)
        else:
            spent = abs(int(total or 0))

    milestone_attempts = db.query(MilestoneAttempt).filter(MilestoneAttempt.created_at >= since).all()
    checkpoint_attempts = db.query(CheckpointAttempt).filter(CheckpointAttempt.created_at >= since).all()
    total_attempts = len(milestone_attempts) + len(checkpoint_attempts)
    passed = len([a for a in milestone_attempts if a.passed]) + len([a for a in checkpoint_attempts if a.passed])

    ai_by_level = {
        level: count for level, count in db.query(
            AIAssistanceLog.assistance_level, func.count(AIAssistanceLog.id)
        ).filter(
            AIAssistanceLog.created_at >= since
        ).group_by(AIAssistanceLog.assistance_level).all()
    }

    return {
        "success": True,
        "data": {
            "period_days": days,
            "users": {
                "total": db.query(User).count(),
                "new": new_users,
                "active": active_users,
            },
            "points": {
                "earned": earned,
                "spent": spent,
                "circulating": earned - spent,
            },
            "assessments": {
                "attempts": total_attempts,
                "passed": passed,
                "pass_rate": round(passed / total_attempts * 100, 1) if total_attempts else 0,
            },
            "assignments": db.query(Assignment).filter(Assignment.created_at >= since).count(),
            "ai_assistance_by_level": {str(level): ai_by_level.get(level, 0) for level in range(1, 5)},
        }
    }


@router.get("/integrity")
async def get_integrity_analytics(
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    total_users = db.query(User).filter(User.is_admin.is_(False)).count()
    signed_users = db.query(func.count(func.distinct(HonorCodeSignature.user_id))).filter(
        HonorCodeSignature.is_active.is_(True)
    ).scalar() or 0

    violations = {
        action: count for action, count in db.query(
            FraudDetectionLog.action_taken, func.count(FraudDetectionLog.id)
        ).group_by(FraudDetectionLog.action_taken).all()
    }

    return {
        "success": True,
        "data": {
            "honor_code": {
                "signed_users": signed_users,
                "total_users": total_users,
                "signature_rate": round(signed_users / total_users * 100, 1) if total_users else 0,
            },
            "reports": {
                "generated": db.query(IntegrityReport).count(),
                "shared": db.query(IntegrityReport).filter(IntegrityReport.share_token.isnot(None)).count(),
            },
            "fraud_actions": {a.value: violations.get(a.value, 0) for a in FraudAction},
            "ai_assistance_requests": db.query(AIAssistanceLog).count(),
        }
    }
