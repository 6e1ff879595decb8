"""
Learning dashboard router for Milestack.

Learning statistics, per-assignment and per-pathway progress, daily
activity and recent assessments.
"""

from datetime import datetime, timedelta
from typing import Dict, Any
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, joinedload

from milestack.core.database import get_db
from milestack.models.assignment import Assignment, LearningMilestone, MilestoneAttempt, MilestoneStatus
from milestack.models.pathway import CheckpointAttempt, PathwayProgress
from milestack.models.points import PointTransaction, TransactionType
from milestack.models.user import User
from milestack.routers.auth import get_current_user
from milestack.services.points import points_service


router = APIRouter()


@router.get("/stats")
async def get_learning_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Points, streaks and assessment totals for the dashboard header.
    """
    balance = points_service.get_balance_summary(db, current_user.id)

    milestone_attempts = db.query(MilestoneAttempt).filter(
        MilestoneAttempt.user_id == current_user.id
    ).all()
    checkpoint_attempts = db.query(CheckpointAttempt).filter(
        CheckpointAttempt.user_id == current_user.id
    ).all()

    completed_milestones = db.query(LearningMilestone).join(
        Assignment, LearningMilestone.assignment_id == Assignment.id
    ).filter(
        Assignment.user_id == current_user.id,
        LearningMilestone.status == MilestoneStatus.COMPLETED.value
    ).count()
    passed_checkpoints = len({a.checkpoint_id for a in checkpoint_attempts if a.passed})

    # Average over every graded attempt
    scores = [a.final_score for a in milestone_attempts] + [a.score for a in checkpoint_attempts]

    return {
        "success": True,
        "data": {
            "points": balance,
            "streaks": {
                "current_streak": current_user.current_streak,
                "longest_streak": current_user.longest_streak,
                "last_active_date": current_user.last_active_date.isoformat() if current_user.last_active_date else None,
            },
            "milestones": {
                "completed": completed_milestones,
                "attempts": len(milestone_attempts),
            },
            "checkpoints": {
                "passed": passed_checkpoints,
                "attempts": len(checkpoint_attempts),
            },
            "average_score": round(sum(scores) / len(scores), 1) if scores else 0,
            "assignments": db.query(Assignment).filter(Assignment.user_id == current_user.id).count(),
        }
    }


@router.get("/progress")
async def get_learning_progress(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Progress per assignment and per started pathway.
    """
    assignments = db.query(Assignment).filter(
        Assignment.user_id == current_user.id
    ).order_by(Assignment.created_at.desc()).all()

    pathway_progress = db.query(PathwayProgress).filter(
        PathwayProgress.user_id == current_user.id
    ).options(
        joinedload(PathwayProgress.pathway)
    ).order_by(PathwayProgress.last_accessed_at.desc()).all()

    return {
        "success": True,
        "data": {
            "assignments": [
                {
                    "assignment_id": a.id,
                    "title": a.title,
                    "status": a.progress_status,
                    "completed_milestones": a.completed_milestones,
                    "total_milestones": len(a.milestones),
                    "progress_percentage": a.progress_percentage,
                    "total_points": a.total_points,
                }
                for a in assignments
            ],
            "pathways": [
                {
                    **p.to_dict(),
                    "title": p.pathway.title if p.pathway else None,
                    "category": p.pathway.category if p.pathway else None,
                }
                for p in pathway_progress
            ],
        }
    }


@router.get("/activity")
async def get_learning_activity(
    days: int = Query(7, ge=1, le=90),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Daily earned points and attempts over the last `days` days.
    """
    start = (datetime.utcnow() - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)

    # One entry per calendar day, oldest first
    activity = {}
    current_date = start.date()
    while current_date <= datetime.utcnow().date():
        activity[current_date.isoformat()] = {"points_earned": 0, "attempts": 0}
        current_date += timedelta(days=1)

    earned = db.query(PointTransaction).filter(
        PointTransaction.user_id == current_user.id,
        PointTransaction.transaction_type == TransactionType.EARNED.value,
        PointTransaction.created_at >= start
    ).all()
    for transaction in earned:
        day = transaction.created_at.date().isoformat()
        if day in activity:
            activity[day]["points_earned"] += transaction.amount

    attempts = db.query(MilestoneAttempt.created_at).filter(
        MilestoneAttempt.user_id == current_user.id,
        MilestoneAttempt.created_at >= start
    ).all() + db.query(CheckpointAttempt.created_at).filter(
        CheckpointAttempt.user_id == current_user.id,
        CheckpointAttempt.created_at >= start
    ).all()
    for (created_at,) in attempts:
        day = created_at.date().isoformat()
        if day in activity:
            activity[day]["attempts"] += 1

    return {
        "success": True,
        "data": {
            "days": days,
            "activity": [{"date": day, **values} for day, values in activity.items()],
            "active_days": len([v for v in activity.values() if v["points_earned"] or v["attempts"]]),
        }
    }


@router.get("/assessments")
async def get_recent_assessments(
    limit: int = Query(10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    milestone_attempts = db.query(MilestoneAttempt).filter(
        MilestoneAttempt.user_id == current_user.id
    ).order_by(MilestoneAttempt.created_at.desc()).limit(limit).all()
    checkpoint_attempts = db.query(CheckpointAttempt).filter(
        CheckpointAttempt.user_id == current_user.id
    ).order_by(CheckpointAttempt.created_at.desc()).limit(limit).all()

    assessments = [
        {
            "type": "milestone",
            "id": a.id,
            "title": a.milestone.title if a.milestone else None,
            "score": a.final_score,
            "passed": a.passed,
            "points": a.points_awarded,
            "created_at": a.created_at.isoformat(),
        }
        for a in milestone_attempts
    ] + [
        {
            "type": "checkpoint",
            "id": a.id,
            "title": a.checkpoint.title if a.checkpoint else None,
            "score": a.score,
            "passed": a.passed,
            "points": a.points_earned,
            "created_at": a.created_at.isoformat(),
        }
        for a in checkpoint_attempts
    ]
    assessments.sort(key=lambda a: a["created_at"], reverse=True)

    return {
        "success": True,
        "data": {"assessments": assessments[:limit], "total": len(assessments[:limit])}
    }
