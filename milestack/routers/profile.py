"""
Profile router for Milestack.

Onboarding setup, profile updates and the student's own activity views.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.achievement import Achievement
from milestack.models.assignment import Assignment, MilestoneAttempt
from milestack.models.pathway import CheckpointAttempt, PathwayProgress
from milestack.models.points import PointTransaction
from milestack.models.user import User, UserProfile
from milestack.routers.auth import get_current_user, client_ip
from milestack.schemas.privacy import ProfileSetup, ProfileUpdate
from milestack.services.achievements import achievements_service
from milestack.services.integrity import integrity_service, honor_code_document
from milestack.services.points import points_service
from milestack.services.privacy import privacy_service


logger = logging.getLogger(__name__)

router = APIRouter()

REQUIRED_PROFILE_FIELDS = ["full_name", "major", "year"]
EXPERIENCE_LEVELS = ["beginner", "intermediate", "advanced"]


def split_name(full_name: str) -> List[str]:
    parts = full_name.strip().split(" ", 1)
    return [parts[0], parts[1] if len(parts) > 1 else ""]


@router.post("/setup")
async def setup_profile(
    request_data: ProfileSetup,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Complete onboarding: profile, honor code signature and data consent.
    """
    missing = [f for f in REQUIRED_PROFILE_FIELDS if not (getattr(request_data, f) or "").strip()]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing required fields: {', '.join(missing)}"
        )
    if not request_data.honor_code_accepted or not (request_data.digital_signature or "").strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Honor code must be accepted with a digital signature"
        )
    if not request_data.data_usage_consent:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Data usage consent is required"
        )
    if request_data.experience_level not in EXPERIENCE_LEVELS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid experience level. Use one of: {', '.join(EXPERIENCE_LEVELS)}"
        )

    profile = current_user.profile
    if profile is None:
        profile = UserProfile(user_id=current_user.id, full_name=request_data.full_name.strip())
        db.add(profile)

    fields = request_data.model_dump(exclude={"digital_signature"})
    for field, value in fields.items():
        setattr(profile, field, value.strip() if isinstance(value, str) else value)
    profile.is_complete = True

    current_user.first_name, current_user.last_name = split_name(request_data.full_name)
    db.commit()

    ip_address = client_ip(request)
    signature = integrity_service.sign_honor_code(
        db,
        current_user,
        institution=request_data.institution_name,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )
    privacy_service.record_consent(
        db,
        current_user.id,
        "dataProcessing",
        True,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )
    db.refresh(profile)

    logger.info(f"User {current_user.id} completed profile setup")

    return {
        "success": True,
        "data": {
            "profile": profile.to_dict(),
            "honor_code_signature": signature.to_dict(),
        },
        "message": "Profile setup complete"
    }


@router.put("/update")
async def update_profile(
    request_data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if not request_data.full_name or not request_data.full_name.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Full name is required"
        )
    if request_data.experience_level and request_data.experience_level not in EXPERIENCE_LEVELS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid experience level. Use one of: {', '.join(EXPERIENCE_LEVELS)}"
        )

    profile = current_user.profile
    if profile is None:
        profile = UserProfile(user_id=current_user.id, full_name=request_data.full_name.strip())
        db.add(profile)

    for field, value in request_data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(profile, field, value.strip() if isinstance(value, str) else value)

    current_user.first_name, current_user.last_name = split_name(request_data.full_name)
    db.commit()
    db.refresh(profile)

    return {
        "success": True,
        "data": {"profile": profile.to_dict()},
        "message": "Profile updated successfully"
    }


@router.get("/data")
async def get_profile_data(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Account and profile data."""
    return {
        "success": True,
        "data": {
            "user": current_user.to_dict(),
            "profile": current_user.profile.to_dict() if current_user.profile else None,
        }
    }


@router.get("/status")
async def get_profile_status(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    profile = current_user.profile
    missing = [
        f for f in REQUIRED_PROFILE_FIELDS
        if profile is None or not getattr(profile, f)
    ]

    return {
        "success": True,
        "data": {
            "has_profile": profile is not None,
            "is_complete": bool(profile and profile.is_complete),
            "missing_fields": missing,
            "email_verified": current_user.is_email_verified,
            "honor_code_signed": integrity_service.has_signed(db, current_user.id),
            "data_usage_consent": bool(profile and profile.data_usage_consent),
        }
    }


@router.get("/honor-code")
async def get_honor_code() -> Dict[str, Any]:
    """
    The current honor code. Readable without an account so it can be shown before signup.
    """
    return {
        "success": True,
        "data": {"honor_code": honor_code_document()}
    }


@router.get("/stats")
async def get_profile_stats(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    balance = points_service.get_balance_summary(db, current_user.id)
    assignments = db.query(Assignment).filter(Assignment.user_id == current_user.id).all()
    completed_pathways = db.query(PathwayProgress).filter(
        PathwayProgress.user_id == current_user.id,
        PathwayProgress.completed_at.isnot(None)
    ).count()
    achievements = db.query(Achievement).filter(Achievement.user_id == current_user.id).count()

    return {
        "success": True,
        "data": {
            "points": balance,
            "assignments": {
                "total": len(assignments),
                "completed": len([a for a in assignments if a.progress_status == "completed"]),
            },
            "milestones_completed": sum(a.completed_milestones for a in assignments),
            "pathways_completed": completed_pathways,
            "achievements_unlocked": achievements,
            "current_streak": current_user.current_streak,
            "longest_streak": current_user.longest_streak,
            "member_since": current_user.created_at.isoformat(),
            "integrity_score": integrity_service.calculate_score(db, current_user.id)["overall"],
        }
    }


@router.get("/activity")
async def get_profile_activity(
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Recent points transactions and assessment attempts, newest first.
    """
    activity = []
    for t in db.query(PointTransaction).filter(
        PointTransaction.user_id == current_user.id
    ).order_by(PointTransaction.created_at.desc()).limit(limit).all():
        activity.append({
            "type": f"points_{t.transaction_type}",
            "description": t.reason,
            "amount": t.amount,
            "timestamp": t.created_at.isoformat(),
        })
    for a in db.query(MilestoneAttempt).filter(
        MilestoneAttempt.user_id == current_user.id
    ).order_by(MilestoneAttempt.created_at.desc()).limit(limit).all():
        activity.append({
            "type": "milestone_attempt",
            "description": f"{'Passed' if a.passed else 'Attempted'} milestone: {a.milestone.title}",
            "score": a.final_score,
            "timestamp": a.created_at.isoformat(),
        })
    for a in db.query(CheckpointAttempt).filter(
        CheckpointAttempt.user_id == current_user.id
    ).order_by(CheckpointAttempt.created_at.desc()).limit(limit).all():
        activity.append({
            "type": "checkpoint_attempt",
            "description": f"{'Passed' if a.passed else 'Attempted'} checkpoint: {a.checkpoint.title}",
            "score": a.score,
            "timestamp": a.created_at.isoformat(),
        })
    activity.sort(key=lambda a: a["timestamp"], reverse=True)

    return {
        "success": True,
        "data": {
            "activity": activity[:limit],
            "generated_at": datetime.utcnow().isoformat(),
        }
    }


@router.get("/achievements")
async def get_profile_achievements(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Unlocked achievements only."""
    data = achievements_service.get_user_achievements(db, current_user)
    unlocked = [a for a in data["achievements"] if a["unlocked"]]

    return {
        "success": True,
        "data": {
            "achievements": unlocked,
            "total_unlocked": len(unlocked),
            "total_points": data["total_points"],
        }
    }
