"""
Pathway checkpoints router for Milestack.

Graded checkpoint attempts, pathway progress updates and feedback history.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.pathway import PathwayCheckpoint, CheckpointAttempt, CheckpointType, AttemptStatus
from milestack.models.points import EarnCategory
from milestack.models.user import User
from milestack.routers.auth import get_current_user
from milestack.routers.pathways import get_or_create_progress
from milestack.schemas.learning import CheckpointAttemptRequest
from milestack.services.achievements import achievements_service
from milestack.services.grading import grading_service
from milestack.services.points import points_service, PointsError


logger = logging.getLogger(__name__)

router = APIRouter()

EARN_CATEGORY_BY_TYPE = {
    CheckpointType.CONCEPT_EXPLANATION.value: EarnCategory.CONCEPT_EXPLANATION.value,
    CheckpointType.SKILL_ASSESSMENT.value: EarnCategory.MINI_CHALLENGE.value,
    CheckpointType.CODE_REVIEW.value: EarnCategory.CODE_REVIEW.value,
}


def get_active_checkpoint(db: Session, checkpoint_id: int) -> PathwayCheckpoint:
    checkpoint = db.query(PathwayCheckpoint).filter(PathwayCheckpoint.id == checkpoint_id).first()
    if not checkpoint or not checkpoint.pathway.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Checkpoint not found"
        )
    return checkpoint


def user_attempts(db: Session, user_id: int, checkpoint_id: int) -> List[CheckpointAttempt]:
    return db.query(CheckpointAttempt).filter(
        CheckpointAttempt.user_id == user_id,
        CheckpointAttempt.checkpoint_id == checkpoint_id
    ).order_by(CheckpointAttempt.attempt_number).all()


@router.get("/{checkpoint_id}")
async def get_checkpoint(
    checkpoint_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    checkpoint = get_active_checkpoint(db, checkpoint_id)
    attempts = user_attempts(db, current_user.id, checkpoint.id)
    completed = any(a.passed for a in attempts)

    return {
        "success": True,
        "data": {
            "checkpoint": checkpoint.to_dict(),
            "attempts": [a.to_dict() for a in attempts],
            "total_attempts": len(attempts),
            "max_attempts": checkpoint.max_attempts,
            "is_completed": completed,
            "can_retry": not completed and len(attempts) < checkpoint.max_attempts,
        }
    }


@router.post("/{checkpoint_id}/attempt")
async def attempt_checkpoint(
    checkpoint_id: int,
    request_data: CheckpointAttemptRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Submit responses for a checkpoint.

    A passing attempt awards the checkpoint points and advances the
    pathway progress. Points refusals (daily limit, cooling period) do
    not undo the pass.
    """
    if not request_data.responses:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Responses are required"
        )

    checkpoint = get_active_checkpoint(db, checkpoint_id)
    pathway = checkpoint.pathway
    attempts = user_attempts(db, current_user.id, checkpoint.id)

    if any(a.passed for a in attempts):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Checkpoint already passed"
        )
    if len(attempts) >= checkpoint.max_attempts:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Maximum attempts exceeded"
        )

    grade = grading_service.grade_checkpoint(
        checkpoint.checkpoint_type,
        checkpoint.content or {},
        request_data.responses,
        checkpoint.passing_score
    )

    attempt = CheckpointAttempt(
        user_id=current_user.id,
        checkpoint_id=checkpoint.id,
        attempt_number=len(attempts) + 1,
        responses=request_data.responses,
        score=grade["score"],
        time_spent=request_data.time_spent,
        feedback=grade["feedback"],
        strengths=grade["strengths"],
        weaknesses=grade["weaknesses"],
        recommendations=grade["recommendations"],
        analysis=grade["analysis"],
        status=AttemptStatus.PASSED.value if grade["passed"] else AttemptStatus.FAILED.value,
    )
    db.add(attempt)

    progress = get_or_create_progress(db, current_user.id, pathway)
    progress.total_checkpoints = len(pathway.checkpoints)
    progress.time_spent += request_data.time_spent
    progress.last_accessed_at = datetime.utcnow()

    points_result = None
    points_error = None
    new_achievements: List[Dict[str, Any]] = []

    if grade["passed"]:
        progress.completed_checkpoints = min(progress.completed_checkpoints + 1, progress.total_checkpoints)
        following = [c for c in pathway.checkpoints if c.order_index > checkpoint.order_index]
        progress.current_checkpoint_id = following[0].id if following else None
        if progress.completed_checkpoints >= progress.total_checkpoints:
            progress.completed_at = datetime.utcnow()
        current_user.update_streak(datetime.utcnow())
        db.commit()

        if checkpoint.points > 0:
            try:
                points_result = points_service.award_points(
                    db,
                    current_user.id,
                    checkpoint.points,
                    EARN_CATEGORY_BY_TYPE.get(checkpoint.checkpoint_type, EarnCategory.CONCEPT_EXPLANATION.value),
                    reason=f"Passed checkpoint: {checkpoint.title}",
                    source_id=str(checkpoint.id),
                    source_type="checkpoint",
                    quality_score=grade["score"],
                    topic=pathway.category,
                )
                attempt.points_earned = points_result["points_awarded"]
                progress.points_earned += points_result["points_awarded"]
                db.commit()
            except PointsError as e:
                db.rollback()
                points_error = e.message
                logger.info(f"Checkpoint {checkpoint.id} passed without points: {e.message}")

        new_achievements = achievements_service.check_achievements(db, current_user)
    else:
        db.commit()

    db.refresh(attempt)
    db.refresh(progress)

    return {
        "success": True,
        "data": {
            "attempt": attempt.to_dict(),
            "passed": attempt.passed,
            "score": attempt.score,
            "feedback": attempt.feedback,
            "points": points_result,
            "points_error": points_error,
            "progress": progress.to_dict(),
            "attempts_remaining": checkpoint.max_attempts - attempt.attempt_number,
            "new_achievements": new_achievements,
        }
    }


@router.get("/{checkpoint_id}/feedback")
async def get_checkpoint_feedback(
    checkpoint_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Attempt history with score trend and next steps.
    """
    checkpoint = get_active_checkpoint(db, checkpoint_id)
    attempts = user_attempts(db, current_user.id, checkpoint.id)

    scores = [a.score for a in attempts]
    best_score = max(scores) if scores else 0
    average_score = round(sum(scores) / len(scores), 1) if scores else 0
    improvement = scores[-1] - scores[0] if len(scores) > 1 else 0
    weaknesses = attempts[-1].weaknesses if attempts else []

    return {
        "success": True,
        "data": {
            "checkpoint": checkpoint.to_dict(),
            "attempts": [a.to_dict() for a in attempts],
            "best_score": best_score,
            "average_score": average_score,
            "improvement": improvement,
            "next_steps": grading_service.next_steps(best_score, checkpoint.passing_score, weaknesses),
        }
    }
