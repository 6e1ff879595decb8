"""
Milestones router for Milestack.

Students answer a milestone's competency check; passing unlocks the next
milestone and earns points.
"""

import logging
from datetime import datetime
from typing import Dict, Any, List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.assignment import LearningMilestone, MilestoneAttempt, MilestoneStatus
from milestack.models.points import EarnCategory
from milestack.models.user import User
from milestack.routers.auth import get_current_user
from milestack.schemas.learning import MilestoneAttemptRequest
from milestack.services.achievements import achievements_service
from milestack.services.ai_agent import AIAgentClient, AIAgentError, get_ai_agent
from milestack.services.grading import grading_service
from milestack.services.points import points_service, PointsError


logger = logging.getLogger(__name__)

router = APIRouter()

REFLECTION_PROMPTS = [
    "What was the most challenging part of this milestone, and how did you approach it?",
    "How does this milestone connect to the overall assignment?",
    "What would you do differently if you started this milestone again?",
]


def get_owned_milestone(db: Session, milestone_id: int, user: User) -> LearningMilestone:
    milestone = db.query(LearningMilestone).filter(LearningMilestone.id == milestone_id).first()
    if not milestone:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Milestone not found"
        )
    if milestone.assignment.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this milestone"
        )
    return milestone


def adaptive_feedback(milestone: LearningMilestone) -> Dict[str, Any]:
    """Guidance derived from the latest attempt."""
    if not milestone.attempts:
        return {
            "level": "start",
            "message": "Read the competency requirement carefully and explain your approach in your own words.",
            "suggestions": [],
        }

    latest = milestone.attempts[-1]
    suggestions: List[str] = list((latest.feedback or {}).get("suggestions") or [])
    if latest.passed:
        return {"level": "mastered", "message": "You have mastered this milestone.", "suggestions": suggestions}
    if latest.final_score >= 60:
        return {
            "level": "close",
            "message": "You're close. Connect your answer more directly to the milestone topic.",
            "suggestions": suggestions,
        }
    return {
        "level": "review",
        "message": "Review the milestone description and try explaining the core idea step by step.",
        "suggestions": suggestions,
    }


@router.get("/{milestone_id}")
async def get_milestone(
    milestone_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    milestone = get_owned_milestone(db, milestone_id, current_user)

    return {
        "success": True,
        "data": {
            "milestone": milestone.to_dict(),
            "assignment": {"id": milestone.assignment.id, "title": milestone.assignment.title},
            "attempts": [a.to_dict() for a in milestone.attempts],
            "adaptive_feedback": adaptive_feedback(milestone),
            "reflection_prompts": REFLECTION_PROMPTS,
        }
    }


@router.post("/{milestone_id}/attempt")
async def attempt_milestone(
    milestone_id: int,
    request_data: MilestoneAttemptRequest,
    current_user: User = Depends(get_current_user),
    agent: AIAgentClient = Depends(get_ai_agent),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Submit an answer for a milestone's competency check.
    """
    if not request_data.answer or not request_data.answer.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Answer is required"
        )
    answer = request_data.answer.strip()

    milestone = get_owned_milestone(db, milestone_id, current_user)

    if milestone.status == MilestoneStatus.COMPLETED.value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Milestone already completed"
        )
    if milestone.status == MilestoneStatus.LOCKED.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Milestone is locked. Complete the previous milestone first."
        )

    assignment = milestone.assignment
    concepts = assignment.analysis.concepts if assignment.analysis else []
    attempt_number = len(milestone.attempts) + 1

    try:
        grade = grading_service.normalize_agent_grade(await agent.grade_milestone(
            assignment_title=assignment.title,
            milestone_title=milestone.title,
            competency_requirement=milestone.competency_requirement or "",
            expected_concepts=concepts,
            answer=answer,
            attempt_number=attempt_number,
            user_id=str(current_user.id),
        ))
        source = "agent"
    except AIAgentError as e:
        logger.warning(f"Agent grading unavailable for milestone {milestone.id}, using rules: {e}")
        keywords = grading_service.milestone_keywords(milestone.title, concepts)
        grade = grading_service.grade_milestone_answer(answer, keywords)
        source = "rules"

    attempt = MilestoneAttempt(
        milestone_id=milestone.id,
        user_id=current_user.id,
        attempt_number=attempt_number,
        answer=answer,
        context_score=grade["context_score"],
        understanding_score=grade["understanding_score"],
        completeness_score=grade["completeness_score"],
        final_score=grade["final_score"],
        passed=grade["passed"],
        grading_source=source,
        feedback=grade["feedback"],
    )
    db.add(attempt)

    points_result = None
    points_error = None
    next_milestone = None
    new_achievements: List[Dict[str, Any]] = []

    if grade["passed"]:
        milestone.status = MilestoneStatus.COMPLETED.value
        milestone.completed_at = datetime.utcnow()
        for candidate in assignment.milestones:
            if candidate.milestone_order == milestone.milestone_order + 1:
                if candidate.status == MilestoneStatus.LOCKED.value:
                    candidate.status = MilestoneStatus.AVAILABLE.value
                next_milestone = candidate
                break
        current_user.update_streak(datetime.utcnow())
        db.commit()

        try:
            points_result = points_service.award_points(
                db,
                current_user.id,
                milestone.points_reward,
                EarnCategory.CONCEPT_EXPLANATION.value,
                reason=f"Completed milestone: {milestone.title}",
                source_id=str(milestone.id),
                source_type="milestone",
                quality_score=grade["final_score"],
            )
            attempt.points_awarded = points_result["points_awarded"]
            db.commit()
        except PointsError as e:
            db.rollback()
            points_error = e.message
            logger.info(f"Milestone {milestone.id} passed without points: {e.message}")

        new_achievements = achievements_service.check_achievements(db, current_user)
    else:
        milestone.status = MilestoneStatus.IN_PROGRESS.value
        db.commit()

    db.refresh(attempt)

    return {
        "success": True,
        "data": {
            "attempt": attempt.to_dict(),
            "passed": attempt.passed,
            "milestone": milestone.to_dict(),
            "next_milestone": next_milestone.to_dict() if next_milestone else None,
            "points": points_result,
            "points_error": points_error,
            "new_achievements": new_achievements,
        }
    }
