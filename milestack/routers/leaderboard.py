"""
Leaderboard router for Milestack.

Rankings are computed from the points ledger: overall uses total earned
points, a topic category uses earned transactions tagged with the topic.
"""

import logging
from typing import Dict, Any, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.assignment import Assignment, LearningMilestone, MilestoneStatus
from milestack.models.pathway import CheckpointAttempt, AttemptStatus
from milestack.models.user import User
from milestack.routers.auth import get_current_user
from milestack.services.points import points_service


logger = logging.getLogger(__name__)

router = APIRouter()

CATEGORIES = [
    "overall", "data-structures", "algorithms", "web-dev", "database",
    "system-design", "machine-learning", "security", "mobile-dev",
]

SORT_KEYS = {
    "points": "points",
    "challengesSolved": "challenges_solved",
    "streak": "current_streak",
    "longestStreak": "longest_streak",
}


def challenges_solved_by_user(db: Session) -> Dict[int, int]:
    """Completed milestones plus passed checkpoints per user."""
    solved: Dict[int, int] = {}

    milestones = db.query(
        Assignment.user_id, func.count(LearningMilestone.id)
    ).join(
        LearningMilestone, LearningMilestone.assignment_id == Assignment.id
    ).filter(
        LearningMilestone.status == MilestoneStatus.COMPLETED.value
    ).group_by(Assignment.user_id).all()
    for user_id, count in milestones:
        solved[user_id] = solved.get(user_id, 0) + count

    checkpoints = db.query(
        CheckpointAttempt.user_id, func.count(func.distinct(CheckpointAttempt.checkpoint_id))
    ).filter(
        CheckpointAttempt.status == AttemptStatus.PASSED.value
    ).group_by(CheckpointAttempt.user_id).all()
    for user_id, count in checkpoints:
        solved[user_id] = solved.get(user_id, 0) + count

    return solved


@router.get("")
async def get_leaderboard(
    category: str = "overall",
    limit: int = Query(50, ge=1, le=100),
    sort_by: str = "points",
    sort_order: str = "desc",
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Ranked users for a category with the caller's own rank.
    """
    if category not in CATEGORIES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid category. Use one of: {', '.join(CATEGORIES)}"
        )
    if sort_by not in SORT_KEYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid sort field. Use one of: {', '.join(SORT_KEYS)}"
        )
    if sort_order not in ("asc", "desc"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid sort order. Use asc or desc"
        )

    topic = None if category == "overall" else category
    points_by_user = points_service.total_earned_by_users(db, topic=topic)
    solved = challenges_solved_by_user(db)

    users = db.query(User).filter(User.is_active.is_(True)).all()
    if topic:
        users = [u for u in users if points_by_user.get(u.id, 0) > 0]

    entries: List[Dict[str, Any]] = [
        {
            "user_id": u.id,
            "name": u.full_name,
            "profile_picture": u.profile_picture,
            "points": points_by_user.get(u.id, 0),
            "challenges_solved": solved.get(u.id, 0),
            "current_streak": u.current_streak,
            "longest_streak": u.longest_streak,
        }
        for u in users
    ]

    key = SORT_KEYS[sort_by]
    entries.sort(key=lambda e: (e[key], -e["user_id"]), reverse=sort_order == "desc")
    for rank, entry in enumerate(entries, start=1):
        entry["rank"] = rank

    my_entry = next((e for e in entries if e["user_id"] == current_user.id), None)
    total_points = sum(e["points"] for e in entries)

    return {
        "success": True,
        "data": {
            "category": category,
            "leaderboard": entries[:limit],
            "stats": {
                "total_users": len(entries),
                "total_points": total_points,
                "average_points": round(total_points / len(entries), 1) if entries else 0,
            },
            "my_rank": my_entry,
            "categories": CATEGORIES,
        }
    }
