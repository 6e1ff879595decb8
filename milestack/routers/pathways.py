"""
Learning pathways router for Milestack.

Public pathway catalogue with filtering and pagination, admin
management and per-user progress tracking.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy import case, or_
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.admin import AuditLog, AuditAction
from milestack.models.pathway import LearningPathway, PathwayCheckpoint, PathwayProgress, DifficultyLevel
from milestack.models.user import User
from milestack.routers.admin import get_current_admin_user
from milestack.routers.auth import get_current_user
from milestack.schemas.learning import PathwayCreate, PathwayUpdate, PathwayProgressUpdate


logger = logging.getLogger(__name__)

router = APIRouter()

SORT_FIELDS = ["created_at", "title", "difficulty", "total_points", "estimated_duration"]

DIFFICULTY_ORDER = case(
    (LearningPathway.difficulty == DifficultyLevel.BEGINNER.value, 1),
    (LearningPathway.difficulty == DifficultyLevel.INTERMEDIATE.value, 2),
    (LearningPathway.difficulty == DifficultyLevel.ADVANCED.value, 3),
    else_=4
)


def get_active_pathway(db: Session, pathway_id: int) -> LearningPathway:
    pathway = db.query(LearningPathway).filter(
        LearningPathway.id == pathway_id,
        LearningPathway.is_active.is_(True)
    ).first()
    if not pathway:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pathway not found"
        )
    return pathway


def get_or_create_progress(db: Session, user_id: int, pathway: LearningPathway) -> PathwayProgress:
    """Progress row for a user and pathway. Flushes a new row, does not commit."""
    progress = db.query(PathwayProgress).filter(
        PathwayProgress.user_id == user_id,
        PathwayProgress.pathway_id == pathway.id
    ).first()
    if progress is None:
        progress = PathwayProgress(
            user_id=user_id,
            pathway_id=pathway.id,
            completed_checkpoints=0,
            total_checkpoints=len(pathway.checkpoints),
            points_earned=0,
            time_spent=0,
            current_checkpoint_id=pathway.checkpoints[0].id if pathway.checkpoints else None,
        )
        db.add(progress)
        db.flush()
    return progress


@router.get("")
async def list_pathways(
    category: Optional[str] = None,
    difficulty: Optional[DifficultyLevel] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: str = "desc",
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    List active public pathways with the caller's progress.
    """
    if sort_by not in SORT_FIELDS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid sort field. Use one of: {', '.join(SORT_FIELDS)}"
        )
    if sort_order not in ("asc", "desc"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid sort order. Use asc or desc"
        )

    query = db.query(LearningPathway).filter(
        LearningPathway.is_active.is_(True),
        LearningPathway.is_public.is_(True)
    )

    # Apply filters
    if category:
        query = query.filter(LearningPathway.category == category)
    if difficulty:
        query = query.filter(LearningPathway.difficulty == difficulty.value)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                LearningPathway.title.ilike(pattern),
                LearningPathway.description.ilike(pattern)
            )
        )

    total = query.count()

    sort_column = DIFFICULTY_ORDER if sort_by == "difficulty" else getattr(LearningPathway, sort_by)
    query = query.order_by(sort_column.asc() if sort_order == "asc" else sort_column.desc(), LearningPathway.id)

    pathways = query.offset((page - 1) * limit).limit(limit).all()

    progress_by_pathway = {
        p.pathway_id: p for p in db.query(PathwayProgress).filter(
            PathwayProgress.user_id == current_user.id,
            PathwayProgress.pathway_id.in_([p.id for p in pathways])
        ).all()
    } if pathways else {}

    items = []
    for pathway in pathways:
        item = pathway.to_dict()
        progress = progress_by_pathway.get(pathway.id)
        item["user_progress"] = progress.to_dict() if progress else None
        items.append(item)

    return {
        "success": True,
        "data": {
            "pathways": items,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            }
        }
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_pathway(
    pathway_data: PathwayCreate,
    admin_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Create a pathway with its ordered checkpoints.
    """
    pathway = LearningPathway(
        title=pathway_data.title,
        description=pathway_data.description,
        category=pathway_data.category,
        difficulty=pathway_data.difficulty.value,
        estimated_duration=pathway_data.estimated_duration,
        tags=pathway_data.tags,
        is_public=pathway_data.is_public,
        is_active=True,
        created_by=admin_user.id,
    )

    for index, checkpoint in enumerate(pathway_data.checkpoints):
        pathway.checkpoints.append(PathwayCheckpoint(
            title=checkpoint.title,
            description=checkpoint.description,
            checkpoint_type=checkpoint.type.value,
            order_index=index + 1,
            points=checkpoint.points,
            max_attempts=checkpoint.max_attempts,
            passing_score=checkpoint.passing_score,
            time_limit=checkpoint.time_limit,
            content=checkpoint.content,
        ))
    pathway.recalculate_total_points()

    db.add(pathway)
    db.flush()

    db.add(AuditLog.log_action(
        action=AuditAction.CREATE,
        resource="pathway",
        user_id=admin_user.id,
        resource_id=pathway.id,
        details={"title": pathway.title, "checkpoints": len(pathway.checkpoints)}
    ))
    db.commit()
    db.refresh(pathway)

    logger.info(f"Admin {admin_user.id} created pathway {pathway.id}")

    return {
        "success": True,
        "data": {"pathway": pathway.to_dict(include_checkpoints=True)},
        "message": "Pathway created successfully"
    }


@router.get("/{pathway_id}")
async def get_pathway(
    pathway_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    pathway = get_active_pathway(db, pathway_id)

    progress = db.query(PathwayProgress).filter(
        PathwayProgress.user_id == current_user.id,
        PathwayProgress.pathway_id == pathway.id
    ).first()

    return {
        "success": True,
        "data": {
            "pathway": pathway.to_dict(include_checkpoints=True),
            "user_progress": progress.to_dict() if progress else None,
        }
    }


@router.put("/{pathway_id}")
async def update_pathway(
    pathway_id: int,
    pathway_data: PathwayUpdate,
    admin_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Update pathway fields.
    """
    pathway = db.query(LearningPathway).filter(LearningPathway.id == pathway_id).first()
    if not pathway:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pathway not found"
        )

    update_data = pathway_data.model_dump(exclude_unset=True)
    if "difficulty" in update_data and update_data["difficulty"] is not None:
        update_data["difficulty"] = update_data["difficulty"].value
    for field, value in update_data.items():
        setattr(pathway, field, value)

    db.add(AuditLog.log_action(
        action=AuditAction.UPDATE,
        resource="pathway",
        user_id=admin_user.id,
        resource_id=pathway.id,
        details={"fields": sorted(update_data.keys())}
    ))
    db.commit()
    db.refresh(pathway)

    return {
        "success": True,
        "data": {"pathway": pathway.to_dict(include_checkpoints=True)},
        "message": "Pathway updated successfully"
    }


@router.delete("/{pathway_id}")
async def delete_pathway(
    pathway_id: int,
    admin_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Deactivate a pathway. Progress and attempts are kept.
    """
    pathway = db.query(LearningPathway).filter(LearningPathway.id == pathway_id).first()
    if not pathway:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pathway not found"
        )

    pathway.is_active = False
    db.add(AuditLog.log_action(
        action=AuditAction.DELETE,
        resource="pathway",
        user_id=admin_user.id,
        resource_id=pathway.id
    ))
    db.commit()

    logger.info(f"Admin {admin_user.id} deactivated pathway {pathway.id}")

    return {"success": True, "message": "Pathway deactivated successfully"}


@router.post("/{pathway_id}/progress")
async def update_progress(
    pathway_id: int,
    progress_data: PathwayProgressUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Start a pathway or add time spent on it.
    """
    pathway = get_active_pathway(db, pathway_id)
    progress = get_or_create_progress(db, current_user.id, pathway)

    progress.time_spent += progress_data.time_spent
    progress.total_checkpoints = len(pathway.checkpoints)
    progress.last_accessed_at = datetime.utcnow()
    db.commit()
    db.refresh(progress)

    return {
        "success": True,
        "data": {"progress": progress.to_dict()}
    }
