"""
Assignments router for Milestack.

Handles assignment upload, AI analysis into learning milestones,
listing and deletion.
"""

import logging
from typing import Dict, Any, Optional
from fastapi import APIRouter, Depends, HTTPException, status, UploadFile, File, Form
from sqlalchemy.orm import Session

from milestack.core.config import settings
from milestack.core.database import get_db
from milestack.models.assignment import (
    Assignment, AssignmentAnalysis, LearningMilestone,
    AnalysisStatus, MilestoneStatus
)
from milestack.models.ai import AIAssistanceLog, AISession
from milestack.models.integrity import HonorCodeSignature, IntegrityReport
from milestack.models.user import User
from milestack.routers.auth import get_current_user
from milestack.schemas.learning import AnalyzeRequest, AssignmentDelete
from milestack.services import storage
from milestack.services.ai_agent import AIAgentClient, AIAgentError, get_ai_agent


logger = logging.getLogger(__name__)

router = APIRouter()


def get_owned_assignment(db: Session, assignment_id: int, user: User) -> Assignment:
    """
    Load an assignment and check ownership.

    Raises:
        HTTPException: 404 when missing, 403 for another user's assignment
    """
    assignment = db.query(Assignment).filter(Assignment.id == assignment_id).first()
    if not assignment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assignment not found"
        )
    if assignment.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to access this assignment"
        )
    return assignment


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_assignment(
    file: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    course_name: Optional[str] = Form(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Upload an assignment document.
    """
    if file is None or not title or not title.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File and title are required"
        )

    content = await file.read()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty"
        )

    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB"
        )

    mime_type = (file.content_type or "").split(";")[0].strip()
    if mime_type not in settings.ALLOWED_UPLOAD_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Unsupported file type. Upload a PDF, Word, text or image file"
        )

    file_hash = storage.compute_hash(content)
    duplicate = db.query(Assignment).filter(
        Assignment.user_id == current_user.id,
        Assignment.file_hash == file_hash
    ).first()
    if duplicate:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": "You have already uploaded this file", "assignment_id": duplicate.id}
        )

    file_path = storage.save_upload(current_user.id, file_hash, file.filename, content)

    assignment = Assignment(
        user_id=current_user.id,
        title=title.strip(),
        description=description,
        course_name=course_name,
        original_filename=file.filename or "upload",
        file_path=file_path,
        file_size=len(content),
        mime_type=mime_type,
        file_hash=file_hash,
        extracted_text=storage.extract_text(content, mime_type),
        analysis_status=AnalysisStatus.UPLOADED.value,
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)

    logger.info(f"User {current_user.id} uploaded assignment {assignment.id}")

    return {
        "success": True,
        "data": {"assignment": assignment.to_dict()},
        "message": "Assignment uploaded successfully"
    }


@router.post("/analyze")
async def analyze_assignment(
    request_data: AnalyzeRequest,
    current_user: User = Depends(get_current_user),
    agent: AIAgentClient = Depends(get_ai_agent),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Analyze an assignment into a milestone pathway.
    """
    if not request_data.assignment_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Assignment ID is required"
        )

    assignment = get_owned_assignment(db, request_data.assignment_id, current_user)

    assignment.analysis_status = AnalysisStatus.PROCESSING.value
    db.commit()

    try:
        result = await agent.analyze_assignment(
            title=assignment.title,
            user_id=str(current_user.id),
            course_name=assignment.course_name,
            description=assignment.description,
            extracted_text=assignment.extracted_text,
        )
    except AIAgentError as e:
        logger.error(f"Analysis failed for assignment {assignment.id}: {e}")
        assignment.analysis_status = AnalysisStatus.FAILED.value
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Analysis failed",
                "message": str(e),
                "canRetry": True
            }
        )

    analysis = assignment.analysis
    if analysis is None:
        analysis = AssignmentAnalysis(assignment_id=assignment.id)
        db.add(analysis)
    analysis.concepts = result["concepts"]
    analysis.languages = result["languages"]
    analysis.difficulty_score = max(1, min(10, int(result["difficulty"])))
    analysis.prerequisites = result["prerequisites"]
    analysis.estimated_hours = float(result["estimated_hours"])
    analysis.learning_gaps = result["learning_gaps"]

    # Replace the previous pathway
    assignment.milestones.clear()
    db.flush()

    for index, item in enumerate(result["milestones"]):
        assignment.milestones.append(LearningMilestone(
            milestone_order=index + 1,
            title=item["title"],
            description=item["description"],
            competency_requirement=item["competency_check"],
            points_reward=item["points_reward"],
            status=MilestoneStatus.AVAILABLE.value if index == 0 else MilestoneStatus.LOCKED.value,
        ))

    assignment.analysis_status = AnalysisStatus.COMPLETE.value
    db.commit()
    db.refresh(assignment)

    logger.info(f"Assignment {assignment.id} analyzed into {len(assignment.milestones)} milestones")

    return {
        "success": True,
        "data": {
            "analysis": assignment.analysis.to_dict(),
            "pathway": {
                "total_points": assignment.total_points,
                "milestones": [m.to_dict() for m in assignment.milestones],
            },
            "assignment": assignment.to_dict(),
        }
    }


@router.get("")
async def list_assignments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """List the current user's assignments."""
    assignments = db.query(Assignment).filter(
        Assignment.user_id == current_user.id
    ).order_by(Assignment.created_at.desc(), Assignment.id.desc()).all()

    return {
        "success": True,
        "data": {
            "assignments": [a.to_dict() for a in assignments],
            "total": len(assignments),
        }
    }


@router.get("/{assignment_id}")
async def get_assignment(
    assignment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    assignment = get_owned_assignment(db, assignment_id, current_user)

    return {
        "success": True,
        "data": {
            "assignment": assignment.to_dict(),
            "analysis": assignment.analysis.to_dict() if assignment.analysis else None,
            "milestones": [m.to_dict() for m in assignment.milestones],
        }
    }


@router.post("/{assignment_id}/delete")
async def delete_assignment(
    assignment_id: int,
    request_data: AssignmentDelete,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Delete an assignment after the title was typed to confirm.
    """
    assignment = get_owned_assignment(db, assignment_id, current_user)

    if request_data.confirmation_title != assignment.title:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Confirmation title does not match the assignment title"
        )

    # Keep AI and honor code history, drop reports about this assignment
    db.query(IntegrityReport).filter(IntegrityReport.assignment_id == assignment.id).delete(synchronize_session=False)
    for model in (AIAssistanceLog, AISession, HonorCodeSignature):
        db.query(model).filter(model.assignment_id == assignment.id).update(
            {model.assignment_id: None}, synchronize_session=False
        )

    file_path = assignment.file_path
    db.delete(assignment)
    db.commit()
    storage.delete_file(file_path)

    logger.info(f"User {current_user.id} deleted assignment {assignment_id}")

    return {"success": True, "message": "Assignment deleted successfully"}
