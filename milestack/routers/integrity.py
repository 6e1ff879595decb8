"""
Academic integrity router for Milestack.

Honor code signatures, transparency reports, the integrity dashboard and
report sharing with instructors.
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from email_validator import validate_email, EmailNotValidError
from sqlalchemy.orm import Session

from milestack.core.config import settings
from milestack.core.database import get_db
from milestack.models.integrity import IntegrityReport
from milestack.models.user import User
from milestack.routers.assignments import get_owned_assignment
from milestack.routers.auth import get_current_user, client_ip
from milestack.schemas.privacy import HonorCodeSign, ShareReportRequest, PrivacySettingsUpdate
from milestack.services.email import email_service
from milestack.services.integrity import integrity_service
from milestack.services.privacy import privacy_service


logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/honor/sign", status_code=status.HTTP_201_CREATED)
async def sign_honor_code(
    request_data: HonorCodeSign,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Sign the academic honor code, optionally for one assignment.
    """
    if request_data.assignment_id:
        get_owned_assignment(db, request_data.assignment_id, current_user)

    signature = integrity_service.sign_honor_code(
        db,
        current_user,
        assignment_id=request_data.assignment_id,
        institution=request_data.institution,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    return {
        "success": True,
        "data": {"signature": signature.to_dict()},
        "message": "Honor code signed successfully"
    }


@router.get("/honor")
async def get_honor_signatures(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    signatures = integrity_service.get_signatures(db, current_user.id)

    return {
        "success": True,
        "data": {
            "signatures": [s.to_dict() for s in signatures],
            "has_signed": bool(signatures),
            "current_version": settings.HONOR_CODE_VERSION,
        }
    }


@router.get("/privacy")
async def get_privacy_settings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {
        "success": True,
        "data": {"settings": privacy_service.get_settings(db, current_user.id).to_dict()}
    }


@router.put("/privacy")
async def update_privacy_settings(
    request_data: PrivacySettingsUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    record = privacy_service.update_settings(
        db,
        current_user.id,
        request_data.model_dump(exclude_unset=True, exclude_none=True),
        client_ip(request)
    )

    return {
        "success": True,
        "data": {"settings": record.to_dict()},
        "message": "Privacy settings updated"
    }


@router.get("/report/{assignment_id}")
async def get_report(
    assignment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Generate and store a transparency report for an assignment.
    """
    assignment = get_owned_assignment(db, assignment_id, current_user)
    report = integrity_service.store_report(db, current_user, assignment)

    logger.info(f"User {current_user.id} generated integrity report {report.id}")

    return {"success": True, "data": report.to_dict()}


@router.get("/dashboard")
async def get_dashboard(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {
        "success": True,
        "data": integrity_service.dashboard(db, current_user)
    }


@router.get("/export")
async def export_record(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Full integrity record as JSON."""
    return {
        "success": True,
        "data": integrity_service.export_record(db, current_user)
    }


@router.post("/share/{assignment_id}")
async def share_report(
    assignment_id: int,
    request_data: ShareReportRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Share a transparency report with an instructor by e-mail.
    """
    if not request_data.instructor_email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Instructor email is required"
        )
    try:
        instructor_email = validate_email(request_data.instructor_email, check_deliverability=False).normalized
    except EmailNotValidError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid instructor email address"
        )

    assignment = get_owned_assignment(db, assignment_id, current_user)
    report = integrity_service.store_report(db, current_user, assignment, share_with=instructor_email)
    report_url = f"{settings.FRONTEND_URL}/integrity/shared/{report.share_token}"

    background_tasks.add_task(
        email_service.send_report_shared_email,
        instructor_email,
        current_user.full_name,
        assignment.title,
        report_url
    )

    logger.info(f"User {current_user.id} shared integrity report {report.id}")

    return {
        "success": True,
        "data": {
            "report_id": report.id,
            "report_url": report_url,
            "shared_with": instructor_email,
        },
        "message": "Report shared with instructor"
    }


@router.get("/shared/{share_token}")
async def get_shared_report(
    share_token: str,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Public view of a shared report."""
    report = db.query(IntegrityReport).filter(IntegrityReport.share_token == share_token).first()
    if not report:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Report not found"
        )

    student = db.query(User).filter(User.id == report.user_id).first()

    return {
        "success": True,
        "data": {
            **report.to_dict(),
            "student_name": student.full_name if student else None,
        }
    }
