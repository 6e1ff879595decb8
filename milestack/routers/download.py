"""
Assignment download router for Milestack.

Downloads are unlocked by demonstrated learning and always ship with an
academic integrity document.
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.admin import AuditLog, AuditAction
from milestack.models.user import User
from milestack.routers.assignments import get_owned_assignment
from milestack.routers.auth import get_current_user
from milestack.schemas.admin import DownloadGenerateRequest
from milestack.services.downloads import download_service, DOWNLOAD_FORMATS


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{assignment_id}/qualify")
async def check_qualification(
    assignment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Eligibility and missing requirements for downloading an assignment."""
    assignment = get_owned_assignment(db, assignment_id, current_user)

    return {
        "success": True,
        "data": download_service.qualify(db, current_user, assignment)
    }


@router.get("/{assignment_id}/preview")
async def preview_integrity_document(
    assignment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    assignment = get_owned_assignment(db, assignment_id, current_user)

    return {
        "success": True,
        "data": download_service.integrity_document(db, current_user, assignment)
    }


@router.post("/{assignment_id}/generate")
async def generate_download(
    assignment_id: int,
    request_data: DownloadGenerateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Build the download package once every requirement is met.
    """
    if request_data.format not in DOWNLOAD_FORMATS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid format. Use one of: {', '.join(DOWNLOAD_FORMATS)}"
        )

    assignment = get_owned_assignment(db, assignment_id, current_user)

    qualification = download_service.qualify(db, current_user, assignment)
    if not qualification["is_eligible"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "Download requirements not met",
                "missing_requirements": qualification["missing_requirements"],
            }
        )

    package = download_service.generate(db, current_user, assignment, request_data.format)

    db.add(AuditLog.log_action(
        action=AuditAction.EXPORT,
        resource="assignment",
        user_id=current_user.id,
        resource_id=assignment.id,
        details={"format": request_data.format}
    ))
    db.commit()

    return StreamingResponse(
        package["content"],
        media_type="application/zip",
        headers={"Content-Disposition": f"attachment; filename={package['filename']}"}
    )
