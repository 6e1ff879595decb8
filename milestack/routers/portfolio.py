"""
Portfolio router for Milestack.
"""

import logging
from io import BytesIO
from typing import Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.user import User
from milestack.routers.auth import get_current_user
from milestack.schemas.admin import PortfolioExportRequest
from milestack.services.portfolio import portfolio_service, EXPORT_FORMATS


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/projects")
async def get_projects(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Completed assignments and pathways as portfolio projects."""
    projects = portfolio_service.get_projects(db, current_user)

    return {
        "success": True,
        "data": {"projects": projects, "total": len(projects)}
    }


@router.get("/skills")
async def get_skills(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {
        "success": True,
        "data": portfolio_service.get_skills(db, current_user)
    }


@router.get("/timeline")
async def get_timeline(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {
        "success": True,
        "data": {"timeline": portfolio_service.get_timeline(db, current_user)}
    }


@router.get("/achievements")
async def get_achievement_gallery(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    gallery = portfolio_service.get_achievement_gallery(db, current_user)

    return {
        "success": True,
        "data": {"achievements": gallery, "total": len(gallery)}
    }


@router.post("/export")
async def export_portfolio(
    request_data: PortfolioExportRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Download the portfolio as a PDF, a static web site or a GitHub README.
    """
    if request_data.format not in EXPORT_FORMATS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid export format. Use one of: {', '.join(EXPORT_FORMATS)}"
        )

    result = portfolio_service.export(db, current_user, request_data.format)
    headers = {"Content-Disposition": f"attachment; filename={result['filename']}"}

    logger.info(f"User {current_user.id} exported portfolio as {request_data.format}")

    if isinstance(result["content"], BytesIO):
        return StreamingResponse(result["content"], media_type=result["media_type"], headers=headers)
    return Response(content=result["content"], media_type=result["media_type"], headers=headers)


@router.get("/website/{project_id}")
async def get_project_website(
    project_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Rendered HTML and stylesheet for one completed project."""
    website = portfolio_service.project_website(db, current_user, project_id)
    if website is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Project not found"
        )

    return {
        "success": True,
        "data": website
    }
