"""
Privacy and GDPR router for Milestack.

Privacy settings, consent records, data exports and deletion requests.
Exports and deletions are processed in background tasks.
"""

import logging
import os
from typing import Dict, Any
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.privacy import DataExportRequest, DataDeletionRequest, ExportFormat, RequestStatus
from milestack.models.user import User
from milestack.routers.auth import get_current_user, client_ip
from milestack.schemas.privacy import (
    PrivacySettingsUpdate, ConsentRequest, ConsentWithdraw,
    DataExportCreate, DataDeletionCreate
)
from milestack.services.privacy import privacy_service, DATA_CATEGORIES, DELETION_CATEGORIES


logger = logging.getLogger(__name__)

router = APIRouter()

EXPORT_MEDIA_TYPES = {
    ExportFormat.JSON.value: "application/json",
    ExportFormat.CSV.value: "text/csv",
    ExportFormat.PDF.value: "application/pdf",
}


def get_owned_export(db: Session, request_id: int, user: User) -> DataExportRequest:
    export = db.query(DataExportRequest).filter(
        DataExportRequest.id == request_id,
        DataExportRequest.user_id == user.id
    ).first()
    if not export:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Export request not found"
        )
    return export


@router.get("/settings")
async def get_settings(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {
        "success": True,
        "data": {"settings": privacy_service.get_settings(db, current_user.id).to_dict()}
    }


@router.put("/settings")
async def update_settings(
    request_data: PrivacySettingsUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """Partial update of privacy settings. Omitted fields are kept."""
    changes = request_data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No settings provided"
        )

    record = privacy_service.update_settings(db, current_user.id, changes, client_ip(request))

    return {
        "success": True,
        "data": {"settings": record.to_dict()},
        "message": "Privacy settings updated"
    }


@router.post("/consent", status_code=status.HTTP_201_CREATED)
async def record_consent(
    request_data: ConsentRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if not request_data.consent_type or request_data.granted is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Consent type and granted are required"
        )

    record = privacy_service.record_consent(
        db,
        current_user.id,
        request_data.consent_type,
        request_data.granted,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    return {"success": True, "data": {"consent": record.to_dict()}}


@router.delete("/consent")
async def withdraw_consent(
    request_data: ConsentWithdraw,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    if not request_data.consent_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Consent type is required"
        )

    record = privacy_service.record_consent(
        db,
        current_user.id,
        request_data.consent_type,
        False,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    return {
        "success": True,
        "data": {"consent": record.to_dict()},
        "message": f"Consent for {request_data.consent_type} withdrawn"
    }


@router.get("/consent")
async def consent_history(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    records = privacy_service.consent_history(db, current_user.id)

    return {
        "success": True,
        "data": {"consents": [r.to_dict() for r in records], "total": len(records)}
    }


@router.post("/export", status_code=status.HTTP_202_ACCEPTED)
async def request_export(
    request_data: DataExportCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Request an export of the user's data as JSON, CSV or PDF.
    """
    if request_data.format not in EXPORT_MEDIA_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid export format. Use one of: {', '.join(EXPORT_MEDIA_TYPES)}"
        )
    invalid = [c for c in request_data.data_categories if c not in DATA_CATEGORIES]
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid data categories: {', '.join(invalid)}"
        )

    categories = request_data.data_categories or list(DATA_CATEGORIES)
    export = privacy_service.create_export_request(
        db, current_user.id, request_data.format, categories, client_ip(request)
    )
    background_tasks.add_task(privacy_service.process_export, export.id)

    logger.info(f"User {current_user.id} requested {request_data.format} data export {export.id}")

    return {
        "success": True,
        "data": {"export": export.to_dict()},
        "message": "Data export requested. It will be ready shortly."
    }


@router.get("/export/{request_id}")
async def export_status(
    request_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    export = get_owned_export(db, request_id, current_user)

    return {"success": True, "data": {"export": export.to_dict()}}


@router.get("/export/{request_id}/download")
async def download_export(
    request_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    export = get_owned_export(db, request_id, current_user)

    if export.status != RequestStatus.COMPLETED.value or not export.file_path:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Export is not ready"
        )
    if export.is_expired or not os.path.exists(export.file_path):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Export has expired"
        )

    privacy_service.audit(db, current_user.id, "export_downloaded", {"request_id": export.id})
    db.commit()

    return FileResponse(
        export.file_path,
        media_type=EXPORT_MEDIA_TYPES[export.export_format],
        filename=f"milestack-data-export-{export.id}.{export.export_format}"
    )


@router.post("/delete", status_code=status.HTTP_202_ACCEPTED)
async def request_deletion(
    request_data: DataDeletionCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Request deletion of data categories, or of the whole account with "all".
    """
    if not request_data.reason or not request_data.reason.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reason is required"
        )
    invalid = [c for c in request_data.data_categories if c not in DELETION_CATEGORIES]
    if invalid or not request_data.data_categories:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid data categories. Use any of: {', '.join(DELETION_CATEGORIES)}"
        )

    deletion = privacy_service.create_deletion_request(
        db,
        current_user.id,
        request_data.reason.strip(),
        request_data.data_categories,
        client_ip(request)
    )
    background_tasks.add_task(privacy_service.process_deletion, deletion.id)

    logger.warning(f"User {current_user.id} requested deletion of {request_data.data_categories}")

    return {
        "success": True,
        "data": {"deletion": deletion.to_dict()},
        "message": "Data deletion requested"
    }


@router.get("/delete/{request_id}")
async def deletion_status(
    request_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    deletion = db.query(DataDeletionRequest).filter(
        DataDeletionRequest.id == request_id,
        DataDeletionRequest.user_id == current_user.id
    ).first()
    if not deletion:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Deletion request not found"
        )

    return {"success": True, "data": {"deletion": deletion.to_dict()}}


@router.get("/compliance")
async def compliance_report(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    return {
        "success": True,
        "data": privacy_service.compliance_report(db, current_user.id)
    }


@router.get("/audit-log")
async def audit_log(
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    entries = privacy_service.audit_log(db, current_user.id, limit=limit)

    return {
        "success": True,
        "data": {"entries": [e.to_dict() for e in entries], "total": len(entries)}
    }
