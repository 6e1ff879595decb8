"""
Admin platform settings router for Milestack.
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.admin import SystemSettings, AuditLog, AuditAction
from milestack.models.user import User
from milestack.routers.admin import get_current_admin_user
from milestack.schemas.admin import PlatformSettingsUpdate


logger = logging.getLogger(__name__)

router = APIRouter()


def ensure_default_settings(db: Session) -> None:
    """Insert any default setting that is not stored yet."""
    existing = {s.key for s in db.query(SystemSettings.key).all()}
    for item in SystemSettings.get_default_settings():
        if item["key"] not in existing:
            db.add(SystemSettings(**item))
    db.flush()


@router.get("/platform")
async def get_platform_settings(
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    All platform settings grouped by category.
    """
    ensure_default_settings(db)
    db.commit()

    settings_by_category: Dict[str, list] = {}
    for setting in db.query(SystemSettings).order_by(SystemSettings.category, SystemSettings.key).all():
        settings_by_category.setdefault(setting.category, []).append(setting.to_dict())

    return {"success": True, "data": {"settings": settings_by_category}}


@router.put("/platform")
async def update_platform_settings(
    request_data: PlatformSettingsUpdate,
    admin_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    """
    Update several settings at once. Values are validated against each
    setting's type and rules; nothing is saved when one fails.
    """
    ensure_default_settings(db)

    updated = {}
    for key, value in request_data.settings.items():
        setting = db.query(SystemSettings).filter(SystemSettings.key == key).first()
        if not setting:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Setting not found: {key}"
            )
        if not setting.is_editable:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Setting cannot be edited: {key}"
            )

        old_value = setting.get_typed_value()
        try:
            setting.set_typed_value(value)
        except ValueError as e:
            db.rollback()
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(e)
            )
        setting.last_modified_by = admin_user.id
        updated[key] = {"old_value": old_value, "new_value": setting.get_typed_value()}

    db.add(AuditLog.log_action(
        action=AuditAction.SETTINGS_CHANGE,
        resource="system_settings",
        user_id=admin_user.id,
        details=updated
    ))
    db.commit()

    logger.info(f"Admin {admin_user.id} updated platform settings: {sorted(updated.keys())}")

    return {
        "success": True,
        "data": {"updated": updated},
        "message": "Settings updated successfully"
    }
