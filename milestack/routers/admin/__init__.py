"""
Admin routers for Milestack.

This module contains all admin-specific API endpoints:
- analytics: Platform and integrity analytics
- users: Users with unresolved fraud flags
- settings: Typed platform settings
- fraud: Fraud detection review and analytics
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from milestack.core.database import get_db
from milestack.models.user import User
from milestack.routers.auth import get_current_user


# Dependency to verify admin access
async def get_current_admin_user(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Verify that the current user has admin privileges.
    """
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return current_user


# Import admin sub-routers
from .analytics import router as analytics_router  # noqa: E402
from .users import router as users_router  # noqa: E402
from .settings import router as settings_router  # noqa: E402
from .fraud import router as fraud_router  # noqa: E402


# Create admin router
admin_router = APIRouter()

# Include all admin sub-routers
admin_router.include_router(
    analytics_router,
    prefix="/analytics",
    tags=["admin-analytics"],
    dependencies=[Depends(get_current_admin_user)]
)

admin_router.include_router(
    users_router,
    prefix="/users",
    tags=["admin-users"],
    dependencies=[Depends(get_current_admin_user)]
)

admin_router.include_router(
    settings_router,
    prefix="/settings",
    tags=["admin-settings"],
    dependencies=[Depends(get_current_admin_user)]
)

admin_router.include_router(
    fraud_router,
    prefix="/fraud-detection",
    tags=["admin-fraud"],
    dependencies=[Depends(get_current_admin_user)]
)


# Admin dashboard endpoint
@admin_router.get("/dashboard")
async def get_admin_dashboard(
    admin_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
) -> dict:
    """
    Get admin dashboard overview with statistics.
    """
    from milestack.models.assignment import Assignment, AnalysisStatus
    from milestack.models.pathway import LearningPathway, PathwayProgress
    from milestack.models.points import FraudDetectionLog
    from milestack.models.ai import AIAssistanceLog, AISession

    # Get user statistics
    total_users = db.query(User).count()
    active_users = db.query(User).filter(User.is_active.is_(True)).count()
    verified_users = db.query(User).filter(User.is_email_verified.is_(True)).count()

    # Get learning statistics
    total_assignments = db.query(Assignment).count()
    analyzed_assignments = db.query(Assignment).filter(
        Assignment.analysis_status == AnalysisStatus.COMPLETE.value
    ).count()
    active_pathways = db.query(LearningPathway).filter(LearningPathway.is_active.is_(True)).count()
    started_pathways = db.query(PathwayProgress).count()
    completed_pathways = db.query(PathwayProgress).filter(PathwayProgress.completed_at.isnot(None)).count()

    pending_reviews = db.query(FraudDetectionLog).filter(
        FraudDetectionLog.reviewed.is_(False),
        FraudDetectionLog.action_taken != "none"
    ).count()

    return {
        "success": True,
        "data": {
            "users": {
                "total": total_users,
                "active": active_users,
                "verified": verified_users
            },
            "assignments": {
                "total": total_assignments,
                "analyzed": analyzed_assignments
            },
            "pathways": {
                "active": active_pathways,
                "started": started_pathways,
                "completed": completed_pathways,
                "completion_rate": round(completed_pathways / started_pathways * 100, 1) if started_pathways else 0
            },
            "ai": {
                "assistance_requests": db.query(AIAssistanceLog).count(),
                "copilot_sessions": db.query(AISession).count()
            },
            "fraud": {
                "pending_reviews": pending_reviews
            },
            "last_login": admin_user.last_login_at.isoformat() if admin_user.last_login_at else None
        }
    }


# Export all routers
__all__ = ["admin_router", "get_current_admin_user"]
