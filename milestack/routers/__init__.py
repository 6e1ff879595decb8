"""
API routers for Milestack.

This module contains all API endpoint routers:
- auth: Authentication endpoints (signup, login, tokens, verification)
- assignments, milestones: Assignment upload, analysis and milestone checks
- pathways, checkpoints: Structured learning pathways
- points, analytics, achievements, leaderboard: Points economy
- ai: Paid AI tutoring
- integrity, privacy, profile: Academic integrity, GDPR and onboarding
- learning_dashboard, portfolio, download: Student views and exports
- admin: Administrative endpoints
"""

from fastapi import APIRouter

# Import individual routers
from .auth import router as auth_router
from .assignments import router as assignments_router
from .milestones import router as milestones_router
from .pathways import router as pathways_router
from .checkpoints import router as checkpoints_router
from .points import router as points_router
from .analytics import router as analytics_router
from .achievements import router as achievements_router
from .leaderboard import router as leaderboard_router
from .ai import router as ai_router
from .integrity import router as integrity_router
from .privacy import router as privacy_router
from .profile import router as profile_router
from .learning_dashboard import router as learning_dashboard_router
from .portfolio import router as portfolio_router
from .download import router as download_router

# Import admin sub-routers
from .admin import admin_router

# Create main API router
api_router = APIRouter()

# Include all routers with their prefixes
api_router.include_router(auth_router, prefix="/auth", tags=["authentication"])
api_router.include_router(assignments_router, prefix="/assignments", tags=["assignments"])
api_router.include_router(milestones_router, prefix="/milestones", tags=["milestones"])
api_router.include_router(pathways_router, prefix="/pathways", tags=["pathways"])
api_router.include_router(checkpoints_router, prefix="/checkpoints", tags=["checkpoints"])
api_router.include_router(points_router, prefix="/points", tags=["points"])
api_router.include_router(analytics_router, prefix="/analytics", tags=["analytics"])
api_router.include_router(achievements_router, prefix="/achievements", tags=["achievements"])
api_router.include_router(leaderboard_router, prefix="/leaderboard", tags=["leaderboard"])
api_router.include_router(ai_router, prefix="/ai", tags=["ai"])
api_router.include_router(integrity_router, prefix="/integrity", tags=["integrity"])
api_router.include_router(privacy_router, prefix="/privacy", tags=["privacy"])
api_router.include_router(profile_router, prefix="/profile", tags=["profile"])
api_router.include_router(learning_dashboard_router, prefix="/learning-dashboard", tags=["learning-dashboard"])
api_router.include_router(portfolio_router, prefix="/portfolio", tags=["portfolio"])
api_router.include_router(download_router, prefix="/download", tags=["download"])
api_router.include_router(admin_router, prefix="/admin", tags=["admin"])

# Export all routers
__all__ = [
    "api_router",
    "auth_router",
    "admin_router"
]
