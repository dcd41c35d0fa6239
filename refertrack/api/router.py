"""
API router - aggregates all route modules.
"""
from fastapi import APIRouter
from refertrack.api.auth import router as auth_router
from refertrack.api.referrals import router as referrals_router
from refertrack.api.homeowners import router as homeowners_router
from refertrack.api.dashboard import router as dashboard_router
from refertrack.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(auth_router)
api_router.include_router(referrals_router)
api_router.include_router(homeowners_router)
api_router.include_router(dashboard_router)
api_router.include_router(health_router)
