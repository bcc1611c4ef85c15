"""
API Router
==========
Main API router combining all endpoint modules.
"""

from fastapi import APIRouter

from voicegate.api.endpoints import calls, cron, health

api_router = APIRouter()

# Include endpoint routers
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(calls.router, prefix="/v1", tags=["Calls"])
api_router.include_router(cron.router, prefix="/cron", tags=["Cron"])
