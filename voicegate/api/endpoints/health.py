"""
Health Check Endpoints
======================
Liveness and readiness checks for Kubernetes.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from voicegate import __version__
from voicegate.database import get_session
from voicegate.models.calls import CallLog

router = APIRouter()
logger = structlog.get_logger()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str
    database: str
    ledger: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Liveness endpoint.
    Returns OK if the service is running.
    """
    return HealthResponse(status="ok", version=__version__)


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> ReadinessResponse:
    """
    Readiness endpoint.

    Admission cannot run without the usage ledger, so the call_logs table
    must be readable as well as the database connection.
    """
    db_status = "disconnected"
    ledger_status = "unreachable"
    try:
        await session.execute(text("SELECT 1"))
        db_status = "connected"
        await session.execute(select(CallLog.id).limit(1))
        ledger_status = "reachable"
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Readiness check failed", database=db_status, error=str(e))

    ready = db_status == "connected" and ledger_status == "reachable"
    return ReadinessResponse(
        status="ok" if ready else "degraded",
        database=db_status,
        ledger=ledger_status,
        version=__version__,
    )
