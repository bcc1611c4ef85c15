"""
Cron Endpoints
==============
HTTP trigger for call reconciliation, for deployments that schedule jobs
externally.
"""

import hmac
from datetime import datetime, timezone
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, status

from voicegate.api.deps import get_reconciler
from voicegate.config import settings
from voicegate.jobs.reconciler import CallReconciler
from voicegate.schemas.calls import CleanupCounts, ReconcileResponse, SyncCounts
from voicegate.services.ledger import LedgerError

router = APIRouter()
logger = structlog.get_logger()


def _authorized(authorization: str | None) -> bool:
    if not settings.cron_secret or not authorization:
        return False
    expected = f"Bearer {settings.cron_secret}"
    return hmac.compare_digest(authorization.encode(), expected.encode())


@router.get(
    "/sync-call-durations",
    response_model=ReconcileResponse,
    summary="Sync call durations and clean up",
    description="Backfill call durations from the voice provider and prune old call records",
)
async def sync_call_durations(
    reconciler: Annotated[CallReconciler, Depends(get_reconciler)],
    authorization: Annotated[str | None, Header()] = None,
) -> ReconcileResponse:
    """
    Run one reconciliation pass.

    Requires ``Authorization: Bearer <CRON_SECRET>``.
    """
    if not _authorized(authorization):
        logger.warning("Unauthorized cron request")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        summary = await reconciler.run()
    except LedgerError as e:
        logger.error("Cron reconciliation failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Job failed",
        ) from e

    data = summary.to_dict()
    return ReconcileResponse(
        sync=SyncCounts(**data["sync"]),
        cleanup=CleanupCounts(**data["cleanup"]),
        timestamp=datetime.now(timezone.utc),
    )
