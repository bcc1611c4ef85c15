"""
API Dependencies
================
Shared FastAPI dependencies and request helpers.
"""

from typing import Annotated
from urllib.parse import urlsplit

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from voicegate.database import get_session
from voicegate.jobs.reconciler import CallReconciler
from voicegate.services.admission import AdmissionController
from voicegate.services.calls import CallService
from voicegate.services.ledger import UsageLedger
from voicegate.services.provider import RetellClient
from voicegate.services.widgets import WidgetRepository


def get_provider(request: Request) -> RetellClient:
    """Provider client created at application startup."""
    return request.app.state.provider


def get_call_service(
    session: Annotated[AsyncSession, Depends(get_session)],
    provider: Annotated[RetellClient, Depends(get_provider)],
) -> CallService:
    controller = AdmissionController(UsageLedger(session), WidgetRepository(session))
    return CallService(controller, provider)


def get_widget_repository(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> WidgetRepository:
    return WidgetRepository(session)


def get_reconciler(
    provider: Annotated[RetellClient, Depends(get_provider)],
) -> CallReconciler:
    return CallReconciler(provider=provider)


def _origin_of(url: str | None) -> str | None:
    if not url:
        return None
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def request_origin(request: Request, same_origin_fallback: bool = False) -> str | None:
    """
    Origin of the embedding page.

    Falls back to the Referer's origin, then optionally to the request's own
    host for same-origin requests that carry no Origin header.
    """
    origin = request.headers.get("origin")
    if origin and origin != "null":
        return origin

    referer_origin = _origin_of(request.headers.get("referer"))
    if referer_origin:
        return referer_origin

    if same_origin_fallback:
        host = request.headers.get("host")
        if host:
            proto = request.headers.get("x-forwarded-proto", request.url.scheme or "http")
            return f"{proto}://{host}"

    return None
