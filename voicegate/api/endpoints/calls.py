"""
Call Endpoints
==============
Public endpoints used by embedded widgets.
"""

from typing import Annotated, NoReturn
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from voicegate.api.deps import get_call_service, get_widget_repository, request_origin
from voicegate.core.domains import get_domain_matcher
from voicegate.core.policy import CallType, DenialReason, parse_call_type
from voicegate.schemas.calls import (
    DefaultMetadata,
    OutboundCallRequest,
    OutboundCallResponse,
    PhoneLookupResponse,
    RegisterCallRequest,
    RegisterCallResponse,
    WidgetConfigResponse,
)
from voicegate.services.admission import AdmissionError, AdmissionResult
from voicegate.services.calls import (
    CallService,
    WidgetConfigurationError,
    normalize_phone_number,
)
from voicegate.services.provider import ProviderError, ProviderTimeoutError
from voicegate.services.widgets import WidgetLookupError, WidgetRepository

router = APIRouter()
logger = structlog.get_logger()

DENIAL_STATUS = {
    DenialReason.WIDGET_UNKNOWN: status.HTTP_404_NOT_FOUND,
    DenialReason.CALL_TYPE_UNSUPPORTED: status.HTTP_400_BAD_REQUEST,
    DenialReason.DOMAIN_UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    DenialReason.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    DenialReason.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    DenialReason.BUDGET_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
}

PROVIDER_ERRORS = {
    400: (status.HTTP_400_BAD_REQUEST, "Invalid request to voice provider"),
    401: (status.HTTP_401_UNAUTHORIZED, "Invalid API credentials"),
    402: (status.HTTP_402_PAYMENT_REQUIRED, "Insufficient credits"),
    404: (status.HTTP_404_NOT_FOUND, "Agent not found"),
}


def _error(status_code: int, message: str, **extra) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": message, **extra})


def _raise_denial(admission: AdmissionResult) -> NoReturn:
    raise _error(
        DENIAL_STATUS[admission.reason],
        admission.message,
        reason=admission.reason.value,
    )


def _raise_provider_error(e: ProviderError) -> NoReturn:
    if isinstance(e, ProviderTimeoutError):
        raise _error(status.HTTP_408_REQUEST_TIMEOUT, "Voice provider timeout") from e
    status_code, message = PROVIDER_ERRORS.get(
        e.status_code,
        (status.HTTP_502_BAD_GATEWAY, "Failed to create voice call. Please try again."),
    )
    raise _error(status_code, message, details=str(e)) from e


def _require_origin(request: Request) -> str:
    origin = request_origin(request)
    if not origin:
        raise _error(status.HTTP_400_BAD_REQUEST, "Missing origin header")
    return origin


@router.post(
    "/register-call",
    response_model=RegisterCallResponse,
    summary="Register a web call",
    description="Admit a widget request and create a browser call at the voice provider",
)
async def register_call(
    body: RegisterCallRequest,
    request: Request,
    service: Annotated[CallService, Depends(get_call_service)],
) -> RegisterCallResponse:
    """
    Register a browser call for an embedded widget.

    Runs domain, access-code, rate-limit and daily-budget checks, reserves a
    call slot, then creates the call at the provider.
    """
    origin = _require_origin(request)

    try:
        outcome = await service.register_web_call(
            body.widget_id, origin, body.metadata, body.access_code
        )
    except AdmissionError as e:
        logger.error("Admission failed", widget_id=str(body.widget_id), error=str(e))
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Service temporarily unavailable") from e
    except WidgetConfigurationError as e:
        raise _error(status.HTTP_400_BAD_REQUEST, str(e)) from e
    except ProviderError as e:
        _raise_provider_error(e)

    if not outcome.admission.admitted:
        _raise_denial(outcome.admission)

    return RegisterCallResponse(
        call_id=outcome.call.call_id,
        access_token=outcome.call.access_token,
    )


@router.post(
    "/outbound-call",
    response_model=OutboundCallResponse,
    summary="Place an outbound call",
    description="Admit a widget request and have the agent call the visitor's phone",
)
async def outbound_call(
    body: OutboundCallRequest,
    request: Request,
    service: Annotated[CallService, Depends(get_call_service)],
) -> OutboundCallResponse:
    """
    Place an outbound phone call to the visitor.

    The phone number must include a country code; spaces, dashes and
    parentheses are ignored.
    """
    phone_number = normalize_phone_number(body.phone_number)
    if phone_number is None:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "Invalid phone number format",
            details="Please enter a valid phone number with country code (e.g., +1234567890)",
        )

    origin = _require_origin(request)

    try:
        outcome = await service.place_outbound_call(
            body.widget_id, origin, phone_number, body.metadata, body.access_code
        )
    except AdmissionError as e:
        logger.error("Admission failed", widget_id=str(body.widget_id), error=str(e))
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Service temporarily unavailable") from e
    except WidgetConfigurationError as e:
        raise _error(status.HTTP_400_BAD_REQUEST, str(e)) from e
    except ProviderError as e:
        _raise_provider_error(e)

    if not outcome.admission.admitted:
        _raise_denial(outcome.admission)

    return OutboundCallResponse(call_id=outcome.call.call_id)


@router.get(
    "/phone-lookup",
    response_model=PhoneLookupResponse,
    summary="Look up the inbound phone number",
    description="Find the phone number routed to an inbound-phone widget's agent",
)
async def phone_lookup(
    request: Request,
    service: Annotated[CallService, Depends(get_call_service)],
    widget_id: Annotated[UUID, Query(description="Widget ID")],
    access_code: Annotated[str | None, Query(max_length=255)] = None,
) -> PhoneLookupResponse:
    """Return the number visitors should dial for an inbound-phone widget."""
    origin = _require_origin(request)

    try:
        admission, number = await service.lookup_inbound_number(widget_id, origin, access_code)
    except AdmissionError as e:
        logger.error("Admission failed", widget_id=str(widget_id), error=str(e))
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Service temporarily unavailable") from e
    except ProviderError as e:
        _raise_provider_error(e)

    if not admission.admitted:
        _raise_denial(admission)

    if not number:
        raise _error(
            status.HTTP_400_BAD_REQUEST,
            "No phone number linked to this agent.",
            details="Link a phone number to this agent in the voice provider dashboard.",
        )

    widget = admission.widget
    return PhoneLookupResponse(
        phone_number=number,
        display_text=widget.display_text or f"Call {number}",
        widget_type=widget.widget_type,
    )


@router.get(
    "/widget-config",
    response_model=WidgetConfigResponse,
    summary="Get public widget configuration",
    description="Presentation settings for an embedded widget on an authorized domain",
)
async def widget_config(
    request: Request,
    widgets: Annotated[WidgetRepository, Depends(get_widget_repository)],
    widget_id: Annotated[UUID, Query(description="Widget ID")],
) -> WidgetConfigResponse:
    """Return non-secret widget settings after checking the origin."""
    try:
        widget = await widgets.get(widget_id)
    except WidgetLookupError as e:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Service temporarily unavailable") from e

    if widget is None:
        raise _error(status.HTTP_404_NOT_FOUND, "Widget not found", reason="widget_unknown")

    origin = request_origin(request, same_origin_fallback=True)
    if not get_domain_matcher().is_authorized(origin, widget.allowed_domain):
        logger.info("Domain not authorized", widget_id=str(widget_id), origin=origin)
        raise _error(
            status.HTTP_403_FORBIDDEN,
            "Domain not authorized",
            reason=DenialReason.DOMAIN_UNAUTHORIZED.value,
        )

    outbound_number = None
    if parse_call_type(widget.widget_type) is CallType.OUTBOUND_PHONE:
        outbound_number = widget.outbound_phone_number

    return WidgetConfigResponse(
        id=widget.id,
        widget_type=widget.widget_type,
        button_text=widget.button_text,
        display_text=widget.display_text,
        agent_persona=widget.agent_persona,
        opening_message=widget.opening_message,
        require_access_code=widget.require_access_code,
        default_metadata=DefaultMetadata(**widget.default_metadata),
        outbound_phone_number=outbound_number,
    )
