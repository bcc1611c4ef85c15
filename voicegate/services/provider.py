"""
Voice Provider Client
=====================
Async client for the Retell voice API: call creation, call status and
phone number lookup.
"""

import asyncio
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from voicegate.config import settings

logger = structlog.get_logger()


class ProviderError(Exception):
    """The provider rejected a request, could not be reached, or answered garbage."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """The provider did not answer within the configured timeout."""


@dataclass
class CreatedCall:
    """A call created at the provider."""

    call_id: str
    access_token: Optional[str] = None


@dataclass
class CallStatus:
    """Provider-side status of a call."""

    call_id: str
    status: str
    duration_ms: Optional[int] = None

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.duration_ms is None:
            return None
        return self.duration_ms // 1000


def dynamic_variables(metadata: dict[str, Any]) -> dict[str, str]:
    """Provider template variables must be strings; nulls are dropped."""
    return {key: str(value) for key, value in metadata.items() if value is not None}


def _expect_object(data: Any, path: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        logger.error("Unexpected provider response shape", path=path)
        raise ProviderError("Invalid response from voice provider")
    return data


def _call_id(data: dict[str, Any]) -> str:
    call_id = data.get("call_id")
    if not call_id or not isinstance(call_id, str):
        logger.error("Provider response missing call_id", response=data)
        raise ProviderError("Voice provider response missing call_id")
    return call_id


def _milliseconds(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ProviderError("Invalid call timing from voice provider") from e


class RetellClient:
    """
    Client for the Retell voice API.

    Every request carries the widget's own API key and the configured hard
    timeout, which bounds the whole exchange rather than each network phase.
    Call creation is never retried since each attempt can place a billable
    call.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or settings.provider_timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.provider_base_url,
            timeout=self.timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        api_key: str,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    method,
                    path,
                    json=json,
                    headers={"Authorization": f"Bearer {api_key}"},
                ),
                timeout=self.timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            logger.error("Provider request timed out", path=path)
            raise ProviderTimeoutError("Voice provider timeout") from e
        except httpx.HTTPError as e:
            logger.error("Provider request failed", path=path, error=str(e))
            raise ProviderError("Voice provider unreachable") from e

        if response.is_error:
            message = response.reason_phrase
            with suppress(ValueError, AttributeError):
                message = response.json().get("message") or message
            logger.error(
                "Provider returned error",
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise ProviderError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            logger.error(
                "Provider returned invalid JSON",
                path=path,
                status_code=response.status_code,
            )
            raise ProviderError("Invalid response from voice provider") from e

    async def create_web_call(
        self,
        api_key: str,
        agent_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> CreatedCall:
        """Create a browser call and return its ID and access token."""
        metadata = metadata or {}
        path = "/v2/create-web-call"
        data = _expect_object(
            await self._request(
                "POST",
                path,
                api_key,
                json={
                    "agent_id": agent_id,
                    "metadata": metadata,
                    "retell_llm_dynamic_variables": dynamic_variables(metadata),
                },
            ),
            path,
        )
        return CreatedCall(call_id=_call_id(data), access_token=data.get("access_token"))

    async def create_phone_call(
        self,
        api_key: str,
        agent_id: str,
        from_number: str,
        to_number: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> CreatedCall:
        """Place an outbound phone call from the widget's number."""
        metadata = metadata or {}
        path = "/v2/create-phone-call"
        data = _expect_object(
            await self._request(
                "POST",
                path,
                api_key,
                json={
                    "agent_id": agent_id,
                    "from_number": from_number,
                    "to_number": to_number,
                    "metadata": metadata,
                    "retell_llm_dynamic_variables": dynamic_variables(metadata),
                },
            ),
            path,
        )
        return CreatedCall(call_id=_call_id(data))

    async def get_call(self, api_key: str, call_id: str) -> CallStatus:
        """Fetch the status and, once ended, the duration of a call."""
        path = f"/v2/get-call/{call_id}"
        data = _expect_object(await self._request("GET", path, api_key), path)

        duration_ms = _milliseconds(data.get("duration_ms"))
        if duration_ms is None:
            start = _milliseconds(data.get("start_timestamp"))
            end = _milliseconds(data.get("end_timestamp"))
            if start is not None and end is not None:
                duration_ms = max(end - start, 0)

        return CallStatus(
            call_id=call_id,
            status=str(data.get("call_status") or "unknown"),
            duration_ms=duration_ms,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(ProviderTimeoutError),
        reraise=True,
    )
    async def list_phone_numbers(self, api_key: str) -> list[dict[str, Any]]:
        """List the account's phone numbers, retrying on timeouts."""
        data = await self._request("GET", "/list-phone-numbers", api_key)
        if isinstance(data, dict):
            data = data.get("phone_numbers", [])
        if not isinstance(data, list):
            logger.error("Unexpected provider response shape", path="/list-phone-numbers")
            raise ProviderError("Invalid response from voice provider")
        return [entry for entry in data if isinstance(entry, dict)]

    async def find_inbound_number(self, api_key: str, agent_id: str) -> Optional[str]:
        """Return the phone number whose inbound agent is agent_id."""
        for entry in await self.list_phone_numbers(api_key):
            if entry.get("inbound_agent_id") == agent_id:
                return entry.get("phone_number") or entry.get("number")
        return None

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RetellClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
