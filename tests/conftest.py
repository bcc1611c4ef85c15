"""
Test Configuration
==================
Pytest fixtures for Voicegate tests.
"""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from voicegate.api.deps import get_provider
from voicegate.core.domains import DomainMatcher
from voicegate.database import get_session
from voicegate.main import app
from voicegate.models.base import Base
from voicegate.models.calls import CallLog, Widget
from voicegate.services.admission import AdmissionController, AdmissionLimits
from voicegate.services.ledger import UsageLedger
from voicegate.services.provider import (
    CallStatus,
    CreatedCall,
    ProviderError,
)
from voicegate.services.widgets import WidgetRepository

# Test database URL (use SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


class FakeProvider:
    """In-memory stand-in for the voice provider client."""

    def __init__(self):
        self.created: list[dict[str, Any]] = []
        self.statuses: dict[str, CallStatus | Exception] = {}
        self.status_requests: list[str] = []
        self.create_error: Optional[Exception] = None
        self.phone_numbers: list[dict[str, Any]] = []
        self._counter = 0

    def _next_call(self, **request: Any) -> CreatedCall:
        if self.create_error is not None:
            raise self.create_error
        self._counter += 1
        self.created.append(request)
        return CreatedCall(call_id=f"call_{self._counter}", access_token=f"token_{self._counter}")

    async def create_web_call(self, api_key, agent_id, metadata=None) -> CreatedCall:
        return self._next_call(kind="web", api_key=api_key, agent_id=agent_id, metadata=metadata)

    async def create_phone_call(
        self, api_key, agent_id, from_number, to_number, metadata=None
    ) -> CreatedCall:
        return self._next_call(
            kind="phone",
            api_key=api_key,
            agent_id=agent_id,
            from_number=from_number,
            to_number=to_number,
            metadata=metadata,
        )

    async def get_call(self, api_key, call_id) -> CallStatus:
        self.status_requests.append(call_id)
        status = self.statuses.get(call_id)
        if status is None:
            raise ProviderError("not found", status_code=404)
        if isinstance(status, Exception):
            raise status
        return status

    async def list_phone_numbers(self, api_key) -> list[dict[str, Any]]:
        return self.phone_numbers

    async def find_inbound_number(self, api_key, agent_id) -> Optional[str]:
        for entry in self.phone_numbers:
            if entry.get("inbound_agent_id") == agent_id:
                return entry.get("phone_number")
        return None

    async def close(self) -> None:
        pass


@pytest.fixture
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def session_context(session_factory) -> Callable:
    """Session context manager factory for jobs."""

    @asynccontextmanager
    async def _context():
        async with session_factory() as session:
            yield session

    return _context


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def ledger(test_session) -> UsageLedger:
    return UsageLedger(test_session)


@pytest.fixture
def matcher() -> DomainMatcher:
    """Matcher with no development domains, as in production."""
    return DomainMatcher(dev_domains=[], allow_private_networks=False)


@pytest.fixture
def controller(test_session, ledger, matcher) -> AdmissionController:
    return AdmissionController(
        ledger,
        WidgetRepository(test_session),
        matcher=matcher,
        limits=AdmissionLimits(default_calls_per_hour=10),
        clock=lambda: NOW,
    )


@pytest.fixture
def make_widget(test_session) -> Callable:
    """Factory inserting a widget with sensible defaults."""

    async def _make(**overrides: Any) -> Widget:
        values: dict[str, Any] = {
            "user_id": "account-1",
            "name": "Test Widget",
            "widget_type": "inbound_web",
            "retell_api_key": "key_test",
            "agent_id": "agent_test",
            "allowed_domain": "example.com",
            "rate_limit_enabled": True,
            "rate_limit_calls_per_hour": None,
        }
        values.update(overrides)
        widget = Widget(**values)
        test_session.add(widget)
        await test_session.commit()
        return widget

    return _make


@pytest.fixture
def add_call(test_session) -> Callable:
    """Factory inserting a call record directly into the ledger table."""

    async def _add(
        widget: Widget,
        started_at: datetime = NOW - timedelta(minutes=10),
        duration_seconds: Optional[int] = None,
        call_status: str = "ongoing",
        call_id: Optional[str] = "call_existing",
    ) -> CallLog:
        record = CallLog(
            widget_id=widget.id,
            user_id=widget.user_id,
            call_id=call_id,
            call_type=widget.widget_type,
            started_at=started_at,
            duration_seconds=duration_seconds,
            call_status=call_status,
        )
        test_session.add(record)
        await test_session.commit()
        return record

    return _add


@pytest.fixture
async def client(test_session, fake_provider) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database session and provider overrides."""

    async def override_get_session():
        yield test_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_provider] = lambda: fake_provider

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def widget_id_unknown() -> str:
    return str(uuid4())
