"""
Reconciler Tests
================
Tests for call duration sync, orphan sweeping and retention pruning.
"""

from datetime import timedelta

import httpx
import pytest

from voicegate.jobs.reconciler import CallReconciler
from voicegate.models.calls import CallLog
from voicegate.services.provider import CallStatus, ProviderTimeoutError, RetellClient
from tests.conftest import NOW


async def reload(session, record_id):
    return await session.get(CallLog, record_id, populate_existing=True)


class TestDurationSync:
    """Tests for backfilling durations from the provider."""

    @pytest.fixture
    def reconciler(self, session_context, fake_provider) -> CallReconciler:
        return CallReconciler(
            session_context=session_context,
            provider=fake_provider,
            clock=lambda: NOW,
            batch_size=100,
            grace_period=timedelta(minutes=5),
            retention_days=7,
            orphan_timeout=timedelta(minutes=15),
        )

    async def test_ended_call_gets_duration(
        self, reconciler, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        record = await add_call(widget, call_id="call_a")
        fake_provider.statuses["call_a"] = CallStatus("call_a", "ended", duration_ms=125000)

        summary = await reconciler.run()

        assert summary.sync.checked == 1
        assert summary.sync.synced == 1
        assert summary.sync.errors == 0
        stored = await reload(test_session, record.id)
        assert stored.call_status == "ended"
        assert stored.duration_seconds == 125

    async def test_duration_rounds_down(
        self, reconciler, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        record = await add_call(widget, call_id="call_a")
        fake_provider.statuses["call_a"] = CallStatus("call_a", "ended", duration_ms=59999)

        await reconciler.run()

        assert (await reload(test_session, record.id)).duration_seconds == 59

    async def test_recent_calls_wait_for_grace_period(
        self, reconciler, fake_provider, make_widget, add_call
    ):
        widget = await make_widget()
        await add_call(widget, started_at=NOW - timedelta(minutes=2), call_id="call_recent")

        summary = await reconciler.run()

        assert summary.sync.checked == 0
        assert fake_provider.status_requests == []

    async def test_error_status_recorded_without_duration(
        self, reconciler, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        record = await add_call(widget, call_id="call_a")
        fake_provider.statuses["call_a"] = CallStatus("call_a", "error")

        summary = await reconciler.run()

        assert summary.sync.synced == 1
        stored = await reload(test_session, record.id)
        assert stored.call_status == "error"
        assert stored.duration_seconds is None

    async def test_in_progress_call_left_alone(
        self, reconciler, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        record = await add_call(widget, call_id="call_a")
        fake_provider.statuses["call_a"] = CallStatus("call_a", "ongoing")

        summary = await reconciler.run()

        assert summary.sync.checked == 1
        assert summary.sync.synced == 0
        assert (await reload(test_session, record.id)).call_status == "ongoing"

    async def test_provider_errors_counted(
        self, reconciler, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        failing = await add_call(widget, call_id="call_missing")
        timing_out = await add_call(widget, call_id="call_slow")
        good = await add_call(widget, call_id="call_good")
        fake_provider.statuses["call_slow"] = ProviderTimeoutError("Voice provider timeout")
        fake_provider.statuses["call_good"] = CallStatus("call_good", "ended", duration_ms=3000)

        summary = await reconciler.run()

        assert summary.sync.checked == 3
        assert summary.sync.errors == 2
        assert summary.sync.synced == 1
        assert (await reload(test_session, failing.id)).call_status == "ongoing"
        assert (await reload(test_session, timing_out.id)).call_status == "ongoing"
        assert (await reload(test_session, good.id)).duration_seconds == 3

    async def test_malformed_response_isolated(
        self, session_context, test_session, make_widget, add_call
    ):
        """A garbage body for one call is counted and the rest of the batch syncs."""
        widget = await make_widget()
        bad = await add_call(widget, started_at=NOW - timedelta(minutes=30), call_id="call_bad")
        good = await add_call(widget, started_at=NOW - timedelta(minutes=20), call_id="call_good")
        old = await add_call(
            widget, started_at=NOW - timedelta(days=8), call_status="ended", duration_seconds=5
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/call_bad"):
                return httpx.Response(200, text="<html>gateway</html>")
            return httpx.Response(200, json={"call_status": "ended", "duration_ms": 8000})

        provider = RetellClient(base_url="https://provider.test", transport=httpx.MockTransport(handler))
        reconciler = CallReconciler(
            session_context=session_context,
            provider=provider,
            clock=lambda: NOW,
            grace_period=timedelta(minutes=5),
            retention_days=7,
        )

        summary = await reconciler.run()
        await provider.close()

        assert summary.sync.checked == 2
        assert summary.sync.errors == 1
        assert summary.sync.synced == 1
        assert summary.cleanup.deleted == 1
        assert (await reload(test_session, bad.id)).call_status == "ongoing"
        assert (await reload(test_session, good.id)).duration_seconds == 8
        assert await reload(test_session, old.id) is None

    async def test_unexpected_error_isolated(
        self, reconciler, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        await add_call(widget, started_at=NOW - timedelta(minutes=30), call_id="call_broken")
        good = await add_call(widget, started_at=NOW - timedelta(minutes=20), call_id="call_good")
        fake_provider.statuses["call_broken"] = RuntimeError("unexpected")
        fake_provider.statuses["call_good"] = CallStatus("call_good", "ended", duration_ms=2000)

        summary = await reconciler.run()

        assert summary.sync.errors == 1
        assert summary.sync.synced == 1
        assert (await reload(test_session, good.id)).duration_seconds == 2

    async def test_finished_calls_not_polled_again(
        self, reconciler, fake_provider, make_widget, add_call
    ):
        widget = await make_widget()
        await add_call(widget, call_id="call_a")
        await add_call(widget, call_id="call_b", call_status="ended", duration_seconds=40)
        fake_provider.statuses["call_a"] = CallStatus("call_a", "ended", duration_ms=1000)

        await reconciler.run()
        second = await reconciler.run()

        assert fake_provider.status_requests == ["call_a"]
        assert second.sync.checked == 0

    async def test_batch_size(self, session_context, fake_provider, make_widget, add_call):
        widget = await make_widget()
        for i in range(3):
            await add_call(widget, call_id=f"call_{i}")
        reconciler = CallReconciler(
            session_context=session_context,
            provider=fake_provider,
            clock=lambda: NOW,
            batch_size=2,
            grace_period=timedelta(minutes=5),
        )

        summary = await reconciler.run()

        assert summary.sync.checked == 2


class TestCleanup:
    """Tests for orphan sweeping and retention pruning."""

    def make_reconciler(self, session_context, fake_provider, **kwargs) -> CallReconciler:
        options = {
            "clock": lambda: NOW,
            "grace_period": timedelta(minutes=5),
            "retention_days": 7,
            "orphan_timeout": timedelta(minutes=15),
        }
        options.update(kwargs)
        return CallReconciler(session_context=session_context, provider=fake_provider, **options)

    async def test_old_records_pruned(
        self, session_context, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        old = await add_call(
            widget, started_at=NOW - timedelta(days=8), call_status="ended", duration_seconds=30
        )
        recent = await add_call(
            widget, started_at=NOW - timedelta(days=2), call_status="ended", duration_seconds=30
        )

        summary = await self.make_reconciler(session_context, fake_provider).run()

        assert summary.cleanup.deleted == 1
        assert summary.cleanup.retention_days == 7
        assert await reload(test_session, old.id) is None
        assert await reload(test_session, recent.id) is not None

    async def test_orphaned_reservations_released(
        self, session_context, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        orphan = await add_call(widget, started_at=NOW - timedelta(minutes=20), call_id=None)
        fresh = await add_call(widget, started_at=NOW - timedelta(minutes=5), call_id=None)

        summary = await self.make_reconciler(session_context, fake_provider).run()

        assert summary.cleanup.orphans_released == 1
        assert await reload(test_session, orphan.id) is None
        assert await reload(test_session, fresh.id) is not None

    async def test_orphan_sweep_disabled(
        self, session_context, fake_provider, test_session, make_widget, add_call
    ):
        widget = await make_widget()
        orphan = await add_call(widget, started_at=NOW - timedelta(hours=2), call_id=None)

        reconciler = self.make_reconciler(
            session_context, fake_provider, orphan_timeout=timedelta(0)
        )
        summary = await reconciler.run()

        assert summary.cleanup.orphans_released == 0
        assert await reload(test_session, orphan.id) is not None

    async def test_summary_dict(self, session_context, fake_provider):
        summary = await self.make_reconciler(session_context, fake_provider).run()

        assert summary.to_dict() == {
            "sync": {"checked": 0, "synced": 0, "errors": 0},
            "cleanup": {"deleted": 0, "orphans_released": 0, "retention_days": 7},
        }
