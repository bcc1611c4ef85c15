"""
Call Helper Tests
=================
Tests for call helpers and slot release when call creation fails.
"""

import pytest
from sqlalchemy import func, select

from voicegate.core.policy import CallType, Check, checks_for, parse_call_type
from voicegate.models.calls import CallLog
from voicegate.services.calls import CallService, metadata_within_limit, normalize_phone_number
from voicegate.services.provider import ProviderError


class TestPhoneNumbers:
    """Tests for phone number normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("+1 555 123 4567", "+15551234567"),
            ("15551234567", "+15551234567"),
            ("+44 (20) 7946-0958", "+442079460958"),
        ],
    )
    def test_valid(self, raw, expected):
        assert normalize_phone_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", "555-1234", "+0555123456", "+1555abc4567", "1" * 16])
    def test_invalid(self, raw):
        assert normalize_phone_number(raw) is None


class TestMetadataLimit:
    """Tests for the serialized metadata size limit."""

    def test_empty(self):
        assert metadata_within_limit(None)
        assert metadata_within_limit({})

    def test_small(self):
        assert metadata_within_limit({"lead_source": "ads"})

    def test_too_large(self):
        assert not metadata_within_limit({"notes": "x" * 2000})


class TestCallTypePolicy:
    """Tests for the checks each call type runs."""

    @pytest.mark.parametrize(
        "call_type", [CallType.INBOUND_WEB, CallType.OUTBOUND_WEB, CallType.OUTBOUND_PHONE]
    )
    def test_call_creating_types_run_every_check(self, call_type):
        assert checks_for(call_type) == frozenset(Check)

    def test_inbound_phone(self):
        assert checks_for(CallType.INBOUND_PHONE) == {Check.DOMAIN, Check.ACCESS_CODE}

    def test_parse_call_type(self):
        assert parse_call_type(None) is CallType.INBOUND_WEB
        assert parse_call_type("outbound_phone") is CallType.OUTBOUND_PHONE
        assert parse_call_type("fax") is None


class TestCallServiceRelease:
    """Tests for slot release when call creation fails."""

    async def test_unexpected_failure_releases_slot(
        self, controller, fake_provider, test_session, make_widget
    ):
        widget = await make_widget()
        fake_provider.create_error = RuntimeError("connection reset by peer")
        service = CallService(controller, fake_provider)

        with pytest.raises(RuntimeError):
            await service.register_web_call(widget.id, "https://example.com")

        result = await test_session.execute(select(func.count(CallLog.id)))
        assert result.scalar_one() == 0

    async def test_provider_error_releases_slot(
        self, controller, fake_provider, test_session, make_widget
    ):
        widget = await make_widget(widget_type="outbound_phone", outbound_phone_number="+15550000000")
        fake_provider.create_error = ProviderError("Invalid response from voice provider")
        service = CallService(controller, fake_provider)

        with pytest.raises(ProviderError):
            await service.place_outbound_call(widget.id, "https://example.com", "+15551234567")

        result = await test_session.execute(select(func.count(CallLog.id)))
        assert result.scalar_one() == 0
