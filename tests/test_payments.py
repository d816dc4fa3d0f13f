"""Tests for payment confirmation polling."""
import json

import pytest

from fabits_mcp.errors import SessionExpired
from fabits_mcp.models import PaymentStatus
from fabits_mcp.payments import confirm_payment, fetch_payment_status
from fabits_mcp.polling import PollOutcome

from .conftest import PAYMENT_PATH, REFRESH_PATH

PENDING = (200, {"status": "SUCCESS", "data": "102|payment awaiting confirmation"})
APPROVED = (200, {"status": "SUCCESS", "data": "100|payment approved"})
REJECTED = (200, {"status": "SUCCESS", "data": "101|payment rejected by bank"})


class TestPaymentStatus:
    @pytest.mark.parametrize(
        "data, approved, rejected",
        [
            ("100|approved", True, False),
            ("101|rejected", False, True),
            ("102|pending", False, False),
            ("order 7: 100|approved", True, False),
            ("100", False, False),
            (None, False, False),
        ],
    )
    def test_markers(self, data, approved, rejected):
        status = PaymentStatus(data=data)
        assert status.approved is approved
        assert status.rejected is rejected


class TestFetchPaymentStatus:
    @pytest.mark.asyncio
    async def test_request_body(self, api_client, platform, logged_in):
        platform.script(PAYMENT_PATH, PENDING)

        status = await fetch_payment_status(api_client, "C1001", ["ORD1", "ORD2"])

        assert status.data == "102|payment awaiting confirmation"
        (call,) = platform.calls(PAYMENT_PATH)
        assert call.method == "POST"
        assert json.loads(call.content) == {"clientCode": "C1001", "orderNo": "ORD1,ORD2"}

    @pytest.mark.asyncio
    async def test_empty_body(self, api_client, platform, logged_in):
        platform.script(PAYMENT_PATH, (200, {}))

        status = await fetch_payment_status(api_client, "C1001", ["ORD1"])

        assert status.data is None
        assert not status.approved


class TestConfirmPayment:
    @pytest.mark.asyncio
    async def test_approved_after_pending(self, api_client, platform, logged_in):
        platform.script(PAYMENT_PATH, PENDING, PENDING, APPROVED)

        result = await confirm_payment(api_client, "C1001", ["ORD1"], max_attempts=5, interval=0)

        assert result.outcome == PollOutcome.SUCCESS
        assert result.attempts == 3
        assert result.data.approved
        assert result.reference == "payment ORD1"
        assert len(platform.calls(PAYMENT_PATH)) == 3

    @pytest.mark.asyncio
    async def test_rejected(self, api_client, platform, logged_in):
        platform.script(PAYMENT_PATH, PENDING, REJECTED)

        result = await confirm_payment(api_client, "C1001", ["ORD1"], max_attempts=5, interval=0)

        assert result.outcome == PollOutcome.FAILURE
        assert "rejected by bank" in result.data.data

    @pytest.mark.asyncio
    async def test_still_pending(self, api_client, platform, logged_in):
        platform.script(PAYMENT_PATH, PENDING)

        result = await confirm_payment(api_client, "C1001", ["ORD1"], max_attempts=4, interval=0)

        assert result.outcome == PollOutcome.TIMEOUT
        assert result.attempts == 4
        assert len(platform.calls(PAYMENT_PATH)) == 4

    @pytest.mark.asyncio
    async def test_token_renewed_mid_poll(self, api_client, platform, store, logged_in):
        platform.script(PAYMENT_PATH, PENDING, (401, {"message": "jwt expired"}), APPROVED)
        platform.script(REFRESH_PATH, (200, {"access_token": "b2"}))

        result = await confirm_payment(api_client, "C1001", ["ORD1"], max_attempts=5, interval=0)

        assert result.outcome == PollOutcome.SUCCESS
        assert result.attempts == 2
        assert len(platform.calls(REFRESH_PATH)) == 1
        assert store.read().token == "b2"

    @pytest.mark.asyncio
    async def test_server_errors_do_not_stop_polling(self, api_client, platform, logged_in):
        platform.script(PAYMENT_PATH, (500, {"message": "boom"}), PENDING, APPROVED)

        result = await confirm_payment(api_client, "C1001", ["ORD1"], max_attempts=5, interval=0)

        assert result.outcome == PollOutcome.SUCCESS
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_expired_session_aborts(self, api_client, platform, logged_in):
        platform.script(PAYMENT_PATH, (401, {}))
        platform.script(REFRESH_PATH, (403, {}))

        with pytest.raises(SessionExpired):
            await confirm_payment(api_client, "C1001", ["ORD1"], max_attempts=5, interval=0)

        assert len(platform.calls(PAYMENT_PATH)) == 1

    @pytest.mark.asyncio
    async def test_requires_order_numbers(self, api_client, platform, logged_in):
        with pytest.raises(ValueError):
            await confirm_payment(api_client, "C1001", [], max_attempts=5, interval=0)
        assert platform.requests == []
