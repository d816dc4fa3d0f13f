"""Tests for FabitsAPIClient: bearer attachment and retry-once on 401/403."""
import asyncio

import httpx
import pytest

from fabits_mcp.errors import APIError, NotAuthenticated, SessionExpired

from .conftest import PAYMENT_PATH, REFRESH_PATH

ENDPOINT = PAYMENT_PATH


def _bearer(request: httpx.Request) -> str:
    return request.headers.get("Authorization", "")


class TestRequest:
    @pytest.mark.asyncio
    async def test_attaches_bearer(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, (200, {"status": "ok"}))

        assert await api_client.post(ENDPOINT, json_body={"a": 1}) == {"status": "ok"}

        (call,) = platform.calls(ENDPOINT)
        assert _bearer(call) == "Bearer b1"

    @pytest.mark.asyncio
    async def test_get_passes_params(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, (200, {"status": "ok"}))

        await api_client.get(ENDPOINT, params={"page": 2})

        (call,) = platform.calls(ENDPOINT)
        assert call.method == "GET"
        assert call.url.params["page"] == "2"

    @pytest.mark.asyncio
    async def test_empty_body_is_none(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, lambda request: httpx.Response(204))
        assert await api_client.post(ENDPOINT) is None

    @pytest.mark.asyncio
    async def test_not_logged_in_sends_nothing(self, api_client, platform):
        platform.script(ENDPOINT, (200, {}))

        with pytest.raises(NotAuthenticated):
            await api_client.post(ENDPOINT)

        assert platform.requests == []

    @pytest.mark.asyncio
    async def test_public_post_has_no_bearer(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, (200, {"sent": True}))

        await api_client.post_public(ENDPOINT, json_body={"phoneNumber": "+91"})

        (call,) = platform.calls(ENDPOINT)
        assert "Authorization" not in call.headers


class TestRenewAndRetry:
    @pytest.mark.asyncio
    async def test_expired_bearer_is_renewed_once(self, api_client, platform, store, logged_in):
        platform.script(ENDPOINT, (401, {"message": "jwt expired"}), (200, {"status": "ok"}))
        platform.script(REFRESH_PATH, (200, {"access_token": "b2", "refresh_token": "r2"}))

        assert await api_client.post(ENDPOINT) == {"status": "ok"}

        calls = platform.calls(ENDPOINT)
        assert [_bearer(c) for c in calls] == ["Bearer b1", "Bearer b2"]
        assert len(platform.calls(REFRESH_PATH)) == 1
        assert store.read().token == "b2"

    @pytest.mark.asyncio
    async def test_forbidden_also_triggers_renewal(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, (403, {}), (200, {"status": "ok"}))
        platform.script(REFRESH_PATH, (200, {"access_token": "b2"}))

        assert await api_client.post(ENDPOINT) == {"status": "ok"}
        assert len(platform.calls(REFRESH_PATH)) == 1

    @pytest.mark.asyncio
    async def test_still_unauthorized_after_renewal(self, api_client, platform, store, logged_in):
        platform.script(ENDPOINT, (401, {}))
        platform.script(REFRESH_PATH, (200, {"access_token": "b2"}))

        with pytest.raises(SessionExpired) as exc_info:
            await api_client.post(ENDPOINT)

        assert exc_info.value.reauthenticate is False
        assert len(platform.calls(ENDPOINT)) == 2
        assert len(platform.calls(REFRESH_PATH)) == 1
        # The renewed credentials stay; only the request was refused
        assert store.read().token == "b2"

    @pytest.mark.asyncio
    async def test_rejected_refresh_token_requires_login(self, api_client, platform, store, logged_in):
        platform.script(ENDPOINT, (401, {}))
        platform.script(REFRESH_PATH, (403, {"message": "refresh token expired"}))

        with pytest.raises(SessionExpired) as exc_info:
            await api_client.post(ENDPOINT)

        assert exc_info.value.reauthenticate is True
        assert "login again" in str(exc_info.value)
        assert len(platform.calls(ENDPOINT)) == 1
        assert store.read() is None

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_credentials(self, api_client, platform, store, logged_in):
        platform.script(ENDPOINT, (401, {}))
        platform.script(REFRESH_PATH, (400, {"message": "bad request"}))

        with pytest.raises(SessionExpired) as exc_info:
            await api_client.post(ENDPOINT)

        assert exc_info.value.reauthenticate is False
        assert len(platform.calls(ENDPOINT)) == 1
        assert store.read() == logged_in

    @pytest.mark.asyncio
    async def test_concurrent_expiries_share_one_renewal(self, api_client, platform, logged_in):
        def by_bearer(request):
            if _bearer(request) == "Bearer b2":
                return httpx.Response(200, json={"status": "ok"})
            return httpx.Response(401, json={"message": "jwt expired"})

        platform.script(ENDPOINT, by_bearer)
        platform.script(REFRESH_PATH, (200, {"access_token": "b2"}))

        results = await asyncio.gather(*(api_client.post(ENDPOINT) for _ in range(5)))

        assert results == [{"status": "ok"}] * 5
        assert len(platform.calls(REFRESH_PATH)) == 1
        assert len(platform.calls(ENDPOINT)) == 10

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "replies, outcome, refreshes",
        [
            ([(200, {"n": 1})], {"n": 1}, 0),
            ([(401, {}), (200, {"n": 2})], {"n": 2}, 1),
            ([(403, {}), (500, {"message": "boom"})], APIError, 1),
            ([(401, {}), (403, {})], SessionExpired, 1),
            ([(404, {"message": "missing"})], APIError, 0),
        ],
    )
    async def test_reply_sequences(self, api_client, platform, logged_in, replies, outcome, refreshes):
        platform.script(ENDPOINT, *replies)
        platform.script(REFRESH_PATH, (200, {"access_token": "b2"}))

        if isinstance(outcome, type):
            with pytest.raises(outcome):
                await api_client.post(ENDPOINT)
        else:
            assert await api_client.post(ENDPOINT) == outcome

        assert len(platform.calls(REFRESH_PATH)) == refreshes


class TestErrors:
    @pytest.mark.asyncio
    async def test_client_error_is_passed_through(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, (422, {"message": "orderNo is invalid"}))

        with pytest.raises(APIError) as exc_info:
            await api_client.post(ENDPOINT)

        err = exc_info.value
        assert err.status_code == 422
        assert "orderNo is invalid" in str(err)
        assert err.payload == {"message": "orderNo is invalid"}
        assert platform.calls(REFRESH_PATH) == []

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, (500, {"message": "boom"}), (200, {}))

        with pytest.raises(APIError) as exc_info:
            await api_client.post(ENDPOINT)

        assert exc_info.value.status_code == 500
        assert len(platform.calls(ENDPOINT)) == 1

    @pytest.mark.asyncio
    async def test_network_error(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, httpx.ConnectError("connection refused"))

        with pytest.raises(APIError) as exc_info:
            await api_client.post(ENDPOINT)

        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_non_json_error_body(self, api_client, platform, logged_in):
        platform.script(ENDPOINT, lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(APIError) as exc_info:
            await api_client.post(ENDPOINT)

        assert exc_info.value.status_code == 502
        assert "Bad Gateway" in str(exc_info.value)
