"""Shared pytest fixtures for Fabits MCP tests.

FakePlatform is a scripted stand-in for the Fabits API served through
httpx.MockTransport, so no test touches the network.
"""
import asyncio
from typing import Any, Callable, Union

import httpx
import jwt
import pytest

from fabits_mcp.api_client import FabitsAPIClient
from fabits_mcp.config import ENDPOINTS
from fabits_mcp.credential_store import CredentialStore
from fabits_mcp.models import CredentialRecord
from fabits_mcp.token_manager import TokenManager

BASE_URL = "https://api.fabits.test"
REFRESH_PATH = ENDPOINTS["refresh_token"]
LOGOUT_PATH = ENDPOINTS["logout"]
PAYMENT_PATH = ENDPOINTS["payment_status"]
MANDATE_PATH = ENDPOINTS["mandate_details"]
KYC_PATH = ENDPOINTS["kyc_status"]

# A scripted reply: (status, json body), an exception to raise, or a callable
# building the response from the request.
Reply = Union[tuple, Exception, Callable[[httpx.Request], Any]]


def make_jwt(**claims) -> str:
    return jwt.encode(claims, "test-secret", algorithm="HS256")


class FakePlatform:
    """Replays scripted replies per path; the last reply of a path repeats."""

    def __init__(self):
        self.routes: dict[str, list[Reply]] = {}
        self.requests: list[httpx.Request] = []

    def script(self, path: str, *replies: Reply) -> None:
        self.routes[path] = list(replies)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # Every remote call is a suspension point
        await asyncio.sleep(0)
        replies = self.routes.get(request.url.path)
        if not replies:
            return httpx.Response(404, json={"message": f"no route for {request.url.path}"})
        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            result = reply(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        status, body = reply
        return httpx.Response(status, json=body)

    def client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler), **kwargs)


@pytest.fixture()
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture()
def store(tmp_path) -> CredentialStore:
    return CredentialStore(tmp_path / "fabits" / "auth.json")


@pytest.fixture()
def logged_in(store) -> CredentialRecord:
    record = CredentialRecord(
        token="b1",
        refresh_token="r1",
        phone_number="+919800000001",
        client_code="C1001",
        pan_number="ABCDE1234F",
    )
    store.write(record)
    return record


@pytest.fixture()
def token_manager(store, platform) -> TokenManager:
    return TokenManager(
        store,
        base_url=BASE_URL,
        http_client=platform.client(),
        retry_delay=0,
    )


@pytest.fixture()
def api_client(token_manager, platform) -> FabitsAPIClient:
    return FabitsAPIClient(
        token_manager,
        base_url=BASE_URL,
        http_client=platform.client(base_url=BASE_URL),
    )
