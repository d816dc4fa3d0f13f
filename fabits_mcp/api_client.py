"""API Client for the Fabits platform.

Every authenticated call goes through FabitsAPIClient.request(), which attaches
the current bearer token and, when the platform answers 401/403, renews the
token once through the TokenManager and retries the call once.
"""
import logging
from typing import Any, Optional

import httpx

from .config import FABITS_BASE_URL, REQUEST_TIMEOUT_SECONDS
from .errors import APIError, RenewalCredentialExpired, RenewalFailed, SessionExpired
from .token_manager import TokenManager

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUSES = (401, 403)

SESSION_GONE_MESSAGE = (
    "🔐 Session Expired\n\n"
    "Your refresh token has expired. Please login again:\n"
    "1. Use fabits_request_otp with your phone number\n"
    "2. Use fabits_verify_otp with the OTP you receive"
)

ACCESS_TOKEN_EXPIRED_MESSAGE = (
    "🔐 Access Token Expired\n\n"
    "Your access token has expired. Try:\n"
    "1. Use fabits_refresh_token to refresh your session\n"
    "2. If that fails, login again with fabits_request_otp"
)


def _error_message(response: httpx.Response) -> tuple[str, Any]:
    """Pull the platform's error message out of a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason_phrase, response.text
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"]), payload
    return response.text or response.reason_phrase, payload


class FabitsAPIClient:
    """Client for the Fabits platform API.

    This client:
    - Attaches the user's bearer token to every authenticated request
    - Renews the token once and retries once when the platform rejects it
    - Passes every other error through as APIError without retrying
    """

    def __init__(
        self,
        token_manager: TokenManager,
        *,
        base_url: str = FABITS_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.token_manager = token_manager
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _send(
        self,
        method: str,
        endpoint: str,
        access_token: Optional[str],
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> httpx.Response:
        client = await self._get_http_client()
        headers = {"Authorization": f"Bearer {access_token}"} if access_token else {}

        logger.debug(f"[APIClient] {method} {endpoint}")

        try:
            if method.upper() == "GET":
                return await client.get(endpoint, params=params, headers=headers)
            elif method.upper() == "POST":
                return await client.post(endpoint, params=params, json=json_body, headers=headers)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")
        except httpx.RequestError as e:
            logger.error(f"[APIClient] Network error on {endpoint}: {e}")
            raise APIError(f"Network error: {e}") from e

    @staticmethod
    def _parse(response: httpx.Response) -> Any:
        if response.status_code >= 400:
            message, payload = _error_message(response)
            raise APIError(
                f"API error {response.status_code}: {message}",
                status_code=response.status_code,
                payload=payload,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise APIError(
                f"Invalid JSON in response: {e}",
                status_code=response.status_code,
                payload=response.text,
            ) from e

    async def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> Any:
        """Make an authenticated request to the API.

        Args:
            method: HTTP method (GET or POST)
            endpoint: API endpoint path
            params: Query parameters
            json_body: JSON request body

        Returns:
            Parsed JSON response

        Raises:
            NotAuthenticated: If nobody is logged in
            SessionExpired: If the request is still rejected after one renewal,
                or the renewal itself failed
            APIError: If the API request fails for any other reason
        """
        access_token = self.token_manager.require_bearer()
        response = await self._send(method, endpoint, access_token, params, json_body)

        if response.status_code in AUTH_FAILURE_STATUSES:
            logger.info(
                f"[APIClient] {endpoint} returned {response.status_code}; refreshing token and retrying"
            )
            try:
                access_token = await self.token_manager.renew()
            except RenewalCredentialExpired as e:
                raise SessionExpired(SESSION_GONE_MESSAGE, reauthenticate=True) from e
            except RenewalFailed as e:
                raise SessionExpired(ACCESS_TOKEN_EXPIRED_MESSAGE, reauthenticate=False) from e

            response = await self._send(method, endpoint, access_token, params, json_body)
            if response.status_code in AUTH_FAILURE_STATUSES:
                logger.warning(
                    f"[APIClient] {endpoint} still returned {response.status_code} after token refresh"
                )
                raise SessionExpired(ACCESS_TOKEN_EXPIRED_MESSAGE, reauthenticate=False)

        return self._parse(response)

    async def get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        return await self.request("GET", endpoint, params=params)

    async def post(self, endpoint: str, json_body: Optional[dict] = None) -> Any:
        return await self.request("POST", endpoint, json_body=json_body)

    async def post_public(self, endpoint: str, json_body: Optional[dict] = None) -> Any:
        """POST to an endpoint that needs no bearer token (OTP login)."""
        response = await self._send("POST", endpoint, None, json_body=json_body)
        return self._parse(response)
