"""Stateful Token Manager for the Fabits MCP Server.

This module handles:
- Storing the logged-in user's bearer and refresh tokens (via CredentialStore)
- Handing out the current bearer token to the API client
- Renewing the bearer token with single-flight semantics: however many
  requests discover an expired token at once, only one refresh call goes out
  and every caller gets its result
- Classifying refresh failures into fatal (refresh token revoked) and
  recoverable (anything else)
"""
import asyncio
import logging
from typing import Optional

import httpx
import jwt
from pydantic import ValidationError

from .config import (
    ENDPOINTS,
    FABITS_BASE_URL,
    LOG_TOKEN_EVENTS,
    RENEWAL_MAX_ATTEMPTS,
    RENEWAL_RETRY_DELAY_SECONDS,
    REQUEST_TIMEOUT_SECONDS,
)
from .credential_store import CredentialStore
from .errors import NotAuthenticated, RenewalCredentialExpired, RenewalFailed
from .models import CredentialRecord, LoginResponse, TokenClaims

logger = logging.getLogger(__name__)


def decode_claims(token: str) -> TokenClaims:
    """Read the claims of a bearer token without verifying it.

    The token is only inspected for identity fields; the platform verifies it.
    Anything that is not a decodable JWT yields empty claims.
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False})
        return TokenClaims.model_validate(payload)
    except (jwt.PyJWTError, ValidationError) as e:
        logger.debug(f"[TokenManager] Could not decode token claims: {e}")
        return TokenClaims()


def _short(token: Optional[str]) -> str:
    return f"{token[:8]}..." if token else "<none>"


def _retrieve_exception(task: asyncio.Task) -> None:
    # Every waiter may have been cancelled before the refresh failed
    if not task.cancelled():
        task.exception()


class TokenManager:
    """Manages the token lifecycle for one user.

    Owns the user's CredentialStore exclusively. The in-flight renewal is an
    instance field, so two managers (two users) never share a renewal.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        base_url: str = FABITS_BASE_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = RENEWAL_MAX_ATTEMPTS,
        retry_delay: float = RENEWAL_RETRY_DELAY_SECONDS,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._timeout = timeout
        self._http_client = http_client
        self._inflight: Optional[asyncio.Task] = None
        # Bumped by invalidate()/save_login(); a renewal started under an
        # older generation must not write the store.
        self._generation = 0
        self.refresh_count = 0

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self):
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ==========================================================================
    # Session State
    # ==========================================================================

    def load(self) -> Optional[CredentialRecord]:
        """Return the stored credential record, if any."""
        return self.store.read()

    def require_record(self) -> CredentialRecord:
        """Return the stored record or raise NotAuthenticated."""
        record = self.store.read()
        if record is None or not record.is_authenticated:
            raise NotAuthenticated(
                "Not authenticated. Please login first using fabits_request_otp and fabits_verify_otp."
            )
        return record

    def require_bearer(self) -> str:
        """Return the current bearer token or raise NotAuthenticated."""
        return self.require_record().token

    @property
    def renewal_in_flight(self) -> bool:
        return self._inflight is not None

    def save_login(self, login: LoginResponse, phone_number: str) -> CredentialRecord:
        """Store the tokens of a fresh login, replacing any previous record."""
        claims = decode_claims(login.access_token)
        record = CredentialRecord(
            token=login.access_token,
            refresh_token=login.refresh_token,
            phone_number=claims.phone_number or phone_number,
            client_code=claims.client_code,
            pan_number=claims.pan_number,
        )
        # A refresh still running for the old session must not overwrite this one
        self._generation += 1
        self._inflight = None
        self.store.write(record)

        if LOG_TOKEN_EVENTS:
            logger.info(
                f"[TokenManager] Login stored: phone={record.phone_number}, "
                f"client_code={record.client_code or 'n/a'}, token={_short(record.token)}"
            )
        return record

    def invalidate(self) -> None:
        """Clear stored credentials and forget any in-flight renewal.

        A refresh call already on the wire is allowed to finish, but its
        result is thrown away.
        """
        self._generation += 1
        self._inflight = None
        self.store.clear()
        if LOG_TOKEN_EVENTS:
            logger.info("[TokenManager] Credentials cleared")

    async def logout(self) -> bool:
        """Log out remotely (best effort) and clear local credentials.

        Returns:
            False if nobody was logged in, True otherwise
        """
        record = self.store.read()
        if record is None or not record.is_authenticated:
            self.invalidate()
            return False

        try:
            client = await self._get_http_client()
            response = await client.post(
                f"{self.base_url}{ENDPOINTS['logout']}",
                json={},
                headers={"Authorization": f"Bearer {record.token}"},
            )
            if response.status_code >= 400:
                logger.warning(
                    f"[TokenManager] Remote logout returned {response.status_code} (ignored)"
                )
        except httpx.HTTPError as e:
            logger.warning(f"[TokenManager] Remote logout failed (ignored): {e}")
        finally:
            self.invalidate()
        return True

    # ==========================================================================
    # Token Renewal
    # ==========================================================================

    async def renew(self) -> str:
        """Obtain a new bearer token, sharing one refresh among concurrent callers.

        The first caller starts the refresh task; callers arriving while it
        runs wait for the same task. The task is shielded, so cancelling one
        waiter does not cancel the refresh for the others.

        Returns:
            The new bearer token

        Raises:
            NotAuthenticated: If nobody is logged in, or the session was
                invalidated while the refresh was running
            RenewalCredentialExpired: If the refresh token is missing or was
                rejected (credentials are cleared)
            RenewalFailed: If the refresh was rejected (400) or kept failing
        """
        task = self._inflight
        if task is None:
            task = asyncio.create_task(self._drive_renewal(self._generation))
            task.add_done_callback(_retrieve_exception)
            self._inflight = task
        elif LOG_TOKEN_EVENTS:
            logger.debug("[TokenManager] Refresh already in flight, waiting for it")
        return await asyncio.shield(task)

    async def _drive_renewal(self, generation: int) -> str:
        try:
            record = self.require_record()
            if not record.refresh_token:
                self._clear_if_current(generation)
                raise RenewalCredentialExpired(
                    "No refresh token available. Please login again."
                )

            try:
                renewed = await self._request_renewal(record)
            except RenewalCredentialExpired:
                self._clear_if_current(generation)
                raise

            if generation != self._generation:
                logger.warning(
                    "[TokenManager] Session was cleared during refresh; discarding new tokens"
                )
                raise NotAuthenticated("Session was logged out while the token was being refreshed.")

            self.store.write(renewed)
            self.refresh_count += 1
            if LOG_TOKEN_EVENTS:
                logger.info(
                    f"[TokenManager] Tokens refreshed (refresh #{self.refresh_count}), "
                    f"new token={_short(renewed.token)}"
                )
            return renewed.token
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None

    def _clear_if_current(self, generation: int) -> None:
        if generation == self._generation:
            self.invalidate()

    async def _request_renewal(self, record: CredentialRecord) -> CredentialRecord:
        """Call the refresh endpoint, retrying transient failures.

        401/403 and 400 stop immediately; network errors, timeouts, 5xx and
        bodies without an access token use up one attempt each.
        """
        client = await self._get_http_client()
        url = f"{self.base_url}{ENDPOINTS['refresh_token']}"
        last_reason = "no attempt made"
        last_status: Optional[int] = None

        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                if LOG_TOKEN_EVENTS:
                    logger.info(f"[TokenManager] Refresh retry {attempt}/{self.max_attempts}")
                await asyncio.sleep(self.retry_delay)

            try:
                response = await client.post(url, json={"refresh_token": record.refresh_token})
            except httpx.RequestError as e:
                last_reason = f"network error: {e}"
                last_status = None
                logger.warning(f"[TokenManager] Refresh attempt {attempt} failed: {last_reason}")
                continue

            if response.status_code in (401, 403):
                logger.error(
                    f"[TokenManager] Refresh token rejected ({response.status_code}); "
                    f"user must login again"
                )
                raise RenewalCredentialExpired(
                    f"Refresh token rejected with status {response.status_code}. Please login again."
                )
            if response.status_code == 400:
                logger.error(f"[TokenManager] Refresh request rejected (400): {response.text}")
                raise RenewalFailed("Token refresh was rejected (400).", status_code=400)
            if response.status_code >= 300:
                last_reason = f"status {response.status_code}"
                last_status = response.status_code
                logger.warning(f"[TokenManager] Refresh attempt {attempt} failed: {last_reason}")
                continue

            try:
                login = LoginResponse.model_validate(response.json())
            except ValueError as e:
                # json and pydantic validation errors are both ValueErrors
                last_reason = f"no access token in response ({e.__class__.__name__})"
                last_status = response.status_code
                logger.warning(f"[TokenManager] Refresh attempt {attempt} failed: {last_reason}")
                continue

            return self._renewed_record(record, login)

        raise RenewalFailed(
            f"Token refresh failed after {self.max_attempts} attempts: {last_reason}",
            status_code=last_status,
        )

    @staticmethod
    def _renewed_record(old: CredentialRecord, login: LoginResponse) -> CredentialRecord:
        """Build the replacement record, keeping what the refresh did not return."""
        claims = decode_claims(login.access_token)
        return CredentialRecord(
            token=login.access_token,
            refresh_token=login.refresh_token or old.refresh_token,
            phone_number=claims.phone_number or old.phone_number,
            client_code=claims.client_code or old.client_code,
            pan_number=claims.pan_number or old.pan_number,
        )
