"""Login flow against the Fabits auth server.

Login is two steps: request an OTP for a phone number, then exchange the OTP
for a bearer/refresh token pair which the TokenManager stores.
"""
import logging
from typing import Optional

from pydantic import ValidationError

from .api_client import FabitsAPIClient
from .config import ENDPOINTS
from .errors import APIError
from .models import CredentialRecord, KycStatus, LoginResponse, TokenClaims
from .token_manager import decode_claims

logger = logging.getLogger(__name__)


async def request_otp(api_client: FabitsAPIClient, phone_number: str) -> None:
    """Ask the platform to send a login OTP to the phone number."""
    payload = await api_client.post_public(
        ENDPOINTS["request_otp"], json_body={"phoneNumber": phone_number}
    )
    if isinstance(payload, dict) and payload.get("isError"):
        raise APIError(payload.get("message") or "Failed to send OTP", payload=payload)
    logger.info(f"[Auth] OTP requested for {phone_number}")


async def verify_otp(
    api_client: FabitsAPIClient, phone_number: str, otp: str
) -> tuple[CredentialRecord, TokenClaims]:
    """Exchange an OTP for tokens and store them.

    Returns:
        The stored credential record and the decoded token claims
    """
    payload = await api_client.post_public(
        ENDPOINTS["verify_otp"], json_body={"phoneNumber": phone_number, "otp": otp}
    )
    try:
        login = LoginResponse.model_validate(payload)
    except ValidationError as e:
        raise APIError("Invalid OTP or login failed", payload=payload) from e

    record = api_client.token_manager.save_login(login, phone_number)
    return record, decode_claims(login.access_token)


def get_auth_status(api_client: FabitsAPIClient) -> Optional[CredentialRecord]:
    """Return the stored record if the user is logged in, else None."""
    record = api_client.token_manager.load()
    if record is None or not record.is_authenticated:
        return None
    return record


async def check_kyc_status(api_client: FabitsAPIClient) -> KycStatus:
    """Ask the platform how far the user's KYC has got.

    This is an authenticated call, so it also proves the session still works:
    an expired token is renewed, and a dead session raises SessionExpired.
    """
    payload = await api_client.get(ENDPOINTS["kyc_status"])
    data = payload.get("data") if isinstance(payload, dict) else None
    status = KycStatus.model_validate(data if isinstance(data, dict) else {})
    logger.debug(
        f"[Auth] KYC status: completed={status.kyc_completed}, initiated={status.kyc_initiated}"
    )
    return status


async def refresh_session(api_client: FabitsAPIClient) -> CredentialRecord:
    """Renew the bearer token on request and return the updated record."""
    await api_client.token_manager.renew()
    return api_client.token_manager.require_record()


async def logout(api_client: FabitsAPIClient) -> bool:
    """Log out and clear stored tokens. False if nobody was logged in."""
    return await api_client.token_manager.logout()
