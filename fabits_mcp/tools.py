"""MCP Tools for the Fabits platform.

Each tool:
- Receives validated Pydantic input and the caller's UserSession
- Calls the auth flow or a polling call site
- Formats the outcome as markdown for the chat client
Errors never escape a tool; they are rendered by handle_error().
"""
import logging

from .auth import (
    check_kyc_status,
    get_auth_status,
    logout,
    refresh_session,
    request_otp,
    verify_otp,
)
from .errors import (
    APIError,
    KycRequired,
    NotAuthenticated,
    RenewalCredentialExpired,
    RenewalFailed,
    SessionExpired,
)
from .mandates import confirm_mandate
from .models import (
    CheckMandateStatusInput,
    CheckPaymentStatusInput,
    CredentialRecord,
    RequestOtpInput,
    VerifyOtpInput,
)
from .payments import confirm_payment
from .polling import PollResult
from .sessions import UserSession

logger = logging.getLogger(__name__)

LOGIN_HINT = (
    "To login, use:\n"
    "1. fabits_request_otp with your phone number\n"
    "2. fabits_verify_otp with the OTP you receive"
)


# ==============================================================================
# Response Formatting Helpers
# ==============================================================================

def format_account_markdown(record: CredentialRecord) -> str:
    """Format the identity fields of a credential record."""
    return (
        f"- **Phone**: {record.phone_number or 'Not available'}\n"
        f"- **Client Code**: {record.client_code or 'Not available'}\n"
        f"- **PAN**: {record.pan_number or 'Not available'}\n"
    )


def format_payment_result(result: PollResult, interval_seconds: float) -> str:
    """Format a payment polling result."""
    details = getattr(result.data, "data", None) or "n/a"
    if result.succeeded:
        return (
            "## ✅ Payment Successful\n\n"
            f"- **Status**: APPROVED\n- **Details**: {details}\n\n"
            "Your investment has been completed successfully."
        )
    if result.failed:
        return (
            "## ❌ Payment Failed\n\n"
            f"- **Status**: REJECTED\n- **Details**: {details}\n\n"
            "Please try again or contact support."
        )
    # No pause follows the last check
    waited = max(result.attempts - 1, 0) * interval_seconds
    return (
        "## ⏳ Payment Status: Still Processing\n\n"
        f"The payment could not be confirmed within {waited:.0f} seconds "
        f"({result.attempts} checks).\n"
        "This doesn't mean the payment failed - it may still be processing.\n\n"
        "Check again later with fabits_check_payment_status."
    )


def format_mandate_result(mandate_id: str, result: PollResult) -> str:
    """Format a mandate polling result."""
    status = (result.data.status if result.data is not None else None) or "PENDING"
    detail = result.data.detail if result.data is not None else None
    lines = [f"- **Mandate ID**: {mandate_id}", f"- **Status**: {status}"]
    if detail is not None and detail.umrn:
        lines.append(f"- **UMRN**: {detail.umrn}")
    if detail is not None and detail.amount:
        lines.append(f"- **Amount**: ₹{detail.amount}")
    body = "\n".join(lines)

    if result.succeeded:
        return (
            f"## ✅ Mandate Approved\n\n{body}\n\n"
            "The mandate is ready for SIP investments."
        )
    if result.failed:
        return (
            f"## ❌ Mandate Failed\n\n{body}\n\n"
            "The mandate was rejected by your bank or the exchange. "
            "Please try registering a new mandate."
        )
    return (
        f"## ⏳ Mandate Pending\n\n{body}\n\n"
        "The mandate is still awaiting bank approval. Make sure you completed the "
        "e-mandate authentication at your bank's portal, then check again in a few minutes."
    )


def handle_error(e: Exception) -> str:
    """Format an error as a helpful message."""
    if isinstance(e, NotAuthenticated):
        return f"**Not Logged In**: {e}\n\n{LOGIN_HINT}"
    elif isinstance(e, KycRequired):
        return f"**KYC Required**: {e}\n\nUse fabits_status to see how far your KYC has got."
    elif isinstance(e, SessionExpired):
        return str(e)
    elif isinstance(e, RenewalCredentialExpired):
        return f"**Session Expired**: {e}\n\nYour session is gone. {LOGIN_HINT}"
    elif isinstance(e, RenewalFailed):
        return (
            f"**Session Refresh Failed**: {e}\n\n"
            "Try fabits_refresh_token again in a moment. If it keeps failing, login again.\n\n"
            f"{LOGIN_HINT}"
        )
    elif isinstance(e, APIError):
        if e.status_code == 404:
            return f"**Not Found**: {e}\n\nPlease check that the reference is correct."
        return f"**API Error**: {e}"
    elif isinstance(e, ValueError):
        return f"**Invalid Input**: {e}"
    else:
        return f"**Unexpected Error**: {type(e).__name__}: {e}"


# ==============================================================================
# Authentication Tools
# ==============================================================================

async def request_otp_tool(params: RequestOtpInput, session: UserSession) -> str:
    """Send a login OTP to the user's phone."""
    try:
        await request_otp(session.api_client, params.phone_number)
        return (
            "## 📱 OTP Sent\n\n"
            f"An OTP has been sent to {params.phone_number}.\n\n"
            "Please use fabits_verify_otp with your phone number and the OTP you received."
        )
    except Exception as e:
        logger.error(f"[Tools] request_otp failed: {e}")
        return handle_error(e)


async def verify_otp_tool(params: VerifyOtpInput, session: UserSession) -> str:
    """Complete the login with the OTP."""
    try:
        record, claims = await verify_otp(session.api_client, params.phone_number, params.otp)
        name = " ".join(part for part in (claims.first_name, claims.last_name) if part)
        return (
            "## ✅ Login Successful\n\n"
            f"{format_account_markdown(record)}"
            f"- **Name**: {name or 'Not available'}\n"
            f"- **Email**: {claims.email or 'Not available'}\n\n"
            "Your session is active."
        )
    except Exception as e:
        logger.error(f"[Tools] verify_otp failed: {e}")
        return handle_error(e)


async def status_tool(session: UserSession) -> str:
    """Report whether the user is logged in and how far their KYC has got.

    A client code means KYC is done. Without one, the platform's KYC status
    is fetched, which also confirms the session is still accepted.
    """
    try:
        record = get_auth_status(session.api_client)
        if record is None:
            return f"## ❌ Not Logged In\n\n{LOGIN_HINT}"

        if record.client_code:
            kyc = "✅ KYC Completed - you can invest"
        else:
            try:
                kyc_status = await check_kyc_status(session.api_client)
            except APIError as e:
                logger.warning(f"[Tools] KYC status check failed: {e}")
                kyc = "⚠️ Unable to verify KYC status at this time"
            else:
                if kyc_status.kyc_completed:
                    kyc = "✅ KYC Completed - you can invest"
                elif kyc_status.kyc_initiated:
                    kyc = "⏳ KYC In Progress - complete KYC to start investing"
                else:
                    kyc = "❌ KYC Not Started - please complete KYC to invest"
            # The check may have renewed the token
            record = get_auth_status(session.api_client) or record

        return f"## ✅ Logged In\n\n{format_account_markdown(record)}- **KYC**: {kyc}\n"
    except Exception as e:
        logger.error(f"[Tools] status failed: {e}")
        return handle_error(e)


async def refresh_token_tool(session: UserSession) -> str:
    """Renew the session's bearer token on request."""
    try:
        record = await refresh_session(session.api_client)
        return (
            "## ✅ Token Refreshed\n\n"
            f"{format_account_markdown(record)}\n"
            "Your session has been extended."
        )
    except Exception as e:
        logger.error(f"[Tools] refresh_token failed: {e}")
        return handle_error(e)


async def logout_tool(session: UserSession) -> str:
    """Log out and clear stored tokens."""
    try:
        was_logged_in = await logout(session.api_client)
        if not was_logged_in:
            return "## ❌ Not Logged In\n\nYou are already logged out."
        return (
            "## ✅ Logged Out\n\n"
            "Your session has been terminated and tokens have been cleared.\n\n"
            f"{LOGIN_HINT}"
        )
    except Exception as e:
        logger.error(f"[Tools] logout failed: {e}")
        return handle_error(e)


# ==============================================================================
# Long-Running Operation Tools
# ==============================================================================

def _require_client_code(session: UserSession) -> str:
    record = session.token_manager.require_record()
    if not record.client_code:
        raise KycRequired()
    return record.client_code


async def check_payment_status_tool(params: CheckPaymentStatusInput, session: UserSession) -> str:
    """Wait for a payment to be approved or rejected."""
    try:
        client_code = _require_client_code(session)
        result = await confirm_payment(
            session.api_client,
            client_code,
            params.order_numbers,
            max_attempts=params.max_attempts,
            interval=params.interval_seconds,
        )
        return format_payment_result(result, params.interval_seconds)
    except Exception as e:
        logger.error(f"[Tools] check_payment_status failed: {e}")
        return handle_error(e)


async def check_mandate_status_tool(params: CheckMandateStatusInput, session: UserSession) -> str:
    """Check (or wait for) the approval of a bank mandate."""
    try:
        client_code = _require_client_code(session)
        result = await confirm_mandate(
            session.api_client,
            client_code,
            params.mandate_id,
            max_attempts=params.max_attempts,
            interval=params.interval_seconds,
        )
        return format_mandate_result(params.mandate_id, result)
    except Exception as e:
        logger.error(f"[Tools] check_mandate_status failed: {e}")
        return handle_error(e)
