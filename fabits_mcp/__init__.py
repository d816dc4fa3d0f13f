"""Fabits MCP Server.

An MCP server for the Fabits investment platform with persistent login,
single-flight token renewal and bounded polling of payments and mandates.

Run with:
    fabits-mcp          (stdio)
    fabits-mcp-http     (HTTP, multi-user)
"""
from .api_client import FabitsAPIClient
from .credential_store import CredentialStore
from .errors import (
    APIError,
    FabitsError,
    KycRequired,
    NotAuthenticated,
    RenewalCredentialExpired,
    RenewalError,
    RenewalFailed,
    SessionExpired,
)
from .mandates import confirm_mandate
from .models import CredentialRecord, LoginResponse, MandateStatus, PaymentStatus
from .payments import confirm_payment
from .polling import PollOutcome, PollResult, poll
from .sessions import SessionRegistry, UserSession
from .token_manager import TokenManager

__all__ = [
    # Credentials
    "CredentialRecord",
    "CredentialStore",
    "TokenManager",
    "LoginResponse",
    # API client
    "FabitsAPIClient",
    # Polling
    "poll",
    "PollOutcome",
    "PollResult",
    "confirm_payment",
    "confirm_mandate",
    "PaymentStatus",
    "MandateStatus",
    # Sessions
    "SessionRegistry",
    "UserSession",
    # Errors
    "FabitsError",
    "KycRequired",
    "NotAuthenticated",
    "RenewalError",
    "RenewalCredentialExpired",
    "RenewalFailed",
    "SessionExpired",
    "APIError",
]
