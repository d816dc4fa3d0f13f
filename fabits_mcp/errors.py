"""Exception hierarchy for the Fabits MCP Server.

Every error carries a short code so the tool layer can pick the right
user-facing message without string matching.
"""
from typing import Any, Optional


class FabitsError(Exception):
    """Base exception for all Fabits MCP errors."""

    def __init__(self, message: str, *, code: str = "FABITS_ERROR"):
        super().__init__(message)
        self.code = code


class NotAuthenticated(FabitsError):
    """No usable bearer token is stored for this user."""

    def __init__(self, message: str = "Not authenticated. Please login first."):
        super().__init__(message, code="NOT_AUTHENTICATED")


class RenewalError(FabitsError):
    """Base class for failures while renewing the bearer token."""
    pass


class RenewalCredentialExpired(RenewalError):
    """The refresh token was rejected for good. Local credentials are cleared."""

    def __init__(self, message: str = "Refresh token expired or revoked."):
        super().__init__(message, code="RENEWAL_CREDENTIAL_EXPIRED")


class RenewalFailed(RenewalError):
    """The renewal request was rejected or kept failing for non-auth reasons."""

    def __init__(self, message: str = "Token refresh failed.", status_code: Optional[int] = None):
        super().__init__(message, code="RENEWAL_FAILED")
        self.status_code = status_code


class SessionExpired(FabitsError):
    """A request was still unauthorized after one renewal and retry."""

    def __init__(self, message: str, *, reauthenticate: bool = False):
        super().__init__(message, code="SESSION_EXPIRED")
        self.reauthenticate = reauthenticate


class APIError(FabitsError):
    """Raised when a Fabits API request fails for a non-auth reason."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message, code="API_ERROR")
        self.status_code = status_code
        self.payload = payload


class KycRequired(FabitsError):
    """The user is logged in but has no client code until KYC is completed."""

    def __init__(
        self,
        message: str = "No client code on this account. Complete KYC before checking payments or mandates.",
    ):
        super().__init__(message, code="KYC_REQUIRED")
