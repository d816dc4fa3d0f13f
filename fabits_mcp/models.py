"""Pydantic models for the Fabits MCP Server"""
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ==============================================================================
# Credential Models
# ==============================================================================

class CredentialRecord(BaseModel):
    """The persisted login state of one user.

    Field aliases match the on-disk JSON keys so credential files written by
    earlier releases stay readable. Records are replaced, never mutated.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    token: str = Field(default="", description="Current bearer (access) token")
    refresh_token: Optional[str] = Field(
        default=None, alias="refreshToken", description="Token used only to renew the bearer token"
    )
    phone_number: str = Field(default="", alias="phoneNumber", description="Login phone number")
    client_code: Optional[str] = Field(
        default=None, alias="clientCode", description="Exchange client code (assigned after KYC)"
    )
    pan_number: Optional[str] = Field(default=None, alias="panNumber", description="PAN of the account holder")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def to_storage(self) -> dict:
        """Serialize with the on-disk key names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class LoginResponse(BaseModel):
    """Body returned by the OTP login and refresh endpoints."""
    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None


class TokenClaims(BaseModel):
    """The bearer-token claims this server cares about."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    client_code: Optional[str] = Field(default=None, alias="uid")
    pan_number: Optional[str] = Field(default=None, alias="panNumber")
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    email: Optional[str] = None

    @field_validator("phone_number", "client_code", "pan_number", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)


class KycStatus(BaseModel):
    """The ``data`` object of the KYC status endpoint."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kyc_completed: Optional[bool] = Field(default=False, alias="kycCompleted")
    kyc_initiated: Optional[bool] = Field(default=False, alias="kycInitiated")


# ==============================================================================
# Payment Status Models
# ==============================================================================

PAYMENT_APPROVED_MARKER = "100|"
PAYMENT_REJECTED_MARKER = "101|"


class PaymentStatus(BaseModel):
    """Response from the payment status endpoint.

    ``data`` is an opaque "<code>|<message>" string; only the approved and
    rejected markers are meaningful.
    """
    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = None
    data: Optional[str] = None

    @property
    def approved(self) -> bool:
        return PAYMENT_APPROVED_MARKER in (self.data or "")

    @property
    def rejected(self) -> bool:
        return PAYMENT_REJECTED_MARKER in (self.data or "")


# ==============================================================================
# Mandate Status Models
# ==============================================================================

class MandateStatus(str, Enum):
    """Mandate states reported by the exchange."""
    NEW = "NEW"
    UNDER_PROCESSING = "UNDER PROCESSING"
    RECEIVED_BY_EXCHANGE = "RECEIVED BY EXCHANGE"
    APPROVED = "APPROVED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"


# "UNDER PROCESSING" counts as approved: the exchange does not move a mandate
# back from it, and the web app treats it the same way.
MANDATE_SUCCESS_STATES = frozenset({
    MandateStatus.RECEIVED_BY_EXCHANGE.value,
    MandateStatus.APPROVED.value,
    MandateStatus.UNDER_PROCESSING.value,
})
MANDATE_FAILURE_STATES = frozenset({
    MandateStatus.FAILED.value,
    MandateStatus.REJECTED.value,
})


class MandateDetail(BaseModel):
    """One entry of a MandateDetails list."""
    # The exchange is inconsistent about key casing
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status: Optional[str] = None
    umrn: Optional[str] = Field(default=None, alias="UMRN")
    amount: Optional[Union[float, str]] = Field(default=None, alias="Amount")


def _list_or_empty(value: Any) -> Any:
    return value if isinstance(value, list) else []


class _MandateData(BaseModel):
    """The ``data`` object some mandate responses wrap their payload in."""
    details: list[MandateDetail] = Field(default_factory=list, alias="MandateDetails")
    mandate_status: Optional[str] = Field(default=None, alias="mandateStatus")

    @field_validator("details", mode="before")
    @classmethod
    def _details_list(cls, value: Any) -> Any:
        return _list_or_empty(value)


class _MandateBody(BaseModel):
    """Fields shared by every recognized mandate response.

    Bodies sometimes mix shapes, so status is resolved in a fixed order: the
    first top-level detail, the first nested detail, then ``data.mandateStatus``.
    """
    details: list[MandateDetail] = Field(default_factory=list, alias="MandateDetails")
    data: Optional[_MandateData] = None

    @field_validator("details", mode="before")
    @classmethod
    def _details_list(cls, value: Any) -> Any:
        return _list_or_empty(value)

    @field_validator("data", mode="before")
    @classmethod
    def _data_object(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else None

    @property
    def nested_details(self) -> list[MandateDetail]:
        return self.data.details if self.data is not None else []

    @property
    def detail(self) -> Optional[MandateDetail]:
        for details in (self.details, self.nested_details):
            if details:
                return details[0]
        return None

    @property
    def status(self) -> Optional[str]:
        for details in (self.details, self.nested_details):
            if details and details[0].status:
                return details[0].status
        return self.data.mandate_status if self.data is not None else None


class MandateDetailsResponse(_MandateBody):
    """Shape ``{"MandateDetails": [...]}``."""


class NestedMandateDetailsResponse(_MandateBody):
    """Shape ``{"data": {"MandateDetails": [...]}}``."""


class MandateStatusOnlyResponse(_MandateBody):
    """Shape ``{"data": {"mandateStatus": "..."}}``."""


class UnrecognizedMandateResponse(BaseModel):
    """Any body that matches none of the known shapes."""
    raw: Any = None

    @property
    def detail(self) -> Optional[MandateDetail]:
        return None

    @property
    def status(self) -> Optional[str]:
        return None


MandateResponse = Union[
    MandateDetailsResponse,
    NestedMandateDetailsResponse,
    MandateStatusOnlyResponse,
    UnrecognizedMandateResponse,
]


def parse_mandate_response(payload: Any) -> MandateResponse:
    """Classify a mandate details body into one of the known shapes."""
    if isinstance(payload, dict):
        if isinstance(payload.get("MandateDetails"), list):
            return MandateDetailsResponse.model_validate(payload)
        data = payload.get("data")
        if isinstance(data, dict):
            if isinstance(data.get("MandateDetails"), list):
                return NestedMandateDetailsResponse.model_validate(payload)
            if "mandateStatus" in data:
                return MandateStatusOnlyResponse.model_validate(payload)
    return UnrecognizedMandateResponse(raw=payload)


# ==============================================================================
# Tool Input Models
# ==============================================================================

_USER_ID_DESCRIPTION = (
    "User identifier (phone number). Required when the server runs in multi-user HTTP mode."
)


class UserInput(BaseModel):
    """Input for tools that only need to know which user is calling."""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra='forbid'
    )

    user_id: Optional[str] = Field(default=None, description=_USER_ID_DESCRIPTION, max_length=32)


class RequestOtpInput(UserInput):
    """Input parameters for the request_otp tool."""
    phone_number: str = Field(
        ...,
        description="Phone number with country code (e.g., '+919876543210')",
        min_length=10,
        max_length=16,
    )


class VerifyOtpInput(UserInput):
    """Input parameters for the verify_otp tool."""
    phone_number: str = Field(
        ...,
        description="Phone number the OTP was sent to",
        min_length=10,
        max_length=16,
    )
    otp: str = Field(..., description="The OTP received by SMS", min_length=4, max_length=8)


class CheckPaymentStatusInput(UserInput):
    """Input parameters for the check_payment_status tool."""
    order_numbers: list[str] = Field(
        ...,
        description="Order number(s) returned when the order was placed",
        min_length=1,
        max_length=20,
    )
    max_attempts: int = Field(
        default=20,
        description="How many times to check before giving up (1-60)",
        ge=1,
        le=60,
    )
    interval_seconds: float = Field(
        default=30,
        description="Seconds between checks (0-120)",
        ge=0,
        le=120,
    )


class CheckMandateStatusInput(UserInput):
    """Input parameters for the check_mandate_status tool."""
    mandate_id: str = Field(..., description="Mandate ID from mandate registration", min_length=1, max_length=50)
    max_attempts: int = Field(
        default=1,
        description="How many times to check; 1 checks once without waiting (1-60)",
        ge=1,
        le=60,
    )
    interval_seconds: float = Field(
        default=10,
        description="Seconds between checks (0-120)",
        ge=0,
        le=120,
    )
