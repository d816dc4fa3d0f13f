"""Configuration for the Fabits MCP Server"""
import os
from pathlib import Path

# Fabits platform
FABITS_BASE_URL = os.getenv("FABITS_BASE_URL", "https://apimywealth.fabits.com")
REQUEST_TIMEOUT_SECONDS = float(os.getenv("FABITS_REQUEST_TIMEOUT_SECONDS", "30"))

# Credential storage (one JSON record per user)
_CONFIG_DIR = Path.home() / ".config" / "fabits-mcp"
TOKEN_FILE = Path(os.getenv("FABITS_TOKEN_FILE", str(_CONFIG_DIR / "auth.json")))
TOKENS_DIR = Path(os.getenv("FABITS_TOKENS_DIR", str(_CONFIG_DIR / "tokens")))

# HTTP mode serves several users, each identified by the user_id tool argument
MULTI_USER = os.getenv("FABITS_MULTI_USER", "false").lower() == "true"

# Renewal of the bearer token
RENEWAL_MAX_ATTEMPTS = int(os.getenv("RENEWAL_MAX_ATTEMPTS", "3"))
RENEWAL_RETRY_DELAY_SECONDS = float(os.getenv("RENEWAL_RETRY_DELAY_SECONDS", "1.0"))

# Polling of asynchronous workflows
PAYMENT_POLL_MAX_ATTEMPTS = int(os.getenv("PAYMENT_POLL_MAX_ATTEMPTS", "20"))
PAYMENT_POLL_INTERVAL_SECONDS = float(os.getenv("PAYMENT_POLL_INTERVAL_SECONDS", "30"))
MANDATE_POLL_MAX_ATTEMPTS = int(os.getenv("MANDATE_POLL_MAX_ATTEMPTS", "60"))
MANDATE_POLL_INTERVAL_SECONDS = float(os.getenv("MANDATE_POLL_INTERVAL_SECONDS", "10"))

# Mandate history lookups start here (dd/mm/yyyy)
MANDATE_HISTORY_FROM_DATE = os.getenv("MANDATE_HISTORY_FROM_DATE", "01/01/2024")

# Logging
LOG_TOKEN_EVENTS = os.getenv("LOG_TOKEN_EVENTS", "true").lower() == "true"

# Multi-user mode keeps at most this many idle sessions in memory
MAX_SESSIONS = int(os.getenv("FABITS_MAX_SESSIONS", "256"))

ENDPOINTS = {
    "request_otp": "/customerservice/v2/api/customer/validate",
    "verify_otp": "/authserver/api/auth/login/otp",
    "refresh_token": "/authserver/api/auth/refresh",
    "logout": "/authserver/api/auth/logout",
    "payment_status": "/mutualfundservice/api/bseStar/mfUpload/paymentStatus",
    "mandate_details": "/mutualfundservice/api/bseStar/mfWebService/mandateDetails",
    "kyc_status": "/customerservice/api/hyperverge/checkKycInitiated",
}
