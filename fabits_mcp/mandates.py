"""Mandate confirmation: polls a bank mandate until the exchange settles it."""
import logging
from datetime import date
from typing import Optional

from .api_client import FabitsAPIClient
from .config import (
    ENDPOINTS,
    MANDATE_HISTORY_FROM_DATE,
    MANDATE_POLL_INTERVAL_SECONDS,
    MANDATE_POLL_MAX_ATTEMPTS,
)
from .models import (
    MANDATE_FAILURE_STATES,
    MANDATE_SUCCESS_STATES,
    MandateResponse,
    UnrecognizedMandateResponse,
    parse_mandate_response,
)
from .polling import PollResult, poll

logger = logging.getLogger(__name__)


def is_mandate_approved(response: MandateResponse) -> bool:
    return response.status in MANDATE_SUCCESS_STATES


def is_mandate_failed(response: MandateResponse) -> bool:
    return response.status in MANDATE_FAILURE_STATES


def format_platform_date(day: date) -> str:
    """Dates are sent as dd/mm/yyyy."""
    return day.strftime("%d/%m/%Y")


async def fetch_mandate_status(
    api_client: FabitsAPIClient,
    client_code: str,
    mandate_id: str,
    to_date: Optional[date] = None,
) -> MandateResponse:
    """One look at the mandate's current state."""
    payload = await api_client.post(
        ENDPOINTS["mandate_details"],
        json_body={
            "fromDate": MANDATE_HISTORY_FROM_DATE,
            "toDate": format_platform_date(to_date or date.today()),
            "clientCode": client_code,
            "mandateId": mandate_id,
        },
    )
    response = parse_mandate_response(payload)
    if isinstance(response, UnrecognizedMandateResponse):
        logger.warning(f"[Mandates] Unrecognized mandate details response for {mandate_id}: {payload!r}")
    else:
        logger.debug(f"[Mandates] {mandate_id} status={response.status or 'NEW'}")
    return response


async def confirm_mandate(
    api_client: FabitsAPIClient,
    client_code: str,
    mandate_id: str,
    max_attempts: int = MANDATE_POLL_MAX_ATTEMPTS,
    interval: float = MANDATE_POLL_INTERVAL_SECONDS,
    to_date: Optional[date] = None,
) -> PollResult:
    """Poll until the mandate is accepted, rejected, or attempts run out."""

    async def check() -> MandateResponse:
        return await fetch_mandate_status(api_client, client_code, mandate_id, to_date)

    return await poll(
        check,
        is_mandate_approved,
        is_mandate_failed,
        max_attempts,
        interval,
        reference=f"mandate {mandate_id}",
    )
