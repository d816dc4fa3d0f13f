"""Payment confirmation: polls the payment status of placed orders."""
import logging
from typing import Sequence

from .api_client import FabitsAPIClient
from .config import ENDPOINTS, PAYMENT_POLL_INTERVAL_SECONDS, PAYMENT_POLL_MAX_ATTEMPTS
from .models import PaymentStatus
from .polling import PollResult, poll

logger = logging.getLogger(__name__)


def is_payment_approved(status: PaymentStatus) -> bool:
    return status.approved


def is_payment_rejected(status: PaymentStatus) -> bool:
    return status.rejected


async def fetch_payment_status(
    api_client: FabitsAPIClient,
    client_code: str,
    order_numbers: Sequence[str],
) -> PaymentStatus:
    """One look at the payment status of the given order(s)."""
    payload = await api_client.post(
        ENDPOINTS["payment_status"],
        json_body={"clientCode": client_code, "orderNo": ",".join(order_numbers)},
    )
    status = PaymentStatus.model_validate(payload if payload is not None else {})
    logger.debug(f"[Payments] status={status.status!r} data={status.data!r}")
    return status


async def confirm_payment(
    api_client: FabitsAPIClient,
    client_code: str,
    order_numbers: Sequence[str],
    max_attempts: int = PAYMENT_POLL_MAX_ATTEMPTS,
    interval: float = PAYMENT_POLL_INTERVAL_SECONDS,
) -> PollResult:
    """Poll until the payment is approved, rejected, or attempts run out."""
    if not order_numbers:
        raise ValueError("At least one order number is required")

    async def check() -> PaymentStatus:
        return await fetch_payment_status(api_client, client_code, order_numbers)

    return await poll(
        check,
        is_payment_approved,
        is_payment_rejected,
        max_attempts,
        interval,
        reference=f"payment {','.join(order_numbers)}",
    )
