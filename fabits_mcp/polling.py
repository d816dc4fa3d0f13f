"""Bounded polling of asynchronous platform workflows.

Payments and bank mandates settle on the platform some time after the user
acts, and there is no callback this server can receive. poll() checks the
platform a bounded number of times and reports one of three outcomes.
TIMEOUT means "not settled yet", which callers must not present as a failure.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from .errors import APIError

logger = logging.getLogger(__name__)


class PollOutcome(str, Enum):
    """How a polling run ended."""
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass
class PollResult:
    """Result of one polling run.

    ``data`` is the last check result for SUCCESS/FAILURE, and the last
    pending result (if any) for TIMEOUT.
    """
    outcome: PollOutcome
    data: Any = None
    attempts: int = 0
    reference: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == PollOutcome.SUCCESS

    @property
    def failed(self) -> bool:
        return self.outcome == PollOutcome.FAILURE

    @property
    def timed_out(self) -> bool:
        return self.outcome == PollOutcome.TIMEOUT


def is_transient_error(exc: BaseException) -> bool:
    """Network failures, timeouts and 5xx responses are worth another check."""
    if isinstance(exc, APIError):
        return exc.status_code is None or exc.status_code >= 500
    return isinstance(exc, (httpx.TransportError, asyncio.TimeoutError))


async def poll(
    check: Callable[[], Awaitable[Any]],
    is_success: Callable[[Any], bool],
    is_failure: Callable[[Any], bool],
    max_attempts: int,
    interval: float,
    *,
    reference: Optional[str] = None,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
) -> PollResult:
    """Check until a terminal state is seen or the attempts run out.

    Checks run strictly one after another, with ``interval`` seconds between
    them (none after the last one). A transient check error is logged and
    uses up its attempt; any other error propagates.

    Args:
        check: Coroutine function returning the current remote state
        is_success: Predicate for the success terminal state (checked first)
        is_failure: Predicate for the failure terminal state
        max_attempts: Maximum number of checks (at least 1)
        interval: Seconds to wait between checks
        reference: Identifier of the polled object, for logs and the result
        is_transient: Decides which check errors are swallowed

    Returns:
        PollResult with outcome SUCCESS, FAILURE or TIMEOUT
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    label = reference or "operation"
    last_pending: Any = None

    for attempt in range(1, max_attempts + 1):
        logger.debug(f"[Poller] {label}: attempt {attempt}/{max_attempts}")
        try:
            result = await check()
        except Exception as e:
            if not is_transient(e):
                raise
            logger.warning(f"[Poller] {label}: check error on attempt {attempt} (will retry): {e}")
        else:
            if is_success(result):
                logger.info(f"[Poller] {label}: succeeded after {attempt} attempt(s)")
                return PollResult(PollOutcome.SUCCESS, result, attempt, reference)
            if is_failure(result):
                logger.info(f"[Poller] {label}: failed after {attempt} attempt(s)")
                return PollResult(PollOutcome.FAILURE, result, attempt, reference)
            last_pending = result

        if attempt < max_attempts:
            await asyncio.sleep(interval)

    logger.warning(f"[Poller] {label}: still pending after {max_attempts} attempt(s)")
    return PollResult(PollOutcome.TIMEOUT, last_pending, max_attempts, reference)
