# clubhouse/payment_poller.py
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from .config import get_settings

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"

TIMEOUT_MESSAGE = (
    "We couldn't confirm your payment yet. If you were charged, "
    "your access will activate shortly. Please refresh in a minute or contact support."
)

Check = Callable[[], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class PollResult:
    status: str
    attempts: int
    message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> dict:
        d = {"status": self.status, "attempts": self.attempts}
        if self.message:
            d["error"] = self.message
        return d


async def poll_for_activation(
    check: Check,
    interval_seconds: Optional[float] = None,
    max_retries: Optional[int] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> PollResult:
    """
    Calls `check` until it reports an active membership or the retry
    budget runs out. Always terminates: at most `max_retries` checks and
    `max_retries - 1` sleeps. An exception from `check` counts as a failed
    attempt.
    """
    s = get_settings()
    interval = s.payment_poll_interval_seconds if interval_seconds is None else interval_seconds
    retries = s.payment_poll_max_retries if max_retries is None else max_retries
    retries = max(1, int(retries))

    for attempt in range(1, retries + 1):
        try:
            ok = check()
            if inspect.isawaitable(ok):
                ok = await ok
        except Exception:
            logger.exception("PAYMENT POLL check failed (attempt %s/%s)", attempt, retries)
            ok = False

        if ok:
            logger.info("PAYMENT POLL confirmed after %s attempt(s)", attempt)
            return PollResult(STATUS_SUCCESS, attempt)

        if attempt < retries:
            await sleep(interval)

    logger.warning("PAYMENT POLL gave up after %s attempts", retries)
    return PollResult(STATUS_ERROR, retries, TIMEOUT_MESSAGE)
