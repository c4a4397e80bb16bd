from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple

logger = logging.getLogger(__name__)


class CancelToken:
    """Abort signal shared by the command handler and the retry checkpoints."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def set(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def consume(self) -> bool:
        """Return True and clear the signal if it was set."""
        if not self._event.is_set():
            return False
        self._event.clear()
        return True


class RetryOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    GAVE_UP = "gave_up"


@dataclass
class RetryResult:
    outcome: RetryOutcome
    value: Any = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome == RetryOutcome.SUCCEEDED


async def call_with_retry(
    operation: Callable[[], Awaitable[Tuple[bool, Any]]],
    is_success: Callable[[Any], bool],
    token: CancelToken,
    interval_s: float,
    label: str = "remote call",
    sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    poll: Optional[Callable[[], Any]] = None,
) -> RetryResult:
    """
    Repeat `operation` until it succeeds at transport level and semantically.

    The abort token is checked before every attempt, never during one. When it
    is found set it is cleared and GAVE_UP is returned; the caller decides how
    to continue. `poll` runs after every back-off sleep so queued commands
    (including the abort itself) get applied while waiting.
    """
    sleep_fn = sleep if sleep is not None else asyncio.sleep
    attempts = 0

    while True:
        if token.consume():
            logger.info(
                "%s received loop abortion request and stops retrying after %d attempt(s).",
                label,
                attempts,
            )
            return RetryResult(outcome=RetryOutcome.GAVE_UP, value=None, attempts=attempts)

        attempts += 1
        transport_ok, value = await operation()
        if transport_ok and is_success(value):
            return RetryResult(outcome=RetryOutcome.SUCCEEDED, value=value, attempts=attempts)

        if transport_ok:
            logger.info("%s reported %r. Trying again in %.1fs...", label, value, interval_s)
        else:
            logger.info("%s: service unavailable. Trying again in %.1fs...", label, interval_s)

        await sleep_fn(max(0.0, float(interval_s)))
        if poll is not None:
            poll()
