"""Call-collapsing throttle for async operations.

Login re-renders, iframe requests and manual checks can all ask for a
validation within a few milliseconds of each other.  :class:`Throttled`
makes sure only one of them reaches the network per window; everybody
else waits on the same result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger("stagingbridge.throttle")


@dataclass
class ThrottleWindow(Generic[T]):
    """Mutable state of one throttled operation."""

    last_invocation_at: float | None = None
    pending: asyncio.Future[T] | None = None

    def is_open(self, now: float, delay: float) -> bool:
        """True while a call made at *now* must reuse :attr:`pending`.

        A window stays open until *delay* has elapsed **and** the pending
        result has settled.
        """
        if self.pending is None or self.last_invocation_at is None:
            return False
        if now - self.last_invocation_at < delay:
            return True
        return not self.pending.done()


class Throttled(Generic[T]):
    """Wrap *fn* so at most one invocation is in flight per window.

    Calling the wrapper returns an :class:`asyncio.Future`.  Inside a
    window every caller waits on the *same* invocation, held in
    :attr:`window`, so the arguments of the first caller win.  Callers
    get a shielded view of it: cancelling one caller does not cancel the
    invocation the others share.  Errors are delivered to every caller
    that shares the window; the next window may retry.
    """

    def __init__(
        self,
        fn: Callable[..., Awaitable[T]],
        delay_ms: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if delay_ms < 0:
            msg = f"delay_ms must be >= 0, got {delay_ms}"
            raise ValueError(msg)
        self._fn = fn
        self._delay = delay_ms / 1000.0
        self._clock = clock
        self.window: ThrottleWindow[T] = ThrottleWindow()
        self.invocations = 0

    @property
    def delay_ms(self) -> float:
        return self._delay * 1000.0

    def __call__(self, *args: Any, **kwargs: Any) -> asyncio.Future[T]:
        now = self._clock()
        pending = self.window.pending
        if pending is None or not self.window.is_open(now, self._delay):
            self.window.last_invocation_at = now
            self.invocations += 1
            pending = asyncio.ensure_future(self._fn(*args, **kwargs))
            pending.add_done_callback(self._settled)
            self.window.pending = pending
        # Each caller gets its own shield; cancelling one leaves the others waiting.
        return asyncio.shield(pending)

    def reset(self) -> None:
        """Forget the current window so the next call starts fresh."""
        self.window = ThrottleWindow()

    @staticmethod
    def _settled(future: asyncio.Future[Any]) -> None:
        # Mark the exception as retrieved; callers still see it when awaiting.
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.debug("Throttled call failed: %s", exc)


def throttle(
    fn: Callable[..., Awaitable[T]],
    delay_ms: float,
    clock: Callable[[], float] = time.monotonic,
) -> Throttled[T]:
    """Return a :class:`Throttled` wrapper around *fn*."""
    return Throttled(fn, delay_ms, clock)
