"""
Scheduled-call handles for debounce and delayed work.
Cancellation is explicit: superseding a pending call cancels it.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class ScheduledCall:
    """
    Handle for a coroutine function run after a delay.

    Must be created inside a running event loop. Once the delay has elapsed
    the call is considered fired and can no longer be cancelled through
    the handle.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[Any]],
        sleep: Sleep = asyncio.sleep
    ):
        if delay < 0:
            raise ValueError(f"delay must be non-negative, got {delay}")
        self.delay = delay
        self._fired = False
        self._task = asyncio.ensure_future(self._run(callback, sleep))

    async def _run(self, callback: Callable[[], Awaitable[Any]], sleep: Sleep) -> Any:
        if self.delay > 0:
            await sleep(self.delay)
        self._fired = True
        return await callback()

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """
        Cancel the call if it has not fired yet.

        Returns:
            True if the call was prevented from running
        """
        if self._fired or self._task.done():
            return False
        self._task.cancel()
        return True

    def abort(self) -> None:
        """Cancel the call whether or not it has fired."""
        self._task.cancel()

    async def wait(self) -> Any:
        """Wait for the call to finish; returns None if it was cancelled."""
        await asyncio.wait([self._task])
        if self._task.cancelled():
            return None
        return self._task.result()


class Debouncer:
    """Keeps at most one pending call; scheduling a new one cancels the last."""

    def __init__(self, sleep: Sleep = asyncio.sleep):
        self._sleep = sleep
        self._pending: Optional[ScheduledCall] = None

    @property
    def pending(self) -> Optional[ScheduledCall]:
        if self._pending and not self._pending.fired and not self._pending.done:
            return self._pending
        return None

    def schedule(self, delay: float, callback: Callable[[], Awaitable[Any]]) -> ScheduledCall:
        if self.cancel():
            logger.debug("Superseded pending call")
        self._pending = ScheduledCall(delay, callback, sleep=self._sleep)
        return self._pending

    def cancel(self) -> bool:
        if self._pending is None:
            return False
        cancelled = self._pending.cancel()
        self._pending = None
        return cancelled
