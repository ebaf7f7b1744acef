"""
Bounded retry for the primary feed endpoint.
The hosted service sleeps when idle and answers 5xx while it wakes up.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from app.utils.config import get_retry_config
from app.client.errors import ServerUnavailable

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]


class RetryController:
    """
    Retries a call on ServerUnavailable with a fixed delay.

    Rate limits and every other failure propagate on the first attempt;
    whether to offer a manual retry is the caller's decision.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        config = get_retry_config()
        self.max_attempts = max_attempts if max_attempts is not None else config["max_attempts"]
        self.delay = delay if delay is not None else config["delay"]
        self._sleep = sleep

        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def status_message(self, attempt: int) -> str:
        return f"Service is starting up, attempt {attempt}/{self.max_attempts}..."

    async def call(
        self,
        operation: Callable[[], Awaitable[Any]],
        on_status: Optional[StatusCallback] = None
    ) -> Any:
        """
        Run an operation, retrying on cold-start failures.

        Args:
            operation: Zero-argument coroutine function performing one round trip
            on_status: Receives a human-readable status after each failed attempt

        Returns:
            The operation's result

        Raises:
            ServerUnavailable: After the final attempt failed
            NetworkError: Any non-retryable failure, unchanged
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except ServerUnavailable as e:
                remaining = self.max_attempts - attempt
                logger.warning(
                    f"Service unavailable (HTTP {e.status_code}), "
                    f"attempt {attempt}/{self.max_attempts}"
                )

                if on_status:
                    on_status(self.status_message(attempt))

                if remaining == 0:
                    raise ServerUnavailable(
                        e.detail,
                        status_code=e.status_code,
                        path=e.path,
                        attempts=attempt,
                        attempts_remaining=0
                    ) from e

                await self._sleep(self.delay)
