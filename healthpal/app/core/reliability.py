"""
Guards for outbound adapter calls (payment gateway, SMS, email).
"""

import time
import asyncio
import logging
from typing import Awaitable, Callable, Any

logger = logging.getLogger(__name__)

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Opens after `failure_threshold` consecutive failures and rejects calls
    for `reset_timeout` seconds. The first call after that window is a probe:
    success closes the circuit, failure opens it again.
    """

    def __init__(self, failure_threshold: int = 5, reset_timeout: float = 60, name: str = "adapter"):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = CLOSED

    def _admit(self) -> None:
        if self.state != OPEN:
            return
        if time.time() - self.last_failure_time > self.reset_timeout:
            self.state = HALF_OPEN
            return
        raise CircuitOpenError(f"{self.name} circuit is open")

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self.failures = 0
        self.state = CLOSED
        return result

    def _on_failure(self) -> None:
        self.failures += 1
        self.last_failure_time = time.time()
        if self.state == HALF_OPEN or self.failures >= self.failure_threshold:
            if self.state != OPEN:
                logger.warning("%s circuit opened after %d failures", self.name, self.failures)
            self.state = OPEN


async def bounded(coro: Awaitable[Any], timeout: float) -> Any:
    """Await an adapter coroutine for at most `timeout` seconds."""
    return await asyncio.wait_for(coro, timeout=timeout)
