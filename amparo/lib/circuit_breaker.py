"""
Circuit breaker for calls to the language model provider.

After `failure_threshold` consecutive failures the breaker opens and
rejects calls immediately. Once `recovery_timeout` seconds have passed a
single trial call is let through; its outcome closes or re-opens the
circuit.

Usage:
    breaker = CircuitBreaker(name="anthropic")
    async with breaker:
        reply = await client.messages.create(...)
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from typing import Any

from amparo.lib.exceptions import AmparoException

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    """Possible states for a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(AmparoException):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, name: str, retry_after: float) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is open. Retry after {retry_after:.1f}s.")


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker guarded by an asyncio.Lock.

    Args:
        name: Identifier for the protected service (used in logging).
        failure_threshold: Consecutive failures before opening.
        recovery_timeout: Seconds spent OPEN before a trial call is allowed.
        clock: Monotonic time source, replaceable in tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Any = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    def retry_after_seconds(self) -> float:
        """Seconds until an OPEN circuit lets a trial call through."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._clock() - self._opened_at))

    def _move(self, new_state: CircuitState) -> None:
        if new_state == self._state:
            return
        logger.info("circuit %s: %s -> %s", self.name, self._state.value, new_state.value)
        self._state = new_state

    async def _acquire(self) -> None:
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return
            if self._state == CircuitState.OPEN and self.retry_after_seconds() == 0.0:
                self._move(CircuitState.HALF_OPEN)
            if self._state == CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return
            raise CircuitOpenError(self.name, self.retry_after_seconds())

    async def _release(self, failed: bool) -> None:
        async with self._lock:
            self._trial_in_flight = False
            if not failed:
                self._failures = 0
                self._move(CircuitState.CLOSED)
                return
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                logger.warning(
                    "circuit %s opening after %d consecutive failures",
                    self.name,
                    self._failures,
                )
                self._opened_at = self._clock()
                self._move(CircuitState.OPEN)

    async def __aenter__(self) -> CircuitBreaker:
        await self._acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self._release(failed=exc_type is not None)

    async def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        async with self._lock:
            self._failures = 0
            self._opened_at = 0.0
            self._trial_in_flight = False
            self._move(CircuitState.CLOSED)


__all__ = ["CircuitBreaker", "CircuitOpenError", "CircuitState"]
