"""
Taskflow Circuit Breaker — resilience for advisory calls.

Protects the board from a failing AI provider:
- Retries with exponential backoff
- Opens after repeated failures and rejects calls until the recovery window passes
- Falls back to a cached result or a degraded default instead of raising
"""
from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional
import asyncio
import logging

from board.models.records import utcnow

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"        # Normal operation
    OPEN = "open"            # Failing, reject calls
    HALF_OPEN = "half_open"  # One trial call allowed


class CircuitOpenError(RuntimeError):
    pass


class CircuitBreaker:
    """Circuit breaker with exponential backoff and cached fallback."""

    def __init__(
        self,
        name: str = "advisory",
        failure_threshold: int = 3,
        recovery_timeout: float = 60.0,
        max_retries: int = 1,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure: Optional[datetime] = None
        self._cache: dict[str, Any] = {}

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._last_failure is not None:
            if (self.clock() - self._last_failure).total_seconds() > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure = None

    async def _fallback(self, cache_key: Optional[str], fallback: Optional[Callable], error: Exception) -> Any:
        if cache_key and cache_key in self._cache:
            return self._cache[cache_key]
        if fallback is not None:
            result = fallback()
            return await result if asyncio.iscoroutine(result) else result
        raise error

    async def call(
        self,
        func: Callable[..., Any],
        *args,
        cache_key: Optional[str] = None,
        fallback: Optional[Callable[[], Any]] = None,
        **kwargs,
    ) -> Any:
        """Run ``func`` under breaker protection."""
        if self.state == CircuitState.OPEN:
            logger.debug("%s circuit open, using fallback", self.name)
            return await self._fallback(
                cache_key, fallback,
                CircuitOpenError(f"{self.name} circuit open; retry after {self.recovery_timeout}s"),
            )

        last_error: Exception = RuntimeError("no attempts made")
        for attempt in range(self.max_retries + 1):
            try:
                result = func(*args, **kwargs)
                if asyncio.iscoroutine(result):
                    result = await result
            except Exception as exc:
                last_error = exc
                if attempt < self.max_retries:
                    await asyncio.sleep(min(self.backoff_base * (2 ** attempt), self.backoff_max))
                continue

            self._failure_count = 0
            self._state = CircuitState.CLOSED
            if cache_key:
                self._cache[cache_key] = result
            return result

        self._failure_count += 1
        self._last_failure = self.clock()
        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning("%s circuit opened after %d failures", self.name, self._failure_count)
        logger.warning("%s call failed: %s", self.name, last_error)
        return await self._fallback(cache_key, fallback, last_error)
