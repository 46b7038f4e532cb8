"""Retry and circuit breaking for store calls.

Only ``StoreUnavailable`` is transient. A lost compare-and-set or a duplicate
insert is a definitive answer from the store: it is neither retried nor
counted against the breaker.
"""

from __future__ import annotations

import asyncio
import functools
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import ParamSpec, TypeVar

from challenge_engine.repositories.exceptions import StoreUnavailable
from challenge_engine.shared.utils.logging import get_logger

logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class RetryConfig:
    """Backoff for transient store failures.

    Attempt ``n`` (0-indexed) waits ``base_delay * 2**n`` seconds, capped at
    ``max_delay`` and scaled by a random factor in [0.5, 1.5) when
    ``jitter`` is set.
    """

    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 5.0
    jitter: bool = True

    def calculate_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * 2**attempt, self.max_delay)
        return delay * (0.5 + random.random()) if self.jitter else delay


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout: float = 30.0
    success_threshold: int = 2


class CircuitBreaker:
    """Fails fast with ``StoreUnavailable`` while the store keeps timing out."""

    def __init__(self, name: str, config: CircuitBreakerConfig | None = None) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._opened_at = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    def _admit(self) -> None:
        if self._state != CircuitState.OPEN:
            return
        if time.monotonic() - self._opened_at < self.config.recovery_timeout:
            raise StoreUnavailable(f"Circuit breaker '{self.name}' is open")
        self._state = CircuitState.HALF_OPEN
        self._successes = 0
        logger.info("circuit_breaker_half_open", name=self.name)

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.config.success_threshold:
                self._state = CircuitState.CLOSED
                self._failures = 0
                logger.info("circuit_breaker_closed", name=self.name)
        else:
            self._failures = max(0, self._failures - 1)

    def _on_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.config.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning("circuit_breaker_opened", name=self.name, failures=self._failures)
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        self._admit()
        try:
            result = await func()
        except StoreUnavailable:
            self._on_failure()
            raise
        self._on_success()
        return result


def with_retry(
    config: RetryConfig | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async callable on ``StoreUnavailable``; re-raise the last error."""
    config = config or RetryConfig()

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except StoreUnavailable as e:
                    if attempt >= config.max_retries:
                        logger.error(
                            "store_retry_exhausted",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error_type=e.details.get("error_type", type(e).__name__),
                        )
                        raise
                    delay = config.calculate_delay(attempt)
                    logger.warning(
                        "store_retry",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        delay=round(delay, 3),
                    )
                    attempt += 1
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


class StoreGuard:
    """Retry wrapped around a circuit breaker, one per store instance."""

    def __init__(self, name: str, retry_config: RetryConfig | None = None) -> None:
        self.breaker = CircuitBreaker(name)
        self.retry_config = retry_config or RetryConfig()

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        @with_retry(self.retry_config)
        async def guarded() -> T:
            return await self.breaker.call(func)

        return await guarded()


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "RetryConfig",
    "StoreGuard",
    "with_retry",
]
