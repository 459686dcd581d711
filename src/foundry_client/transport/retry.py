from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx

from ..config import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY_MS

logger = logging.getLogger("foundry_client")

T = TypeVar("T")

JITTER_RATIO = 0.1
RATE_LIMITED = 429


@dataclass(frozen=True)
class RetryAttempt:
    attempt: int
    error: BaseException
    delay_ms: float


def error_status(error: BaseException) -> int | None:
    """Return the HTTP status carried by *error*, if any."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status", None)
    return status if isinstance(status, int) else None


def is_retryable(error: BaseException) -> bool:
    """Client errors (4xx) are final, except 429. Everything else is transient."""
    status = error_status(error)
    if status is not None and 400 <= status < 500:
        return status == RATE_LIMITED
    return True


class RetryExecutor:
    """Runs a remote operation with bounded retries and exponential backoff."""

    def __init__(
        self,
        *,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay_ms: float = DEFAULT_RETRY_DELAY_MS,
        jitter_ratio: float = JITTER_RATIO,
    ) -> None:
        self._retry_attempts = retry_attempts
        self._retry_delay_ms = retry_delay_ms
        self._jitter_ratio = jitter_ratio

    @property
    def max_attempts(self) -> int:
        return self._retry_attempts + 1

    def get_delay(self, attempt: int) -> float:
        """Return the delay in milliseconds after failed *attempt* (1-based)."""
        base = self._retry_delay_ms * (2 ** (attempt - 1))
        jitter = random.random() * base * self._jitter_ratio
        return base + jitter

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "request",
    ) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    raise
                if attempt >= self.max_attempts:
                    logger.warning(
                        "%s failed after %d attempts: %s",
                        description,
                        attempt,
                        e,
                    )
                    raise

                record = RetryAttempt(
                    attempt=attempt, error=e, delay_ms=self.get_delay(attempt)
                )
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.0fms: %s",
                    description,
                    record.attempt,
                    self.max_attempts,
                    record.delay_ms,
                    record.error,
                )
                await asyncio.sleep(record.delay_ms / 1000)
                attempt += 1
