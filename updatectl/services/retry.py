"""Bounded exponential backoff for transient remote failures."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

from pydantic import BaseModel

from updatectl.config import Settings
from updatectl.errors import RemoteExecutionError
from updatectl.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    max_attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 30.0
    multiplier: float = 2.0

    @classmethod
    def from_settings(cls, cfg: Settings) -> RetryPolicy:
        return cls(
            max_attempts=max(1, cfg.retry_max_attempts),
            initial_delay=cfg.retry_initial_delay_ms / 1000,
            max_delay=cfg.retry_max_delay_ms / 1000,
        )

    def delay(self, attempt: int) -> float:
        """Delay after the *attempt*-th failure (1-based)."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)


def is_transient(exc: BaseException) -> bool:
    """Refused/reset connections, timeouts and DNS failures only."""
    return isinstance(exc, RemoteExecutionError) and exc.transient


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    retryable: Callable[[BaseException], bool] = is_transient,
    operation: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not retryable(exc):
                raise
            delay = policy.delay(attempt)
            log.warning(
                "retry.scheduled",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay=delay,
                error=str(exc),
            )
            await sleep(delay)
