# graphweave/llm/retry.py
"""
Bounded retry with exponential backoff for external ports.

Each attempt runs under an optional timeout. After max_attempts the last
error is re-raised; the Retrying* wrappers turn that into "no result".
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from graphweave.config.schema import RetryConfig
from graphweave.logging.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 0.5
    backoff_factor: float = 2.0
    max_delay: float = 8.0
    timeout: Optional[float] = 30.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_delay,
            backoff_factor=config.backoff_factor,
            max_delay=config.max_delay,
            timeout=config.timeout,
        )

    def delay(self, attempt: int) -> float:
        """Sleep before retry number `attempt` (1-based)."""
        return min(self.initial_delay * self.backoff_factor ** (attempt - 1), self.max_delay)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str,
    tag: str = "",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    attempt = 1
    while True:
        try:
            if policy.timeout is not None:
                return await asyncio.wait_for(fn(), timeout=policy.timeout)
            return await fn()
        except Exception as exc:
            if attempt >= policy.max_attempts:
                raise
            wait = policy.delay(attempt)
            logger.debug(
                f"{tag} {label} failed (attempt {attempt}/{policy.max_attempts}): {exc!r}; "
                f"retrying in {wait:.2f}s"
            )
        await sleep(wait)
        attempt += 1


__all__ = ["RetryPolicy", "call_with_retry"]
