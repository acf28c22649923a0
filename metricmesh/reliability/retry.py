"""
Retry Policy: Exponential Backoff with Jitter

Drives the writer's optimistic-concurrency loop:
- Exponential backoff: 10ms × 2^n, capped at 10s
- Full jitter: random(0, backoff) so colliding writers spread out
- Max retries: 10 attempts per write before giving up best-effort
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Optional

from metricmesh.core import constants as C

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry configuration for conditional writes."""

    max_retries: int = C.WRITE_MAX_RETRIES
    base_delay_ms: int = C.RETRY_BASE_MS
    max_delay_ms: int = C.RETRY_MAX_DELAY_MS
    exponential_base: float = 2.0
    jitter: bool = True  # Full jitter

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays must be >= 0")

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def immediate(cls, max_retries: int = C.WRITE_MAX_RETRIES) -> RetryPolicy:
        """Retry without sleeping (tests, single-writer deployments)."""
        return cls(max_retries=max_retries, base_delay_ms=0, max_delay_ms=0, jitter=False)

    def delay_ms(self, attempt: int) -> float:
        return calculate_backoff(
            attempt=attempt,
            base_delay_ms=self.base_delay_ms,
            max_delay_ms=self.max_delay_ms,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
        )

    async def sleep(self, attempt: int, stats: Optional[RetryStats] = None) -> float:
        """Wait out the backoff for `attempt` (0-based). Returns the delay in ms."""
        delay = self.delay_ms(attempt)
        if stats is not None:
            stats.total_delay_ms += delay
        logger.debug(f"Retrying in {delay:.1f}ms (attempt {attempt + 2})")
        await asyncio.sleep(delay / 1000)
        return delay


@dataclass(slots=True)
class RetryStats:
    """Retry attempt statistics."""
    total_attempts: int = 0
    conflicts: int = 0
    throttled: int = 0
    total_delay_ms: float = 0.0
    last_error: Optional[str] = None


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay with optional jitter.

    Full jitter: random(0, min(cap, base * 2^attempt))
    """
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))

    if jitter:
        delay = random.uniform(0, delay)

    return delay
