"""
Retry and rate-limit helpers for the GitHub client.

RetryPolicy computes exponential backoff for transient failures.
RateLimitInfo reads GitHub's rate limit headers and turns them into a wait
time: primary limits wait until the reset instant, secondary limits wait
for ``retry-after``.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    max_delay_seconds: float = 30.0
    jitter: bool = False

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
            max_delay_seconds=settings.max_delay_seconds,
            jitter=settings.jitter,
        )

    def compute_backoff(self, attempt_index_zero_based: int) -> float:
        delay = min(self.base_delay_seconds * (2 ** attempt_index_zero_based), self.max_delay_seconds)
        if self.jitter:
            delay = delay * (0.5 + random.random())  # 0.5x - 1.5x jitter window
        return delay


def _int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


@dataclass
class RateLimitInfo:
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset_at: Optional[int] = None  # epoch seconds
    retry_after: Optional[int] = None  # seconds

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "RateLimitInfo":
        return cls(
            limit=_int_header(headers, 'x-ratelimit-limit'),
            remaining=_int_header(headers, 'x-ratelimit-remaining'),
            reset_at=_int_header(headers, 'x-ratelimit-reset'),
            retry_after=_int_header(headers, 'retry-after'),
        )

    @property
    def is_primary_exhausted(self) -> bool:
        return self.remaining == 0 and self.reset_at is not None

    @property
    def is_limited(self) -> bool:
        return self.is_primary_exhausted or self.retry_after is not None

    def wait_seconds(self, buffer_seconds: float = 1.0, now: Optional[float] = None) -> Optional[float]:
        """
        Seconds to sleep before retrying, or None when the headers carry no
        rate limit signal.
        """
        if self.retry_after is not None:
            return float(max(self.retry_after, 0))
        if self.is_primary_exhausted:
            now = time.time() if now is None else now
            return max(self.reset_at - now, 0.0) + buffer_seconds
        return None

    def reset_time(self) -> Optional[datetime]:
        if self.reset_at is None:
            return None
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc)
