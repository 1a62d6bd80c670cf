"""Hosting API rate-limit bookkeeping for ``gh`` calls."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

logger = logging.getLogger(__name__)

WARN_THRESHOLD = 100
PAUSE_THRESHOLD = 20
DEFAULT_LIMIT = 5_000
DEFAULT_RESET_SECONDS = 3_600


class RateLimitLevel(str, Enum):
    OK = "ok"
    LOW = "low"
    CRITICAL = "critical"
    EXHAUSTED = "exhausted"


@dataclass(slots=True)
class RateLimitState:
    limit: int = DEFAULT_LIMIT
    remaining: int = DEFAULT_LIMIT
    used: int = 0
    reset_at: datetime | None = None
    last_updated: datetime | None = None


class RateLimiter:
    """Track remaining quota from response headers and flag low quota.

    The limiter never sleeps; callers get a level and decide what to do.
    """

    def __init__(
        self,
        *,
        warn_threshold: int = WARN_THRESHOLD,
        pause_threshold: int = PAUSE_THRESHOLD,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.warn_threshold = warn_threshold
        self.pause_threshold = pause_threshold
        self._clock = clock or (lambda: datetime.now(UTC))
        self.state = RateLimitState()
        self.calls = 0

    def record_call(self) -> None:
        self.calls += 1

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        normalized = {key.lower(): value for key, value in headers.items()}
        if (limit := _int_header(normalized, "x-ratelimit-limit")) is not None:
            self.state.limit = limit
        if (remaining := _int_header(normalized, "x-ratelimit-remaining")) is not None:
            self.state.remaining = remaining
        if (used := _int_header(normalized, "x-ratelimit-used")) is not None:
            self.state.used = used
        if (reset := _int_header(normalized, "x-ratelimit-reset")) is not None:
            self.state.reset_at = datetime.fromtimestamp(reset, tz=UTC)
        self.state.last_updated = self._clock()

    def mark_exhausted(self) -> None:
        """Record a rate-limit rejection; without a known future reset assume a full window."""

        now = self._clock()
        self.state.remaining = 0
        if self.state.reset_at is None or self.state.reset_at <= now:
            self.state.reset_at = now + timedelta(seconds=DEFAULT_RESET_SECONDS)
        self.state.last_updated = now

    def seconds_until_reset(self) -> float:
        if self.state.reset_at is None:
            return 0.0
        return max(0.0, (self.state.reset_at - self._clock()).total_seconds())

    def check(self) -> RateLimitLevel:
        """Classify the current quota, logging a warning when it runs low."""

        state = self.state
        if state.remaining <= 0:
            if state.reset_at is not None and self.seconds_until_reset() == 0:
                state.remaining = state.limit
                return RateLimitLevel.OK
            logger.warning(
                "GitHub API rate limit reached (%s/%s remaining), resets in %.0fs",
                state.remaining,
                state.limit,
                self.seconds_until_reset(),
            )
            return RateLimitLevel.EXHAUSTED
        if state.remaining <= self.pause_threshold:
            logger.warning(
                "GitHub API rate limit critically low: %s/%s remaining",
                state.remaining,
                state.limit,
            )
            return RateLimitLevel.CRITICAL
        if state.remaining <= self.warn_threshold:
            logger.warning(
                "GitHub API rate limit low: %s/%s remaining",
                state.remaining,
                state.limit,
            )
            return RateLimitLevel.LOW
        return RateLimitLevel.OK


def _int_header(headers: Mapping[str, str], name: str) -> int | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
