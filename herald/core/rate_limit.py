"""
Fixed-window request counters backed by Redis.

Each window lives under ``<prefix>:<identifier>:<window_start_ms>``. The
increment and the expiry are sent in one MULTI/EXEC pipeline, so two callers
racing on a fresh key are both counted and the key never outlives its window.

Windows are fixed, not sliding: a client can burst up to twice the limit
across a window boundary.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Sequence

from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RateLimitStoreError(Exception):
    """The counter store could not be reached or rejected the command."""


@dataclass(frozen=True)
class RateLimitWindow:
    """A named counter: at most ``limit`` hits per ``window_ms``. ``limit <= 0`` disables the cap."""

    identifier: str
    window_ms: int
    limit: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int
    window_ms: int
    window_reset_at: datetime
    degraded: bool = False

    @property
    def remaining(self) -> int:
        if self.limit <= 0:
            return 0
        return max(self.limit - self.current, 0)


def _to_datetime(epoch_ms: int) -> datetime:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)


class RateLimitCounter:
    """Atomic, TTL-bounded counters against a shared Redis."""

    def __init__(
        self,
        redis_client: Any,
        key_prefix: str = "herald:ratelimit",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis_client
        self.key_prefix = key_prefix
        self._clock = clock

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    @staticmethod
    def window_start(window_ms: int, now_ms: int) -> int:
        return (now_ms // window_ms) * window_ms

    def window_key(self, identifier: str, window_start: int) -> str:
        return f"{self.key_prefix}:{identifier}:{window_start}"

    def increment_and_check(
        self,
        identifier: str,
        window_ms: int,
        limit: int,
        *,
        fail_open: bool = True,
    ) -> RateLimitResult:
        """Count one hit against ``identifier`` in the current window."""
        return self.increment_many(
            [RateLimitWindow(identifier, window_ms, limit)], fail_open=fail_open
        )[0]

    def increment_many(
        self,
        windows: Sequence[RateLimitWindow],
        *,
        fail_open: bool = True,
    ) -> List[RateLimitResult]:
        """
        Count one hit against every window in a single transaction.

        With ``fail_open`` a store failure yields ``allowed=True`` results
        flagged ``degraded``; otherwise ``RateLimitStoreError`` is raised.
        """
        for window in windows:
            if window.window_ms <= 0:
                raise ValueError("window_ms must be positive")

        now_ms = self.now_ms()
        starts = [self.window_start(w.window_ms, now_ms) for w in windows]
        try:
            pipe = self.redis.pipeline(transaction=True)
            for window, start in zip(windows, starts):
                key = self.window_key(window.identifier, start)
                pipe.incr(key)
                pipe.pexpire(key, window.window_ms)
            replies = pipe.execute()
            # INCR replies sit at even positions, PEXPIRE replies at odd ones.
            counts = [int(reply) for reply in replies[0::2]]
            if len(counts) != len(windows):
                raise ValueError(
                    f"expected {len(windows)} INCR replies, got {len(counts)}"
                )
        except (RedisError, ValueError, TypeError) as e:
            if not fail_open:
                raise RateLimitStoreError(str(e)) from e
            logger.warning(
                "Rate limit store failed, allowing request (degraded): %s", e
            )
            return [
                RateLimitResult(
                    allowed=True,
                    current=0,
                    limit=window.limit,
                    window_ms=window.window_ms,
                    window_reset_at=_to_datetime(start + window.window_ms),
                    degraded=True,
                )
                for window, start in zip(windows, starts)
            ]

        results = []
        for window, start, current in zip(windows, starts, counts):
            results.append(
                RateLimitResult(
                    allowed=window.limit <= 0 or current <= window.limit,
                    current=current,
                    limit=window.limit,
                    window_ms=window.window_ms,
                    window_reset_at=_to_datetime(start + window.window_ms),
                )
            )
        return results

    def get_count(self, identifier: str, window_ms: int) -> int:
        """Hits recorded in the current window, without incrementing."""
        start = self.window_start(window_ms, self.now_ms())
        return self.get_counts(identifier, [start])[0]

    def get_counts(self, identifier: str, window_starts: Sequence[int]) -> List[int]:
        """Hits recorded for each given window start, in one round-trip."""
        if not window_starts:
            return []
        try:
            values = self.redis.mget(
                [self.window_key(identifier, start) for start in window_starts]
            )
            return [int(v) if v is not None else 0 for v in values]
        except (RedisError, ValueError, TypeError) as e:
            raise RateLimitStoreError(str(e)) from e

    def reset(self, identifier: str, window_ms: int) -> None:
        """Drop the current window for ``identifier``."""
        start = self.window_start(window_ms, self.now_ms())
        try:
            self.redis.delete(self.window_key(identifier, start))
        except RedisError as e:
            raise RateLimitStoreError(str(e)) from e
