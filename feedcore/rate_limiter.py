"""
Per-user fixed-window admission control for generation requests.

The window is anchored at a user's first request (or first request after the
previous window expired), not at clock-hour boundaries. ``check`` never
consumes a slot. ``acquire`` checks and counts in one locked step, so a
request is admitted only if it fits under the cap.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Optional

from feedcore.constants import (
    RATE_LIMIT_HISTORY_SIZE,
    RATE_LIMIT_KEY_PREFIX,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_MS,
)
from feedcore.logging_config import get_logger
from feedcore.models import RateLimitRecord, RateLimitResult
from feedcore.storage import KeyValueStore, MemoryStore, StorageError

logger = get_logger(__name__)


class RateLimiter:
    def __init__(
        self,
        max_requests: int = RATE_LIMIT_MAX_REQUESTS,
        window_ms: int = RATE_LIMIT_WINDOW_MS,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_requests <= 0 or window_ms <= 0:
            raise ValueError("max_requests and window_ms must be positive")
        self.max_requests = max_requests
        self.window_ms = window_ms
        self._store: KeyValueStore = store if store is not None else MemoryStore()
        self._clock = clock
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _key(self, user_id: str) -> str:
        return RATE_LIMIT_KEY_PREFIX + user_id

    def _load(self, user_id: str) -> RateLimitRecord:
        """Stored record, or a fresh unsaved one when missing or malformed."""
        raw = self._store.get(self._key(user_id))
        record = RateLimitRecord.from_dict(raw) if raw is not None else None
        if record is None:
            if raw is not None:
                logger.warning(f"Discarding malformed rate limit record for {user_id}")
            record = RateLimitRecord(user_id=user_id, count=0, window_start=self._now_ms())
        return record

    def _save(self, record: RateLimitRecord) -> None:
        self._store.set(self._key(record.user_id), record.to_dict())

    def _expired(self, record: RateLimitRecord, now_ms: int) -> bool:
        return now_ms - record.window_start > self.window_ms

    def _reset(self, record: RateLimitRecord, now_ms: int) -> RateLimitRecord:
        # Lifetime counters survive the reset
        return RateLimitRecord(
            user_id=record.user_id,
            count=0,
            window_start=now_ms,
            history=[],
            total_requests=record.total_requests,
        )

    def _reset_at(self, window_start: int) -> datetime:
        return datetime.fromtimestamp((window_start + self.window_ms) / 1000, tz=UTC)

    def _admit(self, user_id: str, endpoint: Optional[str]) -> RateLimitResult:
        """Decide admission; with an endpoint, also take the slot under the same lock."""
        try:
            with self._lock:
                record = self._load(user_id)
                now_ms = self._now_ms()

                if self._expired(record, now_ms):
                    logger.debug(f"Rate limit window expired for {user_id}, resetting")
                    record = self._reset(record, now_ms)
                    if endpoint is None:
                        self._save(record)
                    else:
                        self._record_request(record, now_ms, endpoint)
                    return RateLimitResult(
                        allowed=True,
                        remaining=self.max_requests - 1,
                        reset_at=self._reset_at(now_ms),
                    )

                if record.count >= self.max_requests:
                    window_end = record.window_start + self.window_ms
                    retry_after = max(0, math.ceil((window_end - now_ms) / 1000))
                    logger.info(
                        "Rate limit exceeded for %s (%d/%d)",
                        user_id,
                        record.count,
                        self.max_requests,
                    )
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        reset_at=self._reset_at(record.window_start),
                        retry_after=retry_after,
                    )

                remaining = max(0, self.max_requests - record.count - 1)
                if endpoint is not None:
                    self._record_request(record, now_ms, endpoint)
                return RateLimitResult(
                    allowed=True,
                    remaining=remaining,
                    reset_at=self._reset_at(record.window_start),
                )
        except StorageError as e:
            # Fail open
            logger.error(f"Rate limit check failed for {user_id}: {e}")
            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests,
                reset_at=self._reset_at(self._now_ms()),
            )

    def check(self, user_id: str) -> RateLimitResult:
        return self._admit(user_id, None)

    def acquire(self, user_id: str, endpoint: str = "/generate") -> RateLimitResult:
        """Check and, when allowed, count the request in one step.

        Concurrent callers for the same user cannot both take the last slot.
        """
        return self._admit(user_id, endpoint)

    def _record_request(
        self, record: RateLimitRecord, now_ms: int, endpoint: str
    ) -> None:
        record.count += 1
        record.total_requests += 1
        record.history.append({"timestamp": now_ms, "endpoint": endpoint})
        if len(record.history) > RATE_LIMIT_HISTORY_SIZE:
            record.history = record.history[-RATE_LIMIT_HISTORY_SIZE:]
        self._save(record)

    def increment(self, user_id: str, endpoint: str = "/generate") -> None:
        try:
            with self._lock:
                record = self._load(user_id)
                now_ms = self._now_ms()
                if self._expired(record, now_ms):
                    record = self._reset(record, now_ms)
                self._record_request(record, now_ms, endpoint)
        except StorageError as e:
            logger.error(f"Rate limit increment failed for {user_id}: {e}")
            return
        logger.debug(f"Rate limit updated for {user_id} ({record.count}/{self.max_requests})")

    def get_user_stats(self, user_id: str) -> dict[str, Any]:
        now_ms = self._now_ms()
        try:
            with self._lock:
                record = self._load(user_id)
        except StorageError as e:
            logger.warning(f"Rate limit stats unavailable for {user_id}: {e}")
            return {
                "current_count": 0,
                "total_requests": 0,
                "recent_requests": [],
                "window_start": now_ms,
                "window_end": now_ms + self.window_ms,
            }
        return {
            "current_count": 0 if self._expired(record, now_ms) else record.count,
            "total_requests": record.total_requests,
            "recent_requests": [
                entry["timestamp"]
                for entry in record.history
                if entry["timestamp"] > now_ms - self.window_ms
            ],
            "window_start": record.window_start,
            "window_end": record.window_start + self.window_ms,
        }

    def rate_limit_headers(self, result: RateLimitResult) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.max_requests),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(int(result.reset_at.timestamp())),
        }
        if result.retry_after:
            headers["Retry-After"] = str(result.retry_after)
        return headers
