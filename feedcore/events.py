"""
In-memory interaction event log with per-user sessions.

Events are appended in timestamp order, so expiry is a bisect + slice and the
cap is a tail slice. Sessions idle for more than SESSION_IDLE_TIMEOUT seconds
are replaced on the next event.
"""

from __future__ import annotations

import bisect
import csv
import io
import json
import secrets
import threading
import time
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Optional

from feedcore.constants import (
    EVENT_LOG_MAX_EVENTS,
    EVENT_MAX_AGE,
    EVENT_SWEEP_INTERVAL,
    SESSION_IDLE_TIMEOUT,
)
from feedcore.experiments import VariantAssignor
from feedcore.logging_config import get_logger
from feedcore.models import EVENT_TYPES, InteractionEvent, UserSession, VariantConfig

logger = get_logger(__name__)

CSV_FIELDS = ("event_type", "user_id", "timestamp", "variant", "sequence_id", "session_id")


def _rate(numerator: int, denominator: int) -> str:
    return f"{(numerator / denominator) * 100:.2f}" if denominator > 0 else "0.00"


class InteractionEventLog:
    def __init__(
        self,
        assignor: VariantAssignor,
        max_events: int = EVENT_LOG_MAX_EVENTS,
        session_timeout: float = SESSION_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.assignor = assignor
        self.max_events = max_events
        self.session_timeout = session_timeout
        self._clock = clock
        self._events: list[InteractionEvent] = []
        self._timestamps: list[float] = []
        self._sessions: dict[str, UserSession] = {}
        self._sequences: Counter[tuple[str, str]] = Counter()
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=UTC)

    def _new_session_id(self) -> str:
        return f"session_{int(self._clock() * 1000)}_{secrets.token_hex(5)[:9]}"

    def _create_session(self, user_id: str) -> UserSession:
        """Caller holds self._lock."""
        now = self._now()
        session = UserSession(
            session_id=self._new_session_id(),
            user_id=user_id,
            started_at=now,
            last_activity_at=now,
            variant=self.assignor.assign_variant(user_id),
        )
        self._sessions[user_id] = session
        return session

    def _get_or_create_session(self, user_id: str) -> UserSession:
        session = self._sessions.get(user_id)
        if session is None:
            return self._create_session(user_id)
        idle = self._clock() - session.last_activity_at.timestamp()
        if idle > self.session_timeout:
            logger.debug(f"Session {session.session_id} expired after {idle:.0f}s idle")
            return self._create_session(user_id)
        return session

    def start_session(self, user_id: str) -> str:
        """Open a fresh session and record the experiment exposure."""
        with self._lock:
            session = self._create_session(user_id)
        self.track_event(
            "ab_test_exposure",
            user_id,
            {"variant": session.variant, "session_id": session.session_id},
        )
        return session.session_id

    def track_event(
        self,
        event_type: str,
        user_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[InteractionEvent]:
        """Append one event. Failures are logged and the event is dropped."""
        if event_type not in EVENT_TYPES:
            logger.warning(f"Dropping event with unknown type {event_type}")
            return None
        try:
            with self._lock:
                session = self._get_or_create_session(user_id)
                now = self._now()
                session.last_activity_at = now

                key = (user_id, event_type)
                self._sequences[key] += 1
                event = InteractionEvent(
                    event_type=event_type,
                    user_id=user_id,
                    timestamp=now,
                    variant=session.variant,
                    metadata={
                        **(metadata or {}),
                        "session_id": session.session_id,
                        "page_views": session.page_views,
                        "interactions": session.interactions,
                    },
                    session_id=session.session_id,
                    sequence_id=self._sequences[key],
                )
                self._events.append(event)
                self._timestamps.append(now.timestamp())
                self._truncate_locked(self.max_events)

                if event_type == "content_view":
                    session.page_views += 1
                elif event_type == "content_interaction":
                    session.interactions += 1
        except Exception as e:
            logger.warning(f"Failed to track {event_type} for {user_id}: {e}")
            return None

        logger.debug(
            "Tracked %s for %s (variant=%s, seq=%d)",
            event_type,
            user_id,
            event.variant,
            event.sequence_id,
        )
        return event

    def track_content_interaction(
        self,
        user_id: str,
        content_id: str,
        action: str,
        new_score: float,
        old_score: float,
        config: VariantConfig,
    ) -> None:
        delta = new_score - old_score
        base = config.like_score if delta > 0 else config.dislike_score
        weight = delta / base if base else 0.0

        self.track_event(
            "content_interaction",
            user_id,
            {
                "content_id": content_id,
                "action": action,
                "quality_score": new_score,
                "old_score": old_score,
                "delta": delta,
                "weight": weight,
                "config_variant": config.variant,
                "like_score": config.like_score,
                "dislike_score": config.dislike_score,
                "dwell_time_bonus": config.dwell_time_bonus,
            },
        )
        self.track_event(
            "quality_score_update",
            user_id,
            {
                "content_id": content_id,
                "new_score": new_score,
                "delta": delta,
                "config_variant": config.variant,
            },
        )
        self.assignor.record_interaction(user_id)

    def _snapshot(self) -> list[InteractionEvent]:
        with self._lock:
            return list(self._events)

    def get_ab_test_stats(self) -> dict[str, Any]:
        events = self._snapshot()
        groups: dict[str, list[InteractionEvent]] = {
            name: [] for name in self.assignor.registry.names()
        }
        for event in events:
            if event.variant:
                groups.setdefault(event.variant, []).append(event)

        variants: dict[str, dict[str, Any]] = {}
        for variant, group in groups.items():
            interactions = [e for e in group if e.event_type == "content_interaction"]
            likes = sum(1 for e in interactions if e.metadata.get("action") == "like")
            dislikes = sum(1 for e in interactions if e.metadata.get("action") == "dislike")
            views = sum(1 for e in group if e.event_type == "content_view")
            total_interactions = likes + dislikes
            variants[variant] = {
                "total_events": len(group),
                "content_views": views,
                "content_interactions": total_interactions,
                "likes": likes,
                "dislikes": dislikes,
                "conversion_rate": _rate(total_interactions, views),
                "satisfaction_rate": _rate(likes, total_interactions),
                "unique_users": len({e.user_id for e in group}),
            }

        grouped = [e for group in groups.values() for e in group]
        return {
            "variants": variants,
            "overall": {
                "total_events": len(grouped),
                "unique_users": len({e.user_id for e in grouped}),
                "active_sessions": len(self._sessions),
                "event_distribution": {v: len(g) for v, g in groups.items()},
            },
            "time_range": {
                "oldest": events[0].timestamp.isoformat() if events else None,
                "newest": events[-1].timestamp.isoformat() if events else None,
            },
        }

    def get_events(
        self,
        event_type: Optional[str] = None,
        variant: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[InteractionEvent]:
        """Events matching every given filter, newest first."""
        filtered = [
            e
            for e in self._snapshot()
            if (event_type is None or e.event_type == event_type)
            and (variant is None or e.variant == variant)
            and (start is None or e.timestamp >= start)
            and (end is None or e.timestamp <= end)
        ]
        filtered.sort(key=lambda e: e.timestamp, reverse=True)
        return filtered

    def get_user_session_stats(self, user_id: str) -> Optional[UserSession]:
        with self._lock:
            return self._sessions.get(user_id)

    def export_events(self, fmt: str = "json") -> str:
        events = [e.to_dict() for e in self._snapshot()]
        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf, lineterminator="\n")
            writer.writerow(CSV_FIELDS)
            for e in events:
                writer.writerow(["" if e[f] is None else e[f] for f in CSV_FIELDS])
            return buf.getvalue().rstrip("\n")
        if fmt != "json":
            raise ValueError(f"Unsupported export format: {fmt}")
        return json.dumps(events, indent=2)

    def _truncate_locked(self, max_events: int) -> int:
        excess = len(self._events) - max_events
        if excess <= 0:
            return 0
        del self._events[:excess]
        del self._timestamps[:excess]
        return excess

    def truncate_events(self, max_events: Optional[int] = None) -> int:
        """Drop the oldest events beyond max_events; returns how many went."""
        with self._lock:
            return self._truncate_locked(self.max_events if max_events is None else max_events)

    def evict_expired(self, max_age_seconds: float = EVENT_MAX_AGE) -> int:
        """Drop events at or older than max_age_seconds; returns how many went."""
        cutoff = self._clock() - max_age_seconds
        with self._lock:
            idx = bisect.bisect_right(self._timestamps, cutoff)
            if idx:
                del self._events[:idx]
                del self._timestamps[:idx]
        if idx:
            logger.info(f"Evicted {idx} expired events")
        return idx

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class EventSweeper:
    """Daemon thread that periodically evicts expired events."""

    def __init__(
        self,
        log: InteractionEventLog,
        interval: float = EVENT_SWEEP_INTERVAL,
        max_age_seconds: float = EVENT_MAX_AGE,
    ) -> None:
        self.log = log
        self.interval = interval
        self.max_age_seconds = max_age_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="event-sweeper", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.log.evict_expired(self.max_age_seconds)
            except Exception as e:
                logger.warning(f"Event sweep failed: {e}")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
