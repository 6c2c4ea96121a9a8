"""User records: tenure, cumulative interaction counters, preferences, history."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional, TypedDict

from feedcore.constants import LONG_DWELL_MS, RECENT_LIKES_WINDOW, USER_HISTORY_SIZE
from feedcore.scoring import get_positive_rate, get_user_age


class UserStatsDict(TypedDict):
    total_likes: int
    total_dislikes: int
    total_views: int
    total_long_dwells: int


class InteractionRecord(TypedDict):
    content_id: str
    action: str
    dwell_time_ms: float
    scroll_depth: float
    topics: list[str]
    timestamp: float


@dataclass
class UserPreferences:
    interests: list[str] = field(default_factory=list)
    language: str = "en"
    style: str = "casual"

    def to_dict(self) -> dict[str, Any]:
        return {
            "interests": list(self.interests),
            "language": self.language,
            "style": self.style,
        }


@dataclass
class UserRecord:
    user_id: str
    created_at: datetime
    total_likes: int = 0
    total_dislikes: int = 0
    total_views: int = 0
    total_long_dwells: int = 0
    preferences: UserPreferences = field(default_factory=UserPreferences)
    history: deque[InteractionRecord] = field(
        default_factory=lambda: deque(maxlen=USER_HISTORY_SIZE)
    )

    def stats(self) -> UserStatsDict:
        return {
            "total_likes": self.total_likes,
            "total_dislikes": self.total_dislikes,
            "total_views": self.total_views,
            "total_long_dwells": self.total_long_dwells,
        }


class UserDirectory:
    """In-process user profile collaborator consumed read-only by the core."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._users: dict[str, UserRecord] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=UTC)

    def get_or_create(self, user_id: str) -> UserRecord:
        with self._lock:
            record = self._users.get(user_id)
            if record is None:
                record = UserRecord(user_id=user_id, created_at=self._now())
                self._users[user_id] = record
            return record

    def set_created_at(self, user_id: str, created_at: datetime) -> None:
        self.get_or_create(user_id).created_at = created_at

    def save_preferences(
        self,
        user_id: str,
        interests: list[str],
        language: Optional[str] = None,
        style: Optional[str] = None,
    ) -> UserPreferences:
        record = self.get_or_create(user_id)
        prefs = record.preferences
        prefs.interests = [i.strip() for i in interests if i and i.strip()]
        if language:
            prefs.language = language
        if style:
            prefs.style = style
        return prefs

    def get_preferences(self, user_id: str) -> UserPreferences:
        return self.get_or_create(user_id).preferences

    def user_age_days(self, user_id: str) -> int:
        return get_user_age(self.get_or_create(user_id).created_at, self._now())

    def positive_rate(self, user_id: str) -> float:
        record = self.get_or_create(user_id)
        return get_positive_rate(record.total_likes, record.total_dislikes)

    def recent_likes(self, user_id: str, window: float = RECENT_LIKES_WINDOW) -> int:
        cutoff = self._clock() - window
        record = self.get_or_create(user_id)
        with self._lock:
            return sum(
                1
                for item in record.history
                if item["action"] == "like" and item["timestamp"] >= cutoff
            )

    def record_view(self, user_id: str) -> None:
        record = self.get_or_create(user_id)
        with self._lock:
            record.total_views += 1

    def record_interaction(
        self,
        user_id: str,
        content_id: str,
        action: str,
        dwell_time_ms: Optional[float] = None,
        scroll_depth: Optional[float] = None,
        topics: Optional[list[str]] = None,
    ) -> UserStatsDict:
        record = self.get_or_create(user_id)
        with self._lock:
            if action == "like":
                record.total_likes += 1
            elif action == "dislike":
                record.total_dislikes += 1
            if dwell_time_ms and dwell_time_ms > LONG_DWELL_MS:
                record.total_long_dwells += 1
            record.history.append(
                {
                    "content_id": content_id,
                    "action": action,
                    "dwell_time_ms": float(dwell_time_ms or 0),
                    "scroll_depth": float(scroll_depth or 0),
                    "topics": list(topics or []),
                    "timestamp": self._clock(),
                }
            )
            return record.stats()

    def get_interactions(
        self, user_id: str, content_id: Optional[str] = None
    ) -> list[InteractionRecord]:
        record = self.get_or_create(user_id)
        with self._lock:
            items = list(record.history)
        if content_id:
            items = [i for i in items if i["content_id"] == content_id]
        return items

    def interaction_summary(
        self, user_id: str, content_id: Optional[str] = None
    ) -> dict[str, Any]:
        items = self.get_interactions(user_id, content_id)
        dwells = [i["dwell_time_ms"] for i in items if i["dwell_time_ms"]]
        depths = [i["scroll_depth"] for i in items if i["scroll_depth"]]
        return {
            "total_interactions": len(items),
            "likes": sum(1 for i in items if i["action"] == "like"),
            "dislikes": sum(1 for i in items if i["action"] == "dislike"),
            "avg_dwell_time_ms": round(sum(dwells) / len(dwells)) if dwells else 0,
            "avg_scroll_depth": round(sum(depths) / len(depths), 2) if depths else 0.0,
        }

    def recent_topics(self, user_id: str, limit: int = 10) -> list[str]:
        items = self.get_interactions(user_id)[-limit:]
        return [t for i in items for t in i["topics"]]
