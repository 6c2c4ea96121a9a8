"""Typed data models for feed scoring, experiments, events and caching."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Optional, TypedDict, get_args

type EventType = Literal[
    "content_view",
    "content_interaction",
    "quality_score_update",
    "ab_test_exposure",
    "user_behavior",
]

EVENT_TYPES: tuple[str, ...] = get_args(EventType.__value__)


def to_datetime(value: datetime | str | float | int | None) -> datetime:
    """Coerce ISO strings and epoch seconds into aware datetimes."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return datetime.fromtimestamp(0, tz=UTC)


@dataclass(frozen=True)
class VariantConfig:
    """Scoring parameters for one experiment variant."""

    like_score: float
    dislike_score: float
    dwell_time_bonus: float
    scroll_depth_bonus: float
    new_user_protection_days: float
    new_user_weight: float  # 0-1
    high_positive_rate_bonus: float
    anti_cheat_threshold: int  # Likes per recent window
    anti_cheat_penalty: float  # Multiplier < 1
    variant: str
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "like_score": self.like_score,
            "dislike_score": self.dislike_score,
            "dwell_time_bonus": self.dwell_time_bonus,
            "scroll_depth_bonus": self.scroll_depth_bonus,
            "new_user_protection_days": self.new_user_protection_days,
            "new_user_weight": self.new_user_weight,
            "high_positive_rate_bonus": self.high_positive_rate_bonus,
            "anti_cheat_threshold": self.anti_cheat_threshold,
            "anti_cheat_penalty": self.anti_cheat_penalty,
            "variant": self.variant,
            "description": self.description,
        }


class UserAssignmentDict(TypedDict):
    """Serialized UserAssignment payload for the key-value store."""

    user_id: str
    variant: str
    assigned_at: str
    last_interaction_at: Optional[str]
    interaction_count: int


@dataclass
class UserAssignment:
    """A user's permanent experiment bucket."""

    user_id: str
    variant: str
    assigned_at: datetime
    last_interaction_at: Optional[datetime] = None
    interaction_count: int = 0

    @classmethod
    def from_dict(cls, d: UserAssignmentDict) -> UserAssignment:
        last = d.get("last_interaction_at")
        return cls(
            user_id=str(d["user_id"]),
            variant=str(d["variant"]),
            assigned_at=to_datetime(d.get("assigned_at")),
            last_interaction_at=to_datetime(last) if last else None,
            interaction_count=int(d.get("interaction_count", 0)),
        )

    def to_dict(self) -> UserAssignmentDict:
        return {
            "user_id": self.user_id,
            "variant": self.variant,
            "assigned_at": self.assigned_at.isoformat(),
            "last_interaction_at": self.last_interaction_at.isoformat()
            if self.last_interaction_at
            else None,
            "interaction_count": self.interaction_count,
        }


class ContentItemDict(TypedDict, total=False):
    """Serialized ContentItem payload for caching and API boundaries."""

    id: str
    content: str
    hashtags: list[str]
    topics: list[str]
    likes: int
    dislikes: int
    quality_score: int
    generated_at: str
    style: str
    used_by: list[str]
    reuse_count: int
    metadata: dict[str, Any]


@dataclass
class ContentItem:
    """A generated short content item and its running quality score."""

    id: str
    content: str
    hashtags: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)
    likes: int = 0
    dislikes: int = 0
    quality_score: int = 50
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    style: str = "casual"
    used_by: list[str] = field(default_factory=list)
    reuse_count: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: ContentItemDict) -> ContentItem:
        """Create ContentItem from dict (e.g., from cache/API response)."""
        return cls(
            id=str(d.get("id", "")),
            content=str(d.get("content", "")),
            hashtags=list(d.get("hashtags", [])),
            topics=list(d.get("topics", [])),
            likes=int(d.get("likes", 0)),
            dislikes=int(d.get("dislikes", 0)),
            quality_score=int(d.get("quality_score", 50)),
            generated_at=to_datetime(d.get("generated_at")),
            style=str(d.get("style", "casual")),
            used_by=list(d.get("used_by", [])),
            reuse_count=int(d.get("reuse_count", 0)),
            metadata=dict(d.get("metadata", {})),
        )

    def to_dict(self) -> ContentItemDict:
        """Serialize to dict for caching."""
        return {
            "id": self.id,
            "content": self.content,
            "hashtags": list(self.hashtags),
            "topics": list(self.topics),
            "likes": self.likes,
            "dislikes": self.dislikes,
            "quality_score": self.quality_score,
            "generated_at": self.generated_at.isoformat(),
            "style": self.style,
            "used_by": list(self.used_by),
            "reuse_count": self.reuse_count,
            "metadata": dict(self.metadata),
        }

    def copy(self) -> ContentItem:
        return ContentItem.from_dict(self.to_dict())


@dataclass(frozen=True)
class QualityScoreResult:
    """Outcome of scoring one interaction."""

    new_score: int
    reason: str
    weight: float = 1.0
    delta: float = 0.0


@dataclass
class InteractionEvent:
    """One immutable entry in the interaction event log."""

    event_type: EventType
    user_id: str
    timestamp: datetime
    variant: Optional[str]
    metadata: dict[str, Any]
    session_id: str
    sequence_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "user_id": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "variant": self.variant,
            "metadata": dict(self.metadata),
            "session_id": self.session_id,
            "sequence_id": self.sequence_id,
        }


@dataclass
class UserSession:
    """Activity window of one user; replaced after idling."""

    session_id: str
    user_id: str
    started_at: datetime
    last_activity_at: datetime
    page_views: int = 0
    interactions: int = 0
    variant: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "started_at": self.started_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "page_views": self.page_views,
            "interactions": self.interactions,
            "variant": self.variant,
        }


class CacheEntryDict(TypedDict):
    """Durable-tier document for one user's cached contents."""

    user_id: str
    contents: list[ContentItemDict]
    created_at: float
    expires_at: float


class RequestLogEntry(TypedDict):
    timestamp: int  # epoch ms
    endpoint: str


class RateLimitRecordDict(TypedDict):
    user_id: str
    count: int
    window_start: int
    history: list[RequestLogEntry]
    total_requests: int


@dataclass
class RateLimitRecord:
    """Per-user admission counter for the current window."""

    user_id: str
    count: int
    window_start: int  # epoch ms
    history: list[RequestLogEntry] = field(default_factory=list)
    total_requests: int = 0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Optional[RateLimitRecord]:
        """Parse a stored record; returns None when the shape is invalid."""
        if not isinstance(d, dict):
            return None
        if not isinstance(d.get("user_id"), str):
            return None
        if not isinstance(d.get("count"), int) or not isinstance(
            d.get("window_start"), int
        ):
            return None
        history = d.get("history")
        if not isinstance(history, list):
            return None
        return cls(
            user_id=d["user_id"],
            count=d["count"],
            window_start=d["window_start"],
            history=list(history),
            total_requests=int(d.get("total_requests", len(history))),
        )

    def to_dict(self) -> RateLimitRecordDict:
        return {
            "user_id": self.user_id,
            "count": self.count,
            "window_start": self.window_start,
            "history": list(self.history),
            "total_requests": self.total_requests,
        }


@dataclass(frozen=True)
class RateLimitResult:
    """Admission decision returned by RateLimiter.check."""

    allowed: bool
    remaining: int
    reset_at: datetime
    retry_after: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat(),
            "retry_after": self.retry_after,
        }
