"""
FeedService: composes experiments, scoring, events, admission, caching and
generation into the operations exposed over HTTP and the CLI.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from feedcore.config import Settings
from feedcore.constants import (
    DEFAULT_QUALITY_SCORE,
    DURABLE_CACHE_MAX_FILES,
    EVENT_QUERY_LIMIT,
    GENERATION_DEFAULT_COUNT,
    GENERATION_MAX_COUNT,
    RATE_LIMIT_MESSAGE,
)
from feedcore.content_cache import ContentCache, DurableTier, MemoryTier
from feedcore.events import InteractionEventLog
from feedcore.experiments import VariantAssignor
from feedcore.generation import GenerationClient, GenerationError, MockGenerator
from feedcore.llm_utils import build_prompt, diversity_score, time_of_day
from feedcore.logging_config import get_logger
from feedcore.models import ContentItem, to_datetime
from feedcore.rate_limiter import RateLimiter
from feedcore.scoring import calculate_quality_score_with_variant
from feedcore.storage import JsonFileStore, MemoryStore
from feedcore.users import UserDirectory

logger = get_logger(__name__)


def _serialize(items: list[ContentItem], source: str) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for item in items:
        d = dict(item.to_dict())
        d["metadata"] = {**item.metadata, "source": item.metadata.get("source", source)}
        out.append(d)
    return out


class FeedService:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        assignor: Optional[VariantAssignor] = None,
        events: Optional[InteractionEventLog] = None,
        limiter: Optional[RateLimiter] = None,
        cache: Optional[ContentCache] = None,
        users: Optional[UserDirectory] = None,
        generator: Optional[GenerationClient] = None,
        mock: Optional[MockGenerator] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.settings = settings or Settings()
        self._clock = clock
        rng = rng or random.Random()
        self.assignor = assignor or VariantAssignor(store=MemoryStore(clock), clock=clock)
        self.events = events or InteractionEventLog(
            self.assignor, max_events=self.settings.event_log_max_events, clock=clock
        )
        self.limiter = limiter or RateLimiter(
            max_requests=self.settings.rate_limit_max_requests,
            window_ms=self.settings.rate_limit_window_ms,
            store=MemoryStore(clock),
            clock=clock,
        )
        self.cache = cache or ContentCache(
            memory=MemoryTier(ttl=self.settings.memory_cache_ttl, clock=clock),
            durable=DurableTier(
                MemoryStore(clock), ttl=self.settings.durable_cache_ttl, clock=clock
            ),
            rng=rng,
            clock=clock,
        )
        self.users = users or UserDirectory(clock=clock)
        self.generator = generator
        self.mock = mock or MockGenerator(rng=rng, clock=clock)

    @classmethod
    def from_settings(cls, settings: Settings) -> FeedService:
        """Production wiring: durable cache on disk, real generator unless mocked."""
        durable = DurableTier(
            JsonFileStore(Path(settings.durable_cache_dir), max_files=DURABLE_CACHE_MAX_FILES),
            ttl=settings.durable_cache_ttl,
        )
        cache = ContentCache(
            memory=MemoryTier(ttl=settings.memory_cache_ttl), durable=durable
        )
        generator = None
        if not settings.use_mock_data:
            generator = GenerationClient(
                base_url=settings.ollama_base_url,
                model=settings.ollama_model,
                max_retries=settings.generation_max_retries,
                timeout=settings.generation_timeout,
            )
        return cls(settings=settings, cache=cache, generator=generator)

    def _current_score(self, content_id: str) -> tuple[int, list[str]]:
        item = self.cache.get_item(content_id)
        if item is None:
            return DEFAULT_QUALITY_SCORE, []
        return item.quality_score, list(item.topics)

    def record_interaction(
        self,
        user_id: str,
        content_id: str,
        action: str,
        dwell_time_ms: Optional[float] = None,
        scroll_depth: Optional[float] = None,
    ) -> dict[str, Any]:
        old_score, topics = self._current_score(content_id)

        # Signals reflect history before this interaction
        user_age = self.users.user_age_days(user_id)
        positive_rate = self.users.positive_rate(user_id)
        recent_likes = self.users.recent_likes(user_id)
        config = self.assignor.get_user_config(user_id)

        if action == "view":
            self.events.track_event(
                "content_view", user_id, {"content_id": content_id}
            )
            self.users.record_view(user_id)
            new_score, reason = old_score, "view"
        else:
            result = calculate_quality_score_with_variant(
                action,
                old_score,
                user_age,
                positive_rate,
                recent_likes,
                config,
                dwell_time_ms,
            )
            new_score, reason = result.new_score, result.reason
            logger.info(
                "Scored %s for %s (variant %s): %d -> %d [%s]",
                content_id,
                user_id,
                config.variant,
                old_score,
                new_score,
                reason,
            )
            self.events.track_content_interaction(
                user_id, content_id, action, new_score, old_score, config
            )
            self.cache.update_quality_score(content_id, action, new_score)

        user_stats = self.users.record_interaction(
            user_id, content_id, action, dwell_time_ms, scroll_depth, topics
        )
        return {
            "content_id": content_id,
            "new_score": new_score,
            "old_score": old_score,
            "reason": reason,
            "variant": config.variant,
            "interaction": {
                "action": action,
                "dwell_time_ms": dwell_time_ms,
                "scroll_depth": scroll_depth,
            },
            "user_stats": user_stats,
            "metadata": {
                "user_age": user_age,
                "positive_rate": positive_rate,
                "recent_likes": recent_likes,
            },
        }

    def get_interactions(
        self, user_id: str, content_id: Optional[str] = None
    ) -> dict[str, Any]:
        return {
            "interactions": self.users.get_interactions(user_id, content_id),
            "stats": self.users.interaction_summary(user_id, content_id),
        }

    def _prompt_for(self, user_id: str, count: int, mode: str) -> str:
        prefs = self.users.get_preferences(user_id)
        recent = self.users.recent_topics(user_id)
        hour = datetime.fromtimestamp(self._clock()).hour
        return build_prompt(
            prefs.interests,
            recent_topics=recent,
            mode=mode,
            diversity=diversity_score(recent),
            time_context=time_of_day(hour),
            count=count,
            language=prefs.language,
            style=prefs.style,
        )

    async def _generate(
        self, user_id: str, count: int, mode: str
    ) -> tuple[list[ContentItem], str]:
        interests = self.users.get_preferences(user_id).interests
        if self.settings.use_mock_data or self.generator is None:
            return self.mock.generate(count, interests), "mock"
        prompt = self._prompt_for(user_id, count, mode)
        try:
            return await self.generator.generate(prompt, count), "ollama"
        except GenerationError as e:
            logger.warning(f"Generation failed for {user_id}, using fallback: {e}")
            return self.mock.generate(count, interests, prefix="fallback"), "fallback"

    async def request_generation(
        self,
        user_id: str,
        count: int = GENERATION_DEFAULT_COUNT,
        mode: str = "default",
    ) -> dict[str, Any]:
        started = time.perf_counter()
        count = max(1, min(GENERATION_MAX_COUNT, count))

        admission = self.limiter.acquire(user_id, "/generate")
        rate_limit = {
            "remaining": admission.remaining,
            "reset_at": admission.reset_at.isoformat(),
            "retry_after": admission.retry_after,
        }
        if not admission.allowed:
            logger.info(f"Generation denied for {user_id}, serving fallback")
            fallback = self.mock.generate(count, prefix="fallback")
            return {
                "success": False,
                "error": "RATE_LIMIT_EXCEEDED",
                "message": RATE_LIMIT_MESSAGE,
                "contents": _serialize(fallback, "fallback"),
                "source": "fallback",
                "cached_count": 0,
                "generated_count": 0,
                "generation_time_ms": int((time.perf_counter() - started) * 1000),
                "rate_limit": rate_limit,
                "admission": admission,
            }

        interests = self.users.get_preferences(user_id).interests
        cached, tier = self.cache.lookup(user_id, count, interests, allow_fallback=False)
        if len(cached) >= count:
            logger.info(f"Served {count} cached items to {user_id} from {tier} tier")
            return {
                "success": True,
                "contents": _serialize(cached[:count], "cache"),
                "source": "cache",
                "cached_count": len(cached),
                "generated_count": 0,
                "generation_time_ms": int((time.perf_counter() - started) * 1000),
                "rate_limit": rate_limit,
                "admission": admission,
            }

        generated, source = await self._generate(user_id, count - len(cached), mode)
        if generated:
            self.cache.save_generated_content(user_id, generated)

        contents = (cached + generated)[:count]
        return {
            "success": True,
            "contents": _serialize(contents, source),
            "source": source,
            "cached_count": len(cached),
            "generated_count": len(generated),
            "generation_time_ms": int((time.perf_counter() - started) * 1000),
            "rate_limit": rate_limit,
            "admission": admission,
        }

    def track_client_event(
        self,
        user_id: str,
        content_id: Optional[str],
        action: Optional[str],
        old_score: float,
        new_score: float,
        variant: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Record a score change computed on the client side."""
        config = config or {}
        like_score = config.get("like_score", 5)
        dislike_score = config.get("dislike_score", -8)
        delta = new_score - old_score
        base = like_score if action == "like" else dislike_score
        weight = delta / base if base else 0.0

        self.events.track_event(
            "content_interaction",
            user_id,
            {
                "content_id": content_id,
                "action": action,
                "old_score": old_score,
                "new_score": new_score,
                "delta": delta,
                "weight": weight,
                "variant": variant,
                "config_variant": variant,
                "like_score": like_score,
                "dislike_score": dislike_score,
                "dwell_time_bonus": config.get("dwell_time_bonus", 8),
            },
        )
        self.events.track_event(
            "quality_score_update",
            user_id,
            {
                "content_id": content_id,
                "new_score": new_score,
                "delta": delta,
                "config_variant": variant,
            },
        )
        return {
            "user_id": user_id,
            "content_id": content_id,
            "action": action,
            "old_score": old_score,
            "new_score": new_score,
            "delta": delta,
            "variant": variant,
            "tracked_at": datetime.fromtimestamp(self._clock()).astimezone().isoformat(),
        }

    def query_events(
        self,
        user_id: Optional[str] = None,
        variant: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        event_type: Optional[str] = None,
        limit: int = EVENT_QUERY_LIMIT,
    ) -> dict[str, Any]:
        # Naive bounds are taken as UTC
        start = to_datetime(start) if start else None
        end = to_datetime(end) if end else None
        events = self.events.get_events(event_type, variant, start, end)
        session = self.events.get_user_session_stats(user_id) if user_id else None
        return {
            "total_events": len(events),
            "events": [e.to_dict() for e in events[:limit]],
            "ab_test_stats": self.events.get_ab_test_stats(),
            "user_session": session.to_dict() if session else None,
        }

    def update_preferences(
        self,
        user_id: str,
        interests: list[str],
        language: Optional[str] = None,
        style: Optional[str] = None,
    ) -> dict[str, Any]:
        prefs = self.users.save_preferences(user_id, interests, language, style)
        self.events.track_event(
            "user_behavior", user_id, {"preferences_updated": prefs.to_dict()}
        )
        return prefs.to_dict()

    def experiment_stats(self) -> dict[str, Any]:
        return {
            "assignments": self.assignor.get_stats(),
            "variants": {c.variant: c.to_dict() for c in self.assignor.registry},
            "events": self.events.get_ab_test_stats(),
        }

    def cleanup(self) -> dict[str, int]:
        stats = self.cache.cleanup()
        stats["events"] = self.events.evict_expired()
        return stats
