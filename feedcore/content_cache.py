"""
Two-tier content cache with interest-ranked and fallback serving.

Lookup order for a user:

    memory tier (>= count) -> durable tier (>= count, backfills memory)
        -> interest ranking over the candidate pool -> unseen fallback

Callers always receive copies. Pooled items record every user they were
served to in ``used_by`` and are never served to that user again.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any, Optional

from feedcore.constants import (
    CACHE_DISLIKE_ADJUSTMENT,
    CACHE_KEY_PREFIX,
    CACHE_LIKE_ADJUSTMENT,
    CACHE_MAX_ITEMS,
    DURABLE_CACHE_DIR,
    DURABLE_CACHE_MAX_FILES,
    DURABLE_CACHE_TTL,
    MEMORY_CACHE_FLUSH_INTERVAL,
    MEMORY_CACHE_TTL,
    MIN_INTEREST_QUALITY,
)
from feedcore.logging_config import get_logger
from feedcore.mock_data import MOCK_CONTENT_ITEMS
from feedcore.models import CacheEntryDict, ContentItem
from feedcore.scoring import clamp_score
from feedcore.storage import JsonFileStore, KeyValueStore, StorageError

logger = get_logger(__name__)


def _copies(items: Iterable[ContentItem]) -> list[ContentItem]:
    return [item.copy() for item in items]


def _apply_score(
    item: ContentItem, action: str, new_score: Optional[float]
) -> None:
    if new_score is None:
        adjustment = CACHE_LIKE_ADJUSTMENT if action == "like" else CACHE_DISLIKE_ADJUSTMENT
        item.quality_score = clamp_score(item.quality_score + adjustment)
    else:
        item.quality_score = clamp_score(new_score)
    if action == "like":
        item.likes += 1
    elif action == "dislike":
        item.dislikes += 1


class MemoryTier:
    """Per-user item lists with a TTL and a periodic full flush."""

    def __init__(
        self,
        ttl: float = MEMORY_CACHE_TTL,
        flush_interval: float = MEMORY_CACHE_FLUSH_INTERVAL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = ttl
        self.flush_interval = flush_interval
        self._clock = clock
        self._entries: dict[str, tuple[list[ContentItem], float]] = {}
        self._last_flush = clock()
        self._lock = threading.RLock()

    def _maybe_flush(self) -> None:
        now = self._clock()
        if self.flush_interval and now - self._last_flush >= self.flush_interval:
            if self._entries:
                logger.info(f"Flushing memory cache ({len(self._entries)} users)")
            self._entries.clear()
            self._last_flush = now

    def get(self, user_id: str) -> Optional[list[ContentItem]]:
        with self._lock:
            self._maybe_flush()
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            items, stored_at = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[user_id]
                return None
            return _copies(items)

    def set(self, user_id: str, items: list[ContentItem]) -> None:
        with self._lock:
            self._maybe_flush()
            self._entries[user_id] = (_copies(items), self._clock())

    def has_seen(self, user_id: str, content_id: str) -> bool:
        with self._lock:
            self._maybe_flush()
            entry = self._entries.get(user_id)
            if entry is None:
                return False
            return any(item.id == content_id for item in entry[0])

    def update_items(self, content_id: str, fn: Callable[[ContentItem], None]) -> int:
        updated = 0
        with self._lock:
            for items, _ in self._entries.values():
                for item in items:
                    if item.id == content_id:
                        fn(item)
                        updated += 1
        return updated

    def find(self, content_id: str) -> Optional[ContentItem]:
        with self._lock:
            for items, _ in self._entries.values():
                for item in items:
                    if item.id == content_id:
                        return item.copy()
        return None

    def evict_expired(self) -> int:
        now = self._clock()
        with self._lock:
            self._maybe_flush()
            expired = [
                uid for uid, (_, stored_at) in self._entries.items()
                if now - stored_at >= self.ttl
            ]
            for uid in expired:
                del self._entries[uid]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._last_flush = self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class DurableTier:
    """CacheEntry documents in a KeyValueStore, validated on every read.

    StorageError from the backend propagates; ContentCache decides whether to
    fall through.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl: float = DURABLE_CACHE_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self._clock = clock

    def _key(self, user_id: str) -> str:
        return CACHE_KEY_PREFIX + user_id

    def _parse(self, user_id: str, doc: Any) -> Optional[list[ContentItem]]:
        """Items from a valid, unexpired entry owned by user_id, else None."""
        if not isinstance(doc, dict) or doc.get("user_id") != user_id:
            return None
        expires_at = doc.get("expires_at")
        if not isinstance(expires_at, (int, float)) or expires_at <= self._clock():
            return None
        contents = doc.get("contents")
        if not isinstance(contents, list):
            return None
        try:
            return [ContentItem.from_dict(c) for c in contents]
        except (AttributeError, TypeError, ValueError):
            return None

    def get(self, user_id: str) -> Optional[list[ContentItem]]:
        key = self._key(user_id)
        doc = self.store.get(key)
        if doc is None:
            return None
        items = self._parse(user_id, doc)
        if items is None:
            logger.debug(f"Dropping stale durable cache entry for {user_id}")
            self.store.delete(key)
        return items

    def set(self, user_id: str, items: list[ContentItem]) -> None:
        now = self._clock()
        entry: CacheEntryDict = {
            "user_id": user_id,
            "contents": [item.to_dict() for item in items],
            "created_at": now,
            "expires_at": now + self.ttl,
        }
        self.store.set(self._key(user_id), entry)

    def user_ids(self) -> list[str]:
        return [k[len(CACHE_KEY_PREFIX):] for k in self.store.keys(CACHE_KEY_PREFIX)]

    def update_items(self, content_id: str, fn: Callable[[ContentItem], None]) -> int:
        updated = 0
        for user_id in self.user_ids():
            items = self.get(user_id)
            if not items:
                continue
            hits = [item for item in items if item.id == content_id]
            if not hits:
                continue
            for item in hits:
                fn(item)
            # Keep the original expiry; only the contents change
            doc = self.store.get(self._key(user_id))
            if isinstance(doc, dict):
                doc["contents"] = [item.to_dict() for item in items]
                self.store.set(self._key(user_id), doc)
                updated += len(hits)
        return updated

    def cleanup(self) -> int:
        """Delete every expired or invalid entry; returns how many went."""
        removed = 0
        for key in self.store.keys(CACHE_KEY_PREFIX):
            user_id = key[len(CACHE_KEY_PREFIX):]
            doc = self.store.get(key)
            if doc is not None and self._parse(user_id, doc) is None:
                self.store.delete(key)
                removed += 1
        return removed

    def __len__(self) -> int:
        return len(self.store.keys(CACHE_KEY_PREFIX))


class ContentCache:
    def __init__(
        self,
        memory: Optional[MemoryTier] = None,
        durable: Optional[DurableTier] = None,
        pool: Optional[Iterable[ContentItem]] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.memory = memory if memory is not None else MemoryTier(clock=clock)
        self.durable = (
            durable
            if durable is not None
            else DurableTier(
                JsonFileStore(Path(DURABLE_CACHE_DIR), clock=clock, max_files=DURABLE_CACHE_MAX_FILES),
                clock=clock,
            )
        )
        self._rng = rng or random.Random()
        self._pool: dict[str, ContentItem] = {
            item.id: item.copy()
            for item in (pool if pool is not None else MOCK_CONTENT_ITEMS)
        }
        self._lock = threading.RLock()

    def _durable_get(self, user_id: str) -> Optional[list[ContentItem]]:
        try:
            return self.durable.get(user_id)
        except StorageError as e:
            logger.warning(f"Durable cache read failed for {user_id}: {e}")
            return None

    def _mirror(self, user_id: str, items: list[ContentItem]) -> None:
        try:
            self.durable.set(user_id, items)
        except StorageError as e:
            logger.warning(f"Durable cache write failed for {user_id}: {e}")

    def _update_cache(self, user_id: str, items: list[ContentItem]) -> None:
        self.memory.set(user_id, items)
        self._mirror(user_id, items)

    def _filter_by_interests(
        self, interests: list[str], user_id: str
    ) -> list[ContentItem]:
        wanted = [i.lower() for i in interests if i and i.strip()]
        if not wanted:
            return []

        def matches(item: ContentItem) -> int:
            return sum(
                1
                for topic in item.topics
                if any(w in topic.lower() or topic.lower() in w for w in wanted)
            )

        with self._lock:
            scored = [
                (matches(item), item)
                for item in self._pool.values()
                if user_id not in item.used_by and item.quality_score >= MIN_INTEREST_QUALITY
            ]
        ranked = [(m, item) for m, item in scored if m > 0]
        ranked.sort(
            key=lambda pair: (pair[0], pair[1].quality_score, pair[1].generated_at),
            reverse=True,
        )
        return _copies(item for _, item in ranked)

    def _fallback(
        self, user_id: str, count: int, exclude: set[str]
    ) -> list[ContentItem]:
        with self._lock:
            candidates = [
                item
                for item in self._pool.values()
                if item.id not in exclude
                and user_id not in item.used_by
                and not self.memory.has_seen(user_id, item.id)
            ]
        self._rng.shuffle(candidates)
        return _copies(candidates[:count])

    def _mark_served(self, user_id: str, items: list[ContentItem]) -> None:
        """Record user_id on each served item and its pooled original."""
        with self._lock:
            for item in items:
                pooled = self._pool.get(item.id)
                if pooled is None:
                    continue
                if user_id not in pooled.used_by:
                    pooled.used_by.append(user_id)
                    pooled.reuse_count += 1
                item.used_by = list(pooled.used_by)
                item.reuse_count = pooled.reuse_count

    def lookup(
        self,
        user_id: str,
        count: int = 10,
        interests: Iterable[str] = (),
        allow_fallback: bool = True,
    ) -> tuple[list[ContentItem], Optional[str]]:
        """Items for user_id plus the tier that served them.

        Tier is one of ``memory``, ``durable``, ``interest`` or ``fallback``;
        ``(items, None)`` means nothing suitable was found without fallback.
        """
        if count <= 0:
            return [], None
        interests = list(interests)

        cached = self.memory.get(user_id)
        if cached and len(cached) >= count:
            logger.debug(f"Serving {user_id} from memory cache")
            return cached[:count], "memory"

        stored = self._durable_get(user_id)
        if stored and len(stored) >= count:
            logger.debug(f"Serving {user_id} from durable cache")
            self.memory.set(user_id, stored)
            return stored[:count], "durable"

        ranked = self._filter_by_interests(interests, user_id)
        if len(ranked) >= count:
            result = ranked[:count]
            self._mark_served(user_id, result)
            self._update_cache(user_id, result)
            return result, "interest"

        if not allow_fallback:
            self._mark_served(user_id, ranked)
            return ranked, None

        # Top up whatever matched with unseen items
        fill = self._fallback(user_id, count - len(ranked), {i.id for i in ranked})
        result = ranked + fill
        self._mark_served(user_id, result)
        logger.info(
            "Serving fallback content to %s (%d matched, %d filled)",
            user_id,
            len(ranked),
            len(fill),
        )
        return result, "fallback"

    def get_content_for_user(
        self,
        user_id: str,
        count: int = 10,
        interests: Iterable[str] = (),
        allow_fallback: bool = True,
    ) -> list[ContentItem]:
        return self.lookup(user_id, count, interests, allow_fallback)[0]

    def save_generated_content(
        self, user_id: str, items: list[ContentItem]
    ) -> list[ContentItem]:
        marked: list[ContentItem] = []
        for item in items:
            copy = item.copy()
            if user_id not in copy.used_by:
                copy.used_by.append(user_id)
            copy.reuse_count += 1
            marked.append(copy)

        with self._lock:
            for item in marked:
                self._pool[item.id] = item.copy()

        seen = {item.id for item in marked}
        existing = self.memory.get(user_id) or []
        merged = marked + [item for item in existing if item.id not in seen]
        merged = merged[:CACHE_MAX_ITEMS]

        self._update_cache(user_id, merged)
        logger.info(f"Cached {len(marked)} generated items for {user_id}")
        return _copies(marked)

    def update_quality_score(
        self, content_id: str, action: str, new_score: Optional[float] = None
    ) -> int:
        """Sync every cached copy of content_id; returns the number updated."""

        def apply(item: ContentItem) -> None:
            _apply_score(item, action, new_score)

        updated = 0
        with self._lock:
            pooled = self._pool.get(content_id)
            if pooled is not None:
                apply(pooled)
                updated += 1
        updated += self.memory.update_items(content_id, apply)
        try:
            updated += self.durable.update_items(content_id, apply)
        except StorageError as e:
            logger.warning(f"Durable score sync failed for {content_id}: {e}")

        logger.debug(f"Updated {updated} cached copies of {content_id} ({action})")
        return updated

    def get_item(self, content_id: str) -> Optional[ContentItem]:
        with self._lock:
            pooled = self._pool.get(content_id)
            if pooled is not None:
                return pooled.copy()
        return self.memory.find(content_id)

    def get_stats(self) -> dict[str, int]:
        try:
            durable_size = len(self.durable)
        except StorageError as e:
            logger.warning(f"Durable cache size unavailable: {e}")
            durable_size = 0
        with self._lock:
            pool_size = len(self._pool)
        return {
            "memory_cache_size": len(self.memory),
            "durable_cache_size": durable_size,
            "pool_size": pool_size,
        }

    def cleanup(self) -> dict[str, int]:
        memory_removed = self.memory.evict_expired()
        try:
            durable_removed = self.durable.cleanup()
        except StorageError as e:
            logger.warning(f"Durable cache cleanup failed: {e}")
            durable_removed = 0
        logger.info(
            "Cache cleanup removed %d memory and %d durable entries",
            memory_removed,
            durable_removed,
        )
        return {"memory": memory_removed, "durable": durable_removed}
