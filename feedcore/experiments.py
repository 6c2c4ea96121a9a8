"""Experiment variants over the scoring weights and per-user assignment."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime
from typing import Optional

from feedcore.constants import ASSIGNMENT_KEY_PREFIX
from feedcore.logging_config import get_logger
from feedcore.models import UserAssignment, VariantConfig
from feedcore.storage import KeyValueStore, MemoryStore, StorageError

logger = get_logger(__name__)


DEFAULT_VARIANTS: tuple[VariantConfig, ...] = (
    # Control: moderate weights with new-user protection
    VariantConfig(
        like_score=5,
        dislike_score=-8,
        dwell_time_bonus=8,
        scroll_depth_bonus=3,
        new_user_protection_days=7,
        new_user_weight=0.5,
        high_positive_rate_bonus=1.2,
        anti_cheat_threshold=5,
        anti_cheat_penalty=0.3,
        variant="A",
        description="Control: moderate weights, new-user protection",
    ),
    VariantConfig(
        like_score=6,
        dislike_score=-10,
        dwell_time_bonus=10,
        scroll_depth_bonus=4,
        new_user_protection_days=14,
        new_user_weight=0.3,
        high_positive_rate_bonus=1.3,
        anti_cheat_threshold=3,
        anti_cheat_penalty=0.2,
        variant="B",
        description="Extended protection: longer window, lower new-user weight",
    ),
    VariantConfig(
        like_score=4,
        dislike_score=-6,
        dwell_time_bonus=6,
        scroll_depth_bonus=2,
        new_user_protection_days=0,
        new_user_weight=1.0,
        high_positive_rate_bonus=1.0,
        anti_cheat_threshold=10,
        anti_cheat_penalty=0.8,
        variant="C",
        description="Simplified: no new-user protection, lenient anti-cheat",
    ),
    VariantConfig(
        like_score=5,
        dislike_score=-8,
        dwell_time_bonus=15,
        scroll_depth_bonus=5,
        new_user_protection_days=5,
        new_user_weight=0.7,
        high_positive_rate_bonus=1.1,
        anti_cheat_threshold=5,
        anti_cheat_penalty=0.3,
        variant="D",
        description="Dwell-weighted: dwell bonus nearly doubled",
    ),
)


class VariantRegistry:
    """Ordered set of variant configurations.

    Order matters: assignment maps ``hash % len(registry)`` onto it.
    """

    def __init__(self, configs: Iterable[VariantConfig] = DEFAULT_VARIANTS) -> None:
        self._configs: dict[str, VariantConfig] = {}
        for config in configs:
            self.register(config)

    def register(self, config: VariantConfig) -> None:
        if config.variant in self._configs:
            raise ValueError(f"Variant {config.variant!r} already registered")
        self._configs[config.variant] = config

    def get(self, variant: str) -> VariantConfig:
        return self._configs[variant]

    def names(self) -> list[str]:
        return list(self._configs)

    def __contains__(self, variant: object) -> bool:
        return variant in self._configs

    def __iter__(self) -> Iterator[VariantConfig]:
        return iter(self._configs.values())

    def __len__(self) -> int:
        return len(self._configs)


def string_hash(value: str) -> int:
    """31-multiplier hash over UTF-16 code units, wrapped to signed 32 bit.

    Stable across processes (unlike ``hash()``) and compatible with the
    assignments already handed out by the web client.
    """
    h = 0
    raw = value.encode("utf-16-le")
    for i in range(0, len(raw), 2):
        unit = raw[i] | (raw[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


class VariantAssignor:
    def __init__(
        self,
        registry: Optional[VariantRegistry] = None,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry or VariantRegistry()
        self._store: KeyValueStore = store if store is not None else MemoryStore()
        self._clock = clock
        self._assignments: dict[str, UserAssignment] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=UTC)

    def _select_variant(self, user_id: str) -> str:
        names = self.registry.names()
        return names[string_hash(user_id) % len(names)]

    def _load(self, user_id: str) -> Optional[UserAssignment]:
        try:
            raw = self._store.get(ASSIGNMENT_KEY_PREFIX + user_id)
        except StorageError as e:
            logger.warning(f"Failed to load assignment for {user_id}: {e}")
            return None
        if not raw:
            return None
        try:
            assignment = UserAssignment.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed assignment for {user_id}: {e}")
            return None
        if assignment.variant not in self.registry:
            # A retired variant keeps its users out of the experiment pool
            logger.warning(
                "Assignment for %s points at unknown variant %s",
                user_id,
                assignment.variant,
            )
            return None
        return assignment

    def _save(self, assignment: UserAssignment) -> None:
        try:
            self._store.set(
                ASSIGNMENT_KEY_PREFIX + assignment.user_id, assignment.to_dict()
            )
        except StorageError as e:
            logger.warning(f"Failed to persist assignment for {assignment.user_id}: {e}")

    def _get_or_assign(self, user_id: str) -> UserAssignment:
        assignment = self._assignments.get(user_id)
        if assignment is not None:
            return assignment
        assignment = self._load(user_id)
        if assignment is None:
            assignment = UserAssignment(
                user_id=user_id,
                variant=self._select_variant(user_id),
                assigned_at=self._now(),
            )
            self._save(assignment)
            logger.info(f"Assigned user {user_id} to variant {assignment.variant}")
        self._assignments[user_id] = assignment
        return assignment

    def assign_variant(self, user_id: str) -> str:
        with self._lock:
            return self._get_or_assign(user_id).variant

    def get_assignment(self, user_id: str) -> UserAssignment:
        with self._lock:
            return self._get_or_assign(user_id)

    def get_user_config(self, user_id: str) -> VariantConfig:
        return self.registry.get(self.assign_variant(user_id))

    def record_interaction(self, user_id: str) -> None:
        with self._lock:
            assignment = self._assignments.get(user_id) or self._load(user_id)
            if assignment is None:
                # First sighting only assigns
                self._get_or_assign(user_id)
                return
            self._assignments[user_id] = assignment
            assignment.interaction_count += 1
            assignment.last_interaction_at = self._now()
            self._save(assignment)

    def get_stats(self) -> dict:
        distribution = {name: 0 for name in self.registry.names()}
        total_users = 0
        total_interactions = 0
        with self._lock:
            for assignment in self._assignments.values():
                distribution[assignment.variant] = (
                    distribution.get(assignment.variant, 0) + 1
                )
                total_users += 1
                total_interactions += assignment.interaction_count

        return {
            "total_users": total_users,
            "total_interactions": total_interactions,
            "variant_distribution": distribution,
            "avg_interactions_per_user": round(total_interactions / total_users, 2)
            if total_users
            else 0.0,
        }
