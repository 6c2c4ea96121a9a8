import pytest

from feedcore.constants import ASSIGNMENT_KEY_PREFIX
from feedcore.experiments import (
    DEFAULT_VARIANTS,
    VariantAssignor,
    VariantRegistry,
    string_hash,
)
from feedcore.storage import MemoryStore, StorageError


class BrokenStore:
    def get(self, key):
        raise StorageError("down")

    def set(self, key, value, ttl=None):
        raise StorageError("down")

    def delete(self, key):
        raise StorageError("down")

    def keys(self, prefix=""):
        raise StorageError("down")


def test_string_hash_matches_known_values():
    assert string_hash("") == 0
    assert string_hash("u1") == 3676
    assert string_hash("a") == 97


def test_string_hash_wraps_to_32_bits():
    value = string_hash("a-much-longer-user-identifier-0123456789")
    assert 0 <= value <= 2**31


@pytest.mark.parametrize("user_id,variant", [("u1", "A"), ("a", "B"), ("b", "C"), ("c", "D")])
def test_assignment_follows_hash_order(assignor, user_id, variant):
    assert assignor.assign_variant(user_id) == variant


def test_assignment_is_deterministic_across_instances(clock):
    first = VariantAssignor(store=MemoryStore(clock), clock=clock)
    second = VariantAssignor(store=MemoryStore(clock), clock=clock)
    for n in range(50):
        uid = f"user-{n}"
        assert first.assign_variant(uid) == second.assign_variant(uid)


def test_stored_assignment_wins_over_hash(clock):
    store = MemoryStore(clock)
    store.set(
        ASSIGNMENT_KEY_PREFIX + "u1",
        {
            "user_id": "u1",
            "variant": "C",
            "assigned_at": "2025-12-01T00:00:00+00:00",
            "last_interaction_at": None,
            "interaction_count": 4,
        },
    )
    assignor = VariantAssignor(store=store, clock=clock)
    assert assignor.assign_variant("u1") == "C"
    assert assignor.get_assignment("u1").interaction_count == 4


def test_assignment_survives_restart(clock):
    store = MemoryStore(clock)
    VariantAssignor(store=store, clock=clock).assign_variant("u1")
    assert store.get(ASSIGNMENT_KEY_PREFIX + "u1")["variant"] == "A"
    assert VariantAssignor(store=store, clock=clock).assign_variant("u1") == "A"


def test_unknown_stored_variant_is_reassigned(clock):
    store = MemoryStore(clock)
    store.set(
        ASSIGNMENT_KEY_PREFIX + "u1",
        {"user_id": "u1", "variant": "Z", "assigned_at": "2025-12-01T00:00:00+00:00"},
    )
    assert VariantAssignor(store=store, clock=clock).assign_variant("u1") == "A"


def test_malformed_stored_assignment_is_reassigned(clock):
    store = MemoryStore(clock)
    store.set(ASSIGNMENT_KEY_PREFIX + "u1", {"variant": "B"})
    assert VariantAssignor(store=store, clock=clock).assign_variant("u1") == "A"


def test_storage_failure_still_assigns(clock):
    assignor = VariantAssignor(store=BrokenStore(), clock=clock)
    assert assignor.assign_variant("u1") == "A"
    assignor.record_interaction("u1")
    assert assignor.get_assignment("u1").interaction_count == 1


def test_get_user_config_returns_variant_parameters(assignor):
    config = assignor.get_user_config("u1")
    assert config.variant == "A"
    assert config.like_score == 5
    assert config.dwell_time_bonus == 8


def test_first_interaction_only_assigns(assignor, clock):
    assignor.record_interaction("u1")
    assignment = assignor.get_assignment("u1")
    assert assignment.interaction_count == 0
    assert assignment.last_interaction_at is None

    clock.advance(60)
    assignor.record_interaction("u1")
    assignment = assignor.get_assignment("u1")
    assert assignment.interaction_count == 1
    assert assignment.last_interaction_at.timestamp() == clock()


def test_stats_cover_every_variant(assignor):
    empty = assignor.get_stats()
    assert empty["variant_distribution"] == {"A": 0, "B": 0, "C": 0, "D": 0}
    assert empty["avg_interactions_per_user"] == 0.0

    assignor.assign_variant("u1")
    assignor.assign_variant("a")
    assignor.record_interaction("u1")
    assignor.record_interaction("u1")
    assignor.record_interaction("a")

    stats = assignor.get_stats()
    assert stats["total_users"] == 2
    assert stats["total_interactions"] == 3
    assert stats["variant_distribution"] == {"A": 1, "B": 1, "C": 0, "D": 0}
    assert stats["avg_interactions_per_user"] == 1.5


def test_registry_rejects_duplicates():
    registry = VariantRegistry()
    with pytest.raises(ValueError):
        registry.register(DEFAULT_VARIANTS[0])


def test_registry_preserves_order():
    registry = VariantRegistry()
    assert registry.names() == ["A", "B", "C", "D"]
    assert len(registry) == 4
    assert "B" in registry
    assert [c.variant for c in registry] == ["A", "B", "C", "D"]


def test_custom_registry_changes_modulus(clock):
    registry = VariantRegistry(DEFAULT_VARIANTS[:2])
    assignor = VariantAssignor(registry=registry, store=MemoryStore(clock), clock=clock)
    # 3676 % 2 == 0, 97 % 2 == 1
    assert assignor.assign_variant("u1") == "A"
    assert assignor.assign_variant("a") == "B"
