import random

import pytest

from feedcore.constants import CACHE_KEY_PREFIX
from feedcore.content_cache import ContentCache, DurableTier, MemoryTier
from feedcore.models import ContentItem
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


def make_items(n, prefix="gen"):
    return [
        ContentItem(id=f"{prefix}_{i}", content=f"post {i}", topics=["ai"], quality_score=70)
        for i in range(n)
    ]


def test_interest_ranking_filters_and_orders(cache):
    items, tier = cache.lookup("u1", count=2, interests=["programming", "startups"])
    assert tier == "interest"
    # "1" matches both interests, "7" matches one
    assert [i.id for i in items] == ["1", "7"]


def test_interest_match_is_substring_either_way(cache):
    items, tier = cache.lookup("u1", count=1, interests=["Program"])
    assert tier == "interest"
    assert items[0].id == "1"


def test_low_quality_items_are_not_interest_matches(cache):
    # "8" (health, 55) is below the quality floor; only "5" qualifies
    items, tier = cache.lookup("u1", count=2, interests=["health"], allow_fallback=False)
    assert tier is None
    assert [i.id for i in items] == ["5"]


def test_interest_results_are_cached(cache):
    cache.lookup("u1", count=1, interests=["ai"])
    items, tier = cache.lookup("u1", count=1, interests=["ai"])
    assert tier == "memory"
    assert items[0].id == "2"


def test_fallback_fills_remaining_slots(cache):
    items, tier = cache.lookup("u1", count=3, interests=["travel"])
    assert tier == "fallback"
    assert items[0].id == "6"
    assert len(items) == 3
    assert len({i.id for i in items}) == 3


def test_empty_interests_fall_back(cache):
    items, tier = cache.lookup("u1", count=3)
    assert tier == "fallback"
    assert len(items) == 3


def test_fallback_is_deterministic_for_seed(clock):
    def build():
        return ContentCache(
            memory=MemoryTier(clock=clock),
            durable=DurableTier(MemoryStore(clock), clock=clock),
            rng=random.Random(42),
            clock=clock,
        )

    assert [i.id for i in build().get_content_for_user("u1", 4)] == [
        i.id for i in build().get_content_for_user("u1", 4)
    ]


def test_no_fallback_returns_nothing_without_matches(cache):
    assert cache.lookup("u1", count=3, allow_fallback=False) == ([], None)


def test_save_generated_marks_and_caches(cache):
    saved = cache.save_generated_content("u1", make_items(3))
    assert all(item.used_by == ["u1"] for item in saved)
    assert all(item.reuse_count == 1 for item in saved)

    items, tier = cache.lookup("u1", count=3)
    assert tier == "memory"
    assert [i.id for i in items] == ["gen_0", "gen_1", "gen_2"]
    assert cache.get_item("gen_1").used_by == ["u1"]


def test_save_generated_puts_new_items_first_and_caps(cache):
    cache.save_generated_content("u1", make_items(20, "old"))
    cache.save_generated_content("u1", make_items(10, "new"))
    items = cache.memory.get("u1")
    assert len(items) == 25
    assert items[0].id == "new_0"
    assert items[-1].id == "old_14"


def test_save_generated_dedupes_by_id(cache):
    cache.save_generated_content("u1", make_items(2))
    cache.save_generated_content("u1", make_items(1))
    assert [i.id for i in cache.memory.get("u1")] == ["gen_0", "gen_1"]


def test_saved_items_excluded_from_interest_path(cache):
    cache.save_generated_content("u2", make_items(1))
    for_other, _ = cache.lookup("u1", 2, ["ai"], allow_fallback=False)
    assert [i.id for i in for_other] == ["2", "gen_0"]

    # u2 has a single cached item so lookup goes on to the interest path
    for_owner, tier = cache.lookup("u2", 2, ["ai"], allow_fallback=False)
    assert tier is None
    assert [i.id for i in for_owner] == ["2"]


def test_durable_tier_survives_memory_loss(clock):
    store = MemoryStore(clock)
    first = ContentCache(
        memory=MemoryTier(clock=clock), durable=DurableTier(store, clock=clock), clock=clock
    )
    first.save_generated_content("u1", make_items(3))

    restarted = ContentCache(
        memory=MemoryTier(clock=clock), durable=DurableTier(store, clock=clock), clock=clock
    )
    items, tier = restarted.lookup("u1", count=3)
    assert tier == "durable"
    assert [i.id for i in items] == ["gen_0", "gen_1", "gen_2"]
    # Backfilled into memory
    assert restarted.lookup("u1", count=3)[1] == "memory"


def test_expired_durable_entry_falls_through(clock):
    store = MemoryStore(clock)
    durable = DurableTier(store, clock=clock)
    durable.set("u1", make_items(3))
    clock.advance(1801)

    cache = ContentCache(memory=MemoryTier(clock=clock), durable=durable, clock=clock)
    items, tier = cache.lookup("u1", count=3, allow_fallback=False)
    assert tier is None
    assert store.get(CACHE_KEY_PREFIX + "u1") is None


def test_durable_entry_owner_is_checked(clock):
    store = MemoryStore(clock)
    durable = DurableTier(store, clock=clock)
    durable.set("u2", make_items(1))
    store.set(CACHE_KEY_PREFIX + "u1", store.get(CACHE_KEY_PREFIX + "u2"))

    assert durable.get("u1") is None
    assert store.get(CACHE_KEY_PREFIX + "u1") is None
    assert len(durable.get("u2")) == 1


def test_durable_cleanup_counts_expired(clock):
    durable = DurableTier(MemoryStore(clock), clock=clock)
    durable.set("u1", make_items(1))
    clock.advance(1000)
    durable.set("u2", make_items(1))
    clock.advance(1000)

    assert durable.cleanup() == 1
    assert durable.user_ids() == ["u2"]


def test_durable_failure_falls_through(clock):
    cache = ContentCache(
        memory=MemoryTier(clock=clock),
        durable=DurableTier(BrokenStore(), clock=clock),
        rng=random.Random(0),
        clock=clock,
    )
    items, tier = cache.lookup("u1", count=1, interests=["ai"])
    assert tier == "interest"
    # Mirror failures are logged, never raised
    cache.save_generated_content("u1", make_items(1))
    assert cache.get_stats()["durable_cache_size"] == 0
    assert cache.cleanup() == {"memory": 0, "durable": 0}


def test_memory_ttl(clock):
    tier = MemoryTier(clock=clock)
    tier.set("u1", make_items(1))
    clock.advance(3599)
    assert tier.get("u1") is not None
    clock.advance(1)
    assert tier.get("u1") is None


def test_memory_periodic_flush(clock):
    tier = MemoryTier(ttl=100_000, flush_interval=7200, clock=clock)
    tier.set("u1", make_items(1))
    clock.advance(7199)
    assert tier.has_seen("u1", "gen_0")
    clock.advance(1)
    assert not tier.has_seen("u1", "gen_0")
    assert tier.get("u1") is None


def test_memory_returns_copies(clock):
    tier = MemoryTier(clock=clock)
    tier.set("u1", make_items(1))
    tier.get("u1")[0].quality_score = 0
    assert tier.get("u1")[0].quality_score == 70


def test_update_quality_score_syncs_all_copies(cache):
    cache.lookup("u1", count=1, interests=["learning"])

    updated = cache.update_quality_score("3", "like", new_score=95)
    # Pool, memory tier and durable tier
    assert updated == 3
    assert cache.get_item("3").quality_score == 95
    assert cache.get_item("3").likes == 57
    assert cache.memory.get("u1")[0].quality_score == 95
    assert cache.durable.get("u1")[0].quality_score == 95


def test_update_quality_score_fixed_adjustment(cache):
    cache.update_quality_score("3", "like")
    assert cache.get_item("3").quality_score == 97
    cache.update_quality_score("3", "like")
    assert cache.get_item("3").quality_score == 100
    cache.update_quality_score("4", "dislike")
    assert cache.get_item("4").quality_score == 68
    assert cache.get_item("4").dislikes == 8


def test_update_unknown_content_is_noop(cache):
    assert cache.update_quality_score("missing", "like", 80) == 0


def test_stats_and_cleanup(cache, clock):
    cache.save_generated_content("u1", make_items(2))
    stats = cache.get_stats()
    assert stats == {"memory_cache_size": 1, "durable_cache_size": 1, "pool_size": 10}

    clock.advance(3600)
    assert cache.cleanup() == {"memory": 1, "durable": 1}


@pytest.mark.parametrize("count", [0, -1])
def test_non_positive_count(cache, count):
    assert cache.lookup("u1", count=count) == ([], None)


def make_pool(clock):
    pool = [
        ContentItem(id=f"i{i}", content=f"post {i}", topics=["ai"], quality_score=80)
        for i in range(3)
    ]
    return ContentCache(
        memory=MemoryTier(clock=clock),
        durable=DurableTier(MemoryStore(clock), clock=clock),
        pool=pool,
        rng=random.Random(0),
        clock=clock,
    )


def test_interest_items_are_not_repeated_after_tiers_expire(clock):
    cache = make_pool(clock)
    first = cache.get_content_for_user("u1", 2, ["ai"])
    assert all(item.used_by == ["u1"] for item in first)
    assert all(item.reuse_count == 1 for item in first)

    clock.advance(2 * 3600 + 1)
    second = cache.get_content_for_user("u1", 2, ["ai"])
    assert {i.id for i in first}.isdisjoint(i.id for i in second)
    assert [i.id for i in second] == ["i0"]

    # Another user still sees the whole pool
    other = cache.get_content_for_user("u2", 3, ["ai"])
    assert len(other) == 3
    assert cache.get_item(first[0].id).used_by == ["u1", "u2"]
    assert cache.get_item(first[0].id).reuse_count == 2


def test_fallback_skips_items_already_used_by_user(clock):
    cache = make_pool(clock)
    cache.save_generated_content(
        "u1", [ContentItem(id="gen1", content="mine", topics=["misc"], quality_score=60)]
    )

    clock.advance(2 * 3600 + 1)
    served, tier = cache.lookup("u1", 4)
    assert tier == "fallback"
    assert "gen1" not in [i.id for i in served]
    assert sorted(i.id for i in served) == ["i0", "i1", "i2"]
    assert all(i.used_by == ["u1"] for i in served)
