import random

import pytest

from feedcore.content_cache import ContentCache, DurableTier, MemoryTier
from feedcore.experiments import VariantAssignor
from feedcore.service import FeedService
from feedcore.storage import MemoryStore

# 2026-01-01T00:00:00Z
EPOCH = 1_767_225_600.0


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = EPOCH) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def assignor(clock):
    return VariantAssignor(store=MemoryStore(clock), clock=clock)


@pytest.fixture
def cache(clock):
    return ContentCache(
        memory=MemoryTier(clock=clock),
        durable=DurableTier(MemoryStore(clock), clock=clock),
        rng=random.Random(0),
        clock=clock,
    )


@pytest.fixture
def service(clock, cache):
    return FeedService(cache=cache, clock=clock, rng=random.Random(0))
