import pytest

from feedcore import constants


def test_scoring_constants():
    """Guard scoring defaults from accidental drift."""
    assert (constants.QUALITY_SCORE_MIN, constants.QUALITY_SCORE_MAX) == (0, 100)
    assert constants.DEFAULT_QUALITY_SCORE == 50
    assert constants.DWELL_BONUS_THRESHOLD_MS == 3000
    assert constants.USER_WEIGHT_MIN == pytest.approx(0.1)
    assert constants.USER_WEIGHT_MAX == pytest.approx(2.0)
    assert constants.REPUTATION_BASE == pytest.approx(0.7)
    assert constants.REPUTATION_MAX_MULTIPLIER == pytest.approx(1.5)


def test_admission_and_cache_constants():
    assert constants.RATE_LIMIT_MAX_REQUESTS == 20
    assert constants.RATE_LIMIT_WINDOW_MS == 3_600_000
    assert constants.RATE_LIMIT_HISTORY_SIZE == 50
    assert constants.MEMORY_CACHE_TTL == 3600
    assert constants.DURABLE_CACHE_TTL == 1800
    assert constants.CACHE_MAX_ITEMS == 25
    assert constants.MIN_INTEREST_QUALITY == 60
    assert constants.EVENT_LOG_MAX_EVENTS == 10000
