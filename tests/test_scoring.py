from datetime import UTC, datetime, timedelta

import pytest

from feedcore.experiments import DEFAULT_VARIANTS
from feedcore.scoring import (
    calculate_quality_score_with_variant,
    calculate_user_weight,
    clamp_score,
    get_positive_rate,
    get_user_age,
)

VARIANTS = {c.variant: c for c in DEFAULT_VARIANTS}


def test_like_for_new_user_with_long_dwell():
    result = calculate_quality_score_with_variant(
        "like", 50, 0, 0.5, 0, VARIANTS["A"], dwell_time_ms=4000
    )
    assert result.weight == pytest.approx(0.65)
    assert result.delta == pytest.approx(11.25)
    assert result.new_score == 61
    assert result.reason == "like: 5 x 0.65 + dwell: 8"


def test_dwell_at_threshold_earns_no_bonus():
    result = calculate_quality_score_with_variant(
        "like", 50, 0, 0.5, 0, VARIANTS["A"], dwell_time_ms=3000
    )
    assert result.delta == pytest.approx(3.25)
    assert "dwell" not in result.reason


def test_dislike_uses_variant_dislike_score():
    result = calculate_quality_score_with_variant("dislike", 50, 30, 1.0, 0, VARIANTS["B"])
    # B: -10 x min(1.5, 0.7 + 1.0 * 1.3)
    assert result.delta == pytest.approx(-15)
    assert result.new_score == 35
    assert result.reason == "dislike: -10 x 1.50"


def test_new_user_protection_halves_weight():
    config = VARIANTS["A"]
    new = calculate_user_weight(0, 0.5, 0, config)
    established = calculate_user_weight(30, 0.5, 0, config)
    assert new / established == pytest.approx(0.5)


def test_protection_ramps_linearly():
    config = VARIANTS["A"]
    established = calculate_user_weight(7, 0.5, 0, config)
    halfway = calculate_user_weight(3.5, 0.5, 0, config)
    assert halfway / established == pytest.approx(0.75)


def test_variant_without_protection_ignores_age():
    config = VARIANTS["C"]
    assert calculate_user_weight(0, 0.5, 0, config) == calculate_user_weight(
        100, 0.5, 0, config
    )


def test_anti_cheat_penalty_ratio():
    config = VARIANTS["A"]
    normal = calculate_user_weight(30, 0.5, 5, config)
    flagged = calculate_user_weight(30, 0.5, 6, config)
    assert flagged / normal == pytest.approx(config.anti_cheat_penalty)


def test_reputation_multiplier_is_capped():
    config = VARIANTS["A"]
    # 0.7 + 1.0 * 1.2 = 1.9, capped at 1.5
    assert calculate_user_weight(30, 1.0, 0, config) == pytest.approx(1.5)


def test_weight_clamped_to_lower_bound():
    # B: protection 0.3 x reputation 0.7 x penalty 0.2 = 0.042
    assert calculate_user_weight(0, 0.0, 4, VARIANTS["B"]) == pytest.approx(0.1)


def test_active_user_bonus_added_after_penalty():
    result = calculate_quality_score_with_variant("like", 50, 30, 0.5, 6, VARIANTS["A"])
    assert result.weight == pytest.approx(0.39)
    assert result.delta == pytest.approx(3.95)
    assert result.new_score == 54
    assert result.reason == "like: 5 x 0.39 + active: 2"


@pytest.mark.parametrize(
    "action,current,expected",
    [("like", 99, 100), ("like", 100, 100), ("dislike", 2, 0), ("dislike", 0, 0)],
)
def test_score_clamped_to_range(action, current, expected):
    result = calculate_quality_score_with_variant(
        action, current, 30, 1.0, 0, VARIANTS["D"], dwell_time_ms=10_000
    )
    assert result.new_score == expected


def test_negative_age_treated_as_zero():
    config = VARIANTS["A"]
    assert calculate_user_weight(-5, 0.5, 0, config) == calculate_user_weight(
        0, 0.5, 0, config
    )


def test_missing_positive_rate_is_neutral():
    config = VARIANTS["A"]
    assert calculate_user_weight(10, None, 0, config) == calculate_user_weight(
        10, 0.5, 0, config
    )
    assert calculate_user_weight(10, float("nan"), 0, config) == calculate_user_weight(
        10, 0.5, 0, config
    )


def test_unknown_action_leaves_score_unchanged():
    result = calculate_quality_score_with_variant("share", 42, 10, 0.5, 0, VARIANTS["A"])
    assert result.new_score == 42
    assert result.delta == 0.0
    assert result.reason.startswith("interaction: weight")


def test_clamp_score_rounds_half_up():
    assert clamp_score(50.5) == 51
    assert clamp_score(49.5) == 50
    assert clamp_score(61.25) == 61
    assert clamp_score(-3) == 0
    assert clamp_score(150) == 100


def test_get_user_age_whole_days():
    now = datetime(2026, 1, 10, tzinfo=UTC)
    assert get_user_age(now - timedelta(days=3, hours=23), now) == 3
    assert get_user_age(now + timedelta(days=1), now) == 0
    assert get_user_age(None, now) == 0


def test_get_positive_rate():
    assert get_positive_rate(0, 0) == 0.5
    assert get_positive_rate(3, 1) == 0.75
    assert get_positive_rate(0, 4) == 0.0
