"""
Quality scoring for content interactions.

A score delta is the variant's raw like/dislike score multiplied by a user
weight built from three independent trust signals, applied in a fixed order:

    protection (tenure) -> reputation (positive rate) -> anti-cheat -> clamp

The weight is clamped once, at the end. Reordering the multiplications or
clamping per step changes results at the [0.1, 2.0] boundary.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional

from feedcore.constants import (
    ACTIVE_USER_BONUS,
    ACTIVE_USER_LIKES,
    DWELL_BONUS_THRESHOLD_MS,
    NEUTRAL_POSITIVE_RATE,
    QUALITY_SCORE_MAX,
    QUALITY_SCORE_MIN,
    REPUTATION_BASE,
    REPUTATION_MAX_MULTIPLIER,
    USER_WEIGHT_MAX,
    USER_WEIGHT_MIN,
)
from feedcore.models import QualityScoreResult, VariantConfig


def _finite(value: Optional[float], default: float) -> float:
    if value is None:
        return default
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def clamp_score(value: float) -> int:
    """Clamp to [0, 100] and round half-up to an integer score."""
    bounded = max(float(QUALITY_SCORE_MIN), min(float(QUALITY_SCORE_MAX), value))
    return int(math.floor(bounded + 0.5))


def calculate_user_weight(
    user_age_days: float,
    positive_rate: float,
    recent_likes: int,
    config: VariantConfig,
) -> float:
    user_age_days = max(0.0, _finite(user_age_days, 0.0))
    positive_rate = _finite(positive_rate, NEUTRAL_POSITIVE_RATE)
    recent_likes = int(_finite(recent_likes, 0.0))

    weight = 1.0

    if config.new_user_protection_days > 0:
        age_factor = min(1.0, user_age_days / config.new_user_protection_days)
        if age_factor < 1:
            # Linear ramp from new_user_weight up to full strength
            protection = config.new_user_weight + (1 - config.new_user_weight) * age_factor
            weight *= protection

    reputation = REPUTATION_BASE + positive_rate * config.high_positive_rate_bonus
    weight *= min(REPUTATION_MAX_MULTIPLIER, reputation)

    if recent_likes > config.anti_cheat_threshold:
        weight *= config.anti_cheat_penalty

    return max(USER_WEIGHT_MIN, min(USER_WEIGHT_MAX, weight))


def _format_number(value: float) -> str:
    return f"{value:g}"


def score_reason(
    action: str,
    weight: float,
    config: VariantConfig,
    dwell_time_ms: Optional[float] = None,
    recent_likes: int = 0,
) -> str:
    if action == "like":
        reason = f"like: {_format_number(config.like_score)} x {weight:.2f}"
        if dwell_time_ms and dwell_time_ms > DWELL_BONUS_THRESHOLD_MS:
            reason += f" + dwell: {_format_number(config.dwell_time_bonus)}"
        if recent_likes > ACTIVE_USER_LIKES:
            reason += f" + active: {ACTIVE_USER_BONUS}"
        return reason
    if action == "dislike":
        return f"dislike: {_format_number(config.dislike_score)} x {weight:.2f}"
    return f"interaction: weight {weight:.2f}"


def calculate_quality_score_with_variant(
    action: str,
    current_score: float,
    user_age_days: float,
    positive_rate: float,
    recent_likes: int,
    config: VariantConfig,
    dwell_time_ms: Optional[float] = None,
) -> QualityScoreResult:
    """Score one interaction under a variant's configuration.

    Never raises for numeric input: ages below zero count as zero, unknown
    positive rates count as neutral (0.5), and the result is always clamped.
    Unknown actions leave the score unchanged.
    """
    current = _finite(current_score, float(QUALITY_SCORE_MIN))
    dwell = _finite(dwell_time_ms, 0.0)
    likes = int(_finite(recent_likes, 0.0))
    weight = calculate_user_weight(user_age_days, positive_rate, likes, config)

    delta = 0.0
    if action == "like":
        delta = config.like_score * weight
        if dwell > DWELL_BONUS_THRESHOLD_MS:
            delta += config.dwell_time_bonus
        if likes > ACTIVE_USER_LIKES:
            delta += ACTIVE_USER_BONUS
    elif action == "dislike":
        delta = config.dislike_score * weight

    return QualityScoreResult(
        new_score=clamp_score(current + delta),
        reason=score_reason(action, weight, config, dwell, likes),
        weight=weight,
        delta=delta,
    )


def get_user_age(created_at: Optional[datetime], now: datetime) -> int:
    """Account age in whole days (0 when unknown or in the future)."""
    if created_at is None:
        return 0
    days = math.floor((now - created_at).total_seconds() / 86400)
    return max(0, days)


def get_positive_rate(total_likes: int, total_dislikes: int) -> float:
    total = total_likes + total_dislikes
    return total_likes / total if total > 0 else NEUTRAL_POSITIVE_RATE
