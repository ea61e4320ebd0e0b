"""
Statistical Primitives for eBay Metrics

Medians, coefficient of variation and the two 0-100 heuristic scores. The
score breakpoints are fixed reference values; changing a curve changes every
stored score.
"""

from datetime import datetime
from typing import Optional, Sequence

import numpy as np

from market_pipeline.normalization.prices import round_half_up

# Liquidity: (sales needed for full points, points)
LIQUIDITY_72H = (5, 40.0)
LIQUIDITY_7D = (10, 30.0)
LIQUIDITY_30D = (20, 20.0)
# Recency: (max hours since last sale, points), checked in order
LIQUIDITY_RECENCY = ((24, 10.0), (72, 7.0), (168, 5.0))
LIQUIDITY_RECENCY_STALE = 2.0

CONFIDENCE_SAMPLE = (30, 50.0)
CONFIDENCE_VOLATILITY_POINTS = 30.0
CONFIDENCE_VOLATILITY_ZERO_AT = 50.0  # CV percent at which the component hits 0
CONFIDENCE_VOLATILITY_UNKNOWN = 10.0
CONFIDENCE_OUTLIER_POINTS = 20.0
CONFIDENCE_OUTLIER_ZERO_AT = 0.2  # outlier ratio at which the component hits 0

MAX_SCORE = 100


def median(values: Sequence[float]) -> Optional[float]:
    """Middle value; mean of the two middle values for even counts; None when empty"""
    if len(values) == 0:
        return None
    return float(np.median(np.asarray(values, dtype=float)))


def population_std(values: Sequence[float]) -> Optional[float]:
    """Standard deviation dividing by N; None for fewer than two values"""
    if len(values) < 2:
        return None
    return float(np.std(np.asarray(values, dtype=float), ddof=0))


def coefficient_of_variation(values: Sequence[float]) -> Optional[float]:
    """
    Volatility as (std / mean) * 100.

    None for fewer than two values or a zero mean. Identical values give 0.0.
    """
    if len(values) < 2:
        return None

    arr = np.asarray(values, dtype=float)
    mean = float(arr.mean())
    if mean == 0:
        return None
    return float(arr.std(ddof=0)) / mean * 100


def _capped_linear(count: float, full_at: float, points: float) -> float:
    return min(points, (count / full_at) * points)


def liquidity_score(
    sample_size_72h: int,
    sample_size_7d: int,
    sample_size_30d: int,
    last_sale_at: Optional[datetime],
    now: datetime,
) -> int:
    """
    0-100 score from recent volume and recency of the last included sale.

    72h volume (5 sales -> 40), 7d volume (10 -> 30), 30d volume (20 -> 20),
    recency 10/7/5/2 at <=24h/<=72h/<=168h/older, 0 with no sale.
    """
    score = 0.0
    score += _capped_linear(sample_size_72h, *LIQUIDITY_72H)
    score += _capped_linear(sample_size_7d, *LIQUIDITY_7D)
    score += _capped_linear(sample_size_30d, *LIQUIDITY_30D)

    if last_sale_at is not None:
        hours_since = (now - last_sale_at).total_seconds() / 3600
        for max_hours, points in LIQUIDITY_RECENCY:
            if hours_since <= max_hours:
                score += points
                break
        else:
            score += LIQUIDITY_RECENCY_STALE

    return max(0, min(MAX_SCORE, round_half_up(score)))


def confidence_score(
    sample_size_90d: int,
    volatility: Optional[float],
    outlier_ratio: Optional[float],
) -> int:
    """
    0-100 score from sample size, volatility and outlier ratio.

    Sample size (30 -> 50), volatility (30 at 0% CV down to 0 at >=50%, fixed
    10 when unknown), outliers (20 at 0% down to 0 at >=20%, full 20 when
    the ratio is unknown).
    """
    score = _capped_linear(sample_size_90d, *CONFIDENCE_SAMPLE)

    if volatility is not None:
        score += max(
            0.0,
            CONFIDENCE_VOLATILITY_POINTS - (volatility / CONFIDENCE_VOLATILITY_ZERO_AT) * CONFIDENCE_VOLATILITY_POINTS,
        )
    else:
        score += CONFIDENCE_VOLATILITY_UNKNOWN

    if outlier_ratio is not None:
        score += max(
            0.0,
            CONFIDENCE_OUTLIER_POINTS - (outlier_ratio / CONFIDENCE_OUTLIER_ZERO_AT) * CONFIDENCE_OUTLIER_POINTS,
        )
    else:
        score += CONFIDENCE_OUTLIER_POINTS

    return max(0, min(MAX_SCORE, round_half_up(score)))
