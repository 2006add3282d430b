"""Derived ratios with an explicit zero-denominator policy.

Every division in this module goes through ``safe_div``: a zero, missing or
non-finite denominator yields the policy value (0.0, or None for "never"),
so NaN and Infinity cannot appear in derived metrics.

Examples:
    >>> rate_per_distance(1000, 0)
    0.0
    >>> payback_periods(50_000, 0) is None
    True
    >>> win_rate(3, 1)
    0.75
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from vend_core.rollup.reduce import RollupBucket
from vend_core.utils import MILLIS_PER_HOUR


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def safe_div(numerator: Any, denominator: Any, default: float = 0.0) -> float:
    """Divide, returning ``default`` for a zero or non-finite operand or result."""
    num = _as_float(numerator)
    den = _as_float(denominator)
    if num is None or den is None or den == 0:
        return default
    out = num / den
    return out if math.isfinite(out) else default


def net_minor_units(bucket: RollupBucket) -> int:
    return bucket.gross_minor_units - bucket.cost_minor_units - bucket.fee_minor_units


def duration_hours(duration_millis: int) -> float:
    return safe_div(duration_millis, MILLIS_PER_HOUR)


def rate_per_distance(gross: int, distance: Decimal | float) -> float:
    """Gross minor units per unit of distance; 0 when distance is not positive."""
    d = _as_float(distance)
    if d is None or d <= 0:
        return 0.0
    return safe_div(gross, d)


def rate_per_hour(gross: int, duration_millis: int) -> float:
    """Gross minor units per hour; 0 when duration is not positive."""
    hours = duration_hours(duration_millis)
    if hours <= 0:
        return 0.0
    return safe_div(gross, hours)


def efficiency_score(gross: int, distance: Decimal | float, duration_millis: int) -> float:
    """``gross / (distance * hours)``; 0 unless both are positive."""
    d = _as_float(distance)
    hours = duration_hours(duration_millis)
    if d is None or d <= 0 or hours <= 0:
        return 0.0
    return safe_div(gross, d * hours)


def payback_periods(acquisition_cost: Any, periodic_net: Any) -> float | None:
    """Periods to recover ``acquisition_cost``; None ("never") unless both are positive."""
    cost = _as_float(acquisition_cost)
    net = _as_float(periodic_net)
    if cost is None or net is None or cost <= 0 or net <= 0:
        return None
    return safe_div(cost, net, default=None)  # type: ignore[arg-type]


def win_rate(won: int, lost: int) -> float:
    """Fraction of decided outcomes that were won; 0 when none are decided."""
    return safe_div(won, won + lost)


def days_of_stock(on_hand: Any, daily_velocity: Any) -> float | None:
    """Days until stock runs out; None when nothing is selling."""
    v = _as_float(daily_velocity)
    if v is None or v <= 0:
        return None
    return safe_div(on_hand, v, default=None)  # type: ignore[arg-type]


def margin_pct(gross: int, cost: int) -> float:
    """``(gross - cost) / gross * 100``; 0 for zero gross."""
    return safe_div((gross - cost) * 100, gross)


def per_unit(value: Any, count: Any) -> float:
    return safe_div(value, count)


def percent(part: Any, whole: Any) -> float:
    return safe_div(part, whole) * 100


@dataclass(frozen=True)
class DerivedMetrics:
    """Read-only metrics computed once per bucket after reduction.

    Money-valued metrics are in minor units (floats for rates).
    ``payback_periods`` is None when the investment never pays back.
    """

    net_minor_units: int
    rate_per_distance: float
    rate_per_hour: float
    efficiency_score: float
    payback_periods: float | None
    margin_pct: float
    net_margin_pct: float
    average_ticket: float
    distance_per_record: float


def derive(
    bucket: RollupBucket,
    *,
    acquisition_cost: int = 0,
    periods: float = 1.0,
) -> DerivedMetrics:
    """Compute DerivedMetrics for a reduced bucket.

    Args:
        bucket: A fully reduced bucket (not modified).
        acquisition_cost: One-time cost in minor units, for payback.
        periods: Number of payback periods the bucket's window spans
            (e.g. 1.0 for a 30-day window measured in months).

    Examples:
        >>> b = RollupBucket("M1", record_count=3, gross_minor_units=700, cost_minor_units=350)
        >>> m = derive(b, acquisition_cost=3500)
        >>> m.net_minor_units, m.payback_periods
        (350, 10.0)
    """
    net = net_minor_units(bucket)
    gross = bucket.gross_minor_units
    periodic_net = safe_div(net, periods)
    return DerivedMetrics(
        net_minor_units=net,
        rate_per_distance=rate_per_distance(gross, bucket.total_distance),
        rate_per_hour=rate_per_hour(gross, bucket.total_duration_millis),
        efficiency_score=efficiency_score(gross, bucket.total_distance, bucket.total_duration_millis),
        payback_periods=payback_periods(acquisition_cost, periodic_net),
        margin_pct=margin_pct(gross, bucket.cost_minor_units),
        net_margin_pct=safe_div(net * 100, gross),
        average_ticket=per_unit(gross, bucket.record_count),
        distance_per_record=per_unit(bucket.total_distance, bucket.record_count),
    )
