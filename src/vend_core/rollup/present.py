"""Sort & Present: order rollup rows and convert them to display frames.

This is the only place minor units become ``Decimal`` dollars. Sorting is
deterministic: rows with a None metric go last in either direction and
ties are broken by group key ascending.

Examples:
    >>> from vend_core.rollup.reduce import RollupBucket
    >>> from vend_core.rollup.derive import derive
    >>> rows = [RollupRow(k, b, derive(b)) for k, b in (
    ...     ("B", RollupBucket("B", gross_minor_units=500)),
    ...     ("A", RollupBucket("A", gross_minor_units=500)),
    ...     ("C", RollupBucket("C", gross_minor_units=900)),
    ... )]
    >>> [r.key for r in sort_rows(rows, "gross_minor_units")]
    ['C', 'A', 'B']
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Union

import numpy as np
import pandas as pd

from vend_core.rollup.derive import DerivedMetrics, duration_hours
from vend_core.rollup.money import format_dollars, format_optional, to_decimal
from vend_core.rollup.reduce import RollupBucket

DASH = "—"

FRAME_COLUMNS = [
    "key",
    "records",
    "quantity",
    "gross",
    "cost",
    "fees",
    "net",
    "hours",
    "distance",
    "per_distance",
    "per_hour",
    "efficiency_score",
    "payback_periods",
    "margin_pct",
    "net_margin_pct",
    "average_ticket",
]


@dataclass(frozen=True)
class RollupRow:
    """One group of a rollup ready for ordering and display."""

    key: str
    bucket: RollupBucket
    metrics: DerivedMetrics

    def value(self, metric: str) -> Any:
        """Look a metric up on the derived metrics, then the bucket."""
        if metric == "key":
            return self.key
        if hasattr(self.metrics, metric):
            return getattr(self.metrics, metric)
        if hasattr(self.bucket, metric):
            return getattr(self.bucket, metric)
        raise AttributeError(f"Unknown rollup metric {metric!r}")


SortMetric = Union[str, Callable[[Any], Any]]


def _metric_value(row: Any, metric: SortMetric) -> Any:
    if callable(metric):
        return metric(row)
    if isinstance(row, RollupRow):
        return row.value(metric)
    return getattr(row, metric)


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def sort_rows(
    rows: Iterable[Any],
    metric: SortMetric,
    descending: bool = True,
    key: Callable[[Any], str] | None = None,
) -> list[Any]:
    """Order rows by ``metric``.

    Args:
        rows: RollupRows, or any objects with a ``key`` attribute.
        metric: Attribute name (metrics first, then bucket) or callable.
        descending: Sort direction for the metric.
        key: Tie-break key getter; defaults to ``row.key``.

    Returns:
        A new list. None metrics come last; ties go by key ascending.
    """
    tie = key or (lambda r: str(r.key))
    present: list[tuple[Any, Any]] = []
    missing: list[Any] = []
    for row in rows:
        v = _metric_value(row, metric)
        if _is_missing(v):
            missing.append(row)
        else:
            present.append((v, row))

    # Stable two-pass sort: key ascending first, then metric in either direction
    present.sort(key=lambda p: tie(p[1]))
    present.sort(key=lambda p: p[0], reverse=descending)
    missing.sort(key=tie)
    return [row for _, row in present] + missing


def top(rows: Sequence[Any], n: int) -> list[Any]:
    """First ``n`` rows of an already sorted sequence."""
    if n < 0:
        raise ValueError(f"n must be non-negative, got {n}")
    return list(rows[:n])


def _row_record(row: RollupRow) -> dict[str, Any]:
    b, m = row.bucket, row.metrics
    return {
        "key": row.key,
        "records": b.record_count,
        "quantity": b.total_quantity,
        "gross": to_decimal(b.gross_minor_units),
        "cost": to_decimal(b.cost_minor_units),
        "fees": to_decimal(b.fee_minor_units),
        "net": to_decimal(m.net_minor_units),
        "hours": round(duration_hours(b.total_duration_millis), 2),
        "distance": round(float(b.total_distance), 2),
        "per_distance": to_decimal(m.rate_per_distance),
        "per_hour": to_decimal(m.rate_per_hour),
        "efficiency_score": to_decimal(m.efficiency_score),
        "payback_periods": None if m.payback_periods is None else round(m.payback_periods, 1),
        "margin_pct": round(m.margin_pct, 1),
        "net_margin_pct": round(m.net_margin_pct, 1),
        "average_ticket": to_decimal(m.average_ticket),
    }


def to_frame(rows: Iterable[RollupRow]) -> pd.DataFrame:
    """Build a display DataFrame; money columns hold Decimal dollars.

    ``payback_periods`` keeps None (object dtype) so "never" survives to
    ``format_frame`` instead of turning into 0 or NaN.
    """
    records = [_row_record(r) for r in rows]
    if not records:
        return pd.DataFrame(columns=FRAME_COLUMNS)
    df = pd.DataFrame.from_records(records, columns=FRAME_COLUMNS)
    df["records"] = df["records"].astype(np.int64)
    df["quantity"] = df["quantity"].astype(np.int64)
    df["payback_periods"] = df["payback_periods"].astype(object)
    df.loc[df["payback_periods"].isna(), "payback_periods"] = None
    return df


def _format_cell(value: Any) -> str:
    if _is_missing(value):
        return DASH
    if isinstance(value, Decimal):
        return format_dollars(value)
    if isinstance(value, (float, np.floating)):
        return f"{value:,.2f}"
    return format_optional(value)


def format_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Return a string-only copy of ``df`` for printing.

    Decimal cells become dollar strings; None becomes a dash.
    """
    out = df.copy()
    for col in out.columns:
        out[col] = out[col].map(_format_cell)
    return out
