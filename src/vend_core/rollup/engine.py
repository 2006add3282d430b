"""The parameterized rollup pipeline.

One ``RollupSpec`` describes a report's grouping and measures; ``rollup``
runs the in-memory stages (reduce, derive, sort) and ``run_rollup`` adds
the fetch in front of them.

Example:
    >>> from vend_core.rollup.keys import KeyExtractor, MACHINE_KEYS
    >>> spec = RollupSpec(name="machine_sales", table="sales",
    ...                   key=KeyExtractor(MACHINE_KEYS, "machine"))
    >>> rows = rollup([{"machine_id": "M1", "qty": 1, "unit_price_cents": 200}], spec)
    >>> rows[0].key, rows[0].bucket.gross_minor_units
    ('M1', 200)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pandas as pd

from vend_core.rollup.derive import derive
from vend_core.rollup.fetch import AbsentTable, fetch_records
from vend_core.rollup.money import MeasureSpec
from vend_core.rollup.present import RollupRow, SortMetric, sort_rows, to_frame
from vend_core.rollup.reduce import GroupKeyExtractor, RollupResult, reduce_records

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient, Filter
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)


@dataclass
class RollupSpec:
    """Everything that distinguishes one rollup report from another.

    Attributes:
        name: Report name for log lines.
        table: Source table.
        key: Grouping extractor (bound fresh on every run).
        measures: Candidate measure columns.
        time_column: Preferred timestamp column for the window filter.
        time_fallbacks: Alternative timestamp columns.
        sort_metric: Metric (or callable) the rows are ordered by.
        descending: Sort direction.
        acquisition_costs: One-time cost per key in minor units (for payback).
        periods: Payback periods spanned by the window.
        include_keys: Keys that must appear even without rows.
        filters: Extra backend filters.
    """

    name: str
    table: str
    key: GroupKeyExtractor
    measures: MeasureSpec = field(default_factory=MeasureSpec)
    time_column: str | None = "occurred_at"
    time_fallbacks: tuple[str, ...] = ("created_at",)
    sort_metric: SortMetric = "gross_minor_units"
    descending: bool = True
    acquisition_costs: Mapping[str, int] = field(default_factory=dict)
    periods: float = 1.0
    include_keys: tuple[str, ...] = ()
    filters: tuple[Filter, ...] = ()


def rows_from_result(result: RollupResult, spec: RollupSpec) -> list[RollupRow]:
    """Derive metrics for every bucket and order the rows."""
    for k in spec.include_keys:
        result.ensure(str(k))
    rows = [
        RollupRow(
            key,
            bucket,
            derive(bucket, acquisition_cost=spec.acquisition_costs.get(key, 0), periods=spec.periods),
        )
        for key, bucket in result.buckets.items()
    ]
    return sort_rows(rows, spec.sort_metric, spec.descending)


def rollup(records: Iterable[Mapping[str, Any]], spec: RollupSpec) -> list[RollupRow]:
    """Reduce, derive and sort ``records`` under ``spec``."""
    result = reduce_records(records, spec.key, spec.measures)
    return rows_from_result(result, spec)


@dataclass
class RollupReport:
    """Outcome of ``run_rollup``.

    ``absent`` is set (and ``rows`` empty) when the source table is not
    provisioned; otherwise ``result`` holds the reduction accounting.
    """

    spec: RollupSpec
    rows: list[RollupRow] = field(default_factory=list)
    result: RollupResult | None = None
    absent: AbsentTable | None = None
    demo_mode: bool = False

    @property
    def is_absent(self) -> bool:
        return self.absent is not None

    def to_frame(self) -> pd.DataFrame:
        return to_frame(self.rows)


def run_rollup(client: BackendClient, spec: RollupSpec, ctx: ReportContext) -> RollupReport:
    """Fetch ``spec.table`` over the context window and roll it up."""
    fetched = fetch_records(
        client,
        spec.table,
        ctx.since,
        ctx.row_cap(getattr(client, "settings", None)),
        until=ctx.until,
        time_column=spec.time_column,
        time_fallbacks=spec.time_fallbacks,
        filters=spec.filters,
    )
    if isinstance(fetched, AbsentTable):
        return RollupReport(spec=spec, absent=fetched, demo_mode=ctx.demo_mode)

    result = reduce_records(fetched, spec.key, spec.measures)
    rows = rows_from_result(result, spec)
    logger.info("%s: %d rows into %d groups", spec.name, result.total_rows, len(rows))
    return RollupReport(spec=spec, rows=rows, result=result, demo_mode=ctx.demo_mode)
