"""Route efficiency: per-run, per-route, per-driver and per-day rollups.

A run's revenue is the same-day sales of the machines its stops visited.
Service time comes from a service-minutes column or, where it is blank,
from the stop's arrival/departure timestamps. Miles are the sum of stop
miles, or the run's odometer delta when the stops carry no mileage.

Runs with zero stops are kept; their per-stop ratios are 0.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, ClassVar

from vend_core.exceptions import DataQualityError
from vend_core.reports.common import ReportResult, frame_from, load_table
from vend_core.rollup.derive import (
    duration_hours,
    efficiency_score,
    per_unit,
    rate_per_hour,
    safe_div,
)
from vend_core.rollup.keys import (
    DRIVER_KEYS,
    MACHINE_KEYS,
    ROUTE_KEYS,
    RUN_KEYS,
    CompositeKeyExtractor,
    DayKeyExtractor,
    KeyExtractor,
    pick_column,
)
from vend_core.rollup.money import MeasureSpec, parse_decimal
from vend_core.rollup.present import sort_rows
from vend_core.rollup.reduce import RollupBucket, reduce_records
from vend_core.utils import MILLIS_PER_MINUTE, day_key, millis_between, parse_instant

if TYPE_CHECKING:
    import pandas as pd

    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)

RUN_START_KEYS = ("started_at", "start_at", "started", "created_at")
RUN_END_KEYS = ("finished_at", "end_at", "finished")
ODOMETER_START_KEYS = ("odometer_start", "odo_start")
ODOMETER_END_KEYS = ("odometer_end", "odo_end")
STOP_ARRIVED_KEYS = ("arrived_at", "arrival_at", "arrived")
STOP_DEPARTED_KEYS = ("departed_at", "departure_at", "departed")
SERVICE_MINUTES_KEYS = ("service_minutes", "service_mins")
UNKNOWN = "—"

STOP_MEASURES = MeasureSpec(
    quantity_fields=(),
    unit_price_fields=(),
    unit_cost_fields=(),
    fee_fields=(),
    duration_fields=SERVICE_MINUTES_KEYS,
    duration_scale=MILLIS_PER_MINUTE,
    start_fields=STOP_ARRIVED_KEYS,
    end_fields=STOP_DEPARTED_KEYS,
)

# Run summaries re-enter the reducer as records with these columns
RUN_MEASURES = MeasureSpec(
    quantity_fields=("stops",),
    unit_price_fields=(),
    unit_cost_fields=(),
    fee_fields=(),
    gross_fields=("sales_cents",),
    duration_fields=("duration_ms",),
    distance_fields=("miles",),
)


@dataclass(frozen=True)
class RunEfficiency:
    MONEY_FIELDS: ClassVar[tuple[str, ...]] = ("sales", "sales_per_hour")

    run_id: str
    route: str
    driver: str
    started_at: str | None
    finished_at: str | None
    duration_millis: int
    miles: Decimal
    stops: int
    machines_visited: int
    service_minutes: float
    sales: int
    sales_per_hour: float
    miles_per_stop: float
    min_per_stop: float

    @property
    def key(self) -> str:
        return self.run_id


@dataclass(frozen=True)
class GroupEfficiency:
    """Route-, driver- or day-level rollup of runs."""

    MONEY_FIELDS: ClassVar[tuple[str, ...]] = (
        "revenue",
        "avg_revenue_per_run",
        "efficiency",
        "efficiency_score",
    )

    key: str
    runs: int
    revenue: int
    miles: Decimal
    stops: int
    hours: float
    avg_revenue_per_run: float
    efficiency: float
    efficiency_score: float


@dataclass(frozen=True)
class RouteSummary:
    total_runs: int = 0
    total_stops: int = 0
    total_miles: Decimal = Decimal(0)
    total_hours: float = 0.0
    total_revenue: int = 0
    avg_stops_per_run: float = 0.0
    avg_miles_per_run: float = 0.0
    avg_revenue_per_run: float = 0.0
    miles_per_hour: float = 0.0
    revenue_per_hour: float = 0.0
    stops_per_hour: float = 0.0


def _group_row(bucket: RollupBucket) -> GroupEfficiency:
    return GroupEfficiency(
        key=bucket.key,
        runs=bucket.record_count,
        revenue=bucket.gross_minor_units,
        miles=bucket.total_distance,
        stops=bucket.total_quantity,
        hours=duration_hours(bucket.total_duration_millis),
        avg_revenue_per_run=per_unit(bucket.gross_minor_units, bucket.record_count),
        efficiency=rate_per_hour(bucket.gross_minor_units, bucket.total_duration_millis),
        efficiency_score=efficiency_score(
            bucket.gross_minor_units, bucket.total_distance, bucket.total_duration_millis
        ),
    )


def _odometer_miles(run: Mapping[str, Any], start_col: str | None, end_col: str | None) -> Decimal:
    if start_col is None or end_col is None:
        return Decimal(0)
    start = parse_decimal(run.get(start_col))
    end = parse_decimal(run.get(end_col))
    if start is None or end is None:
        return Decimal(0)
    return max(Decimal(0), end - start)


def compute_run_efficiency(
    runs: Iterable[Mapping[str, Any]],
    stops: Iterable[Mapping[str, Any]],
    sales: Iterable[Mapping[str, Any]],
) -> list[RunEfficiency]:
    """Per-run metrics, latest run first.

    Raises:
        DataQualityError: If the runs carry no ``id`` column to join stops on.
    """
    runs = list(runs)
    if not runs:
        return []
    sample = runs[0]
    if "id" not in sample:
        raise DataQualityError("Route runs have no id column; stops cannot be matched to runs")
    route_col = pick_column(sample, ROUTE_KEYS)
    driver_col = pick_column(sample, DRIVER_KEYS)
    start_col = pick_column(sample, RUN_START_KEYS) or "started_at"
    end_col = pick_column(sample, RUN_END_KEYS) or "finished_at"
    odo_start = pick_column(sample, ODOMETER_START_KEYS)
    odo_end = pick_column(sample, ODOMETER_END_KEYS)

    stops = list(stops)
    by_run = reduce_records(stops, KeyExtractor(RUN_KEYS, "run"), STOP_MEASURES)
    visited: dict[str, set[str]] = defaultdict(set)
    run_col = pick_column(stops[0], RUN_KEYS) if stops else None
    for st in stops:
        rid = st.get(run_col) if run_col else None
        if rid is not None and st.get("machine_id") is not None:
            visited[str(rid)].add(str(st["machine_id"]))

    machine_day = CompositeKeyExtractor(
        KeyExtractor(MACHINE_KEYS, "machine"), DayKeyExtractor(("occurred_at",))
    )
    daily_sales = reduce_records(sales, machine_day)

    out = []
    for r in runs:
        run_id = str(r.get("id") or "")
        bucket = by_run.get(run_id) or RollupBucket(run_id)
        started, finished = r.get(start_col), r.get(end_col)
        duration = millis_between(started, finished)

        miles = bucket.total_distance
        if miles == 0:
            miles = _odometer_miles(r, odo_start, odo_end)

        sales_cents = 0
        day = day_key(started)
        if day is not None:
            for mid in visited.get(run_id, ()):
                b = daily_sales.get(f"{mid}{machine_day.sep}{day}")
                if b is not None:
                    sales_cents += b.gross_minor_units

        service_minutes = bucket.total_duration_millis / MILLIS_PER_MINUTE
        out.append(
            RunEfficiency(
                run_id=run_id,
                route=str(r.get(route_col) or UNKNOWN) if route_col else UNKNOWN,
                driver=str(r.get(driver_col) or UNKNOWN) if driver_col else UNKNOWN,
                started_at=started,
                finished_at=finished,
                duration_millis=duration,
                miles=miles,
                stops=bucket.record_count,
                machines_visited=len(visited.get(run_id, ())),
                service_minutes=service_minutes,
                sales=sales_cents,
                sales_per_hour=rate_per_hour(sales_cents, duration),
                miles_per_stop=per_unit(miles, bucket.record_count),
                min_per_stop=per_unit(service_minutes, bucket.record_count),
            )
        )

    def started_ts(run: RunEfficiency) -> float:
        dt = parse_instant(run.started_at)
        return dt.timestamp() if dt else 0.0

    return sort_rows(out, started_ts)


def _run_records(runs: Iterable[RunEfficiency]) -> list[dict[str, Any]]:
    return [
        {
            "route": r.route,
            "driver": r.driver,
            "started_at": r.started_at,
            "stops": r.stops,
            "sales_cents": r.sales,
            "duration_ms": r.duration_millis,
            "miles": r.miles,
        }
        for r in runs
    ]


def rollup_runs(runs: Iterable[RunEfficiency], by: str) -> list[GroupEfficiency]:
    """Group run metrics by ``"route"``, ``"driver"`` or ``"day"``.

    Route and driver groups are ordered by efficiency (revenue per hour)
    descending; day groups by date ascending.
    """
    records = _run_records(runs)
    if by == "day":
        key = DayKeyExtractor(("started_at",))
    elif by in ("route", "driver"):
        key = KeyExtractor((by,), by)
    else:
        raise ValueError(f"Unknown run grouping {by!r}")
    result = reduce_records(records, key, RUN_MEASURES)
    groups = [_group_row(b) for b in result.buckets.values()]
    if by == "day":
        return sort_rows(groups, "key", descending=False)
    return sort_rows(groups, "efficiency")


def summarize_runs(runs: Iterable[RunEfficiency]) -> RouteSummary:
    runs = list(runs)
    if not runs:
        return RouteSummary()
    n = len(runs)
    stops = sum(r.stops for r in runs)
    miles = sum((r.miles for r in runs), Decimal(0))
    millis = sum(r.duration_millis for r in runs)
    hours = duration_hours(millis)
    revenue = sum(r.sales for r in runs)
    return RouteSummary(
        total_runs=n,
        total_stops=stops,
        total_miles=miles,
        total_hours=hours,
        total_revenue=revenue,
        avg_stops_per_run=per_unit(stops, n),
        avg_miles_per_run=per_unit(miles, n),
        avg_revenue_per_run=per_unit(revenue, n),
        miles_per_hour=safe_div(miles, hours),
        revenue_per_hour=safe_div(revenue, hours),
        stops_per_hour=safe_div(stops, hours),
    )


@dataclass
class RouteEfficiencyReport(ReportResult):
    routes: list[GroupEfficiency] = field(default_factory=list)
    drivers: list[GroupEfficiency] = field(default_factory=list)
    daily: list[GroupEfficiency] = field(default_factory=list)
    summary: RouteSummary = field(default_factory=RouteSummary)

    def routes_frame(self) -> pd.DataFrame:
        return frame_from(self.routes)

    def drivers_frame(self) -> pd.DataFrame:
        return frame_from(self.drivers)

    def daily_frame(self) -> pd.DataFrame:
        return frame_from(self.daily)


def compute_route_efficiency(
    runs: Iterable[Mapping[str, Any]],
    stops: Iterable[Mapping[str, Any]],
    sales: Iterable[Mapping[str, Any]],
) -> RouteEfficiencyReport:
    run_rows = compute_run_efficiency(runs, stops, sales)
    return RouteEfficiencyReport(
        rows=run_rows,
        routes=rollup_runs(run_rows, "route"),
        drivers=rollup_runs(run_rows, "driver"),
        daily=rollup_runs(run_rows, "day"),
        summary=summarize_runs(run_rows),
    )


def load_route_efficiency(client: BackendClient, ctx: ReportContext) -> RouteEfficiencyReport:
    """Fetch runs, stops and sales for the window and compute efficiency.

    Runs are windowed on ``started_at`` (falling back to ``created_at``,
    then unfiltered); stops on ``arrived_at`` (falling back to ``created_at``).
    """
    absent: list = []
    runs = load_table(
        client,
        "route_runs",
        ctx,
        time_column="started_at",
        time_fallbacks=("created_at",),
        absent_tables=absent,
    )
    stops = load_table(
        client,
        "route_stops",
        ctx,
        time_column="arrived_at",
        time_fallbacks=("created_at",),
        absent_tables=absent,
    )
    sales = load_table(client, "sales", ctx, absent_tables=absent) if runs else []
    report = compute_route_efficiency(runs, stops, sales)
    report.absent = absent
    report.demo_mode = ctx.demo_mode
    logger.info("Route efficiency: %d runs, %d routes", len(report.rows), len(report.routes))
    return report
