"""Location commission statements.

Sales are rolled up by the location their machine sits at. Each location's
commission follows its model:

- ``percent_gross``: basis points of gross
- ``flat_month``: a flat monthly amount
- ``hybrid``: both
- ``none``: nothing, unless a monthly minimum applies

The amount due is ``max(percent + flat, minimum)``. Flat and minimum amounts
are monthly and scale with the window length (30 days = 1 month).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal
from typing import TYPE_CHECKING, Any, ClassVar

from vend_core.reports.common import (
    DAYS_PER_MONTH,
    ReportResult,
    load_table,
    machine_scope,
    scoped_filters,
)
from vend_core.rollup.derive import safe_div
from vend_core.rollup.keys import MACHINE_KEYS, MappedKeyExtractor
from vend_core.rollup.money import BPS_DIVISOR, to_minor_units
from vend_core.rollup.present import sort_rows
from vend_core.rollup.reduce import reduce_records

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)

COMMISSION_MODELS = frozenset({"percent_gross", "flat_month", "hybrid", "none"})


@dataclass(frozen=True)
class LocationCommission:
    MONEY_FIELDS: ClassVar[tuple[str, ...]] = ("gross", "flat", "minimum", "commission_due")

    location_id: str
    name: str
    machines: int
    sales_count: int
    gross: int
    model: str
    pct_bps: int
    flat: int
    minimum: int
    commission_due: int

    @property
    def key(self) -> str:
        return self.location_id


def calculate_commission(
    model: str,
    gross: int,
    *,
    pct_bps: int = 0,
    flat: int = 0,
    minimum: int = 0,
) -> int:
    """Commission due in minor units.

    Examples:
        >>> calculate_commission("hybrid", 100_000, pct_bps=1000, flat=5_000)
        15000
        >>> calculate_commission("percent_gross", 10_000, pct_bps=1000, minimum=2_500)
        2500
    """
    if model not in COMMISSION_MODELS:
        logger.warning("Unknown commission model %r, treating as 'none'", model)
        model = "none"
    percent = 0
    if model in ("percent_gross", "hybrid"):
        percent = int(
            (Decimal(gross) * pct_bps / BPS_DIVISOR).to_integral_value(rounding=ROUND_HALF_EVEN)
        )
    flat_part = flat if model in ("flat_month", "hybrid") else 0
    return max(percent + flat_part, minimum)


def compute_location_commission(
    sales: Iterable[Mapping[str, Any]],
    machines: Iterable[Mapping[str, Any]],
    locations: Iterable[Mapping[str, Any]],
    *,
    window_days: float = DAYS_PER_MONTH,
) -> list[LocationCommission]:
    """Commission rows sorted by amount due, largest first."""
    months = safe_div(window_days, DAYS_PER_MONTH, default=1.0) or 1.0
    machines = list(machines)
    machine_location = {
        str(m["id"]): str(m["location_id"])
        for m in machines
        if m.get("id") is not None and m.get("location_id") is not None
    }
    machine_counts: dict[str, int] = {}
    for loc_id in machine_location.values():
        machine_counts[loc_id] = machine_counts.get(loc_id, 0) + 1

    result = reduce_records(
        sales, MappedKeyExtractor(MACHINE_KEYS, machine_location, dimension="location")
    )

    rows = []
    for loc in locations:
        if loc.get("id") is None:
            continue
        loc_id = str(loc["id"])
        bucket = result.get(loc_id)
        gross = bucket.gross_minor_units if bucket else 0
        model = str(loc.get("commission_model") or "none")
        pct_bps = to_minor_units(loc.get("commission_pct_bps"))
        flat = round(to_minor_units(loc.get("commission_flat_cents")) * months)
        minimum = round(to_minor_units(loc.get("commission_min_cents")) * months)
        due = calculate_commission(model, gross, pct_bps=pct_bps, flat=flat, minimum=minimum)
        if bucket is None and due <= 0:
            continue
        rows.append(
            LocationCommission(
                location_id=loc_id,
                name=str(loc.get("name") or loc_id),
                machines=machine_counts.get(loc_id, 0),
                sales_count=bucket.record_count if bucket else 0,
                gross=gross,
                model=model,
                pct_bps=pct_bps,
                flat=flat,
                minimum=minimum,
                commission_due=due,
            )
        )
    return sort_rows(rows, "commission_due")


@dataclass
class LocationCommissionReport(ReportResult):
    @property
    def total_gross(self) -> int:
        return sum(r.gross for r in self.rows)

    @property
    def total_commission(self) -> int:
        return sum(r.commission_due for r in self.rows)


def load_location_commission(client: BackendClient, ctx: ReportContext) -> LocationCommissionReport:
    absent: list = []
    machines = machine_scope(client, ctx, absent)
    loc_filters = [("eq", "id", ctx.location_id)] if ctx.location_id else []
    locations = load_table(
        client,
        "locations",
        ctx,
        windowed=False,
        time_column=None,
        filters=loc_filters,
        absent_tables=absent,
    )
    sales = load_table(
        client, "sales", ctx, filters=scoped_filters(ctx, machines), absent_tables=absent
    )
    rows = compute_location_commission(sales, machines, locations, window_days=ctx.window_days)
    logger.info("Location commission: %d locations", len(rows))
    return LocationCommissionReport(rows=rows, absent=absent, demo_mode=ctx.demo_mode)
