"""Machine ROI: monthly return on each machine's investment.

For every machine over the window (normalized to a 30-day month):

- investment = purchase price + other one-time costs
- monthly fixed costs = payment + insurance + telemetry + software
- net = revenue - fixed costs - COGS
- ROI % = net / investment * 100, payback months = investment / net

Payback is None ("never") when net is not positive or nothing was invested.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from vend_core.reports.common import (
    DAYS_PER_MONTH,
    ReportResult,
    load_table,
    machine_scope,
    scoped_filters,
)
from vend_core.rollup.derive import payback_periods, safe_div
from vend_core.rollup.keys import MACHINE_KEYS, KeyExtractor
from vend_core.rollup.money import dollars_to_minor_units
from vend_core.rollup.present import sort_rows
from vend_core.rollup.reduce import reduce_records

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)

FIXED_COST_FIELDS = (
    "monthly_payment",
    "insurance_monthly",
    "telemetry_monthly",
    "monthly_software_cost",
)
ONE_TIME_FIELDS = ("purchase_price", "other_onetime_costs")

# ROI band (percent) treated as breaking even
BREAK_EVEN_BAND = 5.0


@dataclass(frozen=True)
class MachineROI:
    MONEY_FIELDS: ClassVar[tuple[str, ...]] = (
        "investment",
        "monthly_revenue",
        "monthly_fixed_costs",
        "monthly_cogs",
        "monthly_net",
    )

    machine_id: str
    name: str
    sales_count: int
    investment: int
    monthly_revenue: int
    monthly_fixed_costs: int
    monthly_cogs: int
    monthly_net: int
    roi_pct: float
    payback_months: float | None
    status: str

    @property
    def key(self) -> str:
        return self.machine_id


def roi_status(roi_pct: float) -> str:
    if roi_pct > BREAK_EVEN_BAND:
        return "positive"
    if roi_pct < -BREAK_EVEN_BAND:
        return "negative"
    return "breaking_even"


def _sum_dollars(row: Mapping[str, Any] | None, fields: Iterable[str]) -> int:
    if not row:
        return 0
    return sum(dollars_to_minor_units(row.get(f)) for f in fields)


def _monthly(amount: int, months: float) -> int:
    return round(safe_div(amount, months))


def compute_machine_roi(
    sales: Iterable[Mapping[str, Any]],
    finance: Iterable[Mapping[str, Any]],
    machines: Iterable[Mapping[str, Any]] = (),
    *,
    window_days: float = DAYS_PER_MONTH,
) -> list[MachineROI]:
    """Compute ROI rows for every machine seen in any input.

    Args:
        sales: Sale rows (machine_id, qty, unit_price_cents, unit_cost_cents).
        finance: machine_finance rows (dollar amounts).
        machines: Machine rows (id, name); machines without sales still appear.
        window_days: Length of the sales window.

    Returns:
        Rows sorted by ROI descending, ties by machine id.
    """
    months = safe_div(window_days, DAYS_PER_MONTH, default=1.0) or 1.0
    result = reduce_records(sales, KeyExtractor(MACHINE_KEYS, "machine"))

    names: dict[str, str] = {}
    for m in machines:
        if m.get("id") is not None:
            names[str(m["id"])] = str(m.get("name") or m["id"])
            result.ensure(str(m["id"]))
    by_machine = {str(f["machine_id"]): f for f in finance if f.get("machine_id") is not None}
    if names:
        by_machine = {k: v for k, v in by_machine.items() if k in names}
    for machine_id in by_machine:
        result.ensure(machine_id)

    rows = []
    for machine_id, bucket in result.buckets.items():
        fin = by_machine.get(machine_id)
        investment = _sum_dollars(fin, ONE_TIME_FIELDS)
        fixed = _sum_dollars(fin, FIXED_COST_FIELDS)
        revenue = _monthly(bucket.gross_minor_units, months)
        cogs = _monthly(bucket.cost_minor_units, months)
        net = revenue - fixed - cogs
        roi = safe_div(net * 100, investment)
        rows.append(
            MachineROI(
                machine_id=machine_id,
                name=names.get(machine_id, machine_id),
                sales_count=bucket.record_count,
                investment=investment,
                monthly_revenue=revenue,
                monthly_fixed_costs=fixed,
                monthly_cogs=cogs,
                monthly_net=net,
                roi_pct=roi,
                payback_months=payback_periods(investment, net),
                status=roi_status(roi),
            )
        )
    return sort_rows(rows, "roi_pct")


@dataclass
class MachineROIReport(ReportResult):
    @property
    def total_investment(self) -> int:
        return sum(r.investment for r in self.rows)

    @property
    def total_monthly_net(self) -> int:
        return sum(r.monthly_net for r in self.rows)

    @property
    def portfolio_roi_pct(self) -> float:
        return safe_div(self.total_monthly_net * 100, self.total_investment)


def load_machine_roi(client: BackendClient, ctx: ReportContext) -> MachineROIReport:
    """Fetch sales, finance and machines for ``ctx`` and compute ROI."""
    absent: list = []
    machines = machine_scope(client, ctx, absent)
    finance = load_table(
        client, "machine_finance", ctx, windowed=False, time_column=None, absent_tables=absent
    )
    sales = load_table(
        client, "sales", ctx, filters=scoped_filters(ctx, machines), absent_tables=absent
    )
    rows = compute_machine_roi(sales, finance, machines, window_days=ctx.window_days)
    logger.info("Machine ROI: %d machines", len(rows))
    return MachineROIReport(rows=rows, absent=absent, demo_mode=ctx.demo_mode)
