"""Processor reconciliation: simulated fees vs processor statements.

Calculated side: sales rolled up by the processor their machine is mapped
to (unmapped machines under ``__unmapped__``), with fees simulated from the
processor's default rule and net = gross - fees.

Statement side: ``processor_settlements`` rows summed by processor. Imported
statements carry a processor name; entered ones carry a processor id. Both
resolve to the same processor.

Variances are calculated minus statement, ordered by the largest fee
discrepancy first.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

from vend_core.reports.common import ReportResult, load_table, machine_scope, scoped_filters
from vend_core.reports.fees import UNMAPPED, FeeRuleCache, load_fee_rules
from vend_core.rollup.keys import MACHINE_KEYS, PROCESSOR_KEYS, MappedKeyExtractor
from vend_core.rollup.money import MeasureSpec
from vend_core.rollup.present import sort_rows
from vend_core.rollup.reduce import RollupBucket, reduce_records

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)

_NO_UNIT = dict(quantity_fields=(), unit_price_fields=(), unit_cost_fields=())

SETTLEMENT_MEASURES = MeasureSpec(
    **_NO_UNIT,
    gross_fields=("gross_cents",),
    fee_fields=("fees_cents", "fee_cents"),
)
SETTLEMENT_NET_MEASURES = MeasureSpec(**_NO_UNIT, fee_fields=(), gross_fields=("net_cents",))
SETTLEMENT_TIME_KEYS = ("occurred_on", "period_end", "created_at")


@dataclass(frozen=True)
class ProcessorReconciliation:
    MONEY_FIELDS: ClassVar[tuple[str, ...]] = (
        "calc_gross",
        "calc_fees",
        "calc_net",
        "stmt_gross",
        "stmt_fees",
        "stmt_net",
        "var_fees",
        "var_net",
    )

    processor_id: str
    name: str
    calc_gross: int
    calc_fees: int
    calc_net: int
    stmt_gross: int
    stmt_fees: int
    stmt_net: int
    var_fees: int
    var_net: int
    count_sales: int
    count_settlements: int

    @property
    def key(self) -> str:
        return self.processor_id


def _statement_net(gross: RollupBucket | None, net: RollupBucket | None, has_net: bool) -> int:
    if gross is None:
        return 0
    if has_net and net is not None:
        return net.gross_minor_units
    return gross.gross_minor_units - gross.fee_minor_units


def compute_processor_reconciliation(
    sales: Iterable[Mapping[str, Any]],
    settlements: Iterable[Mapping[str, Any]],
    fees: FeeRuleCache,
) -> list[ProcessorReconciliation]:
    """One row per processor seen in either the sales or the statements."""
    calc = reduce_records(
        sales,
        MappedKeyExtractor(MACHINE_KEYS, fees.processor_by_machine, UNMAPPED, dimension="processor"),
        MeasureSpec(unit_cost_fields=(), fee_fields=(), fee_rule=fees.fee_for),
    )

    settlements = list(settlements)
    names = fees.name_index()
    stmt = reduce_records(
        settlements,
        MappedKeyExtractor(PROCESSOR_KEYS, names, dimension="processor", passthrough=True),
        SETTLEMENT_MEASURES,
    )
    stmt_net = reduce_records(
        settlements,
        MappedKeyExtractor(PROCESSOR_KEYS, names, dimension="processor", passthrough=True),
        SETTLEMENT_NET_MEASURES,
    )
    has_net = bool(settlements) and "net_cents" in settlements[0]

    rows = []
    for pid in sorted(set(calc.buckets) | set(stmt.buckets)):
        c = calc.get(pid) or RollupBucket(pid)
        s = stmt.get(pid)
        calc_net = c.gross_minor_units - c.fee_minor_units
        s_gross = s.gross_minor_units if s else 0
        s_fees = s.fee_minor_units if s else 0
        s_net = _statement_net(s, stmt_net.get(pid), has_net)
        rows.append(
            ProcessorReconciliation(
                processor_id=pid,
                name=fees.label(pid),
                calc_gross=c.gross_minor_units,
                calc_fees=c.fee_minor_units,
                calc_net=calc_net,
                stmt_gross=s_gross,
                stmt_fees=s_fees,
                stmt_net=s_net,
                var_fees=c.fee_minor_units - s_fees,
                var_net=calc_net - s_net,
                count_sales=c.record_count,
                count_settlements=s.record_count if s else 0,
            )
        )
    return sort_rows(rows, lambda r: abs(r.var_fees))


@dataclass
class ProcessorReconciliationReport(ReportResult):
    totals: dict[str, int] = field(default_factory=dict)


def reconciliation_totals(rows: Iterable[ProcessorReconciliation]) -> dict[str, int]:
    totals = dict.fromkeys(ProcessorReconciliation.MONEY_FIELDS, 0)
    for r in rows:
        for name in totals:
            totals[name] += getattr(r, name)
    return totals


def load_processor_reconciliation(
    client: BackendClient, ctx: ReportContext
) -> ProcessorReconciliationReport:
    absent: list = []
    machines = machine_scope(client, ctx, absent)
    fees = load_fee_rules(client, ctx, absent)
    sales = load_table(
        client, "sales", ctx, filters=scoped_filters(ctx, machines), absent_tables=absent
    )
    settlements = load_table(
        client,
        "processor_settlements",
        ctx,
        time_column=SETTLEMENT_TIME_KEYS[0],
        time_fallbacks=SETTLEMENT_TIME_KEYS[1:],
        absent_tables=absent,
    )
    rows = compute_processor_reconciliation(sales, settlements, fees)
    logger.info("Processor reconciliation: %d processors", len(rows))
    return ProcessorReconciliationReport(
        rows=rows,
        absent=absent,
        demo_mode=ctx.demo_mode,
        totals=reconciliation_totals(rows),
    )
