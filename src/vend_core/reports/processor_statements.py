"""Processor statements: settlement deposits summed by day and by month.

Gross, fees, net and transaction counts of ``processor_settlements`` rows,
newest period first. Net is the statement's own ``net_cents`` when the
table carries it, otherwise gross - fees.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

import pandas as pd

from vend_core.exceptions import DataQualityError
from vend_core.reports.common import ReportResult, frame_from, load_table
from vend_core.reports.processor_reconciliation import (
    SETTLEMENT_MEASURES,
    SETTLEMENT_NET_MEASURES,
    SETTLEMENT_TIME_KEYS,
)
from vend_core.rollup.keys import DayKeyExtractor, KeyExtractor, MonthKeyExtractor, pick_column
from vend_core.rollup.present import sort_rows
from vend_core.rollup.reduce import reduce_records

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)

STATEMENT_MEASURES = dataclasses.replace(SETTLEMENT_MEASURES, quantity_fields=("txn_count",))

_PERIOD_KEYS = {
    "day": DayKeyExtractor,
    "month": MonthKeyExtractor,
}


@dataclass(frozen=True)
class StatementPeriod:
    MONEY_FIELDS: ClassVar[tuple[str, ...]] = ("gross", "fees", "net")

    period: str
    gross: int
    fees: int
    net: int
    txn_count: int
    statements: int

    @property
    def key(self) -> str:
        return self.period


def _period_extractor(by: str) -> KeyExtractor:
    try:
        cls = _PERIOD_KEYS[by]
    except KeyError:
        raise ValueError(f"by must be one of {sorted(_PERIOD_KEYS)}, got {by!r}") from None
    return cls(SETTLEMENT_TIME_KEYS)


def compute_statement_periods(
    settlements: Iterable[Mapping[str, Any]], by: str = "day"
) -> list[StatementPeriod]:
    """Sum statement rows per ``day`` (``YYYY-MM-DD``) or ``month`` (``YYYY-MM``).

    Raises:
        ValueError: If ``by`` is not a known period.
        DataQualityError: If the rows carry no statement date column.
    """
    extractor = _period_extractor(by)
    settlements = list(settlements)
    if not settlements:
        return []
    if pick_column(settlements[0], SETTLEMENT_TIME_KEYS) is None:
        raise DataQualityError(
            f"Settlement rows have none of the date columns {list(SETTLEMENT_TIME_KEYS)}"
        )

    totals = reduce_records(settlements, extractor, STATEMENT_MEASURES)
    has_net = "net_cents" in settlements[0]
    nets = reduce_records(settlements, _period_extractor(by), SETTLEMENT_NET_MEASURES) if has_net else None

    rows = []
    for period, b in totals.buckets.items():
        if nets is not None:
            n = nets.get(period)
            net = n.gross_minor_units if n else 0
        else:
            net = b.gross_minor_units - b.fee_minor_units
        rows.append(
            StatementPeriod(
                period=period,
                gross=b.gross_minor_units,
                fees=b.fee_minor_units,
                net=net,
                txn_count=b.total_quantity,
                statements=b.record_count,
            )
        )
    return sort_rows(rows, "period")


@dataclass
class ProcessorStatementsReport(ReportResult):
    """Daily rows in ``rows``, monthly rows in ``months``."""

    months: list[StatementPeriod] = field(default_factory=list)

    def months_frame(self) -> pd.DataFrame:
        return frame_from(self.months, [f.name for f in dataclasses.fields(StatementPeriod)])


def load_processor_statements(client: BackendClient, ctx: ReportContext) -> ProcessorStatementsReport:
    absent: list = []
    settlements = load_table(
        client,
        "processor_settlements",
        ctx,
        time_column=SETTLEMENT_TIME_KEYS[0],
        time_fallbacks=SETTLEMENT_TIME_KEYS[1:],
        absent_tables=absent,
    )
    days = compute_statement_periods(settlements, by="day")
    months = compute_statement_periods(settlements, by="month")
    logger.info("Processor statements: %d days, %d months", len(days), len(months))
    return ProcessorStatementsReport(rows=days, months=months, absent=absent, demo_mode=ctx.demo_mode)
