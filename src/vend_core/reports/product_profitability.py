"""Product net profitability: gross, COGS, simulated processor fees, net."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from vend_core.reports.common import ReportResult, load_table, machine_scope, scoped_filters
from vend_core.reports.fees import FeeRuleCache, load_fee_rules
from vend_core.rollup.derive import derive
from vend_core.rollup.keys import PRODUCT_KEYS, KeyExtractor
from vend_core.rollup.money import MeasureSpec
from vend_core.rollup.present import sort_rows
from vend_core.rollup.reduce import reduce_records

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductProfit:
    MONEY_FIELDS: ClassVar[tuple[str, ...]] = ("gross", "cogs", "fees", "net")

    product_id: str
    name: str
    units: int
    gross: int
    cogs: int
    fees: int
    net: int
    margin_pct: float
    net_margin_pct: float

    @property
    def key(self) -> str:
        return self.product_id


def compute_product_profitability(
    sales: Iterable[Mapping[str, Any]],
    fees: FeeRuleCache | None = None,
    products: Iterable[Mapping[str, Any]] = (),
) -> list[ProductProfit]:
    """Per-product profit rows, highest net first.

    Without a fee cache, sale rows' own fee columns (if any) are used.
    """
    measures = MeasureSpec(fee_rule=fees.fee_for if fees else None)
    result = reduce_records(sales, KeyExtractor(PRODUCT_KEYS, "product"), measures)
    names = {str(p["id"]): str(p.get("name") or p["id"]) for p in products if p.get("id") is not None}

    rows = []
    for pid, bucket in result.buckets.items():
        m = derive(bucket)
        rows.append(
            ProductProfit(
                product_id=pid,
                name=names.get(pid, pid),
                units=bucket.total_quantity,
                gross=bucket.gross_minor_units,
                cogs=bucket.cost_minor_units,
                fees=bucket.fee_minor_units,
                net=m.net_minor_units,
                margin_pct=m.margin_pct,
                net_margin_pct=m.net_margin_pct,
            )
        )
    return sort_rows(rows, "net")


@dataclass
class ProductProfitabilityReport(ReportResult):
    @property
    def total_net(self) -> int:
        return sum(r.net for r in self.rows)


def load_product_profitability(
    client: BackendClient, ctx: ReportContext
) -> ProductProfitabilityReport:
    absent: list = []
    machines = machine_scope(client, ctx, absent)
    fees = load_fee_rules(client, ctx, absent)
    sales = load_table(
        client, "sales", ctx, filters=scoped_filters(ctx, machines), absent_tables=absent
    )
    products = load_table(
        client, "products", ctx, windowed=False, time_column=None, absent_tables=absent
    )
    rows = compute_product_profitability(sales, fees, products)
    logger.info("Product profitability: %d products", len(rows))
    return ProductProfitabilityReport(rows=rows, absent=absent, demo_mode=ctx.demo_mode)
