"""SKU velocity and inventory health.

Units sold per day over the window, joined with on-hand stock from
``inventory_levels``. Days of stock is None when nothing sold (the product
never runs out at the current rate), shown as a dash.

Stock status per product:

- ``out_of_stock``: nothing on hand
- ``low_stock``: at or below the reorder point
- ``warning``: within 1.5x the reorder point
- ``good``: otherwise
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from vend_core.reports.common import ReportResult, load_table, machine_scope, scoped_filters
from vend_core.rollup.derive import days_of_stock, percent, safe_div
from vend_core.rollup.keys import (
    MACHINE_KEYS,
    PRODUCT_KEYS,
    CompositeKeyExtractor,
    KeyExtractor,
)
from vend_core.rollup.money import to_minor_units
from vend_core.rollup.present import sort_rows
from vend_core.rollup.reduce import reduce_records

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)

WARNING_FACTOR = 1.5


@dataclass(frozen=True)
class SkuVelocity:
    key: str
    product_id: str
    name: str
    machine_id: str | None
    units_sold: int
    transactions: int
    velocity_per_day: float
    on_hand: int
    par_level: int
    reorder_point: int
    days_of_stock: float | None
    fill_rate_pct: float
    deficit: int
    status: str


def stock_status(on_hand: int, reorder_point: int) -> str:
    """Classify stock against the reorder point.

    Examples:
        >>> [stock_status(q, 4) for q in (0, 4, 6, 7)]
        ['out_of_stock', 'low_stock', 'warning', 'good']
    """
    if on_hand <= 0:
        return "out_of_stock"
    if on_hand <= reorder_point:
        return "low_stock"
    if on_hand <= reorder_point * WARNING_FACTOR:
        return "warning"
    return "good"


def _inventory_key(row: Mapping[str, Any], by_machine: bool) -> str | None:
    product = row.get("product_id")
    if product is None:
        return None
    if by_machine:
        machine = row.get("machine_id")
        if machine is None:
            return None
        return f"{machine}|{product}"
    return str(product)


def compute_sku_velocity(
    sales: Iterable[Mapping[str, Any]],
    inventory: Iterable[Mapping[str, Any]] = (),
    products: Iterable[Mapping[str, Any]] = (),
    *,
    window_days: float = 30.0,
    by_machine: bool = False,
) -> list[SkuVelocity]:
    """Velocity rows sorted by units per day, fastest first.

    Args:
        sales: Sale rows with product_id, qty (and machine_id for by_machine).
        inventory: inventory_levels rows (current_qty, par_level, reorder_point).
        products: Product rows (id, name) for display names.
        window_days: Window length used for per-day velocity.
        by_machine: Key by machine|product slot instead of product.
    """
    if by_machine:
        key = CompositeKeyExtractor(
            KeyExtractor(MACHINE_KEYS, "machine"), KeyExtractor(PRODUCT_KEYS, "product")
        )
    else:
        key = KeyExtractor(PRODUCT_KEYS, "product")
    result = reduce_records(sales, key)

    stock: dict[str, list[int]] = {}
    for inv in inventory:
        k = _inventory_key(inv, by_machine)
        if k is None:
            continue
        totals = stock.setdefault(k, [0, 0, 0])
        totals[0] += to_minor_units(inv.get("current_qty"))
        totals[1] += to_minor_units(inv.get("par_level"))
        totals[2] += to_minor_units(inv.get("reorder_point"))
        result.ensure(k)

    names = {str(p["id"]): str(p.get("name") or p["id"]) for p in products if p.get("id") is not None}

    rows = []
    for k, bucket in result.buckets.items():
        machine_id, _, product_id = k.partition("|") if by_machine else ("", "", k)
        on_hand, par, reorder = stock.get(k, (0, 0, 0))
        velocity = safe_div(bucket.total_quantity, window_days)
        rows.append(
            SkuVelocity(
                key=k,
                product_id=product_id,
                name=names.get(product_id, product_id),
                machine_id=machine_id or None,
                units_sold=bucket.total_quantity,
                transactions=bucket.record_count,
                velocity_per_day=velocity,
                on_hand=on_hand,
                par_level=par,
                reorder_point=reorder,
                days_of_stock=days_of_stock(on_hand, velocity),
                fill_rate_pct=percent(on_hand, par),
                deficit=max(0, par - on_hand),
                status=stock_status(on_hand, reorder),
            )
        )
    return sort_rows(rows, "velocity_per_day")


@dataclass
class SkuVelocityReport(ReportResult):
    @property
    def reorder_needed(self) -> list[SkuVelocity]:
        return [r for r in self.rows if r.status in ("out_of_stock", "low_stock")]


def load_sku_velocity(
    client: BackendClient, ctx: ReportContext, *, by_machine: bool = False
) -> SkuVelocityReport:
    absent: list = []
    machines = machine_scope(client, ctx, absent)
    scope = scoped_filters(ctx, machines)
    sales = load_table(client, "sales", ctx, filters=scope, absent_tables=absent)
    inventory = load_table(
        client,
        "inventory_levels",
        ctx,
        windowed=False,
        time_column=None,
        filters=scope,
        absent_tables=absent,
    )
    products = load_table(
        client, "products", ctx, windowed=False, time_column=None, absent_tables=absent
    )
    rows = compute_sku_velocity(
        sales, inventory, products, window_days=ctx.window_days, by_machine=by_machine
    )
    logger.info("SKU velocity: %d products", len(rows))
    return SkuVelocityReport(rows=rows, absent=absent, demo_mode=ctx.demo_mode)
