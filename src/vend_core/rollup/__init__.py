"""Rollup engine: fetch, key, measure, reduce, derive, present.

Example:
    >>> from vend_core.rollup import KeyExtractor, RollupSpec, rollup, MACHINE_KEYS
    >>> spec = RollupSpec(name="by_machine", table="sales",
    ...                   key=KeyExtractor(MACHINE_KEYS, "machine"))
    >>> rows = rollup(sales_rows, spec)
"""

from vend_core.rollup.derive import (
    DerivedMetrics,
    days_of_stock,
    derive,
    efficiency_score,
    margin_pct,
    net_minor_units,
    payback_periods,
    per_unit,
    rate_per_distance,
    rate_per_hour,
    safe_div,
    win_rate,
)
from vend_core.rollup.engine import RollupReport, RollupSpec, rollup, run_rollup
from vend_core.rollup.fetch import AbsentTable, RecordStream, consume, fetch_records
from vend_core.rollup.keys import (
    DRIVER_KEYS,
    LOCATION_KEYS,
    MACHINE_KEYS,
    PROCESSOR_KEYS,
    PRODUCT_KEYS,
    PROSPECT_NAME_KEYS,
    ROUTE_KEYS,
    RUN_KEYS,
    CompositeKeyExtractor,
    DayKeyExtractor,
    KeyExtractor,
    MappedKeyExtractor,
    pick_column,
)
from vend_core.rollup.money import (
    AmountReading,
    FeeRule,
    MeasureSpec,
    calc_fee_cents,
    format_money,
    parse_amount,
    read_amount,
    to_decimal,
    to_minor_units,
)
from vend_core.rollup.present import RollupRow, format_frame, sort_rows, to_frame, top
from vend_core.rollup.reduce import RollupBucket, RollupResult, accumulate, reduce_records

__all__ = [
    "DRIVER_KEYS",
    "LOCATION_KEYS",
    "MACHINE_KEYS",
    "PROCESSOR_KEYS",
    "PRODUCT_KEYS",
    "PROSPECT_NAME_KEYS",
    "ROUTE_KEYS",
    "RUN_KEYS",
    "AbsentTable",
    "AmountReading",
    "CompositeKeyExtractor",
    "DayKeyExtractor",
    "DerivedMetrics",
    "FeeRule",
    "KeyExtractor",
    "MappedKeyExtractor",
    "MeasureSpec",
    "RecordStream",
    "RollupBucket",
    "RollupReport",
    "RollupResult",
    "RollupRow",
    "RollupSpec",
    "accumulate",
    "calc_fee_cents",
    "consume",
    "days_of_stock",
    "derive",
    "efficiency_score",
    "fetch_records",
    "format_frame",
    "format_money",
    "margin_pct",
    "net_minor_units",
    "parse_amount",
    "payback_periods",
    "per_unit",
    "pick_column",
    "rate_per_distance",
    "rate_per_hour",
    "read_amount",
    "reduce_records",
    "rollup",
    "run_rollup",
    "safe_div",
    "sort_rows",
    "to_decimal",
    "to_frame",
    "to_minor_units",
    "top",
    "win_rate",
]
