"""Report call sites built on the rollup engine.

Each report has a pure ``compute_*`` function over row lists and a
``load_*`` function that fetches through the engine and returns a result
with ``.rows``, ``.absent`` and ``.to_frame()``.

Example:
    >>> from vend_core.config import ReportContext
    >>> from vend_core.reports import REPORTS
    >>> report = REPORTS["machine-roi"](client, ReportContext.last_days(30))
    >>> report.to_frame().head()
"""

from vend_core.reports.location_commission import (
    calculate_commission,
    compute_location_commission,
    load_location_commission,
)
from vend_core.reports.machine_roi import compute_machine_roi, load_machine_roi
from vend_core.reports.processor_reconciliation import (
    compute_processor_reconciliation,
    load_processor_reconciliation,
)
from vend_core.reports.processor_statements import (
    compute_statement_periods,
    load_processor_statements,
)
from vend_core.reports.product_profitability import (
    compute_product_profitability,
    load_product_profitability,
)
from vend_core.reports.prospect_funnel import (
    compute_prospect_funnel,
    load_prospect_funnel,
    normalize_stage,
)
from vend_core.reports.route_efficiency import compute_route_efficiency, load_route_efficiency
from vend_core.reports.sku_velocity import compute_sku_velocity, load_sku_velocity

REPORTS = {
    "machine-roi": load_machine_roi,
    "route-efficiency": load_route_efficiency,
    "location-commission": load_location_commission,
    "sku-velocity": load_sku_velocity,
    "processor-reconciliation": load_processor_reconciliation,
    "processor-statements": load_processor_statements,
    "product-profitability": load_product_profitability,
    "prospect-funnel": load_prospect_funnel,
}

__all__ = [
    "REPORTS",
    "calculate_commission",
    "compute_location_commission",
    "compute_machine_roi",
    "compute_processor_reconciliation",
    "compute_product_profitability",
    "compute_prospect_funnel",
    "compute_route_efficiency",
    "compute_sku_velocity",
    "compute_statement_periods",
    "load_location_commission",
    "load_machine_roi",
    "load_processor_reconciliation",
    "load_processor_statements",
    "load_product_profitability",
    "load_prospect_funnel",
    "load_route_efficiency",
    "load_sku_velocity",
    "normalize_stage",
]
