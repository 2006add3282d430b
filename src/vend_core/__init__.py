"""Vend Core - rollup aggregation and reports for vending operators.

This package turns raw operational rows (sales, route runs, stops,
inventory, settlements, prospects) read from a hosted store into grouped,
derived and sorted report rows.

Module Structure:
    vend_core.rollup: Generic engine (fetch, key, measure, reduce, derive, present)
    vend_core.reports: Dashboard reports built on the engine
    vend_core.imports: Processor statement CSV import
    vend_core.backend: Hosted-store client and table probes
    vend_core.config: BackendSettings and ReportContext

Quick Start:
    >>> from vend_core import BackendClient, BackendSettings, ReportContext
    >>> from vend_core.reports import load_machine_roi
    >>>
    >>> client = BackendClient(BackendSettings.from_env())
    >>> report = load_machine_roi(client, ReportContext.last_days(30))
    >>> for notice in report.notices:
    ...     print(notice)
    >>> print(report.to_frame().head())

Money:
    Amounts are integer minor units (cents) end to end; Decimal dollars
    only appear in frames and formatted output.
"""

__version__ = "0.1.0"

from vend_core.backend import BackendClient
from vend_core.config import BackendSettings, ReportContext
from vend_core.exceptions import (
    BackendError,
    BackendWriteError,
    ConfigError,
    DataQualityError,
    MissingColumnError,
    MissingTableError,
    SchemaAbsentError,
    VendCoreError,
)

__all__ = [
    "BackendClient",
    "BackendError",
    "BackendSettings",
    "BackendWriteError",
    "ConfigError",
    "DataQualityError",
    "MissingColumnError",
    "MissingTableError",
    "ReportContext",
    "SchemaAbsentError",
    "VendCoreError",
    "__version__",
]
