"""Backend boundary: hosted-store client and capability probes.

Example:
    >>> from vend_core.config import BackendSettings
    >>> from vend_core.backend import BackendClient, probe_table
    >>>
    >>> client = BackendClient(BackendSettings.from_env())
    >>> probe_table(client, "route_runs")
    Present(table='route_runs')
"""

from vend_core.backend.client import BackendClient, make_session
from vend_core.backend.schema import (
    TABLE_DDL,
    AbsentWithSchema,
    Present,
    ProbeResult,
    probe_table,
)

__all__ = [
    "TABLE_DDL",
    "AbsentWithSchema",
    "BackendClient",
    "Present",
    "ProbeResult",
    "make_session",
    "probe_table",
]
