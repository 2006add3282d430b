"""Live tests against a real hosted store.

These read (never write) a few tables and run every report over a short
window. They are skipped unless VEND_BACKEND_URL and VEND_BACKEND_KEY are
set.
"""

import os

import pandas as pd
import pytest

from vend_core.backend import BackendClient, Present, probe_table
from vend_core.config import BackendSettings, ReportContext
from vend_core.reports import REPORTS


@pytest.fixture
def live_client() -> BackendClient:
    if not (os.environ.get("VEND_BACKEND_URL") and os.environ.get("VEND_BACKEND_KEY")):
        pytest.skip("Live test skipped: VEND_BACKEND_URL and VEND_BACKEND_KEY environment variables required")
    return BackendClient(BackendSettings.from_env())


@pytest.mark.live
def test_sales_table_is_provisioned(live_client: BackendClient) -> None:
    """The sales table must exist for any report to show data."""
    assert probe_table(live_client, "sales") == Present("sales")


@pytest.mark.live
@pytest.mark.parametrize("name", sorted(REPORTS))
def test_report_runs_live(live_client: BackendClient, name: str) -> None:
    """Live test: each report completes over a 7-day window.

    Missing optional tables are reported as notices, not errors.
    """
    report = REPORTS[name](live_client, ReportContext.last_days(7, max_rows=2000))
    df = report.to_frame()
    assert isinstance(df, pd.DataFrame)
    assert all(isinstance(n, str) and n for n in report.notices)
