"""Helpers shared by the report call sites.

- ``load_table``: fetch a table through the engine's fetcher and
  materialize it, reporting absence instead of raising
- ``ReportResult``: base result with absent-table notices and frame export
- ``frame_from``: dataclass rows -> DataFrame with Decimal money columns
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, ClassVar

import numpy as np
import pandas as pd

from vend_core.rollup.fetch import AbsentTable, fetch_records
from vend_core.rollup.money import to_decimal

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient, Filter
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)

# One month of a trailing window, for monthly normalization
DAYS_PER_MONTH = 30.0


def load_table(
    client: BackendClient,
    table: str,
    ctx: ReportContext,
    *,
    windowed: bool = True,
    time_column: str | None = "occurred_at",
    time_fallbacks: Sequence[str] = ("created_at",),
    columns: str = "*",
    filters: Sequence[Filter] = (),
    absent_tables: list[AbsentTable] | None = None,
) -> list[dict[str, Any]]:
    """Fetch ``table`` for a report and return its rows.

    Reference tables (machines, locations, finance) are read with
    ``windowed=False``. When the table is not provisioned the absence is
    appended to ``absent_tables`` and an empty list is returned.
    """
    since: datetime | None = ctx.since if windowed else None
    fetched = fetch_records(
        client,
        table,
        since,
        ctx.row_cap(getattr(client, "settings", None)),
        until=ctx.until if windowed else None,
        time_column=time_column,
        time_fallbacks=time_fallbacks,
        columns=columns,
        filters=filters,
    )
    if isinstance(fetched, AbsentTable):
        if absent_tables is not None:
            absent_tables.append(fetched)
        return []
    return list(fetched)


def machine_scope(
    client: BackendClient,
    ctx: ReportContext,
    absent_tables: list[AbsentTable] | None = None,
) -> list[dict[str, Any]]:
    """Machines visible to the report (all, or those at ``ctx.location_id``)."""
    filters: list[Filter] = []
    if ctx.location_id:
        filters.append(("eq", "location_id", ctx.location_id))
    return load_table(
        client,
        "machines",
        ctx,
        windowed=False,
        time_column=None,
        filters=filters,
        absent_tables=absent_tables,
    )


def scoped_filters(ctx: ReportContext, machines: Iterable[dict[str, Any]]) -> list[Filter]:
    """Restrict a machine-keyed table to the context's location, if any."""
    if not ctx.location_id:
        return []
    ids = sorted(str(m["id"]) for m in machines if m.get("id") is not None)
    return [("in", "machine_id", ids)]


def frame_from(rows: Iterable[Any], columns: Sequence[str] | None = None) -> pd.DataFrame:
    """Build a DataFrame from dataclass rows.

    Fields listed in the row class's ``MONEY_FIELDS`` are converted from
    minor units to Decimal dollars; other Decimals (distances) become floats
    and integer fields get ``np.int64``.
    """
    rows = list(rows)
    if not rows:
        return pd.DataFrame(columns=list(columns or []))
    cls = type(rows[0])
    money = set(getattr(cls, "MONEY_FIELDS", ()))
    names = list(columns or [f.name for f in dataclasses.fields(cls)])
    records = []
    for r in rows:
        rec = {}
        for name in names:
            v = getattr(r, name)
            if name in money and v is not None:
                v = to_decimal(v)
            elif isinstance(v, Decimal):
                v = float(v)
            rec[name] = v
        records.append(rec)
    df = pd.DataFrame.from_records(records, columns=names)
    for name in names:
        raw = [rec[name] for rec in records]
        if any(v is None for v in raw):
            # Keep None ("never") distinct from 0 and NaN
            df[name] = pd.Series(raw, index=df.index, dtype=object)
            continue
        if name in money:
            continue
        values = df[name].tolist()
        if values and all(isinstance(v, int) and not isinstance(v, bool) for v in values):
            df[name] = df[name].astype(np.int64)
    return df


@dataclass
class ReportResult:
    """Base class for report results.

    Attributes:
        rows: Ordered report rows.
        absent: Tables the report needed but that are not provisioned.
        demo_mode: Passed through from the report context.
    """

    rows: list[Any] = field(default_factory=list)
    absent: list[AbsentTable] = field(default_factory=list)
    demo_mode: bool = False

    COLUMNS: ClassVar[tuple[str, ...]] = ()

    @property
    def notices(self) -> list[str]:
        return [a.notice for a in self.absent]

    def to_frame(self) -> pd.DataFrame:
        return frame_from(self.rows, self.COLUMNS or None)
