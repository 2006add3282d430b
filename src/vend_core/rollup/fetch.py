"""Raw record fetcher: time-windowed, row-capped streams from the backend.

``fetch_records`` answers one of two things:

- ``AbsentTable``: the source table is not provisioned (carries its DDL)
- ``RecordStream``: a lazy, finite, single-use iterator over raw rows

An empty stream therefore always means "no data in the window", never
"table missing".
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Union

from vend_core.backend.schema import AbsentWithSchema, absent
from vend_core.exceptions import MissingTableError

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient, Filter

logger = logging.getLogger(__name__)

AbsentTable = AbsentWithSchema

# Unique column appended to every ordering so pages never overlap
UNIQUE_COLUMN = "id"


class RecordStream:
    """Lazy paged iterator over one table's rows.

    Pages of ``page_size`` rows are requested with limit/offset only as the
    caller iterates, ordered by ``order`` then ``tiebreaker`` so that
    consecutive pages neither repeat nor skip rows. Iteration stops after
    ``max_rows`` rows or a short page. The stream can be iterated once; a second ``iter()`` raises
    RuntimeError.
    """

    def __init__(
        self,
        client: BackendClient,
        table: str,
        *,
        max_rows: int,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: str | None = None,
        descending: bool = True,
        page_size: int | None = None,
        tiebreaker: str | None = None,
    ) -> None:
        self.client = client
        self.table = table
        self.max_rows = max_rows
        self.columns = columns
        self.filters = tuple(filters)
        self.order = order
        self.descending = descending
        self.tiebreaker = tiebreaker
        self.page_size = page_size or client.page_size
        self.rows_read = 0
        self.pages_read = 0
        self._started = False

    def __iter__(self) -> Iterator[dict[str, Any]]:
        if self._started:
            raise RuntimeError(f"Record stream for {self.table} has already been consumed")
        self._started = True
        return self._iter_pages()

    def _iter_pages(self) -> Iterator[dict[str, Any]]:
        offset = 0
        while offset < self.max_rows:
            limit = min(self.page_size, self.max_rows - offset)
            page = self.client.select(
                self.table,
                self.columns,
                self.filters,
                order=self.order,
                descending=self.descending,
                limit=limit,
                offset=offset,
                tiebreaker=self.tiebreaker,
            )
            self.pages_read += 1
            for row in page[:limit]:
                self.rows_read += 1
                yield row
            offset += len(page)
            if len(page) < limit:
                break
        logger.info("Fetched %d rows from %s in %d page(s)", self.rows_read, self.table, self.pages_read)

    def __repr__(self) -> str:
        return f"RecordStream(table={self.table!r}, order={self.order!r}, max_rows={self.max_rows})"


FetchResult = Union[AbsentTable, RecordStream]


def _as_instant(since: Any) -> datetime:
    if not isinstance(since, datetime):
        raise TypeError(f"since must be a datetime, got {type(since).__name__}")
    if since.tzinfo is None:
        return since.replace(tzinfo=timezone.utc)
    return since


def fetch_records(
    client: BackendClient,
    table: str,
    since: datetime | None,
    max_rows: int,
    *,
    until: datetime | None = None,
    time_column: str | None = "occurred_at",
    time_fallbacks: Sequence[str] = ("created_at",),
    columns: str = "*",
    filters: Sequence[Filter] = (),
    descending: bool = True,
) -> FetchResult:
    """Probe ``table`` and return a stream of rows newer than ``since``.

    The time column is chosen from ``time_column`` then ``time_fallbacks``,
    the first one that exists on the table. If none exists the window
    filter is dropped and the table is read unfiltered (still capped).

    Args:
        client: Backend client (or anything with select/probe/page_size).
        table: Source table name.
        since: Start of the window. None reads without a window filter.
        max_rows: Positive cap on rows read.
        until: Optional end of the window.
        time_column: Preferred timestamp column; None skips windowing.
        time_fallbacks: Alternative timestamp columns, in order.
        columns: Column list for the select.
        filters: Extra ``(op, column, value)`` filters.
        descending: Newest first when True.

    Returns:
        AbsentTable if the table is not provisioned, else a RecordStream.

    Raises:
        TypeError: If since/until are not datetimes.
        ValueError: If max_rows is not positive.
        BackendError: For failures other than a missing table.
    """
    start = _as_instant(since) if since is not None else None
    end = _as_instant(until) if until is not None else None
    if isinstance(max_rows, bool) or not isinstance(max_rows, int) or max_rows <= 0:
        raise ValueError(f"max_rows must be a positive integer, got {max_rows!r}")

    if not client.probe(table):
        logger.warning("Source table %s is not provisioned", table)
        return absent(table)

    order: str | None = None
    window: list[Filter] = []
    if start is not None or end is not None:
        candidates = [c for c in (time_column, *time_fallbacks) if c]
        for col in candidates:
            if client.probe(table, col):
                order = col
                break
            logger.debug("Time column %s.%s is missing, trying next candidate", table, col)
        if order is None and candidates:
            logger.debug("No time column on %s, reading unfiltered", table)
        if order is not None:
            if start is not None:
                window.append(("gte", order, start))
            if end is not None:
                window.append(("lte", order, end))
    elif time_column:
        if client.probe(table, time_column):
            order = time_column

    tiebreaker = UNIQUE_COLUMN if client.probe(table, UNIQUE_COLUMN) else None
    if tiebreaker is None:
        logger.debug("%s has no %s column; page order is not guaranteed", table, UNIQUE_COLUMN)

    logger.info("Fetching %s (order=%s, max_rows=%d)", table, order, max_rows)
    return RecordStream(
        client,
        table,
        max_rows=max_rows,
        columns=columns,
        filters=[*window, *filters],
        order=order,
        descending=descending,
        tiebreaker=tiebreaker,
    )


def consume(result: FetchResult, *, absent_as_empty: bool = False) -> list[dict[str, Any]]:
    """Materialize a fetch result.

    Raises:
        MissingTableError: For an absent table unless ``absent_as_empty``.
    """
    if isinstance(result, AbsentWithSchema):
        if absent_as_empty:
            return []
        raise MissingTableError(result.notice, table=result.table)
    return list(result)
