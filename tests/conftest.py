"""Shared fixtures: an in-memory stand-in for the hosted store."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

import pytest

from vend_core.config import BackendSettings, ReportContext
from vend_core.exceptions import BackendError, MissingColumnError, MissingTableError
from vend_core.utils import parse_instant


def _matches(row: Mapping[str, Any], op: str, column: str, value: Any) -> bool:
    v = row.get(column)
    if op == "in":
        return v is not None and str(v) in {str(x) for x in value}
    if op == "eq":
        return v is not None and str(v) == str(value)
    if op == "neq":
        return v is None or str(v) != str(value)
    if isinstance(value, datetime):
        v = parse_instant(v)
    if v is None:
        return False
    if op == "gte":
        return v >= value
    if op == "lte":
        return v <= value
    if op == "gt":
        return v > value
    if op == "lt":
        return v < value
    raise ValueError(f"Fake backend does not support {op!r}")


class FakeBackend:
    """Table-scoped fake with the same surface as ``BackendClient``.

    Tables not in ``tables`` are "not provisioned". A table's column set is
    the union of its rows' keys unless given explicitly in ``columns``.
    With ``scramble`` the unordered row order changes on every select.
    """

    def __init__(
        self,
        tables: Mapping[str, Iterable[Mapping[str, Any]]] | None = None,
        *,
        columns: Mapping[str, Iterable[str]] | None = None,
        page_size: int = 1000,
        default_max_rows: int = 10_000,
        fail_insert_on_call: int | None = None,
        scramble: bool = False,
    ) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self.columns: dict[str, set[str]] = {}
        for name, rows in self.tables.items():
            cols: set[str] = set()
            for r in rows:
                cols.update(r)
            self.columns[name] = cols
        for name, cols in (columns or {}).items():
            self.tables.setdefault(name, [])
            self.columns[name] = set(cols)
        self.settings = BackendSettings(
            url="https://fake.example.co",
            api_key="test-key",
            page_size=page_size,
            default_max_rows=default_max_rows,
        )
        self.fail_insert_on_call = fail_insert_on_call
        self.scramble = scramble
        self.selects: list[dict[str, Any]] = []
        self.inserts: list[tuple[str, list[dict[str, Any]]]] = []

    @property
    def page_size(self) -> int:
        return self.settings.page_size

    def _check(self, table: str, names: Iterable[str]) -> None:
        if table not in self.tables:
            raise MissingTableError(f"{table}: relation does not exist", code="42P01", table=table)
        for name in names:
            if name != "*" and name not in self.columns[table]:
                raise MissingColumnError(
                    f"{table}: column {name} does not exist", code="42703", table=table
                )

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[tuple[str, str, Any]] = (),
        *,
        order: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
        tiebreaker: str | None = None,
    ) -> list[dict[str, Any]]:
        referenced = [c.strip() for c in columns.split(",")] + [c for _, c, _ in filters]
        referenced += [c for c in (order, tiebreaker) if c]
        self._check(table, referenced)
        self.selects.append(
            {
                "table": table,
                "filters": list(filters),
                "order": order,
                "tiebreaker": tiebreaker,
                "limit": limit,
                "offset": offset,
            }
        )

        rows = [r for r in self.tables[table] if all(_matches(r, *f) for f in filters)]
        if self.scramble and rows:
            # Storage order shifts between calls, like an unordered heap scan
            k = len(self.selects) % len(rows)
            rows = rows[k:] + rows[:k]
        if tiebreaker:
            rows.sort(key=lambda r: str(r.get(tiebreaker)))
        if order:
            present = [r for r in rows if r.get(order) is not None]
            missing = [r for r in rows if r.get(order) is None]
            present.sort(key=lambda r: str(r[order]), reverse=descending)
            rows = present + missing
        start = offset or 0
        end = start + limit if limit is not None else None
        return [dict(r) for r in rows[start:end]]

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        self._check(table, ())
        call = len(self.inserts) + 1
        if self.fail_insert_on_call == call:
            raise BackendError(
                f"{table}: HTTP 400 invalid input syntax for type date",
                status_code=400,
                code="22007",
                table=table,
            )
        self.inserts.append((table, [dict(r) for r in rows]))
        self.tables[table].extend(dict(r) for r in rows)

    def probe(self, table: str, column: str = "*") -> bool:
        try:
            self._check(table, [column])
        except (MissingTableError, MissingColumnError):
            return False
        return True


NOW = datetime(2025, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def ctx() -> ReportContext:
    """30-day window ending 2025-03-31 12:00 UTC."""
    return ReportContext.last_days(30, now=NOW)


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    return FakeBackend
