"""Group-key resolution for rollups.

Source tables are not consistent about column names (``route_name`` vs
``name``, ``business_name`` vs ``company``). A key extractor takes an ordered
list of candidate columns, resolves it ONCE against a sample row, then reads
that single column from every row of the invocation. Rows whose bound column
is missing or blank have no key and are excluded by the reducer.

Examples:
    >>> rows = [{"machine_id": "M1", "qty": 2}, {"machine_id": "M2", "qty": 1}]
    >>> ex = KeyExtractor(MACHINE_KEYS, "machine").bind(rows[0])
    >>> [ex.extract(r) for r in rows]
    ['M1', 'M2']
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from vend_core.utils import day_key

logger = logging.getLogger(__name__)

MACHINE_KEYS = ("machine_id",)
PRODUCT_KEYS = ("product_id", "sku_id", "product")
LOCATION_KEYS = ("location_id",)
PROCESSOR_KEYS = ("processor_id", "processor")
ROUTE_KEYS = ("route_name", "name", "route")
DRIVER_KEYS = ("driver", "assigned_to", "driver_name")
RUN_KEYS = ("run_id", "route_run_id")
PROSPECT_NAME_KEYS = ("business_name", "name", "company_name", "company", "contact_name")
TIME_KEYS = ("occurred_at", "created_at")


def pick_column(sample: Mapping[str, Any] | None, candidates: Sequence[str]) -> str | None:
    """Return the first candidate that is a field of ``sample``.

    Presence is decided by the field set, not the value: a sample whose
    ``route_name`` is null still binds ``route_name``.

    Examples:
        >>> pick_column({"name": "North", "id": 1}, ROUTE_KEYS)
        'name'
        >>> pick_column({"id": 1}, ROUTE_KEYS) is None
        True
    """
    if not sample:
        return None
    for c in candidates:
        if c in sample:
            return c
    return None


def _stringify(value: Any) -> str | None:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


class KeyExtractor:
    """Resolve a grouping column once and read it from every row.

    Args:
        candidates: Ordered candidate column names.
        dimension: Human name of the dimension (used in log lines).
    """

    def __init__(self, candidates: Sequence[str], dimension: str = "key") -> None:
        if not candidates:
            raise ValueError("candidates must not be empty")
        self.candidates = tuple(candidates)
        self.dimension = dimension
        self.column: str | None = None
        self._bound = False

    def bind(self, sample: Mapping[str, Any] | None) -> KeyExtractor:
        """Resolve the column from ``sample`` and return self.

        A failed resolution still binds (to None): every row of the
        invocation is then excluded rather than re-guessed per row.
        """
        self.column = pick_column(sample, self.candidates)
        self._bound = True
        if self.column is None:
            logger.debug("No %s column among %s", self.dimension, list(self.candidates))
        else:
            logger.debug("Grouping by %s column %r", self.dimension, self.column)
        return self

    @property
    def bound(self) -> bool:
        return self._bound

    def _require_bound(self) -> None:
        if not self._bound:
            raise RuntimeError(f"{type(self).__name__} for {self.dimension} used before bind()")

    def extract(self, row: Mapping[str, Any]) -> str | None:
        """Key of ``row``, or None when the bound column is missing or blank."""
        self._require_bound()
        if self.column is None:
            return None
        return _stringify(row.get(self.column))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self.candidates)!r}, column={self.column!r})"


class MappedKeyExtractor(KeyExtractor):
    """Resolve a foreign key then translate it through ``mapping``.

    Used for machine -> location and machine -> processor rollups. Keys
    absent from the mapping become ``default``; with ``default=None`` the
    row is excluded. ``passthrough=True`` keeps unmapped keys as they are
    (e.g. settlement rows that already carry a processor id).

    Examples:
        >>> ex = MappedKeyExtractor(MACHINE_KEYS, {"M1": "P1"}, default="__unmapped__")
        >>> ex = ex.bind({"machine_id": "M1"})
        >>> ex.extract({"machine_id": "M1"}), ex.extract({"machine_id": "M9"})
        ('P1', '__unmapped__')
    """

    def __init__(
        self,
        candidates: Sequence[str],
        mapping: Mapping[str, Any],
        default: str | None = None,
        *,
        dimension: str = "key",
        passthrough: bool = False,
    ) -> None:
        super().__init__(candidates, dimension)
        self.mapping = {str(k): v for k, v in mapping.items()}
        self.default = default
        self.passthrough = passthrough

    def extract(self, row: Mapping[str, Any]) -> str | None:
        raw = super().extract(row)
        if raw is None:
            return None
        mapped = _stringify(self.mapping.get(raw))
        if mapped is not None:
            return mapped
        if self.passthrough:
            return raw
        return self.default


class DayKeyExtractor(KeyExtractor):
    """Group by the ``YYYY-MM-DD`` day of a timestamp column."""

    def __init__(self, candidates: Sequence[str] = TIME_KEYS, dimension: str = "day") -> None:
        super().__init__(candidates, dimension)

    def extract(self, row: Mapping[str, Any]) -> str | None:
        self._require_bound()
        if self.column is None:
            return None
        return day_key(row.get(self.column))


class MonthKeyExtractor(DayKeyExtractor):
    """Group by the ``YYYY-MM`` month of a timestamp column."""

    def __init__(self, candidates: Sequence[str] = TIME_KEYS, dimension: str = "month") -> None:
        super().__init__(candidates, dimension)

    def extract(self, row: Mapping[str, Any]) -> str | None:
        day = super().extract(row)
        return day[:7] if day else None


class CompositeKeyExtractor:
    """Join several extractors into one key (``M1|2025-03-04``).

    If any part is missing the whole key is missing.
    """

    def __init__(self, *extractors: KeyExtractor, sep: str = "|") -> None:
        if not extractors:
            raise ValueError("at least one extractor is required")
        self.extractors = extractors
        self.sep = sep
        self.dimension = sep.join(e.dimension for e in extractors)

    def bind(self, sample: Mapping[str, Any] | None) -> CompositeKeyExtractor:
        for e in self.extractors:
            e.bind(sample)
        return self

    @property
    def bound(self) -> bool:
        return all(e.bound for e in self.extractors)

    def extract(self, row: Mapping[str, Any]) -> str | None:
        parts = []
        for e in self.extractors:
            part = e.extract(row)
            if part is None:
                return None
            parts.append(part)
        return self.sep.join(parts)
