"""Rollup reducer: fold raw rows into one bucket per group key.

Accumulation is plain integer addition (and exact ``Decimal`` addition for
distance), so the result does not depend on row order and re-running the
reduction on the same rows gives identical totals.

Every input row is accounted for: it either lands in exactly one bucket or
is counted as an exclusion, with a reason:

- ``no_key``: the bound key column is missing or blank
- ``partial_row``: a present measure value is non-finite or negative
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from vend_core.exceptions import PartialRowError
from vend_core.rollup.money import MeasureSpec, RowMeasures

logger = logging.getLogger(__name__)

NO_KEY = "no_key"
PARTIAL_ROW = "partial_row"


class GroupKeyExtractor(Protocol):
    dimension: str

    def bind(self, sample: Mapping[str, Any] | None) -> Any: ...

    def extract(self, row: Mapping[str, Any]) -> str | None: ...


@dataclass
class RollupBucket:
    """Running totals for one group key. Money fields are minor units."""

    key: str
    record_count: int = 0
    total_quantity: int = 0
    gross_minor_units: int = 0
    cost_minor_units: int = 0
    fee_minor_units: int = 0
    total_duration_millis: int = 0
    total_distance: Decimal = field(default_factory=Decimal)

    def merge(self, other: RollupBucket) -> RollupBucket:
        """Return a new bucket holding the sum of ``self`` and ``other``."""
        return RollupBucket(
            key=self.key,
            record_count=self.record_count + other.record_count,
            total_quantity=self.total_quantity + other.total_quantity,
            gross_minor_units=self.gross_minor_units + other.gross_minor_units,
            cost_minor_units=self.cost_minor_units + other.cost_minor_units,
            fee_minor_units=self.fee_minor_units + other.fee_minor_units,
            total_duration_millis=self.total_duration_millis + other.total_duration_millis,
            total_distance=self.total_distance + other.total_distance,
        )


def accumulate(bucket: RollupBucket, measures: RowMeasures) -> None:
    """Add one measured row to ``bucket``."""
    bucket.record_count += 1
    bucket.total_quantity += measures.quantity
    bucket.gross_minor_units += measures.gross
    bucket.cost_minor_units += measures.cost
    bucket.fee_minor_units += measures.fee
    bucket.total_duration_millis += measures.duration_millis
    bucket.total_distance += measures.distance


@dataclass
class RollupResult:
    """Buckets by key plus an account of every row that was not bucketed."""

    buckets: dict[str, RollupBucket] = field(default_factory=dict)
    total_rows: int = 0
    excluded_rows: int = 0
    exclusions: Counter = field(default_factory=Counter)

    def __len__(self) -> int:
        return len(self.buckets)

    def __contains__(self, key: object) -> bool:
        return key in self.buckets

    def __getitem__(self, key: str) -> RollupBucket:
        return self.buckets[key]

    def get(self, key: str) -> RollupBucket | None:
        return self.buckets.get(key)

    def totals(self, key: str = "__total__") -> RollupBucket:
        """Merge every bucket into a single grand-total bucket."""
        total = RollupBucket(key=key)
        for key_ in sorted(self.buckets):
            total = total.merge(self.buckets[key_])
        return total

    def ensure(self, key: str) -> RollupBucket:
        """Return the bucket for ``key``, creating an empty one if needed.

        Used by reports that must list every machine or location, including
        those without rows in the window.
        """
        bucket = self.buckets.get(key)
        if bucket is None:
            bucket = self.buckets[key] = RollupBucket(key=key)
        return bucket


def reduce_records(
    records: Iterable[Mapping[str, Any]],
    key_extractor: GroupKeyExtractor,
    measures: MeasureSpec | None = None,
) -> RollupResult:
    """Fold ``records`` into a RollupResult.

    The key extractor and measure columns are bound once, on the first
    record, and reused for the rest of the invocation. Input rows are never
    mutated.

    Args:
        records: Raw rows (any iterable, consumed once).
        key_extractor: Extractor for the grouping dimension.
        measures: Candidate measure columns; defaults to sales columns.

    Returns:
        RollupResult with ``sum(record_count) + excluded_rows == total_rows``.

    Examples:
        >>> from vend_core.rollup.keys import KeyExtractor
        >>> rows = [
        ...     {"machine_id": "M1", "qty": 2, "unit_price_cents": 175, "unit_cost_cents": 100},
        ...     {"machine_id": None, "qty": 1, "unit_price_cents": 175},
        ... ]
        >>> result = reduce_records(rows, KeyExtractor(["machine_id"], "machine"))
        >>> result["M1"].gross_minor_units, result.excluded_rows
        (350, 1)
    """
    spec = measures or MeasureSpec()
    result = RollupResult()
    bound = None

    for row in records:
        if bound is None:
            key_extractor.bind(row)
            bound = spec.bind(row)
        result.total_rows += 1

        key = key_extractor.extract(row)
        if key is None:
            result.excluded_rows += 1
            result.exclusions[NO_KEY] += 1
            logger.debug("Excluded row without %s key: %r", key_extractor.dimension, row)
            continue

        try:
            m = bound.measure(row)
        except PartialRowError as e:
            result.excluded_rows += 1
            result.exclusions[PARTIAL_ROW] += 1
            logger.debug("Excluded partial row for %s=%s: %s", key_extractor.dimension, key, e)
            continue

        accumulate(result.ensure(key), m)

    if result.excluded_rows:
        logger.warning(
            "Excluded %d of %d rows (%s)",
            result.excluded_rows,
            result.total_rows,
            ", ".join(f"{k}={v}" for k, v in sorted(result.exclusions.items())),
        )
    logger.debug("Reduced %d rows into %d buckets", result.total_rows, len(result.buckets))
    return result
