"""Processor statement import into ``processor_settlements``.

Pipeline:

1. ``parse_csv`` the upload
2. ``guess_mapping`` headers to settlement fields (the caller may edit it)
3. ``apply_mapping`` to normalize rows into an ``ImportPreview``
4. ``import_settlements`` inserts the preview in sequential fixed-size
   batches; the first failed batch stops the import and is reported with
   its row span (it is not retried)

Amounts go through the dollars-vs-cents heuristic: text with a decimal
point is dollars, text without one is cents. Whole-number cells are
counted as ambiguous and logged rather than silently trusted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pandas as pd

from vend_core.backend.schema import AbsentWithSchema, probe_table
from vend_core.exceptions import BackendError, BackendWriteError, ConfigError, MissingTableError
from vend_core.imports.cleaning import normalize_header, parse_count, parse_statement_date
from vend_core.imports.csv_parser import ParsedCSV
from vend_core.rollup.money import read_amount
from vend_core.utils import format_duration, iter_batches

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient

logger = logging.getLogger(__name__)

TABLE = "processor_settlements"
DEFAULT_BATCH_SIZE = 500

REQUIRED_FIELDS = ("occurred_on", "gross_cents")
OPTIONAL_FIELDS = ("processor", "fee_cents", "net_cents", "txn_count", "deposit_ref")
FIELDS = REQUIRED_FIELDS + OPTIONAL_FIELDS

# Header hints per field, tried in order (exact or substring match)
HEADER_HINTS: dict[str, tuple[str, ...]] = {
    "occurred_on": ("date", "deposit date", "payout date", "settlement date"),
    "processor": ("processor", "provider", "gateway"),
    "gross_cents": ("gross", "amount", "sales"),
    "fee_cents": ("fee", "fees"),
    "net_cents": ("net", "payout", "deposit"),
    "txn_count": ("count", "transactions", "txn"),
    "deposit_ref": ("reference", "ref", "batch", "deposit id", "payout id"),
}

KNOWN_PROCESSORS = (
    "nectar",
    "nayax",
    "cantaloupe",
    "square",
    "stripe",
    "worldpay",
    "elan",
    "firstdata",
    "tsys",
)

AMOUNT_FIELDS = ("gross_cents", "fee_cents", "net_cents")


def guess_mapping(headers: Sequence[str]) -> dict[str, str | None]:
    """Suggest a header for each settlement field.

    A header already claimed by an earlier field is not reused.

    Examples:
        >>> m = guess_mapping(["Deposit Date", "Gross Sales", "Fees", "Net Payout", "Batch"])
        >>> m["occurred_on"], m["gross_cents"], m["fee_cents"], m["net_cents"], m["deposit_ref"]
        ('Deposit Date', 'Gross Sales', 'Fees', 'Net Payout', 'Batch')
    """
    normalized = [normalize_header(h) for h in headers]
    used: set[int] = set()
    mapping: dict[str, str | None] = {}
    for fld in FIELDS:
        mapping[fld] = None
        for hint in HEADER_HINTS[fld]:
            idx = next(
                (i for i, h in enumerate(normalized) if i not in used and (h == hint or hint in h)),
                None,
            )
            if idx is not None:
                mapping[fld] = headers[idx]
                used.add(idx)
                break
    logger.debug("Guessed column mapping: %s", mapping)
    return mapping


def guess_processor_from_filename(name: str | Path) -> str | None:
    """Known processor named in a file name, if any.

    Examples:
        >>> guess_processor_from_filename("Nayax_payouts_2025-03.csv")
        'nayax'
    """
    base = Path(name).name.lower()
    return next((p for p in KNOWN_PROCESSORS if p in base), None)


def missing_required(mapping: Mapping[str, str | None]) -> list[str]:
    return [f for f in REQUIRED_FIELDS if not mapping.get(f)]


@dataclass
class ImportPreview:
    """Normalized settlement rows ready to insert.

    Attributes:
        rows: Settlement rows (dicts with every settlement field).
        dropped_rows: Source rows skipped for lacking a parseable date.
        ambiguous_amounts: Whole-number amount cells read as cents.
        invalid_amounts: Amount cells that did not parse (stored as 0).
    """

    rows: list[dict[str, Any]] = field(default_factory=list)
    dropped_rows: int = 0
    ambiguous_amounts: int = 0
    invalid_amounts: int = 0

    def __len__(self) -> int:
        return len(self.rows)

    def head(self, n: int = 300) -> list[dict[str, Any]]:
        return self.rows[:n]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=list(FIELDS))


def apply_mapping(
    parsed: ParsedCSV,
    mapping: Mapping[str, str | None],
    processor: str | None = None,
) -> ImportPreview:
    """Normalize parsed CSV rows using ``mapping``.

    Args:
        parsed: Parsed CSV.
        mapping: Settlement field -> header (None for unmapped fields).
        processor: Processor name used when no processor column is mapped.

    Returns:
        ImportPreview; rows without a parseable date are dropped and counted.

    Raises:
        ConfigError: If a required field is unmapped or maps to an unknown header.
    """
    missing = missing_required(mapping)
    if missing:
        raise ConfigError(f"Column mapping is missing required fields: {', '.join(missing)}")

    idx: dict[str, int] = {}
    for fld in FIELDS:
        header = mapping.get(fld)
        if not header:
            continue
        try:
            idx[fld] = parsed.headers.index(header)
        except ValueError as e:
            raise ConfigError(f"Mapped header {header!r} for {fld} is not in the file") from e

    preview = ImportPreview()
    for r in parsed.rows:
        occurred_on = parse_statement_date(r[idx["occurred_on"]])
        if occurred_on is None:
            preview.dropped_rows += 1
            continue

        amounts: dict[str, int] = {}
        for fld in AMOUNT_FIELDS:
            if fld not in idx:
                continue
            reading = read_amount(r[idx[fld]])
            if reading.ambiguous:
                preview.ambiguous_amounts += 1
            if reading.unit == "invalid":
                preview.invalid_amounts += 1
            amounts[fld] = reading.minor_units

        gross = amounts.get("gross_cents", 0)
        fee = amounts.get("fee_cents", 0)
        net = amounts["net_cents"] if "net_cents" in amounts else gross - fee
        proc = r[idx["processor"]].strip() if "processor" in idx else None
        ref = r[idx["deposit_ref"]].strip() if "deposit_ref" in idx else None
        preview.rows.append(
            {
                "occurred_on": occurred_on,
                "processor": proc or processor or None,
                "gross_cents": gross,
                "fee_cents": fee,
                "net_cents": net,
                "txn_count": parse_count(r[idx["txn_count"]]) if "txn_count" in idx else None,
                "deposit_ref": ref or None,
            }
        )

    if preview.dropped_rows:
        logger.warning("Dropped %d rows without a parseable date", preview.dropped_rows)
    if preview.ambiguous_amounts:
        logger.warning(
            "%d amount cells had no decimal point and were read as cents", preview.ambiguous_amounts
        )
    if preview.invalid_amounts:
        logger.warning("%d amount cells could not be parsed and were stored as 0", preview.invalid_amounts)
    return preview


@dataclass(frozen=True)
class ImportResult:
    inserted: int
    batches: int
    ambiguous_amounts: int = 0
    dropped_rows: int = 0


def import_settlements(
    client: BackendClient,
    preview: ImportPreview,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> ImportResult | AbsentWithSchema:
    """Insert ``preview`` rows into ``processor_settlements``.

    Batches are submitted sequentially. Rows of batches before a failure
    stay inserted; there is no cross-batch atomicity.

    Returns:
        ImportResult, or AbsentWithSchema if the table is not provisioned.

    Raises:
        ValueError: If batch_size is not positive or there is nothing to insert.
        BackendWriteError: On the first failed batch, naming its 1-based row span.
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    if not preview.rows:
        raise ValueError("Nothing to insert. Check the column mapping.")

    probe = probe_table(client, TABLE)
    if isinstance(probe, AbsentWithSchema):
        return probe

    start = time.time()
    batches = 0
    for offset, batch in iter_batches(preview.rows, batch_size):
        first, last = offset + 1, offset + len(batch)
        try:
            client.insert(TABLE, batch)
        except MissingTableError:
            raise
        except BackendError as e:
            raise BackendWriteError(
                f"Insert failed at rows {first}-{last}: {e}",
                first_row=first,
                last_row=last,
                status_code=e.status_code,
                code=e.code,
                table=TABLE,
            ) from e
        batches += 1
        logger.info("Inserted rows %d-%d into %s", first, last, TABLE)

    logger.info(
        "Inserted %d rows into %s in %d batch(es) (%s)",
        len(preview.rows),
        TABLE,
        batches,
        format_duration(time.time() - start),
    )
    return ImportResult(
        inserted=len(preview.rows),
        batches=batches,
        ambiguous_amounts=preview.ambiguous_amounts,
        dropped_rows=preview.dropped_rows,
    )
