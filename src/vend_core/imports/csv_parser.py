"""CSV parsing for uploaded statements.

Statements are read with ``pd.read_csv`` as all-text columns: quoted
fields, escaped quotes, embedded commas and newlines, CRLF line endings and
a leading byte-order mark are handled by the reader. Blank lines are
skipped, short rows are padded with empty cells and duplicate headers are
renamed (``Fee``, ``Fee.1``).
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Union

import pandas as pd

from vend_core.imports.cleaning import strip_invisibles

logger = logging.getLogger(__name__)

CsvSource = Union[str, Path, IO[str]]


@dataclass
class ParsedCSV:
    headers: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)

    def column(self, header: str) -> list[str]:
        idx = self.headers.index(header)
        return [r[idx] for r in self.rows]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows, columns=self.headers, dtype=str)


def _keep_long_row(cells: list[str]) -> list[str]:
    # The reader drops cells beyond the header width from the returned row
    logger.debug("Row has %d cells, more than the header; extra cells dropped", len(cells))
    return cells


def _read_frame(source: CsvSource, delimiter: str, encoding: str | None) -> pd.DataFrame | None:
    try:
        df = pd.read_csv(
            source,
            sep=delimiter,
            engine="python",
            on_bad_lines=_keep_long_row,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
            encoding=encoding,
        )
    except pd.errors.EmptyDataError:
        return None
    df = df.fillna("")
    df.columns = [strip_invisibles(c) or "" for c in df.columns]
    # Lines of separators or whitespace only
    if df.empty:
        return df
    blank = df.apply(lambda s: s.str.strip() == "").all(axis=1)
    if blank.any():
        logger.debug("Skipped %d blank rows", int(blank.sum()))
        df = df.loc[~blank]
    return df


def _to_parsed(df: pd.DataFrame | None) -> ParsedCSV:
    if df is None:
        return ParsedCSV()
    parsed = ParsedCSV(headers=list(df.columns), rows=df.values.tolist())
    logger.info("Parsed %d rows with %d columns", len(parsed.rows), len(parsed.headers))
    return parsed


def parse_csv(text: str, delimiter: str = ",") -> ParsedCSV:
    """Parse CSV text into headers and string rows.

    Examples:
        >>> p = parse_csv('Date,Gross\\r\\n2025-01-02,"1,234.50"\\r\\n\\r\\n')
        >>> p.headers, p.rows
        (['Date', 'Gross'], [['2025-01-02', '1,234.50']])
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    return _to_parsed(_read_frame(io.StringIO(text), delimiter, None))


def read_csv_file(path: str | Path, encoding: str = "utf-8-sig", delimiter: str = ",") -> ParsedCSV:
    """Read and parse a CSV file."""
    return _to_parsed(_read_frame(Path(path), delimiter, encoding))
