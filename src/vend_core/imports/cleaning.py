"""Cleaning helpers for processor statement exports.

Statement CSVs come from many processors, each with its own header text,
date style and stray whitespace. This module provides:

- Text normalization: strip invisible characters, normalize header text
- Date parsing: ISO, US ``MM/DD/YYYY`` (``-`` also accepted), 2-digit years
- Count parsing: keep digits (and sign) only

Examples:
    >>> normalize_header("  Deposit Date ")
    'deposit date'
    >>> parse_statement_date("3/4/25")
    '2025-03-04'
    >>> parse_count("1,204 txns")
    1204
"""

from __future__ import annotations

import re
import unicodedata
from typing import Any

import pandas as pd

# Unicode characters that should be stripped from text
NBSP = "\u00a0"  # Non-breaking space
NNBSP = "\u202f"  # Narrow non-breaking space
ZW = "".join(chr(c) for c in (0x200B, 0x200C, 0x200D, 0xFEFF))  # Zero-width characters

_US_DATE_RE = re.compile(r"^(\d{1,2})[/\-](\d{1,2})[/\-](\d{2,4})$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})")
_NOT_DIGIT_RE = re.compile(r"[^0-9\-]")


def strip_invisibles(x: Any) -> str | None:
    """Remove invisible and problematic whitespace characters from text.

    Examples:
        >>> strip_invisibles("  Gross\tSales ")
        'Gross Sales'
        >>> strip_invisibles(None) is None
        True
    """
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return None
    s = str(x)
    s = s.replace("\r", "").replace("\t", " ").replace(NBSP, " ").replace(NNBSP, " ")
    s = re.sub(r"[%s]" % re.escape(ZW), "", s)  # zero-width
    s = re.sub(r"\s+", " ", s).strip()
    return s


def normalize_header(s: str) -> str:
    """Normalize a header for matching: no accents, single spaces, lowercase."""
    base = strip_invisibles(s or "") or ""
    base = unicodedata.normalize("NFKD", base)
    base = "".join(ch for ch in base if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", base).strip().lower()


def parse_statement_date(val: Any) -> str | None:
    """Parse a statement date into ``YYYY-MM-DD``, or None.

    Tries, in order: ISO dates/timestamps, US ``MM/DD/YYYY`` or
    ``MM-DD-YY`` (2-digit years are 20YY), then pandas' own parser.
    """
    s = strip_invisibles(val)
    if not s:
        return None
    m = _ISO_DATE_RE.match(s)
    if m:
        ts = pd.to_datetime(m.group(0), format="%Y-%m-%d", errors="coerce")
        return None if pd.isna(ts) else ts.strftime("%Y-%m-%d")
    m = _US_DATE_RE.match(s)
    if m:
        month, day, year = m.groups()
        if len(year) == 2:
            year = "20" + year
        elif len(year) == 3:
            return None
        ts = pd.to_datetime(f"{year}-{month.zfill(2)}-{day.zfill(2)}", format="%Y-%m-%d", errors="coerce")
        return None if pd.isna(ts) else ts.strftime("%Y-%m-%d")
    ts = pd.to_datetime(s, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.strftime("%Y-%m-%d")


def parse_count(val: Any) -> int | None:
    """Keep digits and sign only; None when nothing numeric remains."""
    s = strip_invisibles(val)
    if not s:
        return None
    digits = _NOT_DIGIT_RE.sub("", s)
    if not digits or digits == "-":
        return None
    try:
        return int(digits)
    except ValueError:
        return None
