"""Processor statement CSV import.

Example:
    >>> from vend_core.imports import read_csv_file, guess_mapping, apply_mapping
    >>> parsed = read_csv_file("nayax_payouts.csv")
    >>> preview = apply_mapping(parsed, guess_mapping(parsed.headers), processor="nayax")
    >>> import_settlements(client, preview)
"""

from vend_core.imports.csv_parser import ParsedCSV, parse_csv, read_csv_file
from vend_core.imports.settlements import (
    DEFAULT_BATCH_SIZE,
    REQUIRED_FIELDS,
    ImportPreview,
    ImportResult,
    apply_mapping,
    guess_mapping,
    guess_processor_from_filename,
    import_settlements,
)

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "REQUIRED_FIELDS",
    "ImportPreview",
    "ImportResult",
    "ParsedCSV",
    "apply_mapping",
    "guess_mapping",
    "guess_processor_from_filename",
    "import_settlements",
    "parse_csv",
    "read_csv_file",
]
