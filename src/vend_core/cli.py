"""Command-line entry point.

Usage:
    $ vend-core report machine-roi --days 30
    $ vend-core report route-efficiency --days 7 --out runs.csv
    $ vend-core report sku-velocity --location loc-12 --max-rows 5000
    $ vend-core import-settlements nayax_payouts.csv --dry-run

Connection settings come from VEND_BACKEND_URL and VEND_BACKEND_KEY.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from vend_core.backend import AbsentWithSchema, BackendClient
from vend_core.config import BackendSettings, ReportContext
from vend_core.exceptions import BackendError, ConfigError, DataQualityError
from vend_core.imports import (
    DEFAULT_BATCH_SIZE,
    apply_mapping,
    guess_mapping,
    guess_processor_from_filename,
    import_settlements,
    read_csv_file,
)
from vend_core.reports import REPORTS
from vend_core.rollup.present import format_frame

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vend-core", description="Vending operator reports and statement import."
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Only log warnings and errors")
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    rep = sub.add_parser("report", help="Run a dashboard report")
    rep.add_argument("name", choices=sorted(REPORTS), help="Report to run")
    rep.add_argument(
        "--days", type=int, default=30, help="Trailing window length in days (default: 30)"
    )
    rep.add_argument("--location", default=None, help="Only consider machines at this location id")
    rep.add_argument(
        "--max-rows", type=int, default=None, help="Row cap per source table (default: backend setting)"
    )
    rep.add_argument("--out", type=Path, default=None, help="Write the report to this CSV file")

    imp = sub.add_parser("import-settlements", help="Import a processor statement CSV")
    imp.add_argument("file", type=Path, help="Statement CSV exported from the processor")
    imp.add_argument(
        "--processor",
        default=None,
        help="Processor name for rows without a processor column (default: guessed from file name)",
    )
    imp.add_argument(
        "--batch-size",
        type=int,
        default=DEFAULT_BATCH_SIZE,
        help=f"Rows per insert request (default: {DEFAULT_BATCH_SIZE})",
    )
    imp.add_argument(
        "--dry-run", action="store_true", help="Parse and map the file without inserting anything"
    )
    return parser


def _client() -> BackendClient:
    return BackendClient(BackendSettings.from_env())


def run_report(args: argparse.Namespace) -> int:
    ctx = ReportContext.last_days(args.days, location_id=args.location, max_rows=args.max_rows)
    report = REPORTS[args.name](_client(), ctx)

    for notice in report.notices:
        print(notice, file=sys.stderr)

    df = report.to_frame()
    if args.out:
        args.out.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.out, index=False)
        logger.info("Wrote %d rows to %s", len(df), args.out)
    elif df.empty:
        print("No data for this window.")
    else:
        print(format_frame(df).to_string(index=False))
    return 0


def run_import(args: argparse.Namespace) -> int:
    parsed = read_csv_file(args.file)
    mapping = guess_mapping(parsed.headers)
    processor = args.processor or guess_processor_from_filename(args.file)
    print(f"Detected {len(parsed)} rows in {args.file.name}")
    for fld, header in mapping.items():
        print(f"  {fld:<12}: {header or '(none)'}")

    preview = apply_mapping(parsed, mapping, processor=processor)
    print(
        f"Mapped {len(preview)} rows "
        f"({preview.dropped_rows} dropped, {preview.ambiguous_amounts} ambiguous amounts)"
    )
    if args.dry_run:
        print(preview.to_frame().head(20).to_string(index=False))
        return 0

    result = import_settlements(_client(), preview, batch_size=args.batch_size)
    if isinstance(result, AbsentWithSchema):
        print(result.notice, file=sys.stderr)
        return 2
    print(f"Inserted {result.inserted} rows in {result.batches} batch(es).")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    args = _build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.WARNING if args.quiet else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        if args.command == "report":
            code = run_report(args)
        else:
            code = run_import(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        sys.exit(130)
    except (ConfigError, BackendError, DataQualityError, ValueError) as e:
        logger.error("%s", e)
        raise SystemExit(1) from e
    sys.exit(code)


if __name__ == "__main__":
    main()
