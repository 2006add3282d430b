"""Tests for statement CSV parsing, column mapping and batched import."""

import pytest

from vend_core.backend.schema import AbsentWithSchema
from vend_core.exceptions import BackendWriteError, ConfigError
from vend_core.imports.cleaning import normalize_header, parse_count, parse_statement_date
from vend_core.imports.csv_parser import parse_csv, read_csv_file
from vend_core.imports.settlements import (
    ImportPreview,
    apply_mapping,
    guess_mapping,
    guess_processor_from_filename,
    import_settlements,
)

STATEMENT = (
    "\ufeffDate,Gross,Fees,Count,Ref\r\n"
    '03/04/25,"1,234.50",12.30,15 txns,B-1\r\n'
    ",5.00,0.10,1,B-2\r\n"
    "\r\n"
    "2025-03-05,1200,,,\r\n"
)


def _preview(n: int) -> ImportPreview:
    rows = [
        {
            "occurred_on": "2025-03-04",
            "processor": "nayax",
            "gross_cents": 100 + i,
            "fee_cents": 3,
            "net_cents": 97 + i,
            "txn_count": 1,
            "deposit_ref": None,
        }
        for i in range(n)
    ]
    return ImportPreview(rows=rows)


class TestCleaning:
    def test_normalize_header(self) -> None:
        assert normalize_header("  D\u00e9p\u00f4t\u00a0Date ") == "depot date"

    def test_statement_dates(self) -> None:
        assert parse_statement_date("2025-03-04T10:00:00Z") == "2025-03-04"
        assert parse_statement_date("3/4/2025") == "2025-03-04"
        assert parse_statement_date("03-04-25") == "2025-03-04"
        assert parse_statement_date("13/45/2025") is None
        assert parse_statement_date("") is None

    def test_parse_count(self) -> None:
        assert parse_count("1,204 txns") == 1204
        assert parse_count("n/a") is None


class TestParseCSV:
    def test_quotes_bom_crlf_and_blank_lines(self) -> None:
        parsed = parse_csv(STATEMENT)
        assert parsed.headers == ["Date", "Gross", "Fees", "Count", "Ref"]
        assert len(parsed) == 3
        assert parsed.rows[0][1] == "1,234.50"

    def test_embedded_newline_and_escaped_quote(self) -> None:
        parsed = parse_csv('Ref,Note\nB-1,"line one\nsaid ""hi"""\n')
        assert parsed.rows == [["B-1", 'line one\nsaid "hi"']]

    def test_short_rows_padded(self) -> None:
        parsed = parse_csv("a,b,c\n1\n")
        assert parsed.rows == [["1", "", ""]]

    def test_duplicate_headers_renamed(self) -> None:
        parsed = parse_csv("Fee,Fee,Net\n1,2,3\n")
        assert parsed.headers == ["Fee", "Fee.1", "Net"]
        assert parsed.column("Fee.1") == ["2"]

    def test_long_rows_truncated(self) -> None:
        parsed = parse_csv("a,b\n1,2\n3,4,5\n")
        assert parsed.rows == [["1", "2"], ["3", "4"]]

    def test_numeric_text_kept_verbatim(self) -> None:
        parsed = parse_csv("Ref,Gross\n007,1200\n")
        assert parsed.rows == [["007", "1200"]]

    def test_empty_text(self) -> None:
        assert parse_csv("").headers == []

    def test_read_file_and_frame(self, tmp_path) -> None:
        path = tmp_path / "nayax.csv"
        path.write_text(STATEMENT, encoding="utf-8")
        parsed = read_csv_file(path)
        assert parsed.headers[0] == "Date"
        assert parsed.to_frame().shape == (3, 5)


class TestMapping:
    def test_guess_mapping(self) -> None:
        headers = [
            "Settlement Date",
            "Processor",
            "Gross Amount",
            "Fees",
            "Net Deposit",
            "Transactions",
            "Batch ID",
        ]
        assert guess_mapping(headers) == {
            "occurred_on": "Settlement Date",
            "gross_cents": "Gross Amount",
            "processor": "Processor",
            "fee_cents": "Fees",
            "net_cents": "Net Deposit",
            "txn_count": "Transactions",
            "deposit_ref": "Batch ID",
        }

    def test_header_not_reused(self) -> None:
        mapping = guess_mapping(["Deposit Date", "Deposit"])
        assert mapping["occurred_on"] == "Deposit Date"
        assert mapping["net_cents"] == "Deposit"

    def test_unmatched_fields_are_none(self) -> None:
        mapping = guess_mapping(["Date", "Amount"])
        assert mapping["gross_cents"] == "Amount"
        assert mapping["fee_cents"] is None

    def test_processor_from_filename(self) -> None:
        assert guess_processor_from_filename("/tmp/Cantaloupe-March.csv") == "cantaloupe"
        assert guess_processor_from_filename("report.csv") is None

    def test_apply_mapping(self) -> None:
        parsed = parse_csv(STATEMENT)
        preview = apply_mapping(parsed, guess_mapping(parsed.headers), processor="nayax")
        assert len(preview) == 2
        assert preview.dropped_rows == 1
        assert preview.ambiguous_amounts == 1

        first, second = preview.rows
        assert first == {
            "occurred_on": "2025-03-04",
            "processor": "nayax",
            "gross_cents": 123450,
            "fee_cents": 1230,
            "net_cents": 122220,
            "txn_count": 15,
            "deposit_ref": "B-1",
        }
        assert second["gross_cents"] == 1200
        assert second["fee_cents"] == 0
        assert second["txn_count"] is None
        assert second["deposit_ref"] is None

    def test_dollars_and_cents_in_one_row(self) -> None:
        parsed = parse_csv('Date,Gross,Fees\n2025-03-04,"1,234.50",12\n')
        preview = apply_mapping(parsed, guess_mapping(parsed.headers), processor="nayax")
        row = preview.rows[0]
        assert row["gross_cents"] == 123450
        assert row["fee_cents"] == 12
        assert row["net_cents"] == 123438
        assert preview.ambiguous_amounts == 1
        assert preview.invalid_amounts == 0

    def test_processor_column_wins(self) -> None:
        parsed = parse_csv("Date,Gross,Processor\n2025-03-04,1.00,Square\n")
        preview = apply_mapping(parsed, guess_mapping(parsed.headers), processor="nayax")
        assert preview.rows[0]["processor"] == "Square"

    def test_missing_required_mapping(self) -> None:
        parsed = parse_csv("Date,Fees\n2025-03-04,1.00\n")
        with pytest.raises(ConfigError, match="gross_cents"):
            apply_mapping(parsed, guess_mapping(parsed.headers))

    def test_mapping_to_unknown_header(self) -> None:
        parsed = parse_csv("Date,Gross\n2025-03-04,1.00\n")
        with pytest.raises(ConfigError):
            apply_mapping(parsed, {"occurred_on": "Date", "gross_cents": "Total"})

    def test_preview_frame(self) -> None:
        df = _preview(3).to_frame()
        assert list(df.columns)[:2] == ["occurred_on", "gross_cents"]
        assert len(df) == 3


class TestImportSettlements:
    @pytest.fixture
    def backend(self, make_backend):
        return make_backend(
            columns={
                "processor_settlements": [
                    "occurred_on",
                    "processor",
                    "gross_cents",
                    "fee_cents",
                    "net_cents",
                    "txn_count",
                    "deposit_ref",
                ]
            }
        )

    def test_batches_of_500(self, backend) -> None:
        result = import_settlements(backend, _preview(1201))
        assert result.inserted == 1201
        assert result.batches == 3
        assert [len(rows) for _, rows in backend.inserts] == [500, 500, 201]

    def test_failed_batch_reports_row_span(self, make_backend) -> None:
        backend = make_backend(
            columns={"processor_settlements": ["occurred_on", "gross_cents"]},
            fail_insert_on_call=2,
        )
        with pytest.raises(BackendWriteError, match="Insert failed at rows 501-1000") as exc:
            import_settlements(backend, _preview(1201))
        assert (exc.value.first_row, exc.value.last_row) == (501, 1000)
        assert exc.value.status_code == 400
        assert len(backend.inserts) == 1

    def test_absent_table(self, make_backend) -> None:
        result = import_settlements(make_backend({}), _preview(2))
        assert isinstance(result, AbsentWithSchema)
        assert "processor_settlements" in result.notice

    def test_invalid_input(self, backend) -> None:
        with pytest.raises(ValueError):
            import_settlements(backend, ImportPreview())
        with pytest.raises(ValueError):
            import_settlements(backend, _preview(1), batch_size=0)

    def test_custom_batch_size(self, backend) -> None:
        result = import_settlements(backend, _preview(5), batch_size=2)
        assert result.batches == 3
