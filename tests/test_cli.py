"""Tests for the vend-core command line."""

from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from vend_core import cli

STATEMENT = "Date,Gross,Fees,Ref\n2025-03-04,12.50,0.40,B-1\n2025-03-05,800,,B-2\n,1.00,,B-3\n"


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as exc:
        cli.main(argv)
    return exc.value.code


@pytest.fixture
def roi_backend(make_backend, monkeypatch):
    yesterday = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    backend = make_backend(
        {
            "machines": [{"id": "M1", "name": "Lobby"}],
            "sales": [
                {"machine_id": "M1", "qty": 2, "unit_price_cents": 125000, "occurred_at": yesterday}
            ],
        }
    )
    monkeypatch.setattr(cli, "_client", lambda: backend)
    return backend


def test_report_prints_table(roi_backend, capsys) -> None:
    assert _run(["report", "machine-roi"]) == 0
    out, err = capsys.readouterr()
    assert "Lobby" in out
    assert "$2,500.00" in out
    assert "machine_finance" in err


def test_report_to_csv(roi_backend, tmp_path) -> None:
    out = tmp_path / "reports" / "roi.csv"
    assert _run(["report", "machine-roi", "--days", "7", "--out", str(out)]) == 0
    df = pd.read_csv(out)
    assert df["machine_id"].tolist() == ["M1"]


def test_empty_report(make_backend, monkeypatch, capsys) -> None:
    backend = make_backend(columns={"prospects": ["id", "stage", "created_at"]})
    monkeypatch.setattr(cli, "_client", lambda: backend)
    assert _run(["-q", "report", "prospect-funnel"]) == 0
    assert "No data for this window." in capsys.readouterr().out


def test_unknown_report_name() -> None:
    assert _run(["report", "weekly-magic"]) == 2


def test_missing_connection_settings(monkeypatch) -> None:
    monkeypatch.delenv("VEND_BACKEND_URL", raising=False)
    monkeypatch.delenv("VEND_BACKEND_KEY", raising=False)
    assert _run(["report", "machine-roi"]) == 1


class TestImportCommand:
    @pytest.fixture
    def statement(self, tmp_path):
        path = tmp_path / "nayax_march.csv"
        path.write_text(STATEMENT, encoding="utf-8")
        return path

    def test_dry_run(self, statement, capsys) -> None:
        assert _run(["import-settlements", str(statement), "--dry-run"]) == 0
        out = capsys.readouterr().out
        assert "Detected 3 rows in nayax_march.csv" in out
        assert "Mapped 2 rows (1 dropped, 1 ambiguous amounts)" in out
        assert "nayax" in out

    def test_import(self, statement, make_backend, monkeypatch, capsys) -> None:
        backend = make_backend(columns={"processor_settlements": ["occurred_on", "gross_cents"]})
        monkeypatch.setattr(cli, "_client", lambda: backend)
        assert _run(["import-settlements", str(statement), "--batch-size", "1"]) == 0
        assert "Inserted 2 rows in 2 batch(es)." in capsys.readouterr().out
        rows = backend.tables["processor_settlements"]
        assert [r["gross_cents"] for r in rows] == [1250, 800]
        assert rows[0]["net_cents"] == 1210

    def test_absent_table(self, statement, make_backend, monkeypatch, capsys) -> None:
        monkeypatch.setattr(cli, "_client", lambda: make_backend({}))
        assert _run(["import-settlements", str(statement)]) == 2
        assert "create table" in capsys.readouterr().err.lower()

    def test_failed_batch_exits_nonzero(self, statement, make_backend, monkeypatch) -> None:
        backend = make_backend(
            columns={"processor_settlements": ["occurred_on"]}, fail_insert_on_call=1
        )
        monkeypatch.setattr(cli, "_client", lambda: backend)
        assert _run(["import-settlements", str(statement)]) == 1
