"""Tests for the hosted-store client, settings and table probes."""

import json
from datetime import datetime, timezone
from typing import Any

import pytest
import requests

from vend_core.backend.client import BackendClient, build_params, classify_error, make_session
from vend_core.backend.schema import AbsentWithSchema, Present, probe_table
from vend_core.config import BackendSettings, ReportContext
from vend_core.exceptions import (
    BackendError,
    ConfigError,
    MissingColumnError,
    MissingTableError,
)


def _response(status: int, body: Any = None, text: str | None = None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    if text is not None:
        resp._content = text.encode()
    else:
        resp._content = json.dumps(body).encode()
    return resp


class FakeSession:
    """Records requests and replays queued responses."""

    def __init__(self, *responses: requests.Response) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict]] = []

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append(("GET", url, kwargs))
        return self.responses.pop(0)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append(("POST", url, kwargs))
        return self.responses.pop(0)


@pytest.fixture
def settings() -> BackendSettings:
    return BackendSettings(url="https://demo.example.co/", api_key="secret")


class TestBuildParams:
    def test_filters_order_limit_offset(self) -> None:
        since = datetime(2025, 3, 1, tzinfo=timezone.utc)
        params = build_params(
            "*",
            [("gte", "occurred_at", since), ("eq", "location_id", "L1")],
            order="occurred_at",
            descending=True,
            limit=100,
            offset=200,
        )
        assert params == [
            ("select", "*"),
            ("occurred_at", "gte.2025-03-01T00:00:00+00:00"),
            ("location_id", "eq.L1"),
            ("order", "occurred_at.desc"),
            ("limit", "100"),
            ("offset", "200"),
        ]

    def test_tiebreaker_appended_to_order(self) -> None:
        params = build_params("*", order="occurred_at", descending=True, tiebreaker="id")
        assert ("order", "occurred_at.desc,id.asc") in params
        assert ("order", "id.asc") in build_params("*", tiebreaker="id")
        assert ("order", "id.asc") in build_params("*", order="id", tiebreaker="id")

    def test_in_filter_quotes_values(self) -> None:
        params = build_params("id", [("in", "machine_id", ["M1", "a,b"])])
        assert params[1] == ("machine_id", 'in.(M1,"a,b")')

    def test_unknown_operator(self) -> None:
        with pytest.raises(ValueError):
            build_params("*", [("between", "x", 1)])


class TestClassifyError:
    def test_missing_table_codes(self) -> None:
        err = classify_error(_response(404, {"code": "PGRST205", "message": "no table"}), "route_runs")
        assert isinstance(err, MissingTableError)
        assert err.table == "route_runs"
        assert err.code == "PGRST205"

    def test_missing_column(self) -> None:
        err = classify_error(_response(400, {"code": "42703", "message": "no column"}), "sales")
        assert isinstance(err, MissingColumnError)

    def test_other_failure(self) -> None:
        err = classify_error(_response(500, text="upstream timeout"), "sales")
        assert type(err) is BackendError
        assert err.status_code == 500
        assert "upstream timeout" in str(err)


class TestBackendClient:
    def test_select_sends_auth_and_params(self, settings: BackendSettings) -> None:
        session = FakeSession(_response(200, [{"id": 1}]))
        client = BackendClient(settings, session=session)
        rows = client.select("sales", "id", limit=1)
        assert rows == [{"id": 1}]
        method, url, kwargs = session.calls[0]
        assert url == "https://demo.example.co/rest/v1/sales"
        assert kwargs["headers"]["apikey"] == "secret"
        assert kwargs["headers"]["Authorization"] == "Bearer secret"
        assert ("limit", "1") in kwargs["params"]

    def test_select_non_list_body(self, settings: BackendSettings) -> None:
        client = BackendClient(settings, session=FakeSession(_response(200, {"id": 1})))
        with pytest.raises(BackendError):
            client.select("sales")

    def test_select_request_exception(self, settings: BackendSettings, monkeypatch) -> None:
        session = FakeSession()

        def boom(url: str, **kwargs: Any) -> requests.Response:
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(session, "get", boom)
        client = BackendClient(settings, session=session)
        with pytest.raises(BackendError, match="request failed"):
            client.select("sales")

    def test_probe(self, settings: BackendSettings) -> None:
        session = FakeSession(
            _response(200, []),
            _response(404, {"code": "42P01", "message": "relation does not exist"}),
            _response(400, {"code": "42703", "message": "column does not exist"}),
        )
        client = BackendClient(settings, session=session)
        assert client.probe("sales") is True
        assert client.probe("route_runs") is False
        assert client.probe("sales", "started_at") is False

    def test_probe_propagates_other_errors(self, settings: BackendSettings) -> None:
        client = BackendClient(settings, session=FakeSession(_response(401, {"message": "bad key"})))
        with pytest.raises(BackendError):
            client.probe("sales")

    def test_insert_serializes_dates(self, settings: BackendSettings) -> None:
        session = FakeSession(_response(201, text=""))
        client = BackendClient(settings, session=session)
        client.insert("processor_settlements", [{"occurred_on": datetime(2025, 3, 4), "gross_cents": 1}])
        method, _, kwargs = session.calls[0]
        assert method == "POST"
        assert kwargs["json"][0]["occurred_on"].startswith("2025-03-04")
        assert kwargs["headers"]["Prefer"] == "return=minimal"

    def test_insert_empty_is_noop(self, settings: BackendSettings) -> None:
        session = FakeSession()
        BackendClient(settings, session=session).insert("sales", [])
        assert session.calls == []

    def test_make_session_never_retries_post(self) -> None:
        session = make_session(timeout=5, retries=2)
        retry = session.get_adapter("https://x.example.co").max_retries
        assert retry.total == 2
        assert "POST" not in retry.allowed_methods


class TestProbeTable:
    def test_present_and_absent(self, make_backend) -> None:
        backend = make_backend({"sales": [{"id": 1}]})
        assert probe_table(backend, "sales") == Present("sales")
        result = probe_table(backend, "processor_settlements")
        assert isinstance(result, AbsentWithSchema)
        assert "processor_settlements" in result.ddl

    def test_notice_without_ddl(self, make_backend) -> None:
        result = probe_table(make_backend({}), "machines")
        assert result.notice == "Table 'machines' is not provisioned."


class TestSettings:
    def test_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("VEND_BACKEND_URL", '"https://demo.example.co/"')
        monkeypatch.setenv("VEND_BACKEND_KEY", "secret")
        monkeypatch.setenv("VEND_PAGE_SIZE", "250")
        settings = BackendSettings.from_env()
        assert settings.rest_url == "https://demo.example.co/rest/v1"
        assert settings.page_size == 250

    def test_missing_env(self, monkeypatch) -> None:
        monkeypatch.delenv("VEND_BACKEND_URL", raising=False)
        monkeypatch.delenv("VEND_BACKEND_KEY", raising=False)
        with pytest.raises(ConfigError):
            BackendSettings.from_env()

    def test_malformed_number(self, monkeypatch) -> None:
        monkeypatch.setenv("VEND_BACKEND_URL", "https://demo.example.co")
        monkeypatch.setenv("VEND_BACKEND_KEY", "secret")
        monkeypatch.setenv("VEND_TIMEOUT", "soon")
        with pytest.raises(ConfigError):
            BackendSettings.from_env()

    def test_invalid_page_size(self) -> None:
        with pytest.raises(ConfigError):
            BackendSettings(url="https://x", api_key="k", page_size=0)


class TestReportContext:
    def test_last_days(self, now: datetime) -> None:
        ctx = ReportContext.last_days(14, location_id="L1", now=now)
        assert ctx.window_days == 14.0
        assert ctx.window_end == now
        assert ctx.location_id == "L1"

    def test_naive_since_becomes_utc(self) -> None:
        ctx = ReportContext(since=datetime(2025, 3, 1))
        assert ctx.since.tzinfo is timezone.utc

    def test_rejects_bad_windows(self, now: datetime) -> None:
        with pytest.raises(ValueError):
            ReportContext.last_days(0)
        with pytest.raises(ValueError):
            ReportContext(since=now, until=datetime(2025, 1, 1, tzinfo=timezone.utc))
        with pytest.raises(TypeError):
            ReportContext(since="2025-03-01")

    def test_row_cap(self, now: datetime) -> None:
        settings = BackendSettings(url="https://x", api_key="k", default_max_rows=500)
        assert ReportContext.last_days(7, now=now).row_cap(settings) == 500
        assert ReportContext.last_days(7, max_rows=50, now=now).row_cap(settings) == 50
