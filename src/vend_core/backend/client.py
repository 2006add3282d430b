"""HTTP client for the hosted relational store.

The dashboard talks to a PostgREST-style endpoint (``{url}/rest/v1/<table>``).
This module wraps that surface in a small synchronous client:

- ``select``: table-scoped ``select(columns).filter(...).order(...).limit(n)``
- ``insert``: one JSON batch per call, never retried
- ``probe``: does the table (and optionally a column) exist?

Errors are classified so callers can tell "table/column not provisioned"
apart from any other failure.

Environment (see ``BackendSettings.from_env``):
  VEND_BACKEND_URL, VEND_BACKEND_KEY, VEND_TIMEOUT=60, VEND_RETRIES=3

"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from vend_core.config import DEFAULT_RETRIES, DEFAULT_TIMEOUT, BackendSettings
from vend_core.exceptions import (
    BackendError,
    MissingColumnError,
    MissingTableError,
)
from vend_core.utils import to_iso

logger = logging.getLogger(__name__)

# PostgreSQL / PostgREST codes that mean "not provisioned"
MISSING_TABLE_CODES = frozenset({"42P01", "PGRST205", "PGRST106"})
MISSING_COLUMN_CODES = frozenset({"42703", "PGRST204"})

FILTER_OPERATORS = frozenset({"eq", "neq", "gt", "gte", "lt", "lte", "in", "is", "like", "ilike"})

Filter = tuple[str, str, Any]


def make_session(
    timeout: float = DEFAULT_TIMEOUT, retries: int = DEFAULT_RETRIES
) -> requests.Session:
    """Create a requests Session with retry logic and default timeout.

    Configures the session with:
    - Retry adapter for HTTP/HTTPS with exponential backoff
    - Retries on 429, 500, 502, 503, 504 status codes for reads only;
      inserts are never retried automatically
    - Default timeout for all requests

    Args:
        timeout: Default timeout in seconds for all requests.
        retries: Number of retry attempts.

    Returns:
        Configured requests.Session object.

    """
    s = requests.Session()
    s.headers.update({"User-Agent": "vend-core/0.1"})
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=0.8,  # 0.8, 1.6, 3.2, ...
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset({"GET", "HEAD", "OPTIONS"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    # Default timeouts via a wrapper
    orig_request = s.request

    def timed_request(method: str, url: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", timeout)
        return orig_request(method, url, **kwargs)

    s.request = timed_request  # type: ignore[method-assign,assignment]
    return s


def _format_value(value: Any) -> str:
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_in_list(values: Iterable[Any]) -> str:
    parts = []
    for v in values:
        s = _format_value(v)
        if any(ch in s for ch in ',()"'):
            s = '"' + s.replace('"', '\\"') + '"'
        parts.append(s)
    return "(" + ",".join(parts) + ")"


def build_params(
    columns: str = "*",
    filters: Sequence[Filter] = (),
    order: str | None = None,
    descending: bool = False,
    limit: int | None = None,
    offset: int | None = None,
    tiebreaker: str | None = None,
) -> list[tuple[str, str]]:
    """Translate a query description into PostgREST query parameters.

    Filters are ``(op, column, value)`` triples; ``in`` takes an iterable.
    ``tiebreaker`` is a unique column appended ascending to the ordering so
    limit/offset pages never overlap.

    Examples:
        >>> build_params("id,qty", [("gte", "occurred_at", "2025-01-01")], limit=5)
        [('select', 'id,qty'), ('occurred_at', 'gte.2025-01-01'), ('limit', '5')]

    """
    params: list[tuple[str, str]] = [("select", columns)]
    for op, column, value in filters:
        if op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator {op!r}")
        if op == "in":
            params.append((column, f"in.{_format_in_list(value)}"))
        else:
            params.append((column, f"{op}.{_format_value(value)}"))
    terms = []
    if order:
        terms.append(f"{order}.{'desc' if descending else 'asc'}")
    if tiebreaker and tiebreaker != order:
        terms.append(f"{tiebreaker}.asc")
    if terms:
        params.append(("order", ",".join(terms)))
    if limit is not None:
        params.append(("limit", str(int(limit))))
    if offset:
        params.append(("offset", str(int(offset))))
    return params


def classify_error(response: requests.Response, table: str) -> BackendError:
    """Map an unsuccessful response to the matching exception instance."""
    code: str | None = None
    message = response.text[:400] if response.text else ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping):
        code = body.get("code")
        message = str(body.get("message") or message)

    text = f"{table}: HTTP {response.status_code} {code or ''} {message}".strip()
    if code in MISSING_TABLE_CODES or (response.status_code == 404 and code is None):
        return MissingTableError(text, status_code=response.status_code, code=code, table=table)
    if code in MISSING_COLUMN_CODES:
        return MissingColumnError(text, status_code=response.status_code, code=code, table=table)
    return BackendError(text, status_code=response.status_code, code=code, table=table)


class BackendClient:
    """Table-scoped client for the hosted store.

    Example:
        >>> from vend_core.config import BackendSettings
        >>> client = BackendClient(BackendSettings.from_env())
        >>> rows = client.select("sales", "machine_id,qty", [("gte", "occurred_at", "2025-01-01")])

    """

    def __init__(
        self,
        settings: BackendSettings,
        session: requests.Session | None = None,
    ) -> None:
        self.settings = settings
        self.session = session or make_session(settings.timeout, settings.retries)

    @property
    def page_size(self) -> int:
        return self.settings.page_size

    def _headers(self, write: bool = False) -> dict[str, str]:
        headers = {
            "apikey": self.settings.api_key,
            "Authorization": f"Bearer {self.settings.api_key}",
            "Accept": "application/json",
        }
        if write:
            headers["Content-Type"] = "application/json"
            headers["Content-Profile"] = self.settings.schema
            headers["Prefer"] = "return=minimal"
        else:
            headers["Accept-Profile"] = self.settings.schema
        return headers

    def _url(self, table: str) -> str:
        return f"{self.settings.rest_url}/{table}"

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        *,
        order: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int | None = None,
        tiebreaker: str | None = None,
    ) -> list[dict[str, Any]]:
        """Run a select and return the rows.

        Raises:
            MissingTableError: If the table does not exist.
            MissingColumnError: If a selected/filtered/ordered column does not exist.
            BackendError: On any other failure.

        """
        params = build_params(
            columns, filters, order, descending, limit, offset, tiebreaker=tiebreaker
        )
        logger.debug("GET %s %s", table, params)
        try:
            resp = self.session.get(self._url(table), params=params, headers=self._headers())
        except requests.RequestException as e:
            raise BackendError(f"{table}: request failed: {e}", table=table) from e

        if not (200 <= resp.status_code < 300):
            raise classify_error(resp, table)
        try:
            data = resp.json()
        except ValueError as e:
            raise BackendError(
                f"{table}: response is not JSON", status_code=resp.status_code, table=table
            ) from e
        if not isinstance(data, list):
            raise BackendError(
                f"{table}: expected a JSON array, got {type(data).__name__}",
                status_code=resp.status_code,
                table=table,
            )
        return data

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Insert one batch of rows. Not retried on failure.

        Raises:
            MissingTableError: If the table does not exist.
            BackendError: On any other failure.

        """
        if not rows:
            return
        payload = [{k: _json_value(v) for k, v in row.items()} for row in rows]
        logger.debug("POST %s (%d rows)", table, len(payload))
        try:
            resp = self.session.post(self._url(table), json=payload, headers=self._headers(True))
        except requests.RequestException as e:
            raise BackendError(f"{table}: request failed: {e}", table=table) from e
        if not (200 <= resp.status_code < 300):
            raise classify_error(resp, table)

    def probe(self, table: str, column: str = "*") -> bool:
        """True if ``select(column) limit 1`` succeeds on ``table``.

        Only "not provisioned" errors return False; anything else propagates.
        """
        try:
            self.select(table, column, limit=1)
        except (MissingTableError, MissingColumnError) as e:
            logger.debug("Probe failed for %s.%s: %s", table, column, e)
            return False
        return True


def _json_value(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return _format_value(value)
    return value
