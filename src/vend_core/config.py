"""Configuration for vend_core.

This module provides the backend connection settings and the explicit
per-report context (time window, location scope, demo mode) that every
report receives instead of reading global state.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from vend_core.exceptions import ConfigError

DEFAULT_TIMEOUT = 60.0
DEFAULT_RETRIES = 3
DEFAULT_PAGE_SIZE = 1000
DEFAULT_MAX_ROWS = 10_000


def _env_number(name: str, default: float, cast: type) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return cast(default)
    try:
        return cast(raw.strip())
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


@dataclass
class BackendSettings:
    """Connection settings for the hosted relational store.

    Attributes:
        url: Project base URL (e.g. https://xyz.supabase.co). The REST
            endpoint is ``{url}/rest/v1``.
        api_key: Service or anon key sent as ``apikey`` and bearer token.
        schema: Database schema exposed through the REST endpoint.
        timeout: Default timeout in seconds for every HTTP request.
        retries: Retry attempts for 429/5xx responses.
        page_size: Rows requested per HTTP page when streaming records.
        default_max_rows: Row cap used when a report does not set one.
    """

    url: str
    api_key: str
    schema: str = "public"
    timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRIES
    page_size: int = DEFAULT_PAGE_SIZE
    default_max_rows: int = DEFAULT_MAX_ROWS

    def __post_init__(self) -> None:
        self.url = self.url.rstrip("/")
        if self.page_size <= 0:
            raise ConfigError(f"page_size must be positive, got {self.page_size}")
        if self.default_max_rows <= 0:
            raise ConfigError(f"default_max_rows must be positive, got {self.default_max_rows}")

    @classmethod
    def from_env(cls) -> BackendSettings:
        """Build settings from environment variables.

        Reads VEND_BACKEND_URL, VEND_BACKEND_KEY (both required) and the
        optional VEND_BACKEND_SCHEMA, VEND_TIMEOUT, VEND_RETRIES,
        VEND_PAGE_SIZE and VEND_MAX_ROWS.

        Raises:
            ConfigError: If the URL or key is missing or a number is malformed.

        Examples:
            >>> os.environ["VEND_BACKEND_URL"] = "https://demo.example.co"
            >>> os.environ["VEND_BACKEND_KEY"] = "secret"
            >>> BackendSettings.from_env().rest_url
            'https://demo.example.co/rest/v1'
        """
        url = (os.environ.get("VEND_BACKEND_URL") or "").strip().strip('"').strip("'")
        key = (os.environ.get("VEND_BACKEND_KEY") or "").strip().strip('"').strip("'")
        if not url or not key:
            raise ConfigError("VEND_BACKEND_URL and VEND_BACKEND_KEY must be set")

        return cls(
            url=url,
            api_key=key,
            schema=os.environ.get("VEND_BACKEND_SCHEMA", "public"),
            timeout=_env_number("VEND_TIMEOUT", DEFAULT_TIMEOUT, float),
            retries=int(_env_number("VEND_RETRIES", DEFAULT_RETRIES, int)),
            page_size=int(_env_number("VEND_PAGE_SIZE", DEFAULT_PAGE_SIZE, int)),
            default_max_rows=int(_env_number("VEND_MAX_ROWS", DEFAULT_MAX_ROWS, int)),
        )

    @property
    def rest_url(self) -> str:
        """REST endpoint root."""
        return f"{self.url}/rest/v1"


@dataclass
class ReportContext:
    """Explicit context handed to each report at construction.

    Attributes:
        since: Start of the query window (timezone-aware, UTC if naive).
        until: Optional end of the window; None means "now".
        location_id: Optional location scope; reports that support it only
            consider machines at this location.
        demo_mode: True when the caller is rendering demo data; reports pass
            it through untouched so presentation can label output.
        max_rows: Row cap per source table, None to use backend default.
    """

    since: datetime
    until: datetime | None = None
    location_id: str | None = None
    demo_mode: bool = False
    max_rows: int | None = None
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not isinstance(self.since, datetime):
            raise TypeError(f"since must be a datetime, got {type(self.since).__name__}")
        if self.since.tzinfo is None:
            self.since = self.since.replace(tzinfo=timezone.utc)
        if self.until is not None and self.until.tzinfo is None:
            self.until = self.until.replace(tzinfo=timezone.utc)
        if self.until is not None and self.until < self.since:
            raise ValueError(f"until {self.until} is before since {self.since}")
        if self.max_rows is not None and self.max_rows <= 0:
            raise ValueError(f"max_rows must be positive, got {self.max_rows}")

    @classmethod
    def last_days(
        cls,
        days: int,
        *,
        location_id: str | None = None,
        demo_mode: bool = False,
        max_rows: int | None = None,
        now: datetime | None = None,
    ) -> ReportContext:
        """Build a trailing window of ``days`` days ending now.

        Examples:
            >>> ctx = ReportContext.last_days(14)
            >>> ctx.window_days
            14.0
        """
        if days <= 0:
            raise ValueError(f"days must be positive, got {days}")
        end = now or datetime.now(timezone.utc)
        if end.tzinfo is None:
            end = end.replace(tzinfo=timezone.utc)
        return cls(
            since=end - timedelta(days=days),
            location_id=location_id,
            demo_mode=demo_mode,
            max_rows=max_rows,
            now=end,
        )

    @property
    def window_end(self) -> datetime:
        return self.until or self.now

    @property
    def window_days(self) -> float:
        """Length of the window in days (used for per-day velocities)."""
        return (self.window_end - self.since).total_seconds() / 86_400

    def row_cap(self, settings: BackendSettings | None = None) -> int:
        if self.max_rows is not None:
            return self.max_rows
        if settings is not None:
            return settings.default_max_rows
        return DEFAULT_MAX_ROWS
