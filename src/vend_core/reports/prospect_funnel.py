"""Prospect funnel: stage counts, win rate, cycle times and stalled leads.

The prospects table has no fixed schema for pipeline state, so the stage,
created, won and lost columns are detected once from a sample row. A
populated won/lost timestamp overrides the stage text.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from vend_core.reports.common import ReportResult, frame_from, load_table
from vend_core.rollup.derive import percent, safe_div, win_rate
from vend_core.rollup.keys import PROSPECT_NAME_KEYS, pick_column
from vend_core.rollup.money import MeasureSpec
from vend_core.rollup.present import sort_rows
from vend_core.rollup.reduce import reduce_records
from vend_core.utils import days_between

if TYPE_CHECKING:
    import pandas as pd

    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext

logger = logging.getLogger(__name__)

STAGE_KEYS = ("stage", "status", "pipeline_stage", "state")
CREATED_KEYS = ("created_at", "createdAt", "inserted_at", "created")
WON_KEYS = ("converted_at", "won_at", "signed_at", "installed_at")
LOST_KEYS = ("lost_at", "closed_lost_at", "disqualified_at")

PIPELINE_ORDER = ("New", "Contacted", "Qualified", "Proposal", "Won", "Lost")
CLOSED_STAGES = frozenset({"Won", "Lost"})
STALLED_AFTER_DAYS = 14
STALLED_LIMIT = 10

_STAGE_ALIASES = {
    "Won": ("won", "customer", "signed", "installed", "active"),
    "Lost": ("lost", "closed_lost", "dead", "disqualified", "no_fit"),
    "New": ("new", "uncontacted", "created"),
    "Contacted": ("contacted", "attempted", "responded"),
    "Qualified": ("qualified", "meeting", "demo", "visit"),
    "Proposal": ("proposal", "quote", "negotiation", "contract"),
}
STAGE_ALIASES = {alias: stage for stage, aliases in _STAGE_ALIASES.items() for alias in aliases}

# Counting only: prospects carry no money or duration
COUNT_ONLY = MeasureSpec(
    quantity_fields=(),
    unit_price_fields=(),
    unit_cost_fields=(),
    fee_fields=(),
    duration_fields=(),
    distance_fields=(),
)


def normalize_stage(value: Any, won: bool = False, lost: bool = False) -> str:
    """Map free-text stage values onto the pipeline stages.

    Examples:
        >>> normalize_stage("meeting"), normalize_stage(""), normalize_stage("nurture")
        ('Qualified', 'New', 'Nurture')
        >>> normalize_stage("contacted", won=True)
        'Won'
    """
    if won:
        return "Won"
    if lost:
        return "Lost"
    s = str(value if value is not None else "").strip().lower()
    if not s:
        return "New"
    if s in STAGE_ALIASES:
        return STAGE_ALIASES[s]
    return s[0].upper() + s[1:]


class StageKeyExtractor:
    """Group prospects by normalized stage; every prospect has a stage."""

    dimension = "stage"

    def __init__(self) -> None:
        self.stage_col: str | None = None
        self.won_col: str | None = None
        self.lost_col: str | None = None

    def bind(self, sample: Mapping[str, Any] | None) -> StageKeyExtractor:
        self.stage_col = pick_column(sample, STAGE_KEYS)
        self.won_col = pick_column(sample, WON_KEYS)
        self.lost_col = pick_column(sample, LOST_KEYS)
        logger.debug(
            "Prospect columns: stage=%s won=%s lost=%s", self.stage_col, self.won_col, self.lost_col
        )
        return self

    def extract(self, row: Mapping[str, Any]) -> str:
        return normalize_stage(
            row.get(self.stage_col) if self.stage_col else None,
            won=bool(self.won_col and row.get(self.won_col)),
            lost=bool(self.lost_col and row.get(self.lost_col)),
        )


@dataclass(frozen=True)
class StageCount:
    stage: str
    count: int
    pct: float

    @property
    def key(self) -> str:
        return self.stage


@dataclass(frozen=True)
class StalledProspect:
    id: str
    name: str
    stage: str
    created_at: str | None
    age_days: float


def _stage_rank(row: StageCount) -> tuple[int, str]:
    if row.stage in PIPELINE_ORDER:
        return (PIPELINE_ORDER.index(row.stage), "")
    return (len(PIPELINE_ORDER), row.stage)


@dataclass
class ProspectFunnelReport(ReportResult):
    total: int = 0
    won: int = 0
    lost: int = 0
    win_rate_pct: float = 0.0
    avg_days_to_win: float | None = None
    avg_open_age_days: float | None = None
    stalled: list[StalledProspect] = field(default_factory=list)

    def stalled_frame(self) -> pd.DataFrame:
        return frame_from(self.stalled)


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return safe_div(sum(values), len(values))


def compute_prospect_funnel(
    prospects: Iterable[Mapping[str, Any]],
    *,
    now: datetime | None = None,
) -> ProspectFunnelReport:
    """Funnel metrics over all prospects.

    Args:
        prospects: Prospect rows in any supported schema.
        now: Reference time for open ages (defaults to now, UTC).
    """
    prospects = list(prospects)
    now = now or datetime.now(timezone.utc)
    stages = StageKeyExtractor()
    result = reduce_records(prospects, stages, COUNT_ONLY)

    total = result.total_rows
    counts = sorted(
        (StageCount(k, b.record_count, percent(b.record_count, total)) for k, b in result.buckets.items()),
        key=_stage_rank,
    )
    won = result["Won"].record_count if "Won" in result else 0
    lost = result["Lost"].record_count if "Lost" in result else 0

    sample = prospects[0] if prospects else None
    created_col = pick_column(sample, CREATED_KEYS)
    name_col = pick_column(sample, PROSPECT_NAME_KEYS)

    to_win: list[float] = []
    open_ages: list[float] = []
    stalled: list[StalledProspect] = []
    for p in prospects:
        stage = stages.extract(p)
        created = p.get(created_col) if created_col else None
        if stage == "Won" and stages.won_col:
            days = days_between(created, p.get(stages.won_col))
            if days is not None:
                to_win.append(days)
        if stage in CLOSED_STAGES:
            continue
        age = days_between(created, now)
        if age is None:
            continue
        open_ages.append(age)
        if age > STALLED_AFTER_DAYS:
            pid = str(p.get("id") or "")
            stalled.append(
                StalledProspect(
                    id=pid,
                    name=str((p.get(name_col) if name_col else None) or pid or "(prospect)"),
                    stage=stage,
                    created_at=created,
                    age_days=age,
                )
            )

    stalled = sort_rows(stalled, "age_days", key=lambda s: s.id)[:STALLED_LIMIT]
    logger.info("Prospect funnel: %d prospects, %d won, %d lost", total, won, lost)
    return ProspectFunnelReport(
        rows=counts,
        total=total,
        won=won,
        lost=lost,
        win_rate_pct=win_rate(won, lost) * 100,
        avg_days_to_win=_mean(to_win),
        avg_open_age_days=_mean(open_ages),
        stalled=stalled,
    )


def load_prospect_funnel(client: BackendClient, ctx: ReportContext) -> ProspectFunnelReport:
    """Read prospects (newest first, not windowed) and compute the funnel."""
    absent: list = []
    prospects = load_table(
        client,
        "prospects",
        ctx,
        windowed=False,
        time_column="created_at",
        absent_tables=absent,
    )
    report = compute_prospect_funnel(prospects, now=ctx.window_end)
    report.absent = absent
    report.demo_mode = ctx.demo_mode
    return report
