"""Per-machine processor fee rules.

Each machine is mapped to one payment processor; the processor's default
percentage and fixed fee form the machine's effective rule. Reports that
simulate fees hand ``FeeRuleCache.fee_for`` to a ``MeasureSpec``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from vend_core.reports.common import load_table
from vend_core.rollup.money import FeeRule, calc_fee_cents

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient
    from vend_core.config import ReportContext
    from vend_core.rollup.fetch import AbsentTable

logger = logging.getLogger(__name__)

UNMAPPED = "__unmapped__"
UNMAPPED_LABEL = "(Unmapped machines)"


@dataclass
class FeeRuleCache:
    """Machine -> processor mapping plus each processor's fee rule."""

    processor_by_machine: dict[str, str] = field(default_factory=dict)
    rules_by_processor: dict[str, FeeRule] = field(default_factory=dict)
    processor_names: dict[str, str] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        mappings: Iterable[Mapping[str, Any]],
        processors: Iterable[Mapping[str, Any]],
    ) -> FeeRuleCache:
        """Build the cache from mapping and processor rows.

        Examples:
            >>> cache = FeeRuleCache.build(
            ...     [{"machine_id": "M1", "processor_id": "P1"}],
            ...     [{"id": "P1", "name": "Nayax", "default_percent_fee": 5, "default_fixed_fee": 0}],
            ... )
            >>> cache.fee_for({"machine_id": "M1"}, 200, 1)
            10
        """
        cache = cls()
        for m in mappings:
            if m.get("machine_id") is None or m.get("processor_id") is None:
                continue
            cache.processor_by_machine[str(m["machine_id"])] = str(m["processor_id"])
        for p in processors:
            if p.get("id") is None:
                continue
            pid = str(p["id"])
            cache.processor_names[pid] = str(p.get("name") or pid)
            cache.rules_by_processor[pid] = FeeRule.from_processor_defaults(
                pid, p.get("default_percent_fee"), p.get("default_fixed_fee")
            )
        logger.debug(
            "Fee rules: %d machines mapped, %d processors",
            len(cache.processor_by_machine),
            len(cache.rules_by_processor),
        )
        return cache

    def rule_for_machine(self, machine_id: Any) -> FeeRule | None:
        if machine_id is None:
            return None
        pid = self.processor_by_machine.get(str(machine_id))
        return self.rules_by_processor.get(pid) if pid else None

    def fee_for(self, row: Mapping[str, Any], unit_price_cents: int, qty: int) -> int:
        """Simulated fee of a sale row (``FeeFunction`` signature)."""
        return calc_fee_cents(unit_price_cents, qty, self.rule_for_machine(row.get("machine_id")))

    def label(self, processor_id: str) -> str:
        if processor_id == UNMAPPED:
            return UNMAPPED_LABEL
        return self.processor_names.get(processor_id, processor_id)

    def name_index(self) -> dict[str, str]:
        """Processor name (as typed and lowercased) -> processor id."""
        index: dict[str, str] = {}
        for pid, name in self.processor_names.items():
            index[name] = pid
            index[name.lower()] = pid
        return index


def load_fee_rules(
    client: BackendClient,
    ctx: ReportContext,
    absent_tables: list[AbsentTable] | None = None,
) -> FeeRuleCache:
    mappings = load_table(
        client,
        "machine_processor_mappings",
        ctx,
        windowed=False,
        time_column=None,
        absent_tables=absent_tables,
    )
    processors = load_table(
        client,
        "payment_processors",
        ctx,
        windowed=False,
        time_column=None,
        absent_tables=absent_tables,
    )
    return FeeRuleCache.build(mappings, processors)
