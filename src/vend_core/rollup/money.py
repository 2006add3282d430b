"""Monetary normalization: minor units in, decimals only at presentation.

All amounts inside the engine are ``int`` minor units (cents). This module
provides:

- Minor-unit coercion: ``to_minor_units`` (lenient) and the strict readers
  used while measuring rows (present-but-broken values mark a partial row)
- Row measures: quantity, gross, cost, fee, duration and distance of one
  raw row, with column names resolved once per report from a sample row
- Fee simulation: processor fee rules (basis points + fixed cents)
- The dollars-vs-cents heuristic used by imported statement amounts
- Presentation conversion: ``to_decimal`` and ``format_money``

Examples:
    >>> to_minor_units("175")
    175
    >>> parse_amount("1,234.50")
    123450
    >>> parse_amount("12")
    12
    >>> format_money(123450)
    '$1,234.50'
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, NamedTuple

from vend_core.exceptions import PartialRowError
from vend_core.rollup.keys import pick_column
from vend_core.utils import millis_between

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal(100)
BPS_DIVISOR = Decimal(10_000)

QUANTITY_FIELDS = ("qty", "quantity", "quantity_sold", "units")
UNIT_PRICE_FIELDS = ("unit_price_cents", "price_cents")
UNIT_COST_FIELDS = ("unit_cost_cents", "cost_cents")
FEE_FIELDS = ("fee_cents", "fees_cents")
DISTANCE_FIELDS = ("miles", "distance_miles")
DURATION_FIELDS = ("duration_ms", "duration_millis")

# Strip currency symbols and thousands separators, keep sign, digits, dot, parens
_AMOUNT_STRIP_RE = re.compile(r"[$,\s]")


def _round_half_even(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_HALF_EVEN))


def is_blank(value: Any) -> bool:
    """True for None and empty/whitespace strings (an absent value)."""
    return value is None or (isinstance(value, str) and not value.strip())


def parse_decimal(value: Any) -> Decimal | None:
    """Parse a number into a finite Decimal, or None if impossible.

    Booleans, NaN, infinities and unparseable text all return None.

    Examples:
        >>> parse_decimal("$1,250.75")
        Decimal('1250.75')
        >>> parse_decimal(float("nan")) is None
        True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        return Decimal(value)
    elif isinstance(value, float):
        d = Decimal(repr(value)) if value == value else Decimal("NaN")
    else:
        s = _AMOUNT_STRIP_RE.sub("", str(value))
        if not s:
            return None
        neg = False
        if s.startswith("(") and s.endswith(")"):
            neg, s = True, s[1:-1]
        try:
            d = Decimal(s)
        except InvalidOperation:
            return None
        if neg:
            d = -d
    if not d.is_finite():
        return None
    return d


def to_minor_units(value: Any) -> int:
    """Coerce a minor-unit amount to int; missing or non-finite input is 0.

    Integral values are kept exactly; fractional minor units round half to even.

    Examples:
        >>> to_minor_units(175)
        175
        >>> to_minor_units(None)
        0
        >>> to_minor_units(float("inf"))
        0
        >>> to_minor_units(2.5)
        2
    """
    d = parse_decimal(value)
    if d is None:
        return 0
    return _round_half_even(d)


def _strict_int(row: Mapping[str, Any], column: str | None, what: str) -> int:
    if column is None:
        return 0
    value = row.get(column)
    if is_blank(value):
        return 0
    d = parse_decimal(value)
    if d is None:
        raise PartialRowError(f"{what} column {column!r} has non-finite value {value!r}")
    return _round_half_even(d)


def _strict_decimal(row: Mapping[str, Any], column: str | None, what: str) -> Decimal:
    if column is None:
        return Decimal(0)
    value = row.get(column)
    if is_blank(value):
        return Decimal(0)
    d = parse_decimal(value)
    if d is None:
        raise PartialRowError(f"{what} column {column!r} has non-finite value {value!r}")
    return d


# ---------------------------------------------------------------------------
# Fee rules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeRule:
    """Effective processor fee: a percentage (basis points) plus a fixed fee per unit.

    Attributes:
        processor_id: Processor the rule belongs to.
        percent_bps: Percentage fee in basis points (290 = 2.90%).
        fixed_cents: Fixed fee per unit in minor units.
    """

    processor_id: str
    percent_bps: int = 0
    fixed_cents: int = 0

    @classmethod
    def from_processor_defaults(
        cls,
        processor_id: str,
        default_percent_fee: Any,
        default_fixed_fee: Any,
    ) -> FeeRule:
        """Build a rule from processor defaults stored as percent and dollars.

        Examples:
            >>> FeeRule.from_processor_defaults("p1", 2.9, 0.10)
            FeeRule(processor_id='p1', percent_bps=290, fixed_cents=10)
        """
        pct = parse_decimal(default_percent_fee) or Decimal(0)
        fixed = parse_decimal(default_fixed_fee) or Decimal(0)
        return cls(
            processor_id=str(processor_id),
            percent_bps=_round_half_even(pct * HUNDRED),
            fixed_cents=_round_half_even(fixed * HUNDRED),
        )


def calc_fee_cents(unit_price_cents: int, qty: int, rule: FeeRule | None) -> int:
    """Fee for one sale line under ``rule``; 0 without a rule.

    Examples:
        >>> calc_fee_cents(175, 2, FeeRule("p", percent_bps=290, fixed_cents=10))
        30
    """
    if rule is None:
        return 0
    pct_per_unit = _round_half_even(Decimal(unit_price_cents) * rule.percent_bps / BPS_DIVISOR)
    per_unit = pct_per_unit + rule.fixed_cents
    return max(0, qty * per_unit)


FeeFunction = Callable[[Mapping[str, Any], int, int], int]


# ---------------------------------------------------------------------------
# Row measures
# ---------------------------------------------------------------------------


class RowMeasures(NamedTuple):
    """Additive quantities of one row, all integers except distance."""

    quantity: int
    gross: int
    cost: int
    fee: int
    duration_millis: int
    distance: Decimal


@dataclass(frozen=True)
class MeasureSpec:
    """Candidate columns for each measure of a raw row.

    Gross is read from ``gross_fields`` when one resolves, otherwise it is
    ``quantity * unit price``; cost likewise. Fees come from a fee column
    or, when none resolves, from ``fee_rule``. Duration is read from a
    duration column (scaled to milliseconds by ``duration_scale``) or, for
    rows where it is blank, computed from start/end timestamp columns.
    """

    quantity_fields: tuple[str, ...] = QUANTITY_FIELDS
    unit_price_fields: tuple[str, ...] = UNIT_PRICE_FIELDS
    unit_cost_fields: tuple[str, ...] = UNIT_COST_FIELDS
    fee_fields: tuple[str, ...] = FEE_FIELDS
    gross_fields: tuple[str, ...] = ()
    cost_fields: tuple[str, ...] = ()
    duration_fields: tuple[str, ...] = DURATION_FIELDS
    start_fields: tuple[str, ...] = ()
    end_fields: tuple[str, ...] = ()
    distance_fields: tuple[str, ...] = DISTANCE_FIELDS
    duration_scale: int = 1
    fee_rule: FeeFunction | None = field(default=None, compare=False)

    def bind(self, sample: Mapping[str, Any] | None) -> BoundMeasures:
        """Resolve every candidate list once against ``sample``."""
        bound = BoundMeasures(
            quantity=pick_column(sample, self.quantity_fields),
            unit_price=pick_column(sample, self.unit_price_fields),
            unit_cost=pick_column(sample, self.unit_cost_fields),
            fee=pick_column(sample, self.fee_fields),
            gross=pick_column(sample, self.gross_fields),
            cost=pick_column(sample, self.cost_fields),
            duration=pick_column(sample, self.duration_fields),
            start=pick_column(sample, self.start_fields),
            end=pick_column(sample, self.end_fields),
            distance=pick_column(sample, self.distance_fields),
            duration_scale=self.duration_scale,
            fee_rule=self.fee_rule,
        )
        logger.debug("Resolved measure columns: %s", bound.columns)
        return bound


@dataclass(frozen=True)
class BoundMeasures:
    """Measure columns resolved for one report invocation."""

    quantity: str | None = None
    unit_price: str | None = None
    unit_cost: str | None = None
    fee: str | None = None
    gross: str | None = None
    cost: str | None = None
    duration: str | None = None
    start: str | None = None
    end: str | None = None
    distance: str | None = None
    duration_scale: int = 1
    fee_rule: FeeFunction | None = field(default=None, compare=False)

    @property
    def columns(self) -> dict[str, str | None]:
        return {
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "unit_cost": self.unit_cost,
            "fee": self.fee,
            "gross": self.gross,
            "cost": self.cost,
            "duration": self.duration,
            "start": self.start,
            "end": self.end,
            "distance": self.distance,
        }

    def measure(self, row: Mapping[str, Any]) -> RowMeasures:
        """Measure one row.

        Raises:
            PartialRowError: If a present value is non-finite, or the
                quantity or distance is negative.
        """
        qty = _strict_int(row, self.quantity, "quantity")
        if qty < 0:
            raise PartialRowError(f"negative quantity {qty}")
        unit_price = _strict_int(row, self.unit_price, "unit price")
        unit_cost = _strict_int(row, self.unit_cost, "unit cost")

        if self.gross is not None:
            gross = _strict_int(row, self.gross, "gross")
        else:
            gross = qty * unit_price
        if self.cost is not None:
            cost = _strict_int(row, self.cost, "cost")
        else:
            cost = qty * unit_cost

        if self.fee is not None:
            fee = _strict_int(row, self.fee, "fee")
        elif self.fee_rule is not None:
            fee = self.fee_rule(row, unit_price, qty)
        else:
            fee = 0

        if self.duration is not None and not is_blank(row.get(self.duration)):
            duration = _round_half_even(
                _strict_decimal(row, self.duration, "duration") * self.duration_scale
            )
        elif self.start is not None and self.end is not None:
            duration = millis_between(row.get(self.start), row.get(self.end))
        else:
            duration = 0

        distance = _strict_decimal(row, self.distance, "distance")
        if distance < 0:
            raise PartialRowError(f"negative distance {distance}")

        return RowMeasures(qty, gross, cost, fee, max(0, duration), distance)


def gross_of(row: Mapping[str, Any], spec: MeasureSpec | None = None) -> int:
    """``quantity * unit price`` of a single row (lenient)."""
    bound = (spec or MeasureSpec()).bind(row)
    return to_minor_units(row.get(bound.quantity) if bound.quantity else 0) * to_minor_units(
        row.get(bound.unit_price) if bound.unit_price else 0
    )


def fee_of(
    row: Mapping[str, Any],
    rule: FeeRule | None = None,
    spec: MeasureSpec | None = None,
) -> int:
    """Fee of a single row: its fee column if present, else the simulated fee."""
    bound = (spec or MeasureSpec()).bind(row)
    if bound.fee is not None:
        return to_minor_units(row.get(bound.fee))
    qty = to_minor_units(row.get(bound.quantity)) if bound.quantity else 0
    price = to_minor_units(row.get(bound.unit_price)) if bound.unit_price else 0
    return calc_fee_cents(price, qty, rule)


# ---------------------------------------------------------------------------
# Dollars vs cents
# ---------------------------------------------------------------------------


class AmountReading(NamedTuple):
    """Result of reading an amount of unknown unit.

    Attributes:
        minor_units: The amount in cents.
        unit: "dollars", "cents", "none" (blank) or "invalid" (unparseable).
        ambiguous: True when the text carried no decimal point, so dollars
            and cents cannot be told apart (e.g. "100").
    """

    minor_units: int
    unit: str
    ambiguous: bool


def read_amount(value: Any) -> AmountReading:
    """Read an amount using the presence-of-decimal-point heuristic.

    Text containing "." is dollars; text without one is cents. Numbers
    below 100 with a fractional part are dollars, other numbers are cents.
    Whole-number readings are flagged ambiguous instead of being silently
    trusted.

    Examples:
        >>> read_amount("1,234.50")
        AmountReading(minor_units=123450, unit='dollars', ambiguous=False)
        >>> read_amount("12")
        AmountReading(minor_units=12, unit='cents', ambiguous=True)
        >>> read_amount("")
        AmountReading(minor_units=0, unit='none', ambiguous=False)
    """
    if is_blank(value):
        return AmountReading(0, "none", False)

    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        d = parse_decimal(value)
        if d is None:
            return AmountReading(0, "invalid", False)
        fractional = d != d.to_integral_value()
        if fractional and abs(d) < HUNDRED:
            return AmountReading(_round_half_even(d * HUNDRED), "dollars", False)
        return AmountReading(_round_half_even(d), "cents", d != 0)

    text = _AMOUNT_STRIP_RE.sub("", str(value))
    d = parse_decimal(text)
    if d is None:
        return AmountReading(0, "invalid", False)
    if "." in text:
        return AmountReading(_round_half_even(d * HUNDRED), "dollars", False)
    return AmountReading(_round_half_even(d), "cents", d != 0)


def parse_amount(value: Any) -> int:
    """Minor units of ``value`` under the dollars-vs-cents heuristic."""
    return read_amount(value).minor_units


def dollars_to_minor_units(value: Any) -> int:
    """Convert a dollar amount (e.g. a numeric finance column) to cents."""
    d = parse_decimal(value)
    if d is None:
        return 0
    return _round_half_even(d * HUNDRED)


# ---------------------------------------------------------------------------
# Presentation boundary
# ---------------------------------------------------------------------------


def to_decimal(minor_units: int | float) -> Decimal:
    """Convert minor units to a 2-place currency Decimal (round half to even).

    Float inputs (derived rates) that are not finite convert to 0.

    Examples:
        >>> to_decimal(350)
        Decimal('3.50')
        >>> to_decimal(12.345)
        Decimal('0.12')
    """
    d = parse_decimal(minor_units)
    if d is None:
        d = Decimal(0)
    return (d / HUNDRED).quantize(CENT, rounding=ROUND_HALF_EVEN)


def format_money(minor_units: int | float) -> str:
    """Format minor units as a dollar string.

    Examples:
        >>> format_money(-300)
        '-$3.00'
    """
    return format_dollars(to_decimal(minor_units))


def format_dollars(amount: Decimal) -> str:
    """Format a Decimal dollar amount ('$1,234.50', '-$3.00')."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_optional(value: Any, fmt: Callable[[Any], str] = str) -> str:
    """Format ``value`` or render a dash when it is None ("never")."""
    if value is None:
        return "—"
    return fmt(value)
