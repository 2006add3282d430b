"""Tests for minor-unit coercion, row measures and the dollars-vs-cents heuristic."""

from decimal import Decimal

import pytest

from vend_core.exceptions import PartialRowError
from vend_core.rollup.money import (
    FeeRule,
    MeasureSpec,
    calc_fee_cents,
    dollars_to_minor_units,
    fee_of,
    format_money,
    format_optional,
    gross_of,
    parse_amount,
    parse_decimal,
    read_amount,
    to_decimal,
    to_minor_units,
)
from vend_core.utils import MILLIS_PER_MINUTE


class TestParsing:
    def test_to_minor_units_is_lenient(self) -> None:
        assert to_minor_units("175") == 175
        assert to_minor_units(None) == 0
        assert to_minor_units("abc") == 0
        assert to_minor_units(float("nan")) == 0

    def test_half_even_rounding(self) -> None:
        assert to_minor_units(2.5) == 2
        assert to_minor_units(3.5) == 4
        assert to_decimal(12.5) == Decimal("0.12")

    def test_parse_decimal_accounting_negative(self) -> None:
        assert parse_decimal("(12.50)") == Decimal("-12.50")
        assert parse_decimal(True) is None

    def test_dollars_to_minor_units(self) -> None:
        assert dollars_to_minor_units("3,500.00") == 350000
        assert dollars_to_minor_units(None) == 0


class TestDollarsVsCents:
    def test_decimal_point_means_dollars(self) -> None:
        assert parse_amount("1,234.50") == 123450
        assert read_amount("$12.5").unit == "dollars"

    def test_whole_number_is_cents_and_ambiguous(self) -> None:
        reading = read_amount("12")
        assert reading.minor_units == 12
        assert reading.unit == "cents"
        assert reading.ambiguous

    def test_blank_and_invalid(self) -> None:
        assert read_amount("  ").unit == "none"
        assert read_amount("n/a").unit == "invalid"
        assert read_amount("n/a").minor_units == 0

    def test_numeric_input(self) -> None:
        assert read_amount(12.5).minor_units == 1250
        assert read_amount(1250).minor_units == 1250

    def test_zero_is_not_ambiguous(self) -> None:
        assert read_amount("0").ambiguous is False


class TestFees:
    def test_rule_from_processor_defaults(self) -> None:
        rule = FeeRule.from_processor_defaults("p1", "2.9", "0.10")
        assert rule == FeeRule("p1", percent_bps=290, fixed_cents=10)

    def test_fee_per_unit_times_quantity(self) -> None:
        rule = FeeRule("p", percent_bps=290, fixed_cents=10)
        # 175 * 2.9% = 5.075 -> 5, + 10 fixed = 15 per unit
        assert calc_fee_cents(175, 2, rule) == 30

    def test_no_rule_no_fee(self) -> None:
        assert calc_fee_cents(175, 2, None) == 0

    def test_fee_of_prefers_fee_column(self) -> None:
        rule = FeeRule("p", percent_bps=1000)
        assert fee_of({"qty": 1, "unit_price_cents": 200, "fee_cents": 7}, rule) == 7
        assert fee_of({"qty": 1, "unit_price_cents": 200}, rule) == 20


class TestMeasures:
    def test_sale_row_measures(self) -> None:
        row = {"qty": 2, "unit_price_cents": 175, "unit_cost_cents": 100}
        m = MeasureSpec().bind(row).measure(row)
        assert (m.quantity, m.gross, m.cost, m.fee) == (2, 350, 200, 0)
        assert gross_of(row) == 350

    def test_missing_measure_is_zero(self) -> None:
        bound = MeasureSpec().bind({"qty": 1, "unit_price_cents": 100})
        m = bound.measure({"qty": None, "unit_price_cents": 100})
        assert m.quantity == 0
        assert m.gross == 0

    def test_non_finite_value_is_partial(self) -> None:
        row = {"qty": 1, "unit_price_cents": float("inf")}
        with pytest.raises(PartialRowError):
            MeasureSpec().bind(row).measure(row)

    def test_negative_quantity_is_partial(self) -> None:
        row = {"qty": -1, "unit_price_cents": 100}
        with pytest.raises(PartialRowError):
            MeasureSpec().bind(row).measure(row)

    def test_negative_distance_is_partial(self) -> None:
        row = {"miles": "-3.2"}
        with pytest.raises(PartialRowError):
            MeasureSpec().bind(row).measure(row)

    def test_fee_rule_used_without_fee_column(self) -> None:
        spec = MeasureSpec(fee_rule=lambda row, price, qty: qty * 3)
        row = {"qty": 4, "unit_price_cents": 100}
        assert spec.bind(row).measure(row).fee == 12

    def test_duration_scale_and_timestamp_fallback(self) -> None:
        spec = MeasureSpec(
            duration_fields=("service_minutes",),
            duration_scale=MILLIS_PER_MINUTE,
            start_fields=("arrived_at",),
            end_fields=("departed_at",),
        )
        sample = {
            "service_minutes": 5,
            "arrived_at": "2025-03-04T10:00:00Z",
            "departed_at": "2025-03-04T10:12:00Z",
        }
        bound = spec.bind(sample)
        assert bound.measure(sample).duration_millis == 5 * MILLIS_PER_MINUTE
        blank = dict(sample, service_minutes=None)
        assert bound.measure(blank).duration_millis == 12 * MILLIS_PER_MINUTE

    def test_distance_is_exact_decimal(self) -> None:
        row = {"miles": "0.1"}
        bound = MeasureSpec().bind(row)
        total = sum((bound.measure(row).distance for _ in range(3)), Decimal(0))
        assert total == Decimal("0.3")


class TestPresentation:
    def test_to_decimal_two_places(self) -> None:
        assert to_decimal(350) == Decimal("3.50")
        assert to_decimal(float("inf")) == Decimal("0.00")

    def test_format_money(self) -> None:
        assert format_money(123450) == "$1,234.50"
        assert format_money(-300) == "-$3.00"

    def test_format_optional_dash(self) -> None:
        assert format_optional(None) == "—"
        assert format_optional(2.5, lambda v: f"{v:.1f}") == "2.5"
