"""Tests for group-key resolution."""

import pytest

from vend_core.rollup.keys import (
    MACHINE_KEYS,
    PROSPECT_NAME_KEYS,
    ROUTE_KEYS,
    CompositeKeyExtractor,
    DayKeyExtractor,
    KeyExtractor,
    MappedKeyExtractor,
    MonthKeyExtractor,
    pick_column,
)


def test_pick_column_uses_field_presence_not_value() -> None:
    """A null value still binds the column."""
    assert pick_column({"route_name": None, "name": "North"}, ROUTE_KEYS) == "route_name"


def test_pick_column_follows_candidate_order() -> None:
    sample = {"company": "Acme", "business_name": "Acme Vending"}
    assert pick_column(sample, PROSPECT_NAME_KEYS) == "business_name"


def test_pick_column_empty_sample() -> None:
    assert pick_column(None, ROUTE_KEYS) is None
    assert pick_column({}, ROUTE_KEYS) is None


class TestKeyExtractor:
    def test_extract_before_bind_raises(self) -> None:
        with pytest.raises(RuntimeError):
            KeyExtractor(MACHINE_KEYS, "machine").extract({"machine_id": "M1"})

    def test_empty_candidates_rejected(self) -> None:
        with pytest.raises(ValueError):
            KeyExtractor((), "machine")

    def test_binds_once_from_sample(self) -> None:
        """The first row decides the column for every later row."""
        ex = KeyExtractor(ROUTE_KEYS, "route").bind({"name": "North"})
        assert ex.column == "name"
        assert ex.extract({"route_name": "South", "name": "East"}) == "East"

    def test_blank_and_missing_values_have_no_key(self) -> None:
        ex = KeyExtractor(MACHINE_KEYS, "machine").bind({"machine_id": "M1"})
        assert ex.extract({"machine_id": "  "}) is None
        assert ex.extract({"machine_id": None}) is None
        assert ex.extract({}) is None
        assert ex.extract({"machine_id": " M2 "}) == "M2"

    def test_failed_resolution_still_binds(self) -> None:
        ex = KeyExtractor(MACHINE_KEYS, "machine").bind({"id": 1})
        assert ex.bound
        assert ex.column is None
        assert ex.extract({"machine_id": "M1"}) is None

    def test_non_string_keys_are_stringified(self) -> None:
        ex = KeyExtractor(MACHINE_KEYS, "machine").bind({"machine_id": 7})
        assert ex.extract({"machine_id": 7}) == "7"


class TestMappedKeyExtractor:
    def test_maps_through_lookup(self) -> None:
        ex = MappedKeyExtractor(MACHINE_KEYS, {"M1": "L1"}, dimension="location")
        ex.bind({"machine_id": "M1"})
        assert ex.extract({"machine_id": "M1"}) == "L1"
        assert ex.extract({"machine_id": "M9"}) is None

    def test_default_for_unmapped(self) -> None:
        ex = MappedKeyExtractor(MACHINE_KEYS, {}, default="__unmapped__").bind({"machine_id": "M1"})
        assert ex.extract({"machine_id": "M1"}) == "__unmapped__"

    def test_passthrough_keeps_raw_key(self) -> None:
        ex = MappedKeyExtractor(("processor",), {"nayax": "P1"}, passthrough=True)
        ex.bind({"processor": "nayax"})
        assert ex.extract({"processor": "nayax"}) == "P1"
        assert ex.extract({"processor": "P2"}) == "P2"


class TestDayAndCompositeKeys:
    def test_day_key_from_timestamp(self) -> None:
        ex = DayKeyExtractor().bind({"occurred_at": "2025-03-04T23:10:00-05:00"})
        assert ex.extract({"occurred_at": "2025-03-04T23:10:00-05:00"}) == "2025-03-04"
        assert ex.extract({"occurred_at": "garbage"}) is None

    def test_month_key_from_date(self) -> None:
        ex = MonthKeyExtractor(("occurred_on",)).bind({"occurred_on": "2025-03-04"})
        assert ex.dimension == "month"
        assert ex.extract({"occurred_on": "2025-03-04"}) == "2025-03"
        assert ex.extract({"occurred_on": None}) is None
        with pytest.raises(RuntimeError):
            MonthKeyExtractor().extract({"occurred_at": "2025-03-04"})

    def test_composite_joins_parts(self) -> None:
        ex = CompositeKeyExtractor(KeyExtractor(MACHINE_KEYS, "machine"), DayKeyExtractor())
        row = {"machine_id": "M1", "occurred_at": "2025-03-04T10:00:00Z"}
        ex.bind(row)
        assert ex.bound
        assert ex.dimension == "machine|day"
        assert ex.extract(row) == "M1|2025-03-04"

    def test_composite_missing_part_has_no_key(self) -> None:
        ex = CompositeKeyExtractor(KeyExtractor(MACHINE_KEYS, "machine"), DayKeyExtractor())
        ex.bind({"machine_id": "M1", "occurred_at": None})
        assert ex.extract({"machine_id": "M1", "occurred_at": None}) is None
