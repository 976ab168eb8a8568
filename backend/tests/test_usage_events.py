"""Tests for usage event values and property coercion."""

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal
from types import MappingProxyType

import pytest

from metering.services.usage_events import (
    coerce_property,
    property_str,
    to_decimal,
)
from tests.conftest import make_event


class TestPropertyCoercion:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("eu", "eu"),
            (3, Decimal("3")),
            (0.5, Decimal("0.5")),
            (True, True),
            (Decimal("1.25"), Decimal("1.25")),
            ({"b": 1, "a": 2}, '{"a": 2, "b": 1}'),
            (None, None),
        ],
    )
    def test_coerce_property(self, raw, expected):
        assert coerce_property(raw) == expected

    def test_bool_is_not_a_number(self):
        assert coerce_property(False) is False
        assert to_decimal(True) is None

    @pytest.mark.parametrize(
        "value, expected",
        [(True, "true"), (False, "false"), (Decimal("3"), "3"), ("x", "x"), ("", "")],
    )
    def test_property_str(self, value, expected):
        assert property_str(value) == expected

    @pytest.mark.parametrize(
        "raw, expected",
        [("12.5", Decimal("12.5")), (7, Decimal("7")), ("abc", None), (None, None)],
    )
    def test_to_decimal(self, raw, expected):
        assert to_decimal(raw) == expected


class TestUsageEvent:
    def test_properties_are_read_only(self):
        event = make_event("tx-1", datetime(2024, 3, 5, tzinfo=UTC), properties={"region": "eu"})
        assert isinstance(event.properties, MappingProxyType)
        with pytest.raises(TypeError):
            event.properties["region"] = "us"  # type: ignore[index]

    def test_null_properties_are_dropped(self):
        event = make_event("tx-1", datetime(2024, 3, 5, tzinfo=UTC), properties={"region": None})
        assert event.property_value("region") is None
        assert "region" not in event.properties

    def test_timestamps_are_normalized_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        event = make_event("tx-1", datetime(2024, 3, 5, 2, tzinfo=plus_two))
        assert event.timestamp == datetime(2024, 3, 5, tzinfo=UTC)
        assert event.timestamp.utcoffset() == timedelta(0)

    def test_naive_timestamp_is_utc(self):
        event = make_event("tx-1", datetime(2024, 3, 5))
        assert event.timestamp == datetime(2024, 3, 5, tzinfo=UTC)

    @pytest.mark.parametrize(
        "properties, expected",
        [
            ({}, "add"),
            ({"operation_type": "add"}, "add"),
            ({"operation_type": "remove"}, "remove"),
            ({"operation_type": "unknown"}, "add"),
        ],
    )
    def test_operation_type(self, properties, expected):
        event = make_event("tx-1", datetime(2024, 3, 5, tzinfo=UTC), properties=properties)
        assert event.operation_type == expected

    def test_sort_key(self):
        event = make_event("tx-1", datetime(2024, 3, 5, tzinfo=UTC), sequence=4)
        assert event.sort_key() == (datetime(2024, 3, 5, tzinfo=UTC), 4)

    def test_events_are_immutable(self):
        event = make_event("tx-1", datetime(2024, 3, 5, tzinfo=UTC))
        with pytest.raises(AttributeError):
            event.transaction_id = "tx-2"  # type: ignore[misc]
