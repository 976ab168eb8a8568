"""Immutable usage events as seen by the aggregation engine.

Stores convert their rows into ``UsageEvent`` values. Properties are kept in
an ordered, read-only mapping whose values are typed scalars (``str``,
``Decimal`` or ``bool``) so numeric aggregation never has to guess at a
JSON payload's types.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any
from uuid import UUID

PropertyValue = str | Decimal | bool

OPERATION_TYPE_PROPERTY = "operation_type"
ADD_OPERATION = "add"
REMOVE_OPERATION = "remove"


def coerce_property(value: Any) -> PropertyValue | None:
    """Convert a JSON payload value into a typed property value.

    ``None`` means the property is absent. Nested structures are kept as their
    JSON text so they can still be grouped on.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


def coerce_properties(raw: Mapping[str, Any] | None) -> Mapping[str, PropertyValue]:
    """Build the read-only, insertion-ordered property mapping of an event."""
    values: dict[str, PropertyValue] = {}
    for key, value in (raw or {}).items():
        coerced = coerce_property(value)
        if coerced is not None:
            values[str(key)] = coerced
    return MappingProxyType(values)


def property_str(value: PropertyValue) -> str:
    """Canonical string form used for filter matching, grouping and unique counts."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def to_decimal(value: Any) -> Decimal | None:
    """Parse a numeric payload value, returning None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def as_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


@dataclass(frozen=True)
class UsageEvent:
    organization_id: UUID
    external_subscription_id: str
    code: str
    transaction_id: str
    timestamp: datetime
    properties: Mapping[str, PropertyValue] = field(
        default_factory=lambda: MappingProxyType({})
    )
    precise_amount: Decimal | None = None
    enriched_at: datetime | None = None
    # Store-assigned ingestion order
    sequence: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))
        if self.enriched_at is not None:
            object.__setattr__(self, "enriched_at", as_utc(self.enriched_at))
        if not isinstance(self.properties, MappingProxyType):
            object.__setattr__(self, "properties", coerce_properties(self.properties))

    @property
    def operation_type(self) -> str:
        """``add`` or ``remove``; events without an operation type are additions."""
        value = self.properties.get(OPERATION_TYPE_PROPERTY)
        if value is not None and property_str(value) == REMOVE_OPERATION:
            return REMOVE_OPERATION
        return ADD_OPERATION

    def property_value(self, key: str) -> str | None:
        value = self.properties.get(key)
        return None if value is None else property_str(value)

    def sort_key(self) -> tuple[datetime, int]:
        return (self.timestamp, self.sequence)
