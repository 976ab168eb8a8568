"""Partitioning of usage events by property keys."""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from metering.services.usage_events import UsageEvent


class _NullGroup:
    """Marker for a grouping key the event does not carry.

    Distinct from the empty string, which is a legitimate property value.
    """

    _instance: "_NullGroup | None" = None

    def __new__(cls) -> "_NullGroup":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NULL_GROUP"

    def __reduce__(self) -> str:
        return "NULL_GROUP"


NULL_GROUP = _NullGroup()

GroupValue = str | _NullGroup
GroupKey = tuple[GroupValue, ...]


def group_values(event: UsageEvent, keys: Sequence[str]) -> GroupKey:
    values: list[GroupValue] = []
    for key in keys:
        value = event.property_value(key)
        values.append(NULL_GROUP if value is None else value)
    return tuple(values)


def group_events(events: Iterable[UsageEvent], keys: Sequence[str]) -> dict[GroupKey, list[UsageEvent]]:
    """Partition events by the values of ``keys``, keeping each group's order."""
    groups: dict[GroupKey, list[UsageEvent]] = {}
    for event in events:
        groups.setdefault(group_values(event, keys), []).append(event)
    return groups


def pin_group_values(
    events: Iterable[UsageEvent], grouped_by_values: Mapping[str, str | None]
) -> list[UsageEvent]:
    """Keep the events whose properties equal the pinned values exactly.

    A ``None`` pin selects the events that do not carry the key at all.
    """
    keys = list(grouped_by_values)
    expected = tuple(
        NULL_GROUP if grouped_by_values[key] is None else str(grouped_by_values[key])
        for key in keys
    )
    return [event for event in events if group_values(event, keys) == expected]


def group_key_to_json(group: GroupKey) -> list[str | None]:
    return [None if value is NULL_GROUP else str(value) for value in group]


def group_key_from_json(values: Sequence[Any]) -> GroupKey:
    return tuple(NULL_GROUP if value is None else str(value) for value in values)


def group_to_dict(keys: Sequence[str], group: GroupKey) -> dict[str, str | None]:
    return dict(zip(keys, group_key_to_json(group), strict=True))
