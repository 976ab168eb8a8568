"""Charge filter matching.

A charge filter is an ordered set of ``key -> allowed values`` pairs. An event
belongs to the most specific filter it matches (the one declaring the most
keys); events matching no filter are billed under the charge's base price.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from metering.core.errors import AmbiguousFilterMatch
from metering.services.usage_events import coerce_property, property_str

ALL_FILTER_VALUES = "__ALL_FILTER_VALUES__"

FilterValues = Mapping[str, tuple[str, ...]]


def _freeze_values(values: Mapping[str, Iterable[str]]) -> FilterValues:
    return MappingProxyType({str(key): tuple(str(v) for v in vals) for key, vals in values.items()})


@dataclass(frozen=True)
class ChargeFilter:
    values: FilterValues
    id: str | None = None
    invoice_display_name: str | None = None

    def __post_init__(self) -> None:
        if not self.values:
            raise ValueError("A charge filter must declare at least one key")
        object.__setattr__(self, "values", _freeze_values(self.values))

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(self.values)

    def to_dict(self) -> dict[str, list[str]]:
        return {key: list(vals) for key, vals in self.values.items()}


def _normalized(properties: Mapping[str, Any]) -> dict[str, str]:
    result: dict[str, str] = {}
    for key, value in properties.items():
        coerced = coerce_property(value)
        if coerced is not None:
            result[key] = property_str(coerced)
    return result


def values_match(properties: Mapping[str, Any], values: Mapping[str, Sequence[str]]) -> bool:
    """Whether an event's properties satisfy every key of a filter mapping."""
    normalized = _normalized(properties)
    for key, allowed in values.items():
        if key not in normalized:
            return False
        if ALL_FILTER_VALUES in allowed:
            continue
        if normalized[key] not in allowed:
            return False
    return True


def match(properties: Mapping[str, Any], filters: Iterable[ChargeFilter]) -> ChargeFilter | None:
    """Select the most specific filter matching the event's properties.

    Raises AmbiguousFilterMatch when several matching filters declare the same,
    highest number of keys: picking one would silently change the billed price.
    """
    matching = [f for f in filters if values_match(properties, f.values)]
    if not matching:
        return None

    best_size = max(len(f.values) for f in matching)
    best = [f for f in matching if len(f.values) == best_size]
    if len(best) > 1:
        raise AmbiguousFilterMatch(dict(properties), best)
    return best[0]


def matching_vs_ignored(
    properties: Mapping[str, Any], selected_filter: ChargeFilter | None
) -> tuple[dict[str, str], dict[str, str]]:
    """Split an event's properties against the filter it was billed under.

    Returns the declared keys of the filter with the event's matched value, and
    the event properties the filter does not declare.
    """
    normalized = _normalized(properties)
    declared = selected_filter.values if selected_filter is not None else {}

    matching = {key: normalized[key] for key in declared if key in normalized}
    ignored = {key: value for key, value in normalized.items() if key not in declared}
    return matching, ignored


def _compatible(left: FilterValues, right: FilterValues) -> bool:
    """Whether a single event could match both filter mappings."""
    for key in set(left) & set(right):
        left_values, right_values = set(left[key]), set(right[key])
        if ALL_FILTER_VALUES in left_values or ALL_FILTER_VALUES in right_values:
            continue
        if not left_values & right_values:
            return False
    return True


def filter_restrictions(
    charge_filter: ChargeFilter | None, filters: Sequence[ChargeFilter]
) -> tuple[dict[str, list[str]], list[dict[str, list[str]]]]:
    """Restrictions selecting the events billed under ``charge_filter``.

    ``matching_filters`` is the filter's own mapping. ``ignored_filters`` lists
    the filters that would win over it for some events: every strictly more
    specific filter an event could match at the same time. For the default bucket
    (``charge_filter`` is None) every filter is ignored.
    """
    if charge_filter is None:
        return {}, [f.to_dict() for f in filters]

    ignored = [
        other.to_dict()
        for other in filters
        if other is not charge_filter
        and len(other.values) > len(charge_filter.values)
        and _compatible(other.values, charge_filter.values)
    ]
    return charge_filter.to_dict(), ignored


def event_matches_restrictions(
    properties: Mapping[str, Any],
    matching_filters: Mapping[str, Sequence[str]],
    ignored_filters: Sequence[Mapping[str, Sequence[str]]],
) -> bool:
    if matching_filters and not values_match(properties, matching_filters):
        return False
    return not any(values_match(properties, ignored) for ignored in ignored_filters if ignored)


@dataclass
class FilterSelection:
    """The filter an event is billed under and how its properties relate to it."""

    charge_filter: ChargeFilter | None
    matching_filters: dict[str, str] = field(default_factory=dict)
    ignored_filters: dict[str, str] = field(default_factory=dict)


def select_filter(properties: Mapping[str, Any], filters: Sequence[ChargeFilter]) -> FilterSelection:
    selected = match(properties, filters)
    matching, ignored = matching_vs_ignored(properties, selected)
    return FilterSelection(charge_filter=selected, matching_filters=matching, ignored_filters=ignored)
