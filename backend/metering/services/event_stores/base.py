"""Event store interface.

A store returns the deduplicated events of an aggregation request, clipped to
the boundary, restricted by its charge filters and pinned group values, in
``(timestamp, sequence)`` order. Pre-aggregated stores may also return a
partial fold computed up to a cutoff; the events they return then start at
that cutoff.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from metering.services.aggregation_request import AggregationRequest
from metering.services.charge_filter_matcher import event_matches_restrictions
from metering.services.event_deduplication import deduplicate
from metering.services.event_grouping import GroupKey, pin_group_values
from metering.services.usage_events import UsageEvent, as_utc


@dataclass
class GroupSnapshot:
    state: dict[str, Any]
    events_count: int


@dataclass
class PartialUsage:
    """Folded aggregator states per group over ``[from_datetime, computed_up_to)``."""

    computed_up_to: datetime
    groups: dict[GroupKey, GroupSnapshot] = field(default_factory=dict)


def fetch_window(request: AggregationRequest, since: datetime | None) -> tuple[datetime, datetime]:
    """Half-open timestamp window ``[start, end)`` a store has to read."""
    boundary = request.boundary
    start = boundary.from_datetime
    if since is not None and as_utc(since) > start:
        start = as_utc(since)
    return start, boundary.applicable_to_datetime


def prepare_events(
    events: Iterable[UsageEvent], request: AggregationRequest, since: datetime | None = None
) -> list[UsageEvent]:
    """Deduplicate, clip and restrict raw rows read by a store."""
    start, end = fetch_window(request, since)
    result = deduplicate(events).events
    result = [event for event in result if start <= event.timestamp < end]

    if request.matching_filters or request.ignored_filters:
        result = [
            event
            for event in result
            if event_matches_restrictions(
                event.properties, request.matching_filters, request.ignored_filters
            )
        ]
    if request.grouped_by_values is not None:
        result = pin_group_values(result, request.grouped_by_values)
    return result


class EventStore(ABC):
    @abstractmethod
    def fetch_events(
        self, request: AggregationRequest, since: datetime | None = None
    ) -> list[UsageEvent]:
        """Events of the request with a timestamp in ``[max(from, since), cutoff)``."""

    def fetch_partial(self, request: AggregationRequest) -> PartialUsage | None:
        return None
