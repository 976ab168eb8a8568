"""Distinct property values, plain and prorated.

Operations are collapsed per property value: an ``add`` on a value that is
already active, or a ``remove`` on a value that is not, changes nothing. A
value counts as active once its last effective operation is an ``add``.

For the prorated count a ``remove`` is only committed once no ``add`` for the
same value follows it on the same local day, so a value removed and re-added
within a day keeps a single uninterrupted span. An add and a remove on one
day bill that day.
"""

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from metering.services.aggregation_request import AggregationRequest
from metering.services.aggregations.base import Aggregator
from metering.services.usage_events import ADD_OPERATION, REMOVE_OPERATION, UsageEvent


class UniqueCountState(BaseModel):
    operations: dict[str, str] = Field(default_factory=dict)


def _tracked_value(event: UsageEvent, request: AggregationRequest) -> str | None:
    if not request.field_name:
        return None
    return event.property_value(request.field_name)


def initial_state(request: AggregationRequest) -> UniqueCountState:
    return UniqueCountState()


def apply(
    state: UniqueCountState, event: UsageEvent, request: AggregationRequest
) -> UniqueCountState:
    value = _tracked_value(event, request)
    if value is None:
        return state

    operation = event.operation_type
    if operation != state.operations.get(value, REMOVE_OPERATION):
        state.operations[value] = operation
    return state


def finalize(state: UniqueCountState, request: AggregationRequest) -> Decimal:
    return Decimal(sum(1 for op in state.operations.values() if op == ADD_OPERATION))


def is_active_unique_property(
    event: UsageEvent, events: Sequence[UsageEvent], field_name: str
) -> bool:
    """Whether the event's property value is already active before the event.

    Only events strictly earlier in ``(timestamp, sequence)`` order count.
    """
    value = event.property_value(field_name)
    if value is None:
        return False

    last_operation = REMOVE_OPERATION
    for other in sorted(events, key=UsageEvent.sort_key):
        if other.sort_key() >= event.sort_key():
            break
        if other.property_value(field_name) == value:
            last_operation = other.operation_type
    return last_operation == ADD_OPERATION


class ActiveSpan(BaseModel):
    since: datetime
    pending_remove: datetime | None = None


class ProratedUniqueCountState(BaseModel):
    held_days: int = 0
    spans: dict[str, ActiveSpan] = Field(default_factory=dict)


def prorated_initial_state(request: AggregationRequest) -> ProratedUniqueCountState:
    return ProratedUniqueCountState()


def _close(
    state: ProratedUniqueCountState, value: str, until: datetime, request: AggregationRequest
) -> None:
    span = state.spans.pop(value)
    state.held_days += request.boundary.held_days(span.since, until)


def prorated_apply(
    state: ProratedUniqueCountState, event: UsageEvent, request: AggregationRequest
) -> ProratedUniqueCountState:
    value = _tracked_value(event, request)
    if value is None:
        return state

    boundary = request.boundary
    span = state.spans.get(value)

    if span is not None and span.pending_remove is not None:
        same_day = boundary.local_date(span.pending_remove) == boundary.local_date(event.timestamp)
        if not same_day:
            _close(state, value, span.pending_remove, request)
            span = None
        elif event.operation_type == ADD_OPERATION:
            span.pending_remove = None
            return state
        else:
            return state

    if event.operation_type == ADD_OPERATION:
        if span is None:
            state.spans[value] = ActiveSpan(since=event.timestamp)
    elif span is not None:
        span.pending_remove = event.timestamp
    return state


def prorated_finalize(state: ProratedUniqueCountState, request: AggregationRequest) -> Decimal:
    boundary = request.boundary
    held_days = state.held_days
    for span in state.spans.values():
        held_days += boundary.held_days(span.since, span.pending_remove)
    return Decimal(held_days) / Decimal(boundary.charges_duration)


AGGREGATOR = Aggregator(
    name="unique_count",
    state_type=UniqueCountState,
    initial_state=initial_state,
    apply=apply,
    finalize=finalize,
)

PRORATED_AGGREGATOR = Aggregator(
    name="prorated_unique_count",
    state_type=ProratedUniqueCountState,
    initial_state=prorated_initial_state,
    apply=prorated_apply,
    finalize=prorated_finalize,
)
