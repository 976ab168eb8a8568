"""Time-weighted sum of a running value.

The running value starts at ``initial_value`` at the start of the boundary (a
group listed in ``initial_values`` starts at its own value) and changes by each
event's amount. The result is the integral of the running
value over the period, divided by the period length in seconds:

    sum(running_value * seconds_until_next_change) / (charges_duration * 86400)

The period always runs to ``to_datetime``, even when events are cut off
earlier by ``max_timestamp``.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from metering.services.aggregation_request import AggregationRequest
from metering.services.aggregations.base import Aggregator
from metering.services.billing_boundary import seconds_between
from metering.services.usage_events import UsageEvent


class WeightedSumState(BaseModel):
    running_value: Decimal
    last_change: datetime
    weighted_seconds: Decimal = Decimal("0")


def initial_state(request: AggregationRequest) -> WeightedSumState:
    return WeightedSumState(
        running_value=request.initial_value,
        last_change=request.boundary.from_datetime,
    )


def apply(
    state: WeightedSumState, event: UsageEvent, request: AggregationRequest
) -> WeightedSumState:
    state.weighted_seconds += state.running_value * seconds_between(
        state.last_change, event.timestamp
    )
    if event.precise_amount is not None:
        state.running_value += event.precise_amount
    state.last_change = event.timestamp
    return state


def finalize(state: WeightedSumState, request: AggregationRequest) -> Decimal:
    boundary = request.boundary
    weighted = state.weighted_seconds + state.running_value * seconds_between(
        state.last_change, boundary.to_datetime
    )
    return weighted / boundary.period_seconds


def total_units(state: WeightedSumState, request: AggregationRequest) -> Decimal:
    """Running value at the end of the period, the next period's initial value."""
    return state.running_value


AGGREGATOR = Aggregator(
    name="weighted_sum",
    state_type=WeightedSumState,
    initial_state=initial_state,
    apply=apply,
    finalize=finalize,
    total_units=total_units,
)
