from decimal import Decimal

from pydantic import BaseModel

from metering.services.aggregation_request import AggregationRequest
from metering.services.aggregations.base import Aggregator
from metering.services.usage_events import UsageEvent


class MaxState(BaseModel):
    value: Decimal | None = None


def initial_state(request: AggregationRequest) -> MaxState:
    return MaxState()


def apply(state: MaxState, event: UsageEvent, request: AggregationRequest) -> MaxState:
    amount = event.precise_amount
    if amount is not None and (state.value is None or amount > state.value):
        state.value = amount
    return state


def finalize(state: MaxState, request: AggregationRequest) -> Decimal | None:
    return state.value


AGGREGATOR = Aggregator(
    name="max",
    state_type=MaxState,
    initial_state=initial_state,
    apply=apply,
    finalize=finalize,
)
