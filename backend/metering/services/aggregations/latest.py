from decimal import Decimal

from pydantic import BaseModel

from metering.services.aggregation_request import AggregationRequest
from metering.services.aggregations.base import Aggregator
from metering.services.usage_events import UsageEvent


class LatestState(BaseModel):
    value: Decimal | None = None


def initial_state(request: AggregationRequest) -> LatestState:
    return LatestState()


def apply(state: LatestState, event: UsageEvent, request: AggregationRequest) -> LatestState:
    # Events arrive in (timestamp, sequence) order: the last one carrying a value wins
    if event.precise_amount is not None:
        state.value = event.precise_amount
    return state


def finalize(state: LatestState, request: AggregationRequest) -> Decimal | None:
    return state.value


AGGREGATOR = Aggregator(
    name="latest",
    state_type=LatestState,
    initial_state=initial_state,
    apply=apply,
    finalize=finalize,
)
