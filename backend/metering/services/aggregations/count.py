from decimal import Decimal

from pydantic import BaseModel

from metering.services.aggregation_request import AggregationRequest
from metering.services.aggregations import proration
from metering.services.aggregations.base import Aggregator
from metering.services.usage_events import UsageEvent


class CountState(BaseModel):
    count: int = 0


def initial_state(request: AggregationRequest) -> CountState:
    return CountState()


def apply(state: CountState, event: UsageEvent, request: AggregationRequest) -> CountState:
    state.count += 1
    return state


def finalize(state: CountState, request: AggregationRequest) -> Decimal:
    return Decimal(state.count)


def prorated_apply(
    state: proration.ProratedState, event: UsageEvent, request: AggregationRequest
) -> proration.ProratedState:
    return proration.apply_amount(state, event, Decimal(1), request)


AGGREGATOR = Aggregator(
    name="count",
    state_type=CountState,
    initial_state=initial_state,
    apply=apply,
    finalize=finalize,
)

PRORATED_AGGREGATOR = Aggregator(
    name="prorated_count",
    state_type=proration.ProratedState,
    initial_state=proration.initial_state,
    apply=prorated_apply,
    finalize=proration.finalize,
)
