from decimal import Decimal

from pydantic import BaseModel

from metering.services.aggregation_request import AggregationRequest
from metering.services.aggregations import proration
from metering.services.aggregations.base import Aggregator
from metering.services.usage_events import UsageEvent


class SumState(BaseModel):
    total: Decimal = Decimal("0")


def initial_state(request: AggregationRequest) -> SumState:
    return SumState()


def apply(state: SumState, event: UsageEvent, request: AggregationRequest) -> SumState:
    if event.precise_amount is not None:
        state.total += event.precise_amount
    return state


def finalize(state: SumState, request: AggregationRequest) -> Decimal:
    return state.total


def prorated_apply(
    state: proration.ProratedState, event: UsageEvent, request: AggregationRequest
) -> proration.ProratedState:
    amount = event.precise_amount if event.precise_amount is not None else Decimal(0)
    return proration.apply_amount(state, event, amount, request)


AGGREGATOR = Aggregator(
    name="sum",
    state_type=SumState,
    initial_state=initial_state,
    apply=apply,
    finalize=finalize,
)

PRORATED_AGGREGATOR = Aggregator(
    name="prorated_sum",
    state_type=proration.ProratedState,
    initial_state=proration.initial_state,
    apply=prorated_apply,
    finalize=proration.finalize,
)
