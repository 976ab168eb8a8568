"""Day-based proration shared by the prorated count and sum aggregators.

Each ``add`` holds its amount from its local day until the day of the next
``remove`` in the sequence, or until the last day of the boundary. The
accumulated ``amount x days`` is divided by the charges duration once, at the
end, so the result does not depend on where the fold was interrupted.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from metering.services.aggregation_request import AggregationRequest
from metering.services.usage_events import REMOVE_OPERATION, UsageEvent


class HeldAmount(BaseModel):
    amount: Decimal
    since: datetime


class ProratedState(BaseModel):
    amount_days: Decimal = Decimal("0")
    held: list[HeldAmount] = Field(default_factory=list)


def initial_state(request: AggregationRequest) -> ProratedState:
    return ProratedState()


def _release(state: ProratedState, until: datetime | None, request: AggregationRequest) -> None:
    boundary = request.boundary
    for held in state.held:
        state.amount_days += held.amount * boundary.held_days(held.since, until)
    state.held = []


def apply_amount(
    state: ProratedState, event: UsageEvent, amount: Decimal, request: AggregationRequest
) -> ProratedState:
    if event.operation_type == REMOVE_OPERATION:
        _release(state, event.timestamp, request)
        return state

    if request.persisted_duration is not None:
        days = min(request.persisted_duration, request.boundary.charges_duration)
        state.amount_days += amount * days
    else:
        state.held.append(HeldAmount(amount=amount, since=event.timestamp))
    return state


def finalize(state: ProratedState, request: AggregationRequest) -> Decimal:
    amount_days = state.amount_days
    for held in state.held:
        amount_days += held.amount * request.boundary.held_days(held.since, None)
    return amount_days / Decimal(request.boundary.charges_duration)
