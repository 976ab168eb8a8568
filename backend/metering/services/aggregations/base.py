"""Aggregators are folds over an ordered, deduplicated event sequence.

Every kind provides an initial state, a step applying one event and a
finalization producing the value. States are pydantic models so they can be
persisted as daily snapshots and resumed later: folding a prefix, storing the
state and folding the remaining events gives the same value as one pass.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

from metering.services.aggregation_request import AggregationRequest
from metering.services.usage_events import UsageEvent

InitialStateFn = Callable[[AggregationRequest], Any]
ApplyFn = Callable[[Any, UsageEvent, AggregationRequest], Any]
FinalizeFn = Callable[[Any, AggregationRequest], Decimal | None]
UnitsFn = Callable[[Any, AggregationRequest], Decimal | None]


@dataclass(frozen=True)
class Aggregator:
    name: str
    state_type: type[BaseModel]
    initial_state: InitialStateFn
    apply: ApplyFn
    finalize: FinalizeFn
    total_units: UnitsFn | None = None

    def fold(
        self,
        events: Iterable[UsageEvent],
        request: AggregationRequest,
        state: BaseModel | None = None,
    ) -> BaseModel:
        if state is None:
            state = self.initial_state(request)
        for event in events:
            state = self.apply(state, event, request)
        return state

    def run(self, events: Iterable[UsageEvent], request: AggregationRequest) -> Decimal | None:
        return self.finalize(self.fold(events, request), request)

    def dump_state(self, state: BaseModel) -> dict[str, Any]:
        return state.model_dump(mode="json")

    def load_state(self, payload: dict[str, Any]) -> BaseModel:
        return self.state_type.model_validate(payload)
