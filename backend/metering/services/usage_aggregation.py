import logging
from dataclasses import dataclass, replace
from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy.orm import Session

from metering.services.aggregation_request import (
    AggregationRequest,
    GroupedUsageResult,
    UsageResult,
)
from metering.services.aggregations.base import Aggregator
from metering.services.aggregations.factory import get_aggregator
from metering.services.aggregations.rounding import apply_rounding
from metering.services.event_grouping import GroupKey, group_events
from metering.services.event_stores.base import EventStore
from metering.services.event_stores.factory import get_event_store

logger = logging.getLogger(__name__)


@dataclass
class GroupFold:
    """Aggregator state of one group and the number of events folded into it."""

    state: BaseModel
    events_count: int


class UsageAggregationService:
    """Service computing usage quantities for aggregation requests."""

    def __init__(self, db: Session, store: EventStore | None = None):
        self.db = db
        self.store = store if store is not None else get_event_store(db)

    def fold(self, request: AggregationRequest) -> dict[GroupKey, GroupFold]:
        """Fold the request's events into one aggregator state per group.

        A pre-aggregated store seeds the states from its latest snapshot and
        only the events after the snapshot's cutoff are read and folded. Groups
        listed in ``initial_values`` start from their own value.
        """
        aggregator = get_aggregator(request.aggregation_type, request.prorated)

        folds: dict[GroupKey, GroupFold] = {}
        partial = self.store.fetch_partial(request)
        since = None
        if partial is not None:
            since = partial.computed_up_to
            for group, snapshot in partial.groups.items():
                folds[group] = GroupFold(
                    state=aggregator.load_state(snapshot.state),
                    events_count=snapshot.events_count,
                )

        # Carried-over groups take part even without events in the period
        for group, value in request.initial_values.items():
            if group not in folds:
                folds[group] = GroupFold(
                    state=aggregator.initial_state(replace(request, initial_value=value)),
                    events_count=0,
                )

        events = self.store.fetch_events(request, since=since)
        for group, group_events_ in group_events(events, request.grouped_by).items():
            current = folds.get(group)
            state = current.state if current is not None else None
            count = current.events_count if current is not None else 0
            folds[group] = GroupFold(
                state=aggregator.fold(group_events_, request, state),
                events_count=count + len(group_events_),
            )
        return folds

    def aggregate_with_count(self, request: AggregationRequest) -> UsageResult | GroupedUsageResult:
        """Aggregate usage and count the events it was computed from.

        Returns a single UsageResult for ungrouped requests and a mapping from
        group values to UsageResult otherwise. Groups without any event are
        absent from the mapping unless they carry an initial value.
        """
        aggregator = get_aggregator(request.aggregation_type, request.prorated)
        folds = self.fold(request)

        if not request.is_grouped:
            fold = folds.get(())
            if fold is None:
                fold = GroupFold(state=aggregator.initial_state(request), events_count=0)
            return self._result(aggregator, fold, request)

        return {group: self._result(aggregator, fold, request) for group, fold in folds.items()}

    def aggregate(
        self, request: AggregationRequest
    ) -> Decimal | None | dict[GroupKey, Decimal | None]:
        result = self.aggregate_with_count(request)
        if isinstance(result, UsageResult):
            return result.value
        return {group: usage.value for group, usage in result.items()}

    @staticmethod
    def _result(aggregator: Aggregator, fold: GroupFold, request: AggregationRequest) -> UsageResult:
        value = apply_rounding(
            aggregator.finalize(fold.state, request),
            request.rounding_function,
            request.rounding_precision,
        )
        total_units = (
            aggregator.total_units(fold.state, request) if aggregator.total_units else None
        )
        return UsageResult(
            value=value,
            events_count=fold.events_count,
            total_aggregated_units=total_units,
        )
