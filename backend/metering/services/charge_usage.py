"""Usage of a charge split by its filters."""

from collections.abc import Sequence
from dataclasses import dataclass, replace

from sqlalchemy.orm import Session

from metering.services.aggregation_request import AggregationRequest, GroupedUsageResult, UsageResult
from metering.services.charge_filter_matcher import ChargeFilter, filter_restrictions
from metering.services.event_stores.base import EventStore
from metering.services.usage_aggregation import UsageAggregationService


@dataclass
class FilterUsage:
    charge_filter: ChargeFilter | None
    usage: UsageResult | GroupedUsageResult


class ChargeUsageService:
    """Computes one usage per charge filter plus the default bucket.

    An event is counted under the most specific filter it matches, or in the
    default bucket when it matches none. Overlapping filters with the same
    number of keys do not exclude each other, so an event matching both is
    counted under each of them.
    """

    def __init__(self, db: Session, store: EventStore | None = None):
        self.aggregation = UsageAggregationService(db, store=store)

    def usage_by_filter(
        self, base_request: AggregationRequest, filters: Sequence[ChargeFilter]
    ) -> list[FilterUsage]:
        results: list[FilterUsage] = []
        for charge_filter in [*filters, None]:
            matching, ignored = filter_restrictions(charge_filter, filters)
            request = replace(
                base_request,
                matching_filters=matching,
                ignored_filters=tuple(ignored),
            )
            results.append(
                FilterUsage(
                    charge_filter=charge_filter,
                    usage=self.aggregation.aggregate_with_count(request),
                )
            )
        return results
