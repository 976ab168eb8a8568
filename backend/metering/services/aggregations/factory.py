from metering.models.billable_metric import AggregationType
from metering.services.aggregations import (
    count,
    latest,
    max_amount,
    sum_amount,
    unique_count,
    weighted_sum,
)
from metering.services.aggregations.base import Aggregator

_AGGREGATORS: dict[AggregationType, Aggregator] = {
    AggregationType.COUNT: count.AGGREGATOR,
    AggregationType.SUM: sum_amount.AGGREGATOR,
    AggregationType.MAX: max_amount.AGGREGATOR,
    AggregationType.LATEST: latest.AGGREGATOR,
    AggregationType.UNIQUE_COUNT: unique_count.AGGREGATOR,
    AggregationType.WEIGHTED_SUM: weighted_sum.AGGREGATOR,
}

# max, latest and weighted_sum have no prorated variant and fall back to the plain one
_PRORATED_AGGREGATORS: dict[AggregationType, Aggregator] = {
    AggregationType.COUNT: count.PRORATED_AGGREGATOR,
    AggregationType.SUM: sum_amount.PRORATED_AGGREGATOR,
    AggregationType.UNIQUE_COUNT: unique_count.PRORATED_AGGREGATOR,
}


def get_aggregator(aggregation_type: AggregationType, prorated: bool = False) -> Aggregator:
    aggregation_type = AggregationType(aggregation_type)
    if prorated and aggregation_type in _PRORATED_AGGREGATORS:
        return _PRORATED_AGGREGATORS[aggregation_type]
    return _AGGREGATORS[aggregation_type]
