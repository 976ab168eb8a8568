from metering.schemas.billable_metric import BillableMetricCreate, BillableMetricResponse
from metering.schemas.event import (
    EventBatchCreate,
    EventBatchResponse,
    EventCreate,
    EventResponse,
)
from metering.schemas.usage import (
    AggregateUsageRequest,
    AggregateUsageResponse,
    BoundaryPayload,
    ChargeFilterPayload,
    FilterMatchRequest,
    FilterMatchResponse,
    GroupedUsage,
    GroupInitialValue,
)

__all__ = [
    "AggregateUsageRequest",
    "AggregateUsageResponse",
    "BillableMetricCreate",
    "BillableMetricResponse",
    "BoundaryPayload",
    "ChargeFilterPayload",
    "EventBatchCreate",
    "EventBatchResponse",
    "EventCreate",
    "EventResponse",
    "FilterMatchRequest",
    "FilterMatchResponse",
    "GroupedUsage",
    "GroupInitialValue",
]
