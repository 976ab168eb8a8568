from metering.models.billable_metric import AggregationType, BillableMetric
from metering.models.daily_usage import DailyUsage
from metering.models.event import Event
from metering.models.shared import DEFAULT_ORGANIZATION_ID, ExactDecimal, UTCDateTime, UUIDType, generate_uuid

__all__ = [
    "DEFAULT_ORGANIZATION_ID",
    "AggregationType",
    "BillableMetric",
    "DailyUsage",
    "Event",
    "ExactDecimal",
    "UTCDateTime",
    "UUIDType",
    "generate_uuid",
]
