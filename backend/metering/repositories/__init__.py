from metering.repositories.billable_metric_repository import BillableMetricRepository
from metering.repositories.daily_usage_repository import DailyUsageRepository
from metering.repositories.event_repository import EventRepository

__all__ = [
    "BillableMetricRepository",
    "DailyUsageRepository",
    "EventRepository",
]
