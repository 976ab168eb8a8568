import logging
from datetime import UTC, datetime
from typing import Any

from arq import cron

from metering.core.database import session_scope
from metering.services.aggregation_request import AggregationRequest, UsageResult
from metering.services.daily_usage_service import DailyUsageService
from metering.services.event_grouping import group_key_to_json
from metering.services.usage_aggregation import UsageAggregationService
from metering.tasks import redis_settings

logger = logging.getLogger(__name__)


def _serialize_usage(usage: UsageResult) -> dict[str, Any]:
    return {
        "value": str(usage.value) if usage.value is not None else None,
        "events_count": usage.events_count,
        "total_aggregated_units": (
            str(usage.total_aggregated_units)
            if usage.total_aggregated_units is not None
            else None
        ),
    }


async def aggregate_usage_task(ctx: dict[str, Any], request_payload: dict[str, Any]) -> dict[str, Any]:
    """Background task: aggregate usage for one request.

    Returns:
        The usage as JSON: a single result, or a list of grouped results.
    """
    request = AggregationRequest.from_payload(request_payload)
    with session_scope() as db:
        result = UsageAggregationService(db).aggregate_with_count(request)

    if isinstance(result, UsageResult):
        return _serialize_usage(result)
    return {
        "groups": [
            {"grouped_by": group_key_to_json(group), **_serialize_usage(usage)}
            for group, usage in result.items()
        ]
    }


async def refresh_daily_usage_task(
    ctx: dict[str, Any], request_payload: dict[str, Any] | None = None
) -> int:
    """Background task: roll usage snapshots forward to now.

    Runs daily for every known snapshot, or on demand for a single request.
    """
    now = datetime.now(UTC)
    with session_scope() as db:
        service = DailyUsageService(db)
        if request_payload is not None:
            count = service.refresh_snapshot(AggregationRequest.from_payload(request_payload), now)
        else:
            count = service.refresh_all(now)

    if count > 0:
        logger.info("Refreshed %d usage snapshot rows", count)
    return count


class WorkerSettings:
    functions = [
        aggregate_usage_task,
        refresh_daily_usage_task,
    ]
    cron_jobs = [
        cron(refresh_daily_usage_task, hour=0, minute=0),  # midnight daily
    ]
    redis_settings = redis_settings
