from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from metering.core.config import settings
from metering.services.aggregation_request import AggregationRequest

# Redis connection settings
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis pool for arq"""
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job | None:
    """
    Enqueue a task to the arq worker.

    Args:
        task_name: Name of the task function
        *args: Positional arguments for the task
        **kwargs: Keyword arguments for the task

    Returns:
        Job object from arq, or None when a job with the same _job_id exists
    """
    pool = await get_redis_pool()
    try:
        return await pool.enqueue_job(task_name, *args, **kwargs)
    finally:
        await pool.close()


async def enqueue_aggregate_usage(request: AggregationRequest) -> Job | None:
    """Enqueue the aggregation of a request, e.g. one per charge of a subscription."""
    return await enqueue_task("aggregate_usage_task", request.to_payload())


async def enqueue_refresh_daily_usage(request: AggregationRequest | None = None) -> Job | None:
    """Enqueue a snapshot refresh of one request, or of every known request.

    The job id is derived from the request so a refresh that is already queued
    is not queued twice; arq then returns None.
    """
    if request is None:
        return await enqueue_task("refresh_daily_usage_task", None, _job_id="refresh_daily_usage:all")
    return await enqueue_task(
        "refresh_daily_usage_task",
        request.to_payload(include_max_timestamp=False),
        _job_id=f"refresh_daily_usage:{request.cache_key()}",
    )
