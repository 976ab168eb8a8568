import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from metering.core.config import settings
from metering.core.database import get_db
from metering.core.errors import EventStoreUnavailable
from metering.models.billable_metric import AggregationType
from metering.repositories.billable_metric_repository import BillableMetricRepository
from metering.schemas.usage import (
    AggregateUsageRequest,
    AggregateUsageResponse,
    ChargeFilterPayload,
    FilterMatchRequest,
    FilterMatchResponse,
    GroupedUsage,
)
from metering.services.aggregation_request import AggregationRequest, UsageResult
from metering.services.billing_boundary import BillingBoundary
from metering.services.charge_filter_matcher import ChargeFilter, select_filter
from metering.services.event_grouping import GroupKey, group_key_from_json, group_to_dict
from metering.services.usage_aggregation import UsageAggregationService

logger = logging.getLogger(__name__)

router = APIRouter()


def build_aggregation_request(data: AggregateUsageRequest, db: Session) -> AggregationRequest:
    """Build an engine request, defaulting to the billable metric's configuration."""
    metric = BillableMetricRepository(db).get_by_code(data.code, data.organization_id)
    if metric is None and data.aggregation_type is None:
        raise HTTPException(
            status_code=422,
            detail=f"Billable metric with code '{data.code}' does not exist",
        )

    aggregation_type = data.aggregation_type or AggregationType(str(metric.aggregation_type))
    field_name = data.field_name
    rounding_function = data.rounding_function
    rounding_precision = data.rounding_precision
    if metric is not None:
        field_name = field_name or (str(metric.field_name) if metric.field_name else None)
        if rounding_function is None and metric.rounding_function:
            rounding_function = str(metric.rounding_function)
            rounding_precision = (
                int(metric.rounding_precision) if metric.rounding_precision is not None else None
            )

    boundary = data.boundary
    try:
        initial_values: dict[GroupKey, Decimal] = {}
        for item in data.initial_values:
            unknown = set(item.grouped_by) - set(data.grouped_by)
            if unknown:
                raise ValueError(f"initial_values use keys missing from grouped_by: {sorted(unknown)}")
            group = group_key_from_json([item.grouped_by.get(key) for key in data.grouped_by])
            initial_values[group] = item.value

        return AggregationRequest(
            organization_id=data.organization_id,
            external_subscription_id=data.external_subscription_id,
            code=data.code,
            boundary=BillingBoundary(
                from_datetime=boundary.from_datetime,
                to_datetime=boundary.to_datetime,
                charges_duration=boundary.charges_duration,
                max_timestamp=boundary.max_timestamp,
                timezone=boundary.timezone or settings.DEFAULT_TIMEZONE,
            ),
            aggregation_type=aggregation_type,
            field_name=field_name,
            prorated=data.prorated,
            grouped_by=tuple(data.grouped_by),
            grouped_by_values=data.grouped_by_values,
            matching_filters=data.matching_filters,
            ignored_filters=tuple(data.ignored_filters),
            initial_value=data.initial_value,
            initial_values=initial_values,
            persisted_duration=data.persisted_duration,
            rounding_function=rounding_function,
            rounding_precision=rounding_precision,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post(
    "/aggregate",
    response_model=AggregateUsageResponse,
    summary="Aggregate usage for a subscription and billable metric",
    responses={
        422: {"description": "Invalid boundary or unknown billable metric"},
        503: {"description": "Event store unavailable, retry later"},
    },
)
async def aggregate_usage(
    data: AggregateUsageRequest, db: Session = Depends(get_db)
) -> AggregateUsageResponse:
    request = build_aggregation_request(data, db)
    service = UsageAggregationService(db)
    try:
        result = service.aggregate_with_count(request)
    except EventStoreUnavailable as exc:
        logger.warning("Usage aggregation for %s failed: %s", request.code, exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    response = AggregateUsageResponse(
        code=request.code,
        aggregation_type=request.aggregation_type,
        from_datetime=request.boundary.from_datetime,
        to_datetime=request.boundary.to_datetime,
    )
    if isinstance(result, UsageResult):
        response.value = result.value
        response.events_count = result.events_count
        response.total_aggregated_units = result.total_aggregated_units
        return response

    response.groups = [
        GroupedUsage(
            grouped_by=group_to_dict(request.grouped_by, group),
            value=usage.value,
            events_count=usage.events_count,
            total_aggregated_units=usage.total_aggregated_units,
        )
        for group, usage in result.items()
    ]
    response.events_count = sum(usage.events_count for usage in result.values())
    return response


@router.post(
    "/charge_filters/match",
    response_model=FilterMatchResponse,
    summary="Find the charge filter an event is billed under",
    responses={422: {"description": "Several filters match with the same specificity"}},
)
async def match_charge_filter(data: FilterMatchRequest) -> FilterMatchResponse:
    filters = [
        ChargeFilter(values=f.values, id=f.id, invoice_display_name=f.invoice_display_name)
        for f in data.filters
    ]
    try:
        selection = select_filter(data.properties, filters)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    selected = selection.charge_filter
    return FilterMatchResponse(
        filter=(
            ChargeFilterPayload(
                id=selected.id,
                invoice_display_name=selected.invoice_display_name,
                values=selected.to_dict(),
            )
            if selected is not None
            else None
        ),
        matching_filters=selection.matching_filters,
        ignored_filters=selection.ignored_filters,
    )
