from datetime import datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from metering.models.billable_metric import AggregationType
from metering.models.shared import DEFAULT_ORGANIZATION_ID


class BoundaryPayload(BaseModel):
    from_datetime: datetime
    to_datetime: datetime
    charges_duration: int
    max_timestamp: datetime | None = None
    timezone: str | None = None


class GroupInitialValue(BaseModel):
    grouped_by: dict[str, str | None]
    value: Decimal


class AggregateUsageRequest(BaseModel):
    organization_id: UUID = DEFAULT_ORGANIZATION_ID
    external_subscription_id: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=255)
    boundary: BoundaryPayload
    # Defaults to the billable metric's configuration when omitted
    aggregation_type: AggregationType | None = None
    field_name: str | None = None
    prorated: bool = False
    grouped_by: list[str] = Field(default_factory=list)
    grouped_by_values: dict[str, str | None] | None = None
    matching_filters: dict[str, list[str]] = Field(default_factory=dict)
    ignored_filters: list[dict[str, list[str]]] = Field(default_factory=list)
    initial_value: Decimal = Decimal("0")
    initial_values: list[GroupInitialValue] = Field(default_factory=list)
    persisted_duration: int | None = Field(default=None, gt=0)
    rounding_function: Literal["round", "ceil", "floor"] | None = None
    rounding_precision: int | None = Field(default=None, ge=0, le=15)


class GroupedUsage(BaseModel):
    grouped_by: dict[str, str | None]
    value: Decimal | None
    events_count: int
    total_aggregated_units: Decimal | None = None


class AggregateUsageResponse(BaseModel):
    code: str
    aggregation_type: AggregationType
    from_datetime: datetime
    to_datetime: datetime
    value: Decimal | None = None
    events_count: int = 0
    total_aggregated_units: Decimal | None = None
    groups: list[GroupedUsage] | None = None


class ChargeFilterPayload(BaseModel):
    id: str | None = None
    invoice_display_name: str | None = None
    values: dict[str, list[str]] = Field(..., min_length=1)


class FilterMatchRequest(BaseModel):
    properties: dict[str, Any] = Field(default_factory=dict)
    filters: list[ChargeFilterPayload] = Field(default_factory=list)


class FilterMatchResponse(BaseModel):
    filter: ChargeFilterPayload | None
    matching_filters: dict[str, str]
    ignored_filters: dict[str, str]
