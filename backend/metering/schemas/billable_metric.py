from datetime import datetime
from typing import Literal, Self
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from metering.models.billable_metric import AggregationType

# Kinds whose amount or tracked value is read from a property
FIELD_NAME_AGGREGATIONS = (
    AggregationType.SUM,
    AggregationType.MAX,
    AggregationType.UNIQUE_COUNT,
    AggregationType.WEIGHTED_SUM,
    AggregationType.LATEST,
)

# Kinds whose usage carries over from one billing period to the next
RECURRING_AGGREGATIONS = (
    AggregationType.SUM,
    AggregationType.UNIQUE_COUNT,
    AggregationType.WEIGHTED_SUM,
)


class BillableMetricCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    aggregation_type: AggregationType
    field_name: str | None = Field(default=None, max_length=255)
    recurring: bool = False
    rounding_function: Literal["round", "ceil", "floor"] | None = None
    rounding_precision: int | None = Field(default=None, ge=0, le=15)

    @model_validator(mode="after")
    def validate_aggregation_settings(self) -> Self:
        """Check field_name and recurring against the aggregation type."""
        kind = self.aggregation_type
        if kind in FIELD_NAME_AGGREGATIONS and not self.field_name:
            raise ValueError(f"field_name is required for aggregation_type '{kind.value}'")
        if self.recurring and kind not in RECURRING_AGGREGATIONS:
            allowed = ", ".join(k.value for k in RECURRING_AGGREGATIONS)
            raise ValueError(f"recurring is only supported for aggregation types: {allowed}")
        return self

    @model_validator(mode="after")
    def validate_rounding_precision_requires_function(self) -> Self:
        """Validate rounding_precision requires rounding_function."""
        if self.rounding_precision is not None and self.rounding_function is None:
            msg = "rounding_precision requires rounding_function to be set"
            raise ValueError(msg)
        return self


class BillableMetricResponse(BaseModel):
    id: UUID
    organization_id: UUID
    code: str
    name: str
    description: str | None
    aggregation_type: AggregationType
    field_name: str | None
    recurring: bool
    rounding_function: str | None
    rounding_precision: int | None
    created_at: datetime

    model_config = {"from_attributes": True}
