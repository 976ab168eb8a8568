from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from metering.models.shared import DEFAULT_ORGANIZATION_ID


class EventCreate(BaseModel):
    organization_id: UUID = DEFAULT_ORGANIZATION_ID
    transaction_id: str = Field(..., min_length=1, max_length=255)
    external_subscription_id: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=255)
    timestamp: datetime
    properties: dict[str, Any] = Field(default_factory=dict)
    precise_amount: Decimal | None = None
    enriched_at: datetime | None = None

    @field_validator("timestamp", "enriched_at", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any) -> datetime | None:
        if v is None or isinstance(v, datetime):
            return v
        if isinstance(v, str):
            # Try ISO format first
            try:
                return datetime.fromisoformat(v.replace("Z", "+00:00"))
            except ValueError:
                pass
        raise ValueError("Invalid timestamp format. Use ISO 8601 format.")


class EventBatchCreate(BaseModel):
    events: list[EventCreate] = Field(..., min_length=1, max_length=100)


class EventResponse(BaseModel):
    id: int
    organization_id: UUID
    transaction_id: str
    external_subscription_id: str
    code: str
    timestamp: datetime
    properties: dict[str, Any]
    precise_amount: Decimal | None
    enriched_at: datetime | None

    model_config = {"from_attributes": True}


class EventBatchResponse(BaseModel):
    ingested: int
    events: list[EventResponse]
