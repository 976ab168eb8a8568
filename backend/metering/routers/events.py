import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from metering.core.database import get_db
from metering.models.event import Event
from metering.models.shared import DEFAULT_ORGANIZATION_ID
from metering.repositories.billable_metric_repository import BillableMetricRepository
from metering.repositories.event_repository import EventRepository
from metering.schemas.event import (
    EventBatchCreate,
    EventBatchResponse,
    EventCreate,
    EventResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def validate_billable_metric_codes(events: list[EventCreate], db: Session) -> None:
    """Validate that every event refers to an existing billable metric."""
    metric_repo = BillableMetricRepository(db)
    for organization_id in {e.organization_id for e in events}:
        codes = {e.code for e in events if e.organization_id == organization_id}
        missing = codes - set(metric_repo.get_by_codes(codes, organization_id))
        if missing:
            raise HTTPException(
                status_code=422,
                detail=f"Billable metric with code '{sorted(missing)[0]}' does not exist",
            )


@router.get("/", response_model=list[EventResponse])
async def list_events(
    organization_id: UUID = DEFAULT_ORGANIZATION_ID,
    external_subscription_id: str | None = None,
    code: str | None = None,
    from_timestamp: datetime | None = None,
    to_timestamp: datetime | None = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
) -> list[Event]:
    """List stored events, most recent first. Every copy of a transaction is listed."""
    repo = EventRepository(db)
    return repo.get_all(
        organization_id,
        skip=skip,
        limit=limit,
        external_subscription_id=external_subscription_id,
        code=code,
        from_timestamp=from_timestamp,
        to_timestamp=to_timestamp,
    )


@router.get(
    "/{transaction_id}",
    response_model=list[EventResponse],
    responses={404: {"description": "No event with this transaction id"}},
)
async def get_event_copies(
    transaction_id: str,
    organization_id: UUID = DEFAULT_ORGANIZATION_ID,
    db: Session = Depends(get_db),
) -> list[Event]:
    """Every stored copy of a transaction, in ingestion order."""
    repo = EventRepository(db)
    events = repo.get_by_transaction_id(transaction_id, organization_id)
    if not events:
        raise HTTPException(status_code=404, detail="Event not found")
    return events


@router.post(
    "/",
    response_model=EventResponse,
    status_code=201,
    summary="Ingest a usage event",
    responses={422: {"description": "Billable metric code does not exist"}},
)
async def create_event(data: EventCreate, db: Session = Depends(get_db)) -> Event:
    """Store a usage event.

    Events sharing a transaction_id are all kept; the copy with the latest
    enriched_at is the one aggregations see.
    """
    validate_billable_metric_codes([data], db)
    repo = EventRepository(db)
    return repo.create(data)


@router.post(
    "/batch",
    response_model=EventBatchResponse,
    status_code=201,
    summary="Ingest a batch of usage events",
    responses={422: {"description": "Billable metric code does not exist"}},
)
async def create_events_batch(data: EventBatchCreate, db: Session = Depends(get_db)) -> EventBatchResponse:
    validate_billable_metric_codes(data.events, db)
    repo = EventRepository(db)
    events = repo.create_batch(data.events)
    logger.info("Ingested %d events", len(events))
    return EventBatchResponse(
        ingested=len(events),
        events=[EventResponse.model_validate(e) for e in events],
    )
