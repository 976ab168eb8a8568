"""Row-scan event store over the SQL ``events`` table."""

from datetime import datetime

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from metering.core.errors import EventStoreUnavailable
from metering.models.event import Event
from metering.services.aggregation_request import AggregationRequest
from metering.services.event_stores.base import EventStore, fetch_window, prepare_events
from metering.services.usage_events import UsageEvent


def to_usage_event(row: Event) -> UsageEvent:
    return UsageEvent(
        organization_id=row.organization_id,
        external_subscription_id=str(row.external_subscription_id),
        code=str(row.code),
        transaction_id=str(row.transaction_id),
        timestamp=row.timestamp,
        properties=row.properties or {},
        precise_amount=row.precise_amount,
        enriched_at=row.enriched_at,
        sequence=int(row.id),
    )


class SqlEventStore(EventStore):
    def __init__(self, db: Session):
        self.db = db

    def fetch_events(
        self, request: AggregationRequest, since: datetime | None = None
    ) -> list[UsageEvent]:
        start, end = fetch_window(request, since)
        # Timestamps are stored in UTC
        query = self.db.query(Event).filter(
            Event.organization_id == request.organization_id,
            Event.external_subscription_id == request.external_subscription_id,
            Event.code == request.code,
            Event.timestamp >= start,
            Event.timestamp < end,
        )
        try:
            rows = query.order_by(Event.timestamp, Event.id).all()
        except OperationalError as exc:
            raise EventStoreUnavailable(f"Event database unavailable: {exc}") from exc

        return prepare_events((to_usage_event(row) for row in rows), request, since)
