import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from metering.core.config import settings
from metering.models.event import Event
from metering.repositories.billable_metric_repository import BillableMetricRepository
from metering.repositories.daily_usage_repository import DailyUsageRepository
from metering.schemas.event import EventCreate
from metering.services.usage_events import as_utc, to_decimal

logger = logging.getLogger(__name__)


class EventRepository:
    """Append-only event storage.

    Every copy of a transaction is stored; duplicates are resolved when usage
    is aggregated. Storing an event drops the usage snapshots computed past
    its timestamp.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_all(
        self,
        organization_id: UUID,
        skip: int = 0,
        limit: int = 100,
        external_subscription_id: str | None = None,
        code: str | None = None,
        from_timestamp: datetime | None = None,
        to_timestamp: datetime | None = None,
    ) -> list[Event]:
        query = self.db.query(Event).filter(Event.organization_id == organization_id)

        if external_subscription_id:
            query = query.filter(Event.external_subscription_id == external_subscription_id)
        if code:
            query = query.filter(Event.code == code)
        if from_timestamp:
            query = query.filter(Event.timestamp >= as_utc(from_timestamp))
        if to_timestamp:
            query = query.filter(Event.timestamp < as_utc(to_timestamp))

        return query.order_by(Event.timestamp.desc(), Event.id.desc()).offset(skip).limit(limit).all()

    def get_by_transaction_id(self, transaction_id: str, organization_id: UUID) -> list[Event]:
        """Every stored copy of a transaction, in ingestion order."""
        return (
            self.db.query(Event)
            .filter(
                Event.transaction_id == transaction_id,
                Event.organization_id == organization_id,
            )
            .order_by(Event.id)
            .all()
        )

    def create(self, data: EventCreate) -> Event:
        return self.create_batch([data])[0]

    def create_batch(self, events_data: Sequence[EventCreate]) -> list[Event]:
        field_names = self._resolve_field_names(events_data)

        events: list[Event] = []
        for data in events_data:
            event = Event(
                organization_id=data.organization_id,
                transaction_id=data.transaction_id,
                external_subscription_id=data.external_subscription_id,
                code=data.code,
                timestamp=as_utc(data.timestamp),
                properties=data.properties,
                precise_amount=self._precise_amount(
                    data, field_names.get((data.organization_id, data.code))
                ),
                enriched_at=as_utc(data.enriched_at) if data.enriched_at else None,
            )
            self.db.add(event)
            events.append(event)

        self.db.commit()
        for event in events:
            self.db.refresh(event)

        self._clickhouse_insert(events)
        self._invalidate_snapshots(events)
        return events

    @staticmethod
    def _precise_amount(data: EventCreate, field_name: str | None) -> Decimal | None:
        if data.precise_amount is not None:
            return data.precise_amount
        if not field_name:
            return None
        return to_decimal(data.properties.get(field_name))

    def _resolve_field_names(
        self, events_data: Sequence[EventCreate]
    ) -> dict[tuple[UUID, str], str | None]:
        """Look up the billable metric field_name of every code in a batch."""
        metric_repo = BillableMetricRepository(self.db)
        result: dict[tuple[UUID, str], str | None] = {}
        for organization_id in {data.organization_id for data in events_data}:
            codes = {data.code for data in events_data if data.organization_id == organization_id}
            metrics = metric_repo.get_by_codes(codes, organization_id)
            for code in codes:
                metric = metrics.get(code)
                result[(organization_id, code)] = (
                    str(metric.field_name) if metric and metric.field_name else None
                )
        return result

    def _clickhouse_insert(self, events: list[Event]) -> None:
        """Dual-write stored events to ClickHouse."""
        if not settings.clickhouse_enabled:
            return

        from metering.services.event_stores.clickhouse_store import insert_events

        insert_events(events)

    def _invalidate_snapshots(self, events: list[Event]) -> None:
        earliest: dict[tuple[UUID, str, str], datetime] = {}
        for event in events:
            key = (event.organization_id, str(event.external_subscription_id), str(event.code))
            timestamp = as_utc(event.timestamp)
            if key not in earliest or timestamp < earliest[key]:
                earliest[key] = timestamp

        daily_usage_repo = DailyUsageRepository(self.db)
        for (organization_id, subscription_id, code), timestamp in earliest.items():
            deleted = daily_usage_repo.invalidate_after(
                organization_id, subscription_id, code, timestamp
            )
            if deleted:
                logger.warning(
                    "Event at %s for %s/%s invalidated %d usage snapshot(s)",
                    timestamp.isoformat(),
                    subscription_id,
                    code,
                    deleted,
                )
