"""Pre-aggregated event store.

Reads the most recent daily snapshot valid for a request and lets the engine
fold the raw events after the snapshot's cutoff on top of it. The raw tail is
read from a row-scan store.
"""

import json
import logging
from datetime import datetime

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from metering.core.errors import EventStoreUnavailable
from metering.repositories.daily_usage_repository import DailyUsageRepository
from metering.services.aggregation_request import AggregationRequest
from metering.services.event_grouping import group_key_from_json
from metering.services.event_stores.base import EventStore, GroupSnapshot, PartialUsage
from metering.services.usage_events import UsageEvent, as_utc

logger = logging.getLogger(__name__)


class AggregatedEventStore(EventStore):
    def __init__(self, db: Session, raw_store: EventStore):
        self.db = db
        self.raw_store = raw_store
        self.repo = DailyUsageRepository(db)

    def fetch_events(
        self, request: AggregationRequest, since: datetime | None = None
    ) -> list[UsageEvent]:
        return self.raw_store.fetch_events(request, since=since)

    def fetch_partial(self, request: AggregationRequest) -> PartialUsage | None:
        boundary = request.boundary
        try:
            rows = self.repo.latest_valid(
                request.cache_key(), boundary.from_datetime, boundary.applicable_to_datetime
            )
        except OperationalError as exc:
            raise EventStoreUnavailable(f"Usage snapshots unavailable: {exc}") from exc

        if not rows:
            return None

        partial = PartialUsage(computed_up_to=as_utc(rows[0].computed_up_to))
        for row in rows:
            group = group_key_from_json(json.loads(str(row.group_key)))
            partial.groups[group] = GroupSnapshot(
                state=dict(row.state or {}), events_count=int(row.events_count)
            )

        logger.debug(
            "Using usage snapshot of %s up to %s (%d groups)",
            request.code,
            partial.computed_up_to.isoformat(),
            len(partial.groups),
        )
        return partial
