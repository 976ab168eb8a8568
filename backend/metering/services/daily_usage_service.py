"""Daily usage service maintaining pre-aggregated usage snapshots."""

import json
import logging
from dataclasses import replace
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from metering.repositories.daily_usage_repository import DailyUsageRepository, SnapshotGroup
from metering.services.aggregation_request import AggregationRequest
from metering.services.aggregations.factory import get_aggregator
from metering.services.event_grouping import group_key_to_json
from metering.services.event_stores.aggregated_store import AggregatedEventStore
from metering.services.event_stores.base import EventStore
from metering.services.event_stores.factory import get_event_store
from metering.services.usage_aggregation import GroupFold, UsageAggregationService
from metering.services.usage_events import as_utc

logger = logging.getLogger(__name__)


class DailyUsageService:
    """Service for folding usage into daily snapshots and rolling them forward."""

    def __init__(self, db: Session, raw_store: EventStore | None = None):
        self.db = db
        self.repo = DailyUsageRepository(db)
        if raw_store is None:
            raw_store = get_event_store(db)
            if isinstance(raw_store, AggregatedEventStore):
                raw_store = raw_store.raw_store
        # Refreshes start from the previous snapshot and only fold the new events
        self.usage_service = UsageAggregationService(
            db, store=AggregatedEventStore(db, raw_store)
        )

    def refresh_snapshot(self, request: AggregationRequest, up_to: datetime | None = None) -> int:
        """Store the folded state of every group of ``request`` up to ``up_to``.

        Args:
            request: The aggregation to snapshot. Its max_timestamp is ignored.
            up_to: Exclusive cutoff of the snapshot. Defaults to now, and is
                clamped to the request's boundary.

        Returns:
            Number of snapshot rows written.
        """
        boundary = request.boundary
        cutoff = as_utc(up_to) if up_to is not None else datetime.now(UTC)
        cutoff = min(max(cutoff, boundary.from_datetime), boundary.to_datetime)

        bounded = replace(request, boundary=replace(boundary, max_timestamp=cutoff))
        aggregator = get_aggregator(request.aggregation_type, request.prorated)
        folds = self.usage_service.fold(bounded)
        if not request.is_grouped and () not in folds:
            folds[()] = GroupFold(state=aggregator.initial_state(request), events_count=0)

        request_key = request.cache_key()
        self.repo.replace_day(
            request_key=request_key,
            request_payload=request.to_payload(include_max_timestamp=False),
            usage_date=cutoff.date(),
            from_datetime=boundary.from_datetime,
            to_datetime=boundary.to_datetime,
            computed_up_to=cutoff,
            groups=[
                SnapshotGroup(
                    group_key=json.dumps(group_key_to_json(group)),
                    state=aggregator.dump_state(fold.state),
                    events_count=fold.events_count,
                )
                for group, fold in folds.items()
            ],
        )
        pruned = self.repo.delete_before(request_key, cutoff.date())

        logger.info(
            "Refreshed %d usage snapshot(s) for %s/%s up to %s, pruned %d",
            len(folds),
            request.external_subscription_id,
            request.code,
            cutoff.isoformat(),
            pruned,
        )
        return len(folds)

    def refresh_all(self, up_to: datetime | None = None) -> int:
        """Roll every known snapshot forward to ``up_to``.

        Requests whose snapshot already reaches the end of their period are
        not read again.

        Returns:
            Number of snapshot rows written.
        """
        cutoff = as_utc(up_to) if up_to is not None else datetime.now(UTC)
        count = 0
        for payload in self.repo.pending_request_payloads():
            try:
                request = AggregationRequest.from_payload(payload)
                count += self.refresh_snapshot(request, cutoff)
            except ValueError:
                logger.warning(
                    "Failed to refresh usage snapshot for subscription %s, metric %s",
                    payload.get("external_subscription_id"),
                    payload.get("code"),
                    exc_info=True,
                )

        if count > 0:
            logger.info("Refreshed %d usage snapshot rows up to %s", count, cutoff.isoformat())
        return count
