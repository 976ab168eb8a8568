"""Row-scan event store over the ClickHouse ``events_enriched`` table.

Events are written to ClickHouse alongside the SQL database at ingestion. The
table keeps every copy of a transaction; duplicates are resolved at read time
by the same deduplication the SQL store uses.
"""

import json
import logging
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from clickhouse_connect.driver.exceptions import ClickHouseError

from metering.core.clickhouse import EVENTS_ENRICHED_TABLE, get_clickhouse_client
from metering.core.errors import EventStoreUnavailable
from metering.models.event import Event
from metering.services.aggregation_request import AggregationRequest
from metering.services.event_stores.base import EventStore, fetch_window, prepare_events
from metering.services.usage_events import UsageEvent, as_utc

logger = logging.getLogger(__name__)

COLUMNS = [
    "organization_id",
    "external_subscription_id",
    "code",
    "transaction_id",
    "timestamp",
    "properties",
    "precise_amount",
    "enriched_at",
]

_SELECT_EVENTS = (
    "SELECT organization_id, external_subscription_id, code, transaction_id,"
    " timestamp, properties, precise_amount, enriched_at"
    f" FROM {EVENTS_ENRICHED_TABLE}"
    " WHERE organization_id = {org_id:String}"
    " AND external_subscription_id = {sub_id:String}"
    " AND code = {code:String}"
    " AND timestamp >= {from_ts:DateTime64(3)}"
    " AND timestamp < {to_ts:DateTime64(3)}"
    " ORDER BY timestamp ASC, created_at ASC"
)


def _build_row(event: Event) -> list[object]:
    """Build a ClickHouse row from a stored event."""
    return [
        str(event.organization_id),
        event.external_subscription_id,
        event.code,
        event.transaction_id,
        as_utc(event.timestamp),
        json.dumps(event.properties or {}),
        event.precise_amount,
        as_utc(event.enriched_at) if event.enriched_at else None,
    ]


def insert_events(events: Sequence[Event]) -> None:
    """Write stored events to ClickHouse.

    Failures are logged and swallowed: the SQL database remains the system of
    record and ingestion must not fail because the analytics copy is down.
    """
    client = get_clickhouse_client()
    if client is None or not events:
        return

    rows = [_build_row(event) for event in events]
    try:
        client.insert(EVENTS_ENRICHED_TABLE, rows, column_names=COLUMNS)
    except ClickHouseError:
        logger.exception("Failed to insert %d events into ClickHouse", len(rows))


def _parse_row(row: Sequence[object], sequence: int) -> UsageEvent:
    organization_id, subscription_id, code, transaction_id = row[0:4]
    timestamp, properties, precise_amount, enriched_at = row[4:8]
    return UsageEvent(
        organization_id=UUID(str(organization_id)),
        external_subscription_id=str(subscription_id),
        code=str(code),
        transaction_id=str(transaction_id),
        timestamp=timestamp,  # type: ignore[arg-type]
        properties=json.loads(str(properties)) if properties else {},
        precise_amount=Decimal(str(precise_amount)) if precise_amount is not None else None,
        enriched_at=enriched_at,  # type: ignore[arg-type]
        sequence=sequence,
    )


class ClickhouseEventStore(EventStore):
    def fetch_events(
        self, request: AggregationRequest, since: datetime | None = None
    ) -> list[UsageEvent]:
        client = get_clickhouse_client()
        if client is None:
            raise EventStoreUnavailable("ClickHouse is not configured")

        start, end = fetch_window(request, since)
        params = {
            "org_id": str(request.organization_id),
            "sub_id": request.external_subscription_id,
            "code": request.code,
            "from_ts": start,
            "to_ts": end,
        }
        try:
            result = client.query(_SELECT_EVENTS, parameters=params)
        except ClickHouseError as exc:
            raise EventStoreUnavailable(f"ClickHouse query failed: {exc}") from exc

        # Rows come back in insertion order within a timestamp
        events = [_parse_row(row, index) for index, row in enumerate(result.result_rows)]
        return prepare_events(events, request, since)
