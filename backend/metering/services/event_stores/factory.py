from sqlalchemy.orm import Session

from metering.core.config import settings
from metering.services.event_stores.aggregated_store import AggregatedEventStore
from metering.services.event_stores.base import EventStore
from metering.services.event_stores.clickhouse_store import ClickhouseEventStore
from metering.services.event_stores.sql_store import SqlEventStore


def get_event_store(db: Session) -> EventStore:
    """Build the event store selected by configuration."""
    backend = settings.EVENT_STORE
    store: EventStore
    if backend == "clickhouse":
        if not settings.clickhouse_enabled:
            raise ValueError("EVENT_STORE is 'clickhouse' but CLICKHOUSE_URL is not set")
        store = ClickhouseEventStore()
    elif backend == "sql":
        store = SqlEventStore(db)
    else:
        raise ValueError(f"Unknown event store: {backend}")

    if settings.USE_PRE_AGGREGATED_USAGE:
        store = AggregatedEventStore(db, store)
    return store
