"""ClickHouse client module for enriched event storage."""

import logging
from urllib.parse import urlparse

import clickhouse_connect
from clickhouse_connect.driver import Client

from metering.core.config import settings

logger = logging.getLogger(__name__)

_client: Client | None = None
_initialized: bool = False

EVENTS_ENRICHED_TABLE = "events_enriched"

# Duplicated rows are kept: deduplication on transaction_id happens at query time.
CREATE_EVENTS_ENRICHED_TABLE = f"""
CREATE TABLE IF NOT EXISTS {EVENTS_ENRICHED_TABLE} (
    organization_id String,
    external_subscription_id String,
    code String,
    transaction_id String,
    timestamp DateTime64(3, 'UTC'),
    properties String,
    precise_amount Nullable(Decimal(38, 26)),
    enriched_at Nullable(DateTime64(6, 'UTC')),
    created_at DateTime64(6, 'UTC') DEFAULT now64(6)
)
ENGINE = MergeTree
PRIMARY KEY (organization_id, code, external_subscription_id, toDate(timestamp))
ORDER BY (
    organization_id, code, external_subscription_id,
    toDate(timestamp), timestamp, transaction_id
)
SETTINGS index_granularity = 8192
"""


def _parse_clickhouse_url(url: str) -> dict[str, object]:
    """Parse a ClickHouse URL into connection parameters."""
    parsed = urlparse(url)
    return {
        "host": parsed.hostname or "localhost",
        "port": parsed.port or 8123,
        "username": parsed.username or "default",
        "password": parsed.password or "",
        "database": (parsed.path or "/default").lstrip("/") or "default",
    }


def get_clickhouse_client() -> Client | None:
    """Get or create a ClickHouse client singleton.

    Returns None when CLICKHOUSE_URL is not configured.
    """
    global _client, _initialized

    if not settings.clickhouse_enabled:
        return None

    if _client is not None:
        return _client

    params = _parse_clickhouse_url(settings.CLICKHOUSE_URL)
    _client = clickhouse_connect.get_client(**params)  # type: ignore[arg-type]

    if not _initialized:
        _client.command(CREATE_EVENTS_ENRICHED_TABLE)
        _initialized = True
        logger.info("ClickHouse %s table ensured", EVENTS_ENRICHED_TABLE)

    return _client


def reset_client() -> None:
    """Reset the cached client. Used for testing."""
    global _client, _initialized
    _client = None
    _initialized = False
