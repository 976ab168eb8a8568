"""Shared test fixtures for all test modules."""

import contextlib
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import metering.models  # noqa: F401
from metering.core import database as db_module
from metering.core.database import Base
from metering.models.billable_metric import AggregationType
from metering.services.aggregation_request import AggregationRequest
from metering.services.billing_boundary import BillingBoundary
from metering.services.usage_events import UsageEvent

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

# Well-known default organization ID used across all tests
DEFAULT_ORG_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")

SUBSCRIPTION_ID = "sub_123"
METRIC_CODE = "api_calls"

# March 2024 billing period, 31 days
PERIOD_START = datetime(2024, 3, 1, tzinfo=UTC)
PERIOD_END = datetime(2024, 4, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for direct repository and service testing."""
    gen = db_module.get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def default_org_id():
    """Return the default organization ID for tests."""
    return DEFAULT_ORG_ID


def make_boundary(**overrides: Any) -> BillingBoundary:
    values: dict[str, Any] = {
        "from_datetime": PERIOD_START,
        "to_datetime": PERIOD_END,
        "charges_duration": 31,
    }
    values.update(overrides)
    return BillingBoundary(**values)


def make_request(aggregation_type: AggregationType = AggregationType.COUNT, **overrides: Any) -> AggregationRequest:
    values: dict[str, Any] = {
        "organization_id": DEFAULT_ORG_ID,
        "external_subscription_id": SUBSCRIPTION_ID,
        "code": METRIC_CODE,
        "boundary": make_boundary(),
        "aggregation_type": aggregation_type,
    }
    values.update(overrides)
    return AggregationRequest(**values)


def make_event(
    transaction_id: str,
    timestamp: datetime,
    amount: Decimal | int | str | None = None,
    properties: dict[str, Any] | None = None,
    enriched_at: datetime | None = None,
    sequence: int = 0,
) -> UsageEvent:
    return UsageEvent(
        organization_id=DEFAULT_ORG_ID,
        external_subscription_id=SUBSCRIPTION_ID,
        code=METRIC_CODE,
        transaction_id=transaction_id,
        timestamp=timestamp,
        properties=properties or {},
        precise_amount=Decimal(str(amount)) if amount is not None else None,
        enriched_at=enriched_at,
        sequence=sequence,
    )


def store_event(
    db: Any,
    transaction_id: str,
    timestamp: datetime,
    amount: Decimal | int | str | None = None,
    properties: dict[str, Any] | None = None,
    enriched_at: datetime | None = None,
    external_subscription_id: str = SUBSCRIPTION_ID,
    code: str = METRIC_CODE,
) -> Any:
    """Ingest one event through the repository, as the API does."""
    from metering.repositories.event_repository import EventRepository
    from metering.schemas.event import EventCreate

    return EventRepository(db).create(
        EventCreate(
            transaction_id=transaction_id,
            external_subscription_id=external_subscription_id,
            code=code,
            timestamp=timestamp,
            properties=properties or {},
            precise_amount=Decimal(str(amount)) if amount is not None else None,
            enriched_at=enriched_at,
        )
    )
