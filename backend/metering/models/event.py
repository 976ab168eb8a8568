from sqlalchemy import Column, DateTime, Index, Integer, String, func
from sqlalchemy.types import JSON

from metering.core.database import Base
from metering.models.shared import DEFAULT_ORGANIZATION_ID, ExactDecimal, UTCDateTime, UUIDType


class Event(Base):
    """A raw usage event row.

    Several rows may share a transaction_id (retries, re-enrichment). The
    integer primary key doubles as the ingestion sequence used to pick the
    most recently stored copy.
    """

    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(UUIDType, nullable=False, default=DEFAULT_ORGANIZATION_ID)
    transaction_id = Column(String(255), nullable=False, index=True)
    external_subscription_id = Column(String(255), nullable=False)
    code = Column(String(255), nullable=False)  # billable metric code
    timestamp = Column(UTCDateTime, nullable=False)
    properties = Column(JSON, nullable=False, default=dict)
    precise_amount = Column(ExactDecimal, nullable=True)
    enriched_at = Column(UTCDateTime, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_events_timestamp", "timestamp"),
        Index(
            "ix_events_org_subscription_code_timestamp",
            "organization_id",
            "external_subscription_id",
            "code",
            "timestamp",
        ),
    )
