"""DailyUsage model for pre-aggregated usage snapshots."""

from sqlalchemy import Column, Date, DateTime, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.schema import Index
from sqlalchemy.types import JSON

from metering.core.database import Base
from metering.models.shared import UTCDateTime, UUIDType, generate_uuid


class DailyUsage(Base):
    """Folded aggregation state for one request key and group, up to a cutoff.

    ``state`` is the serialized aggregator state over the deduplicated events in
    ``[from_datetime, computed_up_to)``; the raw tail after ``computed_up_to`` is
    folded on top of it at query time. A request whose snapshot reaches
    ``to_datetime`` is complete and is no longer refreshed.
    """

    __tablename__ = "daily_usages"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    organization_id = Column(UUIDType, nullable=False)
    external_subscription_id = Column(String(255), nullable=False)
    code = Column(String(255), nullable=False)
    aggregation_type = Column(String(20), nullable=False)
    request_key = Column(String(64), nullable=False)
    request_payload = Column(Text, nullable=False)
    group_key = Column(String(1024), nullable=False, default="[]")
    usage_date = Column(Date, nullable=False)
    from_datetime = Column(UTCDateTime, nullable=False)
    to_datetime = Column(UTCDateTime, nullable=False)
    computed_up_to = Column(UTCDateTime, nullable=False)
    state = Column(JSON, nullable=False, default=dict)
    events_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            "request_key",
            "group_key",
            "usage_date",
            name="uq_daily_usage_request_group_date",
        ),
        Index(
            "ix_daily_usages_subscription_code",
            "organization_id",
            "external_subscription_id",
            "code",
        ),
    )
