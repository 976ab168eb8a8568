from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, UniqueConstraint, func

from metering.core.database import Base
from metering.models.shared import DEFAULT_ORGANIZATION_ID, UUIDType, generate_uuid


class AggregationType(str, Enum):
    COUNT = "count"
    SUM = "sum"
    MAX = "max"
    UNIQUE_COUNT = "unique_count"
    WEIGHTED_SUM = "weighted_sum"
    LATEST = "latest"


class BillableMetric(Base):
    __tablename__ = "billable_metrics"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    organization_id = Column(
        UUIDType, nullable=False, index=True, default=DEFAULT_ORGANIZATION_ID
    )
    code = Column(String(255), index=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    aggregation_type = Column(String(20), nullable=False)
    field_name = Column(String(255), nullable=True)  # For SUM, MAX, UNIQUE_COUNT, ...
    recurring = Column(Boolean, nullable=False, default=False)
    rounding_function = Column(String(10), nullable=True)  # "round", "ceil", "floor"
    rounding_precision = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_billable_metrics_org_code"),
    )
