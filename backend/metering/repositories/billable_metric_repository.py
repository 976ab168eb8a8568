from uuid import UUID

from sqlalchemy.orm import Session

from metering.models.billable_metric import BillableMetric
from metering.schemas.billable_metric import BillableMetricCreate


class BillableMetricRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_all(self, organization_id: UUID, skip: int = 0, limit: int = 100) -> list[BillableMetric]:
        return (
            self.db.query(BillableMetric)
            .filter(BillableMetric.organization_id == organization_id)
            .order_by(BillableMetric.code)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def get_by_code(self, code: str, organization_id: UUID) -> BillableMetric | None:
        return (
            self.db.query(BillableMetric)
            .filter(
                BillableMetric.code == code,
                BillableMetric.organization_id == organization_id,
            )
            .first()
        )

    def get_by_codes(self, codes: set[str], organization_id: UUID) -> dict[str, BillableMetric]:
        if not codes:
            return {}
        metrics = (
            self.db.query(BillableMetric)
            .filter(
                BillableMetric.code.in_(codes),
                BillableMetric.organization_id == organization_id,
            )
            .all()
        )
        return {str(metric.code): metric for metric in metrics}

    def create(self, data: BillableMetricCreate, organization_id: UUID) -> BillableMetric:
        metric = BillableMetric(
            code=data.code,
            name=data.name,
            description=data.description,
            aggregation_type=data.aggregation_type.value,
            field_name=data.field_name,
            recurring=data.recurring,
            rounding_function=data.rounding_function,
            rounding_precision=data.rounding_precision,
            organization_id=organization_id,
        )
        self.db.add(metric)
        self.db.commit()
        self.db.refresh(metric)
        return metric

    def code_exists(self, code: str, organization_id: UUID) -> bool:
        """Check if a billable metric with the given code already exists."""
        return self.get_by_code(code, organization_id) is not None
