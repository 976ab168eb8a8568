from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from metering.core.database import get_db
from metering.models.billable_metric import BillableMetric
from metering.models.shared import DEFAULT_ORGANIZATION_ID
from metering.repositories.billable_metric_repository import BillableMetricRepository
from metering.schemas.billable_metric import BillableMetricCreate, BillableMetricResponse

router = APIRouter()


@router.get("/", response_model=list[BillableMetricResponse])
async def list_billable_metrics(
    organization_id: UUID = DEFAULT_ORGANIZATION_ID,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
) -> list[BillableMetric]:
    """List all billable metrics with pagination."""
    repo = BillableMetricRepository(db)
    return repo.get_all(organization_id, skip=skip, limit=limit)


@router.get("/{code}", response_model=BillableMetricResponse)
async def get_billable_metric(
    code: str,
    organization_id: UUID = DEFAULT_ORGANIZATION_ID,
    db: Session = Depends(get_db),
) -> BillableMetric:
    """Get a billable metric by code."""
    repo = BillableMetricRepository(db)
    metric = repo.get_by_code(code, organization_id)
    if not metric:
        raise HTTPException(status_code=404, detail="Billable metric not found")
    return metric


@router.post("/", response_model=BillableMetricResponse, status_code=201)
async def create_billable_metric(
    data: BillableMetricCreate,
    organization_id: UUID = DEFAULT_ORGANIZATION_ID,
    db: Session = Depends(get_db),
) -> BillableMetric:
    """Create a new billable metric."""
    repo = BillableMetricRepository(db)
    if repo.code_exists(data.code, organization_id):
        raise HTTPException(status_code=409, detail="Billable metric with this code already exists")
    return repo.create(data, organization_id)
