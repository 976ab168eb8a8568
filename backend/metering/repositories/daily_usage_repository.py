"""Daily usage snapshot repository for data access."""

import json
from datetime import date, datetime
from typing import Any, NamedTuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from metering.models.daily_usage import DailyUsage


class SnapshotGroup(NamedTuple):
    group_key: str
    state: dict[str, Any]
    events_count: int


class DailyUsageRepository:
    """Repository for DailyUsage snapshots."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, request_key: str, group_key: str, usage_date: date) -> DailyUsage | None:
        return (
            self.db.query(DailyUsage)
            .filter(
                DailyUsage.request_key == request_key,
                DailyUsage.group_key == group_key,
                DailyUsage.usage_date == usage_date,
            )
            .first()
        )

    def latest_valid(
        self, request_key: str, from_datetime: datetime, up_to: datetime
    ) -> list[DailyUsage]:
        """Snapshot rows of the most recent cutoff within ``[from_datetime, up_to]``.

        All returned rows share the same ``computed_up_to``, one per group.
        """
        latest = (
            self.db.query(func.max(DailyUsage.computed_up_to))
            .filter(
                DailyUsage.request_key == request_key,
                DailyUsage.computed_up_to >= from_datetime,
                DailyUsage.computed_up_to <= up_to,
            )
            .scalar()
        )
        if latest is None:
            return []

        return (
            self.db.query(DailyUsage)
            .filter(
                DailyUsage.request_key == request_key,
                DailyUsage.computed_up_to == latest,
            )
            .all()
        )

    def replace_day(
        self,
        *,
        request_key: str,
        request_payload: dict[str, Any],
        usage_date: date,
        from_datetime: datetime,
        to_datetime: datetime,
        computed_up_to: datetime,
        groups: list[SnapshotGroup],
    ) -> list[DailyUsage]:
        """Replace every snapshot row of a request for ``usage_date``.

        The rows of one usage date always share a single ``computed_up_to``.
        """
        self.db.query(DailyUsage).filter(
            DailyUsage.request_key == request_key,
            DailyUsage.usage_date == usage_date,
        ).delete(synchronize_session=False)

        serialized_payload = json.dumps(request_payload, sort_keys=True)
        records = [
            DailyUsage(
                organization_id=UUID(request_payload["organization_id"]),
                external_subscription_id=request_payload["external_subscription_id"],
                code=request_payload["code"],
                aggregation_type=request_payload["aggregation_type"],
                request_key=request_key,
                request_payload=serialized_payload,
                group_key=group.group_key,
                usage_date=usage_date,
                from_datetime=from_datetime,
                to_datetime=to_datetime,
                computed_up_to=computed_up_to,
                state=group.state,
                events_count=group.events_count,
            )
            for group in groups
        ]
        self.db.add_all(records)
        self.db.commit()
        for record in records:
            self.db.refresh(record)
        return records

    def invalidate_after(
        self,
        organization_id: UUID,
        external_subscription_id: str,
        code: str,
        timestamp: datetime,
    ) -> int:
        """Drop the snapshots that should have included an event at ``timestamp``."""
        deleted = (
            self.db.query(DailyUsage)
            .filter(
                DailyUsage.organization_id == organization_id,
                DailyUsage.external_subscription_id == external_subscription_id,
                DailyUsage.code == code,
                DailyUsage.computed_up_to > timestamp,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(deleted)

    def pending_request_payloads(self) -> list[dict[str, Any]]:
        """Requests whose latest snapshot does not reach the end of their period."""
        rows = (
            self.db.query(DailyUsage.request_payload)
            .group_by(DailyUsage.request_key, DailyUsage.request_payload)
            .having(func.max(DailyUsage.computed_up_to) < func.max(DailyUsage.to_datetime))
            .all()
        )
        return [json.loads(row[0]) for row in rows]

    def delete_before(self, request_key: str, usage_date: date) -> int:
        """Remove snapshots of a request older than ``usage_date``."""
        deleted = (
            self.db.query(DailyUsage)
            .filter(
                DailyUsage.request_key == request_key,
                DailyUsage.usage_date < usage_date,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(deleted)
