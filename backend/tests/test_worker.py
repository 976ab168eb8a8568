"""Tests for worker background tasks and cron job registration."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from metering.models.billable_metric import AggregationType
from metering.models.daily_usage import DailyUsage
from metering.worker import (
    WorkerSettings,
    aggregate_usage_task,
    refresh_daily_usage_task,
)
from tests.conftest import make_request, store_event

MARCH_10 = datetime(2024, 3, 10, tzinfo=UTC)


class TestAggregateUsageTask:
    @pytest.mark.asyncio
    async def test_ungrouped(self, db_session):
        store_event(db_session, "tx-1", MARCH_10, "1.5")
        store_event(db_session, "tx-2", MARCH_10 + timedelta(hours=1), 2)
        request = make_request(AggregationType.SUM)

        result = await aggregate_usage_task({}, request.to_payload())

        assert result["events_count"] == 2
        assert float(result["value"]) == 3.5
        assert result["total_aggregated_units"] is None

    @pytest.mark.asyncio
    async def test_grouped(self, db_session):
        store_event(db_session, "tx-1", MARCH_10, 1, {"region": "europe"})
        store_event(db_session, "tx-2", MARCH_10, 1)
        request = make_request(AggregationType.COUNT, grouped_by=("region",))

        result = await aggregate_usage_task({}, request.to_payload())

        groups = {tuple(g["grouped_by"]): g for g in result["groups"]}
        assert set(groups) == {("europe",), (None,)}
        assert groups[("europe",)]["value"] == "1"

    @pytest.mark.asyncio
    async def test_closes_session(self):
        mock_db = MagicMock()
        mock_service = MagicMock()
        mock_service.aggregate_with_count.side_effect = RuntimeError("boom")

        with (
            patch("metering.core.database.SessionLocal", return_value=mock_db),
            patch("metering.worker.UsageAggregationService", return_value=mock_service),
            pytest.raises(RuntimeError),
        ):
            await aggregate_usage_task({}, make_request().to_payload())

        mock_db.close.assert_called_once()


class TestRefreshDailyUsageTask:
    @pytest.mark.asyncio
    async def test_refresh_single_request(self):
        mock_service = MagicMock()
        mock_service.refresh_snapshot.return_value = 2
        request = make_request()

        with (
            patch("metering.core.database.SessionLocal", return_value=MagicMock()),
            patch("metering.worker.DailyUsageService", return_value=mock_service),
        ):
            result = await refresh_daily_usage_task({}, request.to_payload())

        assert result == 2
        refreshed_request = mock_service.refresh_snapshot.call_args[0][0]
        assert refreshed_request == request
        mock_service.refresh_all.assert_not_called()

    @pytest.mark.asyncio
    async def test_refresh_all(self):
        mock_service = MagicMock()
        mock_service.refresh_all.return_value = 0

        with (
            patch("metering.core.database.SessionLocal", return_value=MagicMock()),
            patch("metering.worker.DailyUsageService", return_value=mock_service),
        ):
            result = await refresh_daily_usage_task({})

        assert result == 0
        mock_service.refresh_all.assert_called_once()

    @pytest.mark.asyncio
    async def test_writes_snapshots(self, db_session):
        store_event(db_session, "tx-1", MARCH_10, 1)
        request = make_request(AggregationType.SUM)

        result = await refresh_daily_usage_task({}, request.to_payload())

        assert result == 1
        db_session.expire_all()
        assert db_session.query(DailyUsage).count() == 1


class TestWorkerSettings:
    def test_functions_registered(self):
        assert aggregate_usage_task in WorkerSettings.functions
        assert refresh_daily_usage_task in WorkerSettings.functions

    def test_daily_refresh_cron(self):
        cron_job = WorkerSettings.cron_jobs[0]
        assert cron_job.coroutine is refresh_daily_usage_task
        assert cron_job.hour == 0
        assert cron_job.minute == 0
