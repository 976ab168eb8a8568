"""API tests for billable metrics, events and usage."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from metering.core.errors import EventStoreUnavailable
from metering.main import app
from tests.conftest import DEFAULT_ORG_ID, METRIC_CODE, PERIOD_END, PERIOD_START, SUBSCRIPTION_ID

BOUNDARY = {
    "from_datetime": PERIOD_START.isoformat(),
    "to_datetime": PERIOD_END.isoformat(),
    "charges_duration": 31,
}


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def sum_metric(client):
    response = client.post(
        "/v1/billable_metrics/",
        json={
            "code": METRIC_CODE,
            "name": "API Calls",
            "aggregation_type": "sum",
            "field_name": "calls",
        },
    )
    assert response.status_code == 201
    return response.json()


def _event(transaction_id, day, calls, **properties):
    return {
        "transaction_id": transaction_id,
        "external_subscription_id": SUBSCRIPTION_ID,
        "code": METRIC_CODE,
        "timestamp": f"2024-03-{day:02d}T10:00:00Z",
        "properties": {"calls": calls, **properties},
    }


class TestRoot:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert "version" in data

    def test_startup_creates_tables(self):
        with TestClient(app) as client:
            assert client.get("/v1/billable_metrics/").status_code == 200


class TestBillableMetricsApi:
    def test_create_and_get(self, client, sum_metric):
        assert sum_metric["organization_id"] == str(DEFAULT_ORG_ID)
        assert sum_metric["aggregation_type"] == "sum"

        response = client.get(f"/v1/billable_metrics/{METRIC_CODE}")
        assert response.status_code == 200
        assert response.json()["field_name"] == "calls"

    def test_list(self, client, sum_metric):
        response = client.get("/v1/billable_metrics/")
        assert response.status_code == 200
        assert [m["code"] for m in response.json()] == [METRIC_CODE]

    def test_not_found(self, client):
        assert client.get("/v1/billable_metrics/missing").status_code == 404

    def test_duplicate_code(self, client, sum_metric):
        response = client.post(
            "/v1/billable_metrics/",
            json={"code": METRIC_CODE, "name": "Again", "aggregation_type": "count"},
        )
        assert response.status_code == 409

    def test_recurring_count_is_rejected(self, client):
        response = client.post(
            "/v1/billable_metrics/",
            json={"code": "logins", "name": "Logins", "aggregation_type": "count", "recurring": True},
        )
        assert response.status_code == 422

    def test_field_name_required(self, client):
        response = client.post(
            "/v1/billable_metrics/",
            json={"code": "storage", "name": "Storage", "aggregation_type": "max"},
        )
        assert response.status_code == 422


class TestEventsApi:
    def test_create_event_extracts_amount(self, client, sum_metric):
        response = client.post("/v1/events/", json=_event("tx-1", 5, 3))

        assert response.status_code == 201
        data = response.json()
        assert data["transaction_id"] == "tx-1"
        assert Decimal(data["precise_amount"]) == Decimal(3)

    def test_unknown_metric(self, client):
        response = client.post("/v1/events/", json=_event("tx-1", 5, 3))

        assert response.status_code == 422
        assert "does not exist" in response.json()["detail"]

    def test_invalid_timestamp(self, client, sum_metric):
        event = _event("tx-1", 5, 3)
        event["timestamp"] = "yesterday"
        assert client.post("/v1/events/", json=event).status_code == 422

    def test_duplicates_are_stored(self, client, sum_metric):
        client.post("/v1/events/", json=_event("tx-1", 5, 3))
        client.post("/v1/events/", json=_event("tx-1", 5, 4))

        response = client.get("/v1/events/", params={"external_subscription_id": SUBSCRIPTION_ID})

        assert response.status_code == 200
        assert len(response.json()) == 2

    def test_get_copies_of_a_transaction(self, client, sum_metric):
        client.post("/v1/events/", json=_event("tx-1", 5, 3))
        client.post("/v1/events/", json=_event("tx-1", 5, 4))

        response = client.get("/v1/events/tx-1")

        assert response.status_code == 200
        assert [Decimal(e["precise_amount"]) for e in response.json()] == [Decimal(3), Decimal(4)]

    def test_get_unknown_transaction(self, client):
        assert client.get("/v1/events/missing").status_code == 404

    def test_batch(self, client, sum_metric):
        response = client.post(
            "/v1/events/batch",
            json={"events": [_event("tx-1", 5, 3), _event("tx-2", 6, 4)]},
        )

        assert response.status_code == 201
        assert response.json()["ingested"] == 2

    def test_batch_with_unknown_metric(self, client, sum_metric):
        unknown = _event("tx-2", 6, 4)
        unknown["code"] = "storage"

        response = client.post("/v1/events/batch", json={"events": [_event("tx-1", 5, 3), unknown]})

        assert response.status_code == 422
        assert client.get("/v1/events/").json() == []

    def test_list_filters_by_window(self, client, sum_metric):
        client.post("/v1/events/", json=_event("tx-1", 5, 3))
        client.post("/v1/events/", json=_event("tx-2", 20, 3))

        response = client.get(
            "/v1/events/",
            params={
                "from_timestamp": "2024-03-10T00:00:00Z",
                "to_timestamp": "2024-03-25T00:00:00Z",
            },
        )

        assert [e["transaction_id"] for e in response.json()] == ["tx-2"]


class TestUsageApi:
    @pytest.fixture
    def events(self, client, sum_metric):
        response = client.post(
            "/v1/events/batch",
            json={
                "events": [
                    _event("tx-1", 5, 1),
                    _event("tx-2", 6, 2),
                    _event("tx-3", 7, 3),
                    _event("tx-4", 8, 4, region="europe"),
                    _event("tx-5", 9, 5, region="europe"),
                ]
            },
        )
        assert response.status_code == 201

    def _aggregate(self, client, **body):
        payload = {
            "external_subscription_id": SUBSCRIPTION_ID,
            "code": METRIC_CODE,
            "boundary": BOUNDARY,
            **body,
        }
        return client.post("/v1/usage/aggregate", json=payload)

    def test_defaults_to_metric_configuration(self, client, events):
        response = self._aggregate(client)

        assert response.status_code == 200
        data = response.json()
        assert data["aggregation_type"] == "sum"
        assert Decimal(data["value"]) == Decimal(15)
        assert data["events_count"] == 5
        assert data["groups"] is None

    def test_override_aggregation_type(self, client, events):
        response = self._aggregate(client, aggregation_type="max")

        assert Decimal(response.json()["value"]) == Decimal(5)

    def test_grouped(self, client, events):
        response = self._aggregate(client, grouped_by=["region"])

        assert response.status_code == 200
        data = response.json()
        groups = {g["grouped_by"]["region"]: Decimal(g["value"]) for g in data["groups"]}
        assert groups == {"europe": Decimal(9), None: Decimal(6)}
        assert data["events_count"] == 5

    def test_max_timestamp(self, client, events):
        boundary = {**BOUNDARY, "max_timestamp": "2024-03-07T10:00:00Z"}

        response = self._aggregate(client, boundary=boundary)

        assert Decimal(response.json()["value"]) == Decimal(3)

    def test_rounding(self, client, events):
        response = self._aggregate(
            client, prorated=True, rounding_function="round", rounding_precision=2
        )

        assert response.status_code == 200
        # (1*27 + 2*26 + 3*25 + 4*24 + 5*23) / 31
        assert Decimal(response.json()["value"]) == Decimal("11.77")

    def test_weighted_sum_with_group_initial_values(self, client, events):
        response = self._aggregate(
            client,
            aggregation_type="weighted_sum",
            grouped_by=["region"],
            initial_values=[{"grouped_by": {"region": "us"}, "value": "7"}],
        )

        assert response.status_code == 200
        groups = {g["grouped_by"]["region"]: g for g in response.json()["groups"]}
        assert set(groups) == {"europe", "us", None}
        assert Decimal(groups["us"]["value"]) == Decimal(7)
        assert groups["us"]["events_count"] == 0

    def test_initial_values_with_unknown_key(self, client, events):
        response = self._aggregate(
            client,
            aggregation_type="weighted_sum",
            grouped_by=["region"],
            initial_values=[{"grouped_by": {"plan": "pro"}, "value": "7"}],
        )

        assert response.status_code == 422

    def test_unknown_metric_without_type(self, client):
        response = client.post(
            "/v1/usage/aggregate",
            json={"external_subscription_id": SUBSCRIPTION_ID, "code": "storage", "boundary": BOUNDARY},
        )
        assert response.status_code == 422

    def test_unknown_metric_with_type(self, client):
        response = client.post(
            "/v1/usage/aggregate",
            json={
                "external_subscription_id": SUBSCRIPTION_ID,
                "code": "storage",
                "boundary": BOUNDARY,
                "aggregation_type": "count",
            },
        )
        assert response.status_code == 200
        assert Decimal(response.json()["value"]) == Decimal(0)

    def test_inverted_boundary(self, client, sum_metric):
        boundary = {**BOUNDARY, "from_datetime": BOUNDARY["to_datetime"]}
        assert self._aggregate(client, boundary=boundary).status_code == 422

    def test_unknown_timezone(self, client, sum_metric):
        boundary = {**BOUNDARY, "timezone": "Mars/Olympus"}
        assert self._aggregate(client, boundary=boundary).status_code == 422

    def test_unique_count_requires_field(self, client):
        response = client.post(
            "/v1/usage/aggregate",
            json={
                "external_subscription_id": SUBSCRIPTION_ID,
                "code": "seats",
                "boundary": BOUNDARY,
                "aggregation_type": "unique_count",
            },
        )
        assert response.status_code == 422

    def test_store_unavailable(self, client, sum_metric):
        mock_service = MagicMock()
        mock_service.aggregate_with_count.side_effect = EventStoreUnavailable("down")

        with patch("metering.routers.usage.UsageAggregationService", return_value=mock_service):
            response = self._aggregate(client)

        assert response.status_code == 503


class TestChargeFilterMatchApi:
    FILTERS = [
        {"id": "europe", "values": {"region": ["europe"]}},
        {"id": "europe-pro", "values": {"region": ["europe"], "plan": ["pro"]}},
    ]

    def test_most_specific_filter(self, client):
        response = client.post(
            "/v1/usage/charge_filters/match",
            json={
                "properties": {"region": "europe", "plan": "pro", "seats": 3},
                "filters": self.FILTERS,
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["filter"]["id"] == "europe-pro"
        assert data["matching_filters"] == {"region": "europe", "plan": "pro"}
        assert data["ignored_filters"] == {"seats": "3"}

    def test_no_filter_matches(self, client):
        response = client.post(
            "/v1/usage/charge_filters/match",
            json={"properties": {"region": "us"}, "filters": self.FILTERS},
        )

        data = response.json()
        assert data["filter"] is None
        assert data["ignored_filters"] == {"region": "us"}

    def test_ambiguous_match(self, client):
        response = client.post(
            "/v1/usage/charge_filters/match",
            json={
                "properties": {"region": "europe", "plan": "pro"},
                "filters": [
                    {"id": "a", "values": {"region": ["europe"]}},
                    {"id": "b", "values": {"plan": ["pro"]}},
                ],
            },
        )

        assert response.status_code == 422
