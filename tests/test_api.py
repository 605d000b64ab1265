from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from fakes import FakeEstimator, FakeValidator, apple_estimate, make_fake_client, record_deliveries, reasonable
from fitness_coach.aggregator import DailyAggregator
from fitness_coach.errors import InvalidModelOutput, TransportFailure
from fitness_coach.events import NUTRITION_LOW_CONFIDENCE
from fitness_coach.main import app
from fitness_coach.pipeline import NutritionPipeline
from fitness_coach.services import EstimateValidator

STATE_KEYS = ("engine", "store", "executor", "aggregator", "pipeline", "pipeline_error")


@pytest.fixture
def wire(engine, store, executor, clock):
    """Put test doubles on app.state; lifespan skips its own wiring when a store is present."""

    def _wire(estimate=None, validation=None, pipeline_error=None, validator=None):
        aggregator = DailyAggregator(store, tz=timezone.utc, clock=clock)
        aggregator.register(executor)
        app.state.engine = None
        app.state.store = store
        app.state.executor = executor
        app.state.aggregator = aggregator
        app.state.pipeline_error = pipeline_error
        if pipeline_error:
            app.state.pipeline = None
        else:
            app.state.pipeline = NutritionPipeline(
                FakeEstimator(estimate if estimate is not None else apple_estimate()),
                validator or FakeValidator(validation if validation is not None else reasonable(95)),
                store,
                executor,
            )
        return TestClient(app)

    yield _wire
    for key in STATE_KEYS:
        setattr(app.state, key, None)


def _upload(client, user_id="user-1"):
    headers = {"X-User-Id": user_id} if user_id else {}
    return client.post(
        "/nutrition/photo",
        files={"image": ("meal.jpg", b"\xff\xd8\xff-jpeg", "image/jpeg")},
        headers=headers,
    )


def test_health(wire):
    with wire() as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "photo_analysis_enabled": True}


def test_photo_requires_user(wire):
    with wire() as client:
        resp = _upload(client, user_id=None)
    assert resp.status_code == 401


def test_photo_logged_and_summary_updated(wire, executor, cached_summary):
    with wire() as client:
        resp = _upload(client)
        summary = client.get("/nutrition/summary", params={"date": "2026-10-17"}, headers={"X-User-Id": "user-1"})
        logs = client.get("/nutrition/logs", params={"date": "2026-10-17"}, headers={"X-User-Id": "user-1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["record"]["totalCalories"] == 95
    assert body["record"]["userId"] == "user-1"
    assert body["record"]["imageReference"] == "meal.jpg"
    assert body["requiresUserConfirmation"] is False
    assert body["validation"]["adjustedCalories"] == 95

    # background task drained the queue after the response
    assert executor.pending() == 0
    assert cached_summary("user-1", date(2026, 10, 17)) == (95, 1)

    assert summary.json()["totalCalories"] == 95
    assert summary.json()["entryCount"] == 1
    assert logs.json()["count"] == 1
    assert logs.json()["logs"][0]["id"] == body["record"]["id"]


def test_low_confidence_photo_needs_confirmation_and_alerts(wire, executor):
    low = record_deliveries(executor, NUTRITION_LOW_CONFIDENCE)
    with wire(estimate=apple_estimate(confidenceScore=0.65)) as client:
        resp = _upload(client)

    assert resp.json()["requiresUserConfirmation"] is True
    assert len(low) == 1


@pytest.mark.parametrize(
    "estimate, status",
    [(InvalidModelOutput("garbage"), 422), (TransportFailure("timeout"), 502)],
)
def test_analysis_errors_are_explicit(wire, store, estimate, status):
    with wire(estimate=estimate) as client:
        resp = _upload(client)

    assert resp.status_code == status
    assert "manually" in resp.json()["detail"]
    assert store.list_between(
        "user-1",
        datetime(2000, 1, 1, tzinfo=timezone.utc),
        datetime(2100, 1, 1, tzinfo=timezone.utc),
    ) == []


def test_missing_api_key_disables_photo_analysis(wire):
    with wire(pipeline_error="OPENAI_API_KEY is not set; photo analysis is disabled") as client:
        health = client.get("/health")
        resp = _upload(client)
        summary = client.get("/nutrition/summary", headers={"X-User-Id": "user-1"})

    assert health.json()["photo_analysis_enabled"] is False
    assert resp.status_code == 503
    assert "OPENAI_API_KEY" in resp.json()["detail"]
    assert summary.status_code == 200
    assert summary.json()["totalCalories"] == 0


def test_single_log_is_scoped_to_its_owner(wire):
    with wire() as client:
        log_id = _upload(client).json()["record"]["id"]
        own = client.get(f"/nutrition/logs/{log_id}", headers={"X-User-Id": "user-1"})
        other = client.get(f"/nutrition/logs/{log_id}", headers={"X-User-Id": "user-2"})

    assert own.status_code == 200
    assert own.json()["id"] == log_id
    assert own.json()["totalCalories"] == 95
    assert other.status_code == 404


def test_non_finite_validator_reply_is_rejected_and_summary_stays_usable(wire):
    client_double, _ = make_fake_client('{"isReasonable": false, "adjustedCalories": Infinity, "reasoning": "?"}')
    with wire(validator=EstimateValidator(client_double)) as client:
        resp = _upload(client)
        summary = client.get("/nutrition/summary", params={"date": "2026-10-17"}, headers={"X-User-Id": "user-1"})

    assert resp.status_code == 422
    assert summary.status_code == 200
    assert summary.json()["totalCalories"] == 0
