from datetime import datetime, timezone

import pytest

from fakes import FakeEstimator, FakeValidator, RecordingSender, apple_estimate, make_fake_client, reasonable
from fitness_coach.errors import InvalidModelOutput, PersistenceFailure, TransportFailure
from fitness_coach.events import NUTRITION_ANALYSIS_COMPLETED
from fitness_coach.models import ValidationResult
from fitness_coach.pipeline import NutritionPipeline, requires_confirmation
from fitness_coach.services import EstimateValidator


@pytest.fixture
def sender():
    return RecordingSender()


def _pipeline(store, sender, estimate=None, validation=None, **kwargs):
    estimator = FakeEstimator(estimate if estimate is not None else apple_estimate())
    validator = FakeValidator(validation if validation is not None else reasonable(95))
    return NutritionPipeline(estimator, validator, store, sender, **kwargs)


def _all_logs(store, user_id="user-1"):
    return store.list_between(
        user_id,
        datetime(2000, 1, 1, tzinfo=timezone.utc),
        datetime(2100, 1, 1, tzinfo=timezone.utc),
    )


def test_apple_end_to_end(store, sender, clock):
    pipeline = _pipeline(store, sender)

    result = pipeline.process_photo(b"jpeg", "user-1")

    assert result.record.total_calories == 95
    assert result.requires_user_confirmation is False
    assert result.record.user_id == "user-1"
    assert result.record.created_at == clock.now
    assert [r.id for r in _all_logs(store)] == [result.record.id]

    (event,) = sender.events
    assert event.name == NUTRITION_ANALYSIS_COMPLETED
    assert event.data["logId"] == result.record.id
    assert event.data["userId"] == "user-1"
    assert event.data["confidenceScore"] == 0.85


def test_record_uses_adjusted_calories_and_estimate_macros(store, sender):
    validation = ValidationResult(is_reasonable=False, adjusted_calories=130, reasoning="big apple")
    pipeline = _pipeline(store, sender, validation=validation)

    result = pipeline.process_photo(b"jpeg", "user-1", image_reference="meal.jpg")

    record = result.record
    assert record.total_calories == 130
    assert record.total_protein == 0.5
    assert record.total_carbs == 25
    assert record.total_fat == 0.3
    assert record.total_fiber == 4.4
    assert record.confidence_score == 0.85
    assert record.analysis_notes == "Single whole apple"
    assert record.image_reference == "meal.jpg"
    assert record.food_items[0].calories == 95
    assert result.validation == validation


@pytest.mark.parametrize(
    "score, expected",
    [(0.0, True), (0.65, True), (0.6999, True), (0.7, False), (0.85, False), (1.0, False)],
)
def test_confidence_gate(store, sender, score, expected):
    pipeline = _pipeline(store, sender, estimate=apple_estimate(confidenceScore=score))
    assert pipeline.process_photo(b"jpeg", "user-1").requires_user_confirmation is expected
    assert requires_confirmation(score) is expected


def test_malformed_estimate_never_reaches_persistence(store, sender):
    pipeline = _pipeline(store, sender, estimate=InvalidModelOutput("not json"))

    with pytest.raises(InvalidModelOutput):
        pipeline.process_photo(b"jpeg", "user-1")

    assert pipeline.validator.calls == 0
    assert _all_logs(store) == []
    assert sender.events == []


def test_non_finite_adjusted_calories_never_reach_persistence(store, sender):
    client, _ = make_fake_client('{"isReasonable": false, "adjustedCalories": Infinity, "reasoning": "?"}')
    pipeline = NutritionPipeline(FakeEstimator(apple_estimate()), EstimateValidator(client), store, sender)

    with pytest.raises(InvalidModelOutput):
        pipeline.process_photo(b"jpeg", "user-1")

    assert _all_logs(store) == []
    assert sender.events == []


def test_transport_failure_propagates(store, sender):
    pipeline = _pipeline(store, sender, estimate=TransportFailure("timeout"))
    with pytest.raises(TransportFailure):
        pipeline.process_photo(b"jpeg", "user-1")
    assert _all_logs(store) == []


@pytest.mark.parametrize("error", [InvalidModelOutput("bad"), TransportFailure("down")])
def test_validator_failure_fails_the_log_by_default(store, sender, error):
    pipeline = _pipeline(store, sender, validation=error, validation_fallback="fail")

    with pytest.raises(type(error)):
        pipeline.process_photo(b"jpeg", "user-1")

    assert _all_logs(store) == []
    assert sender.events == []


def test_validator_failure_with_confirm_fallback(store, sender):
    pipeline = _pipeline(
        store,
        sender,
        estimate=apple_estimate(confidenceScore=0.95),
        validation=TransportFailure("down"),
        validation_fallback="confirm",
    )

    result = pipeline.process_photo(b"jpeg", "user-1")

    assert result.validation is None
    assert result.record.total_calories == 95
    assert result.requires_user_confirmation is True
    assert len(_all_logs(store)) == 1


class FailingStore:
    def create(self, new_log):
        raise PersistenceFailure("database unavailable")


def test_persistence_failure_is_explicit_and_emits_nothing(sender):
    pipeline = _pipeline(FailingStore(), sender)

    with pytest.raises(PersistenceFailure):
        pipeline.process_photo(b"jpeg", "user-1")

    assert sender.events == []


def test_mismatched_totals_are_kept_as_reported(store, sender, caplog):
    estimate = apple_estimate(totalCalories=300)

    with caplog.at_level("WARNING", logger="fitness_coach.pipeline"):
        result = _pipeline(store, sender, estimate=estimate, validation=reasonable(300)).process_photo(
            b"jpeg", "user-1"
        )

    assert result.record.total_calories == 300
    assert "disagree with item sums" in caplog.text


def test_unknown_fallback_is_rejected(store, sender):
    with pytest.raises(ValueError):
        _pipeline(store, sender, validation_fallback="ignore")
