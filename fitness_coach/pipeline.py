"""Photo -> estimate -> validation -> persisted nutrition log."""

import logging
import time
from typing import Optional, Protocol

from fitness_coach.config import CONFIDENCE_THRESHOLD, VALIDATION_FALLBACK
from fitness_coach.errors import InvalidModelOutput, TransportFailure
from fitness_coach.events import NUTRITION_ANALYSIS_COMPLETED, Event, EventSender
from fitness_coach.models import (
    NewNutritionLog,
    NutritionEstimate,
    PhotoLogResult,
    ValidationResult,
)
from fitness_coach.oplog import log_operation
from fitness_coach.storage import NutritionLogStore

logger = logging.getLogger(__name__)

VALIDATION_FALLBACKS = ("fail", "confirm")


class Estimator(Protocol):
    def estimate(self, image_bytes: bytes) -> NutritionEstimate: ...


class Validator(Protocol):
    def validate(self, estimate: NutritionEstimate) -> ValidationResult: ...


def requires_confirmation(confidence_score: float, threshold: float = CONFIDENCE_THRESHOLD) -> bool:
    """Confidence gate: strictly below the threshold needs the user's confirmation."""
    return confidence_score < threshold


class NutritionPipeline:
    """
    Sequential two-stage analysis of a meal photo.

    Steps:
        1) estimator.estimate(image)       -> NutritionEstimate
        2) validator.validate(estimate)    -> ValidationResult
        3) record = estimate with totalCalories := adjustedCalories
        4) store.create(record)            -> id + server timestamp
        5) events.send(nutrition/analysis.completed)

    Estimator errors always propagate. Validator errors propagate under
    validation_fallback="fail"; under "confirm" the estimate's own calories
    are kept and the record is flagged for user confirmation.
    """

    def __init__(
        self,
        estimator: Estimator,
        validator: Validator,
        store: NutritionLogStore,
        events: EventSender,
        confidence_threshold: float = CONFIDENCE_THRESHOLD,
        validation_fallback: str = VALIDATION_FALLBACK,
    ):
        if validation_fallback not in VALIDATION_FALLBACKS:
            raise ValueError(
                f"validation_fallback must be one of {VALIDATION_FALLBACKS}, got {validation_fallback!r}"
            )
        self.estimator = estimator
        self.validator = validator
        self.store = store
        self.events = events
        self.confidence_threshold = confidence_threshold
        self.validation_fallback = validation_fallback

    def _validate(self, estimate: NutritionEstimate) -> Optional[ValidationResult]:
        try:
            return self.validator.validate(estimate)
        except (InvalidModelOutput, TransportFailure) as e:
            if self.validation_fallback == "fail":
                raise
            logger.warning(
                "[PIPELINE] Validation failed (%s: %s), keeping estimate calories "
                "and requiring user confirmation",
                type(e).__name__,
                e,
            )
            return None

    def process_photo(
        self,
        image_bytes: bytes,
        user_id: str,
        image_reference: Optional[str] = None,
    ) -> PhotoLogResult:
        total_start = time.time()
        with log_operation(
            "process_photo", user_id=user_id, image_bytes=len(image_bytes or b"")
        ) as meta:
            # STEP 1: ESTIMATE
            vision_start = time.time()
            logger.info("[PIPELINE] Step 1: Starting vision estimate for user=%s", user_id)
            estimate = self.estimator.estimate(image_bytes)
            meta["estimate_ms"] = round((time.time() - vision_start) * 1000, 2)

            mismatch = estimate.totals_mismatch()
            if mismatch:
                logger.warning(
                    "[PIPELINE] Model totals disagree with item sums, keeping model totals: %s",
                    mismatch,
                )

            # STEP 2: VALIDATE
            validate_start = time.time()
            logger.info("[PIPELINE] Step 2: Starting estimate validation")
            validation = self._validate(estimate)
            meta["validate_ms"] = round((time.time() - validate_start) * 1000, 2)

            if validation is not None:
                total_calories = validation.adjusted_calories
            else:
                total_calories = estimate.total_calories

            # STEP 3: PERSIST
            persist_start = time.time()
            record = self.store.create(
                NewNutritionLog.from_estimate(
                    user_id,
                    estimate,
                    total_calories=total_calories,
                    image_reference=image_reference,
                )
            )
            meta["persist_ms"] = round((time.time() - persist_start) * 1000, 2)
            meta["log_id"] = record.id

            confirm = validation is None or requires_confirmation(
                record.confidence_score, self.confidence_threshold
            )

            # STEP 4: NOTIFY
            self.events.send(
                Event(
                    name=NUTRITION_ANALYSIS_COMPLETED,
                    data={
                        "logId": record.id,
                        "userId": user_id,
                        "confidenceScore": record.confidence_score,
                        "createdAt": record.created_at.isoformat(),
                    },
                )
            )

        logger.info(
            "[PIPELINE] Photo logged: log_id=%s totalCalories=%s confidence=%s "
            "requiresUserConfirmation=%s total_ms=%s",
            record.id,
            record.total_calories,
            record.confidence_score,
            confirm,
            round((time.time() - total_start) * 1000, 2),
        )
        return PhotoLogResult(
            record=record,
            requires_user_confirmation=confirm,
            validation=validation,
        )
