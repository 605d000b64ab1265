"""Services for OpenAI interactions: first-pass estimate and second-pass validation."""

import json
import logging
from typing import Any, Dict, List

import openai
from openai import OpenAI
from pydantic import ValidationError

from fitness_coach.config import GPT_MODEL, VALIDATOR_MODEL
from fitness_coach.errors import InvalidModelOutput, TransportFailure
from fitness_coach.image_preprocess import prepare_image, to_data_url
from fitness_coach.models import NutritionEstimate, ValidationResult
from fitness_coach.oplog import log_operation
from fitness_coach.prompts import VALIDATION_PROMPT, VISION_PROMPT
from fitness_coach.utils import extract_json

logger = logging.getLogger(__name__)


def _complete_json(
    client: OpenAI,
    *,
    model: str,
    messages: List[Dict[str, Any]],
    max_tokens: int,
    operation: str,
) -> Dict[str, Any]:
    """One JSON-mode chat completion. Provider errors become TransportFailure."""
    with log_operation(operation, model=model) as meta:
        try:
            response = client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=0.1,
                response_format={"type": "json_object"},
            )
        except openai.APIError as e:
            raise TransportFailure(f"{operation} request to {model} failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        text = choices[0].message.content if choices else None
        meta["response_chars"] = len(text or "")
        logger.debug("%s raw response: %s", operation, text)
        try:
            return extract_json(text)
        except InvalidModelOutput:
            logger.error(
                "Failed to parse %s response as JSON: %s",
                operation,
                (text or "")[:500],
            )
            raise


class VisionEstimator:
    """
    First pass: photo -> NutritionEstimate via a vision-capable model.

    The client is injected; build it with create_openai_client().
    """

    def __init__(self, client: OpenAI, model: str = GPT_MODEL, max_side_px: int | None = None):
        self.client = client
        self.model = model
        self.max_side_px = max_side_px

    def estimate(self, image_bytes: bytes) -> NutritionEstimate:
        if not image_bytes:
            raise ValueError("Image is empty")

        prepared, timings = prepare_image(image_bytes, self.max_side_px)
        logger.info(
            "Sending %.1fkb image to model=%s (resize_applied=%s, resize_ms=%s)",
            len(prepared) / 1024,
            self.model,
            timings["resize_applied"],
            timings["resize_ms"],
        )

        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": VISION_PROMPT},
                    {
                        "type": "image_url",
                        "image_url": {"url": to_data_url(prepared), "detail": "high"},
                    },
                ],
            }
        ]
        parsed = _complete_json(
            self.client,
            model=self.model,
            messages=messages,
            max_tokens=1000,
            operation="vision_estimate",
        )

        try:
            estimate = NutritionEstimate.model_validate(parsed)
        except ValidationError as e:
            raise InvalidModelOutput(
                f"Vision response does not match the estimate schema: {e}",
                raw_text=json.dumps(parsed)[:500],
            ) from e

        logger.info(
            "Vision estimate: totalCalories=%s confidenceScore=%s foodItemCount=%s",
            estimate.total_calories,
            estimate.confidence_score,
            len(estimate.food_items),
        )
        return estimate


class EstimateValidator:
    """Second pass: independent text-only critique of the calorie total."""

    def __init__(self, client: OpenAI, model: str = VALIDATOR_MODEL):
        self.client = client
        self.model = model

    def validate(self, estimate: NutritionEstimate) -> ValidationResult:
        estimate_json = json.dumps(
            estimate.model_dump(by_alias=True), ensure_ascii=False, indent=2
        )
        messages = [
            {
                "role": "user",
                "content": VALIDATION_PROMPT.replace("{estimate_json}", estimate_json),
            }
        ]
        parsed = _complete_json(
            self.client,
            model=self.model,
            messages=messages,
            max_tokens=300,
            operation="estimate_validation",
        )

        try:
            result = ValidationResult.model_validate(parsed)
        except ValidationError as e:
            raise InvalidModelOutput(
                f"Validator response does not match the validation schema: {e}",
                raw_text=json.dumps(parsed)[:500],
            ) from e

        logger.info(
            "Validation: isReasonable=%s originalCalories=%s adjustedCalories=%s",
            result.is_reasonable,
            estimate.total_calories,
            result.adjusted_calories,
        )
        return result
