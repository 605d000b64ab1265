"""Utility functions."""

import json
import re

from fitness_coach.errors import InvalidModelOutput


def _reject_constant(name: str):
    # json.loads accepts NaN and Infinity; RFC 8259 does not
    raise InvalidModelOutput(f"Non-finite number {name} in model output")


def extract_json(text: str | None) -> dict:
    """
    Clean Markdown fences around the model output.
    Return the JSON object, or raise InvalidModelOutput.
    """
    if not text or not text.strip():
        raise InvalidModelOutput("Empty model output", raw_text=text)

    # Unwrap ```json ... ``` keeping the body
    text = re.sub(r"```(?:json)?\s*(.*?)```", r"\1", text, flags=re.S)

    start = text.find("{")
    end = text.rfind("}")

    if start == -1 or end == -1 or end < start:
        raise InvalidModelOutput("No JSON object detected", raw_text=text)

    try:
        parsed = json.loads(text[start:end + 1], parse_constant=_reject_constant)
    except json.JSONDecodeError as e:
        raise InvalidModelOutput(f"Invalid JSON in model output: {e}", raw_text=text) from e

    if not isinstance(parsed, dict):
        raise InvalidModelOutput("Model output is not a JSON object", raw_text=text)
    return parsed
