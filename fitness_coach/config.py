import os


def _parse_cors_origins(raw: str) -> list[str]:
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    return origins or ["*"]


OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
CORS_ORIGINS = _parse_cors_origins(os.getenv("CORS_ORIGINS", "*"))

# -----------------------------------
# Model provider
# -----------------------------------

# GPT_MODEL: vision-capable model used for the first-pass estimate
GPT_MODEL = os.getenv("GPT_MODEL", "gpt-4o")

# VALIDATOR_MODEL: text model used for the second-pass plausibility check
VALIDATOR_MODEL = os.getenv("VALIDATOR_MODEL", "gpt-4o-mini")

# Retry budget and per-request timeout handed to the OpenAI client.
OPENAI_MAX_RETRIES = int(os.getenv("OPENAI_MAX_RETRIES", "3"))
OPENAI_TIMEOUT_S = float(os.getenv("OPENAI_TIMEOUT_S", "60"))

# -----------------------------------
# Pipeline behaviour
# -----------------------------------

# Meals below this confidence must be confirmed by the user.
CONFIDENCE_THRESHOLD = float(os.getenv("CONFIDENCE_THRESHOLD", "0.7"))

# VALIDATION_FALLBACK: what happens when the validator call fails
# - "fail": the whole log attempt fails, nothing is persisted (default)
# - "confirm": keep the estimate's calories and force user confirmation
VALIDATION_FALLBACK = os.getenv("VALIDATION_FALLBACK", "fail").lower()

# USE_BACKEND_RESIZE: downscale + re-encode to JPEG before sending to the model
USE_BACKEND_RESIZE = os.getenv("USE_BACKEND_RESIZE", "true").lower() == "true"

# BACKEND_MAX_SIDE_PX: longer side of image after resize
BACKEND_MAX_SIDE_PX = int(os.getenv("BACKEND_MAX_SIDE_PX", "1024"))

# -----------------------------------
# Storage / events
# -----------------------------------

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///fitness_coach.db")

# LOCAL_TIMEZONE: IANA zone used for daily summary boundaries
LOCAL_TIMEZONE = os.getenv("LOCAL_TIMEZONE", "UTC")

# EVENT_MAX_ATTEMPTS: how many times the local step executor runs a handler
EVENT_MAX_ATTEMPTS = int(os.getenv("EVENT_MAX_ATTEMPTS", "3"))

# -----------------------------------
# Logging
# -----------------------------------

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# LOG_FILE: when set, logs are also written to a daily-rotated file
LOG_FILE = os.getenv("LOG_FILE") or None
