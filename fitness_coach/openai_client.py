import logging

from openai import OpenAI

from fitness_coach.config import OPENAI_MAX_RETRIES, OPENAI_TIMEOUT_S
from fitness_coach.errors import ConfigurationError

logger = logging.getLogger(__name__)


def create_openai_client(
    api_key: str | None,
    max_retries: int = OPENAI_MAX_RETRIES,
    timeout: float = OPENAI_TIMEOUT_S,
) -> OpenAI:
    """Build a client for the caller to own and inject; fails without a key."""
    if not api_key:
        raise ConfigurationError(
            "OPENAI_API_KEY is not set; photo analysis is disabled"
        )
    logger.info(
        "Initializing OpenAI client (max_retries=%s, timeout=%ss)",
        max_retries,
        timeout,
    )
    return OpenAI(api_key=api_key, max_retries=max_retries, timeout=timeout)
