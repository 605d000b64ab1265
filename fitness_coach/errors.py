"""Error taxonomy for the nutrition pipeline."""


class FitnessCoachError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(FitnessCoachError, RuntimeError):
    """Required configuration (e.g. OPENAI_API_KEY) is missing or invalid."""


class TransportFailure(FitnessCoachError):
    """The model provider could not be reached or rejected the request.

    Raised after the provider client's own retry budget is exhausted.
    """


class InvalidModelOutput(FitnessCoachError, ValueError):
    """The model replied, but not with the expected JSON structure."""

    def __init__(self, message: str, raw_text: str | None = None):
        super().__init__(message)
        self.raw_text = raw_text


class PersistenceFailure(FitnessCoachError):
    """The store was unavailable or rejected a read/write."""


class EventDeliveryFailure(FitnessCoachError):
    """A handler kept failing after the executor's retry budget."""

    def __init__(self, message: str, failures: list | None = None):
        super().__init__(message)
        self.failures = failures or []
