"""Exception hierarchy for the health aggregation engine.

Configuration errors propagate to the caller. Data-unavailable errors never
leave the retrieval boundary; they are converted to "no data" there.
Registry errors are typed, caller-visible failures.
"""


class TrafficLightError(Exception):
    """Base exception for all engine errors."""


# --- Configuration ---


class ConfigurationError(TrafficLightError):
    """A check definition or request is misconfigured."""


class InvalidRuleError(ConfigurationError):
    """A rule uses an unknown operator or has an invalid shape."""


class UnsupportedAggregationError(ConfigurationError):
    """No query backs the requested (metric kind, granularity) pair."""

    def __init__(self, kind: str, granularity: str) -> None:
        super().__init__(f"No {granularity} aggregation available for metric '{kind}'")
        self.kind = kind
        self.granularity = granularity


# --- Data availability ---


class DataUnavailableError(TrafficLightError):
    """An external source could not provide data (missing entity, timeout, auth)."""


# --- Registry ---


class RegistryError(TrafficLightError):
    """Base for check registry failures."""


class DuplicateCheckError(RegistryError):
    def __init__(self, check_id: str) -> None:
        super().__init__(f"Check with id '{check_id}' has already been registered")
        self.check_id = check_id


class NotFoundError(RegistryError):
    """Lookup of a check id that is not registered."""
