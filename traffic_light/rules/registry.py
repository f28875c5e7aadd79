"""In-process registry of check definitions, keyed by check id."""

import logging
from collections.abc import Iterable, Sequence
from typing import Generic, TypeVar

from traffic_light.errors import DuplicateCheckError, NotFoundError
from traffic_light.rules.conditions import Check, DynamicThresholdCheck

logger = logging.getLogger(__name__)

CheckT = TypeVar("CheckT", Check, DynamicThresholdCheck)


class CheckRegistry(Generic[CheckT]):
    """Maps check ids to immutable check definitions.

    Populated once at startup and read concurrently afterwards; ids are never
    overwritten.
    """

    def __init__(self, checks: Iterable[CheckT] = ()) -> None:
        self._checks: dict[str, CheckT] = {}
        for check in checks:
            self.register(check)

    def register(self, check: CheckT) -> CheckT:
        if check.id in self._checks:
            raise DuplicateCheckError(check.id)
        self._checks[check.id] = check
        logger.debug("Registered check %s (facts: %s)", check.id, ", ".join(check.fact_ids))
        return check

    def get(self, check_id: str) -> CheckT:
        try:
            return self._checks[check_id]
        except KeyError:
            msg = f"Check with id '{check_id}' is not registered"
            raise NotFoundError(msg) from None

    def get_all(self, check_ids: Sequence[str]) -> list[CheckT]:
        """Resolve ids in the given order. Fails on the first unknown id."""
        return [self.get(check_id) for check_id in check_ids]

    def __contains__(self, check_id: object) -> bool:
        return check_id in self._checks

    def __len__(self) -> int:
        return len(self._checks)

    def list(self) -> list[CheckT]:
        """All registered checks in registration order."""
        return list(self._checks.values())
