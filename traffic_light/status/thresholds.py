"""Resolve group-level thresholds from catalog annotations."""

import json
import logging
from collections.abc import Awaitable, Callable

from pydantic import ValidationError

from traffic_light import catalog
from traffic_light.catalog import CatalogEntity
from traffic_light.errors import DataUnavailableError
from traffic_light.models import DEFAULT_THRESHOLDS, EntityRef, ThresholdConfig, parse_entity_ref

logger = logging.getLogger(__name__)

GroupLookup = Callable[[EntityRef], Awaitable[CatalogEntity | None]]


class ThresholdResolver:
    """Reads ``{"minSuccessRate": .., "maxFailures": ..}`` from a group entity annotation.

    Never raises: an unknown group, a missing or malformed annotation, values
    outside their bounds, or a failing lookup all resolve to the defaults.
    Fields missing from the annotation take their default value.
    """

    def __init__(
        self, lookup: GroupLookup = catalog.get_entity, defaults: ThresholdConfig = DEFAULT_THRESHOLDS
    ) -> None:
        self._lookup = lookup
        self._defaults = defaults

    async def resolve(self, group: EntityRef, annotation_key: str) -> ThresholdConfig:
        try:
            entity = await self._lookup(group)
        except Exception as exc:
            logger.warning("Threshold lookup for %s failed, using defaults: %s", group, exc)
            return self._defaults

        if entity is None:
            logger.warning("Group %s not found in catalog, using default thresholds", group)
            return self._defaults

        raw = catalog.annotations_of(entity).get(annotation_key)
        if raw is None:
            logger.warning("Group %s has no %s annotation, using default thresholds", group, annotation_key)
            return self._defaults

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Malformed %s annotation on %s (%s), using defaults", annotation_key, group, exc)
            return self._defaults

        if not isinstance(parsed, dict):
            logger.warning("%s annotation on %s is not a JSON object, using defaults", annotation_key, group)
            return self._defaults

        try:
            validated = ThresholdConfig.model_validate(parsed, strict=True)
        except ValidationError as exc:
            logger.warning(
                "Invalid %s annotation on %s, using defaults: %s",
                annotation_key,
                group,
                exc.errors(include_url=False),
            )
            return self._defaults

        thresholds = self._defaults.model_copy(
            update={field: getattr(validated, field) for field in validated.model_fields_set}
        )
        logger.debug("Resolved thresholds for %s: %s", group, thresholds)
        return thresholds

    async def system_annotations(self, entity: EntityRef) -> dict[str, str]:
        """Annotations of the system that owns ``entity``, or ``{}`` when it cannot be resolved.

        The system comes from the entity's ``spec.system``; a bare name is
        looked up in the entity's own namespace.
        """
        try:
            component = await self._lookup(entity)
            if component is None:
                logger.warning("Entity %s not found in catalog, no system thresholds", entity)
                return {}

            system_name = component.get("spec", {}).get("system")
            if not isinstance(system_name, str) or not system_name:
                logger.warning("Entity %s has no spec.system, no system thresholds", entity)
                return {}

            system_ref = parse_entity_ref(system_name, default_kind="system")
            if "/" not in system_name:
                system_ref = EntityRef(system_ref.kind, entity.namespace, system_ref.name)

            system = await self._lookup(system_ref)
        except (ValueError, DataUnavailableError) as exc:
            logger.warning("System lookup for %s failed: %s", entity, exc)
            return {}

        if system is None:
            logger.warning("System %s of %s not found in catalog", system_ref, entity)
            return {}
        return catalog.annotations_of(system)
