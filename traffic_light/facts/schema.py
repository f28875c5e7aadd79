"""Fact schema conformance and merging of facts across retrievers."""

import logging
from collections.abc import Iterable, Mapping

from traffic_light.models import Fact, FactFieldType, FactSchema, FactValue, FactValues

logger = logging.getLogger(__name__)


def _matches(value: object, field_type: FactFieldType) -> bool:
    if field_type == "boolean":
        return isinstance(value, bool)
    if isinstance(value, bool):
        return False
    if field_type == "integer":
        return isinstance(value, int)
    if field_type == "float":
        return isinstance(value, int | float)
    return isinstance(value, str)


def conform_to_schema(retriever_id: str, schema: FactSchema, values: Mapping[str, object]) -> FactValues:
    """Keep only fields declared in ``schema`` whose values match the declared type.

    Mismatches and undeclared fields are dropped with a warning so a single bad
    field never discards the rest of a retrieval.
    """
    conformed: FactValues = {}
    for field, value in values.items():
        field_type = schema.get(field)
        if field_type is None:
            logger.warning("%s: dropping undeclared fact field %r", retriever_id, field)
            continue
        if not _matches(value, field_type):
            logger.warning(
                "%s: dropping fact field %r (expected %s, got %r)", retriever_id, field, field_type, value
            )
            continue
        conformed[field] = value  # type: ignore[assignment]
    return conformed


def merge_fact_values(facts: Iterable[Fact]) -> dict[str, FactValue]:
    """Flatten several facts into one mapping. Later facts win on field collisions."""
    merged: dict[str, FactValue] = {}
    for fact in facts:
        for field, value in fact.values.items():
            if field in merged and merged[field] != value:
                logger.debug(
                    "Fact field %r from %s overrides an earlier value for %s",
                    field,
                    fact.retriever_id,
                    fact.entity,
                )
            merged[field] = value
    return merged
