"""Fact retriever contract and the run loop that stores retrieved facts."""

import logging
import sqlite3
from collections.abc import Awaitable, Callable, Sequence
from datetime import UTC, datetime
from typing import Protocol

from traffic_light.catalog import CatalogEntity, entity_ref_of
from traffic_light.facts import store
from traffic_light.facts.retrieval import fetch_all
from traffic_light.facts.schema import conform_to_schema
from traffic_light.models import EntityRef, Fact, FactSchema, RetrieverResult
from traffic_light.observability.metrics import RETRIEVER_RUNS_TOTAL

logger = logging.getLogger(__name__)

# Per-entity budget for a retriever, which may page through several API calls
RETRIEVER_ENTITY_TIMEOUT_SECONDS = 60.0
GITHUB_SLUG_ANNOTATION = "github.com/project-slug"


class FactRetriever(Protocol):
    """Produces facts for catalog entities from one external source.

    ``retrieve`` returns an empty list when credentials are missing or rejected
    and skips entities whose source data cannot be read.
    """

    id: str
    version: str
    schema: FactSchema

    async def retrieve(self, entities: Sequence[CatalogEntity]) -> list[RetrieverResult]: ...


def result(entity: CatalogEntity | EntityRef, facts: dict[str, object]) -> RetrieverResult:
    ref = entity if isinstance(entity, EntityRef) else entity_ref_of(entity)
    return RetrieverResult(entity=ref, facts=facts)  # type: ignore[typeddict-item]


def github_slug(entity: CatalogEntity) -> tuple[str, str] | None:
    """``(owner, repo)`` from the ``github.com/project-slug`` annotation, if valid."""
    slug = entity.get("metadata", {}).get("annotations", {}).get(GITHUB_SLUG_ANNOTATION, "")
    owner, _, repo = slug.partition("/")
    if not owner or not repo:
        if slug:
            logger.warning("Invalid GitHub project slug for %s: %r", entity_ref_of(entity), slug)
        return None
    return owner, repo


async def retrieve_each(
    retriever_id: str,
    entities: Sequence[CatalogEntity],
    fetch_facts: Callable[[CatalogEntity], Awaitable[dict[str, object] | None]],
) -> list[RetrieverResult]:
    """Fetch facts for every entity concurrently. Entities that fail or yield None are skipped."""
    by_ref = {entity_ref_of(entity): entity for entity in entities}
    facts = await fetch_all(
        list(by_ref),
        lambda ref: fetch_facts(by_ref[ref]),
        source=retriever_id,
        timeout=RETRIEVER_ENTITY_TIMEOUT_SECONDS,
    )
    return [result(ref, values) for ref, values in zip(by_ref, facts, strict=True) if values is not None]


async def run_retriever(
    retriever: FactRetriever,
    entities: Sequence[CatalogEntity],
    conn: sqlite3.Connection,
) -> int:
    """Retrieve facts for ``entities`` and store them. Returns how many facts were stored.

    Values are conformed to the retriever's schema before storage.
    """
    try:
        results = await retriever.retrieve(entities)
    except Exception:
        RETRIEVER_RUNS_TOTAL.labels(retriever_id=retriever.id, status="error").inc()
        logger.exception("Retriever %s failed", retriever.id)
        raise

    retrieved_at = datetime.now(UTC)
    facts = [
        Fact(
            retriever_id=retriever.id,
            version=retriever.version,
            entity=item["entity"],
            values=conform_to_schema(retriever.id, retriever.schema, item["facts"]),
            retrieved_at=retrieved_at,
        )
        for item in results
    ]
    stored = store.save_facts(conn, facts)
    RETRIEVER_RUNS_TOTAL.labels(retriever_id=retriever.id, status="success").inc()
    logger.info("Retriever %s stored %d of %d facts", retriever.id, stored, len(results))
    return stored
