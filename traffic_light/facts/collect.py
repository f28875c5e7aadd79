"""Run the configured fact retrievers once over catalog components."""

import logging
from collections.abc import Sequence

from traffic_light import catalog
from traffic_light.errors import DataUnavailableError
from traffic_light.facts import store
from traffic_light.facts.retrievers.azure_devops import AzureDevOpsBugsRetriever
from traffic_light.facts.retrievers.base import FactRetriever, run_retriever
from traffic_light.facts.retrievers.dependabot import DependabotRetriever
from traffic_light.facts.retrievers.github_pipelines import (
    FoundationPipelineRetriever,
    PreproductionPipelineRetriever,
)
from traffic_light.facts.retrievers.github_security import GitHubSecurityRetriever
from traffic_light.facts.retrievers.reporting_pipelines import ReportingPipelineRetriever
from traffic_light.facts.retrievers.sonarcloud import SonarCloudRetriever

logger = logging.getLogger(__name__)


def default_retrievers() -> list[FactRetriever]:
    return [
        DependabotRetriever(),
        GitHubSecurityRetriever(),
        PreproductionPipelineRetriever(),
        FoundationPipelineRetriever(),
        ReportingPipelineRetriever(),
        AzureDevOpsBugsRetriever(),
        SonarCloudRetriever(),
    ]


async def collect_facts(
    retriever_ids: Sequence[str] | None = None,
    db_path: str | None = None,
    retrievers: Sequence[FactRetriever] | None = None,
) -> dict[str, int]:
    """Run retrievers against all catalog components and store their facts.

    A failing retriever is logged and does not stop the others.

    Returns:
        Stored fact count per retriever id (-1 for a retriever that failed).

    Raises:
        ValueError: If a requested retriever id is unknown.
        DataUnavailableError: If the catalog cannot be read.
    """
    available = list(retrievers) if retrievers is not None else default_retrievers()
    if retriever_ids:
        known = {r.id for r in available}
        unknown = [rid for rid in retriever_ids if rid not in known]
        if unknown:
            msg = f"Unknown retriever ids: {', '.join(unknown)}. Available: {', '.join(sorted(known))}"
            raise ValueError(msg)
        available = [r for r in available if r.id in retriever_ids]

    entities = await catalog.list_entities("component")
    logger.info("Collecting facts for %d components with %d retrievers", len(entities), len(available))

    counts: dict[str, int] = {}
    conn = store.get_connection(db_path)
    try:
        for retriever in available:
            try:
                counts[retriever.id] = await run_retriever(retriever, entities, conn)
            except (DataUnavailableError, OSError, ValueError) as exc:
                logger.warning("Retriever %s did not complete: %s", retriever.id, exc)
                counts[retriever.id] = -1
    finally:
        conn.close()
    return counts
