"""SonarCloud code-quality measures and quality gate status per component."""

import logging
from collections.abc import Sequence
from typing import TypedDict

import httpx

from traffic_light.catalog import CatalogEntity, annotations_of
from traffic_light.config import get_settings
from traffic_light.facts.retrievers.base import retrieve_each
from traffic_light.models import FactSchema, RetrieverResult

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15
PROJECT_KEY_ANNOTATION = "sonarcloud.io/project-key"

# SonarCloud metric key -> fact field
MEASURES = {
    "bugs": "bugs",
    "vulnerabilities": "vulnerabilities",
    "code_smells": "code_smells",
    "security_hotspots": "security_hotspots",
    "coverage": "code_coverage",
}


class SonarMeasure(TypedDict, total=False):
    metric: str
    value: str
    bestValue: bool


class SonarComponent(TypedDict, total=False):
    key: str
    name: str
    measures: list[SonarMeasure]


def parse_measures(measures: Sequence[SonarMeasure]) -> dict[str, object]:
    """Map measures to facts; counters become ints and coverage a float. Unknown or unparsable values are skipped."""
    facts: dict[str, object] = {}
    for measure in measures:
        field = MEASURES.get(measure.get("metric", ""))
        if field is None or "value" not in measure:
            continue
        try:
            facts[field] = float(measure["value"]) if field == "code_coverage" else int(measure["value"])
        except ValueError:
            logger.warning("Unparsable SonarCloud %s value: %r", measure.get("metric"), measure["value"])
    return facts


class SonarCloudRetriever:
    id = "sonarcloud-fact-retriever"
    version = "1.1"
    schema: FactSchema = {
        "bugs": "integer",
        "vulnerabilities": "integer",
        "code_smells": "integer",
        "security_hotspots": "integer",
        "code_coverage": "float",
        "quality_gate": "string",
    }

    async def retrieve(self, entities: Sequence[CatalogEntity]) -> list[RetrieverResult]:
        settings = get_settings()
        if not settings.sonarcloud_token:
            logger.error("SonarCloud token is not defined (SONARCLOUD_TOKEN), skipping %s", self.id)
            return []

        async with httpx.AsyncClient(
            base_url=settings.sonarcloud_url.rstrip("/"),
            auth=(settings.sonarcloud_token, ""),
            timeout=DEFAULT_TIMEOUT_SECONDS,
        ) as client:

            async def _facts_for(entity: CatalogEntity) -> dict[str, object] | None:
                project_key = annotations_of(entity).get(PROJECT_KEY_ANNOTATION)
                if not project_key:
                    return None

                response = await client.get(
                    "/api/measures/component",
                    params={"component": project_key, "metricKeys": ",".join(MEASURES)},
                )
                _ = response.raise_for_status()
                component: SonarComponent = response.json().get("component", {})  # pyright: ignore[reportAny]
                facts = parse_measures(component.get("measures", []))

                gate = await client.get("/api/qualitygates/project_status", params={"projectKey": project_key})
                _ = gate.raise_for_status()
                status = gate.json().get("projectStatus", {}).get("status")  # pyright: ignore[reportAny]
                if isinstance(status, str):
                    facts["quality_gate"] = status
                return facts

            return await retrieve_each(self.id, entities, _facts_for)
