"""Azure DevOps bug counts from a saved WIQL query per component."""

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
API_VERSION = "7.0"

ORGANIZATION_ANNOTATION = "azure.com/organization"
PROJECT_ANNOTATION = "azure.com/project"
BUGS_QUERY_ANNOTATION = "azure.com/bugs-query-id"

# Reported for components without the Azure DevOps annotations
NOT_CONFIGURED = -1


class WiqlWorkItem(TypedDict, total=False):
    id: int
    url: str


class WiqlResult(TypedDict, total=False):
    queryType: str
    workItems: list[WiqlWorkItem]


class AzureDevOpsBugsRetriever:
    id = "azure-devops-bugs-retriever"
    version = "1.1"
    schema: FactSchema = {"azure_bug_count": "integer"}

    async def retrieve(self, entities: Sequence[CatalogEntity]) -> list[RetrieverResult]:
        settings = get_settings()
        if not settings.azure_devops_token:
            logger.error("Azure DevOps token is not defined (AZURE_DEVOPS_TOKEN), skipping %s", self.id)
            return []

        async with httpx.AsyncClient(
            base_url=settings.azure_devops_url.rstrip("/"),
            auth=("", settings.azure_devops_token),
            headers={"Accept": "application/json"},
            timeout=DEFAULT_TIMEOUT_SECONDS,
        ) as client:

            async def _facts_for(entity: CatalogEntity) -> dict[str, object] | None:
                annotations = annotations_of(entity)
                organization = annotations.get(ORGANIZATION_ANNOTATION)
                project = annotations.get(PROJECT_ANNOTATION)
                query_id = annotations.get(BUGS_QUERY_ANNOTATION)
                if not organization or not project or not query_id:
                    logger.warning(
                        "Missing Azure DevOps annotations for %s", entity.get("metadata", {}).get("name")
                    )
                    return {"azure_bug_count": NOT_CONFIGURED}

                response = await client.get(
                    f"/{organization}/{project}/_apis/wit/wiql/{query_id}",
                    params={"api-version": API_VERSION},
                )
                _ = response.raise_for_status()
                data: WiqlResult = response.json()  # pyright: ignore[reportAny]
                return {"azure_bug_count": len(data.get("workItems", []))}

            return await retrieve_each(self.id, entities, _facts_for)
