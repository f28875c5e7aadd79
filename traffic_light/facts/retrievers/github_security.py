"""GitHub Advanced Security facts: open code scanning and secret scanning alerts."""

import logging
from collections.abc import Sequence

import httpx

from traffic_light.catalog import CatalogEntity
from traffic_light.config import get_settings
from traffic_light.facts.retrievers.base import github_slug, retrieve_each
from traffic_light.facts.retrievers.github import github_client, github_get_list
from traffic_light.models import FactSchema, RetrieverResult

logger = logging.getLogger(__name__)


class GitHubSecurityRetriever:
    id = "githubAdvancedSecurityFactRetriever"
    version = "0.2.0"
    schema: FactSchema = {
        "openCodeScanningAlertCount": "integer",
        "openSecretScanningAlertCount": "integer",
    }

    async def retrieve(self, entities: Sequence[CatalogEntity]) -> list[RetrieverResult]:
        if not get_settings().github_token:
            logger.error("Missing GitHub token (GITHUB_TOKEN), skipping %s", self.id)
            return []

        async with github_client() as client:

            async def _facts_for(entity: CatalogEntity) -> dict[str, object] | None:
                slug = github_slug(entity)
                if slug is None:
                    return None
                owner, repo = slug
                try:
                    code_alerts = await github_get_list(
                        client, f"/repos/{owner}/{repo}/code-scanning/alerts", {"state": "open"}
                    )
                    secret_alerts = await github_get_list(
                        client, f"/repos/{owner}/{repo}/secret-scanning/alerts", {"state": "open"}
                    )
                except httpx.HTTPStatusError as exc:
                    # Advanced Security disabled or not visible to this token
                    if exc.response.status_code in (403, 404):
                        logger.warning(
                            "Security data not accessible for %s/%s (status %d), skipping",
                            owner,
                            repo,
                            exc.response.status_code,
                        )
                        return None
                    raise
                return {
                    "openCodeScanningAlertCount": len(code_alerts),
                    "openSecretScanningAlertCount": len(secret_alerts),
                }

            return await retrieve_each(self.id, entities, _facts_for)
