"""Dependabot alert facts from the GitHub REST API."""

import logging
from collections import Counter
from collections.abc import Sequence
from typing import TypedDict

from traffic_light.catalog import CatalogEntity
from traffic_light.config import get_settings
from traffic_light.facts.retrievers.base import github_slug, retrieve_each
from traffic_light.facts.retrievers.github import github_client, github_get_list
from traffic_light.models import FactSchema, RetrieverResult, TrafficLightColor

logger = logging.getLogger(__name__)

SEVERITIES = ("critical", "high", "medium", "low")


class DependabotAdvisory(TypedDict, total=False):
    ghsa_id: str
    severity: str
    summary: str


class DependabotAlert(TypedDict, total=False):
    number: int
    state: str
    security_advisory: DependabotAdvisory


def alert_color(severity_counts: dict[str, int]) -> TrafficLightColor:
    """Red on any critical alert, yellow on any high alert, otherwise green."""
    if severity_counts.get("critical", 0):
        return TrafficLightColor.RED
    if severity_counts.get("high", 0):
        return TrafficLightColor.YELLOW
    return TrafficLightColor.GREEN


class DependabotRetriever:
    id = "dependabotFactRetriever"
    version = "0.3.0"
    schema: FactSchema = {
        "openAlertCount": "integer",
        "criticalAlertCount": "integer",
        "highAlertCount": "integer",
        "mediumAlertCount": "integer",
        "lowAlertCount": "integer",
        "status": "string",
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
                raw = await github_get_list(client, f"/repos/{owner}/{repo}/dependabot/alerts", {"state": "open"})
                alerts: list[DependabotAlert] = raw  # type: ignore[assignment]
                open_alerts = [a for a in alerts if a.get("state", "open") == "open"]
                severities = Counter(a.get("security_advisory", {}).get("severity", "low") for a in open_alerts)
                return {
                    "openAlertCount": len(open_alerts),
                    **{f"{severity}AlertCount": severities.get(severity, 0) for severity in SEVERITIES},
                    "status": alert_color(severities).value,
                }

            return await retrieve_each(self.id, entities, _facts_for)
