"""Success rates of the GitHub Actions workflows a component reports on.

The ``reporting/workflows`` annotation holds a JSON list of workflow names.
When it is absent, unreadable, or names no workflow of the repository, every
workflow counts. ``workflowMetrics`` is stored as a JSON-encoded list of
per-workflow ``{workflowName, totalRuns, successfulRuns, successRate}``.
"""

import json
import logging
from collections.abc import Sequence
from typing import TypedDict

import httpx

from traffic_light.catalog import CatalogEntity, annotations_of, entity_ref_of
from traffic_light.config import get_settings
from traffic_light.facts.retrievers.base import github_slug, retrieve_each
from traffic_light.facts.retrievers.github import PER_PAGE, github_client, github_get
from traffic_light.facts.retrievers.github_pipelines import (
    DEFAULT_BRANCH,
    WorkflowRun,
    fetch_branch_runs,
    is_success,
    rate,
)
from traffic_light.models import FactSchema, RetrieverResult

logger = logging.getLogger(__name__)

REPORTING_WORKFLOWS_ANNOTATION = "reporting/workflows"
REPORTING_MAX_PAGES = 30


class WorkflowDefinition(TypedDict, total=False):
    id: int
    name: str
    path: str


class WorkflowMetrics(TypedDict):
    workflowName: str
    totalRuns: int
    successfulRuns: int
    successRate: float


def reporting_workflow_names(entity: CatalogEntity) -> list[str]:
    raw = annotations_of(entity).get(REPORTING_WORKFLOWS_ANNOTATION)
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("Malformed %s annotation on %s: %s", REPORTING_WORKFLOWS_ANNOTATION, entity_ref_of(entity), exc)
        return []
    if not isinstance(parsed, list):
        logger.warning("%s annotation on %s is not a list", REPORTING_WORKFLOWS_ANNOTATION, entity_ref_of(entity))
        return []
    return [name for name in parsed if isinstance(name, str)]


def included_workflow_ids(definitions: Sequence[WorkflowDefinition], names: Sequence[str]) -> set[int]:
    """Ids of the named workflows, or of every workflow when none of the names match."""
    by_name = {d["name"]: d["id"] for d in definitions if "name" in d and "id" in d}
    selected = {by_name[name] for name in names if name in by_name}
    return selected or {d["id"] for d in definitions if "id" in d}


def reporting_facts(
    runs: Sequence[WorkflowRun], definitions: Sequence[WorkflowDefinition], names: Sequence[str]
) -> dict[str, object]:
    included = included_workflow_ids(definitions, names)
    names_by_id = {d["id"]: d.get("name", "") for d in definitions if "id" in d}

    by_workflow: dict[int, list[WorkflowRun]] = {}
    for run in runs:
        workflow_id = run.get("workflow_id")
        if workflow_id in included:
            by_workflow.setdefault(workflow_id, []).append(run)

    metrics: list[WorkflowMetrics] = []
    for workflow_id, workflow_runs in by_workflow.items():
        successful = sum(1 for run in workflow_runs if is_success(run))
        metrics.append(
            WorkflowMetrics(
                workflowName=names_by_id.get(workflow_id) or f"Workflow ID {workflow_id}",
                totalRuns=len(workflow_runs),
                successfulRuns=successful,
                # Every run counts toward the total, including cancelled and in-progress ones
                successRate=rate(successful, len(workflow_runs) - successful),
            )
        )

    total = sum(m["totalRuns"] for m in metrics)
    successful_total = sum(m["successfulRuns"] for m in metrics)
    return {
        "workflowMetrics": json.dumps(metrics),
        "totalIncludedWorkflows": len(metrics),
        "overallSuccessRate": rate(successful_total, total - successful_total),
    }


async def fetch_workflow_definitions(client: httpx.AsyncClient, owner: str, repo: str) -> list[WorkflowDefinition]:
    try:
        data = await github_get(client, f"/repos/{owner}/{repo}/actions/workflows", {"per_page": PER_PAGE})
    except httpx.HTTPStatusError as exc:
        logger.warning("Could not list workflows for %s/%s: HTTP %d", owner, repo, exc.response.status_code)
        return []
    return data.get("workflows", []) if isinstance(data, dict) else []


class ReportingPipelineRetriever:
    id = "reportingPipelineStatusFactRetriever"
    version = "0.1.0"
    schema: FactSchema = {
        "workflowMetrics": "string",
        "totalIncludedWorkflows": "integer",
        "overallSuccessRate": "float",
    }

    def __init__(self, branch: str = DEFAULT_BRANCH) -> None:
        self.branch = branch

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
                definitions = await fetch_workflow_definitions(client, owner, repo)
                runs = await fetch_branch_runs(client, owner, repo, self.branch, max_pages=REPORTING_MAX_PAGES)
                facts = reporting_facts(runs, definitions, reporting_workflow_names(entity))
                logger.debug("%s %s/%s: %s", self.id, owner, repo, facts)
                return facts

            return await retrieve_each(self.id, entities, _facts_for)
