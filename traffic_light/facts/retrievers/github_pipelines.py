"""GitHub Actions pipeline facts for the default branch.

Two views of the same workflow runs:

- preproduction: the latest run of each workflow counts once
  (``successfulWorkflows`` / ``failedWorkflows``);
- foundation: every completed run counts
  (``successWorkflowRunsCount`` / ``failureWorkflowRunsCount``).
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import TypedDict

import httpx

from traffic_light.catalog import CatalogEntity
from traffic_light.config import get_settings
from traffic_light.facts.retrievers.base import github_slug, retrieve_each
from traffic_light.facts.retrievers.github import PER_PAGE, github_client, github_get
from traffic_light.models import FactSchema, RetrieverResult

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"
MAX_PAGES = 10


class WorkflowRun(TypedDict, total=False):
    id: int
    name: str
    workflow_id: int
    head_branch: str
    status: str
    conclusion: str | None
    created_at: str


def is_success(run: WorkflowRun) -> bool:
    return run.get("status") == "completed" and run.get("conclusion") == "success"


def is_failure(run: WorkflowRun) -> bool:
    return run.get("status") == "completed" and run.get("conclusion") == "failure"


def rate(successes: int, failures: int) -> float:
    total = successes + failures
    return round(100 * successes / total, 2) if total else 0.0


async def fetch_branch_runs(
    client: httpx.AsyncClient, owner: str, repo: str, branch: str, max_pages: int = MAX_PAGES
) -> list[WorkflowRun]:
    """All workflow runs on ``branch``, newest first, up to ``max_pages`` pages."""
    runs: list[WorkflowRun] = []
    for page in range(1, max_pages + 1):
        data = await github_get(
            client,
            f"/repos/{owner}/{repo}/actions/runs",
            {"branch": branch, "per_page": PER_PAGE, "page": page},
        )
        page_runs: list[WorkflowRun] = data.get("workflow_runs", []) if isinstance(data, dict) else []
        runs.extend(page_runs)
        if len(page_runs) < PER_PAGE:
            break
    # The branch filter is advisory on some GitHub deployments
    return [run for run in runs if run.get("head_branch", branch) == branch]


def latest_per_workflow(runs: Sequence[WorkflowRun]) -> list[WorkflowRun]:
    latest: dict[int, WorkflowRun] = {}
    for run in runs:
        workflow_id = run.get("workflow_id", 0)
        current = latest.get(workflow_id)
        if current is None or run.get("created_at", "") > current.get("created_at", ""):
            latest[workflow_id] = run
    return list(latest.values())


def preproduction_facts(runs: Sequence[WorkflowRun]) -> dict[str, object]:
    latest = latest_per_workflow(runs)
    successful = sum(1 for run in latest if is_success(run))
    failed = sum(1 for run in latest if is_failure(run))
    return {
        "totalUniqueWorkflows": len(latest),
        "successfulWorkflows": successful,
        "failedWorkflows": failed,
        "inProgressWorkflows": sum(1 for run in latest if run.get("status") != "completed"),
        "successRate": rate(successful, failed),
    }


def foundation_facts(runs: Sequence[WorkflowRun]) -> dict[str, object]:
    successes = sum(1 for run in runs if is_success(run))
    failures = sum(1 for run in runs if is_failure(run))
    return {
        "totalWorkflowRunsCount": len(runs),
        "uniqueWorkflowsCount": len({run.get("workflow_id") for run in runs}),
        "successWorkflowRunsCount": successes,
        "failureWorkflowRunsCount": failures,
        "successRate": rate(successes, failures),
    }


class _PipelineRetriever(ABC):
    id: str
    version: str
    schema: FactSchema

    def __init__(self, branch: str = DEFAULT_BRANCH) -> None:
        self.branch = branch

    @abstractmethod
    def summarize(self, runs: Sequence[WorkflowRun]) -> dict[str, object]: ...

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
                runs = await fetch_branch_runs(client, owner, repo, self.branch)
                facts = self.summarize(runs)
                logger.debug("%s %s/%s: %s", self.id, owner, repo, facts)
                return facts

            return await retrieve_each(self.id, entities, _facts_for)


class PreproductionPipelineRetriever(_PipelineRetriever):
    id = "githubPipelineStatusFactRetriever"
    version = "0.3.0"
    schema: FactSchema = {
        "totalUniqueWorkflows": "integer",
        "successfulWorkflows": "integer",
        "failedWorkflows": "integer",
        "inProgressWorkflows": "integer",
        "successRate": "float",
    }

    def summarize(self, runs: Sequence[WorkflowRun]) -> dict[str, object]:
        return preproduction_facts(runs)


class FoundationPipelineRetriever(_PipelineRetriever):
    id = "foundationPipelineStatusFactRetriever"
    version = "0.2.0"
    schema: FactSchema = {
        "totalWorkflowRunsCount": "integer",
        "uniqueWorkflowsCount": "integer",
        "successWorkflowRunsCount": "integer",
        "failureWorkflowRunsCount": "integer",
        "successRate": "float",
    }

    def summarize(self, runs: Sequence[WorkflowRun]) -> dict[str, object]:
        return foundation_facts(runs)
