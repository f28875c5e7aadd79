"""Shared GitHub REST API helpers for the GitHub-backed retrievers."""

import logging

import httpx

from traffic_light.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15
PER_PAGE = 100


def github_headers() -> dict[str, str]:
    return {
        "Authorization": f"Bearer {get_settings().github_token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def github_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=get_settings().github_url.rstrip("/"),
        headers=github_headers(),
        timeout=DEFAULT_TIMEOUT_SECONDS,
    )


async def github_get(client: httpx.AsyncClient, path: str, params: dict[str, str | int] | None = None) -> object:
    response = await client.get(path, params=params)
    _ = response.raise_for_status()
    return response.json()  # pyright: ignore[reportAny]


async def github_get_list(
    client: httpx.AsyncClient, path: str, params: dict[str, str | int] | None = None
) -> list[dict[str, object]]:
    data = await github_get(client, path, {**(params or {}), "per_page": PER_PAGE})
    if not isinstance(data, list):
        logger.warning("Unexpected GitHub response for %s: %s", path, type(data).__name__)
        return []
    return data
