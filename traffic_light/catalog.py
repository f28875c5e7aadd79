"""Client for a Backstage-compatible software catalog entity API."""

import logging
from typing import TypedDict

import httpx

from traffic_light.config import get_settings
from traffic_light.errors import DataUnavailableError
from traffic_light.models import DEFAULT_NAMESPACE, EntityRef

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15


# --- Catalog response types ---


class CatalogEntityMetadata(TypedDict, total=False):
    name: str
    namespace: str
    title: str
    annotations: dict[str, str]


class CatalogEntity(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: CatalogEntityMetadata
    spec: dict[str, object]


# --- HTTP helpers ---


def _catalog_headers() -> dict[str, str]:
    headers = {"Accept": "application/json"}
    token = get_settings().catalog_token
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def _catalog_get(path: str, params: dict[str, str] | None = None) -> object:
    url = f"{get_settings().catalog_url.rstrip('/')}/api/catalog{path}"
    try:
        async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as client:
            response = await client.get(url, headers=_catalog_headers(), params=params)
            _ = response.raise_for_status()
            return response.json()  # pyright: ignore[reportAny]
    except httpx.HTTPStatusError as exc:
        if exc.response.status_code == 404:
            return None
        msg = f"Catalog returned {exc.response.status_code} for {path}"
        raise DataUnavailableError(msg) from exc
    except httpx.ConnectError as exc:
        msg = f"Cannot connect to catalog at {url}"
        raise DataUnavailableError(msg) from exc
    except httpx.TimeoutException as exc:
        msg = f"Catalog request timed out: {path}"
        raise DataUnavailableError(msg) from exc
    except httpx.HTTPError as exc:
        msg = f"Catalog request failed for {path}: {exc}"
        raise DataUnavailableError(msg) from exc
    except ValueError as exc:
        msg = f"Catalog returned invalid JSON for {path}"
        raise DataUnavailableError(msg) from exc


def entity_ref_of(entity: CatalogEntity) -> EntityRef:
    metadata = entity.get("metadata", {})
    return EntityRef(
        kind=entity.get("kind", "component").lower(),
        namespace=metadata.get("namespace", DEFAULT_NAMESPACE),
        name=metadata.get("name", ""),
    )


def annotations_of(entity: CatalogEntity) -> dict[str, str]:
    return entity.get("metadata", {}).get("annotations", {})


# --- Public API ---


async def get_entity(ref: EntityRef) -> CatalogEntity | None:
    """Fetch one entity by reference. Returns None if the catalog does not know it.

    Raises:
        DataUnavailableError: If the catalog is unreachable or answers with an error.
    """
    data = await _catalog_get(f"/entities/by-name/{ref.kind}/{ref.namespace}/{ref.name}")
    if not isinstance(data, dict):
        return None
    entity: CatalogEntity = data  # type: ignore[assignment]
    return entity


async def list_entities(kind: str = "component", **spec_filters: str) -> list[CatalogEntity]:
    """List entities of ``kind``, optionally filtered on spec fields (e.g. ``system="payments"``)."""
    filters = [f"kind={kind}", *(f"spec.{key}={value}" for key, value in spec_filters.items())]
    data = await _catalog_get("/entities", params={"filter": ",".join(filters)})
    if not isinstance(data, list):
        return []
    entities: list[CatalogEntity] = data  # type: ignore[assignment]
    return entities


async def list_group_components(group: EntityRef) -> list[EntityRef]:
    """Component refs belonging to a system group."""
    entities = await list_entities("component", system=group.name)
    refs = [entity_ref_of(entity) for entity in entities]
    logger.debug("Group %s has %d components", group, len(refs))
    return refs
