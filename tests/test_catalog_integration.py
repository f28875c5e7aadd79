"""Integration tests for the catalog client with mocked HTTP responses."""

from typing import Any

import httpx
import pytest
import respx

from traffic_light import catalog
from traffic_light.errors import DataUnavailableError
from traffic_light.models import EntityRef

CATALOG = "http://catalog.test:7007/api/catalog"
PAYMENTS = EntityRef("system", "default", "payments")


@pytest.fixture(autouse=True)
def _use_mock_settings(mock_settings: Any) -> None:
    """Automatically use mock settings for all tests in this module."""


def _component(name: str, namespace: str = "default") -> dict[str, Any]:
    return {
        "apiVersion": "backstage.io/v1alpha1",
        "kind": "Component",
        "metadata": {"name": name, "namespace": namespace, "annotations": {"github.com/project-slug": f"acme/{name}"}},
        "spec": {"system": "payments"},
    }


@pytest.mark.integration
class TestGetEntity:
    @respx.mock
    async def test_found(self) -> None:
        route = respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            return_value=httpx.Response(
                200,
                json={"kind": "System", "metadata": {"name": "payments", "annotations": {"a": "b"}}},
            )
        )
        entity = await catalog.get_entity(PAYMENTS)
        assert entity is not None
        assert catalog.annotations_of(entity) == {"a": "b"}
        assert route.calls.last.request.headers["Authorization"] == "Bearer catalog-test-token"

    @respx.mock
    async def test_not_found_is_none(self) -> None:
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            return_value=httpx.Response(404, json={"error": {"name": "NotFoundError"}})
        )
        assert await catalog.get_entity(PAYMENTS) is None

    @respx.mock
    async def test_server_error_raises(self) -> None:
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            return_value=httpx.Response(500, text="Internal Server Error")
        )
        with pytest.raises(DataUnavailableError, match="500"):
            await catalog.get_entity(PAYMENTS)

    @respx.mock
    async def test_unreachable_raises(self) -> None:
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            side_effect=httpx.ConnectError("Connection refused")
        )
        with pytest.raises(DataUnavailableError, match="Cannot connect"):
            await catalog.get_entity(PAYMENTS)

    @respx.mock
    async def test_timeout_raises(self) -> None:
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            side_effect=httpx.ReadTimeout("timed out")
        )
        with pytest.raises(DataUnavailableError, match="timed out"):
            await catalog.get_entity(PAYMENTS)

    @respx.mock
    async def test_dropped_connection_raises(self) -> None:
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            side_effect=httpx.ReadError("connection reset by peer")
        )
        with pytest.raises(DataUnavailableError, match="connection reset"):
            await catalog.get_entity(PAYMENTS)

    @respx.mock
    async def test_html_body_raises(self) -> None:
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            return_value=httpx.Response(200, text="<html><body>Sign in</body></html>")
        )
        with pytest.raises(DataUnavailableError, match="invalid JSON"):
            await catalog.get_entity(PAYMENTS)


@pytest.mark.integration
class TestListEntities:
    @respx.mock
    async def test_group_components(self) -> None:
        route = respx.get(f"{CATALOG}/entities").mock(
            return_value=httpx.Response(200, json=[_component("checkout"), _component("billing", "team-b")])
        )
        refs = await catalog.list_group_components(PAYMENTS)
        assert refs == [
            EntityRef("component", "default", "checkout"),
            EntityRef("component", "team-b", "billing"),
        ]
        assert route.calls.last.request.url.params["filter"] == "kind=component,spec.system=payments"

    @respx.mock
    async def test_unexpected_payload_is_empty(self) -> None:
        respx.get(f"{CATALOG}/entities").mock(return_value=httpx.Response(200, json={"items": []}))
        assert await catalog.list_entities() == []

    def test_entity_ref_defaults(self) -> None:
        assert catalog.entity_ref_of({"metadata": {"name": "x"}}) == EntityRef("component", "default", "x")
