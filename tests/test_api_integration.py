"""Integration tests for the FastAPI backend.

Uses TestClient with temporary SQLite stores and mocked catalog calls, no real services needed.
"""

import logging
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import pytest
import respx
import yaml
from fastapi.testclient import TestClient

from traffic_light.dora import source
from traffic_light.errors import DuplicateCheckError
from traffic_light.facts import store
from traffic_light.models import EntityRef, Fact

CATALOG = "http://catalog.test:7007/api/catalog"
CHECKOUT = EntityRef("component", "default", "checkout")
BILLING = EntityRef("component", "default", "billing")

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client(mock_settings: object) -> Generator[TestClient]:  # noqa: ARG001
    """TestClient with the lifespan run against mock settings."""
    from traffic_light.api.main import app

    with TestClient(app) as tc:
        yield tc


def _save_facts(mock_settings: Any, retriever_id: str, facts: dict[EntityRef, dict[str, Any]]) -> None:
    conn = store.get_connection(mock_settings.fact_store_db_path)
    try:
        for entity, values in facts.items():
            store.save_fact(conn, Fact(retriever_id=retriever_id, version="0.1.0", entity=entity, values=values))
    finally:
        conn.close()


def _mock_group_components() -> None:
    respx.get(f"{CATALOG}/entities").mock(
        return_value=httpx.Response(
            200,
            json=[
                {"kind": "Component", "metadata": {"name": "checkout", "namespace": "default"}},
                {"kind": "Component", "metadata": {"name": "billing", "namespace": "default"}},
            ],
        )
    )


@pytest.fixture
def dora_data(mock_settings: Any) -> None:
    conn = source.get_connection(mock_settings.dora_db_path)
    try:
        source.record_deployment(conn, project="payments", deployed_at=datetime(2023, 6, 5, tzinfo=UTC))
        source.record_deployment(conn, project="payments", deployed_at=datetime(2023, 6, 6, tzinfo=UTC), failed=True)
        source.record_deployment(conn, project="payments", deployed_at=datetime(2023, 5, 2, tzinfo=UTC))
        source.record_deployment(conn, project="search", deployed_at=datetime(2023, 6, 7, tzinfo=UTC))
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# GET /checks
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestChecksEndpoint:
    def test_lists_registered_checks(self, client: TestClient) -> None:
        resp = client.get("/checks")
        assert resp.status_code == 200
        body = resp.json()
        assert body[0]["id"] == "dependabotLowAlertCheck"
        assert body[0]["factIds"] == ["dependabotFactRetriever"]
        assert body[0]["rule"]["conditions"]["all"][0]["operator"] == "lessThan"


# ---------------------------------------------------------------------------
# GET /checks/{group_name}
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestGroupStatusEndpoint:
    @respx.mock
    def test_dependabot_red(self, client: TestClient, mock_settings: Any) -> None:
        _mock_group_components()
        _save_facts(
            mock_settings,
            "dependabotFactRetriever",
            {CHECKOUT: {"status": "red"}, BILLING: {"status": "green"}},
        )

        resp = client.get("/checks/payments")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "red"
        assert body["sample_count"] == 2
        assert "1 of 2" in body["reason"]

    @respx.mock
    def test_preproduction_uses_group_thresholds(self, client: TestClient, mock_settings: Any) -> None:
        _mock_group_components()
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            return_value=httpx.Response(
                200,
                json={
                    "kind": "System",
                    "metadata": {
                        "name": "payments",
                        "annotations": {"pipeline/thresholds": '{"minSuccessRate": 80, "maxFailures": 5}'},
                    },
                },
            )
        )
        _save_facts(
            mock_settings,
            "githubPipelineStatusFactRetriever",
            {
                CHECKOUT: {"successfulWorkflows": 5, "failedWorkflows": 1},
                BILLING: {"successfulWorkflows": 4, "failedWorkflows": 0},
            },
        )

        resp = client.get("/checks/payments", params={"signal": "preproduction"})
        body = resp.json()
        assert body["status"] == "green"
        assert body["sample_count"] == 2

    @respx.mock
    def test_foundation_without_facts_is_gray(self, client: TestClient) -> None:
        _mock_group_components()
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(return_value=httpx.Response(404))

        body = client.get("/checks/payments", params={"signal": "foundation"}).json()
        assert body == {"status": "gray", "reason": "no valid facts available", "sample_count": 0}

    @respx.mock
    def test_catalog_down_yields_no_components(self, client: TestClient) -> None:
        respx.get(f"{CATALOG}/entities").mock(side_effect=httpx.ConnectError("Connection refused"))

        resp = client.get("/checks/payments")
        assert resp.status_code == 200
        assert resp.json()["status"] == "white"

    @respx.mock
    def test_catalog_read_error_yields_no_components(self, client: TestClient) -> None:
        respx.get(f"{CATALOG}/entities").mock(side_effect=httpx.ReadError("connection reset by peer"))

        resp = client.get("/checks/payments")
        assert resp.status_code == 200
        assert resp.json()["status"] == "white"

    @respx.mock
    def test_catalog_html_page_yields_no_components(self, client: TestClient) -> None:
        respx.get(f"{CATALOG}/entities").mock(
            return_value=httpx.Response(200, text="<html><body>Sign in</body></html>")
        )

        resp = client.get("/checks/payments")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "white"
        assert body["sample_count"] == 0

    def test_unknown_signal_is_400(self, client: TestClient) -> None:
        resp = client.get("/checks/payments", params={"signal": "weather"})
        assert resp.status_code == 400
        assert "signal" in resp.json()["error"]


# ---------------------------------------------------------------------------
# GET /entities/{kind}/{namespace}/{name}/checks
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestEntityChecksEndpoint:
    def test_runs_requested_check(self, client: TestClient, mock_settings: Any) -> None:
        _save_facts(mock_settings, "dependabotFactRetriever", {CHECKOUT: {"openAlertCount": 2}})

        resp = client.get(
            "/entities/component/default/checkout/checks", params={"check_id": "dependabotLowAlertCheck"}
        )
        assert resp.status_code == 200
        [result] = resp.json()
        assert result["check_id"] == "dependabotLowAlertCheck"
        assert result["entity"] == "component:default/checkout"
        assert result["passed"] is True
        assert result["trace"]["children"][0]["fact_value"] == 2

    def test_runs_all_checks_by_default(self, client: TestClient) -> None:
        resp = client.get("/entities/component/default/checkout/checks")
        assert resp.status_code == 200
        results = resp.json()
        assert len(results) == len(client.get("/checks").json())
        assert not any(r["passed"] for r in results)

    def test_unknown_check_is_404(self, client: TestClient) -> None:
        resp = client.get("/entities/component/default/checkout/checks", params={"check_id": "nope"})
        assert resp.status_code == 404
        assert "nope" in resp.json()["error"]


# ---------------------------------------------------------------------------
# Dynamic threshold checks
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestDynamicChecksEndpoint:
    def test_lists_dynamic_checks(self, client: TestClient) -> None:
        body = client.get("/dynamic-checks").json()
        ids = [check["id"] for check in body]
        assert "sonarcloud-code-coverage" in ids
        coverage = body[ids.index("sonarcloud-code-coverage")]
        assert coverage["factIds"] == ["sonarcloud-fact-retriever", "code_coverage"]
        assert coverage["annotationKeyThreshold"] == "tech-insights.io/sonarcloud-code-coverage-threshold"

    @respx.mock
    def test_threshold_from_system_annotation(self, client: TestClient, mock_settings: Any) -> None:
        respx.get(f"{CATALOG}/entities/by-name/component/default/checkout").mock(
            return_value=httpx.Response(
                200,
                json={"kind": "Component", "metadata": {"name": "checkout"}, "spec": {"system": "payments"}},
            )
        )
        respx.get(f"{CATALOG}/entities/by-name/system/default/payments").mock(
            return_value=httpx.Response(
                200,
                json={
                    "kind": "System",
                    "metadata": {
                        "name": "payments",
                        "annotations": {
                            "tech-insights.io/sonarcloud-code-coverage-threshold": "75",
                            "tech-insights.io/sonarcloud-code-coverage-operator": "greaterThanInclusive",
                        },
                    },
                },
            )
        )
        _save_facts(mock_settings, "sonarcloud-fact-retriever", {CHECKOUT: {"code_coverage": 81.5}})

        resp = client.get(
            "/entities/component/default/checkout/dynamic-checks", params={"check_id": "sonarcloud-code-coverage"}
        )
        assert resp.status_code == 200
        [result] = resp.json()
        assert result["passed"] is True
        assert result["trace"]["children"][0]["value"] == 75

    @respx.mock
    def test_catalog_down_fails_checks(self, client: TestClient) -> None:
        respx.get(f"{CATALOG}/entities/by-name/component/default/checkout").mock(
            side_effect=httpx.ReadError("connection reset by peer")
        )

        resp = client.get("/entities/component/default/checkout/dynamic-checks")
        assert resp.status_code == 200
        results = resp.json()
        assert len(results) == len(client.get("/dynamic-checks").json())
        assert not any(r["passed"] for r in results)

    def test_unknown_check_is_404(self, client: TestClient) -> None:
        resp = client.get("/entities/component/default/checkout/dynamic-checks", params={"check_id": "nope"})
        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# GET /metrics/{kind}/{granularity}
# ---------------------------------------------------------------------------


@pytest.mark.integration
@pytest.mark.usefixtures("dora_data")
class TestMetricEndpoint:
    def test_monthly_change_failure_rate(self, client: TestClient) -> None:
        resp = client.get(
            "/metrics/changeFailureRate/monthly",
            params={"from": "2023-01-01T00:00:00Z", "to": "2023-12-31T00:00:00Z", "group": "payments"},
        )
        assert resp.status_code == 200
        assert resp.json() == [{"key": "2023/05", "value": 0.0}, {"key": "2023/06", "value": 0.5}]

    def test_unsupported_pair_is_500(self, client: TestClient) -> None:
        resp = client.get(
            "/metrics/deploymentFrequency/weekly",
            params={"from": "2023-01-01T00:00:00Z", "to": "2023-12-31T00:00:00Z"},
        )
        assert resp.status_code == 500
        assert resp.json() == {"error": "No weekly aggregation available for metric 'deploymentFrequency'"}

    def test_inverted_window_is_400(self, client: TestClient) -> None:
        resp = client.get(
            "/metrics/changeFailureRate/monthly",
            params={"from": "2023-12-31T00:00:00Z", "to": "2023-01-01T00:00:00Z"},
        )
        assert resp.status_code == 400
        assert "after" in resp.json()["error"]

    def test_unknown_kind_is_400(self, client: TestClient) -> None:
        resp = client.get("/metrics/uptime/monthly", params={"from": "2023-01-01", "to": "2023-02-01"})
        assert resp.status_code == 400

    def test_missing_window_is_400(self, client: TestClient) -> None:
        resp = client.get("/metrics/changeFailureRate/monthly")
        assert resp.status_code == 400

    def test_list_groups(self, client: TestClient) -> None:
        assert client.get("/groups").json() == ["payments", "search"]


@pytest.mark.integration
class TestMetricsNotConfigured:
    def test_empty_dora_path_is_500(self, mock_settings: Any) -> None:
        mock_settings.dora_db_path = ""
        from traffic_light.api.main import app

        with TestClient(app) as tc:
            resp = tc.get("/groups")
        assert resp.status_code == 500
        assert "not configured" in resp.json()["error"]


@pytest.mark.integration
class TestStartup:
    def test_duplicate_check_aborts_startup_with_log(
        self, mock_settings: Any, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        checks_file = tmp_path / "checks.yaml"
        checks_file.write_text(
            yaml.safe_dump(
                {
                    "checks": [
                        {
                            "id": "dependabotLowAlertCheck",
                            "name": "Redefined",
                            "factIds": ["dependabotFactRetriever"],
                            "rule": {"all": [{"fact": "openAlertCount", "operator": "equal", "value": 0}]},
                        }
                    ]
                }
            )
        )
        mock_settings.checks_file = str(checks_file)
        from traffic_light.api.main import app

        with caplog.at_level(logging.ERROR), pytest.raises(DuplicateCheckError), TestClient(app):
            pass
        assert "Failed to load check definitions" in caplog.text


# ---------------------------------------------------------------------------
# GET /health and /metrics
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestHealthEndpoint:
    @respx.mock
    def test_all_healthy(self, client: TestClient) -> None:
        respx.get("http://catalog.test:7007/healthcheck").mock(return_value=httpx.Response(200, json={"status": "ok"}))

        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["checks_registered"] == 5
        assert [c["name"] for c in body["components"]] == ["catalog", "fact_store", "dora_db"]

    @respx.mock
    def test_catalog_unreachable(self, client: TestClient) -> None:
        respx.get("http://catalog.test:7007/healthcheck").mock(side_effect=httpx.ConnectError("connection refused"))

        body = client.get("/health").json()
        assert body["status"] == "degraded"
        catalog = next(c for c in body["components"] if c["name"] == "catalog")
        assert catalog["status"] == "unhealthy"
        assert "connection refused" in catalog["detail"]


@pytest.mark.integration
class TestPrometheusEndpoint:
    def test_exposition_format(self, client: TestClient) -> None:
        client.get("/entities/component/default/checkout/checks")
        resp = client.get("/metrics")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert "traffic_light_check_evaluations_total" in resp.text
        assert "traffic_light_requests_total" in resp.text
