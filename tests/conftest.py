"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from traffic_light.config import Settings, get_settings


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit real services (requires .env with valid credentials)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so tests that forget mock_settings fail locally, not just in CI.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    Tests that use mock_settings bypass Settings() entirely, so this is transparent.
    Tests that forget mock_settings will hit a validation error on required fields.
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings(tmp_path: Path) -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    Databases live in the test's tmp_path.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            "catalog_url": "http://catalog.test:7007",
            "catalog_token": "catalog-test-token",
            "fact_store_db_path": str(tmp_path / "facts.db"),
            "dora_db_path": str(tmp_path / "dora.db"),
            "checks_file": "",
            "github_url": "https://github.test",
            "github_token": "ghp_test_fake",
            "azure_devops_url": "https://azure.test",
            "azure_devops_token": "azure-test-pat",
            "sonarcloud_url": "https://sonar.test",
            "sonarcloud_token": "sonar-test-token",
            "fact_fetch_timeout_seconds": 2.0,
            "fact_fetch_concurrency": 4,
            "pipeline_thresholds_annotation": "pipeline/thresholds",
            "foundation_thresholds_annotation": "foundation/thresholds",
        },
    )()
    with (
        patch("traffic_light.config.get_settings", return_value=fake_settings),
        patch("traffic_light.catalog.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.store.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.retrieval.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.retrievers.github.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.retrievers.dependabot.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.retrievers.github_security.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.retrievers.github_pipelines.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.retrievers.reporting_pipelines.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.retrievers.azure_devops.get_settings", return_value=fake_settings),
        patch("traffic_light.facts.retrievers.sonarcloud.get_settings", return_value=fake_settings),
        patch("traffic_light.dora.source.get_settings", return_value=fake_settings),
        patch("traffic_light.rules.loader.get_settings", return_value=fake_settings),
        patch("traffic_light.status.signals.get_settings", return_value=fake_settings),
        patch("traffic_light.api.main.get_settings", return_value=fake_settings),
    ):
        yield fake_settings
