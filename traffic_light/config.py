from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Software catalog (Backstage-compatible entity API)
    catalog_url: str
    catalog_token: str = ""

    # Fact store: latest fact per (retriever, entity)
    fact_store_db_path: str = "facts.db"

    # DORA metrics database (optional; empty string disables the DORA endpoints)
    dora_db_path: str = ""

    # Extra check definitions (YAML); built-in checks are always registered
    checks_file: str = ""

    # GitHub (Dependabot alerts, Actions workflow runs)
    github_url: str = "https://api.github.com"
    github_token: str = ""

    # Azure DevOps (optional; empty string means not configured)
    azure_devops_url: str = "https://dev.azure.com"
    azure_devops_token: str = ""

    # SonarCloud (optional; empty string means not configured)
    sonarcloud_url: str = "https://sonarcloud.io"
    sonarcloud_token: str = ""

    # Per-entity fan-out during aggregation
    fact_fetch_timeout_seconds: float = 10.0
    fact_fetch_concurrency: int = 8

    # Group-level threshold annotations (JSON-encoded)
    pipeline_thresholds_annotation: str = "pipeline/thresholds"
    foundation_thresholds_annotation: str = "foundation/thresholds"

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()  # type: ignore[call-arg]  # pyright: ignore[reportCallIssue]
