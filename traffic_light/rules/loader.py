"""Load and validate check definitions from built-in defaults and YAML files."""

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from traffic_light.config import get_settings
from traffic_light.errors import ConfigurationError, InvalidRuleError
from traffic_light.rules.conditions import Check, DynamicThresholdCheck
from traffic_light.rules.evaluator import validate_rule
from traffic_light.rules.registry import CheckRegistry

logger = logging.getLogger(__name__)

DEFAULT_CHECK_DEFINITIONS: list[dict[str, Any]] = [
    {
        "id": "dependabotLowAlertCheck",
        "name": "Dependabot Alerts Below Threshold",
        "description": "Checks if Dependabot alerts are below 5",
        "factIds": ["dependabotFactRetriever"],
        "rule": {"conditions": {"all": [{"fact": "openAlertCount", "operator": "lessThan", "value": 5}]}},
    },
    {
        "id": "dependabotNoCriticalAlertsCheck",
        "name": "No Critical Dependabot Alerts",
        "description": "Checks that no open Dependabot alert is rated critical",
        "factIds": ["dependabotFactRetriever"],
        "rule": {
            "conditions": {
                "all": [{"fact": "criticalAlertCount", "operator": "lessThanInclusive", "value": 0}]
            }
        },
    },
    {
        "id": "githubSecretScanningCheck",
        "name": "No Secret Scanning Alerts",
        "description": "Checks if there are no exposed secrets detected",
        "factIds": ["githubAdvancedSecurityFactRetriever"],
        "rule": {
            "conditions": {
                "all": [{"fact": "openSecretScanningAlertCount", "operator": "lessThanInclusive", "value": 0}]
            }
        },
    },
    {
        "id": "sonarcloud-quality",
        "name": "SonarCloud Quality",
        "description": "Quality gate passes, no bugs or vulnerabilities, coverage at least 80%",
        "factIds": ["sonarcloud-fact-retriever"],
        "rule": {
            "conditions": {
                "all": [
                    {"fact": "quality_gate", "operator": "equal", "value": "OK"},
                    {"fact": "bugs", "operator": "lessThanInclusive", "value": 0},
                    {"fact": "vulnerabilities", "operator": "lessThanInclusive", "value": 0},
                    {"fact": "code_coverage", "operator": "greaterThanInclusive", "value": 80},
                ]
            }
        },
    },
    {
        "id": "azure-bugs",
        "name": "Azure DevOps Bugs",
        "description": "Bug query is configured and returns fewer than 10 bugs",
        "factIds": ["azure-devops-bugs-retriever"],
        "rule": {
            "conditions": {
                "all": [
                    {"fact": "azure_bug_count", "operator": "greaterThanInclusive", "value": 0},
                    {"fact": "azure_bug_count", "operator": "lessThan", "value": 10},
                ]
            }
        },
    },
]

DEFAULT_DYNAMIC_CHECK_DEFINITIONS: list[dict[str, Any]] = [
    {
        "id": "preproduction-success-rate",
        "name": "Preproduction Pipeline Success Rate",
        "description": "Success rate of the latest preproduction runs against the system's threshold",
        "factIds": ["githubPipelineStatusFactRetriever", "successRate"],
        "annotationKeyThreshold": "tech-insights.io/preproduction-success-rate-threshold",
        "annotationKeyOperator": "tech-insights.io/preproduction-success-rate-operator",
    },
    {
        "id": "preproduction-max-failures",
        "name": "Preproduction Pipeline Failures",
        "description": "Failed preproduction workflows against the system's threshold",
        "factIds": ["githubPipelineStatusFactRetriever", "failedWorkflows"],
        "annotationKeyThreshold": "tech-insights.io/preproduction-max-failures-threshold",
        "annotationKeyOperator": "tech-insights.io/preproduction-max-failures-operator",
    },
    {
        "id": "sonarcloud-bugs",
        "name": "SonarCloud Bugs",
        "description": "Open bugs against the system's threshold",
        "factIds": ["sonarcloud-fact-retriever", "bugs"],
        "annotationKeyThreshold": "tech-insights.io/sonarcloud-bugs-threshold",
        "annotationKeyOperator": "tech-insights.io/sonarcloud-bugs-operator",
    },
    {
        "id": "sonarcloud-vulnerabilities",
        "name": "SonarCloud Vulnerabilities",
        "description": "Open vulnerabilities against the system's threshold",
        "factIds": ["sonarcloud-fact-retriever", "vulnerabilities"],
        "annotationKeyThreshold": "tech-insights.io/sonarcloud-vulnerabilities-threshold",
        "annotationKeyOperator": "tech-insights.io/sonarcloud-vulnerabilities-operator",
    },
    {
        "id": "sonarcloud-code-smells",
        "name": "SonarCloud Code Smells",
        "description": "Code smells against the system's threshold",
        "factIds": ["sonarcloud-fact-retriever", "code_smells"],
        "annotationKeyThreshold": "tech-insights.io/sonarcloud-code-smells-threshold",
        "annotationKeyOperator": "tech-insights.io/sonarcloud-code-smells-operator",
    },
    {
        "id": "sonarcloud-code-coverage",
        "name": "SonarCloud Code Coverage",
        "description": "Line coverage against the system's threshold",
        "factIds": ["sonarcloud-fact-retriever", "code_coverage"],
        "annotationKeyThreshold": "tech-insights.io/sonarcloud-code-coverage-threshold",
        "annotationKeyOperator": "tech-insights.io/sonarcloud-code-coverage-operator",
    },
    {
        "id": "sonarcloud-quality-gate",
        "name": "SonarCloud Quality Gate",
        "description": "Quality gate status against the value the system expects",
        "type": "string",
        "factIds": ["sonarcloud-fact-retriever", "quality_gate"],
        "annotationKeyThreshold": "tech-insights.io/sonarcloud-quality-gate-threshold",
        "annotationKeyOperator": "tech-insights.io/sonarcloud-quality-gate-operator",
    },
]


def _parse_check(raw: Any, source: str) -> Check:
    try:
        check = Check.model_validate(raw)
    except ValidationError as exc:
        msg = f"Invalid check definition in {source}: {exc}"
        raise InvalidRuleError(msg) from exc
    validate_rule(check.rule)
    return check


def _parse_dynamic_check(raw: Any, source: str) -> DynamicThresholdCheck:
    try:
        return DynamicThresholdCheck.model_validate(raw)
    except ValidationError as exc:
        msg = f"Invalid dynamic check definition in {source}: {exc}"
        raise InvalidRuleError(msg) from exc


def default_checks() -> list[Check]:
    return [_parse_check(raw, "built-in checks") for raw in DEFAULT_CHECK_DEFINITIONS]


def default_dynamic_checks() -> list[DynamicThresholdCheck]:
    return [_parse_dynamic_check(raw, "built-in dynamic checks") for raw in DEFAULT_DYNAMIC_CHECK_DEFINITIONS]


def _read_checks_yaml(path: str | Path) -> dict[str, Any]:
    path = Path(path)
    if not path.is_file():
        msg = f"Checks file not found: {path}"
        raise ConfigurationError(msg)

    try:
        raw: Any = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        msg = f"Failed to parse {path.name}: {exc}"
        raise InvalidRuleError(msg) from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict) or not any(isinstance(raw.get(key), list) for key in ("checks", "dynamicChecks")):
        msg = f"{path.name} must contain a top-level 'checks' list"
        raise InvalidRuleError(msg)
    return raw


def load_checks_file(path: str | Path) -> list[Check]:
    """Load check definitions from a YAML file.

    The file holds a top-level ``checks`` list; each entry has ``id``, ``name``,
    ``description``, ``factIds`` and ``rule.conditions`` in json-rules-engine
    shape. A ``dynamicChecks`` list may sit beside it (see ``load_dynamic_checks_file``).

    Raises:
        ConfigurationError: If the file does not exist.
        InvalidRuleError: If the file is not valid YAML or a check fails validation.
    """
    raw = _read_checks_yaml(path)
    return [_parse_check(entry, Path(path).name) for entry in raw.get("checks") or []]


def load_dynamic_checks_file(path: str | Path) -> list[DynamicThresholdCheck]:
    """Load the ``dynamicChecks`` list from a YAML checks file.

    Entries carry ``id``, ``name``, ``factIds: [retriever, field]``,
    ``annotationKeyThreshold`` and ``annotationKeyOperator``.
    """
    raw = _read_checks_yaml(path)
    return [_parse_dynamic_check(entry, Path(path).name) for entry in raw.get("dynamicChecks") or []]


def build_registry(checks_file: str | None = None) -> CheckRegistry[Check]:
    """Registry with the built-in checks followed by any checks from ``checks_file``.

    Falls back to the ``CHECKS_FILE`` setting when no path is given.
    """
    if checks_file is None:
        checks_file = get_settings().checks_file

    checks = default_checks()
    if checks_file:
        extra = load_checks_file(checks_file)
        logger.info("Loaded %d checks from %s", len(extra), checks_file)
        checks.extend(extra)

    return CheckRegistry(checks)


def build_dynamic_registry(checks_file: str | None = None) -> CheckRegistry[DynamicThresholdCheck]:
    """Registry with the built-in dynamic checks followed by those from ``checks_file``."""
    if checks_file is None:
        checks_file = get_settings().checks_file

    checks = default_dynamic_checks()
    if checks_file:
        extra = load_dynamic_checks_file(checks_file)
        logger.info("Loaded %d dynamic checks from %s", len(extra), checks_file)
        checks.extend(extra)

    return CheckRegistry(checks)
