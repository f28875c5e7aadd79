"""Checks whose threshold and operator are configured on the owning system.

A dynamic threshold check names one fact field (``factIds = [retriever, field]``)
and two annotation keys. At evaluation time the entity's system is looked up in
the catalog and its annotations supply the operand and the operator, so every
system can tune its own limits without redefining the check. A check whose
threshold or operator cannot be resolved fails.
"""

import logging
import math
import sqlite3
from collections.abc import Iterable, Mapping

from traffic_light.models import EntityRef, Fact, FactValue
from traffic_light.observability.metrics import CHECK_EVALUATIONS_TOTAL
from traffic_light.rules.checker import CheckResult, FactLookup, store_lookup
from traffic_light.rules.conditions import Condition, ConditionGroup, DynamicThresholdCheck
from traffic_light.rules.evaluator import MISSING, OPERATORS, ConditionTrace, Evaluation, GroupTrace, evaluate
from traffic_light.rules.registry import CheckRegistry
from traffic_light.status.thresholds import ThresholdResolver

logger = logging.getLogger(__name__)


def parse_threshold(raw: str | None) -> FactValue | None:
    """Numeric annotation values become numbers; anything else stays a string.

    >>> parse_threshold("80")
    80
    >>> parse_threshold("0.5")
    0.5
    >>> parse_threshold("OK")
    'OK'
    """
    if raw is None:
        return None
    try:
        number = float(raw)
    except ValueError:
        return raw
    if not math.isfinite(number):
        return raw
    return int(number) if number.is_integer() else number


def _unresolved(
    check: DynamicThresholdCheck, operator: str, threshold: object, values: Mapping[str, FactValue]
) -> Evaluation:
    leaf = ConditionTrace(
        fact=check.fact_field,
        operator=operator,
        value=threshold,  # type: ignore[typeddict-item]
        fact_value=values.get(check.fact_field, MISSING),
        fact_present=check.fact_field in values,
        result=False,
    )
    return Evaluation(passed=False, trace=GroupTrace(op="all", result=False, children=[leaf]))


def evaluate_dynamic(
    check: DynamicThresholdCheck, facts: Mapping[str, Fact], annotations: Mapping[str, str]
) -> Evaluation:
    """Evaluate ``check`` with the threshold and operator found in ``annotations``."""
    fact = facts.get(check.retriever_id)
    values = fact.values if fact is not None else {}
    threshold = parse_threshold(annotations.get(check.annotation_key_threshold))
    operator = annotations.get(check.annotation_key_operator, "")

    if threshold is None:
        logger.warning("Check %s: no %s annotation on the system", check.id, check.annotation_key_threshold)
        return _unresolved(check, operator, MISSING, values)
    if operator not in OPERATORS:
        logger.warning(
            "Check %s: operator %r from %s is not supported", check.id, operator, check.annotation_key_operator
        )
        return _unresolved(check, operator, threshold, values)

    rule = ConditionGroup(op="all", children=(Condition(fact=check.fact_field, operator=operator, value=threshold),))
    return evaluate(rule, values)


class DynamicThresholdChecker:
    def __init__(
        self,
        registry: CheckRegistry[DynamicThresholdCheck],
        lookup: FactLookup | None = None,
        resolver: ThresholdResolver | None = None,
    ) -> None:
        self._registry = registry
        self._lookup = lookup or store_lookup()
        self._resolver = resolver or ThresholdResolver()

    async def run_checks(self, entity: EntityRef, check_ids: Iterable[str] | None = None) -> list[CheckResult]:
        """Evaluate dynamic checks for ``entity``; all of them when ``check_ids`` is None.

        Raises:
            NotFoundError: If a requested check id is not registered.
        """
        checks = self._registry.list() if check_ids is None else self._registry.get_all(list(check_ids))
        if not checks:
            return []
        retriever_ids = list(dict.fromkeys(check.retriever_id for check in checks))

        try:
            facts = await self._lookup(entity, retriever_ids)
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("Could not load facts for %s: %s", entity, exc)
            facts = {}
        annotations = await self._resolver.system_annotations(entity)

        results: list[CheckResult] = []
        for check in checks:
            passed, trace = evaluate_dynamic(check, facts, annotations)
            CHECK_EVALUATIONS_TOTAL.labels(check_id=check.id, result="passed" if passed else "failed").inc()
            results.append(CheckResult(check_id=check.id, entity=entity, passed=passed, trace=trace))

        logger.info(
            "Ran %d dynamic checks for %s: %d passed", len(results), entity, sum(1 for r in results if r["passed"])
        )
        return results
