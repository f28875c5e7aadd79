"""Run registered checks for one entity against its latest stored facts."""

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import TypedDict

from traffic_light.facts import store
from traffic_light.facts.schema import merge_fact_values
from traffic_light.models import EntityRef, Fact
from traffic_light.observability.metrics import CHECK_EVALUATIONS_TOTAL
from traffic_light.rules.conditions import Check
from traffic_light.rules.evaluator import GroupTrace, evaluate, trace_to_json
from traffic_light.rules.registry import CheckRegistry

logger = logging.getLogger(__name__)

FactLookup = Callable[[EntityRef, Sequence[str]], Awaitable[dict[str, Fact]]]


class CheckResult(TypedDict):
    check_id: str
    entity: EntityRef
    passed: bool
    trace: GroupTrace


def check_result_to_json(result: CheckResult) -> dict[str, object]:
    return {
        "check_id": result["check_id"],
        "entity": str(result["entity"]),
        "passed": result["passed"],
        "trace": trace_to_json(result["trace"]),
    }


def store_lookup(db_path: str | None = None) -> FactLookup:
    """Fact lookup reading the fact store in a worker thread."""

    def _read(entity: EntityRef, retriever_ids: Sequence[str]) -> dict[str, Fact]:
        conn = store.get_connection(db_path)
        try:
            return store.get_latest_facts(conn, entity, retriever_ids)
        finally:
            conn.close()

    async def _lookup(entity: EntityRef, retriever_ids: Sequence[str]) -> dict[str, Fact]:
        return await asyncio.to_thread(_read, entity, retriever_ids)

    return _lookup


class FactChecker:
    def __init__(self, registry: CheckRegistry[Check], lookup: FactLookup | None = None) -> None:
        self._registry = registry
        self._lookup = lookup or store_lookup()

    async def run_checks(self, entity: EntityRef, check_ids: Iterable[str] | None = None) -> list[CheckResult]:
        """Evaluate checks for ``entity``; all registered checks when ``check_ids`` is None.

        Facts for every retriever a check needs are merged in the order the
        check lists them. An unreadable fact store yields no facts, so the
        affected checks fail rather than erroring.

        Raises:
            NotFoundError: If a requested check id is not registered.
            InvalidRuleError: If a check uses an unknown operator.
        """
        checks = self._registry.list() if check_ids is None else self._registry.get_all(list(check_ids))
        retriever_ids = list(dict.fromkeys(rid for check in checks for rid in check.fact_ids))

        try:
            facts = await self._lookup(entity, retriever_ids) if retriever_ids else {}
        except (sqlite3.Error, ValueError) as exc:
            logger.warning("Could not load facts for %s: %s", entity, exc)
            facts = {}

        results: list[CheckResult] = []
        for check in checks:
            values = merge_fact_values(facts[rid] for rid in check.fact_ids if rid in facts)
            passed, trace = evaluate(check.rule, values)
            CHECK_EVALUATIONS_TOTAL.labels(check_id=check.id, result="passed" if passed else "failed").inc()
            results.append(CheckResult(check_id=check.id, entity=entity, passed=passed, trace=trace))

        logger.info(
            "Ran %d checks for %s: %d passed", len(results), entity, sum(1 for r in results if r["passed"])
        )
        return results
