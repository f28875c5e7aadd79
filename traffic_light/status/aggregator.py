"""Reduce per-entity facts into one traffic-light status for a group.

Two modes:

- color precedence over a precomputed per-entity color fact
  (red > yellow/gray > green > white);
- rate ladder over summed success/failure counters, compared against
  group thresholds.

Fetching is delegated to an injected capability and fanned out through
``fetch_all``; the reductions themselves are synchronous and pure.
"""

import logging
from collections.abc import Sequence
from typing import NamedTuple

from traffic_light.facts.retrieval import FactFetcher, fetch_all
from traffic_light.models import EntityRef, Fact, GroupStatus, ThresholdConfig, TrafficLightColor

logger = logging.getLogger(__name__)

DEFAULT_COLOR_FIELD = "status"
DEFAULT_SUCCESS_FIELD = "successWorkflowRunsCount"
DEFAULT_FAILURE_FIELD = "failureWorkflowRunsCount"

# Below min_success_rate but within this fraction of it is yellow rather than red
YELLOW_BAND = 0.8


class RunCounts(NamedTuple):
    successes: int
    failures: int


# ---------------------------------------------------------------------------
# Pure reductions
# ---------------------------------------------------------------------------


def reduce_colors(group: EntityRef, colors: Sequence[TrafficLightColor | None]) -> GroupStatus:
    """Combine per-entity colors. ``None`` marks an entity without a usable color fact.

    Only entities with data are samples, and precedence applies over samples
    alone. Gray and yellow rank together below red.
    """
    samples = [color for color in colors if color is not None]
    missing = len(colors) - len(samples)
    red = samples.count(TrafficLightColor.RED)
    yellow = samples.count(TrafficLightColor.YELLOW)
    gray = samples.count(TrafficLightColor.GRAY)
    green = samples.count(TrafficLightColor.GREEN)
    skipped = f", {missing} without data" if missing else ""

    if red:
        color = TrafficLightColor.RED
        reason = f"{red} of {len(samples)} components red{skipped}"
    elif yellow or gray:
        color = TrafficLightColor.YELLOW
        reason = f"{yellow} yellow and {gray} gray of {len(samples)} components, none red{skipped}"
    elif samples and green == len(samples):
        color = TrafficLightColor.GREEN
        reason = f"all {len(samples)} components green{skipped}"
    else:
        color = TrafficLightColor.WHITE
        reason = f"no conclusive color: {green} green of {len(samples)} components with data{skipped}"

    return GroupStatus(group=group, color=color, reason=reason, sample_count=len(samples))


def success_rate(counts: RunCounts) -> float:
    total = counts.successes + counts.failures
    return 100 * counts.successes / total if total else 0.0


def reduce_rates(group: EntityRef, counts: Sequence[RunCounts | None], thresholds: ThresholdConfig) -> GroupStatus:
    """Sum counters over entities with valid facts and apply the threshold ladder."""
    valid = [c for c in counts if c is not None]
    if not valid:
        return GroupStatus(
            group=group, color=TrafficLightColor.GRAY, reason="no valid facts available", sample_count=0
        )

    totals = RunCounts(sum(c.successes for c in valid), sum(c.failures for c in valid))
    rate = success_rate(totals)
    min_rate = thresholds.min_success_rate
    max_failures = thresholds.max_failures

    if totals.failures > max_failures:
        color = TrafficLightColor.RED
        reason = f"Failures exceed threshold ({totals.failures} > {max_failures})"
    elif rate < min_rate:
        color = TrafficLightColor.YELLOW if rate >= YELLOW_BAND * min_rate else TrafficLightColor.RED
        reason = f"Success rate below threshold ({rate:.2f}% < {min_rate:g}%)"
    else:
        color = TrafficLightColor.GREEN
        reason = (
            f"Success rate {rate:.2f}% >= {min_rate:g}% and failures "
            f"{totals.failures} <= {max_failures}"
        )

    return GroupStatus(group=group, color=color, reason=reason, sample_count=len(valid))


# ---------------------------------------------------------------------------
# Fact extraction
# ---------------------------------------------------------------------------


def color_from_fact(fact: Fact | None, field: str = DEFAULT_COLOR_FIELD) -> TrafficLightColor | None:
    if fact is None:
        return None
    value = fact.values.get(field)
    if not isinstance(value, str):
        return None
    try:
        return TrafficLightColor(value.lower())
    except ValueError:
        logger.warning("Ignoring unknown color %r in %s fact for %s", value, fact.retriever_id, fact.entity)
        return None


def counts_from_fact(
    fact: Fact | None,
    success_field: str = DEFAULT_SUCCESS_FIELD,
    failure_field: str = DEFAULT_FAILURE_FIELD,
) -> RunCounts | None:
    if fact is None:
        return None
    successes = fact.values.get(success_field)
    failures = fact.values.get(failure_field)
    for value in (successes, failures):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            logger.warning("Ignoring %s fact for %s without valid run counters", fact.retriever_id, fact.entity)
            return None
    return RunCounts(successes, failures)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Aggregation with fan-out
# ---------------------------------------------------------------------------


async def aggregate_colors(
    group: EntityRef,
    entities: Sequence[EntityRef],
    fetch: FactFetcher,
    *,
    field: str = DEFAULT_COLOR_FIELD,
    source: str = "facts",
) -> GroupStatus:
    facts = await fetch_all(entities, fetch, source=source)
    status = reduce_colors(group, [color_from_fact(fact, field) for fact in facts])
    logger.info("Group %s: %s (%s)", group, status.color, status.reason)
    return status


async def aggregate_rates(
    group: EntityRef,
    entities: Sequence[EntityRef],
    fetch: FactFetcher,
    thresholds: ThresholdConfig,
    *,
    success_field: str = DEFAULT_SUCCESS_FIELD,
    failure_field: str = DEFAULT_FAILURE_FIELD,
    source: str = "facts",
) -> GroupStatus:
    facts = await fetch_all(entities, fetch, source=source)
    counts = [counts_from_fact(fact, success_field, failure_field) for fact in facts]
    status = reduce_rates(group, counts, thresholds)
    logger.info("Group %s: %s (%s)", group, status.color, status.reason)
    return status
