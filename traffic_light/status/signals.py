"""Group status per health signal: which facts feed it and how they are aggregated."""

import logging
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from traffic_light import catalog
from traffic_light.config import get_settings
from traffic_light.errors import DataUnavailableError
from traffic_light.facts.retrieval import store_fetcher
from traffic_light.models import EntityRef, GroupStatus, parse_entity_ref
from traffic_light.observability.metrics import record_group_status
from traffic_light.status.aggregator import aggregate_colors, aggregate_rates
from traffic_light.status.thresholds import ThresholdResolver

logger = logging.getLogger(__name__)


class Signal(StrEnum):
    DEPENDABOT = "dependabot"
    PREPRODUCTION = "preproduction"
    FOUNDATION = "foundation"


class ColorSignal(BaseModel):
    model_config = ConfigDict(frozen=True)

    retriever_id: str
    field: str = "status"


class RateSignal(BaseModel):
    model_config = ConfigDict(frozen=True)

    retriever_id: str
    success_field: str
    failure_field: str
    annotation_setting: str  # Settings attribute naming the thresholds annotation key


SIGNALS: dict[Signal, ColorSignal | RateSignal] = {
    Signal.DEPENDABOT: ColorSignal(retriever_id="dependabotFactRetriever"),
    Signal.PREPRODUCTION: RateSignal(
        retriever_id="githubPipelineStatusFactRetriever",
        success_field="successfulWorkflows",
        failure_field="failedWorkflows",
        annotation_setting="pipeline_thresholds_annotation",
    ),
    Signal.FOUNDATION: RateSignal(
        retriever_id="foundationPipelineStatusFactRetriever",
        success_field="successWorkflowRunsCount",
        failure_field="failureWorkflowRunsCount",
        annotation_setting="foundation_thresholds_annotation",
    ),
}


def group_ref(group_name: str) -> EntityRef:
    """``payments`` -> ``system:default/payments``; full refs are kept as given."""
    return parse_entity_ref(group_name, default_kind="system")


async def _group_components(group: EntityRef) -> list[EntityRef]:
    try:
        return await catalog.list_group_components(group)
    except DataUnavailableError as exc:
        logger.warning("Could not list components of %s: %s", group, exc)
        return []


async def group_status(
    group_name: str,
    signal: Signal,
    *,
    resolver: ThresholdResolver | None = None,
    db_path: str | None = None,
) -> GroupStatus:
    """Aggregate ``signal`` over the components of a group using stored facts."""
    group = group_ref(group_name)
    spec = SIGNALS[signal]
    components = await _group_components(group)
    fetch = store_fetcher(spec.retriever_id, db_path)

    if isinstance(spec, ColorSignal):
        status = await aggregate_colors(group, components, fetch, field=spec.field, source=spec.retriever_id)
    else:
        annotation_key: str = getattr(get_settings(), spec.annotation_setting)
        thresholds = await (resolver or ThresholdResolver()).resolve(group, annotation_key)
        status = await aggregate_rates(
            group,
            components,
            fetch,
            thresholds,
            success_field=spec.success_field,
            failure_field=spec.failure_field,
            source=spec.retriever_id,
        )

    try:
        record_group_status(str(group), signal.value, status.color)
    except ValueError:
        logger.debug("Could not record group status metric for %s", group, exc_info=True)
    return status
