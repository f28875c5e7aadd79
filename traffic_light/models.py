"""Core data types shared by the registry, evaluator, aggregators and stores."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal, NamedTuple, TypedDict

from pydantic import BaseModel, ConfigDict, Field

FactValue = int | float | str | bool
FactValues = dict[str, FactValue]
FactFieldType = Literal["integer", "float", "string", "boolean"]
FactSchema = dict[str, FactFieldType]

DEFAULT_NAMESPACE = "default"
DEFAULT_KIND = "component"


class EntityRef(NamedTuple):
    """Identity of a monitored component or group. Equality is by tuple."""

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind.lower()}:{self.namespace}/{self.name}"


def parse_entity_ref(ref: str, default_kind: str = DEFAULT_KIND) -> EntityRef:
    """Parse ``kind:namespace/name``. Kind and namespace may be omitted.

    >>> parse_entity_ref("system:default/payments")
    EntityRef(kind='system', namespace='default', name='payments')
    >>> parse_entity_ref("checkout")
    EntityRef(kind='component', namespace='default', name='checkout')
    """
    kind, sep, rest = ref.partition(":")
    if not sep:
        kind, rest = default_kind, ref
    namespace, sep, name = rest.partition("/")
    if not sep:
        namespace, name = DEFAULT_NAMESPACE, rest
    if not kind or not namespace or not name:
        msg = f"Invalid entity reference: {ref!r}"
        raise ValueError(msg)
    return EntityRef(kind.lower(), namespace, name)


class Fact(BaseModel):
    """One retriever's latest observation about one entity."""

    model_config = ConfigDict(frozen=True)

    retriever_id: str
    version: str
    entity: EntityRef
    values: FactValues
    retrieved_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class RetrieverResult(TypedDict):
    entity: EntityRef
    facts: FactValues


class TrafficLightColor(StrEnum):
    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"
    GRAY = "gray"  # no data
    WHITE = "white"  # no data


class ThresholdConfig(BaseModel):
    """Group-level numeric pass/fail boundaries."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    min_success_rate: float = Field(default=90.0, ge=0, le=100, alias="minSuccessRate")
    max_failures: int = Field(default=1, ge=0, alias="maxFailures")


DEFAULT_THRESHOLDS = ThresholdConfig()


class GroupStatus(BaseModel):
    group: EntityRef
    color: TrafficLightColor
    reason: str
    sample_count: int


class MetricKind(StrEnum):
    DEPLOYMENT_FREQUENCY = "deploymentFrequency"
    CHANGE_FAILURE_RATE = "changeFailureRate"
    MEAN_LEAD_TIME_TO_CHANGE = "meanLeadTimeToChange"
    MEAN_TIME_TO_RESTORE = "meanTimeToRestore"


class Granularity(StrEnum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class MetricPoint(BaseModel):
    """One aggregation bucket. ``period_key`` is e.g. ``2023/06`` or ``2023-W05``."""

    model_config = ConfigDict(frozen=True)

    period_key: str = Field(serialization_alias="key")
    value: float
