"""Rule trees and check definitions.

A rule is a recursive ``ConditionGroup`` whose children are leaf ``Condition``s
or nested groups. Input accepts the json-rules-engine shape::

    {"all": [{"fact": "openAlertCount", "operator": "lessThan", "value": 5}]}
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from traffic_light.models import FactValue

GroupOp = Literal["all", "any"]


class Condition(BaseModel):
    """Leaf comparison of one fact field against an operand."""

    model_config = ConfigDict(frozen=True)

    fact: str = Field(min_length=1)
    operator: str
    value: FactValue

    def to_dict(self) -> dict[str, object]:
        return {"fact": self.fact, "operator": self.operator, "value": self.value}


class ConditionGroup(BaseModel):
    """``all`` (AND) or ``any`` (OR) over child conditions and groups."""

    model_config = ConfigDict(frozen=True)

    op: GroupOp
    children: tuple["Condition | ConditionGroup", ...]

    @model_validator(mode="before")
    @classmethod
    def _from_rules_engine_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "op" in data:
            return data
        keys = [k for k in ("all", "any") if k in data]
        if len(keys) != 1:
            msg = "a condition group needs exactly one of 'all' or 'any'"
            raise ValueError(msg)
        return {"op": keys[0], "children": data[keys[0]]}

    def to_dict(self) -> dict[str, object]:
        return {self.op: [child.to_dict() for child in self.children]}


class Check(BaseModel):
    """A named rule over facts from one or more retrievers. Immutable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    description: str = ""
    fact_ids: tuple[str, ...] = Field(alias="factIds")
    rule: ConditionGroup

    @field_validator("rule", mode="before")
    @classmethod
    def _unwrap_conditions(cls, value: Any) -> Any:
        # Stored check definitions wrap the tree as {"conditions": {...}}
        if isinstance(value, dict) and "conditions" in value:
            return value["conditions"]
        return value

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "factIds": list(self.fact_ids),
            "rule": {"conditions": self.rule.to_dict()},
        }


class DynamicThresholdCheck(BaseModel):
    """Compares one fact field against a threshold and operator set on the owning system.

    ``factIds`` is ``[retriever_id, field]``. The threshold and operator are
    read from the system's ``annotationKeyThreshold`` and ``annotationKeyOperator``
    annotations at evaluation time.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    type: str = "number"
    description: str = ""
    fact_ids: tuple[str, str] = Field(alias="factIds")
    annotation_key_threshold: str = Field(min_length=1, alias="annotationKeyThreshold")
    annotation_key_operator: str = Field(min_length=1, alias="annotationKeyOperator")

    @property
    def retriever_id(self) -> str:
        return self.fact_ids[0]

    @property
    def fact_field(self) -> str:
        return self.fact_ids[1]

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "factIds": list(self.fact_ids),
            "annotationKeyThreshold": self.annotation_key_threshold,
            "annotationKeyOperator": self.annotation_key_operator,
        }
