"""Evaluate condition trees against a flat mapping of fact values.

Evaluation is pure: the same rule and facts always produce the same outcome
and the same trace. A condition whose fact is absent evaluates false and is
marked ``fact_present: False`` in the trace with ``MISSING`` as its value.
"""

import operator
from collections.abc import Callable, Mapping
from typing import NamedTuple, TypedDict

from traffic_light.errors import InvalidRuleError
from traffic_light.models import FactValue
from traffic_light.rules.conditions import Condition, ConditionGroup


class _MissingFact:
    """Sentinel for a fact field that was not present at evaluation time."""

    _instance: "_MissingFact | None" = None

    def __new__(cls) -> "_MissingFact":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "<missing>"

    def __bool__(self) -> bool:
        return False


MISSING = _MissingFact()

_NUMERIC_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "lessThan": operator.lt,
    "lessThanInclusive": operator.le,
    "greaterThan": operator.gt,
    "greaterThanInclusive": operator.ge,
}
_EQUALITY_OPERATORS = frozenset({"equal", "notEqual"})

OPERATORS = frozenset(_NUMERIC_OPERATORS) | _EQUALITY_OPERATORS


class ConditionTrace(TypedDict):
    fact: str
    operator: str
    value: FactValue | _MissingFact
    fact_value: FactValue | _MissingFact
    fact_present: bool
    result: bool


class GroupTrace(TypedDict):
    op: str
    result: bool
    children: list["ConditionTrace | GroupTrace"]


class Evaluation(NamedTuple):
    passed: bool
    trace: GroupTrace


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _strict_equal(left: object, right: object) -> bool:
    """Equality without coercion: ``"5" != 5`` and ``True != 1``; ``5 == 5.0``."""
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if _is_number(left) and _is_number(right):
        return left == right
    return type(left) is type(right) and left == right


def _check_operator(condition: Condition) -> None:
    if condition.operator not in OPERATORS:
        msg = (
            f"Unknown operator '{condition.operator}' on fact '{condition.fact}'. "
            f"Expected one of: {', '.join(sorted(OPERATORS))}"
        )
        raise InvalidRuleError(msg)


def validate_rule(rule: ConditionGroup) -> None:
    """Raise InvalidRuleError if any leaf in the tree uses an unknown operator."""
    for child in rule.children:
        if isinstance(child, ConditionGroup):
            validate_rule(child)
        else:
            _check_operator(child)


def _evaluate_condition(condition: Condition, facts: Mapping[str, FactValue]) -> ConditionTrace:
    _check_operator(condition)

    if condition.fact not in facts:
        return ConditionTrace(
            fact=condition.fact,
            operator=condition.operator,
            value=condition.value,
            fact_value=MISSING,
            fact_present=False,
            result=False,
        )

    fact_value = facts[condition.fact]
    compare = _NUMERIC_OPERATORS.get(condition.operator)
    if compare is not None:
        result = (
            _is_number(fact_value)
            and _is_number(condition.value)
            and compare(fact_value, condition.value)  # type: ignore[arg-type]
        )
    else:
        same = _strict_equal(fact_value, condition.value)
        result = same if condition.operator == "equal" else not same

    return ConditionTrace(
        fact=condition.fact,
        operator=condition.operator,
        value=condition.value,
        fact_value=fact_value,
        fact_present=True,
        result=bool(result),
    )


def _evaluate_group(group: ConditionGroup, facts: Mapping[str, FactValue]) -> GroupTrace:
    children: list[ConditionTrace | GroupTrace] = []
    for child in group.children:
        if isinstance(child, ConditionGroup):
            children.append(_evaluate_group(child, facts))
        else:
            children.append(_evaluate_condition(child, facts))

    results = [child["result"] for child in children]
    # all([]) is True and any([]) is False
    passed = all(results) if group.op == "all" else any(results)
    return GroupTrace(op=group.op, result=passed, children=children)


def evaluate(rule: ConditionGroup, facts: Mapping[str, FactValue]) -> Evaluation:
    """Evaluate ``rule`` against ``facts``.

    Every child is evaluated (no short-circuit) so the trace records the
    outcome of each leaf.

    Raises:
        InvalidRuleError: If a leaf uses an operator outside ``OPERATORS``.
    """
    trace = _evaluate_group(rule, facts)
    return Evaluation(passed=trace["result"], trace=trace)


def trace_to_json(trace: "ConditionTrace | GroupTrace") -> dict[str, object]:
    """Convert a trace to JSON-safe dicts. Missing values become ``None``."""
    if "children" in trace:
        return {
            "op": trace["op"],
            "result": trace["result"],
            "children": [trace_to_json(child) for child in trace["children"]],  # type: ignore[typeddict-item]
        }
    data = dict(trace)
    for key in ("value", "fact_value"):
        if data[key] is MISSING:
            data[key] = None
    return data
