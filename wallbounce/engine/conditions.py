"""Declarative approval conditions.

Conditional approval rules carry data, not code: a comparison over a
closed set of RequestContext fields, optionally combined with
all/any/not. Conditions are parsed from YAML-style dicts and evaluated
by the small interpreter below.

Example YAML:
    conditional:
      tool_names: [get_site]
      when:
        task_criticality: critical

    conditional:
      tool_names: [export]
      when:
        any:
          - {field: security_tier, op: gte, value: sensitive}
          - {field: user_role, op: in, value: [auditor, admin]}
"""
from __future__ import annotations

import abc
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .errors import ConfigError
from .models import BudgetTier, RequestContext, SecurityTier, TaskCriticality

# Context fields a condition may read, with their ordinal enum if any.
CONTEXT_FIELDS: dict[str, type[Enum] | None] = {
    "task_criticality": TaskCriticality,
    "budget_tier": BudgetTier,
    "security_tier": SecurityTier,
    "user_role": None,
    "project_id": None,
}

OPERATORS = ("eq", "ne", "in", "not_in", "gte", "lte")
_ORDINAL_OPERATORS = {"gte", "lte"}


def _coerce(field: str, value: Any) -> Any:
    enum_type = CONTEXT_FIELDS[field]
    if enum_type is None or value is None:
        return value
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_type)
        raise ConfigError(
            f"Invalid value {value!r} for {field} (expected one of: {allowed})"
        ) from exc


class Condition(abc.ABC):
    """A side-effect-free predicate over a RequestContext."""

    @abc.abstractmethod
    def evaluate(self, context: RequestContext) -> bool:
        """Return True when the condition holds for *context*."""

    @abc.abstractmethod
    def to_dict(self) -> dict[str, Any]:
        """Return the declarative form accepted by parse_condition()."""


@dataclass(frozen=True)
class FieldCondition(Condition):
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.field not in CONTEXT_FIELDS:
            raise ConfigError(
                f"Unknown condition field '{self.field}'. "
                f"Allowed: {', '.join(CONTEXT_FIELDS)}"
            )
        if self.op not in OPERATORS:
            raise ConfigError(
                f"Unknown condition operator '{self.op}'. "
                f"Allowed: {', '.join(OPERATORS)}"
            )
        if self.op in _ORDINAL_OPERATORS and CONTEXT_FIELDS[self.field] is None:
            raise ConfigError(
                f"Operator '{self.op}' needs an ordinal field, got '{self.field}'"
            )
        if self.op in ("in", "not_in"):
            if not isinstance(self.value, (list, tuple, set, frozenset)):
                raise ConfigError(f"Operator '{self.op}' needs a list value")
            coerced: Any = tuple(_coerce(self.field, v) for v in self.value)
        else:
            coerced = _coerce(self.field, self.value)
        object.__setattr__(self, "value", coerced)

    def evaluate(self, context: RequestContext) -> bool:
        actual = getattr(context, self.field)
        if self.op == "eq":
            return actual == self.value
        if self.op == "ne":
            return actual != self.value
        if self.op == "in":
            return actual in self.value
        if self.op == "not_in":
            return actual not in self.value
        if not isinstance(actual, Enum):
            return False
        if self.op == "gte":
            return actual.rank >= self.value.rank
        return actual.rank <= self.value.rank

    def to_dict(self) -> dict[str, Any]:
        def _plain(v: Any) -> Any:
            return v.value if isinstance(v, Enum) else v

        value = self.value
        if isinstance(value, tuple):
            value = [_plain(v) for v in value]
        else:
            value = _plain(value)
        return {"field": self.field, "op": self.op, "value": value}


@dataclass(frozen=True)
class AllOf(Condition):
    conditions: tuple[Condition, ...]

    def evaluate(self, context: RequestContext) -> bool:
        return all(c.evaluate(context) for c in self.conditions)

    def to_dict(self) -> dict[str, Any]:
        return {"all": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class AnyOf(Condition):
    conditions: tuple[Condition, ...]

    def evaluate(self, context: RequestContext) -> bool:
        return any(c.evaluate(context) for c in self.conditions)

    def to_dict(self) -> dict[str, Any]:
        return {"any": [c.to_dict() for c in self.conditions]}


@dataclass(frozen=True)
class Not(Condition):
    condition: Condition

    def evaluate(self, context: RequestContext) -> bool:
        return not self.condition.evaluate(context)

    def to_dict(self) -> dict[str, Any]:
        return {"not": self.condition.to_dict()}


def field_equals(field: str, value: Any) -> FieldCondition:
    """Shorthand for the common ``field == value`` condition."""
    return FieldCondition(field=field, op="eq", value=value)


def parse_condition(raw: Any) -> Condition:
    """Build a Condition from its declarative dict form.

    Accepted forms:
      {"field": ..., "op": ..., "value": ...}
      {"all": [...]} / {"any": [...]} / {"not": {...}}
      {"task_criticality": "critical", ...}   (each key is an eq/in test)
    """
    if isinstance(raw, Condition):
        return raw
    if not isinstance(raw, dict) or not raw:
        raise ConfigError(f"Condition must be a non-empty mapping, got {raw!r}")

    if "field" in raw:
        return FieldCondition(
            field=str(raw["field"]),
            op=str(raw.get("op", "eq")),
            value=raw.get("value"),
        )
    if set(raw) == {"all"}:
        return AllOf(tuple(parse_condition(c) for c in _as_list(raw["all"])))
    if set(raw) == {"any"}:
        return AnyOf(tuple(parse_condition(c) for c in _as_list(raw["any"])))
    if set(raw) == {"not"}:
        return Not(parse_condition(raw["not"]))

    tests: list[Condition] = []
    for key, value in raw.items():
        op = "in" if isinstance(value, list) else "eq"
        tests.append(FieldCondition(field=str(key), op=op, value=value))
    return tests[0] if len(tests) == 1 else AllOf(tuple(tests))


def _as_list(value: Any) -> list:
    if not isinstance(value, list):
        raise ConfigError(f"Expected a list of conditions, got {value!r}")
    return value
