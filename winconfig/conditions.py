"""Applicability conditions evaluated against host facts."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict

if TYPE_CHECKING:  # pragma: no cover
    from winconfig.models import HostFacts, Setting

logger = logging.getLogger(__name__)

ALWAYS = "always"
GENERATION_EQ = "generation_eq"
GENERATION_GTE = "generation_gte"
BUILD_GTE = "build_gte"
BUILD_LT = "build_lt"
CAPABILITY = "capability"
ALL = "all"


@dataclass(frozen=True)
class Condition:
    kind: str
    value: Any = None

    def describe(self) -> str:
        if self.kind == ALWAYS:
            return ALWAYS
        if self.kind == ALL:
            return " and ".join(child.describe() for child in self.value or ())
        return f"{self.kind}={self.value}"


def always() -> Condition:
    return Condition(ALWAYS)


def generation_equals(generation: int) -> Condition:
    return Condition(GENERATION_EQ, generation)


def generation_at_least(generation: int) -> Condition:
    return Condition(GENERATION_GTE, generation)


def build_at_least(build: int) -> Condition:
    return Condition(BUILD_GTE, build)


def build_below(build: int) -> Condition:
    return Condition(BUILD_LT, build)


def has_capability(name: str) -> Condition:
    return Condition(CAPABILITY, name)


def all_of(*conditions: Condition) -> Condition:
    return Condition(ALL, tuple(conditions))


class ConditionEvaluator:
    """Pure applicability check; unrecognised conditions are never applicable."""

    def __init__(self) -> None:
        self._checks: Dict[str, Callable[[Any, "HostFacts"], bool]] = {
            ALWAYS: lambda _value, _facts: True,
            GENERATION_EQ: lambda value, facts: facts.generation == int(value),
            GENERATION_GTE: lambda value, facts: facts.generation >= int(value),
            BUILD_GTE: lambda value, facts: facts.build >= int(value),
            BUILD_LT: lambda value, facts: facts.build < int(value),
            CAPABILITY: lambda value, facts: facts.has_capability(str(value)),
            ALL: self._check_all,
        }

    def applicable(self, setting: "Setting", facts: "HostFacts") -> bool:
        if setting.condition is None:
            return True
        return self.holds(setting.condition, facts)

    def holds(self, condition: Condition, facts: "HostFacts") -> bool:
        check = self._checks.get(condition.kind)
        if check is None:
            logger.debug("Unknown condition kind %r treated as not applicable", condition.kind)
            return False
        try:
            return bool(check(condition.value, facts))
        except (TypeError, ValueError):
            logger.debug("Malformed condition %r treated as not applicable", condition)
            return False

    def _check_all(self, value: Any, facts: "HostFacts") -> bool:
        if not isinstance(value, (list, tuple)):
            return False
        return all(isinstance(child, Condition) and self.holds(child, facts) for child in value)
