"""
Condition evaluation against the player state.

Conditions are flat typed records. Each kind resolves a current value from
the oracle and the operator is applied through JSONLogic. Anything that
cannot be evaluated counts as unmet: a broken condition hides or locks its
choice instead of interrupting play.
"""

from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple, Union

from adventure_engine.engine.errors import ConditionEvaluationError
from adventure_engine.engine.state import StatOracle
from adventure_engine.schemas.adventure import (
    OPERATOR_DISPLAY,
    OPERATOR_SYMBOLS,
    Condition,
    ConditionKind,
)
from adventure_engine.utils.jsonlogic import JSONLogicEvaluator
from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)

ConditionLike = Union[Condition, Mapping[str, Any]]


class ConditionEvaluator:
    """Evaluates conditions and requirements against a StatOracle"""

    def __init__(
        self, oracle: StatOracle, jsonlogic: Optional[JSONLogicEvaluator] = None
    ):
        self.oracle = oracle
        self.jsonlogic = jsonlogic or JSONLogicEvaluator()
        self.failures = 0
        self._resolvers: Dict[ConditionKind, Callable[[Condition], Tuple[Any, Any]]] = {
            ConditionKind.STAT: self._resolve_stat,
            ConditionKind.FLAG: self._resolve_flag,
            ConditionKind.SCENE_VISITED: self._resolve_scene_visited,
            ConditionKind.INVENTORY: self._resolve_inventory,
        }

    def coerce(self, condition: ConditionLike) -> Condition:
        """Parse a raw record into a Condition"""
        if isinstance(condition, Condition):
            return condition
        try:
            return Condition(**dict(condition))
        except Exception as e:
            raise ConditionEvaluationError(f"Malformed condition {condition!r}: {e}")

    def evaluate_condition(self, condition: ConditionLike) -> bool:
        """Evaluate one condition; failures are logged and count as unmet"""
        try:
            parsed = self.coerce(condition)
            current, target = self._resolvers[parsed.type](parsed)
            return self.jsonlogic.compare(
                current, OPERATOR_SYMBOLS[parsed.operator], target
            )
        except Exception as e:
            self.failures += 1
            logger.warning(f"Condition evaluation failed, treating as unmet: {e}")
            return False

    def evaluate_conditions(self, conditions: Optional[Iterable[ConditionLike]]) -> bool:
        """All conditions must hold; an empty list always holds"""
        return all(self.evaluate_condition(c) for c in conditions or [])

    def first_failing(
        self, conditions: Optional[Iterable[ConditionLike]]
    ) -> Optional[ConditionLike]:
        for condition in conditions or []:
            if not self.evaluate_condition(condition):
                return condition
        return None

    def failure_reason(
        self, requirements: Optional[Iterable[ConditionLike]]
    ) -> Optional[str]:
        """Human-readable message for the first failing requirement"""
        requirements = list(requirements or [])
        if not requirements:
            return None

        failing = self.first_failing(requirements)
        if failing is None:
            return "Requirements not met"
        return self.describe_requirement(failing)

    def describe_requirement(self, requirement: ConditionLike) -> str:
        try:
            parsed = self.coerce(requirement)
        except ConditionEvaluationError:
            key = requirement.get("key") if isinstance(requirement, Mapping) else None
            return f"Requirements not met: {key}"

        if parsed.type == ConditionKind.STAT:
            current = self.oracle.get_stat(parsed.key)
            return (
                f"Requires {parsed.key} {OPERATOR_DISPLAY[parsed.operator]} "
                f"{parsed.value} (currently {current})"
            )
        if parsed.type == ConditionKind.FLAG:
            expected = True if parsed.value is None else parsed.value
            return f"Requires {parsed.key} to be {expected}"
        if parsed.type == ConditionKind.INVENTORY:
            return f"Requires item: {parsed.key}"
        if parsed.type == ConditionKind.SCENE_VISITED:
            return f"Must visit scene: {parsed.key}"
        return f"Requirements not met: {parsed.key}"

    def _resolve_stat(self, condition: Condition) -> Tuple[Any, Any]:
        return self.oracle.get_stat(condition.key), condition.value

    def _resolve_flag(self, condition: Condition) -> Tuple[Any, Any]:
        target = True if condition.value is None else condition.value
        return self.oracle.get_flag(condition.key), target

    def _resolve_scene_visited(self, condition: Condition) -> Tuple[Any, Any]:
        target = True if condition.value is None else condition.value
        return self.oracle.has_visited(condition.key), target

    def _resolve_inventory(self, condition: Condition) -> Tuple[Any, Any]:
        count = self.oracle.get_item_count(condition.key)
        if condition.value is None:
            return count > 0, True
        if isinstance(condition.value, bool):
            return count > 0, condition.value
        return count, condition.value
