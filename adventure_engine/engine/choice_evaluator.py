"""
Choice evaluation state machine.

Decides, for every choice in a scene, whether it is shown and whether it can
be selected. Four kinds of choice are handled, checked in this order:

1. SECRET - hidden until its discovery conditions are met once, then
   permanently visible (the caller records the discovery)
2. LOCKED - always visible, selectable once requirements are met
3. HIDDEN - not shown until conditions are met
4. VISIBLE - always shown, always selectable

Two demotion passes follow: selectable_if gates and usage limits (one-time,
max uses, cooldown). Neither can make a choice more available.
"""

import math
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from adventure_engine.config import settings
from adventure_engine.engine.conditions import ConditionEvaluator
from adventure_engine.engine.state import StatOracle
from adventure_engine.schemas import (
    Choice,
    ChoiceHistoryRecord,
    ChoiceState,
    ChoiceType,
    EvaluationResult,
    validate_choice,
)
from adventure_engine.utils.cache import EvaluationCache
from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)

ChoiceLike = Union[Choice, Mapping[str, Any]]
HistoryLike = Union[ChoiceHistoryRecord, Mapping[str, Any]]


def _now_ms() -> float:
    return time.time() * 1000


class ChoiceEvaluator:
    """Evaluates choice visibility and selectability against player state"""

    def __init__(
        self,
        oracle: StatOracle,
        choice_history: Optional[Sequence[HistoryLike]] = None,
        conditions: Optional[ConditionEvaluator] = None,
        cache_size: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Args:
            oracle: Source of stats, flags, inventory and the state version
            choice_history: Append-only choice log, read on every evaluation
            conditions: Condition evaluator (built from oracle if omitted)
            cache_size: Maximum memoised evaluations
            clock: Current time in milliseconds, used for cooldowns
        """
        self.oracle = oracle
        self.conditions = conditions or ConditionEvaluator(oracle)
        self.choice_history: Sequence[HistoryLike] = (
            choice_history if choice_history is not None else []
        )
        self.cache = EvaluationCache(
            max_size=cache_size or settings.evaluation_cache_size
        )
        self.clock = clock or _now_ms
        self._last_version = oracle.get_version()

    def update_choice_history(self, history: Optional[Sequence[HistoryLike]]) -> None:
        self.choice_history = history if history is not None else []

    def clear_cache(self) -> None:
        """Drop memoised evaluations; call after state changes the oracle misses"""
        self.cache.clear()

    def evaluate_choice(
        self, choice: ChoiceLike, discovered_secrets: Optional[Iterable[str]] = None
    ) -> EvaluationResult:
        """
        Determine whether a choice is visible and selectable.

        Args:
            choice: Choice model or raw choice document
            discovered_secrets: Ids of secret choices already discovered

        Returns:
            A fresh EvaluationResult the caller may modify
        """
        current_version = self.oracle.get_version()
        if current_version != self._last_version:
            self.cache.clear()
            self._last_version = current_version

        try:
            parsed = choice if isinstance(choice, Choice) else validate_choice(dict(choice))
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid choice definition, hiding it: {e}")
            return EvaluationResult(
                is_visible=False,
                is_selectable=False,
                type=ChoiceType.HIDDEN,
                state=ChoiceState.HIDDEN,
                reason="Invalid choice definition",
            )

        discovered = sorted(set(discovered_secrets or []))
        key = self.cache.make_key(parsed.dict(), self._state_fingerprint(), discovered)

        cached = self.cache.get(key)
        if cached is None:
            cached = self._perform_evaluation(parsed, discovered)
            self._apply_selectable_if(parsed, cached)
            self.cache.set(key, cached)

        # Usage limits depend on the history and the clock, so never memoised
        result = cached.copy(deep=True)
        self._apply_usage_limits(parsed, result)

        logger.debug(
            f"Choice {parsed.id}: {result.type.value} "
            f"(visible={result.is_visible}, selectable={result.is_selectable})"
        )
        return result

    def evaluate_choices(
        self,
        choices: Iterable[ChoiceLike],
        discovered_secrets: Optional[Iterable[str]] = None,
    ) -> List[Tuple[ChoiceLike, EvaluationResult]]:
        """Evaluate every choice, keeping each paired with its verdict"""
        discovered = list(discovered_secrets or [])
        return [(choice, self.evaluate_choice(choice, discovered)) for choice in choices]

    def get_visible_choices(
        self,
        choices: Iterable[ChoiceLike],
        discovered_secrets: Optional[Iterable[str]] = None,
    ) -> List[Tuple[ChoiceLike, EvaluationResult]]:
        return [
            pair
            for pair in self.evaluate_choices(choices, discovered_secrets)
            if pair[1].is_visible
        ]

    def get_newly_discovered_secrets(
        self,
        choices: Iterable[ChoiceLike],
        discovered_secrets: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """Ids of secrets this evaluation discovered, for the caller to record"""
        return [
            _choice_id(choice)
            for choice, evaluation in self.evaluate_choices(choices, discovered_secrets)
            if evaluation.should_mark_as_discovered
        ]

    def _perform_evaluation(
        self, choice: Choice, discovered: List[str]
    ) -> EvaluationResult:
        if choice.is_secret:
            return self._evaluate_secret_choice(choice, discovered)

        if choice.is_locked or choice.requirements:
            return self._evaluate_locked_choice(choice)

        if choice.is_hidden or choice.conditions:
            return self._evaluate_hidden_choice(choice)

        return EvaluationResult(
            is_visible=True,
            is_selectable=True,
            type=ChoiceType.VISIBLE,
            state=ChoiceState.VISIBLE,
        )

    def _evaluate_secret_choice(
        self, choice: Choice, discovered: List[str]
    ) -> EvaluationResult:
        if choice.id not in discovered:
            # No discovery conditions means discoverable immediately
            if self.conditions.evaluate_conditions(choice.conditions):
                return EvaluationResult(
                    is_visible=True,
                    is_selectable=True,
                    type=ChoiceType.SECRET_DISCOVERED,
                    state=ChoiceState.VISIBLE,
                    reason="Secret choice discovered!",
                    should_mark_as_discovered=True,
                )

            return EvaluationResult(
                is_visible=False,
                is_selectable=False,
                type=ChoiceType.SECRET_HIDDEN,
                state=ChoiceState.HIDDEN,
                reason="Secret choice not yet discovered",
            )

        # Once discovered a secret stays visible; only requirements can lock it
        return self._requirements_verdict(
            choice.requirements, ChoiceType.SECRET_AVAILABLE, ChoiceType.SECRET_AVAILABLE
        )

    def _evaluate_locked_choice(self, choice: Choice) -> EvaluationResult:
        # A locked choice authored with only conditions gates on those instead
        requirements = choice.requirements or choice.conditions
        return self._requirements_verdict(
            requirements, ChoiceType.UNLOCKED, ChoiceType.LOCKED
        )

    def _evaluate_hidden_choice(self, choice: Choice) -> EvaluationResult:
        if not self.conditions.evaluate_conditions(choice.conditions):
            return EvaluationResult(
                is_visible=False,
                is_selectable=False,
                type=ChoiceType.HIDDEN,
                state=ChoiceState.HIDDEN,
                reason="Conditions not met",
            )

        return self._requirements_verdict(
            choice.requirements, ChoiceType.VISIBLE, ChoiceType.LOCKED
        )

    def _requirements_verdict(
        self, requirements, met_type: ChoiceType, unmet_type: ChoiceType
    ) -> EvaluationResult:
        if self.conditions.evaluate_conditions(requirements):
            return EvaluationResult(
                is_visible=True,
                is_selectable=True,
                type=met_type,
                state=ChoiceState.VISIBLE,
            )

        reason = self.conditions.failure_reason(requirements)
        return EvaluationResult(
            is_visible=True,
            is_selectable=False,
            type=unmet_type,
            state=ChoiceState.LOCKED,
            reason=reason,
            lock_reasons=[reason] if reason else [],
        )

    def _apply_selectable_if(self, choice: Choice, evaluation: EvaluationResult) -> None:
        if not choice.selectable_if:
            evaluation.selectable_if_met = True
            return

        met = self.conditions.evaluate_conditions(choice.selectable_if)
        evaluation.selectable_if_met = met
        if not met:
            evaluation.lock("Selectable conditions not met")

    def _apply_usage_limits(self, choice: Choice, evaluation: EvaluationResult) -> None:
        if not evaluation.is_visible:
            return

        if choice.one_time:
            allowed: Optional[int] = 1
        elif choice.max_uses > 0:
            allowed = choice.max_uses
        else:
            allowed = None

        if allowed is None and choice.cooldown <= 0:
            return

        records = self._history_for(choice.id)
        times_used = len(records)

        if allowed is not None:
            evaluation.uses_remaining = max(0, allowed - times_used)
            if times_used >= allowed:
                if choice.one_time:
                    reason = "This choice can only be used once"
                else:
                    reason = (
                        "No uses remaining for this choice "
                        f"({evaluation.uses_remaining} left)"
                    )
                evaluation.lock(reason)
                return

        if choice.cooldown > 0 and records:
            elapsed = self.clock() - records[-1].timestamp
            remaining_ms = choice.cooldown - elapsed
            if remaining_ms > 0:
                evaluation.cooldown_remaining_ms = remaining_ms
                evaluation.lock(
                    f"On cooldown ({math.ceil(remaining_ms / 1000)}s remaining)"
                )

    def _history_for(self, choice_id: str) -> List[ChoiceHistoryRecord]:
        records = []
        for entry in self.choice_history:
            if not isinstance(entry, ChoiceHistoryRecord):
                try:
                    entry = ChoiceHistoryRecord(**dict(entry))
                except Exception as e:
                    logger.warning(f"Skipping malformed choice history entry: {e}")
                    continue
            if entry.choice_id == choice_id:
                records.append(entry)
        return records

    def _state_fingerprint(self) -> Dict[str, Any]:
        """Everything conditions can read, for memoisation keys"""
        return {
            "stats": self.oracle.get_all_stats(),
            "flags": self.oracle.get_all_flags(),
            "inventory": self.oracle.get_all_inventory(),
            "visited": self.oracle.get_visited_scenes(),
        }


def _choice_id(choice: ChoiceLike) -> str:
    if isinstance(choice, Choice):
        return choice.id
    return choice.get("id")
