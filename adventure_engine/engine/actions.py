"""
Applies scene and choice actions to the game state.
"""

import random
from typing import Any, Iterable, List, Mapping, Optional, Union

from adventure_engine.engine.state import GameState
from adventure_engine.schemas import Action, ActionKind
from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)

ActionLike = Union[Action, Mapping[str, Any]]


class ActionExecutor:
    """Runs action lists against a GameState"""

    def __init__(self, state: GameState, rng: Optional[random.Random] = None):
        self.state = state
        self.rng = rng or random.Random()

    def execute_actions(self, actions: Optional[Iterable[ActionLike]]) -> List[Action]:
        """
        Execute actions in order.

        Malformed actions are logged and skipped so one bad record does not
        abort the rest of the list.

        Returns:
            The actions that actually ran
        """
        executed = []
        for raw in actions or []:
            try:
                action = raw if isinstance(raw, Action) else Action(**dict(raw))
            except Exception as e:
                logger.warning(f"Skipping malformed action {raw!r}: {e}")
                continue

            if action.probability < 1.0 and self.rng.random() >= action.probability:
                logger.debug(f"Action {action.type.value} {action.key} skipped by chance")
                continue

            self.execute_action(action)
            executed.append(action)
        return executed

    def execute_action(self, action: Action) -> None:
        logger.debug(f"Executing action: {action.type.value} {action.key} {action.value}")
        state = self.state
        kind = action.type

        if kind == ActionKind.SET_STAT:
            state.set_stat(action.key, action.value)
        elif kind == ActionKind.ADD_STAT:
            state.add_to_stat(action.key, action.value or 0)
        elif kind == ActionKind.MULTIPLY_STAT:
            state.multiply_stat(action.key, 1 if action.value is None else action.value)
        elif kind == ActionKind.SET_FLAG:
            state.set_flag(action.key, True if action.value is None else action.value)
        elif kind == ActionKind.TOGGLE_FLAG:
            state.toggle_flag(action.key)
        elif kind == ActionKind.ADD_INVENTORY:
            state.add_item(action.key, int(action.value or 1))
        elif kind == ActionKind.REMOVE_INVENTORY:
            state.remove_item(action.key, int(action.value or 1))
        elif kind == ActionKind.SET_INVENTORY:
            state.set_item_count(action.key, int(action.value or 0))
        elif kind == ActionKind.ADD_ACHIEVEMENT:
            if state.add_achievement(action.key):
                logger.info(f"Achievement unlocked: {action.key}")
