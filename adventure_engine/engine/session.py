"""
Play session tying the engine components together for one adventure.
"""

import random
import time
from typing import Callable, List, Optional, Tuple

from adventure_engine.engine.actions import ActionExecutor
from adventure_engine.engine.choice_evaluator import ChoiceEvaluator
from adventure_engine.engine.content_cache import ContentCache
from adventure_engine.engine.errors import (
    ChoiceUnavailableError,
    SceneNotFoundError,
    StructuralValidationError,
)
from adventure_engine.engine.state import GameState
from adventure_engine.schemas import Adventure, Choice, EvaluationResult, Scene
from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


class EngineSession:
    """
    One player's run through an adventure.

    Owns the game state and wires it to the choice evaluator, the action
    executor and the content cache. Scene changes preload nearby scenes and
    unload distant ones in the background.
    """

    def __init__(
        self,
        adventure: Adventure,
        content_cache: Optional[ContentCache] = None,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.adventure = adventure
        self.scenes = adventure.scene_graph()
        self.clock = clock or _now_ms
        self.state = GameState(adventure.stats)
        self.evaluator = ChoiceEvaluator(
            self.state, choice_history=self.state.choice_history, clock=self.clock
        )
        self.actions = ActionExecutor(self.state, rng)
        self.content = content_cache or ContentCache()
        self.current_scene: Optional[Scene] = None

    async def start(self) -> Scene:
        """Enter the start scene (or the first scene if none is declared)"""
        start_scene_id = self.adventure.start_scene_id
        if not start_scene_id:
            if not self.adventure.scenes:
                raise StructuralValidationError(
                    f"Adventure {self.adventure.id} has no scenes", ["Missing scenes"]
                )
            start_scene_id = self.adventure.scenes[0].id

        logger.info(f"Starting adventure {self.adventure.id} at {start_scene_id}")
        return await self._enter_scene(start_scene_id)

    def available_choices(self) -> List[Tuple[Choice, EvaluationResult]]:
        """Visible choices of the current scene, recording discovered secrets"""
        if self.current_scene is None:
            return []

        pairs = self.evaluator.get_visible_choices(
            self.current_scene.choices, self.state.discovered_secrets
        )
        self.state.discover_secrets(
            choice.id for choice, evaluation in pairs if evaluation.should_mark_as_discovered
        )
        return pairs

    async def select_choice(self, choice_id: str) -> Scene:
        """
        Apply a choice and move to its target scene.

        Raises:
            ChoiceUnavailableError: The choice is unknown, hidden or locked
        """
        if self.current_scene is None:
            raise ChoiceUnavailableError("Session has not been started")

        scene = self.current_scene
        choice = next((c for c in scene.choices if c.id == choice_id), None)
        if choice is None:
            raise ChoiceUnavailableError(f"Choice {choice_id} not found in scene {scene.id}")

        evaluation = self.evaluator.evaluate_choice(choice, self.state.discovered_secrets)
        if not (evaluation.is_visible and evaluation.is_selectable):
            raise ChoiceUnavailableError(
                f"Choice {choice_id} is not available: {evaluation.reason}"
            )
        if evaluation.should_mark_as_discovered:
            self.state.discover_secrets([choice.id])

        self.actions.execute_actions(choice.actions)
        self.state.record_choice(choice.id, scene.id, self.clock())

        if not choice.target_scene_id:
            logger.warning(f"Choice {choice_id} has no target scene, staying in {scene.id}")
            return scene

        self.actions.execute_actions(scene.on_exit)
        return await self._enter_scene(choice.target_scene_id)

    async def scene_content(self, scene_id: Optional[str] = None) -> str:
        """Content of a scene (default: the current one), through the cache"""
        if scene_id is None:
            if self.current_scene is None:
                raise SceneNotFoundError("Session has not been started")
            scene_id = self.current_scene.id
        return await self.content.load_content(scene_id, self._load_scene_content, priority=10)

    async def close(self) -> None:
        await self.content.close()

    async def _enter_scene(self, scene_id: str) -> Scene:
        scene = self.scenes.get(scene_id)
        if scene is None:
            raise SceneNotFoundError(f"Scene {scene_id} not found")

        self.current_scene = scene
        self.state.visit_scene(scene.id)
        self.actions.execute_actions(scene.on_enter)

        self.content.preload_adjacent_content(scene.id, self.scenes, self._load_scene_content)
        self.content.prefetch_by_pattern(
            self.state.choice_history, self.scenes, self._load_scene_content
        )
        self.content.unload_distant_content(scene.id, self.scenes)
        return scene

    def _load_scene_content(self, scene_id: str) -> str:
        scene = self.scenes.get(scene_id)
        if scene is None:
            raise SceneNotFoundError(f"Scene {scene_id} not found")
        return scene.read_content()


async def create_session(adventure: Adventure, **kwargs) -> EngineSession:
    """Create a session and enter the start scene"""
    session = EngineSession(adventure, **kwargs)
    await session.start()
    return session
