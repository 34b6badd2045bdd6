"""
Adventure engine components
"""

from .actions import ActionExecutor
from .choice_evaluator import ChoiceEvaluator
from .conditions import ConditionEvaluator
from .content_cache import CacheEntry, ContentCache
from .errors import (
    AdventureEngineError,
    AdventureParseError,
    ChoiceUnavailableError,
    ConcurrentLoadError,
    ConditionEvaluationError,
    CycleDetectedError,
    ReadTimeoutError,
    SceneNotFoundError,
    SizeLimitExceededError,
    StructuralValidationError,
)
from .file_handler import AdventureFileHandler, BatchLoadResult, FileLoadOutcome
from .session import EngineSession, create_session
from .state import GameState, StatOracle

__all__ = [
    "ActionExecutor",
    "AdventureFileHandler",
    "BatchLoadResult",
    "CacheEntry",
    "ChoiceEvaluator",
    "ConditionEvaluator",
    "ContentCache",
    "EngineSession",
    "FileLoadOutcome",
    "GameState",
    "StatOracle",
    "create_session",
    # Errors
    "AdventureEngineError",
    "AdventureParseError",
    "ChoiceUnavailableError",
    "ConcurrentLoadError",
    "ConditionEvaluationError",
    "CycleDetectedError",
    "ReadTimeoutError",
    "SceneNotFoundError",
    "SizeLimitExceededError",
    "StructuralValidationError",
]
