"""
Exceptions raised by the adventure engine
"""

from typing import List, Optional


class AdventureEngineError(Exception):
    """Base class for engine errors"""


class StructuralValidationError(AdventureEngineError, ValueError):
    """An adventure document is missing required data or is malformed"""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class CycleDetectedError(StructuralValidationError):
    """A scene reappears on the active path of a traversal from the start scene"""

    def __init__(self, path: List[str]):
        self.path = list(path)
        message = f"Circular reference detected: {' -> '.join(self.path)}"
        super().__init__(message, [message])

    @property
    def cycle(self) -> List[str]:
        """Only the looping part of the path, first and last element equal"""
        return self.path[self.path.index(self.path[-1]) :]


class SizeLimitExceededError(AdventureEngineError):
    """A file is larger than the configured maximum"""


class ConcurrentLoadError(AdventureEngineError):
    """The same file is already being loaded"""


class AdventureParseError(AdventureEngineError, ValueError):
    """Document text could not be parsed"""


class ReadTimeoutError(AdventureEngineError):
    """A chunked read did not complete in time"""


class ConditionEvaluationError(AdventureEngineError):
    """A condition could not be evaluated; callers treat it as unmet"""


class SceneNotFoundError(AdventureEngineError, KeyError):
    """A scene id does not exist in the adventure"""


class ChoiceUnavailableError(AdventureEngineError):
    """A choice was selected that is missing, hidden or not selectable"""
