"""
Choice evaluation result definitions
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ChoiceState(str, Enum):
    """How a choice is presented"""

    VISIBLE = "VISIBLE"
    HIDDEN = "HIDDEN"
    LOCKED = "LOCKED"


class ChoiceType(str, Enum):
    """Which branch of the evaluation state machine produced the verdict"""

    VISIBLE = "VISIBLE"
    HIDDEN = "HIDDEN"
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"
    SECRET_HIDDEN = "SECRET_HIDDEN"
    SECRET_DISCOVERED = "SECRET_DISCOVERED"
    SECRET_AVAILABLE = "SECRET_AVAILABLE"


class EvaluationResult(BaseModel):
    """Visibility and selectability verdict for one choice"""

    is_visible: bool = Field(..., description="Whether the choice is shown")
    is_selectable: bool = Field(..., description="Whether it can be picked")
    type: ChoiceType
    state: ChoiceState
    reason: Optional[str] = Field(None, description="Primary explanation")
    lock_reasons: List[str] = Field(default_factory=list)
    cooldown_remaining_ms: Optional[float] = Field(
        None, description="Milliseconds until the cooldown expires"
    )
    uses_remaining: Optional[int] = Field(
        None, description="Uses left for choices with a usage cap"
    )
    should_mark_as_discovered: bool = Field(
        default=False, description="Caller should record this secret as discovered"
    )
    selectable_if_met: bool = True

    def lock(self, reason: str) -> None:
        """Demote to not selectable, keeping a hidden verdict hidden"""
        self.is_selectable = False
        if self.state != ChoiceState.HIDDEN:
            self.state = ChoiceState.LOCKED
            self.type = ChoiceType.LOCKED
        if reason not in self.lock_reasons:
            self.lock_reasons.append(reason)
