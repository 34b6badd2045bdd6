"""
Schemas and validation for the Adventure Engine
"""

from .adventure import (
    Action,
    ActionKind,
    Adventure,
    Choice,
    ChoiceHistoryRecord,
    Condition,
    ConditionKind,
    Operator,
    Scene,
    StatDefinition,
)
from .evaluation import ChoiceState, ChoiceType, EvaluationResult
from .validation import ValidationReport, validate_adventure, validate_choice

__all__ = [
    # Document models
    "Adventure",
    "Scene",
    "Choice",
    "Condition",
    "ConditionKind",
    "Operator",
    "Action",
    "ActionKind",
    "StatDefinition",
    "ChoiceHistoryRecord",
    # Evaluation
    "EvaluationResult",
    "ChoiceState",
    "ChoiceType",
    # Validation
    "ValidationReport",
    "validate_adventure",
    "validate_choice",
]
