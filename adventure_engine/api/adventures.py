"""
Adventure API endpoints.

Stateless checks for authoring tools: structural validation of a document
and choice evaluation against a supplied player state.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from adventure_engine.engine import AdventureFileHandler, ChoiceEvaluator, GameState
from adventure_engine.schemas import StatDefinition
from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

file_handler = AdventureFileHandler()


class ValidateRequest(BaseModel):
    """Adventure document to check"""

    adventure: Dict[str, Any]
    strict: bool = Field(False, description="Treat circular references as blocking")


class ValidateResponse(BaseModel):
    is_valid: bool
    errors: List[str]
    cycle_errors: List[str]
    warnings: List[str]
    blocking_errors: List[str]


class EvaluateChoicesRequest(BaseModel):
    """Choices plus the player state to evaluate them against"""

    choices: List[Dict[str, Any]]
    state: Dict[str, Any] = Field(
        default_factory=dict,
        description="stats, flags, inventory, visited_scenes, discovered_secrets",
    )
    stats: List[StatDefinition] = Field(
        default_factory=list, description="Stat definitions for defaults and bounds"
    )
    choice_history: List[Dict[str, Any]] = Field(default_factory=list)
    now: Optional[float] = Field(None, description="Current time in milliseconds")


class ChoiceEvaluationResponse(BaseModel):
    choice_id: Optional[str]
    evaluation: Dict[str, Any]


class EvaluateChoicesResponse(BaseModel):
    evaluations: List[ChoiceEvaluationResponse]
    newly_discovered: List[str]


@router.post("/validate", response_model=ValidateResponse)
async def validate_adventure(request: ValidateRequest):
    """Run the structural checks used on load and save"""
    logger.info(f"Validating adventure {request.adventure.get('id')}")

    report = file_handler.validate_adventure_structure(request.adventure)
    if not report.is_valid:
        logger.info(f"Validation found {len(report.errors)} errors")

    return ValidateResponse(
        is_valid=report.is_valid,
        errors=report.errors,
        cycle_errors=report.cycle_errors,
        warnings=report.warnings,
        blocking_errors=report.blocking_errors(request.strict),
    )


@router.post("/choices/evaluate", response_model=EvaluateChoicesResponse)
async def evaluate_choices(request: EvaluateChoicesRequest):
    """Evaluate every choice against the supplied state"""
    logger.info(f"Evaluating {len(request.choices)} choices")

    try:
        state = GameState.from_snapshot(request.state, request.stats)
    except Exception as e:
        logger.error(f"Invalid state payload: {e}")
        raise HTTPException(status_code=400, detail=f"Invalid state: {e}")

    clock = (lambda: request.now) if request.now is not None else None
    evaluator = ChoiceEvaluator(state, choice_history=request.choice_history, clock=clock)

    pairs = evaluator.evaluate_choices(request.choices, state.discovered_secrets)
    return EvaluateChoicesResponse(
        evaluations=[
            ChoiceEvaluationResponse(choice_id=choice.get("id"), evaluation=result.dict())
            for choice, result in pairs
        ],
        newly_discovered=[
            choice.get("id") for choice, result in pairs if result.should_mark_as_discovered
        ],
    )
