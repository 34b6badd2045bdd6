"""
Schema validation utilities
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from .adventure import Adventure, Choice


class ValidationReport(BaseModel):
    """Outcome of a structural check of an adventure document"""

    is_valid: bool
    errors: List[str] = Field(
        default_factory=list, description="All errors, cycle errors included"
    )
    cycle_errors: List[str] = Field(
        default_factory=list, description="Advisory circular-reference errors"
    )
    warnings: List[str] = Field(default_factory=list)

    def blocking_errors(self, strict: bool = False) -> List[str]:
        """Errors that should stop a load or save; cycles only block when strict"""
        if strict:
            return list(self.errors)
        return [e for e in self.errors if e not in self.cycle_errors]


def validate_adventure(data: Dict[str, Any]) -> Adventure:
    """Validate and parse an adventure document"""
    try:
        return Adventure(**data)
    except Exception as e:
        raise ValueError(f"Invalid adventure: {e}")


def validate_choice(data: Dict[str, Any]) -> Choice:
    """Validate and parse a single choice"""
    try:
        return Choice(**data)
    except Exception as e:
        raise ValueError(f"Invalid choice: {e}")
