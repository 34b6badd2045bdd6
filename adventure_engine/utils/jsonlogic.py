"""
JSONLogic evaluator for condition comparisons
"""

from typing import Any, Dict

import json_logic as jsonlogic

# Operators a flat condition record may compile to
COMPARISON_OPERATORS = {"==", "!=", "<", ">", "<=", ">="}


class JSONLogicEvaluator:
    """Evaluates JSONLogic expressions against a context"""

    def __init__(self):
        self.evaluator = jsonlogic

    def evaluate(self, expression: Dict[str, Any], context: Dict[str, Any]) -> Any:
        """Evaluate a JSONLogic expression against context"""

        try:
            return self.evaluator.jsonLogic(expression, context)
        except Exception as e:
            raise ValueError(f"JSONLogic evaluation failed: {e}")

    def evaluate_condition(
        self, condition: Dict[str, Any], context: Dict[str, Any]
    ) -> bool:
        """Evaluate a condition and return boolean result"""

        return bool(self.evaluate(condition, context))

    def compile_comparison(self, operator: str, target: Any) -> Dict[str, Any]:
        """Build a rule comparing the context's ``current`` value to target"""

        if operator not in COMPARISON_OPERATORS:
            raise ValueError(f"Unsupported comparison operator: {operator}")
        return {operator: [{"var": "current"}, target]}

    def compare(self, current: Any, operator: str, target: Any) -> bool:
        """Compare a resolved value against a target with a JSONLogic operator"""

        rule = self.compile_comparison(operator, target)
        return self.evaluate_condition(rule, {"current": current})
