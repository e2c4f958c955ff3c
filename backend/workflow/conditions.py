"""Guard expressions for conditional steps.

Grammar (one comparison per guard):

    ${path} <op> <literal>

    op       ==  !=  <  <=  >  >=   (ordering operators need a numeric literal)
    literal  bare word, 'quoted' or "quoted" text, number, null, true, false

Examples:
    ${trigger.category} == tools
    ${trigger.category} != "power tools"
    ${inventory.count} >= 10
"""

import json
import re
from typing import Any, Mapping, Optional

from core.exceptions import ExpressionError
from workflow.resolver import VariableResolver


EXPRESSION_PATTERN = re.compile(r"^\s*\$\{([^}]+)\}\s*(==|!=|<=|>=|<|>)\s*(.+?)\s*$")

ORDERING_OPERATORS = {"<", "<=", ">", ">="}

_MISSING = object()


def _parse_literal(raw: str) -> Any:
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("'", '"'):
        return raw[1:-1]
    if raw == "null":
        return None
    if raw == "true":
        return True
    if raw == "false":
        return False
    number = _as_number(raw)
    if number is not _MISSING:
        return number
    return raw


def _as_number(value: Any) -> Any:
    """The numeric form of a value, or _MISSING when it is not numeric."""
    if isinstance(value, bool):
        return _MISSING
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            return _MISSING
    return _MISSING


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return json.dumps(value, default=str, sort_keys=True)


class ConditionEvaluator:
    """Evaluates guard expressions against an execution context."""

    def __init__(self, context: Mapping[str, Any], skipped: Optional[Mapping[str, str]] = None):
        self._resolver = VariableResolver(context, skipped)

    @staticmethod
    def parse(expression: str) -> tuple[str, str, str]:
        """Split a guard into (path, operator, raw literal). Raises ExpressionError."""
        if not isinstance(expression, str):
            raise ExpressionError(f"Condition must be a string, got {type(expression).__name__}")
        match = EXPRESSION_PATTERN.match(expression)
        if not match or "${" in match.group(3):
            raise ExpressionError(f"Malformed condition: {expression!r}")
        return match.group(1).strip(), match.group(2), match.group(3)

    def evaluate(self, expression: Optional[str]) -> bool:
        """True when the step should run. An empty guard always runs."""
        if expression is None or not expression.strip():
            return True

        path, operator, raw_literal = self.parse(expression)
        literal = _parse_literal(raw_literal)
        value = self._resolver.lookup(path)

        literal_number = _as_number(literal) if not isinstance(literal, str) else _MISSING
        value_number = _as_number(value)

        if operator in ORDERING_OPERATORS:
            if literal_number is _MISSING:
                raise ExpressionError(
                    f"Operator '{operator}' needs a numeric literal in {expression!r}"
                )
            if value_number is _MISSING:
                raise ExpressionError(
                    f"Cannot order non-numeric value {value!r} in {expression!r}"
                )
            if operator == "<":
                return value_number < literal_number
            if operator == "<=":
                return value_number <= literal_number
            if operator == ">":
                return value_number > literal_number
            return value_number >= literal_number

        if literal_number is not _MISSING and value_number is not _MISSING:
            equal = value_number == literal_number
        elif literal is None:
            equal = value is None
        elif isinstance(literal, bool):
            equal = value is literal or _as_text(value) == _as_text(literal)
        else:
            equal = _as_text(value) == _as_text(literal)

        return equal if operator == "==" else not equal


def evaluate_condition(
    expression: Optional[str],
    context: Mapping[str, Any],
    skipped: Optional[Mapping[str, str]] = None,
) -> bool:
    """Evaluate a guard expression. See ConditionEvaluator."""
    return ConditionEvaluator(context, skipped).evaluate(expression)
