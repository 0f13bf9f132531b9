"""Boolean condition trees evaluated against a data object.

Shared by the filter and branch blocks. Evaluation is fail-closed: an
unknown operator, a malformed regex or an operand of the wrong type yields
``False`` and is logged, it never raises.
"""

import logging
import numbers
import re
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from ..utils.paths import MISSING, get_path

logger = logging.getLogger(__name__)

OperatorFn = Callable[[Any, Any], bool]

COMPOSITE_OPERATORS = ("and", "or")


class Condition(BaseModel):
    """``{field, operator, value, conditions?}``.

    With ``conditions`` present the node is a composite and ``operator`` must
    be ``and`` or ``or``.
    """
    model_config = ConfigDict(frozen=True)

    field: Optional[str] = None  # Dotted path; None means the whole object
    operator: str = "exists"
    value: Any = None
    conditions: Optional[List["Condition"]] = None


Condition.model_rebuild()


def _is_number(v: Any) -> bool:
    return isinstance(v, numbers.Real) and not isinstance(v, bool)


def _strict_equals(a: Any, b: Any) -> bool:
    """Equality without Python's bool/int coercion (``True != 1``)."""
    if a is MISSING or b is MISSING:
        return a is b
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _in_list(needle: Any, haystack: list) -> bool:
    return any(_strict_equals(needle, item) for item in haystack)


def _exists(field_value: Any, _value: Any) -> bool:
    return field_value is not MISSING and field_value is not None


def _not_exists(field_value: Any, _value: Any) -> bool:
    return not _exists(field_value, _value)


def _equals(field_value: Any, value: Any) -> bool:
    return _strict_equals(field_value, value)


def _not_equals(field_value: Any, value: Any) -> bool:
    return not _strict_equals(field_value, value)


def _contains(field_value: Any, value: Any) -> bool:
    if isinstance(field_value, str):
        return isinstance(value, str) and value in field_value
    if isinstance(field_value, (list, tuple)):
        return _in_list(value, list(field_value))
    return False


def _not_contains(field_value: Any, value: Any) -> bool:
    if isinstance(field_value, str):
        return not (isinstance(value, str) and value in field_value)
    if isinstance(field_value, (list, tuple)):
        return not _in_list(value, list(field_value))
    # Nothing to contain anything
    return True


def _greater_than(field_value: Any, value: Any) -> bool:
    return _is_number(field_value) and _is_number(value) and field_value > value


def _less_than(field_value: Any, value: Any) -> bool:
    return _is_number(field_value) and _is_number(value) and field_value < value


def _regex(field_value: Any, value: Any) -> bool:
    if not isinstance(field_value, str) or not isinstance(value, str):
        return False
    try:
        return re.search(value, field_value) is not None
    except re.error as e:
        logger.error(f"Invalid regex pattern '{value}': {e}")
        return False


def _in(field_value: Any, value: Any) -> bool:
    return isinstance(value, (list, tuple)) and _in_list(field_value, list(value))


def _not_in(field_value: Any, value: Any) -> bool:
    return isinstance(value, (list, tuple)) and not _in_list(field_value, list(value))


def _default_operators() -> Dict[str, OperatorFn]:
    """Fresh operator map so ``register`` on one evaluator never leaks into another."""
    return {
        "exists": _exists,
        "not_exists": _not_exists,
        "equals": _equals,
        "not_equals": _not_equals,
        "contains": _contains,
        "not_contains": _not_contains,
        "greater_than": _greater_than,
        "less_than": _less_than,
        "regex": _regex,
        "in": _in,
        "not_in": _not_in,
    }


ConditionLike = Union[Condition, Dict[str, Any]]


class ConditionEvaluator:
    """Evaluates condition trees; operators can be extended per instance."""

    def __init__(self):
        self._operators = _default_operators()

    @property
    def operators(self) -> List[str]:
        return sorted(self._operators)

    def register(self, name: str, fn: OperatorFn) -> None:
        """Add or replace a leaf operator."""
        if name in COMPOSITE_OPERATORS:
            raise ValueError(f"'{name}' is reserved for composite conditions")
        self._operators[name] = fn

    def evaluate(self, condition: ConditionLike, data: Any) -> bool:
        if isinstance(condition, Condition):
            cond = condition
        else:
            try:
                cond = Condition.model_validate(condition)
            except ValidationError as e:
                logger.warning(f"Malformed condition {condition!r}: {e.error_count()} validation error(s)")
                return False

        if cond.conditions is not None:
            if cond.operator == "and":
                return all(self.evaluate(c, data) for c in cond.conditions)
            if cond.operator == "or":
                return any(self.evaluate(c, data) for c in cond.conditions)
            logger.warning(
                f"Composite condition requires 'and'/'or' operator, got '{cond.operator}'"
            )
            return False

        operator_fn = self._operators.get(cond.operator)
        if operator_fn is None:
            logger.warning(f"Unknown condition operator: {cond.operator}")
            return False

        field_value = get_path(data, cond.field, MISSING)
        try:
            return bool(operator_fn(field_value, cond.value))
        except Exception as e:
            logger.error(f"Error evaluating condition {cond.operator} on '{cond.field}': {e}")
            return False

    def evaluate_all(self, conditions: Optional[List[ConditionLike]], data: Any) -> bool:
        """AND over a list of conditions; an empty list passes."""
        if not conditions:
            return True
        return all(self.evaluate(c, data) for c in conditions)


_default_evaluator = ConditionEvaluator()


def evaluate_condition(condition: ConditionLike, data: Any) -> bool:
    """Evaluate with the built-in operator set."""
    return _default_evaluator.evaluate(condition, data)


def evaluate_conditions(conditions: Optional[List[ConditionLike]], data: Any) -> bool:
    return _default_evaluator.evaluate_all(conditions, data)
