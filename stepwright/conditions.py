"""Comparison conditions used by conditional and while-loop nodes."""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from .contracts import Condition
from .templating import Scope, interpolate

logger = logging.getLogger(__name__)


def _as_number(value: str) -> Optional[float]:
    if "_" in value:
        return None
    try:
        number = float(value.strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _numeric(compare: Callable[[float, float], bool]) -> Callable[[str, str], bool]:
    def _check(left: str, right: str) -> bool:
        a, b = _as_number(left), _as_number(right)
        if a is None or b is None:
            return False
        return compare(a, b)

    return _check


OPERATORS: Dict[str, Callable[[str, str], bool]] = {
    "eq": lambda left, right: left == right,
    "neq": lambda left, right: left != right,
    "gt": _numeric(lambda a, b: a > b),
    "gte": _numeric(lambda a, b: a >= b),
    "lt": _numeric(lambda a, b: a < b),
    "lte": _numeric(lambda a, b: a <= b),
    "contains": lambda left, right: right in left,
}


def evaluate(
    condition: Union[Condition, Mapping[str, Any], None], context: Scope
) -> bool:
    """Evaluate ``condition`` with both operands interpolated against ``context``.

    Numeric operators fail closed when either side is not a finite number,
    and unknown operators evaluate to ``False``.
    """
    if condition is None:
        return False
    if not isinstance(condition, Condition):
        try:
            condition = Condition.model_validate(condition)
        except ValidationError as exc:
            logger.warning(f"Ignoring malformed condition {condition!r}: {exc}")
            return False

    compare = OPERATORS.get(condition.op)
    if compare is None:
        logger.warning(f"Unknown condition operator '{condition.op}'")
        return False

    left = interpolate(condition.left, context)
    right = interpolate(condition.right, context)
    result = compare(left, right)
    logger.debug(f"Condition {left!r} {condition.op} {right!r} -> {result}")
    return result
