"""Edge condition expressions for flow decision nodes.

Supported forms::

    approved == true
    region != "emea"
    amount == 1500
    amount > 1000
    is_vip

Ordered comparisons (``>``, ``>=``, ``<``, ``<=``) only hold between
numbers. Literals are numeric only when they look like plain decimal
numbers, so ``inf`` or ``1_000`` compare as strings. Any other expression
is looked up as a variable name and tested for truthiness; nothing raises,
so a decision edge with an unparsable condition is simply not taken.
"""

from __future__ import annotations

import logging
import operator
import re
from typing import Any, Mapping

logger = logging.getLogger(__name__)

_COMPARISON = re.compile(r'^(\w+)\s*(==|!=|>=|<=|>|<)\s*"?([^"]*)"?$')
_NUMBER = re.compile(r"^-?\d+(\.\d+)?([eE][-+]?\d+)?$")

_ORDERED = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


def _parse_number(text: str) -> float | None:
    if not _NUMBER.match(text):
        return None
    return float(text)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _equals(actual: Any, expected: str) -> bool:
    if expected == "true":
        return actual is True or actual == "true"
    if expected == "false":
        return actual is False or actual == "false"
    number = _parse_number(expected)
    if number is not None:
        return _is_number(actual) and actual == number
    return str(actual) == expected


def evaluate_condition(condition: str, variables: Mapping[str, Any]) -> bool:
    """Evaluate ``condition`` against flow ``variables``."""
    expression = (condition or "").strip()
    if not expression:
        return False

    match = _COMPARISON.match(expression)
    if match:
        field, op, expected = match.groups()
        actual = variables.get(field)
        if op == "==":
            return _equals(actual, expected)
        if op == "!=":
            return not _equals(actual, expected)
        number = _parse_number(expected)
        if number is None or not _is_number(actual):
            return False
        return _ORDERED[op](actual, number)

    # Anything that is not a comparison is a truthiness check on a variable
    # named by the whole expression; unknown names are falsy.
    if expression not in variables:
        logger.debug(f"Condition {condition!r} names no variable; treated as false")
    return bool(variables.get(expression))
