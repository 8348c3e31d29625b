"""
Samflow Condition Operators

Comparison operators for condition evaluation.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, Optional

from samflow.values import ParameterValue, ValueKind

OperatorFunc = Callable[[ParameterValue, ParameterValue], bool]


def values_equal(left: ParameterValue, right: ParameterValue) -> bool:
    """
    Value-type-aware equality.

    Numbers compare numerically across int and float. Other kinds must
    match exactly; a string never equals a number.
    """
    if left.is_numeric and right.is_numeric:
        return left.value == right.value
    if left.kind != right.kind:
        return False
    if left.kind == ValueKind.LIST:
        return len(left.value) == len(right.value) and all(
            values_equal(a, b) for a, b in zip(left.value, right.value)
        )
    if left.kind == ValueKind.MAP:
        return left.value.keys() == right.value.keys() and all(
            values_equal(v, right.value[k]) for k, v in left.value.items()
        )
    return left.value == right.value


def contains(left: ParameterValue, right: ParameterValue) -> bool:
    """Substring check for strings, membership for lists."""
    if left.kind == ValueKind.STRING:
        return right.as_text() in left.value
    if left.kind == ValueKind.LIST:
        return any(values_equal(item, right) for item in left.value)
    return False


def _numeric(op: Callable[[float, float], bool]) -> OperatorFunc:
    def compare(left: ParameterValue, right: ParameterValue) -> bool:
        a, b = left.as_number(), right.as_number()
        if a is None or b is None:
            return False
        return op(a, b)
    return compare


greater_than = _numeric(lambda a, b: a > b)
less_than = _numeric(lambda a, b: a < b)


class OperatorRegistry:
    """
    Registry of named operators for custom conditions.

    Provides standard operators and allows custom operator registration.
    """

    def __init__(self):
        self._operators: Dict[str, OperatorFunc] = {}
        self._register_builtin_operators()

    def _register_builtin_operators(self) -> None:
        """Register built-in operators."""
        self._operators["=="] = values_equal
        self._operators["!="] = lambda a, b: not values_equal(a, b)
        self._operators[">"] = greater_than
        self._operators["<"] = less_than
        self._operators[">="] = _numeric(lambda a, b: a >= b)
        self._operators["<="] = _numeric(lambda a, b: a <= b)
        self._operators["contains"] = contains
        self._operators["in"] = lambda a, b: contains(b, a)
        self._operators["starts_with"] = self._starts_with
        self._operators["ends_with"] = self._ends_with
        self._operators["matches"] = self._matches

    def register(self, name: str, func: OperatorFunc) -> None:
        """Register a custom operator."""
        self._operators[name] = func

    def get(self, name: str) -> Optional[OperatorFunc]:
        return self._operators.get(name)

    def names(self):
        return sorted(self._operators)

    def evaluate(self, name: str, left: ParameterValue, right: ParameterValue) -> bool:
        """Evaluate an operator."""
        func = self._operators.get(name)
        if not func:
            raise ValueError(f"Unknown operator: {name}")

        return func(left, right)

    # === Operator Implementations ===

    @staticmethod
    def _starts_with(left: ParameterValue, right: ParameterValue) -> bool:
        if left.kind != ValueKind.STRING:
            return False
        return left.value.startswith(right.as_text())

    @staticmethod
    def _ends_with(left: ParameterValue, right: ParameterValue) -> bool:
        if left.kind != ValueKind.STRING:
            return False
        return left.value.endswith(right.as_text())

    @staticmethod
    def _matches(left: ParameterValue, right: ParameterValue) -> bool:
        """Regex search."""
        if left.kind != ValueKind.STRING:
            return False
        try:
            return re.search(right.as_text(), left.value) is not None
        except re.error:
            return False
