"""Samflow condition evaluation."""

from samflow.conditions.evaluator import ConditionEvaluator
from samflow.conditions.operators import OperatorRegistry, values_equal

__all__ = ["ConditionEvaluator", "OperatorRegistry", "values_equal"]
