"""
Tests for Samflow execution context, condition operators and evaluator.
"""

import asyncio

import pytest

from samflow.conditions.evaluator import ConditionEvaluator
from samflow.conditions.operators import OperatorRegistry, contains, greater_than, values_equal
from samflow.execution.context import ExecutionContext
from samflow.types import ConditionType, ExecutionStatus, WorkflowCondition
from samflow.values import ParameterValue, ValueKind


def pv(value):
    return ParameterValue.of(value)


# === Execution Context ===


class TestExecutionContext:
    """Tests for variables and placeholder expansion."""

    def test_variables_and_nested_paths(self):
        context = ExecutionContext("wf", {"user": {"name": "Ada", "tags": ["x", "y"]}})
        assert context.get("user.name") == pv("Ada")
        assert context.get("user.tags.1") == pv("y")
        assert context.get("user.missing") is None
        assert context.get("user.tags.9") is None
        assert context.has("user")

    def test_whole_placeholder_keeps_type(self):
        context = ExecutionContext("wf", {"count": 3})
        assert context.expand(pv("{{count}}")) == pv(3)
        assert context.expand(pv("{{ count }}")) == pv(3)

    def test_interpolation(self):
        context = ExecutionContext("wf", {"name": "report", "ok": True})
        expanded = context.expand(pv("file {{name}}.txt ok={{ok}}"))
        assert expanded == pv("file report.txt ok=true")

    def test_unresolved_placeholders_left_verbatim(self):
        context = ExecutionContext("wf")
        params = context.expand_all({"path": pv("~/{{folder}}/x"), "whole": pv("{{missing}}")})
        assert params["path"] == pv("~/{{folder}}/x")
        assert params["whole"] == pv("{{missing}}")
        assert sorted(context.unresolved) == ["folder", "missing"]

    def test_expand_into_lists_and_maps(self):
        context = ExecutionContext("wf", {"a": "A"})
        expanded = context.expand(pv({"items": ["{{a}}", 2]}))
        assert expanded.to_python() == {"items": ["A", 2]}

    def test_pause_resume_cancel(self):
        context = ExecutionContext("wf")
        assert context.pause() is False
        context.start()
        assert context.pause() is True
        assert context.status == ExecutionStatus.PAUSED
        assert context.resume() is True
        assert context.cancel() is True
        assert context.is_cancelled
        context.finish(ExecutionStatus.CANCELLED)
        assert context.cancel() is False

    @pytest.mark.asyncio
    async def test_cancel_wakes_paused_run(self):
        context = ExecutionContext("wf")
        context.start()
        context.pause()

        waiter = asyncio.create_task(context.wait_if_paused())
        await asyncio.sleep(0)
        assert not waiter.done()

        context.cancel()
        await asyncio.wait_for(waiter, timeout=1)


# === Operators ===


class TestOperators:
    """Tests for value-aware comparison."""

    def test_numeric_equality_across_kinds(self):
        assert values_equal(pv(1), pv(1.0))
        assert not values_equal(pv("1"), pv(1))
        assert not values_equal(pv(True), pv(1))

    def test_contains(self):
        assert contains(pv("hello world"), pv("world"))
        assert contains(pv(["a", "b"]), pv("b"))
        assert not contains(pv(5), pv(5))

    def test_ordering_requires_numbers(self):
        assert greater_than(pv(5), pv(3))
        assert not greater_than(pv("5"), pv(3))

    def test_registry(self):
        registry = OperatorRegistry()
        assert registry.evaluate("starts_with", pv("report.pdf"), pv("rep"))
        assert registry.evaluate("matches", pv("IMG_001.jpg"), pv(r"IMG_\d+"))
        assert registry.evaluate("in", pv("b"), pv(["a", "b"]))
        assert registry.evaluate(">=", pv(3), pv(3))

        registry.register("is_even", lambda a, b: a.as_number() % 2 == 0)
        assert registry.evaluate("is_even", pv(4), pv(0))

        with pytest.raises(ValueError):
            registry.evaluate("nope", pv(1), pv(1))


# === Evaluator ===


class TestConditionEvaluator:
    """Tests for condition evaluation."""

    @pytest.mark.asyncio
    async def test_comparisons(self, evaluator):
        context = ExecutionContext("wf", {"count": 5, "mode": "fast", "names": ["a", "b"]})

        cases = [
            (WorkflowCondition(ConditionType.EQUALS, "mode", "fast"), True),
            (WorkflowCondition(ConditionType.NOT_EQUALS, "mode", "slow"), True),
            (WorkflowCondition(ConditionType.GREATER_THAN, "count", 3), True),
            (WorkflowCondition(ConditionType.LESS_THAN, "count", 3), False),
            (WorkflowCondition(ConditionType.CONTAINS, "names", "b"), True),
            (WorkflowCondition(ConditionType.EQUALS, "count", "5"), False),
        ]
        for condition, expected in cases:
            assert await evaluator.evaluate(condition, context) is expected

    @pytest.mark.asyncio
    async def test_absent_variable_is_false(self, evaluator):
        context = ExecutionContext("wf")
        assert await evaluator.evaluate(WorkflowCondition(ConditionType.EQUALS, "x", ""), context) is False
        assert await evaluator.evaluate(WorkflowCondition(ConditionType.NOT_EQUALS, "x", "y"), context) is False

    @pytest.mark.asyncio
    async def test_file_exists(self, evaluator, probe):
        probe.files.add("/data/report.txt")
        context = ExecutionContext("wf", {"report": "/data/report.txt", "folder": "/data"})

        by_variable = WorkflowCondition(ConditionType.FILE_EXISTS, "report")
        by_value = WorkflowCondition(ConditionType.FILE_EXISTS, "", "{{folder}}/report.txt")
        missing = WorkflowCondition(ConditionType.FILE_EXISTS, "", "/missing")

        assert await evaluator.evaluate(by_variable, context) is True
        assert await evaluator.evaluate(by_value, context) is True
        assert await evaluator.evaluate(missing, context) is False

    @pytest.mark.asyncio
    async def test_app_running(self, evaluator, probe):
        probe.apps.add("Mail")
        context = ExecutionContext("wf")
        assert await evaluator.evaluate(WorkflowCondition(ConditionType.APP_RUNNING, "Mail"), context)
        assert not await evaluator.evaluate(WorkflowCondition(ConditionType.APP_RUNNING, "Notes"), context)

    @pytest.mark.asyncio
    async def test_custom_operator(self, evaluator):
        context = ExecutionContext("wf", {"file": "notes.md"})
        condition = WorkflowCondition(ConditionType.CUSTOM, "file", ".md", operator="ends_with")
        assert await evaluator.evaluate(condition, context) is True

        unknown = WorkflowCondition(ConditionType.CUSTOM, "file", ".md", operator="rhymes_with")
        assert await evaluator.evaluate(unknown, context) is False

    @pytest.mark.asyncio
    async def test_probe_errors_are_false(self, probe):
        class BrokenProbe(type(probe)):
            async def file_exists(self, path):
                raise OSError("disk gone")

        evaluator = ConditionEvaluator(probe=BrokenProbe())
        context = ExecutionContext("wf")
        condition = WorkflowCondition(ConditionType.FILE_EXISTS, "", "/x")
        assert await evaluator.evaluate(condition, context) is False

    def test_value_kinds(self):
        condition = WorkflowCondition(ConditionType.GREATER_THAN, "count", 3)
        assert condition.value.kind == ValueKind.INT
