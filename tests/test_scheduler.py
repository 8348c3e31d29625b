"""
Tests for Samflow cron schedules, the workflow scheduler and event sources.
"""

import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from samflow.errors import (
    InvalidScheduleError,
    WorkflowAlreadyRunningError,
    WorkflowNotFoundError,
)
from samflow.core.config import SchedulerConfig
from samflow.triggers.monitors import LocalEventSource
from samflow.triggers.schedule import CronSchedule, describe_cron, parse_cron, validate_cron
from samflow.triggers.scheduler import WorkflowScheduler, normalize_hotkey
from samflow.types import (
    TriggerType,
    WorkflowDefinition,
    WorkflowStep,
    WorkflowStepType,
    WorkflowTrigger,
)
from samflow.values import ParameterValue


def notify_step():
    return WorkflowStep(
        id="notify",
        name="Notify",
        type=WorkflowStepType.NOTIFICATION,
        parameters={"title": "fired"},
    )


def slow_step(duration=0.2):
    return WorkflowStep(
        id="wait",
        name="Wait",
        type=WorkflowStepType.DELAY,
        parameters={"duration": duration},
    )


def trigger(trigger_id, trigger_type, **parameters):
    return WorkflowTrigger(id=trigger_id, type=trigger_type, parameters=parameters)


class Registry:
    """In-memory workflow lookup."""

    def __init__(self):
        self.workflows = {}

    def add(self, *triggers, steps=None, **kwargs):
        definition = WorkflowDefinition(
            name=kwargs.pop("name", "Triggered"),
            steps=steps or (notify_step(),),
            triggers=triggers,
            **kwargs,
        )
        self.workflows[definition.id] = definition
        return definition

    def get(self, workflow_id):
        return self.workflows.get(workflow_id)


@pytest.fixture
def registry():
    return Registry()


@pytest.fixture
def scheduler(executor, registry):
    return WorkflowScheduler(executor, registry.get, config=SchedulerConfig(), sources=[])


# === Cron ===


class TestCronSchedule:
    """Tests for cron parsing and next-run calculation."""

    def test_validate(self):
        assert validate_cron("0 9 * * 1-5")
        assert validate_cron("*/15 * * * *")
        assert not validate_cron("61 * * * *")
        assert not validate_cron("* * *")
        assert not validate_cron("0 9 * * * *")

    def test_invalid_expression_raises(self):
        with pytest.raises(InvalidScheduleError):
            CronSchedule("every morning")

    def test_unknown_timezone_raises(self):
        with pytest.raises(InvalidScheduleError):
            CronSchedule("0 9 * * *", timezone="Mars/Olympus")

    def test_next_fire(self):
        schedule = CronSchedule("0 9 * * *")
        assert schedule.next_fire(datetime(2024, 1, 1, 8, 0)) == datetime(2024, 1, 1, 9, 0)
        assert schedule.next_fire(datetime(2024, 1, 1, 9, 0)) == datetime(2024, 1, 2, 9, 0)

    def test_next_fire_with_timezone(self):
        schedule = CronSchedule("0 9 * * *", timezone="UTC")
        after = datetime(2024, 6, 1, 12, 0)
        upcoming = schedule.next_fire(after)

        assert upcoming.tzinfo is None
        assert upcoming > after
        in_utc = upcoming.astimezone(pytz.utc)
        assert (in_utc.hour, in_utc.minute) == (9, 0)

    def test_parse_cron(self):
        assert parse_cron("0 9 * * 1") == {
            "minute": "0",
            "hour": "9",
            "day_of_month": "*",
            "month": "*",
            "day_of_week": "1",
        }
        with pytest.raises(ValueError):
            parse_cron("0 9")

    def test_describe(self):
        assert describe_cron("0 9 * * *") == "Every day at 9 AM"
        assert describe_cron("0  9 * * 1-5") == "Every weekday at 9 AM"
        assert describe_cron("30 14 * * 1") == "at 14:30 on Monday"
        assert describe_cron("*/10 * 1 * *") == "every 10 minutes on day 1 of the month"
        assert describe_cron("0 8 1 1,7 *") == "at 08:00 on day 1 of the month in January, July"
        assert describe_cron("15 */3 * * 2-4") == "at minute 15 every 3 hours on Tuesday to Thursday"
        assert describe_cron("0 12 * * 1-9") == "at 12:00 on days 1-9"
        assert describe_cron("nonsense") == "nonsense"


# === Registration ===


class TestRegistration:
    """Tests for arming and disarming triggers."""

    def test_register_counts_enabled_triggers(self, scheduler, registry):
        definition = registry.add(
            trigger("cron", TriggerType.SCHEDULED, schedule="0 9 * * *"),
            trigger("hook", TriggerType.WEBHOOK),
            WorkflowTrigger(id="off", type=TriggerType.HOTKEY, parameters={"key_combo": "cmd+k"}, is_enabled=False),
        )

        assert scheduler.register(definition) == 2
        assert len(scheduler.list_triggers(definition.id)) == 2
        assert scheduler.webhook_endpoints() == ["hook"]
        assert "cron" in scheduler.next_fire_times()

    def test_invalid_cron_rejected_at_register(self, scheduler, registry):
        definition = registry.add(trigger("cron", TriggerType.SCHEDULED, schedule="99 * * * *"))

        with pytest.raises(InvalidScheduleError):
            scheduler.register(definition)
        assert scheduler.list_triggers() == []

    def test_missing_parameter_rejected(self, scheduler, registry):
        definition = registry.add(trigger("watch", TriggerType.FILE_CHANGED))
        with pytest.raises(InvalidScheduleError):
            scheduler.register(definition)

    def test_failed_register_keeps_previous_triggers(self, scheduler, registry):
        definition = registry.add(trigger("hook", TriggerType.WEBHOOK))
        scheduler.register(definition)

        broken = definition.revise(
            triggers=(trigger("cron", TriggerType.SCHEDULED, schedule="bad"),)
        )
        with pytest.raises(InvalidScheduleError):
            scheduler.register(broken)

        assert scheduler.webhook_endpoints() == ["hook"]

    def test_endpoint_conflict(self, scheduler, registry):
        first = registry.add(trigger("a", TriggerType.WEBHOOK, endpoint="deploy"))
        second = registry.add(trigger("b", TriggerType.WEBHOOK, endpoint="deploy"))

        scheduler.register(first)
        with pytest.raises(InvalidScheduleError):
            scheduler.register(second)

        # Re-registering the owner is fine
        assert scheduler.register(first) == 1

    def test_disabled_workflow_not_armed(self, scheduler, registry):
        definition = registry.add(trigger("hook", TriggerType.WEBHOOK), is_enabled=False)

        assert scheduler.register(definition) == 0
        assert scheduler.list_triggers() == []

    def test_unregister(self, scheduler, registry):
        definition = registry.add(trigger("hook", TriggerType.WEBHOOK))
        scheduler.register(definition)

        assert scheduler.unregister(definition.id) is True
        assert scheduler.webhook_endpoints() == []
        assert scheduler.unregister(definition.id) is False

    def test_normalize_hotkey(self):
        assert normalize_hotkey("Cmd+Shift+K") == normalize_hotkey("shift + command + k")
        assert normalize_hotkey("ctrl+alt+Return") == "control+enter+option"


# === Scheduled Triggers ===


class TestScheduledTriggers:
    """Tests for tick-driven cron firing."""

    @pytest.mark.asyncio
    async def test_tick_fires_when_due(self, scheduler, registry, notifier):
        definition = registry.add(trigger("cron", TriggerType.SCHEDULED, schedule="0 9 * * *"))
        scheduler.register(definition)
        due = scheduler.next_fire_times()["cron"]

        assert await scheduler.tick(now=due - timedelta(seconds=1)) == []

        outcomes = await scheduler.tick(now=due)
        assert len(outcomes) == 1
        assert outcomes[0].accepted

        result = await outcomes[0].wait()
        assert result.success
        assert result.variables["trigger_type"] == ParameterValue.of("scheduled")
        assert result.variables["scheduled_time"] == ParameterValue.of(due.isoformat())
        assert notifier.sent == [("fired", "")]

        assert scheduler.next_fire_times()["cron"] == due + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_missed_occurrences_fire_once(self, scheduler, registry):
        definition = registry.add(trigger("cron", TriggerType.SCHEDULED, schedule="0 9 * * *"))
        scheduler.register(definition)
        due = scheduler.next_fire_times()["cron"]
        late = due + timedelta(days=3, hours=1)

        outcomes = await scheduler.tick(now=late)
        await outcomes[0].wait()

        assert len(outcomes) == 1
        assert scheduler.next_fire_times()["cron"] > late
        assert scheduler.list_triggers(definition.id)[0].fire_count == 1


# === Event Triggers ===


class TestEventTriggers:
    """Tests for file, app, system event and hotkey triggers."""

    @pytest.mark.asyncio
    async def test_file_change(self, scheduler, registry, tmp_path):
        definition = registry.add(trigger("watch", TriggerType.FILE_CHANGED, path=str(tmp_path)))
        scheduler.register(definition)

        assert scheduler.watched_paths() == [str(tmp_path)]
        assert await scheduler.handle_file_change("/somewhere/else.txt") == []

        changed = tmp_path / "inbox" / "report.txt"
        outcomes = await scheduler.handle_file_change(str(changed))
        result = await outcomes[0].wait()

        assert result.variables["changed_path"] == ParameterValue.of(str(changed))
        assert result.variables["trigger_id"] == ParameterValue.of("watch")

    @pytest.mark.asyncio
    async def test_app_launch_is_case_insensitive(self, scheduler, registry):
        definition = registry.add(trigger("app", TriggerType.APP_LAUNCHED, app_name="Safari"))
        scheduler.register(definition)

        assert await scheduler.handle_app_launch("Mail") == []
        outcomes = await scheduler.handle_app_launch("safari")
        result = await outcomes[0].wait()
        assert result.variables["app_name"] == ParameterValue.of("safari")

    @pytest.mark.asyncio
    async def test_system_event_payload(self, scheduler, registry):
        definition = registry.add(trigger("wake", TriggerType.SYSTEM_EVENT, event_type="wake"))
        scheduler.register(definition)

        assert await scheduler.handle_system_event("sleep") == []
        outcomes = await scheduler.handle_system_event("wake", {"source": "lid"})
        result = await outcomes[0].wait()

        assert result.variables["event_payload"].to_python() == {"source": "lid"}

    @pytest.mark.asyncio
    async def test_hotkey(self, scheduler, registry):
        definition = registry.add(trigger("key", TriggerType.HOTKEY, key_combo="cmd+shift+k"))
        scheduler.register(definition)

        outcomes = await scheduler.handle_hotkey("Shift+Cmd+K")
        assert len(outcomes) == 1
        await outcomes[0].wait()

    @pytest.mark.asyncio
    async def test_local_event_source(self, executor, registry):
        source = LocalEventSource()
        scheduler = WorkflowScheduler(executor, registry.get, sources=[source])
        definition = registry.add(
            trigger("login", TriggerType.SYSTEM_EVENT, event_type="login"),
            trigger("key", TriggerType.HOTKEY, key_combo="ctrl+space"),
        )
        scheduler.register(definition)

        assert await source.publish_system_event("login") == 0

        await scheduler.start_monitoring()
        try:
            assert source.is_active
            assert await source.publish_system_event("login") == 1
            await asyncio.sleep(0.05)
            assert await source.press_hotkey("space+ctrl") == 1
            await asyncio.sleep(0.05)
        finally:
            await scheduler.stop_monitoring()

        assert not source.is_active
        assert not scheduler.is_monitoring


# === Webhooks ===


class TestWebhooks:
    """Tests for webhook routing."""

    @pytest.mark.asyncio
    async def test_unknown_endpoint(self, scheduler):
        outcome = await scheduler.handle_webhook("nope")
        assert outcome.accepted is False
        assert outcome.reason == "not_found"

    @pytest.mark.asyncio
    async def test_secret_checked(self, scheduler, registry):
        definition = registry.add(trigger("hook", TriggerType.WEBHOOK, endpoint="deploy", secret="s3"))
        scheduler.register(definition)

        denied = await scheduler.handle_webhook("deploy", {}, secret="wrong")
        assert denied.reason == "forbidden"
        assert denied.workflow_id == definition.id

        allowed = await scheduler.handle_webhook("deploy", {}, secret="s3")
        assert allowed.accepted
        await allowed.wait()

    @pytest.mark.asyncio
    async def test_payload_becomes_variables(self, scheduler, registry):
        definition = registry.add(trigger("hook", TriggerType.WEBHOOK))
        scheduler.register(definition)

        outcome = await scheduler.handle_webhook("hook", {"branch": "main", "count": 2})
        result = await outcome.wait()

        assert result.variables["branch"] == ParameterValue.of("main")
        assert result.variables["count"] == ParameterValue.of(2)
        assert result.variables["webhook_payload"].to_python() == {"branch": "main", "count": 2}

    @pytest.mark.asyncio
    async def test_invalid_payload(self, scheduler, registry):
        definition = registry.add(trigger("hook", TriggerType.WEBHOOK))
        scheduler.register(definition)

        outcome = await scheduler.handle_webhook("hook", {"value": None})
        assert outcome.accepted is False
        assert outcome.reason == "invalid_payload"

    @pytest.mark.asyncio
    async def test_disabled_target(self, scheduler, registry):
        definition = registry.add(trigger("hook", TriggerType.WEBHOOK))
        scheduler.register(definition)
        registry.workflows[definition.id] = definition.revise(is_enabled=False)

        outcome = await scheduler.handle_webhook("hook")
        assert outcome.accepted is False
        assert outcome.reason == "workflow_unavailable"


# === Concurrency ===


class TestSingleActiveRun:
    """Tests for rejecting fires while a run is in flight."""

    @pytest.mark.asyncio
    async def test_busy_fire_rejected(self, scheduler, registry):
        definition = registry.add(trigger("hook", TriggerType.WEBHOOK), steps=(slow_step(),))
        scheduler.register(definition)

        first = await scheduler.handle_webhook("hook")
        second = await scheduler.handle_webhook("hook")

        assert first.accepted
        assert second.accepted is False
        assert second.reason == "workflow already running"
        assert scheduler.list_triggers(definition.id)[0].rejected_count == 1

        result = await first.wait()
        assert result.success
        assert scheduler.get_stats()["busy"] is False

    @pytest.mark.asyncio
    async def test_run_now(self, scheduler, registry):
        definition = registry.add()

        result = await scheduler.run_now(definition.id, {"who": "me"})
        assert result.success
        assert result.variables["who"] == ParameterValue.of("me")

    @pytest.mark.asyncio
    async def test_run_now_errors(self, scheduler, registry):
        with pytest.raises(WorkflowNotFoundError):
            await scheduler.run_now("missing")

        definition = registry.add(trigger("hook", TriggerType.WEBHOOK), steps=(slow_step(),))
        scheduler.register(definition)
        outcome = await scheduler.handle_webhook("hook")

        with pytest.raises(WorkflowAlreadyRunningError):
            await scheduler.run_now(definition.id)

        await outcome.wait()

    def test_stats(self, scheduler, registry):
        scheduler.register(registry.add(
            trigger("cron", TriggerType.SCHEDULED, schedule="*/5 * * * *"),
            trigger("hook", TriggerType.WEBHOOK),
        ))

        stats = scheduler.get_stats()
        assert stats["triggers"] == 2
        assert stats["by_type"] == {"scheduled": 1, "webhook": 1}
        assert stats["webhooks"] == 1
        assert stats["monitoring"] is False
