"""Samflow triggers: cron schedules, event sources and the scheduler."""

from samflow.triggers.monitors import (
    EventSource,
    FileChangeMonitor,
    LocalEventSource,
    ProcessLaunchMonitor,
)
from samflow.triggers.schedule import CronSchedule, describe_cron, validate_cron
from samflow.triggers.scheduler import (
    ArmedTrigger,
    FireOutcome,
    WorkflowScheduler,
    normalize_hotkey,
)

__all__ = [
    "ArmedTrigger",
    "CronSchedule",
    "EventSource",
    "FileChangeMonitor",
    "FireOutcome",
    "LocalEventSource",
    "ProcessLaunchMonitor",
    "WorkflowScheduler",
    "describe_cron",
    "normalize_hotkey",
    "validate_cron",
]
