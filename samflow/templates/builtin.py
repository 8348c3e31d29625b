"""
Samflow Built-in Workflow Templates

Pre-built workflow templates for common desktop automations.
"""

from typing import List

from samflow.templates.manager import WorkflowTemplate
from samflow.types import TriggerType, WorkflowStep, WorkflowStepType, WorkflowTrigger


def get_builtin_templates() -> List[WorkflowTemplate]:
    """Get all built-in workflow templates."""
    return [
        smart_file_organization_template(),
        duplicate_cleanup_template(),
        incremental_backup_template(),
        daily_workspace_template(),
        system_maintenance_template(),
    ]


def _manual() -> WorkflowTrigger:
    return WorkflowTrigger(id="manual", type=TriggerType.MANUAL)


def _scheduled(cron: str) -> WorkflowTrigger:
    return WorkflowTrigger(id="schedule", type=TriggerType.SCHEDULED, parameters={"schedule": cron})


def smart_file_organization_template() -> WorkflowTemplate:
    """Organize a directory by file type."""
    return WorkflowTemplate(
        id="smart_file_organization",
        name="Smart File Organization",
        description="Automatically organize files by type and date",
        category="file_management",
        steps=(
            WorkflowStep(
                id="organize",
                name="Move files into organized folders",
                type=WorkflowStepType.FILE_OPERATION,
                parameters={
                    "operation": "organize",
                    "path": "{{source_directory}}",
                    "strategy": "by_type_and_date",
                    "output_variable": "organize_summary",
                },
                retry_count=2,
                timeout=60.0,
            ),
            WorkflowStep(
                id="notify",
                name="Report organization",
                type=WorkflowStepType.NOTIFICATION,
                parameters={"title": "Files Organized", "message": "{{organize_summary}}"},
            ),
        ),
        variables={"source_directory": "~/Downloads"},
        triggers=(_manual(),),
        tags={"organization", "file-management", "automation"},
    )


def duplicate_cleanup_template() -> WorkflowTemplate:
    """Confirm and remove duplicate files."""
    return WorkflowTemplate(
        id="duplicate_file_cleanup",
        name="Duplicate File Cleanup",
        description="Find and remove duplicate files to save space",
        category="file_management",
        steps=(
            WorkflowStep(
                id="review",
                name="Review duplicates",
                type=WorkflowStepType.USER_INPUT,
                parameters={
                    "prompt": "Remove duplicates found in {{scan_directory}}? (yes/no)",
                    "default_value": "no",
                    "input_variable": "confirmed",
                },
                timeout=300.0,
            ),
            WorkflowStep(
                id="remove",
                name="Remove selected duplicates",
                type=WorkflowStepType.FILE_OPERATION,
                parameters={
                    "operation": "delete",
                    "path": "{{scan_directory}}/duplicates",
                    "move_to_trash": True,
                },
                condition={"type": "equals", "variable": "confirmed", "value": "yes"},
                timeout=60.0,
            ),
        ),
        variables={"scan_directory": "~/Documents"},
        triggers=(_manual(),),
        tags={"cleanup", "duplicates", "storage"},
    )


def incremental_backup_template() -> WorkflowTemplate:
    """Copy a project into a backup destination on weekday evenings."""
    return WorkflowTemplate(
        id="incremental_project_backup",
        name="Incremental Project Backup",
        description="Create incremental backups of project directories",
        category="backup",
        steps=(
            WorkflowStep(
                id="copy",
                name="Copy project files",
                type=WorkflowStepType.FILE_OPERATION,
                parameters={
                    "operation": "copy",
                    "source": "{{project_path}}",
                    "destination": "{{backup_destination}}/{{project_name}}",
                    "exclude_patterns": [".git", "node_modules", ".DS_Store"],
                },
                retry_count=2,
                timeout=600.0,
            ),
            WorkflowStep(
                id="notify",
                name="Send completion notification",
                type=WorkflowStepType.NOTIFICATION,
                parameters={
                    "title": "Backup Complete",
                    "message": "{{project_name}} backed up successfully",
                },
            ),
        ),
        variables={
            "project_path": "",
            "project_name": "",
            "backup_destination": "",
        },
        triggers=(_scheduled("0 18 * * 1-5"),),
        tags={"backup", "project", "incremental", "automated"},
    )


def daily_workspace_template() -> WorkflowTemplate:
    """Open the day's applications."""
    return WorkflowTemplate(
        id="daily_workspace_setup",
        name="Daily Workspace Setup",
        description="Set up your workspace for a productive day",
        category="productivity",
        steps=(
            WorkflowStep(
                id="open_email",
                name="Open email",
                type=WorkflowStepType.APP_CONTROL,
                parameters={"command": "launch", "app": "{{email_app}}"},
                retry_count=1,
            ),
            WorkflowStep(
                id="open_calendar",
                name="Open calendar",
                type=WorkflowStepType.APP_CONTROL,
                parameters={"command": "launch", "app": "{{calendar_app}}"},
                retry_count=1,
            ),
            WorkflowStep(
                id="open_notes",
                name="Open notes",
                type=WorkflowStepType.APP_CONTROL,
                parameters={"command": "launch", "app": "{{notes_app}}"},
                retry_count=1,
                continue_on_error=True,
            ),
        ),
        variables={
            "email_app": "Mail",
            "calendar_app": "Calendar",
            "notes_app": "Notes",
        },
        triggers=(_scheduled("0 9 * * 1-5"),),
        tags={"productivity", "daily", "workspace", "routine"},
    )


def system_maintenance_template() -> WorkflowTemplate:
    """Weekly disk check with a report."""
    return WorkflowTemplate(
        id="system_maintenance",
        name="System Maintenance",
        description="Perform routine system maintenance tasks",
        category="maintenance",
        steps=(
            WorkflowStep(
                id="disk",
                name="Check disk usage",
                type=WorkflowStepType.SYSTEM_COMMAND,
                parameters={"query": "disk_percent", "output_variable": "disk_usage"},
                retry_count=1,
                timeout=15.0,
            ),
            WorkflowStep(
                id="empty_trash",
                name="Empty trash",
                type=WorkflowStepType.FILE_OPERATION,
                parameters={"operation": "delete", "path": "~/.Trash", "move_to_trash": False},
                condition={"type": "file_exists", "variable": "trash", "value": "~/.Trash"},
                continue_on_error=True,
                timeout=60.0,
            ),
            WorkflowStep(
                id="report",
                name="Generate maintenance report",
                type=WorkflowStepType.NOTIFICATION,
                parameters={
                    "title": "Maintenance Complete",
                    "message": "Disk usage is {{disk_usage}}%",
                },
            ),
        ),
        triggers=(_scheduled("0 2 * * 0"),),
        tags={"maintenance", "system", "cleanup", "automated"},
    )
