"""
Tests for the Samflow workflow manager, storage, history and configuration.
"""

import json
from datetime import datetime

import pytest

from samflow.core.config import EngineConfig, SamflowConfig
from samflow.engine import WorkflowExecutor
from samflow.errors import (
    InvalidDefinitionError,
    InvalidScheduleError,
    WorkflowNotFoundError,
)
from samflow.execution.history import ExecutionHistory
from samflow.manager import LogLevel, WorkflowManager
from samflow.persistence import InMemoryWorkflowStore, JsonFileWorkflowStore
from samflow.types import (
    ExecutionStatus,
    TriggerType,
    WorkflowDefinition,
    WorkflowExecutionResult,
    WorkflowStep,
    WorkflowStepType,
    WorkflowTrigger,
)


def notify_workflow(name="Notify", **kwargs):
    return WorkflowDefinition(
        name=name,
        steps=(
            WorkflowStep(
                id="notify",
                name="Say hello",
                type=WorkflowStepType.NOTIFICATION,
                parameters={"title": "hello"},
            ),
        ),
        **kwargs,
    )


def make_result(workflow_id, status=ExecutionStatus.SUCCEEDED, execution_id=None):
    now = datetime.now()
    return WorkflowExecutionResult(
        execution_id=execution_id or f"run-{now.timestamp()}",
        workflow_id=workflow_id,
        success=status == ExecutionStatus.SUCCEEDED,
        start_time=now,
        end_time=now,
        completed_steps=1,
        total_steps=1,
        status=status,
    )


@pytest.fixture
def manager_executor(dispatcher, evaluator):
    return WorkflowExecutor(
        dispatcher=dispatcher,
        evaluator=evaluator,
        config=EngineConfig(backoff_base=0.001, backoff_max=0.01, backoff_jitter=0),
    )


@pytest.fixture
def manager(manager_executor):
    return WorkflowManager(executor=manager_executor, sources=[])


# === CRUD ===


class TestWorkflowCrud:
    """Tests for storing and editing workflows."""

    def test_create_and_list(self, manager):
        b = manager.create(notify_workflow("Beta", tags={"work"}, description="sends mail"))
        a = manager.create(notify_workflow("alpha"))

        assert manager.get(b.id) == b
        assert [w.name for w in manager.list()] == ["alpha", "Beta"]
        assert manager.list(tag="work") == [b]
        assert manager.list(search="MAIL") == [b]
        assert manager.list(search="alp") == [a]

    def test_create_rejects_existing_id(self, manager):
        definition = manager.create(notify_workflow())
        with pytest.raises(InvalidDefinitionError):
            manager.create(definition)

    def test_create_rejects_bad_trigger(self, manager):
        definition = notify_workflow(
            triggers=(WorkflowTrigger(id="t", type=TriggerType.SCHEDULED, parameters={"schedule": "bad"}),),
        )
        with pytest.raises(InvalidScheduleError):
            manager.create(definition)
        assert manager.get(definition.id) is None

    def test_update_bumps_version(self, manager):
        definition = manager.create(notify_workflow())

        revised = manager.update(definition.id, name="Renamed")

        assert revised.version == 2
        assert manager.get(definition.id).name == "Renamed"
        with pytest.raises(InvalidDefinitionError):
            manager.update(definition.id, version=9)
        with pytest.raises(WorkflowNotFoundError):
            manager.update("missing", name="x")

    def test_set_enabled_disarms_triggers(self, manager):
        definition = manager.create(notify_workflow(
            triggers=(WorkflowTrigger(id="hook", type=TriggerType.WEBHOOK),),
        ))
        assert manager.scheduler.webhook_endpoints() == ["hook"]

        manager.set_enabled(definition.id, False)
        assert manager.scheduler.webhook_endpoints() == []

        manager.set_enabled(definition.id, True)
        assert manager.scheduler.webhook_endpoints() == ["hook"]

    def test_delete(self, manager):
        definition = manager.create(notify_workflow(
            triggers=(WorkflowTrigger(id="hook", type=TriggerType.WEBHOOK),),
        ))

        manager.delete(definition.id)

        assert manager.get(definition.id) is None
        assert manager.scheduler.list_triggers() == []
        with pytest.raises(WorkflowNotFoundError):
            manager.delete(definition.id)

    def test_duplicate(self, manager):
        original = manager.create(notify_workflow(
            "Deploy",
            triggers=(WorkflowTrigger(
                id="hook", type=TriggerType.WEBHOOK, parameters={"endpoint": "deploy"},
            ),),
        ))
        original = manager.update(original.id, description="v2")

        copy = manager.duplicate(original.id)

        assert copy.id != original.id
        assert copy.name == "Deploy Copy"
        assert copy.version == 1
        assert copy.steps == original.steps
        assert copy.triggers[0].id != "hook"
        assert "endpoint" not in copy.triggers[0].parameters
        assert len(manager.scheduler.webhook_endpoints()) == 2


# === Runs ===


class TestManagerRuns:
    """Tests for running workflows through the manager."""

    @pytest.mark.asyncio
    async def test_run_records_history_and_log(self, manager, notifier):
        definition = manager.create(notify_workflow())

        result = await manager.run(definition.id)

        assert result.success
        assert notifier.sent == [("hello", "")]
        assert manager.history_for(definition.id) == [result]
        assert [e.message for e in manager.execution_log] == [
            "Starting workflow: Notify",
            "Completed: Say hello",
            "Workflow completed successfully",
        ]
        assert manager.execution_log[1].step_index == 0
        assert manager.is_executing is False
        assert manager.current_execution is None

    @pytest.mark.asyncio
    async def test_failed_run_logged(self, manager):
        definition = manager.create(WorkflowDefinition(
            name="Broken",
            steps=(WorkflowStep(id="wait", name="Wait", type=WorkflowStepType.DELAY),),
        ))

        result = await manager.run(definition.id)

        assert not result.success
        levels = [e.level for e in manager.execution_log]
        assert levels == [LogLevel.INFO, LogLevel.ERROR, LogLevel.ERROR]
        assert manager.execution_log[-1].message.startswith("Workflow failed:")

    @pytest.mark.asyncio
    async def test_run_unknown(self, manager):
        with pytest.raises(WorkflowNotFoundError):
            await manager.run("missing")

    def test_controls_without_run(self, manager):
        assert manager.pause() is False
        assert manager.resume() is False
        assert manager.cancel() is False

    @pytest.mark.asyncio
    async def test_stats(self, manager):
        definition = manager.create(notify_workflow())
        manager.create(notify_workflow("Off", is_enabled=False))
        await manager.run(definition.id)

        stats = manager.get_stats()
        assert stats["workflows"] == 2
        assert stats["enabled"] == 1
        assert stats["executor"]["total_runs"] == 1
        assert stats["history"]["total_records"] == 1
        assert stats["templates"] == 5


# === Import, Export and Building ===


class TestImportExport:
    """Tests for moving definitions between managers."""

    def test_export_import(self, manager):
        first = manager.create(notify_workflow("First"))
        manager.create(notify_workflow("Second"))

        other = WorkflowManager(sources=[])
        imported = other.import_workflow(manager.export_all())

        assert sorted(d.name for d in imported) == ["First", "Second"]
        assert other.get(first.id) == first

    def test_import_conflicting_id_gets_new_id(self, manager):
        original = manager.create(notify_workflow())

        imported = manager.import_workflow(manager.export_workflow(original.id))

        assert imported[0].id != original.id
        assert len(manager.list()) == 2

    def test_export_unknown(self, manager):
        with pytest.raises(WorkflowNotFoundError):
            manager.export_workflow("missing")


class TestBuilding:
    """Tests for templates, samples and drafts through the manager."""

    def test_create_from_template(self, manager):
        definition = manager.create_from_template(
            "daily_workspace_setup", {"email_app": "Thunderbird"}
        )
        assert manager.get(definition.id) == definition
        assert definition.variables["email_app"].value == "Thunderbird"

        with pytest.raises(WorkflowNotFoundError):
            manager.create_from_template("missing")

    def test_install_samples(self, manager):
        installed = manager.install_samples()
        assert [d.name for d in installed] == ["Daily Cleanup", "Document Backup"]
        assert len(manager.list()) == 2

    @pytest.mark.asyncio
    async def test_invalid_draft_not_saved(self, manager):
        result = await manager.create_from_description("organize my files")
        assert not result.valid
        assert manager.list() == []


# === Storage ===


class TestStorage:
    """Tests for stores and reloading."""

    def test_json_store(self, tmp_path):
        store = JsonFileWorkflowStore(tmp_path)
        definition = notify_workflow(tags={"a"})

        store.save(definition)
        assert store.load(definition.id) == definition
        assert store.list_all() == [definition]

        (tmp_path / "workflows" / "corrupt.json").write_text("{not json")
        assert store.list_all() == [definition]

        assert store.delete(definition.id) is True
        assert store.delete(definition.id) is False
        assert store.load(definition.id) is None

    def test_json_store_history(self, tmp_path):
        store = JsonFileWorkflowStore(tmp_path)
        result = make_result("wf", execution_id="e1")

        store.append_history(result)
        assert store.list_history() == [result]

    def test_invalid_id(self, tmp_path):
        with pytest.raises(ValueError):
            JsonFileWorkflowStore(tmp_path).load("")

    def test_similar_ids_use_separate_files(self, tmp_path):
        store = JsonFileWorkflowStore(tmp_path)
        dotted = notify_workflow("Dotted", id="a.b")
        plain = notify_workflow("Plain", id="ab")
        nested = notify_workflow("Nested", id="../../escape")

        store.save(dotted)
        assert store.load("ab") is None

        store.save(plain)
        store.save(nested)
        assert store.load("a.b") == dotted
        assert store.load("ab") == plain
        assert store.load("../../escape") == nested
        assert len(list((tmp_path / "workflows").glob("*.json"))) == 3

    def test_load_rejects_mismatched_id(self, tmp_path):
        store = JsonFileWorkflowStore(tmp_path)
        definition = notify_workflow()
        store.save(definition)
        (tmp_path / "workflows" / "other.json").write_text(
            (tmp_path / "workflows" / f"{definition.id}.json").read_text()
        )

        assert store.load("other") is None

    @pytest.mark.asyncio
    async def test_reload_from_store(self, tmp_path, dispatcher, evaluator):
        store = JsonFileWorkflowStore(tmp_path)
        first = WorkflowManager(store=store, sources=[],
                                executor=WorkflowExecutor(dispatcher=dispatcher, evaluator=evaluator))
        definition = first.create(notify_workflow(
            triggers=(WorkflowTrigger(id="hook", type=TriggerType.WEBHOOK),),
        ))
        await first.run(definition.id)

        # Stored definitions with broken triggers are skipped, not fatal
        store.save(notify_workflow(
            "Broken",
            triggers=(WorkflowTrigger(id="t", type=TriggerType.SCHEDULED, parameters={"schedule": "bad"}),),
        ))

        second = WorkflowManager(store=JsonFileWorkflowStore(tmp_path), sources=[])
        await second.initialize()

        assert second.scheduler.webhook_endpoints() == ["hook"]
        assert len(second.history_for(definition.id)) == 1
        await second.shutdown()

    def test_backend_from_config(self, tmp_path):
        config = SamflowConfig(storage={"backend": "json", "data_dir": str(tmp_path)})
        manager = WorkflowManager(config=config, sources=[])
        assert isinstance(manager.store, JsonFileWorkflowStore)
        assert isinstance(WorkflowManager(sources=[]).store, InMemoryWorkflowStore)


# === History ===


class TestExecutionHistory:
    """Tests for the execution log."""

    @pytest.mark.asyncio
    async def test_retention_limit(self):
        history = ExecutionHistory(max_history_count=2)
        for i in range(3):
            await history.record(make_result("wf", execution_id=f"e{i}"))

        assert len(history) == 2
        assert [r.execution_id for r in history.list()] == ["e2", "e1"]
        assert history.get("e0") is None

    @pytest.mark.asyncio
    async def test_duplicate_execution_rejected(self):
        history = ExecutionHistory()
        await history.record(make_result("wf", execution_id="e1"))
        with pytest.raises(ValueError):
            await history.record(make_result("wf", execution_id="e1"))

    @pytest.mark.asyncio
    async def test_filters_and_stats(self):
        history = ExecutionHistory()
        await history.record(make_result("a", execution_id="e1"))
        await history.record(make_result("a", ExecutionStatus.FAILED, execution_id="e2"))
        await history.record(make_result("b", ExecutionStatus.CANCELLED, execution_id="e3"))

        assert [r.execution_id for r in history.list(workflow_id="a")] == ["e2", "e1"]
        assert [r.execution_id for r in history.list(status=ExecutionStatus.FAILED)] == ["e2"]
        assert [r.execution_id for r in history.list(limit=1, offset=1)] == ["e2"]

        stats = history.get_workflow_stats("a")
        assert stats["total_executions"] == 2
        assert stats["failed"] == 1
        assert stats["success_rate"] == 0.5
        assert history.get_workflow_stats("missing")["total_executions"] == 0


# === Configuration ===


class TestConfig:
    """Tests for settings loading."""

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SAMFLOW_ENGINE__BACKOFF_MAX", "10")
        monkeypatch.setenv("SAMFLOW_PORT", "9000")

        config = SamflowConfig()
        assert config.engine.backoff_max == 10
        assert config.port == 9000

    def test_file_round_trip(self, tmp_path):
        path = tmp_path / "config" / "samflow.json"
        SamflowConfig(port=8123, storage={"backend": "json"}).to_file(path)

        loaded = SamflowConfig.from_file(path)
        assert loaded.port == 8123
        assert loaded.storage.backend == "json"
        assert json.loads(path.read_text())["port"] == 8123

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            SamflowConfig.from_file(tmp_path / "nope.json")
