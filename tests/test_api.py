"""
Tests for the Samflow HTTP routes.
"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from samflow.api import create_router
from samflow.engine import WorkflowExecutor
from samflow.manager import WorkflowManager
from samflow.types import TriggerType, WorkflowDefinition, WorkflowStep, WorkflowStepType, WorkflowTrigger


def definition_json(name="Notify", **kwargs):
    return WorkflowDefinition(
        name=name,
        steps=(
            WorkflowStep(
                id="notify",
                name="Notify",
                type=WorkflowStepType.NOTIFICATION,
                parameters={"title": "{{who}}"},
            ),
        ),
        variables={"who": "nobody"},
        **kwargs,
    ).to_dict()


@pytest.fixture
def manager(dispatcher, evaluator):
    executor = WorkflowExecutor(dispatcher=dispatcher, evaluator=evaluator)
    return WorkflowManager(executor=executor, sources=[])


@pytest.fixture
def client(manager):
    app = FastAPI()
    app.include_router(create_router(manager))
    with TestClient(app) as test_client:
        yield test_client


class TestWorkflowRoutes:
    """Tests for workflow CRUD and runs."""

    def test_create_get_delete(self, client):
        response = client.post("/workflows", json=definition_json())
        assert response.status_code == 201
        workflow_id = response.json()["id"]

        assert client.get(f"/workflows/{workflow_id}").json()["name"] == "Notify"
        assert client.get("/workflows").json()["count"] == 1

        assert client.delete(f"/workflows/{workflow_id}").json() == {"deleted": True}
        assert client.get(f"/workflows/{workflow_id}").status_code == 404
        assert client.delete(f"/workflows/{workflow_id}").status_code == 404

    def test_create_invalid(self, client):
        data = definition_json()
        data["steps"][0]["type"] = "teleport"
        assert client.post("/workflows", json=data).status_code == 400

        data = definition_json()
        data["steps"][0]["retry_count"] = "x"
        assert client.post("/workflows", json=data).status_code == 400
        assert client.post("/workflows", json=dict(definition_json(), tags=5)).status_code == 400

    def test_run(self, client, notifier):
        workflow_id = client.post("/workflows", json=definition_json()).json()["id"]

        response = client.post(f"/workflows/{workflow_id}/run", json={"variables": {"who": "ada"}})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["completed_steps"] == 1
        assert notifier.sent == [("ada", "")]

        assert client.post(f"/workflows/{workflow_id}/run").json()["success"] is True
        assert client.post("/workflows/missing/run").status_code == 404

    def test_executions(self, client):
        workflow_id = client.post("/workflows", json=definition_json()).json()["id"]
        client.post(f"/workflows/{workflow_id}/run")

        listed = client.get("/executions", params={"workflow_id": workflow_id}).json()
        assert listed["count"] == 1
        assert client.get("/executions", params={"status": "succeeded"}).json()["count"] == 1
        assert client.get("/executions", params={"status": "failed"}).json()["count"] == 0
        assert client.get("/executions", params={"status": "bogus"}).status_code == 400

        current = client.get("/executions/current").json()
        assert current["running"] is False
        assert current["execution_id"] is None
        assert current["log"][-1]["message"] == "Workflow completed successfully"


class TestWebhookRoutes:
    """Tests for webhook delivery over HTTP."""

    def create_hook(self, client, **parameters):
        trigger = WorkflowTrigger(id="hook", type=TriggerType.WEBHOOK, parameters=parameters)
        return client.post("/workflows", json=definition_json(triggers=(trigger,))).json()["id"]

    def test_unknown_endpoint(self, client):
        response = client.post("/webhooks/nope", json={})
        assert response.status_code == 404
        assert response.json()["detail"] == "not_found"

    def test_secret(self, client):
        self.create_hook(client, endpoint="deploy", secret="s3")

        assert client.post("/webhooks/deploy", json={}).status_code == 403
        response = client.post("/webhooks/deploy", json={}, headers={"X-Webhook-Secret": "s3"})
        assert response.status_code == 200
        assert response.json()["accepted"] is True

    def test_body_must_be_object(self, client):
        self.create_hook(client)

        assert client.post("/webhooks/hook", json=[1, 2]).status_code == 400
        assert client.post(
            "/webhooks/hook", content=b"{oops", headers={"Content-Type": "application/json"}
        ).status_code == 400
        assert client.post("/webhooks/hook", json={"value": None}).status_code == 400

    def test_accepted(self, client):
        workflow_id = self.create_hook(client)

        body = client.post("/webhooks/hook", json={"who": "hooked"}).json()

        assert body == {"accepted": True, "workflow_id": workflow_id, "trigger_id": "hook"}


class TestTemplateRoutes:
    """Tests for template listing and instantiation."""

    def test_list(self, client):
        assert client.get("/templates").json()["count"] == 5
        backup = client.get("/templates", params={"category": "backup"}).json()
        assert [t["id"] for t in backup["templates"]] == ["incremental_project_backup"]

    def test_create_from_template(self, client):
        response = client.post(
            "/workflows/from-template",
            json={"template_id": "daily_workspace_setup", "name": "Morning"},
        )
        assert response.status_code == 201
        assert response.json()["name"] == "Morning"

        missing = client.post("/workflows/from-template", json={"template_id": "nope"})
        assert missing.status_code == 404

    def test_stats(self, client):
        stats = client.get("/stats").json()
        assert stats["workflows"] == 0
        assert stats["templates"] == 5
