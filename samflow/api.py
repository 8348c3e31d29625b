"""
Samflow HTTP API Routes

FastAPI routes for webhooks, workflow management and execution history.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, FastAPI, Header, HTTPException, Query, Request
from pydantic import BaseModel, Field

import structlog

from samflow.core.config import get_config
from samflow.errors import (
    WorkflowAlreadyRunningError,
    WorkflowError,
    WorkflowNotFoundError,
)
from samflow.manager import WorkflowManager
from samflow.types import ExecutionStatus, WorkflowDefinition

logger = structlog.get_logger(__name__)

# Webhook rejection reasons mapped to HTTP status codes
WEBHOOK_STATUS_CODES = {
    "not_found": 404,
    "forbidden": 403,
    "invalid_payload": 400,
}


# === Request Models ===


class RunWorkflowRequest(BaseModel):
    """Manual run request."""
    variables: Dict[str, Any] = Field(default_factory=dict)


class CreateFromTemplateRequest(BaseModel):
    """Instantiate template request."""
    template_id: str = Field(..., description="Template identifier")
    values: Dict[str, Any] = Field(default_factory=dict)
    name: Optional[str] = None


# === Route Setup ===


def create_router(manager: WorkflowManager) -> APIRouter:
    """
    Build the workflow routes.

    Args:
        manager: Workflow manager backing the routes
    """
    router = APIRouter(tags=["Workflows"])

    # === Webhook Routes ===

    @router.post("/webhooks/{endpoint}")
    async def handle_webhook(
        endpoint: str,
        request: Request,
        x_webhook_secret: Optional[str] = Header(default=None),
    ):
        """Fire the webhook trigger registered under an endpoint."""
        body = await request.body()
        if body:
            try:
                payload = await request.json()
            except ValueError:
                raise HTTPException(status_code=400, detail="Body must be JSON")
        else:
            payload = {}

        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Body must be a JSON object")

        outcome = await manager.scheduler.handle_webhook(endpoint, payload, x_webhook_secret)
        if not outcome.accepted:
            status_code = WEBHOOK_STATUS_CODES.get(outcome.reason, 409)
            raise HTTPException(status_code=status_code, detail=outcome.reason)

        return {
            "accepted": True,
            "workflow_id": outcome.workflow_id,
            "trigger_id": outcome.trigger_id,
        }

    # === Workflow Routes ===

    @router.get("/workflows")
    async def list_workflows(
        tag: Optional[str] = None,
        search: Optional[str] = None,
    ):
        """List workflows."""
        workflows = manager.list(tag=tag, search=search)
        return {
            "workflows": [w.to_dict() for w in workflows],
            "count": len(workflows),
        }

    @router.post("/workflows", status_code=201)
    async def create_workflow(data: Dict[str, Any]):
        """Create a workflow from its JSON form."""
        try:
            definition = manager.create(WorkflowDefinition.from_dict(data))
        except (WorkflowError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        return definition.to_dict()

    @router.post("/workflows/from-template", status_code=201)
    async def create_from_template(request: CreateFromTemplateRequest):
        """Instantiate a template as a new workflow."""
        try:
            definition = manager.create_from_template(
                request.template_id,
                request.values,
                request.name,
            )
        except WorkflowNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        except WorkflowError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return definition.to_dict()

    @router.get("/workflows/{workflow_id}")
    async def get_workflow(workflow_id: str):
        """Get a workflow by ID."""
        definition = manager.get(workflow_id)
        if definition is None:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return definition.to_dict()

    @router.delete("/workflows/{workflow_id}")
    async def delete_workflow(workflow_id: str):
        """Delete a workflow."""
        try:
            manager.delete(workflow_id)
        except WorkflowNotFoundError:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return {"deleted": True}

    @router.post("/workflows/{workflow_id}/run")
    async def run_workflow(workflow_id: str, request: Optional[RunWorkflowRequest] = None):
        """Run a workflow and wait for its result."""
        variables = request.variables if request else {}
        try:
            result = await manager.run(workflow_id, variables)
        except WorkflowNotFoundError:
            raise HTTPException(status_code=404, detail="Workflow not found")
        except WorkflowAlreadyRunningError as e:
            raise HTTPException(status_code=409, detail=e.message)
        except WorkflowError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return result.to_dict()

    # === Execution Routes ===

    @router.get("/executions")
    async def list_executions(
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = Query(default=100, le=1000),
        offset: int = 0,
    ):
        """List execution results, newest first."""
        try:
            status_filter = ExecutionStatus(status) if status else None
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status: {status}")

        results = manager.history.list(
            workflow_id=workflow_id,
            status=status_filter,
            limit=limit,
            offset=offset,
        )
        return {
            "executions": [r.to_dict() for r in results],
            "count": len(results),
        }

    @router.get("/executions/current")
    async def current_execution():
        """Describe the run in flight, if any."""
        context = manager.current_execution
        return {
            "running": manager.is_executing,
            "execution_id": context.execution_id if context else None,
            "workflow_id": context.workflow_id if context else None,
            "log": [entry.to_dict() for entry in manager.execution_log],
        }

    # === Template Routes ===

    @router.get("/templates")
    async def list_templates(category: Optional[str] = None):
        """List workflow templates."""
        templates = manager.templates.list(category)
        return {
            "templates": [t.to_dict() for t in templates],
            "count": len(templates),
        }

    # === Stats ===

    @router.get("/stats")
    async def get_stats():
        """Get engine statistics."""
        return manager.get_stats()

    return router


def create_app(manager: Optional[WorkflowManager] = None) -> FastAPI:
    """Build a FastAPI app serving the workflow routes."""
    manager = manager or WorkflowManager(config=get_config())
    app = FastAPI(title="Samflow")
    app.state.manager = manager

    @app.on_event("startup")
    async def startup():
        await manager.initialize(start_monitoring=True)

    @app.on_event("shutdown")
    async def shutdown():
        await manager.shutdown()

    app.include_router(create_router(manager))
    logger.info("api_app_created")
    return app
