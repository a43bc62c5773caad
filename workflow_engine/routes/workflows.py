"""
Workflow Routes - Workflow CRUD, Execution, and Monitoring

Business logic lives in WorkflowService; handlers only translate errors.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from workflow_engine.routes import get_deps
from workflow_engine.services.workflow_service import WorkflowService
from workflow_engine.utils.error_handler import handle_api_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["workflows"])


class RunRequest(BaseModel):
    variables: Dict[str, Any] = Field(default_factory=dict)


class InlineRunRequest(BaseModel):
    workflow: Dict[str, Any]
    variables: Dict[str, Any] = Field(default_factory=dict)


class StepRequest(BaseModel):
    step: Dict[str, Any]
    variables: Dict[str, Any] = Field(default_factory=dict)


def get_workflow_service() -> WorkflowService:
    deps = get_deps()
    return WorkflowService(
        deps.workflow_store, deps.run_manager, deps.execution_history, deps.activity_log
    )


# =============================================================================
# WORKFLOW SCHEMA ENDPOINT
# =============================================================================


@router.get("/workflow-schema")
async def get_workflow_schema(service: WorkflowService = Depends(get_workflow_service)):
    """
    Get the step type catalogue for editors.

    Returns:
        - version: Schema version for cache busting
        - step_types: Dict of step type -> payload key, required fields, field types
        - common_fields: Settings shared by every step
        - categories: Grouped step types for UI organization
    """
    try:
        return service.get_step_schema()
    except Exception as e:
        logger.error(f"[API] Failed to get workflow schema: {e}", exc_info=True)
        return handle_api_error(e)


# =============================================================================
# WORKFLOW CRUD ENDPOINTS
# =============================================================================


@router.get("/workflows")
async def list_workflows(service: WorkflowService = Depends(get_workflow_service)):
    try:
        workflows = service.list_workflows()
        return {"workflows": workflows, "total": len(workflows)}
    except Exception as e:
        logger.error(f"[API] Failed to list workflows: {e}", exc_info=True)
        return handle_api_error(e)


@router.post("/workflows")
async def create_workflow(
    workflow_data: Dict[str, Any], service: WorkflowService = Depends(get_workflow_service)
):
    try:
        workflow = service.create_workflow(workflow_data)
        logger.info(f"[API] Created workflow {workflow['id']}")
        return {"success": True, "workflow": workflow}
    except Exception as e:
        logger.error(f"[API] Create workflow failed: {e}")
        return handle_api_error(e)


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str, service: WorkflowService = Depends(get_workflow_service)):
    try:
        return service.get_workflow(workflow_id)
    except Exception as e:
        logger.error(f"[API] Get workflow {workflow_id} failed: {e}")
        return handle_api_error(e)


@router.put("/workflows/{workflow_id}")
async def update_workflow(
    workflow_id: str,
    workflow_data: Dict[str, Any],
    service: WorkflowService = Depends(get_workflow_service),
):
    try:
        workflow = service.update_workflow(workflow_id, workflow_data)
        return {"success": True, "workflow": workflow}
    except Exception as e:
        logger.error(f"[API] Update workflow {workflow_id} failed: {e}")
        return handle_api_error(e)


@router.delete("/workflows/{workflow_id}")
async def delete_workflow(
    workflow_id: str, service: WorkflowService = Depends(get_workflow_service)
):
    try:
        service.delete_workflow(workflow_id)
        return {"success": True, "workflow_id": workflow_id}
    except Exception as e:
        logger.error(f"[API] Delete workflow {workflow_id} failed: {e}")
        return handle_api_error(e)


@router.post("/workflows/{workflow_id}/validate")
async def validate_workflow(
    workflow_id: str, service: WorkflowService = Depends(get_workflow_service)
):
    try:
        return service.validate_workflow(workflow_id)
    except Exception as e:
        logger.error(f"[API] Validate workflow {workflow_id} failed: {e}")
        return handle_api_error(e)


# =============================================================================
# EXECUTION ENDPOINTS
# =============================================================================


@router.post("/devices/{device_id}/workflows/run")
async def run_inline_workflow(
    device_id: str,
    request: InlineRunRequest,
    service: WorkflowService = Depends(get_workflow_service),
):
    """Start an unsaved workflow definition (editor "run")"""
    try:
        logger.info(f"[API] Run inline workflow on {device_id}")
        return service.run_inline(device_id, request.workflow, request.variables)
    except Exception as e:
        logger.error(f"[API] Run inline workflow failed: {e}")
        return handle_api_error(e)


@router.post("/devices/{device_id}/workflows/{workflow_id}/run")
async def run_workflow(
    device_id: str,
    workflow_id: str,
    request: Optional[RunRequest] = None,
    service: WorkflowService = Depends(get_workflow_service),
):
    """
    Start a stored workflow on a device.

    Returns immediately; poll /devices/{device_id}/result for the outcome.
    Responds 409 if the device already has an active run.
    """
    try:
        logger.info(f"[API] Run workflow {workflow_id} on {device_id}")
        variables = request.variables if request else None
        return service.run_workflow(device_id, workflow_id, variables)
    except Exception as e:
        logger.error(f"[API] Run workflow {workflow_id} failed: {e}")
        return handle_api_error(e)


@router.post("/devices/{device_id}/stop")
async def stop_workflow(device_id: str, service: WorkflowService = Depends(get_workflow_service)):
    try:
        return service.stop(device_id)
    except Exception as e:
        logger.error(f"[API] Stop workflow on {device_id} failed: {e}")
        return handle_api_error(e)


@router.get("/devices/{device_id}/result")
async def get_workflow_result(
    device_id: str, service: WorkflowService = Depends(get_workflow_service)
):
    try:
        return {"device_id": device_id, "result": service.get_result(device_id)}
    except Exception as e:
        logger.error(f"[API] Get result for {device_id} failed: {e}")
        return handle_api_error(e)


@router.get("/devices/{device_id}/status")
async def get_workflow_status(
    device_id: str, service: WorkflowService = Depends(get_workflow_service)
):
    try:
        return service.get_status(device_id)
    except Exception as e:
        logger.error(f"[API] Get status for {device_id} failed: {e}")
        return handle_api_error(e)


@router.post("/devices/{device_id}/steps/execute")
async def execute_single_step(
    device_id: str,
    request: StepRequest,
    service: WorkflowService = Depends(get_workflow_service),
):
    """Execute one step outside a run (editor "test step")"""
    try:
        return await service.execute_step(device_id, request.step, request.variables)
    except Exception as e:
        logger.error(f"[API] Execute step on {device_id} failed: {e}")
        return handle_api_error(e)


# =============================================================================
# HISTORY AND ACTIVITY
# =============================================================================


@router.get("/workflows/{workflow_id}/history")
async def get_workflow_history(
    workflow_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    service: WorkflowService = Depends(get_workflow_service),
):
    try:
        return service.get_history(workflow_id, limit)
    except Exception as e:
        logger.error(f"[API] Get history for {workflow_id} failed: {e}", exc_info=True)
        return handle_api_error(e)


@router.get("/workflows/{workflow_id}/history/stats")
async def get_workflow_history_stats(
    workflow_id: str, service: WorkflowService = Depends(get_workflow_service)
):
    try:
        return service.get_history_stats(workflow_id)
    except Exception as e:
        logger.error(f"[API] Get history stats for {workflow_id} failed: {e}", exc_info=True)
        return handle_api_error(e)


@router.get("/activity")
async def get_activity(
    limit: int = Query(default=50, ge=1, le=500),
    device_id: Optional[str] = None,
    service: WorkflowService = Depends(get_workflow_service),
):
    try:
        return service.get_activity(limit, device_id)
    except Exception as e:
        logger.error(f"[API] Get activity failed: {e}", exc_info=True)
        return handle_api_error(e)
