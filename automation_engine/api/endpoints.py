"""FastAPI REST endpoints for the automation engine."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.catalog import list_operators, list_triggers, list_variables
from ..core.definition_manager import DEFAULT_PAGE_SIZE
from ..core.engine import WorkflowEngine
from ..core.exceptions import (
    ConfigurationError,
    DefinitionNotFoundError,
    GraphValidationError,
    MatchError,
    RunNotFoundError,
    RunStateError,
    WorkflowEngineError,
    create_error_response,
)
from ..core.logging import get_logger
from ..models.core import RunStatus

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200

# Create router
router = APIRouter(prefix="/api/v1", tags=["automation"])

# Global instance (initialized by the application factory)
_engine: Optional[WorkflowEngine] = None


def init_dependencies(engine: WorkflowEngine):
    """Initialize the global dependencies."""
    global _engine
    _engine = engine


def get_engine() -> WorkflowEngine:
    """Dependency to get the workflow engine."""
    if _engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow engine not initialized"
        )
    return _engine


# Request/Response models
class EventRequest(BaseModel):
    """Domain event posted by the record system."""
    event: Dict[str, Any] = Field(..., description="Event in wire format (eventType, objectType, recordId, ...)")
    user: Optional[Dict[str, Any]] = Field(None, description="Acting user, overrides event.user")


class RunWorkflowRequest(BaseModel):
    """Request model for starting one workflow directly."""
    event: Dict[str, Any] = Field(..., description="Event the run is bound to")
    user: Optional[Dict[str, Any]] = Field(None, description="Acting user")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Variable overrides")


class ResumeDueRequest(BaseModel):
    """Request model for the timer hook."""
    now: Optional[datetime] = Field(None, description="Reference time, defaults to the server clock")


def _status_for(error: WorkflowEngineError) -> int:
    if isinstance(error, GraphValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, (DefinitionNotFoundError, RunNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, RunStateError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, (MatchError, ConfigurationError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _http_error(error: Exception, action: str) -> HTTPException:
    """Translate an exception raised while handling a request."""
    if isinstance(error, WorkflowEngineError):
        status_code = _status_for(error)
        if status_code >= 500:
            logger.error(f"Workflow engine error while {action}: {error.message}")
        else:
            logger.warning(f"Workflow engine error while {action}: {error.message}")
        return HTTPException(status_code=status_code, detail=create_error_response(error))

    logger.error(f"Unexpected error while {action}: {str(error)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while {action}",
            "details": {"original_error": str(error)},
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


# Workflow definitions

@router.post(
    "/workflows",
    status_code=status.HTTP_201_CREATED,
    summary="Create a workflow",
    description="Validate and store a new workflow definition"
)
async def create_workflow(
    payload: Dict[str, Any] = Body(...),
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """
    Create a workflow definition.

    Args:
        payload: Definition in wire format; an id is generated when missing
        engine: Workflow engine dependency

    Returns:
        The stored definition plus any validation warnings

    Raises:
        HTTPException: 400 with every validation issue when the graph is invalid
    """
    try:
        definition = engine.definitions.create(payload)
        warnings = engine.definitions.validate(definition).warnings
        logger.info(f"Created workflow '{definition.name}' with ID: {definition.id}")
        return {"workflow": definition.to_wire(), "warnings": warnings}
    except Exception as e:
        raise _http_error(e, "creating workflow")


@router.get(
    "/workflows",
    summary="List workflows",
    description="List the latest version of each workflow, optionally filtered"
)
async def list_workflows(
    object_id: Optional[str] = Query(None, alias="objectId"),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = Query(None, description="Case-insensitive name search"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        result = engine.definitions.page_summaries(
            page=page, limit=limit, object_id=object_id, is_active=is_active, search=search
        )
        return {
            "data": [summary.model_dump(mode="json") for summary in result.data],
            "meta": result.meta.to_wire(),
        }
    except Exception as e:
        raise _http_error(e, "listing workflows")


@router.post(
    "/workflows/validate",
    summary="Validate a workflow",
    description="Run every structural check without saving"
)
async def validate_workflow(
    payload: Dict[str, Any] = Body(...),
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        result = engine.definitions.validate(payload)
        return {
            "isValid": result.is_valid,
            "errors": [issue.to_wire() for issue in result.errors],
            "warnings": result.warnings,
        }
    except Exception as e:
        raise _http_error(e, "validating workflow")


@router.get("/workflows/{workflow_id}", summary="Get a workflow")
async def get_workflow(
    workflow_id: str,
    version: Optional[int] = Query(None, ge=1),
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        return engine.definitions.get(workflow_id, version).to_wire()
    except Exception as e:
        raise _http_error(e, f"getting workflow {workflow_id}")


@router.put(
    "/workflows/{workflow_id}",
    summary="Update a workflow",
    description="Save a new version when runs reference the current one, otherwise update it in place"
)
async def update_workflow(
    workflow_id: str,
    payload: Dict[str, Any] = Body(...),
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        engine.definitions.get(workflow_id)
        definition = engine.definitions.save({**payload, "id": workflow_id})
        return definition.to_wire()
    except Exception as e:
        raise _http_error(e, f"updating workflow {workflow_id}")


@router.delete("/workflows/{workflow_id}", summary="Delete a workflow and its runs")
async def delete_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        if not engine.definitions.delete(workflow_id):
            raise DefinitionNotFoundError(workflow_id)
        return {"message": f"Workflow '{workflow_id}' deleted", "id": workflow_id}
    except Exception as e:
        raise _http_error(e, f"deleting workflow {workflow_id}")


@router.post("/workflows/{workflow_id}/toggle", summary="Activate or deactivate a workflow")
async def toggle_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        return engine.definitions.toggle(workflow_id).to_wire()
    except Exception as e:
        raise _http_error(e, f"toggling workflow {workflow_id}")


@router.post(
    "/workflows/{workflow_id}/duplicate",
    status_code=status.HTTP_201_CREATED,
    summary="Duplicate a workflow"
)
async def duplicate_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        return engine.definitions.duplicate(workflow_id).to_wire()
    except Exception as e:
        raise _http_error(e, f"duplicating workflow {workflow_id}")


@router.post(
    "/workflows/{workflow_id}/run",
    summary="Run a workflow directly",
    description="Start one run of the workflow for the given event, bypassing trigger matching"
)
def run_workflow(
    workflow_id: str,
    request: RunWorkflowRequest,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        run = engine.start(workflow_id, request.event, user=request.user, variables=request.variables)
        return run.to_wire()
    except Exception as e:
        raise _http_error(e, f"running workflow {workflow_id}")


@router.get("/workflows/{workflow_id}/runs", summary="Execution history of a workflow")
async def list_workflow_runs(
    workflow_id: str,
    run_status: Optional[RunStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        result = engine.definitions.page_runs(workflow_id, page=page, limit=limit, status=run_status)
        return {"data": [run.to_wire() for run in result.data], "meta": result.meta.to_wire()}
    except Exception as e:
        raise _http_error(e, f"listing runs of workflow {workflow_id}")


# Events and runs

@router.post(
    "/events",
    summary="Submit a domain event",
    description="Start a run for every active workflow whose trigger matches the event"
)
def submit_event(
    request: EventRequest,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """
    Deliver a record event to the engine.

    Blocks until every started run has completed, suspended or failed.

    Raises:
        HTTPException: 422 when the event is malformed
    """
    try:
        event = engine.matcher.coerce_event(request.event)
        runs = engine.handle_event(event, user=request.user)
        logger.info(f"Event {event.event_type} for {event.object_type}/{event.record_id} started {len(runs)} run(s)")
        return {"matched": len(runs), "runs": [run.to_wire() for run in runs]}
    except Exception as e:
        raise _http_error(e, "handling event")


@router.get("/runs", summary="List runs")
async def list_runs(
    definition_id: Optional[str] = Query(None, alias="definitionId"),
    run_status: Optional[RunStatus] = Query(None, alias="status"),
    limit: Optional[int] = Query(50, ge=1),
    engine: WorkflowEngine = Depends(get_engine)
) -> List[Dict[str, Any]]:
    try:
        runs = engine.store.list_runs(definition_id=definition_id, status=run_status, limit=limit)
        return [run.to_wire() for run in runs]
    except Exception as e:
        raise _http_error(e, "listing runs")


@router.post("/runs/resume-due", summary="Resume every suspended run that is due")
def resume_due_runs(
    request: Optional[ResumeDueRequest] = None,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        runs = engine.resume_due_runs(request.now if request else None)
        return {"resumed": len(runs), "runs": [run.to_wire() for run in runs]}
    except Exception as e:
        raise _http_error(e, "resuming due runs")


@router.get("/runs/{run_id}", summary="Get a run with its action results")
async def get_run(
    run_id: str,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        return engine.get_run(run_id).to_wire()
    except Exception as e:
        raise _http_error(e, f"getting run {run_id}")


@router.post("/runs/{run_id}/resume", summary="Resume a suspended run now")
def resume_run(
    run_id: str,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        return engine.resume(run_id).to_wire()
    except Exception as e:
        raise _http_error(e, f"resuming run {run_id}")


@router.post("/runs/{run_id}/cancel", summary="Cancel a run")
def cancel_run(
    run_id: str,
    engine: WorkflowEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        return engine.cancel(run_id).to_wire()
    except Exception as e:
        raise _http_error(e, f"cancelling run {run_id}")


# Editor metadata

@router.get("/meta/triggers", summary="Available trigger types")
async def get_triggers() -> List[Dict[str, Any]]:
    return list_triggers()


@router.get("/meta/actions", summary="Registered action types")
async def get_actions(engine: WorkflowEngine = Depends(get_engine)) -> List[Dict[str, Any]]:
    return engine.dispatcher.describe_actions()


@router.get("/meta/operators", summary="Condition operators")
async def get_operators() -> List[Dict[str, Any]]:
    return list_operators()


@router.get("/meta/variables/{trigger_type}", summary="Template variables for a trigger type")
async def get_variables(trigger_type: str) -> List[Dict[str, str]]:
    try:
        return list_variables(trigger_type)
    except Exception as e:
        raise _http_error(e, f"listing variables for {trigger_type}")
