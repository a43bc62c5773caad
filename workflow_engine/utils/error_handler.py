"""
Centralized Error Handling Module for the Workflow Engine

Provides the engine's exception taxonomy plus consistent API error responses.

Families:
- ConfigurationError: broken definitions (missing params, unknown types, dangling ids).
  Always fatal to a run.
- DeviceActionError: the device or element did not cooperate. Recoverable through
  a step's on-error policy and error connection.
- LifecycleError: run admission and resource limits.
- StepFailedError / RunCancelledError: terminal outcomes of a run.
"""

import logging
import traceback
from typing import Dict, Any, List, Optional
from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger("workflow_engine")


class WorkflowError(Exception):
    """Base exception for all workflow engine errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# =============================================================================
# Configuration errors
# =============================================================================


class ConfigurationError(WorkflowError):
    """Raised when a workflow definition cannot be executed as written"""

    def __init__(
        self,
        message: str,
        code: str = "CONFIGURATION_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, code=code, details=details)


class MissingParametersError(ConfigurationError):
    """Raised when a step lacks the parameters its type requires"""

    def __init__(self, step_type: str, what: str = "params"):
        super().__init__(
            f"{step_type} {what} missing",
            code="MISSING_PARAMETERS",
            details={"step_type": step_type, "missing": what},
        )


class UnknownStepTypeError(ConfigurationError):
    def __init__(self, step_type: str):
        super().__init__(
            f"unknown step type: {step_type}",
            code="UNKNOWN_STEP_TYPE",
            details={"step_type": step_type},
        )


class UnknownConditionError(ConfigurationError):
    def __init__(self, condition: str):
        super().__init__(
            f"unknown branch condition: {condition}",
            code="UNKNOWN_CONDITION",
            details={"condition": condition},
        )


class UnknownElementActionError(ConfigurationError):
    def __init__(self, action: str):
        super().__init__(
            f"unknown element action: {action}",
            code="UNKNOWN_ELEMENT_ACTION",
            details={"action": action},
        )


class StepNotFoundError(ConfigurationError):
    """Raised when a connection points at a step id that does not exist"""

    def __init__(self, step_id: str):
        super().__init__(
            f"step not found: {step_id}",
            code="STEP_NOT_FOUND",
            details={"step_id": step_id},
        )


class MissingStartStepError(ConfigurationError):
    def __init__(self, workflow_id: Optional[str] = None):
        super().__init__(
            "workflow has no start node",
            code="MISSING_START_STEP",
            details={"workflow_id": workflow_id},
        )


class WorkflowValidationError(ConfigurationError):
    """Raised when a definition fails validation; carries every issue found"""

    def __init__(self, issues: List[Dict[str, str]]):
        summary = "; ".join(f"{i['field']}: {i['message']}" for i in issues[:5])
        super().__init__(
            f"workflow validation failed: {summary}",
            code="WORKFLOW_VALIDATION_ERROR",
            details={"issues": issues},
        )


# =============================================================================
# Device interaction errors
# =============================================================================


class DeviceActionError(WorkflowError):
    """Raised when an adb command or device interaction fails"""

    def __init__(
        self,
        message: str,
        device_id: Optional[str] = None,
        code: str = "DEVICE_ACTION_ERROR",
    ):
        super().__init__(message, code=code, details={"device_id": device_id})


class ElementNotFoundError(DeviceActionError):
    def __init__(self, message: str, device_id: Optional[str] = None):
        super().__init__(message, device_id=device_id, code="ELEMENT_NOT_FOUND")


class ScriptNotFoundError(DeviceActionError):
    def __init__(self, script_name: str):
        super().__init__(f"script not found: {script_name}", code="SCRIPT_NOT_FOUND")
        self.details["script_name"] = script_name


# =============================================================================
# Lifecycle / resource errors
# =============================================================================


class LifecycleError(WorkflowError):
    """Raised for run admission and resource limit violations"""


class RunAlreadyActiveError(LifecycleError):
    def __init__(self, device_id: str):
        super().__init__(
            "workflow execution already in progress",
            code="RUN_ALREADY_ACTIVE",
            details={"device_id": device_id},
        )


class WorkflowNotFoundError(LifecycleError):
    def __init__(self, workflow_id: str):
        super().__init__(
            f"Workflow '{workflow_id}' not found",
            code="WORKFLOW_NOT_FOUND",
            details={"workflow_id": workflow_id},
        )


class NestingDepthExceededError(LifecycleError):
    def __init__(self, depth: int, limit: int):
        super().__init__(
            f"maximum workflow nesting depth exceeded ({limit})",
            code="NESTING_DEPTH_EXCEEDED",
            details={"depth": depth, "limit": limit},
        )


class StepBudgetExceededError(LifecycleError):
    def __init__(self, limit: int):
        super().__init__(
            f"maximum step count exceeded ({limit})",
            code="STEP_BUDGET_EXCEEDED",
            details={"limit": limit},
        )


# =============================================================================
# Run outcomes
# =============================================================================


class StepFailedError(WorkflowError):
    """Raised when a failing step leaves the run with nowhere to go"""

    def __init__(self, step_id: str, cause: str):
        super().__init__(
            f"step {step_id} failed: {cause}",
            code="STEP_FAILED",
            details={"step_id": step_id, "cause": cause},
        )


class RunCancelledError(WorkflowError):
    def __init__(self):
        super().__init__("workflow was cancelled", code="RUN_CANCELLED")


def create_error_response(
    error: Exception,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    include_traceback: bool = False,
) -> JSONResponse:
    """
    Create a standardized error response

    Args:
        error: The exception that occurred
        status_code: HTTP status code
        include_traceback: Include full traceback in response (debug only)

    Returns:
        JSONResponse with error details
    """
    error_response = {
        "success": False,
        "error": {"message": str(error), "type": error.__class__.__name__},
    }

    if isinstance(error, WorkflowError):
        error_response["error"]["code"] = error.code
        error_response["error"]["details"] = error.details

    if include_traceback:
        error_response["error"]["traceback"] = traceback.format_exc()

    if status_code >= 500:
        logger.error(f"{error.__class__.__name__}: {error}", exc_info=True)
    else:
        logger.warning(f"{error.__class__.__name__}: {error}")

    return JSONResponse(status_code=status_code, content=error_response)


def handle_api_error(error: Exception) -> JSONResponse:
    """
    Handle API errors with appropriate status codes

    Args:
        error: The exception to handle

    Returns:
        JSONResponse with appropriate status code
    """
    if isinstance(error, WorkflowNotFoundError):
        return create_error_response(error, status.HTTP_404_NOT_FOUND)

    elif isinstance(error, RunAlreadyActiveError):
        return create_error_response(error, status.HTTP_409_CONFLICT)

    elif isinstance(error, (ConfigurationError, ValueError)):
        return create_error_response(error, status.HTTP_400_BAD_REQUEST)

    elif isinstance(error, DeviceActionError):
        return create_error_response(error, status.HTTP_502_BAD_GATEWAY)

    else:
        return create_error_response(error, status.HTTP_500_INTERNAL_SERVER_ERROR)


class ErrorContext:
    """
    Context manager for error handling

    Usage:
        with ErrorContext("reading workflow file", raise_as=WorkflowError):
            # code that might fail
            pass
    """

    def __init__(self, operation: str, raise_as: type = WorkflowError):
        self.operation = operation
        self.raise_as = raise_as

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            logger.error(f"Error during {self.operation}: {exc_val}")
            if not isinstance(exc_val, WorkflowError):
                raise self.raise_as(f"Failed {self.operation}: {exc_val}") from exc_val
        return False
