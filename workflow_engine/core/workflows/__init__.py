"""
Workflow Execution Package
"""

from .workflow_store import WorkflowStore
from .step_executor import StepExecutor
from .workflow_runner import WorkflowRunner, RunContext
from .run_manager import RunManager
from .execution_history import ExecutionHistory
from .workflow_events import ActivityLog, EventEmitter, WorkflowEvent, WorkflowEventType
from .workflow_models import (
    WorkflowDefinition,
    WorkflowStep,
    StepType,
    StepResult,
    ExecutionResult,
    WorkflowList,
    parse_step,
)

__all__ = [
    "WorkflowStore",
    "StepExecutor",
    "WorkflowRunner",
    "RunContext",
    "RunManager",
    "ExecutionHistory",
    "ActivityLog",
    "EventEmitter",
    "WorkflowEvent",
    "WorkflowEventType",
    "WorkflowDefinition",
    "WorkflowStep",
    "StepType",
    "StepResult",
    "ExecutionResult",
    "WorkflowList",
    "parse_step",
]
