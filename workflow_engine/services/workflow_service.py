"""
Workflow Service - Business logic behind the workflow routes
Handles validation, persistence (via WorkflowStore) and run control (via RunManager).

All step type schemas are defined here and exposed via /api/workflow-schema.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from workflow_engine.core.workflows import (
    ActivityLog,
    ExecutionHistory,
    RunManager,
    WorkflowDefinition,
    WorkflowStore,
    parse_step,
)
from workflow_engine.utils.error_handler import WorkflowValidationError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"

_SELECTOR_FIELD = {
    "type": "object",
    "description": "Element selector {type, value, index}",
    "selector_types": [
        "text",
        "id",
        "contentDesc",
        "className",
        "contains",
        "xpath",
        "bounds",
        "advanced",
    ],
}


def _element_schema(name: str, description: str, extra_required=None, extra_fields=None):
    fields = {"selector": _SELECTOR_FIELD, "action": {"type": "string"}}
    fields.update(extra_fields or {})
    return {
        "name": name,
        "description": description,
        "payload": "element",
        "required": ["selector"] + (extra_required or []),
        "fields": fields,
    }


def _app_schema(name: str, description: str):
    return {
        "name": name,
        "description": description,
        "payload": "app",
        "required": ["packageName"],
        "fields": {"packageName": {"type": "string", "description": "Android package name"}},
    }


def _key_schema(name: str, keycode: int):
    return {
        "name": name,
        "description": f"Send keyevent {keycode}",
        "payload": None,
        "required": [],
        "fields": {},
    }


# =============================================================================
# Step Type Schemas
# =============================================================================

STEP_SCHEMAS: Dict[str, Dict[str, Any]] = {
    "start": {
        "name": "Start",
        "description": "Entry point of the workflow (exactly one per workflow)",
        "payload": None,
        "required": [],
        "fields": {},
    },
    # =========================================================================
    # Gestures
    # =========================================================================
    "tap": {
        "name": "Tap",
        "description": "Tap at specific coordinates",
        "payload": "tap",
        "required": ["x", "y"],
        "fields": {
            "x": {"type": "integer", "description": "X coordinate"},
            "y": {"type": "integer", "description": "Y coordinate"},
        },
    },
    "swipe": {
        "name": "Swipe",
        "description": "Swipe between two points, or from (x, y) in a direction",
        "payload": "swipe",
        "required": [],
        "fields": {
            "x": {"type": "integer"},
            "y": {"type": "integer"},
            "x2": {"type": "integer"},
            "y2": {"type": "integer"},
            "direction": {"type": "string", "enum": ["up", "down", "left", "right"]},
            "distance": {"type": "integer", "default": 300},
            "duration": {"type": "integer", "default": 300, "description": "Milliseconds"},
        },
    },
    # =========================================================================
    # Element actions
    # =========================================================================
    "click_element": _element_schema("Click Element", "Tap the center of a matching element"),
    "long_click_element": _element_schema(
        "Long Click Element", "Press and hold a matching element"
    ),
    "input_text": _element_schema(
        "Input Text",
        "Focus a matching element and type text ({{variables}} allowed)",
        extra_required=["inputText"],
        extra_fields={"inputText": {"type": "string"}},
    ),
    "swipe_element": _element_schema(
        "Swipe Element",
        "Swipe from a matching element's center",
        extra_fields={
            "swipeDir": {"type": "string", "enum": ["up", "down", "left", "right"]},
            "swipeDistance": {"type": "integer", "default": 300},
            "swipeDuration": {"type": "integer", "default": 300},
        },
    ),
    "wait_element": _element_schema("Wait For Element", "Wait until an element appears"),
    "wait_gone": _element_schema("Wait Element Gone", "Wait until an element disappears"),
    "assert_element": _element_schema("Assert Element", "Fail unless an element appears"),
    # =========================================================================
    # App control
    # =========================================================================
    "launch_app": _app_schema("Launch App", "Launch an Android app by package name"),
    "stop_app": _app_schema("Stop App", "Force stop an app"),
    "clear_app": _app_schema("Clear App", "Clear an app's data"),
    "open_settings": _app_schema("Open Settings", "Open an app's system settings page"),
    # =========================================================================
    # Flow control
    # =========================================================================
    "branch": {
        "name": "Branch",
        "description": "Follow trueStepId or falseStepId depending on a condition",
        "payload": "branch",
        "required": ["condition"],
        "fields": {
            "condition": {
                "type": "string",
                "enum": ["exists", "not_exists", "text_equals", "text_contains", "variable_equals"],
            },
            "selector": _SELECTOR_FIELD,
            "expectedValue": {"type": "string"},
            "variableName": {"type": "string"},
        },
    },
    "wait": {
        "name": "Wait",
        "description": "Pause for a fixed duration",
        "payload": "wait",
        "required": ["durationMs"],
        "fields": {"durationMs": {"type": "integer", "min": 1}},
    },
    "script": {
        "name": "Play Script",
        "description": "Replay a recorded touch script by name",
        "payload": "script",
        "required": ["scriptName"],
        "fields": {"scriptName": {"type": "string"}},
    },
    "set_variable": {
        "name": "Set Variable",
        "description": "Assign a value; arithmetic like {{a}} + 1 is evaluated",
        "payload": "variable",
        "required": ["name"],
        "fields": {"name": {"type": "string"}, "value": {"type": "string"}},
    },
    "read_to_variable": {
        "name": "Read To Variable",
        "description": "Read an element attribute into a variable",
        "payload": "readToVariable",
        "required": ["selector", "variableName"],
        "fields": {
            "selector": _SELECTOR_FIELD,
            "variableName": {"type": "string"},
            "attribute": {
                "type": "string",
                "enum": ["text", "contentDesc", "resourceId", "className", "bounds"],
                "default": "text",
            },
            "regex": {"type": "string", "description": "First capture group is kept"},
            "defaultValue": {"type": "string"},
            "timeout": {"type": "integer", "default": 5000},
        },
    },
    "adb": {
        "name": "ADB Command",
        "description": "Run a raw adb command ({{variables}} allowed)",
        "payload": "adb",
        "required": ["command"],
        "fields": {"command": {"type": "string"}},
    },
    "run_workflow": {
        "name": "Run Workflow",
        "description": "Run another stored workflow with the same variables",
        "payload": "workflow",
        "required": ["workflowId"],
        "fields": {"workflowId": {"type": "string"}},
    },
    # =========================================================================
    # System keys
    # =========================================================================
    "key_back": _key_schema("Back", 4),
    "key_home": _key_schema("Home", 3),
    "key_recent": _key_schema("Recent Apps", 187),
    "key_power": _key_schema("Power", 26),
    "key_volume_up": _key_schema("Volume Up", 24),
    "key_volume_down": _key_schema("Volume Down", 25),
    "screen_on": _key_schema("Screen On", 224),
    "screen_off": _key_schema("Screen Off", 223),
}

COMMON_FIELDS = {
    "timeout": {"type": "integer", "description": "Element timeout in ms (0 = 5000)"},
    "onError": {"type": "string", "enum": ["stop", "continue"], "default": "stop"},
    "loop": {"type": "integer", "min": 1, "default": 1},
    "preWait": {"type": "integer", "description": "Delay before each iteration in ms"},
    "postDelay": {"type": "integer", "description": "Delay after each iteration in ms"},
}


class WorkflowService:
    def __init__(
        self,
        workflow_store: WorkflowStore,
        run_manager: RunManager,
        execution_history: Optional[ExecutionHistory] = None,
        activity_log: Optional[ActivityLog] = None,
    ):
        self.workflow_store = workflow_store
        self.run_manager = run_manager
        self.execution_history = execution_history
        self.activity_log = activity_log

    # =========================================================================
    # CRUD
    # =========================================================================

    def _dump(self, workflow: WorkflowDefinition) -> Dict[str, Any]:
        return workflow.model_dump(by_alias=True)

    def _ensure_valid(self, workflow: WorkflowDefinition):
        issues = workflow.validation_issues()
        if issues:
            raise WorkflowValidationError([issue.model_dump() for issue in issues])

    def list_workflows(self) -> List[Dict[str, Any]]:
        return [self._dump(w) for w in self.workflow_store.list_workflows()]

    def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return self._dump(self.workflow_store.load(workflow_id))

    def create_workflow(self, workflow_data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and persist a new workflow; an id is generated when absent"""
        workflow = WorkflowDefinition.model_validate(workflow_data)
        if not workflow.id:
            workflow = workflow.model_copy(update={"id": f"wf_{uuid.uuid4().hex[:12]}"})
        self._ensure_valid(workflow)
        return self._dump(self.workflow_store.create_workflow(workflow))

    def update_workflow(self, workflow_id: str, workflow_data: Dict[str, Any]) -> Dict[str, Any]:
        workflow = WorkflowDefinition.model_validate(workflow_data)
        if workflow.id and workflow.id != workflow_id:
            raise ValueError("Workflow ID mismatch")
        workflow = workflow.model_copy(update={"id": workflow_id})
        self._ensure_valid(workflow)
        return self._dump(self.workflow_store.update_workflow(workflow))

    def delete_workflow(self, workflow_id: str) -> bool:
        return self.workflow_store.delete_workflow(workflow_id)

    def validate_workflow(self, workflow_id: str) -> Dict[str, Any]:
        issues = self.workflow_store.load(workflow_id).validation_issues()
        return {"valid": not issues, "issues": [issue.model_dump() for issue in issues]}

    def get_step_schema(self) -> Dict[str, Any]:
        return {
            "version": SCHEMA_VERSION,
            "step_types": STEP_SCHEMAS,
            "common_fields": COMMON_FIELDS,
            "categories": {
                "gestures": ["tap", "swipe"],
                "elements": [
                    "click_element",
                    "long_click_element",
                    "input_text",
                    "swipe_element",
                    "wait_element",
                    "wait_gone",
                    "assert_element",
                ],
                "app_control": ["launch_app", "stop_app", "clear_app", "open_settings"],
                "flow_control": ["start", "branch", "wait", "run_workflow"],
                "variables": ["set_variable", "read_to_variable"],
                "advanced": ["script", "adb"],
                "system_keys": [
                    "key_back",
                    "key_home",
                    "key_recent",
                    "key_power",
                    "key_volume_up",
                    "key_volume_down",
                    "screen_on",
                    "screen_off",
                ],
            },
        }

    # =========================================================================
    # Run control
    # =========================================================================

    def run_workflow(
        self, device_id: str, workflow_id: str, variables: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        workflow = self.workflow_store.load(workflow_id)
        return self._start(device_id, workflow, variables)

    def run_inline(
        self,
        device_id: str,
        workflow_data: Dict[str, Any],
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        workflow = WorkflowDefinition.model_validate(workflow_data)
        return self._start(device_id, workflow, variables)

    def _start(self, device_id, workflow, variables) -> Dict[str, Any]:
        overrides = {str(k): "" if v is None else str(v) for k, v in (variables or {}).items()}
        self.run_manager.start(device_id, workflow, overrides)
        return {
            "success": True,
            "status": "started",
            "device_id": device_id,
            "workflow_id": workflow.id,
        }

    def stop(self, device_id: str) -> Dict[str, Any]:
        stopped = self.run_manager.stop(device_id)
        return {"success": stopped, "device_id": device_id, "stopped": stopped}

    def get_result(self, device_id: str) -> Optional[Dict[str, Any]]:
        result = self.run_manager.get_last_result(device_id)
        return result.model_dump(by_alias=True) if result else None

    def get_status(self, device_id: str) -> Dict[str, Any]:
        return {"device_id": device_id, "running": self.run_manager.is_running(device_id)}

    async def execute_step(
        self,
        device_id: str,
        step_data: Dict[str, Any],
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        step = parse_step(step_data)
        overrides = {str(k): "" if v is None else str(v) for k, v in (variables or {}).items()}
        result = await self.run_manager.execute_single_step(device_id, step, overrides)
        return {
            "success": result.success,
            "is_branch_result": result.is_branch_result,
            "error": result.error,
        }

    # =========================================================================
    # History and activity
    # =========================================================================

    def get_history(self, workflow_id: str, limit: int = 50) -> Dict[str, Any]:
        logs = self.execution_history.get_history(workflow_id, limit) if self.execution_history else []
        return {
            "workflow_id": workflow_id,
            "executions": [self.execution_history.to_dict(log) for log in reversed(logs)],
            "count": len(logs),
        }

    def get_history_stats(self, workflow_id: str) -> Dict[str, Any]:
        if not self.execution_history:
            return {"workflow_id": workflow_id, "total_executions": 0}
        return {"workflow_id": workflow_id, **self.execution_history.get_stats(workflow_id)}

    def get_activity(self, limit: int = 50, device_id: Optional[str] = None) -> Dict[str, Any]:
        entries = self.activity_log.get_activity_log(limit, device_id) if self.activity_log else []
        return {"entries": entries, "count": len(entries)}
