"""Test fixtures: fake device bridge, in-memory workflow store, event collector.

All engine tests run against these fakes; nothing here touches adb or MQTT.
"""

from typing import Dict, List, Optional

import pytest

from workflow_engine.core.adb.element_actions import ElementActions
from workflow_engine.core.adb.ui_hierarchy import parse_hierarchy
from workflow_engine.core.workflows.branch_resolver import BranchResolver
from workflow_engine.core.workflows.run_manager import RunManager
from workflow_engine.core.workflows.script_player import ScriptPlayer
from workflow_engine.core.workflows.step_executor import StepExecutor
from workflow_engine.core.workflows.workflow_events import EventEmitter
from workflow_engine.core.workflows.workflow_models import WorkflowDefinition
from workflow_engine.core.workflows.workflow_runner import WorkflowRunner
from workflow_engine.utils.error_handler import DeviceActionError, WorkflowNotFoundError

DEVICE = "emulator-5554"

SAMPLE_XML = """<?xml version='1.0' encoding='UTF-8' standalone='yes' ?>
<hierarchy rotation="0">
  <node index="0" text="" resource-id="" class="android.widget.FrameLayout" package="com.example.app" content-desc="" clickable="false" bounds="[0,0][1080,2400]">
    <node index="0" text="Login" resource-id="com.example.app:id/login_button" class="android.widget.Button" package="com.example.app" content-desc="" clickable="true" bounds="[100,200][300,400]" />
    <node index="1" text="Balance: 42.50 EUR" resource-id="com.example.app:id/balance" class="android.widget.TextView" package="com.example.app" content-desc="" clickable="false" bounds="[0,500][1080,600]" />
    <node index="2" text="" resource-id="com.example.app:id/search" class="android.widget.EditText" package="com.example.app" content-desc="Search box" clickable="true" bounds="[0,700][1080,800]" />
    <node index="3" text="Item" resource-id="com.example.app:id/row" class="android.widget.TextView" package="com.example.app" content-desc="" clickable="true" bounds="[0,900][540,1000]" />
    <node index="4" text="Item" resource-id="com.example.app:id/row" class="android.widget.TextView" package="com.example.app" content-desc="" clickable="true" bounds="[540,900][1080,1000]" />
  </node>
</hierarchy>
"""

EMPTY_XML = "<hierarchy rotation=\"0\"></hierarchy>"


# ── Fakes ─────────────────────────────────────────────────────────────────────


class FakeDeviceBridge:
    """
    Records every device call as (method, args...) tuples.

    `fail` maps a method name to an error message; that method then raises
    DeviceActionError. `screens` is a queue of hierarchy XML documents served
    one per dump; the last one repeats.
    """

    def __init__(self, xml: str = SAMPLE_XML):
        self.calls: List[tuple] = []
        self.fail: Dict[str, str] = {}
        self.screens: List[str] = [xml]
        self.resolution = (1080, 2400)
        self.command_output = "ok"

    def _record(self, method: str, *args):
        self.calls.append((method, *args))
        if method in self.fail:
            raise DeviceActionError(self.fail[method], device_id=args[0] if args else None)

    def calls_to(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    async def tap(self, device_id, x, y):
        self._record("tap", device_id, x, y)

    async def swipe(self, device_id, x1, y1, x2, y2, duration=300):
        self._record("swipe", device_id, x1, y1, x2, y2, duration)

    async def long_press(self, device_id, x, y, duration=1000):
        self._record("long_press", device_id, x, y, duration)

    async def type_text(self, device_id, text):
        self._record("type_text", device_id, text)

    async def keyevent(self, device_id, keycode):
        self._record("keyevent", device_id, keycode)

    async def launch_app(self, device_id, package_name):
        self._record("launch_app", device_id, package_name)

    async def stop_app(self, device_id, package_name):
        self._record("stop_app", device_id, package_name)

    async def clear_app(self, device_id, package_name):
        self._record("clear_app", device_id, package_name)

    async def open_app_settings(self, device_id, package_name):
        self._record("open_app_settings", device_id, package_name)

    async def run_command(self, device_id, command):
        self._record("run_command", device_id, command)
        return self.command_output

    async def shell(self, device_id, command):
        self._record("shell", device_id, command)
        return self.command_output

    async def get_ui_hierarchy(self, device_id):
        self._record("get_ui_hierarchy", device_id)
        xml = self.screens.pop(0) if len(self.screens) > 1 else self.screens[0]
        return parse_hierarchy(xml)

    async def get_screen_resolution(self, device_id):
        self._record("get_screen_resolution", device_id)
        return self.resolution


class InMemoryWorkflowStore:
    """Dict-backed stand-in for WorkflowStore.load()"""

    def __init__(self, workflows: Optional[List[WorkflowDefinition]] = None):
        self.workflows = {w.id: w for w in workflows or []}

    def add(self, workflow: WorkflowDefinition):
        self.workflows[workflow.id] = workflow

    def load(self, workflow_id: str) -> WorkflowDefinition:
        if workflow_id not in self.workflows:
            raise WorkflowNotFoundError(workflow_id)
        return self.workflows[workflow_id]


class CollectingSink:
    """Event sink that keeps everything it receives"""

    def __init__(self):
        self.events = []

    def handle(self, event):
        self.events.append(event)

    def types(self) -> List[str]:
        return [e.event_type for e in self.events]


# ── Helpers ───────────────────────────────────────────────────────────────────


def make_workflow(steps: List[dict], workflow_id: str = "wf", **extra) -> WorkflowDefinition:
    """
    Build a workflow from step dicts, prepending a start step wired to the
    first step unless one is already present.
    """
    steps = list(steps)
    if not any(s.get("type") == "start" for s in steps):
        first = steps[0]["id"] if steps else ""
        steps.insert(
            0, {"id": "start", "type": "start", "connections": {"successStepId": first}}
        )
    data = {"id": workflow_id, "name": extra.pop("name", f"Workflow {workflow_id}"), "steps": steps}
    data.update(extra)
    return WorkflowDefinition.model_validate(data)


def chain(*steps: dict) -> List[dict]:
    """Wire each step's successStepId to the next step"""
    wired = []
    for i, step in enumerate(steps):
        step = dict(step)
        connections = dict(step.get("connections") or {})
        if i + 1 < len(steps) and "successStepId" not in connections:
            connections["successStepId"] = steps[i + 1]["id"]
        step["connections"] = connections
        wired.append(step)
    return wired


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def bridge():
    return FakeDeviceBridge()


@pytest.fixture
def store():
    return InMemoryWorkflowStore()


@pytest.fixture
def sink():
    return CollectingSink()


@pytest.fixture
def scripts_dir(tmp_path):
    path = tmp_path / "scripts"
    path.mkdir()
    return path


@pytest.fixture
def executor(bridge, scripts_dir):
    """StepExecutor with millisecond polling and a short element timeout"""
    return StepExecutor(
        bridge,
        element_actions=ElementActions(bridge, poll_interval_ms=5),
        branch_resolver=BranchResolver(bridge),
        script_player=ScriptPlayer(bridge, scripts_dir=str(scripts_dir)),
        default_timeout_ms=50,
    )


@pytest.fixture
def runner(executor, store, sink):
    return WorkflowRunner(executor, store, EventEmitter([sink]))


@pytest.fixture
def run_manager(runner):
    return RunManager(runner)
