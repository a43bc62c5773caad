"""
Workflow Engine - Workflow Models

Workflow definitions are a graph of steps wired by id-based connections.
Each step kind is its own model carrying only its own payload; the union is
discriminated on the step's `type` tag. Unrecognised tags load as
UnknownStep so the failure surfaces in validation and at dispatch instead of
silently vanishing at parse time.

JSON uses camelCase keys (successStepId, durationMs, ...); Python attributes
are snake_case.
"""

from typing import Optional, List, Dict, Any, Literal, Union, Annotated
from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
)
from pydantic.alias_generators import to_camel


class StepType(str):
    """Step type tags"""

    START = "start"
    TAP = "tap"
    SWIPE = "swipe"
    # Element actions
    CLICK_ELEMENT = "click_element"
    LONG_CLICK_ELEMENT = "long_click_element"
    INPUT_TEXT = "input_text"
    SWIPE_ELEMENT = "swipe_element"
    WAIT_ELEMENT = "wait_element"
    WAIT_GONE = "wait_gone"
    ASSERT_ELEMENT = "assert_element"
    # App lifecycle
    LAUNCH_APP = "launch_app"
    STOP_APP = "stop_app"
    CLEAR_APP = "clear_app"
    OPEN_SETTINGS = "open_settings"
    # Flow control
    BRANCH = "branch"
    WAIT = "wait"
    SCRIPT = "script"
    SET_VARIABLE = "set_variable"
    READ_TO_VARIABLE = "read_to_variable"
    ADB = "adb"
    RUN_WORKFLOW = "run_workflow"
    # System keys
    KEY_BACK = "key_back"
    KEY_HOME = "key_home"
    KEY_RECENT = "key_recent"
    KEY_POWER = "key_power"
    KEY_VOLUME_UP = "key_volume_up"
    KEY_VOLUME_DOWN = "key_volume_down"
    SCREEN_ON = "screen_on"
    SCREEN_OFF = "screen_off"


class RunStatus(str):
    """Terminal statuses of a run"""

    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class OnErrorPolicy(str):
    STOP = "stop"
    CONTINUE = "continue"


class BranchCondition(str):
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    TEXT_EQUALS = "text_equals"
    TEXT_CONTAINS = "text_contains"
    VARIABLE_EQUALS = "variable_equals"


ELEMENT_STEP_ACTIONS = {
    StepType.CLICK_ELEMENT: "click",
    StepType.LONG_CLICK_ELEMENT: "long_click",
    StepType.INPUT_TEXT: "input",
    StepType.SWIPE_ELEMENT: "swipe",
    StepType.WAIT_ELEMENT: "wait",
    StepType.WAIT_GONE: "wait_gone",
    StepType.ASSERT_ELEMENT: "assert",
}

APP_STEP_ACTIONS = {
    StepType.LAUNCH_APP: "launch",
    StepType.STOP_APP: "stop",
    StepType.CLEAR_APP: "clear",
    StepType.OPEN_SETTINGS: "settings",
}

KEY_STEP_CODES = {
    StepType.KEY_BACK: 4,
    StepType.KEY_HOME: 3,
    StepType.KEY_RECENT: 187,
    StepType.KEY_POWER: 26,
    StepType.KEY_VOLUME_UP: 24,
    StepType.KEY_VOLUME_DOWN: 25,
    StepType.SCREEN_ON: 224,
    StepType.SCREEN_OFF: 223,
}


class ValidationIssue(BaseModel):
    """One problem found while validating a definition"""

    field: str
    message: str


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Step building blocks
# =============================================================================


class StepCommon(CamelModel):
    """Settings shared by every step"""

    timeout: int = Field(0, description="Element timeout in ms (0 = engine default)")
    on_error: str = Field(OnErrorPolicy.STOP, description="stop | continue")
    loop: int = Field(1, description="Times to run the step (<=0 treated as 1)")
    post_delay: int = Field(0, description="Delay after each iteration in ms")
    pre_wait: int = Field(0, description="Delay before each iteration in ms")

    @field_validator("on_error", mode="before")
    @classmethod
    def _default_on_error(cls, v):
        return v or OnErrorPolicy.STOP


class StepConnections(CamelModel):
    success_step_id: str = ""
    error_step_id: str = ""
    true_step_id: str = ""
    false_step_id: str = ""


class StepLayout(CamelModel):
    """Editor canvas position; ignored by the engine"""

    pos_x: float = 0
    pos_y: float = 0


class ElementSelector(CamelModel):
    type: str = "text"
    value: str = ""
    index: int = 0


class TapParams(CamelModel):
    x: int
    y: int


class SwipeParams(CamelModel):
    x: int = 0
    y: int = 0
    x2: int = 0
    y2: int = 0
    direction: str = ""
    distance: int = 0
    duration: int = 0


class ElementParams(CamelModel):
    selector: Optional[ElementSelector] = None
    action: str = ""
    input_text: str = ""
    swipe_dir: str = ""
    swipe_distance: int = 0
    swipe_duration: int = 0


class AppParams(CamelModel):
    package_name: str = ""
    action: str = ""


class BranchParams(CamelModel):
    condition: str = ""
    selector: Optional[ElementSelector] = None
    expected_value: str = ""
    variable_name: str = ""


class WaitParams(CamelModel):
    duration_ms: int = 0


class ScriptParams(CamelModel):
    script_name: str = ""


class VariableParams(CamelModel):
    name: str = ""
    value: str = ""


class ReadToVariableParams(CamelModel):
    selector: Optional[ElementSelector] = None
    variable_name: str = ""
    attribute: str = "text"
    regex: str = ""
    default_value: str = ""
    timeout: int = 0


class AdbParams(CamelModel):
    command: str = ""


class SubWorkflowParams(CamelModel):
    workflow_id: str = ""


# =============================================================================
# Step variants
# =============================================================================


class StepBase(CamelModel):
    """Fields common to every step kind"""

    id: str = ""
    name: str = ""
    common: StepCommon = Field(default_factory=StepCommon)
    connections: StepConnections = Field(default_factory=StepConnections)
    layout: Optional[StepLayout] = None

    def validation_issues(self) -> List[ValidationIssue]:
        issues = []
        if not self.id:
            issues.append(ValidationIssue(field="id", message="step id is required"))
        if not self.type:
            issues.append(ValidationIssue(field="type", message="step type is required"))
        return issues + self._param_issues()

    def _param_issues(self) -> List[ValidationIssue]:
        return []


def _selector_issues(prefix: str, selector: Optional[ElementSelector]) -> List[ValidationIssue]:
    if selector is None:
        return [ValidationIssue(field=f"{prefix}.selector", message="selector is required")]
    issues = []
    if not selector.type:
        issues.append(
            ValidationIssue(field=f"{prefix}.selector.type", message="selector type is required")
        )
    if not selector.value:
        issues.append(
            ValidationIssue(field=f"{prefix}.selector.value", message="selector value is required")
        )
    return issues


class StartStep(StepBase):
    type: Literal["start"] = "start"


class TapStep(StepBase):
    type: Literal["tap"] = "tap"
    tap: Optional[TapParams] = None

    def _param_issues(self):
        if self.tap is None:
            return [ValidationIssue(field="tap", message="tap params are required")]
        return []


class SwipeStep(StepBase):
    type: Literal["swipe"] = "swipe"
    swipe: Optional[SwipeParams] = None

    def _param_issues(self):
        if self.swipe is None:
            return [ValidationIssue(field="swipe", message="swipe params are required")]
        s = self.swipe
        has_coords = any((s.x, s.y, s.x2, s.y2))
        if not has_coords and not s.direction:
            return [
                ValidationIssue(
                    field="swipe", message="swipe needs coordinates or a direction"
                )
            ]
        return []


class ElementStep(StepBase):
    type: Literal[
        "click_element",
        "long_click_element",
        "input_text",
        "swipe_element",
        "wait_element",
        "wait_gone",
        "assert_element",
    ]
    element: Optional[ElementParams] = None

    @property
    def action(self) -> str:
        if self.element is not None and self.element.action:
            return self.element.action
        return ELEMENT_STEP_ACTIONS[self.type]

    def _param_issues(self):
        if self.element is None:
            return [ValidationIssue(field="element", message="element params are required")]
        issues = _selector_issues("element", self.element.selector)
        if self.type == StepType.INPUT_TEXT and not self.element.input_text:
            issues.append(
                ValidationIssue(field="element.inputText", message="input text is required")
            )
        return issues


class AppStep(StepBase):
    type: Literal["launch_app", "stop_app", "clear_app", "open_settings"]
    app: Optional[AppParams] = None

    @property
    def action(self) -> str:
        if self.app is not None and self.app.action:
            return self.app.action
        return APP_STEP_ACTIONS[self.type]

    def _param_issues(self):
        if self.app is None or not self.app.package_name:
            return [ValidationIssue(field="app.packageName", message="package name is required")]
        return []


class BranchStep(StepBase):
    type: Literal["branch"] = "branch"
    branch: Optional[BranchParams] = None

    def _param_issues(self):
        if self.branch is None or not self.branch.condition:
            return [ValidationIssue(field="branch.condition", message="condition is required")]
        if self.branch.condition == BranchCondition.VARIABLE_EQUALS:
            if not self.branch.variable_name:
                return [
                    ValidationIssue(
                        field="branch.variableName", message="variable name is required"
                    )
                ]
            return []
        return _selector_issues("branch", self.branch.selector)


class WaitStep(StepBase):
    type: Literal["wait"] = "wait"
    wait: Optional[WaitParams] = None

    def _param_issues(self):
        if self.wait is None or self.wait.duration_ms <= 0:
            return [
                ValidationIssue(field="wait.durationMs", message="duration must be greater than 0")
            ]
        return []


class ScriptStep(StepBase):
    type: Literal["script"] = "script"
    script: Optional[ScriptParams] = None

    def _param_issues(self):
        if self.script is None or not self.script.script_name:
            return [ValidationIssue(field="script.scriptName", message="script name is required")]
        return []


class SetVariableStep(StepBase):
    type: Literal["set_variable"] = "set_variable"
    variable: Optional[VariableParams] = None

    def _param_issues(self):
        if self.variable is None or not self.variable.name:
            return [ValidationIssue(field="variable.name", message="variable name is required")]
        return []


class ReadToVariableStep(StepBase):
    type: Literal["read_to_variable"] = "read_to_variable"
    read_to_variable: Optional[ReadToVariableParams] = None

    def _param_issues(self):
        params = self.read_to_variable
        if params is None:
            return [
                ValidationIssue(field="readToVariable", message="readToVariable params are required")
            ]
        issues = _selector_issues("readToVariable", params.selector)
        if not params.variable_name:
            issues.append(
                ValidationIssue(
                    field="readToVariable.variableName", message="variable name is required"
                )
            )
        return issues


class AdbStep(StepBase):
    type: Literal["adb"] = "adb"
    adb: Optional[AdbParams] = None

    def _param_issues(self):
        if self.adb is None or not self.adb.command:
            return [ValidationIssue(field="adb.command", message="command is required")]
        return []


class RunWorkflowStep(StepBase):
    type: Literal["run_workflow"] = "run_workflow"
    workflow: Optional[SubWorkflowParams] = None

    def _param_issues(self):
        if self.workflow is None or not self.workflow.workflow_id:
            return [
                ValidationIssue(field="workflow.workflowId", message="workflow id is required")
            ]
        return []


class KeyEventStep(StepBase):
    type: Literal[
        "key_back",
        "key_home",
        "key_recent",
        "key_power",
        "key_volume_up",
        "key_volume_down",
        "screen_on",
        "screen_off",
    ]

    @property
    def keycode(self) -> int:
        return KEY_STEP_CODES[self.type]


class UnknownStep(StepBase):
    """Any step whose type tag this engine does not implement"""

    model_config = ConfigDict(extra="allow")

    type: str = ""

    def _param_issues(self):
        if not self.type:
            return []
        return [ValidationIssue(field="type", message=f"unknown step type: {self.type}")]


_STEP_FAMILIES: Dict[str, str] = {
    StepType.START: "start",
    StepType.TAP: "tap",
    StepType.SWIPE: "swipe",
    StepType.BRANCH: "branch",
    StepType.WAIT: "wait",
    StepType.SCRIPT: "script",
    StepType.SET_VARIABLE: "set_variable",
    StepType.READ_TO_VARIABLE: "read_to_variable",
    StepType.ADB: "adb",
    StepType.RUN_WORKFLOW: "run_workflow",
    **{t: "element" for t in ELEMENT_STEP_ACTIONS},
    **{t: "app" for t in APP_STEP_ACTIONS},
    **{t: "key" for t in KEY_STEP_CODES},
}


def step_family(value: Any) -> str:
    if isinstance(value, dict):
        step_type = value.get("type")
    else:
        step_type = getattr(value, "type", None)
    return _STEP_FAMILIES.get(step_type, "unknown")


WorkflowStep = Annotated[
    Union[
        Annotated[StartStep, Tag("start")],
        Annotated[TapStep, Tag("tap")],
        Annotated[SwipeStep, Tag("swipe")],
        Annotated[ElementStep, Tag("element")],
        Annotated[AppStep, Tag("app")],
        Annotated[BranchStep, Tag("branch")],
        Annotated[WaitStep, Tag("wait")],
        Annotated[ScriptStep, Tag("script")],
        Annotated[SetVariableStep, Tag("set_variable")],
        Annotated[ReadToVariableStep, Tag("read_to_variable")],
        Annotated[AdbStep, Tag("adb")],
        Annotated[RunWorkflowStep, Tag("run_workflow")],
        Annotated[KeyEventStep, Tag("key")],
        Annotated[UnknownStep, Tag("unknown")],
    ],
    Discriminator(step_family),
]


class StepEnvelope(BaseModel):
    """Wrapper used to parse a single step from a dict"""

    step: WorkflowStep


def parse_step(data: Dict[str, Any]) -> StepBase:
    """Parse a step dict into its concrete step model"""
    return StepEnvelope(step=data).step


# =============================================================================
# Workflow definition
# =============================================================================


class WorkflowDefinition(CamelModel):
    """A named graph of steps plus default variables"""

    id: str = ""
    name: str = ""
    description: str = ""
    steps: List[WorkflowStep] = Field(default_factory=list)
    variables: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("variables", mode="before")
    @classmethod
    def _stringify_variables(cls, v):
        if v is None:
            return {}
        return {str(k): "" if val is None else str(val) for k, val in dict(v).items()}

    def step_index(self) -> Dict[str, StepBase]:
        return {step.id: step for step in self.steps}

    def start_steps(self) -> List[StepBase]:
        return [step for step in self.steps if step.type == StepType.START]

    def validation_issues(self) -> List[ValidationIssue]:
        """
        Validate the whole definition.

        Checks workflow identity, exactly one start step, per-step parameters
        and that every non-empty connection targets an existing step.
        """
        issues: List[ValidationIssue] = []
        if not self.id:
            issues.append(ValidationIssue(field="id", message="workflow id is required"))
        if not self.name:
            issues.append(ValidationIssue(field="name", message="workflow name is required"))

        starts = self.start_steps()
        if not starts:
            issues.append(ValidationIssue(field="steps", message="workflow must have a start node"))
        elif len(starts) > 1:
            issues.append(
                ValidationIssue(field="steps", message="workflow can only have one start node")
            )

        step_ids = set()
        for i, step in enumerate(self.steps):
            if step.id and step.id in step_ids:
                issues.append(
                    ValidationIssue(field=f"steps[{i}].id", message=f"duplicate step id: {step.id}")
                )
            step_ids.add(step.id)
            for issue in step.validation_issues():
                issues.append(
                    ValidationIssue(field=f"steps[{i}].{issue.field}", message=issue.message)
                )

        for i, step in enumerate(self.steps):
            wiring = step.connections.model_dump(by_alias=True)
            for key, target in wiring.items():
                if target and target not in step_ids:
                    issues.append(
                        ValidationIssue(
                            field=f"steps[{i}].connections.{key}",
                            message=f"connection references unknown step: {target}",
                        )
                    )
        return issues


class WorkflowList(BaseModel):
    workflows: List[WorkflowDefinition] = []


# =============================================================================
# Execution results
# =============================================================================


class StepResult(BaseModel):
    """
    Outcome of one step iteration.

    is_branch_result marks `success` as a condition value (true/false branch)
    rather than an execution outcome.
    """

    success: bool
    is_branch_result: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "StepResult":
        return cls(success=True)

    @classmethod
    def failed(cls, error: str) -> "StepResult":
        return cls(success=False, error=error)

    @classmethod
    def condition(cls, value: bool) -> "StepResult":
        return cls(success=value, is_branch_result=True)


class ExecutionResult(CamelModel):
    """Last-run record kept per device"""

    workflow_id: str
    workflow_name: str = ""
    status: Literal["completed", "error", "cancelled"]
    start_time: int  # epoch ms
    end_time: int  # epoch ms
    duration: int  # ms
    steps_total: int = 0
    steps_executed: int = 0
    error: Optional[str] = None
