"""
Workflow Engine - Step Executor
Dispatches one step iteration to the handler for its type family
"""

import logging
import re

from workflow_engine.config import defaults
from workflow_engine.core.adb.element_actions import ElementActions, offset_point
from workflow_engine.utils.error_handler import (
    ConfigurationError,
    ElementNotFoundError,
    LifecycleError,
    MissingParametersError,
    RunCancelledError,
    StepFailedError,
    UnknownElementActionError,
    UnknownStepTypeError,
)
from .branch_resolver import BranchResolver
from .script_player import ScriptPlayer
from .workflow_models import StepBase, StepResult, step_family

logger = logging.getLogger(__name__)


class StepExecutor:
    """
    Executes single steps against a device.

    Handlers raise; `execute` turns device-side failures into a failed
    StepResult so the next-step resolver can route them. Configuration and
    lifecycle errors and cancellation always propagate.
    """

    def __init__(
        self,
        adb_bridge,
        element_actions: ElementActions = None,
        branch_resolver: BranchResolver = None,
        script_player: ScriptPlayer = None,
        default_timeout_ms: int = None,
    ):
        self.adb_bridge = adb_bridge
        self.element_actions = element_actions or ElementActions(adb_bridge)
        self.branch_resolver = branch_resolver or BranchResolver(adb_bridge)
        self.script_player = script_player or ScriptPlayer(adb_bridge)
        self.default_timeout_ms = (
            default_timeout_ms or defaults.Defaults.DEFAULT_ELEMENT_TIMEOUT_MS
        )

        # Step family to handler mapping
        self.step_handlers = {
            "start": self._execute_start,
            "tap": self._execute_tap,
            "swipe": self._execute_swipe,
            "element": self._execute_element,
            "app": self._execute_app,
            "branch": self._execute_branch,
            "wait": self._execute_wait,
            "script": self._execute_script,
            "set_variable": self._execute_set_variable,
            "read_to_variable": self._execute_read_to_variable,
            "adb": self._execute_adb,
            "run_workflow": self._execute_run_workflow,
            "key": self._execute_keyevent,
            "unknown": self._execute_unknown,
        }

        self.element_handlers = {
            "click": self._element_click,
            "long_click": self._element_long_click,
            "input": self._element_input,
            "swipe": self._element_swipe,
            "wait": self._element_wait,
            "assert": self._element_wait,
            "wait_gone": self._element_wait_gone,
        }

        self.app_handlers = {
            "launch": self.adb_bridge.launch_app,
            "stop": self.adb_bridge.stop_app,
            "clear": self.adb_bridge.clear_app,
            "settings": self.adb_bridge.open_app_settings,
        }

    async def execute(self, ctx, step: StepBase) -> StepResult:
        """
        Run one iteration of a step.

        Args:
            ctx: RunContext of the run (device, variables, cancel token, depth)
            step: Step to execute

        Returns:
            StepResult; success=False carries the device-side error message

        Raises:
            ConfigurationError: Broken step definition
            LifecycleError: Nesting or step budget exhausted
            RunCancelledError: The run was cancelled mid-step
        """
        handler = self.step_handlers[step_family(step)]
        try:
            return await handler(ctx, step)
        except (ConfigurationError, LifecycleError, RunCancelledError):
            raise
        except StepFailedError as e:
            # A sub-workflow aborted; the failure belongs to the calling step
            return StepResult.failed(e.message)
        except Exception as e:
            logger.warning(f"  {step.type} step {step.id} failed: {e}")
            return StepResult.failed(str(e))

    # =========================================================================
    # Coordinate steps
    # =========================================================================

    async def _execute_start(self, ctx, step) -> StepResult:
        return StepResult.ok()

    async def _execute_tap(self, ctx, step) -> StepResult:
        if step.tap is None:
            raise MissingParametersError("tap", "coordinates")
        logger.debug(f"  Tapping at ({step.tap.x}, {step.tap.y})")
        await self.adb_bridge.tap(ctx.device_id, step.tap.x, step.tap.y)
        return StepResult.ok()

    async def _execute_swipe(self, ctx, step) -> StepResult:
        if step.swipe is None:
            raise MissingParametersError("swipe", "coordinates")
        params = step.swipe
        x2, y2 = params.x2, params.y2
        # Only direction plus a positive distance replaces the end point
        if params.direction and params.distance > 0:
            try:
                x2, y2 = offset_point(params.x, params.y, params.direction, params.distance)
            except ValueError:
                logger.debug(f"  Unknown swipe direction {params.direction!r}, keeping end point")
        duration = params.duration or defaults.Defaults.DEFAULT_SWIPE_DURATION_MS

        logger.debug(f"  Swiping from ({params.x}, {params.y}) to ({x2}, {y2})")
        await self.adb_bridge.swipe(ctx.device_id, params.x, params.y, x2, y2, duration)
        return StepResult.ok()

    async def _execute_keyevent(self, ctx, step) -> StepResult:
        logger.debug(f"  Sending keyevent {step.keycode} ({step.type})")
        await self.adb_bridge.keyevent(ctx.device_id, step.keycode)
        return StepResult.ok()

    # =========================================================================
    # Element steps
    # =========================================================================

    def _substituted_selector(self, ctx, selector):
        return selector.model_copy(update={"value": ctx.variables.substitute(selector.value)})

    async def _execute_element(self, ctx, step) -> StepResult:
        if step.element is None or step.element.selector is None:
            raise MissingParametersError(step.type, "selector")

        action = step.action
        handler = self.element_handlers.get(action)
        if handler is None:
            raise UnknownElementActionError(action)

        selector = self._substituted_selector(ctx, step.element.selector)
        timeout_ms = step.common.timeout or self.default_timeout_ms
        logger.debug(f"  Element {action} ({selector.type}={selector.value}, {timeout_ms}ms)")

        await handler(ctx, step.element, selector, timeout_ms)
        return StepResult.ok()

    async def _element_click(self, ctx, params, selector, timeout_ms):
        await self.element_actions.click(ctx.device_id, selector, timeout_ms, ctx.token)

    async def _element_long_click(self, ctx, params, selector, timeout_ms):
        await self.element_actions.long_click(ctx.device_id, selector, timeout_ms, ctx.token)

    async def _element_input(self, ctx, params, selector, timeout_ms):
        text = ctx.variables.substitute(params.input_text)
        await self.element_actions.input_text(
            ctx.device_id, selector, text, timeout_ms, ctx.token
        )

    async def _element_swipe(self, ctx, params, selector, timeout_ms):
        await self.element_actions.swipe(
            ctx.device_id,
            selector,
            params.swipe_dir,
            params.swipe_distance or defaults.Defaults.DEFAULT_SWIPE_DISTANCE,
            params.swipe_duration or defaults.Defaults.DEFAULT_SWIPE_DURATION_MS,
            timeout_ms,
            ctx.token,
        )

    async def _element_wait(self, ctx, params, selector, timeout_ms):
        await self.element_actions.wait_for_element(ctx.device_id, selector, timeout_ms, ctx.token)

    async def _element_wait_gone(self, ctx, params, selector, timeout_ms):
        await self.element_actions.wait_element_gone(
            ctx.device_id, selector, timeout_ms, ctx.token
        )

    # =========================================================================
    # App steps
    # =========================================================================

    async def _execute_app(self, ctx, step) -> StepResult:
        if step.app is None or not step.app.package_name:
            raise MissingParametersError(step.type, "package name")

        action = step.action
        handler = self.app_handlers.get(action)
        if handler is None:
            raise ConfigurationError(f"unknown app action: {action}")

        package_name = ctx.variables.substitute(step.app.package_name)
        logger.debug(f"  App {action}: {package_name}")
        await handler(ctx.device_id, package_name)
        return StepResult.ok()

    # =========================================================================
    # Flow control steps
    # =========================================================================

    async def _execute_branch(self, ctx, step) -> StepResult:
        if step.branch is None:
            raise MissingParametersError("branch")
        return await self.branch_resolver.evaluate(ctx.device_id, step.branch, ctx.variables)

    async def _execute_wait(self, ctx, step) -> StepResult:
        if step.wait is None:
            raise MissingParametersError("wait", "duration")
        logger.debug(f"  Waiting {step.wait.duration_ms}ms")
        await ctx.token.sleep(step.wait.duration_ms)
        return StepResult.ok()

    async def _execute_script(self, ctx, step) -> StepResult:
        if step.script is None or not step.script.script_name:
            raise MissingParametersError("script", "script name")
        played = await self.script_player.play(ctx.device_id, step.script.script_name, ctx.token)
        logger.debug(f"  Script {step.script.script_name} dispatched {played} events")
        return StepResult.ok()

    async def _execute_set_variable(self, ctx, step) -> StepResult:
        if step.variable is None or not step.variable.name:
            raise MissingParametersError("set_variable", "variable name")
        ctx.variables.set(
            step.variable.name, ctx.variables.substitute_and_evaluate(step.variable.value)
        )
        return StepResult.ok()

    async def _execute_read_to_variable(self, ctx, step) -> StepResult:
        """
        Read an element attribute into a variable.

        An optional regex narrows the value to its first capture group (or the
        whole match). An empty result falls back to defaultValue, as does a
        missing element when a default is configured.
        """
        params = step.read_to_variable
        if params is None or params.selector is None or not params.variable_name:
            raise MissingParametersError("read_to_variable")

        pattern = None
        if params.regex:
            try:
                pattern = re.compile(params.regex)
            except re.error as e:
                raise ConfigurationError(f"invalid regex {params.regex!r}: {e}") from e

        selector = self._substituted_selector(ctx, params.selector)
        timeout_ms = params.timeout or step.common.timeout or self.default_timeout_ms
        try:
            node = await self.element_actions.wait_for_element(
                ctx.device_id, selector, timeout_ms, ctx.token
            )
        except ElementNotFoundError:
            if params.default_value:
                logger.debug(f"  Element not found, using default for {params.variable_name}")
                default = ctx.variables.substitute(params.default_value)
                ctx.variables.set(params.variable_name, default)
                return StepResult.ok()
            raise

        value = node.get_attribute(params.attribute or "text")
        if pattern is not None:
            match = pattern.search(value)
            if match is None:
                value = ""
            elif pattern.groups:
                value = match.group(1) or ""
            else:
                value = match.group(0)

        ctx.variables.set(
            params.variable_name, value or ctx.variables.substitute(params.default_value)
        )
        return StepResult.ok()

    async def _execute_adb(self, ctx, step) -> StepResult:
        if step.adb is None or not step.adb.command:
            raise MissingParametersError("adb", "command")
        command = ctx.variables.substitute(step.adb.command)
        output = await self.adb_bridge.run_command(ctx.device_id, command)
        logger.debug(f"  adb {command} -> {output[:100]}")
        return StepResult.ok()

    async def _execute_run_workflow(self, ctx, step) -> StepResult:
        if step.workflow is None or not step.workflow.workflow_id:
            raise MissingParametersError("run_workflow", "workflow id")
        await ctx.run_sub_workflow(step.workflow.workflow_id)
        return StepResult.ok()

    async def _execute_unknown(self, ctx, step) -> StepResult:
        raise UnknownStepTypeError(step.type)
