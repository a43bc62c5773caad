"""
Workflow Engine - Workflow Runner
Graph walker that drives a workflow from its start step to termination
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Optional

from workflow_engine.config import defaults
from workflow_engine.utils.error_handler import (
    MissingStartStepError,
    NestingDepthExceededError,
    RunCancelledError,
    StepBudgetExceededError,
    StepFailedError,
    StepNotFoundError,
    WorkflowError,
)
from .cancellation import CancelToken
from .next_step import resolve_next_step, should_stop_on_error
from .variables import VariableStore
from .workflow_events import EventEmitter, WorkflowEvent, WorkflowEventType, now_ms
from .workflow_models import StepBase, StepResult, WorkflowDefinition

logger = logging.getLogger(__name__)


class StepCounter:
    """Dispatch counter shared by a run and all of its sub-workflows"""

    def __init__(self):
        self.count = 0


@dataclass
class RunContext:
    """Per-walker state; sub-workflows get a copy with depth + 1"""

    device_id: str
    workflow_id: str
    workflow_name: str
    variables: VariableStore
    token: CancelToken
    runner: "WorkflowRunner"
    depth: int = 0
    counter: StepCounter = field(default_factory=StepCounter)

    async def run_sub_workflow(self, workflow_id: str):
        await self.runner.run_sub_workflow(self, workflow_id)


class WorkflowRunner:
    """
    Walks a workflow graph

    Holds no per-run state; everything a run mutates lives in its RunContext,
    so one runner serves every device concurrently.
    """

    def __init__(
        self,
        step_executor,
        workflow_store,
        emitter: Optional[EventEmitter] = None,
        max_steps: Optional[int] = None,
        max_depth: Optional[int] = None,
    ):
        self.step_executor = step_executor
        self.workflow_store = workflow_store
        self.emitter = emitter or EventEmitter()
        self.max_steps = max_steps or defaults.Defaults.MAX_WORKFLOW_STEPS
        self.max_depth = max_depth or defaults.Defaults.MAX_NESTING_DEPTH

    def new_context(
        self,
        device_id: str,
        workflow: WorkflowDefinition,
        variables: Optional[Dict[str, str]] = None,
        token: Optional[CancelToken] = None,
    ) -> RunContext:
        """Context for a top-level run: workflow defaults overridden by caller variables"""
        return RunContext(
            device_id=device_id,
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            variables=VariableStore.seed(workflow.variables, variables),
            token=token or CancelToken(),
            runner=self,
        )

    def emit(self, ctx: RunContext, event_type: str, step: Optional[StepBase] = None, **fields):
        self.emitter.emit(
            WorkflowEvent(
                event_type=event_type,
                device_id=ctx.device_id,
                workflow_id=ctx.workflow_id,
                workflow_name=ctx.workflow_name,
                step_id=step.id if step else None,
                step_type=step.type if step else None,
                step_name=step.name if step else None,
                depth=ctx.depth,
                **fields,
            )
        )

    # =========================================================================
    # Graph walk
    # =========================================================================

    async def walk(self, ctx: RunContext, workflow: WorkflowDefinition):
        """
        Drive a workflow from its start step until no next step remains.

        Raises:
            MissingStartStepError / StepNotFoundError: Corrupt graph
            StepBudgetExceededError: Execution-wide dispatch ceiling reached
            StepFailedError: A failing step left nowhere to go
            RunCancelledError: Stop requested
        """
        steps = workflow.step_index()
        starts = workflow.start_steps()
        if not starts:
            raise MissingStartStepError(workflow.id)

        current = starts[0].connections.success_step_id
        while current:
            ctx.token.raise_if_cancelled()

            if ctx.counter.count >= self.max_steps:
                raise StepBudgetExceededError(self.max_steps)

            step = steps.get(current)
            if step is None:
                raise StepNotFoundError(current)

            ctx.counter.count += 1
            logger.debug(
                f"  [{ctx.counter.count}] {step.type} step {step.id} ({step.name or 'unnamed'})"
            )
            self.emit(ctx, WorkflowEventType.STEP_START, step)

            started = now_ms()
            result = await self._run_iterations(ctx, step)
            next_step_id = resolve_next_step(step, result)

            self.emit(
                ctx,
                WorkflowEventType.STEP_END,
                step,
                success=result.success,
                error=result.error,
                duration_ms=now_ms() - started,
            )

            if result.error and not next_step_id and should_stop_on_error(step):
                ctx.token.raise_if_cancelled()
                raise StepFailedError(step.id, result.error)

            current = next_step_id

    async def _run_iterations(self, ctx: RunContext, step: StepBase) -> StepResult:
        loops = step.common.loop if step.common.loop > 0 else 1
        result = StepResult.ok()

        for iteration in range(loops):
            ctx.token.raise_if_cancelled()
            if step.common.pre_wait > 0:
                await ctx.token.sleep(step.common.pre_wait)

            result = await self.step_executor.execute(ctx, step)

            if step.common.post_delay > 0:
                await ctx.token.sleep(step.common.post_delay)

            if not result.success and should_stop_on_error(step):
                if loops > 1:
                    logger.debug(f"  Loop stopped at iteration {iteration + 1}/{loops}")
                break

        return result

    # =========================================================================
    # Sub-workflows
    # =========================================================================

    async def run_sub_workflow(self, ctx: RunContext, workflow_id: str):
        """
        Run a stored workflow inline on the caller's variable store.

        The child's default variables only fill names the caller has not set;
        child writes stay visible to the caller afterwards.
        """
        depth = ctx.depth + 1
        if depth > self.max_depth:
            raise NestingDepthExceededError(depth, self.max_depth)

        workflow = self.workflow_store.load(workflow_id)
        for name, value in workflow.variables.items():
            ctx.variables.setdefault(name, value)

        child = replace(
            ctx, workflow_id=workflow.id, workflow_name=workflow.name, depth=depth
        )
        logger.info(f"[WorkflowRunner] Entering sub-workflow {workflow.id} (depth {depth})")
        self.emit(child, WorkflowEventType.WORKFLOW_START)
        started = now_ms()

        try:
            await self.walk(child, workflow)
        except RunCancelledError:
            raise
        except WorkflowError as e:
            self.emit(
                child,
                WorkflowEventType.WORKFLOW_ERROR,
                success=False,
                error=e.message,
                status="error",
                duration_ms=now_ms() - started,
            )
            raise

        self.emit(
            child,
            WorkflowEventType.WORKFLOW_COMPLETE,
            success=True,
            status="completed",
            duration_ms=now_ms() - started,
        )
