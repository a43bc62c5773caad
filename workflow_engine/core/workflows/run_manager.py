"""
Workflow Engine - Run Manager
One active run per device, plus the last ExecutionResult per device
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from workflow_engine.utils.error_handler import (
    RunAlreadyActiveError,
    RunCancelledError,
    WorkflowError,
)
from .cancellation import CancelToken
from .workflow_events import WorkflowEvent, WorkflowEventType, now_ms
from .workflow_models import (
    ExecutionResult,
    RunStatus,
    StepBase,
    StepResult,
    StepType,
    WorkflowDefinition,
)
from .workflow_runner import WorkflowRunner

logger = logging.getLogger(__name__)


@dataclass
class ActiveRun:
    token: CancelToken
    task: Optional[asyncio.Task] = None


class RunManager:
    """
    Admission, cancellation and result bookkeeping for workflow runs

    The lock only guards the two registries; it is never held across step
    execution or device I/O.
    """

    def __init__(self, runner: WorkflowRunner):
        self.runner = runner
        self._lock = threading.Lock()
        self._active: Dict[str, ActiveRun] = {}
        self._results: Dict[str, ExecutionResult] = {}
        logger.info("[RunManager] Initialized")

    def start(
        self,
        device_id: str,
        workflow: WorkflowDefinition,
        variables: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Admit a run and schedule it on the running event loop.

        Returns as soon as the run is registered.

        Raises:
            RunAlreadyActiveError: A run is already active for device_id
            RuntimeError: No running event loop; the device is released again
        """
        with self._lock:
            if device_id in self._active:
                raise RunAlreadyActiveError(device_id)
            active = ActiveRun(token=CancelToken())
            self._active[device_id] = active

        run = self._run(device_id, workflow, variables, active.token)
        try:
            active.task = asyncio.get_running_loop().create_task(run)
        except RuntimeError:
            run.close()
            with self._lock:
                self._active.pop(device_id, None)
            raise

        logger.info(
            f"[RunManager] Starting workflow {workflow.id} ({workflow.name}) on {device_id}"
        )
        self.runner.emitter.emit(
            WorkflowEvent(
                event_type=WorkflowEventType.WORKFLOW_START,
                device_id=device_id,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
            )
        )

    async def _run(
        self,
        device_id: str,
        workflow: WorkflowDefinition,
        variables: Optional[Dict[str, str]],
        token: CancelToken,
    ) -> ExecutionResult:
        start_time = now_ms()
        ctx = self.runner.new_context(device_id, workflow, variables, token)
        status, error = RunStatus.COMPLETED, None

        try:
            await self.runner.walk(ctx, workflow)
            if token.is_cancelled:
                raise RunCancelledError()
        except RunCancelledError as e:
            status, error = RunStatus.CANCELLED, e.message
        except WorkflowError as e:
            status, error = RunStatus.ERROR, e.message
        except Exception as e:
            logger.error(f"[RunManager] Workflow {workflow.id} crashed: {e}", exc_info=True)
            status, error = RunStatus.ERROR, str(e)
        finally:
            # A stop request outranks whatever the walk ended with
            if token.is_cancelled and status != RunStatus.CANCELLED:
                status, error = RunStatus.CANCELLED, RunCancelledError().message
            end_time = now_ms()
            result = ExecutionResult(
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                status=status,
                start_time=start_time,
                end_time=end_time,
                duration=end_time - start_time,
                steps_total=len(workflow.steps),
                steps_executed=ctx.counter.count,
                error=error,
            )
            with self._lock:
                self._active.pop(device_id, None)
                self._results[device_id] = result

        if status == RunStatus.COMPLETED:
            logger.info(
                f"[RunManager] Workflow {workflow.id} completed on {device_id} "
                f"({result.steps_executed} steps, {result.duration}ms)"
            )
            event_type = WorkflowEventType.WORKFLOW_COMPLETE
        else:
            logger.warning(f"[RunManager] Workflow {workflow.id} {status} on {device_id}: {error}")
            event_type = WorkflowEventType.WORKFLOW_ERROR

        self.runner.emitter.emit(
            WorkflowEvent(
                event_type=event_type,
                device_id=device_id,
                workflow_id=workflow.id,
                workflow_name=workflow.name,
                success=status == RunStatus.COMPLETED,
                error=error,
                status=status,
                duration_ms=result.duration,
                steps_executed=result.steps_executed,
            )
        )
        return result

    def stop(self, device_id: str) -> bool:
        """Request cancellation; returns False if nothing is running"""
        with self._lock:
            active = self._active.get(device_id)
        if active is None:
            return False
        logger.info(f"[RunManager] Stopping workflow on {device_id}")
        active.token.cancel()
        return True

    def is_running(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._active

    def get_last_result(self, device_id: str) -> Optional[ExecutionResult]:
        with self._lock:
            return self._results.get(device_id)

    async def wait(self, device_id: str) -> Optional[ExecutionResult]:
        """Wait for the device's active run (if any) and return its result"""
        with self._lock:
            active = self._active.get(device_id)
        if active is not None and active.task is not None:
            await asyncio.shield(active.task)
        return self.get_last_result(device_id)

    async def stop_all(self):
        """Cancel every active run and wait for them to finish (shutdown)"""
        with self._lock:
            device_ids = list(self._active)
        for device_id in device_ids:
            self.stop(device_id)
        for device_id in device_ids:
            await self.wait(device_id)

    async def execute_single_step(
        self,
        device_id: str,
        step: StepBase,
        variables: Optional[Dict[str, str]] = None,
    ) -> StepResult:
        """
        Execute one step outside a full run (editor "test step").

        Uses a fresh variable store and applies the step's pre-wait and
        post-delay once. Configuration errors propagate.
        """
        if step.type == StepType.START:
            return StepResult.ok()

        ctx = self.runner.new_context(
            device_id, WorkflowDefinition(id="", name="single-step"), variables
        )
        if step.common.pre_wait > 0:
            await ctx.token.sleep(step.common.pre_wait)

        result = await self.runner.step_executor.execute(ctx, step)

        if step.common.post_delay > 0:
            await ctx.token.sleep(step.common.post_delay)

        logger.info(
            f"[RunManager] Single {step.type} step on {device_id}: "
            f"{'ok' if result.success else result.error}"
        )
        return result
