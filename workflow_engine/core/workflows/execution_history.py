"""
Workflow Execution History - Track detailed logs for each workflow run

Subscribes to lifecycle events and builds one log per top-level run:
- Step-by-step entries (sub-workflow steps included, tagged with depth)
- Final status, error, timing
- Persistent JSON storage per workflow with queryable stats
"""

import json
import logging
import uuid
from collections import deque
from dataclasses import dataclass, asdict, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from workflow_engine.config import defaults
from .workflow_events import WorkflowEvent, WorkflowEventType

logger = logging.getLogger(__name__)


def _iso(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000).isoformat()


@dataclass
class StepLog:
    """Log entry for a single step dispatch"""

    step_id: str
    step_type: str
    started_at: str  # ISO format
    completed_at: Optional[str] = None
    success: bool = False
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    depth: int = 0


@dataclass
class ExecutionLog:
    """Complete log for a single workflow run"""

    execution_id: str
    workflow_id: str
    device_id: str
    started_at: str  # ISO format
    workflow_name: str = ""
    completed_at: Optional[str] = None
    status: Optional[str] = None
    success: bool = False
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    executed_steps: int = 0
    steps: List[StepLog] = field(default_factory=list)


class ExecutionHistory:
    """
    Event sink that persists run history

    Storage Strategy:
    - In-memory cache for recent runs (last 100 per workflow)
    - JSON file per workflow (last 1000 runs)
    """

    def __init__(self, storage_dir: Optional[str] = None, cache_size: int = 100):
        self.storage_dir = Path(storage_dir or defaults.Defaults.HISTORY_DIR)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        # workflow_id -> deque of ExecutionLog
        self._cache: Dict[str, deque] = {}
        self._cache_size = cache_size

        # device_id -> run in progress; (device_id, depth) -> step start timestamp
        self._active: Dict[str, ExecutionLog] = {}
        self._step_started: Dict[Tuple[str, int], int] = {}

        logger.info(f"[ExecutionHistory] Initialized with storage: {self.storage_dir}")

    # =========================================================================
    # Event handling
    # =========================================================================

    def handle(self, event: WorkflowEvent):
        if event.event_type == WorkflowEventType.WORKFLOW_START and event.depth == 0:
            self._active[event.device_id] = ExecutionLog(
                execution_id=uuid.uuid4().hex,
                workflow_id=event.workflow_id,
                workflow_name=event.workflow_name,
                device_id=event.device_id,
                started_at=_iso(event.timestamp),
            )
            return

        log = self._active.get(event.device_id)
        if log is None:
            return

        if event.event_type == WorkflowEventType.STEP_START:
            self._step_started[(event.device_id, event.depth)] = event.timestamp

        elif event.event_type == WorkflowEventType.STEP_END:
            started = self._step_started.pop((event.device_id, event.depth), event.timestamp)
            log.steps.append(
                StepLog(
                    step_id=event.step_id or "",
                    step_type=event.step_type or "",
                    started_at=_iso(started),
                    completed_at=_iso(event.timestamp),
                    success=bool(event.success),
                    error=event.error,
                    duration_ms=event.duration_ms,
                    depth=event.depth,
                )
            )

        elif event.event_type in (
            WorkflowEventType.WORKFLOW_COMPLETE,
            WorkflowEventType.WORKFLOW_ERROR,
        ) and event.depth == 0:
            del self._active[event.device_id]
            for key in [k for k in self._step_started if k[0] == event.device_id]:
                del self._step_started[key]
            log.completed_at = _iso(event.timestamp)
            log.status = event.status
            log.success = event.event_type == WorkflowEventType.WORKFLOW_COMPLETE
            log.error = event.error
            log.duration_ms = event.duration_ms
            log.executed_steps = event.steps_executed or len(log.steps)
            self.add_execution(log)

    # =========================================================================
    # Storage
    # =========================================================================

    def _get_history_file(self, workflow_id: str) -> Path:
        safe_id = workflow_id.replace(":", "_").replace("/", "_")
        return self.storage_dir / f"{safe_id}.json"

    def _load_history(self, workflow_id: str):
        history_file = self._get_history_file(workflow_id)
        if not history_file.exists():
            self._cache[workflow_id] = deque(maxlen=self._cache_size)
            return

        try:
            with open(history_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            executions = [self._dict_to_log(entry) for entry in data]
            self._cache[workflow_id] = deque(
                executions[-self._cache_size :], maxlen=self._cache_size
            )
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"[ExecutionHistory] Failed to load history for {workflow_id}: {e}")
            self._cache[workflow_id] = deque(maxlen=self._cache_size)

    def _dict_to_log(self, data: Dict[str, Any]) -> ExecutionLog:
        steps = [StepLog(**step) for step in data.get("steps") or []]
        return ExecutionLog(**{**data, "steps": steps})

    def _save_history(self, workflow_id: str):
        history_file = self._get_history_file(workflow_id)
        try:
            existing = []
            if history_file.exists():
                with open(history_file, "r", encoding="utf-8") as f:
                    existing = json.load(f)
            known = {entry.get("execution_id") for entry in existing}
            for log in self._cache[workflow_id]:
                if log.execution_id not in known:
                    existing.append(asdict(log))
            # Keep only last 1000 runs on disk
            existing = existing[-1000:]
            with open(history_file, "w", encoding="utf-8") as f:
                json.dump(existing, f, indent=2)
        except (OSError, ValueError) as e:
            logger.error(f"[ExecutionHistory] Failed to save history for {workflow_id}: {e}")

    def add_execution(self, log: ExecutionLog):
        if log.workflow_id not in self._cache:
            self._load_history(log.workflow_id)
        self._cache[log.workflow_id].append(log)
        self._save_history(log.workflow_id)

        logger.info(
            f"[ExecutionHistory] Logged run {log.execution_id}: {log.status} "
            f"({log.executed_steps} steps, {log.duration_ms}ms)"
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_history(self, workflow_id: str, limit: int = 50) -> List[ExecutionLog]:
        if workflow_id not in self._cache:
            self._load_history(workflow_id)
        logs = list(self._cache[workflow_id])
        return logs[-limit:] if limit > 0 else []

    def get_latest_execution(self, workflow_id: str) -> Optional[ExecutionLog]:
        history = self.get_history(workflow_id, limit=1)
        return history[-1] if history else None

    def get_stats(self, workflow_id: str) -> Dict[str, Any]:
        history = self.get_history(workflow_id, limit=self._cache_size)
        if not history:
            return {
                "total_executions": 0,
                "success_count": 0,
                "failure_count": 0,
                "cancelled_count": 0,
                "success_rate": 0.0,
                "avg_duration_ms": 0,
                "last_execution": None,
            }

        success_count = sum(1 for log in history if log.success)
        cancelled_count = sum(1 for log in history if log.status == "cancelled")
        completed = [log for log in history if log.duration_ms is not None]
        avg_duration = (
            sum(log.duration_ms for log in completed) / len(completed) if completed else 0
        )

        return {
            "total_executions": len(history),
            "success_count": success_count,
            "failure_count": len(history) - success_count - cancelled_count,
            "cancelled_count": cancelled_count,
            "success_rate": round(success_count / len(history) * 100, 1),
            "avg_duration_ms": int(avg_duration),
            "last_execution": history[-1].completed_at,
        }

    def to_dict(self, log: ExecutionLog) -> Dict[str, Any]:
        return asdict(log)
