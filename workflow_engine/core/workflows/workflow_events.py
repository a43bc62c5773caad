"""
Workflow lifecycle events

The engine reports progress through an EventEmitter that fans events out to
any number of sinks. A sink is any object with `handle(event)`; it may return
an awaitable, which is scheduled and never awaited by the run. Sink failures
are logged and dropped so telemetry can never stall or fail a run.
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class WorkflowEventType(str):
    WORKFLOW_START = "workflow_start"
    STEP_START = "workflow_step_start"
    STEP_END = "workflow_step_end"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_ERROR = "workflow_error"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class WorkflowEvent:
    """Single lifecycle notification"""

    event_type: str
    device_id: str
    workflow_id: str
    workflow_name: str = ""
    step_id: Optional[str] = None
    step_type: Optional[str] = None
    step_name: Optional[str] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    status: Optional[str] = None  # run events only: completed | error | cancelled
    depth: int = 0  # sub-workflow nesting level of the emitting walker
    timestamp: int = 0  # epoch ms
    duration_ms: Optional[int] = None
    steps_executed: Optional[int] = None

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = now_ms()

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventEmitter:
    """Fire-and-forget fan-out to registered sinks"""

    def __init__(self, sinks: Optional[List[Any]] = None):
        self._sinks: List[Any] = list(sinks or [])
        self._pending: set = set()

    def add_sink(self, sink):
        self._sinks.append(sink)

    def remove_sink(self, sink):
        if sink in self._sinks:
            self._sinks.remove(sink)

    def emit(self, event: WorkflowEvent):
        for sink in list(self._sinks):
            try:
                result = sink.handle(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._task_done)
            except Exception as e:
                logger.warning(
                    f"[EventEmitter] Sink {sink.__class__.__name__} failed on "
                    f"{event.event_type}: {e}"
                )

    def _task_done(self, task: asyncio.Future):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"[EventEmitter] Async sink failed: {error}")

    async def drain(self):
        """Wait for in-flight async sink deliveries (shutdown and tests)"""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ActivityLog:
    """Bounded in-memory log of recent lifecycle events for UI display"""

    def __init__(self, max_entries: int = 100):
        self._entries: deque = deque(maxlen=max_entries)

    def handle(self, event: WorkflowEvent):
        entry = event.to_dict()
        entry["logged_at"] = datetime.now().isoformat()
        self._entries.append(entry)

    def get_activity_log(self, limit: int = 50, device_id: Optional[str] = None) -> list:
        entries = list(self._entries)
        if device_id:
            entries = [e for e in entries if e["device_id"] == device_id]
        return entries[-limit:] if limit > 0 else []

    def clear(self):
        self._entries.clear()
