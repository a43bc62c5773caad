"""
Route Dependencies - Centralized dependency injection for route modules

All component instances are injected at startup so route modules stay free
of globals and can be tested against fakes.
"""

from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    # Type hints only - avoid runtime circular imports
    from workflow_engine.core.adb.adb_bridge import ADBBridge
    from workflow_engine.core.mqtt.mqtt_event_sink import MQTTEventSink
    from workflow_engine.core.workflows import (
        ActivityLog,
        ExecutionHistory,
        RunManager,
        WorkflowStore,
    )


@dataclass
class RouteDependencies:
    """
    Container for all dependencies needed by route modules

    Usage in route modules:
        from workflow_engine.routes import get_deps

        @router.get("/endpoint")
        async def handler():
            deps = get_deps()
            return deps.workflow_store.list_workflows()
    """

    adb_bridge: "ADBBridge"
    workflow_store: "WorkflowStore"
    run_manager: "RunManager"
    execution_history: Optional["ExecutionHistory"] = None
    activity_log: Optional["ActivityLog"] = None
    mqtt_sink: Optional["MQTTEventSink"] = None


_deps: Optional[RouteDependencies] = None


def set_dependencies(deps: RouteDependencies) -> None:
    """Set global dependencies (called once at server startup)"""
    global _deps
    _deps = deps


def get_deps() -> RouteDependencies:
    """
    Get dependencies for route handlers

    Raises:
        RuntimeError: If dependencies not initialized (call set_dependencies first)
    """
    if _deps is None:
        raise RuntimeError(
            "Dependencies not initialized. "
            "Call set_dependencies() in server startup before registering routes."
        )
    return _deps


# Export public API
__all__ = [
    "RouteDependencies",
    "set_dependencies",
    "get_deps",
]
