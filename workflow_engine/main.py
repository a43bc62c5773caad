"""
Workflow Engine - FastAPI Server
Device workflow automation: definition storage, execution and monitoring
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workflow_engine import __version__
from workflow_engine.config import defaults
from workflow_engine.core.adb.adb_bridge import ADBBridge
from workflow_engine.core.mqtt.mqtt_event_sink import MQTTEventSink
from workflow_engine.core.workflows import (
    ActivityLog,
    EventEmitter,
    ExecutionHistory,
    RunManager,
    StepExecutor,
    WorkflowRunner,
    WorkflowStore,
)
from workflow_engine.routes import RouteDependencies, set_dependencies
from workflow_engine.routes import health, workflows

logger = logging.getLogger(__name__)


def configure_logging(level: str = None):
    logging.basicConfig(
        level=getattr(logging, (level or defaults.Defaults.LOG_LEVEL).upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_dependencies(adb_bridge=None, mqtt_sink=None) -> RouteDependencies:
    """Wire the engine components together"""
    adb_bridge = adb_bridge or ADBBridge()
    workflow_store = WorkflowStore()
    execution_history = ExecutionHistory()
    activity_log = ActivityLog(defaults.Defaults.ACTIVITY_LOG_SIZE)

    emitter = EventEmitter([activity_log, execution_history])
    if mqtt_sink:
        emitter.add_sink(mqtt_sink)

    runner = WorkflowRunner(StepExecutor(adb_bridge), workflow_store, emitter)
    return RouteDependencies(
        adb_bridge=adb_bridge,
        workflow_store=workflow_store,
        run_manager=RunManager(runner),
        execution_history=execution_history,
        activity_log=activity_log,
        mqtt_sink=mqtt_sink,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize components on startup, stop runs and MQTT on shutdown"""
    logger.info(f"[Server] Starting Workflow Engine v{__version__}")

    mqtt_sink = None
    if defaults.Defaults.MQTT_ENABLED:
        logger.info(f"[Server] MQTT Broker: {defaults.Defaults.MQTT_BROKER}:{defaults.Defaults.MQTT_PORT}")
        mqtt_sink = MQTTEventSink()
        if not await mqtt_sink.connect():
            logger.warning("[Server] MQTT unavailable, lifecycle events will not be published")

    deps = build_dependencies(mqtt_sink=mqtt_sink)
    set_dependencies(deps)
    logger.info(f"[Server] Workflows directory: {deps.workflow_store.storage_dir.absolute()}")

    yield

    logger.info("[Server] Shutting down Workflow Engine...")
    await deps.run_manager.stop_all()
    await deps.run_manager.runner.emitter.drain()

    if mqtt_sink:
        await mqtt_sink.disconnect()

    logger.info("[Server] Shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Workflow Engine API",
        version=__version__,
        description="Graph-based device workflow automation over ADB",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Log and return detailed validation errors"""
        logger.error(f"[VALIDATION ERROR] {request.method} {request.url}: {exc.errors()}")
        return JSONResponse(
            status_code=422,
            content={"success": False, "detail": jsonable_encoder(exc.errors())},
        )

    app.include_router(health.router)
    app.include_router(workflows.router)
    logger.info("[Server] Registered route modules: health, workflows")
    return app


def main():
    defaults.load_defaults_from_env()
    configure_logging()

    logger.info(f"Starting Workflow Engine v{__version__}")
    logger.info(f"API: http://localhost:{defaults.Defaults.SERVER_PORT}/api")

    uvicorn.run(
        create_app(),
        host=defaults.Defaults.SERVER_HOST,
        port=defaults.Defaults.SERVER_PORT,
        log_level=defaults.Defaults.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
