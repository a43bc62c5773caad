"""
Health Routes - System Health Check
"""

import logging

from fastapi import APIRouter

from workflow_engine import __version__
from workflow_engine.routes import get_deps

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["health"])


@router.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """
    Health check endpoint

    Returns server status, version and MQTT connection status.
    Supports both GET and HEAD methods for Docker health checks.
    """
    deps = get_deps()

    mqtt_connected = bool(deps.mqtt_sink and deps.mqtt_sink.is_connected)
    mqtt_status = "connected" if mqtt_connected else "disconnected"

    return {
        "status": "ok",
        "version": __version__,
        "message": "Workflow engine is running",
        "mqtt_connected": mqtt_connected,
        "mqtt_status": mqtt_status,
    }
