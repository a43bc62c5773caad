"""
Workflow Engine - Default Configuration Constants

Centralized configuration for the entire application.
Values can be overridden via environment variables.

Usage:
    from workflow_engine.config import defaults
    limit = defaults.Defaults.MAX_WORKFLOW_STEPS
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AppDefaults:
    """Application-wide default configuration."""

    # ==========================================================================
    # Server Settings
    # ==========================================================================
    SERVER_PORT: int = 8090
    SERVER_HOST: str = "0.0.0.0"
    LOG_LEVEL: str = "INFO"

    # ==========================================================================
    # Storage
    # ==========================================================================
    DATA_DIR: str = "data"
    WORKFLOWS_DIR: str = "data/workflows"
    SCRIPTS_DIR: str = "data/scripts"
    HISTORY_DIR: str = "data/workflow-history"

    # ==========================================================================
    # ADB Settings
    # ==========================================================================
    ADB_PATH: str = "adb"
    ADB_COMMAND_TIMEOUT: int = 30  # seconds, per adb invocation

    # ==========================================================================
    # Workflow Engine Limits
    # ==========================================================================
    MAX_WORKFLOW_STEPS: int = 2000  # Step dispatches per run, sub-workflows included
    MAX_NESTING_DEPTH: int = 10
    DEFAULT_ELEMENT_TIMEOUT_MS: int = 5000
    ELEMENT_POLL_INTERVAL_MS: int = 1000
    DEFAULT_SWIPE_DURATION_MS: int = 300
    DEFAULT_SWIPE_DISTANCE: int = 300
    LONG_CLICK_DURATION_MS: int = 1000
    INPUT_FOCUS_DELAY_MS: int = 500

    # ==========================================================================
    # MQTT Settings
    # ==========================================================================
    MQTT_ENABLED: bool = False
    MQTT_BROKER: str = "localhost"
    MQTT_PORT: int = 1883
    MQTT_USERNAME: str = ""
    MQTT_PASSWORD: str = ""
    MQTT_TOPIC_PREFIX: str = "workflow_engine"

    # ==========================================================================
    # Activity Log
    # ==========================================================================
    ACTIVITY_LOG_SIZE: int = 100

    @classmethod
    def from_env(cls) -> "AppDefaults":
        """Create config from environment variables with defaults."""
        data_dir = os.getenv("DATA_DIR", cls.DATA_DIR)
        return cls(
            SERVER_PORT=int(os.getenv("SERVER_PORT", cls.SERVER_PORT)),
            SERVER_HOST=os.getenv("SERVER_HOST", cls.SERVER_HOST),
            LOG_LEVEL=os.getenv("LOG_LEVEL", cls.LOG_LEVEL).upper(),
            DATA_DIR=data_dir,
            WORKFLOWS_DIR=os.getenv("WORKFLOWS_DIR", os.path.join(data_dir, "workflows")),
            SCRIPTS_DIR=os.getenv("SCRIPTS_DIR", os.path.join(data_dir, "scripts")),
            HISTORY_DIR=os.getenv("HISTORY_DIR", os.path.join(data_dir, "workflow-history")),
            ADB_PATH=os.getenv("ADB_PATH", cls.ADB_PATH),
            ADB_COMMAND_TIMEOUT=int(os.getenv("ADB_COMMAND_TIMEOUT", cls.ADB_COMMAND_TIMEOUT)),
            MAX_WORKFLOW_STEPS=int(os.getenv("MAX_WORKFLOW_STEPS", cls.MAX_WORKFLOW_STEPS)),
            MAX_NESTING_DEPTH=int(os.getenv("MAX_NESTING_DEPTH", cls.MAX_NESTING_DEPTH)),
            DEFAULT_ELEMENT_TIMEOUT_MS=int(
                os.getenv("DEFAULT_ELEMENT_TIMEOUT_MS", cls.DEFAULT_ELEMENT_TIMEOUT_MS)
            ),
            ELEMENT_POLL_INTERVAL_MS=int(
                os.getenv("ELEMENT_POLL_INTERVAL_MS", cls.ELEMENT_POLL_INTERVAL_MS)
            ),
            MQTT_ENABLED=_env_bool("MQTT_ENABLED", cls.MQTT_ENABLED),
            MQTT_BROKER=os.getenv("MQTT_BROKER", cls.MQTT_BROKER),
            MQTT_PORT=int(os.getenv("MQTT_PORT", cls.MQTT_PORT)),
            MQTT_USERNAME=os.getenv("MQTT_USERNAME", cls.MQTT_USERNAME),
            MQTT_PASSWORD=os.getenv("MQTT_PASSWORD", cls.MQTT_PASSWORD),
            MQTT_TOPIC_PREFIX=os.getenv("MQTT_TOPIC_PREFIX", cls.MQTT_TOPIC_PREFIX),
            ACTIVITY_LOG_SIZE=int(os.getenv("ACTIVITY_LOG_SIZE", cls.ACTIVITY_LOG_SIZE)),
        )


# Global defaults instance - can be overridden at runtime
Defaults = AppDefaults()


def load_defaults_from_env() -> AppDefaults:
    """Reload defaults from environment variables."""
    global Defaults
    Defaults = AppDefaults.from_env()
    return Defaults
