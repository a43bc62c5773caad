"""
Workflow Engine Configuration Module

Provides centralized configuration management.

Usage:
    from workflow_engine.config import Defaults
    timeout = Defaults.DEFAULT_ELEMENT_TIMEOUT_MS
"""

from .defaults import Defaults, AppDefaults, load_defaults_from_env

__all__ = ["Defaults", "AppDefaults", "load_defaults_from_env"]
