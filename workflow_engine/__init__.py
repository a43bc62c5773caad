"""
Workflow Engine - graph-walking automation runner for Android devices over ADB
"""

__version__ = "0.3.0"
