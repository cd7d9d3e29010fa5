"""Monitoring functionality for sentrymaps."""

from .scripts import ScriptMonitor

__all__ = ["ScriptMonitor"]
