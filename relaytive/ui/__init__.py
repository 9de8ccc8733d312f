"""Diagnostics surfaced to the debug UI"""

from relaytive.ui.diagnostics import DiagnosticsMonitor, DiagnosticsSnapshot

__all__ = ["DiagnosticsMonitor", "DiagnosticsSnapshot"]
