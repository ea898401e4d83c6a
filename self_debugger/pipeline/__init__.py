"""Scan pipeline: one cycle, the periodic scheduler and its process control."""

from .scan import ScanCycle, ScanReport, enumerate_artifacts, resolve_plugins_dir
from .scheduler import ScanScheduler
from .monitor import start_monitor, stop_monitor, monitor_status

__all__ = [
    "ScanCycle",
    "ScanReport",
    "enumerate_artifacts",
    "resolve_plugins_dir",
    "ScanScheduler",
    "start_monitor",
    "stop_monitor",
    "monitor_status",
]
