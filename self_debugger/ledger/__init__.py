"""Shared file-backed state: issues, fixes, outcomes and metrics."""

from .jsonl import append_jsonl, read_jsonl, locked_jsonl, file_lock, atomic_write_json
from .issue_ledger import IssueLedger, HealthScore, compute_health, fold_issues, HEALTHY_THRESHOLD
from .outcomes import FixLog, OutcomeRecorder
from .metrics import MetricsLog, format_health_report

__all__ = [
    "append_jsonl",
    "read_jsonl",
    "locked_jsonl",
    "file_lock",
    "atomic_write_json",
    "IssueLedger",
    "HealthScore",
    "compute_health",
    "fold_issues",
    "HEALTHY_THRESHOLD",
    "FixLog",
    "OutcomeRecorder",
    "MetricsLog",
    "format_health_report",
]
