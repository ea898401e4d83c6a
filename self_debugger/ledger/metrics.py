"""Engine metrics events and the health report."""

from pathlib import Path
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from ..utils.timeutil import format_timestamp
from .issue_ledger import HEALTHY_THRESHOLD, HealthScore
from .jsonl import append_jsonl, read_jsonl

if TYPE_CHECKING:
    from ..learning.confidence import Adjustment


class MetricsLog:
    """metrics.jsonl - scan_complete, fix_applied and self_improvement events."""

    def __init__(self, path: Path, session_id: str = "default", lock_timeout: float = 10.0):
        self.path = Path(path)
        self.session_id = session_id
        self.lock_timeout = lock_timeout

    def record(self, event: str, **fields: Any) -> Dict[str, Any]:
        entry = {
            "timestamp": format_timestamp(),
            "session_id": self.session_id,
            "event": event,
        }
        entry.update(fields)
        append_jsonl(self.path, entry, self.lock_timeout)
        return entry

    def events(self, event: Optional[str] = None) -> List[Dict[str, Any]]:
        entries = read_jsonl(self.path)
        if event is None:
            return entries
        return [entry for entry in entries if entry.get("event") == event]


def format_health_report(
    health: HealthScore,
    adjustments: Optional[List["Adjustment"]] = None,
) -> str:
    """
    Format the health score (and any confidence adjustments) as a report.

    Args:
        health: HealthScore from the issue ledger
        adjustments: Planned or applied confidence adjustments

    Returns:
        Formatted report string
    """
    verdict = "healthy" if health.healthy else "needs attention"
    lines = [
        "## Self-Debugger Health",
        "",
        f"- Health score: {health.score:.0f}/100 ({verdict}, threshold {HEALTHY_THRESHOLD:.0f})",
        f"- Issues: {health.total} total, {health.resolved} fixed, "
        f"{health.rejected} rejected, {health.pending} pending",
        f"- Resolution rate: {health.resolution_rate:.1f}%",
        f"- Stale pending rate: {health.stale_rate:.1f}% ({health.stale_pending} issues)",
    ]

    if adjustments:
        lines.append("")
        lines.append("### Rule confidence")
        for adj in adjustments:
            lines.append(
                f"- {adj.rule_id}: {adj.old_confidence:.2f} -> {adj.new_confidence:.2f} "
                f"(approval {adj.approval_rate:.0f}% over {adj.outcomes} outcomes)"
            )

    return "\n".join(lines)
