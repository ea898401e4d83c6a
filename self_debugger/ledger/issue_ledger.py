"""Append-only, deduplicated issue ledger backed by issues.jsonl."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import IssueNotFound
from ..models import Issue, IssueStatus, Violation
from ..utils import get_logger
from ..utils.timeutil import format_timestamp, parse_timestamp, utcnow
from .jsonl import locked_jsonl, read_jsonl


logger = get_logger(__name__)

# Callers' convention for "healthy"; the engine never enforces it
HEALTHY_THRESHOLD = 70.0


def fold_issues(records: List[dict]) -> Dict[str, Issue]:
    """
    Collapse ledger entries into current issue state.

    The ledger holds detection entries and, later, status entries for the
    same issue_id. The last entry for an issue_id wins; the original
    detection time is kept.
    """
    issues: Dict[str, Issue] = {}
    for record in records:
        issue_id = record.get("issue_id")
        if not issue_id:
            continue
        try:
            issue = Issue.from_dict(record)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed ledger entry {issue_id}: {e}")
            continue
        previous = issues.get(issue_id)
        if previous is not None and previous.detected_at:
            issue.detected_at = previous.detected_at
        issues[issue_id] = issue
    return issues


@dataclass
class HealthScore:
    """Ledger health at one point in time."""
    total: int = 0
    resolved: int = 0
    rejected: int = 0
    pending: int = 0
    stale_pending: int = 0
    resolution_rate: float = 0.0
    stale_rate: float = 0.0
    score: float = 100.0

    @property
    def healthy(self) -> bool:
        return self.score >= HEALTHY_THRESHOLD


def compute_health(
    issues: List[Issue],
    now: Optional[datetime] = None,
    stale_days: int = 7,
) -> HealthScore:
    """
    health = resolution_rate - stale_rate

    resolution_rate is fixed issues over all issues, stale_rate is pending
    issues detected more than ``stale_days`` ago over all issues, both in
    percent. The score is clamped to [0, 100]; an empty ledger scores 100.
    """
    now = now or utcnow()
    total = len(issues)
    if total == 0:
        return HealthScore()

    cutoff = now - timedelta(days=stale_days)
    resolved = sum(1 for issue in issues if issue.status == IssueStatus.FIXED)
    rejected = sum(1 for issue in issues if issue.status == IssueStatus.REJECTED)
    pending = [issue for issue in issues if issue.status == IssueStatus.PENDING]

    stale = 0
    for issue in pending:
        detected = parse_timestamp(issue.detected_at)
        if detected is not None and detected < cutoff:
            stale += 1

    resolution_rate = resolved / total * 100
    stale_rate = stale / total * 100
    score = max(0.0, min(100.0, resolution_rate - stale_rate))

    return HealthScore(
        total=total,
        resolved=resolved,
        rejected=rejected,
        pending=len(pending),
        stale_pending=stale,
        resolution_rate=resolution_rate,
        stale_rate=stale_rate,
        score=score,
    )


class IssueLedger:
    """
    Records violations as issues, at most one pending issue per
    (plugin, component, rule_id).

    The dedup lookup and the append happen under the same file lock, so the
    invariant holds no matter how many scanners race on the same ledger.
    """

    def __init__(self, path: Path, session_id: str = "default", lock_timeout: float = 10.0):
        self.path = Path(path)
        self.session_id = session_id
        self.lock_timeout = lock_timeout

    def record(self, plugin: str, component: str, violation: Violation) -> Optional[Issue]:
        """
        Record a violation.

        Returns:
            The new Issue, or None if a pending issue already covers it
        """
        key = (plugin, component, violation.rule_id)

        with locked_jsonl(self.path, self.lock_timeout) as ledger:
            for issue in fold_issues(ledger.read()).values():
                if issue.is_pending and issue.key == key:
                    logger.debug(
                        f"Issue already recorded (plugin: {plugin}, component: {component}, "
                        f"rule: {violation.rule_id}), skipping duplicate"
                    )
                    return None

            issue = Issue.from_violation(plugin, component, violation, self.session_id)
            ledger.append(issue.to_dict())

        logger.info(f"Recorded issue: {issue.issue_id} ({issue.severity}) in {plugin}/{component}")
        return issue

    def append_status(self, issue: Issue, status: IssueStatus) -> Issue:
        """
        Append a status entry for an existing issue.

        Used by the outcome-recording step; detection never calls this.
        """
        issue.status = status
        issue.updated_at = format_timestamp()
        with locked_jsonl(self.path, self.lock_timeout) as ledger:
            ledger.append(issue.to_dict())
        return issue

    def issues(self) -> List[Issue]:
        """Current state of every issue, oldest detection first."""
        return list(fold_issues(read_jsonl(self.path)).values())

    def pending(self) -> List[Issue]:
        return [issue for issue in self.issues() if issue.is_pending]

    def get(self, issue_id: str) -> Issue:
        """
        Find an issue by full id or by an id prefix of at least 8 characters.

        Raises:
            IssueNotFound: no issue, or an ambiguous prefix
        """
        issues = fold_issues(read_jsonl(self.path))
        if issue_id in issues:
            return issues[issue_id]

        if len(issue_id) >= 8:
            matches = [issue for key, issue in issues.items() if key.startswith(issue_id)]
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                raise IssueNotFound(f"Issue id prefix is ambiguous: {issue_id}")

        raise IssueNotFound(f"Issue not found: {issue_id}")

    def health_score(self, now: Optional[datetime] = None, stale_days: int = 7) -> HealthScore:
        return compute_health(self.issues(), now=now, stale_days=stale_days)
