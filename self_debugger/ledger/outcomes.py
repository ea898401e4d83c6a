"""Applied-fix log and human outcome recording."""

from pathlib import Path
from typing import Dict, List, Optional, TYPE_CHECKING

from ..errors import DebuggerError
from ..models import FixRecord, IssueStatus, Outcome
from ..utils import get_logger
from .issue_ledger import IssueLedger
from .jsonl import append_jsonl, locked_jsonl, read_jsonl

if TYPE_CHECKING:
    from ..tools.github_tool import GitHubTool


logger = get_logger(__name__)

OUTCOME_STATUSES = (IssueStatus.FIXED, IssueStatus.REJECTED)


class FixLog:
    """fixes.jsonl - one record per committed fix."""

    def __init__(self, path: Path, lock_timeout: float = 10.0):
        self.path = Path(path)
        self.lock_timeout = lock_timeout

    def append(self, record: FixRecord) -> None:
        append_jsonl(self.path, record.to_dict(), self.lock_timeout)

    def records(self) -> List[FixRecord]:
        return [FixRecord.from_dict(data) for data in read_jsonl(self.path)]

    def count_for_session(self, session_id: str) -> int:
        return sum(1 for record in self.records() if record.session_id == session_id)

    def latest_for_issue(self, issue_id: str) -> Optional[FixRecord]:
        matches = [record for record in self.records() if record.issue_id == issue_id]
        return matches[-1] if matches else None


class OutcomeRecorder:
    """
    Records the human verdict on an issue.

    Each verdict is appended to outcomes.jsonl (consumed by the confidence
    learner) and as a status entry to the issue ledger.
    """

    def __init__(
        self,
        path: Path,
        ledger: IssueLedger,
        fix_log: FixLog,
        session_id: str = "default",
        lock_timeout: float = 10.0,
    ):
        self.path = Path(path)
        self.ledger = ledger
        self.fix_log = fix_log
        self.session_id = session_id
        self.lock_timeout = lock_timeout

    def outcomes(self) -> List[Outcome]:
        return [Outcome.from_dict(data) for data in read_jsonl(self.path)]

    def outcomes_by_rule(self) -> Dict[str, List[Outcome]]:
        grouped: Dict[str, List[Outcome]] = {}
        for outcome in self.outcomes():
            grouped.setdefault(outcome.rule_id, []).append(outcome)
        return grouped

    def record(self, issue_id: str, status: IssueStatus, note: str = "") -> Optional[Outcome]:
        """
        Record that an issue was fixed or rejected.

        The outcome check and append happen under the outcomes lock, so two
        concurrent verdicts for one issue leave exactly one outcome.

        Returns:
            The Outcome, or None if the issue already has one
        """
        if status not in OUTCOME_STATUSES:
            raise DebuggerError(f"Outcome status must be fixed or rejected, got {status.value}")

        issue = self.ledger.get(issue_id)

        with locked_jsonl(self.path, self.lock_timeout) as log:
            if any(data.get("issue_id") == issue.issue_id for data in log.read()):
                logger.warning(f"Issue {issue.issue_id} already has an outcome, not recorded")
                return None

            issue = self.ledger.get(issue.issue_id)
            if not issue.is_pending:
                logger.warning(f"Issue {issue.issue_id} already {issue.status.value}, outcome not recorded")
                return None

            outcome = Outcome(
                issue_id=issue.issue_id,
                rule_id=issue.rule_id,
                status=status.value,
                session_id=self.session_id,
                note=note,
            )
            log.append(outcome.to_dict())
            self.ledger.append_status(issue, status)

        logger.info(f"Recorded outcome for issue {issue.issue_id}: {status.value}")
        return outcome

    def sync_from_github(self, github: "GitHubTool") -> List[Outcome]:
        """
        Turn pull-request results into outcomes.

        Merged pull requests count as fixed, pull requests closed without
        merging as rejected. Open ones are left alone.
        """
        decided = {outcome.issue_id for outcome in self.outcomes()}
        recorded = []

        for fix in self.fix_log.records():
            if fix.pr_number is None or fix.issue_id in decided:
                continue

            state = github.get_pull_state(fix.pr_number)
            if state == "merged":
                status = IssueStatus.FIXED
            elif state == "closed":
                status = IssueStatus.REJECTED
            else:
                continue

            outcome = self.record(fix.issue_id, status, note=f"PR #{fix.pr_number} {state}")
            if outcome is not None:
                recorded.append(outcome)
                decided.add(fix.issue_id)

        return recorded
