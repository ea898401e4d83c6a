"""Data models for fix proposals, applied fixes and their outcomes."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..utils.timeutil import format_timestamp


class FixType(Enum):
    """How a proposal changes the artifact."""
    DIFF = "diff"         # Unified diff applied with git apply
    PREPEND = "prepend"   # fixed_content is written before the current content
    REPLACE = "replace"   # fixed_content replaces the file


class FixResult(Enum):
    """Result of one run of the fix loop."""
    COMMITTED = "committed"                    # Committed (and pushed if asked)
    DRY_RUN = "dry_run"                        # Proposal shown, nothing applied
    REJECTED_BY_CRITIC = "rejected_by_critic"  # Critic score below the gate
    LOCKED = "locked"                          # Branch lock held elsewhere
    LIMIT_REACHED = "limit_reached"            # Session fix budget exhausted
    ERROR = "error"


@dataclass
class FixProposal:
    """Fixer output for one issue. Opaque to the engine apart from applying it."""
    issue_id: str
    description: str
    fix_type: FixType = FixType.DIFF
    diff: str = ""
    fixed_content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["fix_type"] = self.fix_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixProposal":
        return cls(
            issue_id=data.get("issue_id", ""),
            description=data.get("description", ""),
            fix_type=FixType(data.get("fix_type", FixType.DIFF.value)),
            diff=data.get("diff", "") or "",
            fixed_content=data.get("fixed_content", "") or "",
        )


@dataclass
class FixRecord:
    """An applied fix, appended to fixes.jsonl."""
    issue_id: str
    rule_id: str
    branch: str
    plugin: str
    component: str
    description: str
    session_id: str
    critic_score: float
    commit_sha: str = ""
    pushed: bool = False
    pr_number: Optional[int] = None
    applied_at: str = field(default_factory=format_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FixRecord":
        return cls(
            issue_id=data.get("issue_id", ""),
            rule_id=data.get("rule_id", ""),
            branch=data.get("branch", ""),
            plugin=data.get("plugin", ""),
            component=data.get("component", ""),
            description=data.get("description", ""),
            session_id=data.get("session_id", ""),
            critic_score=float(data.get("critic_score", 0.0) or 0.0),
            commit_sha=data.get("commit_sha", ""),
            pushed=bool(data.get("pushed", False)),
            pr_number=data.get("pr_number"),
            applied_at=data.get("applied_at", ""),
        )


@dataclass
class Outcome:
    """Human verdict on an issue's fix, appended to outcomes.jsonl."""
    issue_id: str
    rule_id: str
    status: str          # IssueStatus value: fixed or rejected
    session_id: str
    note: str = ""
    recorded_at: str = field(default_factory=format_timestamp)

    @property
    def approved(self) -> bool:
        return self.status == "fixed"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Outcome":
        return cls(
            issue_id=data.get("issue_id", ""),
            rule_id=data.get("rule_id", ""),
            status=data.get("status", ""),
            session_id=data.get("session_id", ""),
            note=data.get("note", ""),
            recorded_at=data.get("recorded_at", ""),
        )
