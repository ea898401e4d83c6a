"""Data models for detected issues."""

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..utils.timeutil import format_timestamp


class IssueStatus(Enum):
    """Issue lifecycle states."""
    PENDING = "pending"     # Detected, no outcome yet
    FIXED = "fixed"         # Fix approved by a human
    REJECTED = "rejected"   # Fix (or the issue itself) rejected by a human


@dataclass
class Location:
    """Where a violation was found."""
    file: str
    line: int = 0
    column: int = 0


@dataclass
class Evidence:
    """What the check expected versus what it saw."""
    expected: str = ""
    actual: str = ""
    diff: str = ""
    error_message: str = ""


@dataclass
class Violation:
    """CheckExecutor output - one failed check of one rule."""
    rule_id: str
    check_id: str
    severity: str      # Severity value
    confidence: float  # Rule confidence at detection time
    error_message: str
    file: str
    expected: str = ""
    actual: str = ""


@dataclass
class Issue:
    """IssueLedger entry - a recorded violation with a status lifecycle."""
    plugin: str
    component: str
    rule_id: str
    severity: str
    confidence: float
    location: Location
    evidence: Evidence = field(default_factory=Evidence)
    check_id: str = ""
    session_id: str = "default"
    status: IssueStatus = IssueStatus.PENDING
    issue_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    detected_at: str = field(default_factory=format_timestamp)
    updated_at: Optional[str] = None

    @property
    def key(self) -> tuple:
        """Dedup key: at most one pending issue per key."""
        return (self.plugin, self.component, self.rule_id)

    @property
    def short_id(self) -> str:
        return self.issue_id[:8]

    @property
    def is_pending(self) -> bool:
        return self.status == IssueStatus.PENDING

    @classmethod
    def from_violation(
        cls,
        plugin: str,
        component: str,
        violation: Violation,
        session_id: str,
    ) -> "Issue":
        return cls(
            plugin=plugin,
            component=component,
            rule_id=violation.rule_id,
            check_id=violation.check_id,
            severity=violation.severity,
            confidence=violation.confidence,
            location=Location(file=violation.file),
            evidence=Evidence(
                expected=violation.expected,
                actual=violation.actual,
                error_message=violation.error_message,
            ),
            session_id=session_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "issue_id": self.issue_id,
            "detected_at": self.detected_at,
            "session_id": self.session_id,
            "status": self.status.value,
            "plugin": self.plugin,
            "component": self.component,
            "rule_id": self.rule_id,
            "check_id": self.check_id,
            "severity": self.severity,
            "confidence": self.confidence,
            "location": asdict(self.location),
            "evidence": asdict(self.evidence),
        }
        if self.updated_at:
            data["updated_at"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        location = data.get("location") or {}
        evidence = data.get("evidence") or {}
        return cls(
            issue_id=data["issue_id"],
            detected_at=data.get("detected_at", ""),
            session_id=data.get("session_id", "default"),
            status=IssueStatus(data.get("status", IssueStatus.PENDING.value)),
            plugin=data.get("plugin", ""),
            component=data.get("component", ""),
            rule_id=data.get("rule_id", ""),
            check_id=data.get("check_id", ""),
            severity=data.get("severity", ""),
            confidence=float(data.get("confidence", 0.0)),
            location=Location(
                file=location.get("file", ""),
                line=int(location.get("line", 0) or 0),
                column=int(location.get("column", 0) or 0),
            ),
            evidence=Evidence(
                expected=evidence.get("expected", ""),
                actual=evidence.get("actual", ""),
                diff=evidence.get("diff", ""),
                error_message=evidence.get("error_message", ""),
            ),
            updated_at=data.get("updated_at"),
        )
