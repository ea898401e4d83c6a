"""Data models for the self-debugger."""

from .rule import (
    Severity,
    Provenance,
    PROVENANCE_ORDER,
    AppliesTo,
    Rule,
    RuleLoadReport,
    clamp_confidence,
    MIN_CONFIDENCE,
    MAX_CONFIDENCE,
)
from .artifact import Artifact
from .issue import IssueStatus, Location, Evidence, Violation, Issue
from .fix import FixType, FixResult, FixProposal, FixRecord, Outcome
from .session import LockInfo, SessionStatus

__all__ = [
    "Severity",
    "Provenance",
    "PROVENANCE_ORDER",
    "AppliesTo",
    "Rule",
    "RuleLoadReport",
    "clamp_confidence",
    "MIN_CONFIDENCE",
    "MAX_CONFIDENCE",
    "Artifact",
    "IssueStatus",
    "Location",
    "Evidence",
    "Violation",
    "Issue",
    "FixType",
    "FixResult",
    "FixProposal",
    "FixRecord",
    "Outcome",
    "LockInfo",
    "SessionStatus",
]
