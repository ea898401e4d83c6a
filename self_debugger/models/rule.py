"""Data models for validation rules."""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from ..engine.checks import Check


MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0


class Severity(Enum):
    """Rule severity levels."""
    ERROR = "error"       # Broken artifact, plugin will misbehave
    WARNING = "warning"   # Likely defect
    INFO = "info"         # Convention or suggestion


class Provenance(Enum):
    """Where a rule came from. Also the rules/ subdirectory it lives in."""
    CORE = "core"           # Authored with the plugin
    LEARNED = "learned"     # Produced by the learning loop
    EXTERNAL = "external"   # Ingested from outside sources


# Load order of the provenance tiers
PROVENANCE_ORDER = (Provenance.CORE, Provenance.LEARNED, Provenance.EXTERNAL)


def clamp_confidence(value: float) -> float:
    """Clamp a confidence value into [0.1, 1.0]."""
    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, value))


@dataclass(frozen=True)
class AppliesTo:
    """Selector for the artifacts a rule applies to. Empty fields match everything."""
    component: str = ""   # Top-level component directory, e.g. "hooks"
    pattern: str = ""     # Regex searched in the artifact's plugin-relative path


@dataclass(frozen=True)
class Rule:
    """A validation rule loaded from a rule file."""
    rule_id: str
    severity: Severity
    confidence: float
    provenance: Provenance
    checks: Tuple["Check", ...] = ()
    applies_to: AppliesTo = field(default_factory=AppliesTo)
    version: str = "1.0.0"
    category: str = "general"
    fix_template: Any = None         # Opaque, handed to the Fixer as-is
    references: Tuple[str, ...] = ()
    learned_from: Optional[str] = None
    last_updated: Optional[str] = None
    source_path: Optional[Path] = None

    def with_confidence(self, confidence: float) -> "Rule":
        """Copy of this rule with a new (clamped) confidence."""
        return replace(self, confidence=clamp_confidence(confidence))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the rule file layout."""
        data: Dict[str, Any] = {
            "rule_id": self.rule_id,
            "version": self.version,
            "category": self.category,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "applies_to": {
                "component": self.applies_to.component,
                "pattern": self.applies_to.pattern,
            },
            "validation": {
                "checks": [check.to_dict() for check in self.checks],
            },
            "fix_template": self.fix_template,
            "references": list(self.references),
            "learned_from": self.learned_from,
            "last_updated": self.last_updated,
        }
        return data


@dataclass
class RuleLoadReport:
    """Summary of one RuleStore load pass."""
    loaded: int = 0
    skipped: List[str] = field(default_factory=list)  # "<file>: <reason>"
