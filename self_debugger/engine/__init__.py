"""Rule engine: rule loading, matching and check execution."""

from .checks import (
    Check,
    CheckResult,
    RegexCheck,
    JsonFieldCheck,
    StructureCheck,
    CheckExecutor,
    parse_check,
)
from .rule_store import RuleStore, parse_rule
from .matcher import rule_applies_to, find_applicable_rules
from .external import external_confidence, build_external_rule, is_official_source

__all__ = [
    "Check",
    "CheckResult",
    "RegexCheck",
    "JsonFieldCheck",
    "StructureCheck",
    "CheckExecutor",
    "parse_check",
    "RuleStore",
    "parse_rule",
    "rule_applies_to",
    "find_applicable_rules",
    "external_confidence",
    "build_external_rule",
    "is_official_source",
]
