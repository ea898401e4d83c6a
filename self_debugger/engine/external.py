"""Confidence scoring contract for rules ingested from external sources."""

import re
from typing import Any, Dict, Optional

from ..errors import RuleSchemaError
from ..utils.timeutil import format_timestamp


OFFICIAL_SOURCES = (
    "docs.anthropic.com",
    "github.com/anthropics",
    "claude.ai",
)

BASE_CONFIDENCE = 0.5
OFFICIAL_CONFIDENCE = 0.8
CODE_EXAMPLE_BONUS = 0.1
# External rules never reach full confidence
MAX_EXTERNAL_CONFIDENCE = 0.95


def is_official_source(url: str) -> bool:
    return any(domain in url for domain in OFFICIAL_SOURCES)


def external_confidence(url: str, has_code_examples: bool = False) -> float:
    """Initial confidence for a rule discovered at ``url``."""
    confidence = OFFICIAL_CONFIDENCE if is_official_source(url) else BASE_CONFIDENCE
    if has_code_examples:
        confidence += CODE_EXAMPLE_BONUS
    return round(min(confidence, MAX_EXTERNAL_CONFIDENCE), 2)


def build_external_rule(
    rule_id: str,
    pattern: str,
    source_url: str,
    description: str,
    has_code_examples: bool = False,
    component: str = "hooks",
    path_pattern: str = r".*\.md$",
    confidence: Optional[float] = None,
) -> Dict[str, Any]:
    """Rule-file document for a required-pattern rule found at ``source_url``."""
    if not re.match(r"^[A-Za-z0-9._-]+$", rule_id):
        raise RuleSchemaError(f"Invalid rule id: {rule_id!r}")

    return {
        "rule_id": rule_id,
        "version": "1.0.0",
        "category": "web-discovered",
        "severity": "warning",
        "confidence": confidence if confidence is not None else external_confidence(source_url, has_code_examples),
        "applies_to": {
            "component": component,
            "pattern": path_pattern,
        },
        "validation": {
            "checks": [
                {
                    "check_id": "has-pattern",
                    "type": "regex",
                    "pattern": pattern,
                    "error_message": description,
                }
            ]
        },
        "fix_template": {
            "type": "manual",
            "content": f"See documentation: {source_url}",
        },
        "references": [source_url],
        "learned_from": "web_search",
        "last_updated": format_timestamp(),
    }
