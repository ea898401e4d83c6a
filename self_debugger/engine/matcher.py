"""Selection of the rules that apply to an artifact path."""

import re
from typing import List, Sequence

from ..models import Rule
from ..utils import get_logger


logger = get_logger(__name__)


def rule_applies_to(rule: Rule, component_path: str) -> bool:
    """
    Check if a rule applies to a plugin-relative path.

    ``applies_to.component`` must be the path's top-level directory
    ("hooks" matches "hooks/SessionStart.md") and ``applies_to.pattern``
    must be found in the full path. A missing predicate always matches.
    """
    component = rule.applies_to.component
    if component and not component_path.startswith(component + "/"):
        return False

    pattern = rule.applies_to.pattern
    if pattern:
        try:
            if re.search(pattern, component_path) is None:
                return False
        except re.error as e:
            logger.warning(f"Rule {rule.rule_id} has an invalid applies_to.pattern ({e})")
            return False

    return True


def find_applicable_rules(rules: Sequence[Rule], component_path: str) -> List[Rule]:
    """Subset of ``rules`` that apply to the path, in the given order."""
    return [rule for rule in rules if rule_applies_to(rule, component_path)]
