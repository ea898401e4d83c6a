"""Rule loading from the core, learned and external provenance tiers."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import RuleSchemaError
from ..ledger.jsonl import atomic_write_json
from ..models import (
    AppliesTo,
    MAX_CONFIDENCE,
    MIN_CONFIDENCE,
    PROVENANCE_ORDER,
    Provenance,
    Rule,
    RuleLoadReport,
    Severity,
    clamp_confidence,
)
from ..utils import get_logger
from ..utils.timeutil import format_timestamp
from .checks import parse_check


logger = get_logger(__name__)

SEVERITY_VALUES = tuple(s.value for s in Severity)


def parse_rule(data: Any, provenance: Provenance, source_path: Optional[Path] = None) -> Rule:
    """Validate a rule-file document and build a Rule.

    Raises:
        RuleSchemaError: the document does not match the rule schema
    """
    if not isinstance(data, dict):
        raise RuleSchemaError("rule must be a JSON object")

    rule_id = data.get("rule_id")
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise RuleSchemaError("missing rule_id")

    severity = data.get("severity")
    if severity not in SEVERITY_VALUES:
        raise RuleSchemaError(f"{rule_id}: severity must be one of {SEVERITY_VALUES}")

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise RuleSchemaError(f"{rule_id}: confidence must be a number")
    if not MIN_CONFIDENCE <= confidence <= MAX_CONFIDENCE:
        raise RuleSchemaError(f"{rule_id}: confidence {confidence} outside [{MIN_CONFIDENCE}, {MAX_CONFIDENCE}]")

    applies_to = data.get("applies_to") or {}
    if not isinstance(applies_to, dict):
        raise RuleSchemaError(f"{rule_id}: applies_to must be an object")
    component = applies_to.get("component") or ""
    pattern = applies_to.get("pattern") or ""
    if not isinstance(component, str) or not isinstance(pattern, str):
        raise RuleSchemaError(f"{rule_id}: applies_to.component and applies_to.pattern must be strings")

    validation = data.get("validation") or {}
    if not isinstance(validation, dict):
        raise RuleSchemaError(f"{rule_id}: validation must be an object")
    raw_checks = validation.get("checks", [])
    if not isinstance(raw_checks, list):
        raise RuleSchemaError(f"{rule_id}: validation.checks must be a list")
    checks = tuple(parse_check(check) for check in raw_checks)

    references = data.get("references") or []
    if not isinstance(references, list):
        raise RuleSchemaError(f"{rule_id}: references must be a list")

    return Rule(
        rule_id=rule_id,
        version=str(data.get("version", "1.0.0")),
        category=str(data.get("category", "general")),
        severity=Severity(severity),
        confidence=float(confidence),
        provenance=provenance,
        applies_to=AppliesTo(component=component.rstrip("/"), pattern=pattern),
        checks=checks,
        fix_template=data.get("fix_template"),
        references=tuple(str(ref) for ref in references),
        learned_from=data.get("learned_from"),
        last_updated=data.get("last_updated"),
        source_path=source_path,
    )


class RuleStore:
    """
    Loads rule files from ``<rules_dir>/{core,learned,external}``.

    Rules that fail validation are logged and skipped; a bad rule never
    aborts the load. The only write path is ``write_confidence``.
    """

    def __init__(self, rules_dir: Path):
        self.rules_dir = Path(rules_dir)
        self.last_report = RuleLoadReport()

    def tier_dir(self, provenance: Provenance) -> Path:
        return self.rules_dir / provenance.value

    def _load_tier(self, provenance: Provenance, report: RuleLoadReport) -> List[Rule]:
        directory = self.tier_dir(provenance)
        if not directory.is_dir():
            return []

        rules = []
        for rule_file in sorted(directory.rglob("*.json")):
            try:
                data = json.loads(rule_file.read_text(encoding="utf-8"))
                rules.append(parse_rule(data, provenance, rule_file))
            except (OSError, ValueError, RuleSchemaError) as e:
                logger.warning(f"Skipping invalid rule file {rule_file}: {e}")
                report.skipped.append(f"{rule_file}: {e}")
        return rules

    def load(self) -> List[Rule]:
        """
        Load all tiers and return the union sorted by confidence, highest first.

        Returns:
            List of valid rules; ties keep tier order (core, learned, external)
        """
        report = RuleLoadReport()
        seen: Dict[str, Rule] = {}

        for provenance in PROVENANCE_ORDER:
            for rule in self._load_tier(provenance, report):
                if rule.rule_id in seen:
                    logger.warning(
                        f"Duplicate rule_id {rule.rule_id} in {rule.source_path} "
                        f"(already loaded from {seen[rule.rule_id].source_path}), skipping"
                    )
                    report.skipped.append(f"{rule.source_path}: duplicate rule_id {rule.rule_id}")
                    continue
                seen[rule.rule_id] = rule

        rules = sorted(seen.values(), key=lambda r: -r.confidence)
        report.loaded = len(rules)
        self.last_report = report

        logger.debug(f"Loaded {report.loaded} rules ({len(report.skipped)} skipped) from {self.rules_dir}")
        return rules

    def get(self, rule_id: str) -> Optional[Rule]:
        for rule in self.load():
            if rule.rule_id == rule_id:
                return rule
        return None

    def write_confidence(self, rule: Rule, confidence: float) -> Tuple[Rule, Path]:
        """
        Persist a new confidence for a rule.

        Only ``confidence`` and ``last_updated`` change in the file; every other
        key is written back as found.

        Returns:
            Tuple of (updated rule, rule file path)
        """
        if rule.source_path is None:
            raise RuleSchemaError(f"{rule.rule_id}: rule has no source file")

        data = json.loads(rule.source_path.read_text(encoding="utf-8"))
        new_confidence = round(clamp_confidence(confidence), 2)
        data["confidence"] = new_confidence
        data["last_updated"] = format_timestamp()
        atomic_write_json(rule.source_path, data)

        logger.info(f"Adjusted rule confidence: {rule.rule_id} {rule.confidence} -> {new_confidence}")
        return rule.with_confidence(new_confidence), rule.source_path

    def add_external(self, rule_data: Dict[str, Any]) -> Optional[Path]:
        """
        Write an ingested rule to the external tier.

        Returns:
            Path of the new rule file, or None if a rule with that id already exists
        """
        parse_rule(rule_data, Provenance.EXTERNAL)
        rule_file = self.tier_dir(Provenance.EXTERNAL) / f"{rule_data['rule_id']}.json"
        if rule_file.exists():
            logger.warning(f"External rule already exists: {rule_data['rule_id']}")
            return None

        atomic_write_json(rule_file, rule_data)
        logger.info(f"Created external rule: {rule_data['rule_id']} (confidence: {rule_data['confidence']})")
        return rule_file
