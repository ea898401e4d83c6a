"""Typed validation checks and the executor that runs them against artifacts.

Error policy:
- A missing artifact is a violation for regex and json-field checks
  (fail-closed). Structure checks accept files and directories.
- When the artifact exists but cannot be evaluated (unreadable, undecodable,
  or the check's own pattern does not compile) the check passes with a
  warning (fail-open). Degraded tooling must not produce false positives.
- A check with missing parameters is an authoring error and passes.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import RuleSchemaError
from ..models import Artifact, Rule, Violation
from ..utils import get_logger


logger = get_logger(__name__)

FRONTMATTER_DELIMITER = re.compile(r"^---\s*$", re.MULTILINE)

REGEX_MODES = ("require", "forbid")


@dataclass(frozen=True)
class CheckResult:
    """Outcome of evaluating one check against one artifact."""
    passed: bool
    message: str = ""
    expected: str = ""
    actual: str = ""

    @classmethod
    def ok(cls) -> "CheckResult":
        return cls(passed=True)

    @classmethod
    def violation(cls, message: str, expected: str = "", actual: str = "") -> "CheckResult":
        return cls(passed=False, message=message, expected=expected, actual=actual)


def _read_text(artifact: Artifact, check_id: str) -> Optional[str]:
    """File content, or None when it cannot be read (caller fails open)."""
    try:
        return artifact.path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Check {check_id}: cannot read {artifact.path} ({e}), skipping")
        return None


def _compile(pattern: str, check_id: str, flags: int = 0) -> Optional["re.Pattern[str]"]:
    try:
        return re.compile(pattern, flags)
    except re.error as e:
        logger.warning(f"Check {check_id}: invalid pattern {pattern!r} ({e}), skipping")
        return None


@dataclass(frozen=True)
class Check(ABC):
    """A single typed test belonging to a rule."""
    check_id: str
    error_message: str = ""

    type_name = ""

    @abstractmethod
    def evaluate(self, artifact: Artifact) -> CheckResult:
        """Return pass or violation for the artifact."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check_id": self.check_id,
            "type": self.type_name,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class RegexCheck(Check):
    """Pattern that must be present (or, with mode=forbid, absent) in the content."""
    pattern: str = ""
    mode: str = "require"

    type_name = "regex"

    def evaluate(self, artifact: Artifact) -> CheckResult:
        if not artifact.path.is_file():
            return CheckResult.violation(
                f"File not found: {artifact.component}",
                expected="file exists",
                actual="missing",
            )

        if not self.pattern:
            logger.warning(f"Regex check missing pattern: {self.check_id}")
            return CheckResult.ok()

        compiled = _compile(self.pattern, self.check_id, re.MULTILINE)
        if compiled is None:
            return CheckResult.ok()

        content = _read_text(artifact, self.check_id)
        if content is None:
            return CheckResult.ok()

        match = compiled.search(content)
        if self.mode == "forbid":
            if match is None:
                return CheckResult.ok()
            line = content.count("\n", 0, match.start()) + 1
            return CheckResult.violation(
                self.error_message or f"Forbidden pattern found: {self.pattern}",
                expected=f"no match for /{self.pattern}/",
                actual=f"line {line}: {match.group(0)[:120]}",
            )

        if match is not None:
            return CheckResult.ok()
        return CheckResult.violation(
            self.error_message or f"Required pattern not found: {self.pattern}",
            expected=f"match for /{self.pattern}/",
            actual="no match",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["pattern"] = self.pattern
        if self.mode != "require":
            data["mode"] = self.mode
        return data


def extract_field(data: Any, field_path: str) -> Any:
    """Walk a dotted path ("hooks.0.matcher") through parsed JSON. None if absent."""
    current = data
    for key in field_path.split("."):
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and key.isdigit():
            index = int(key)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    # Same rendering a JSON reader would show: true, 1.5, {"a": 1}
    return json.dumps(value)


@dataclass(frozen=True)
class JsonFieldCheck(Check):
    """A (possibly nested) JSON field that must exist and/or match a pattern."""
    field: str = ""
    required: bool = False
    pattern: str = ""

    type_name = "json-field"

    def evaluate(self, artifact: Artifact) -> CheckResult:
        if not artifact.path.is_file():
            return CheckResult.violation(
                f"File not found: {artifact.component}",
                expected="file exists",
                actual="missing",
            )

        if not self.field:
            logger.warning(f"JSON field check missing field: {self.check_id}")
            return CheckResult.ok()

        content = _read_text(artifact, self.check_id)
        if content is None:
            return CheckResult.ok()

        try:
            data = json.loads(content)
        except ValueError:
            # Unparseable document: every field reads as absent
            logger.debug(f"Check {self.check_id}: {artifact.component} is not valid JSON")
            data = None

        value = extract_field(data, self.field)

        if _is_empty(value):
            if self.required:
                return CheckResult.violation(
                    self.error_message or f"Required field missing: {self.field}",
                    expected=f"field '{self.field}' present",
                    actual="missing",
                )
            return CheckResult.ok()

        if self.pattern:
            compiled = _compile(self.pattern, self.check_id)
            if compiled is None:
                return CheckResult.ok()
            text = _as_text(value)
            if not compiled.search(text):
                return CheckResult.violation(
                    self.error_message or f"Field '{self.field}' does not match {self.pattern}",
                    expected=f"/{self.pattern}/",
                    actual=text[:200],
                )

        return CheckResult.ok()

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        data["required"] = self.required
        if self.pattern:
            data["pattern"] = self.pattern
        return data


@dataclass(frozen=True)
class StructureCheck(Check):
    """Either a path that must exist under the plugin root, or frontmatter delimiters."""
    exists: str = ""
    min_dashes: int = 0

    type_name = "structure"

    def evaluate(self, artifact: Artifact) -> CheckResult:
        if not artifact.path.exists():
            return CheckResult.violation(
                f"Path not found: {artifact.component}",
                expected="path exists",
                actual="missing",
            )

        if self.exists:
            target = artifact.plugin_root / self.exists
            if target.exists():
                return CheckResult.ok()
            return CheckResult.violation(
                self.error_message or f"Missing required path: {self.exists}",
                expected=f"{self.exists} exists",
                actual="missing",
            )

        if self.min_dashes > 0:
            count = 0
            if artifact.path.is_file():
                content = _read_text(artifact, self.check_id)
                if content is None:
                    return CheckResult.ok()
                count = len(FRONTMATTER_DELIMITER.findall(content))
            if count >= self.min_dashes:
                return CheckResult.ok()
            return CheckResult.violation(
                self.error_message or f"Expected at least {self.min_dashes} '---' lines",
                expected=f">= {self.min_dashes} '---' lines",
                actual=f"{count} '---' lines",
            )

        return CheckResult.ok()

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.exists:
            data["exists"] = self.exists
        if self.min_dashes:
            data["min_dashes"] = self.min_dashes
        return data


CHECK_TYPES = {
    RegexCheck.type_name: RegexCheck,
    JsonFieldCheck.type_name: JsonFieldCheck,
    StructureCheck.type_name: StructureCheck,
}


def parse_check(data: Any) -> Check:
    """Build a typed check from its rule-file definition.

    Raises:
        RuleSchemaError: unknown type or malformed parameters
    """
    if not isinstance(data, dict):
        raise RuleSchemaError("check must be an object")

    check_id = data.get("check_id")
    if not isinstance(check_id, str) or not check_id:
        raise RuleSchemaError("check is missing check_id")

    check_type = data.get("type")
    if check_type not in CHECK_TYPES:
        raise RuleSchemaError(f"check {check_id}: unknown type {check_type!r}")

    error_message = data.get("error_message") or ""
    if not isinstance(error_message, str):
        raise RuleSchemaError(f"check {check_id}: error_message must be a string")

    pattern = data.get("pattern") or ""
    if not isinstance(pattern, str):
        raise RuleSchemaError(f"check {check_id}: pattern must be a string")

    if check_type == "regex":
        mode = data.get("mode", "require")
        if mode not in REGEX_MODES:
            raise RuleSchemaError(f"check {check_id}: mode must be one of {REGEX_MODES}")
        return RegexCheck(check_id=check_id, error_message=error_message, pattern=pattern, mode=mode)

    if check_type == "json-field":
        required = data.get("required", False)
        if not isinstance(required, bool):
            raise RuleSchemaError(f"check {check_id}: required must be a boolean")
        field = data.get("field") or ""
        if not isinstance(field, str):
            raise RuleSchemaError(f"check {check_id}: field must be a string")
        return JsonFieldCheck(
            check_id=check_id,
            error_message=error_message,
            field=field,
            required=required,
            pattern=pattern,
        )

    exists = data.get("exists") or ""
    min_dashes = data.get("min_dashes", 0) or 0
    if not isinstance(exists, str):
        raise RuleSchemaError(f"check {check_id}: exists must be a string")
    if isinstance(min_dashes, bool) or not isinstance(min_dashes, int) or min_dashes < 0:
        raise RuleSchemaError(f"check {check_id}: min_dashes must be a non-negative integer")
    return StructureCheck(
        check_id=check_id,
        error_message=error_message,
        exists=exists,
        min_dashes=min_dashes,
    )


class CheckExecutor:
    """Runs the checks of a rule against an artifact and reports violations."""

    def evaluate(self, check: Check, artifact: Artifact) -> CheckResult:
        logger.debug(f"Executing check: {check.check_id} (type: {check.type_name}) on {artifact.path}")
        result = check.evaluate(artifact)
        if result.passed:
            logger.debug(f"  pass: {check.check_id}")
        else:
            logger.debug(f"  violation: {check.check_id} ({result.message})")
        return result

    def evaluate_rule(self, rule: Rule, artifact: Artifact) -> List[Violation]:
        """Run every check of the rule in order. Empty list means the artifact is valid."""
        violations = []
        for check in rule.checks:
            result = self.evaluate(check, artifact)
            if result.passed:
                continue
            violations.append(Violation(
                rule_id=rule.rule_id,
                check_id=check.check_id,
                severity=rule.severity.value,
                confidence=rule.confidence,
                error_message=check.error_message or result.message,
                file=str(artifact.path),
                expected=result.expected,
                actual=result.actual,
            ))
        return violations
