"""One scan cycle: rules -> artifacts -> matcher -> checks -> issue ledger."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..config import DebuggerConfig
from ..coordination.branches import detect_source_repo
from ..engine import CheckExecutor, RuleStore, find_applicable_rules
from ..errors import ScanAborted, SourceRepoNotFound
from ..ledger import IssueLedger, MetricsLog
from ..models import Artifact, Issue, Rule
from ..utils import get_logger


logger = get_logger(__name__)

# Component globs scanned inside each plugin directory
ARTIFACT_GLOBS = (
    ".claude-plugin/plugin.json",
    "hooks/*.md",
    "hooks/*.json",
    "agents/*.md",
    "skills/**/*.md",
)


@dataclass
class ScanReport:
    """Result of one scan cycle."""
    rule_count: int = 0
    plugins_scanned: int = 0
    artifacts_scanned: int = 0
    violations: int = 0
    new_issues: List[Issue] = field(default_factory=list)
    aborted: bool = False


def resolve_plugins_dir(config: DebuggerConfig) -> Path:
    """
    Directory holding the plugins to scan.

    Raises:
        SourceRepoNotFound: not configured and no source repository found
    """
    if config.plugins_dir is not None:
        if not config.plugins_dir.is_dir():
            raise SourceRepoNotFound(f"Plugins directory not found: {config.plugins_dir}")
        return config.plugins_dir
    return detect_source_repo(config.repo_root) / "plugins"


def enumerate_artifacts(plugin_dir: Path, globs: Sequence[str] = ARTIFACT_GLOBS) -> List[Artifact]:
    """Artifacts of one plugin, in a stable order."""
    seen = set()
    artifacts = []
    for pattern in globs:
        for path in sorted(plugin_dir.glob(pattern)):
            if not path.is_file() or path in seen:
                continue
            seen.add(path)
            artifacts.append(Artifact(
                plugin=plugin_dir.name,
                component=path.relative_to(plugin_dir).as_posix(),
                plugin_root=plugin_dir,
            ))
    return artifacts


class ScanCycle:
    """
    Drives one pass over every plugin.

    Within the cycle, artifacts are processed strictly one after another:
    match, evaluate, record.
    """

    def __init__(
        self,
        config: DebuggerConfig,
        rule_store: Optional[RuleStore] = None,
        ledger: Optional[IssueLedger] = None,
        metrics: Optional[MetricsLog] = None,
        executor: Optional[CheckExecutor] = None,
    ):
        self.config = config
        self.rule_store = rule_store or RuleStore(config.rules_dir)
        self.ledger = ledger or IssueLedger(
            config.issues_file, config.session_id, config.append_lock_timeout_seconds
        )
        self.metrics = metrics or MetricsLog(
            config.metrics_file, config.session_id, config.append_lock_timeout_seconds
        )
        self.executor = executor or CheckExecutor()

    def scan_artifact(self, artifact: Artifact, rules: Sequence[Rule], report: ScanReport) -> None:
        applicable = find_applicable_rules(rules, artifact.component)
        if not applicable:
            return

        logger.debug(f"  Checking {artifact.component} ({len(applicable)} applicable rules)")
        for rule in applicable:
            for violation in self.executor.evaluate_rule(rule, artifact):
                report.violations += 1
                issue = self.ledger.record(artifact.plugin, artifact.component, violation)
                if issue is not None:
                    report.new_issues.append(issue)

    def run(self, should_abort: Optional[Callable[[], bool]] = None) -> ScanReport:
        """
        Scan all plugins once.

        Args:
            should_abort: Polled between artifacts; returning True stops the cycle

        Returns:
            ScanReport with counts and the newly recorded issues

        Raises:
            ScanAborted: should_abort returned True
        """
        report = ScanReport()
        plugins_dir = resolve_plugins_dir(self.config)

        logger.info(f"Starting plugin scan (session: {self.config.session_id})")
        logger.info("Loading validation rules...")
        rules = self.rule_store.load()
        report.rule_count = len(rules)
        logger.info(f"Loaded {report.rule_count} rules")

        if not rules:
            logger.warning("No rules loaded. Nothing to validate.")
            return report

        for plugin_dir in sorted(p for p in plugins_dir.iterdir() if p.is_dir()):
            if plugin_dir.name in self.config.exclude_plugins:
                logger.debug(f"Skipping excluded plugin: {plugin_dir.name}")
                continue

            report.plugins_scanned += 1
            logger.info(f"Scanning plugin: {plugin_dir.name}")

            for artifact in enumerate_artifacts(plugin_dir):
                if should_abort is not None and should_abort():
                    report.aborted = True
                    logger.warning(
                        f"Scan aborted after {report.artifacts_scanned} artifacts "
                        f"({len(report.new_issues)} new issues recorded)"
                    )
                    raise ScanAborted("Shutdown grace period expired during scan")
                report.artifacts_scanned += 1
                self.scan_artifact(artifact, rules, report)

        logger.info(
            f"Scan complete: {report.violations} violations, {len(report.new_issues)} new issues "
            f"in {report.plugins_scanned} plugins"
        )

        self.metrics.record(
            "scan_complete",
            plugins_scanned=report.plugins_scanned,
            artifacts_scanned=report.artifacts_scanned,
            issues_found=report.violations,
            new_issues=len(report.new_issues),
            rule_count=report.rule_count,
        )
        return report
