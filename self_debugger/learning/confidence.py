"""Confidence learning: recalibrate rule confidence from human fix outcomes."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..config import DebuggerConfig
from ..coordination.branches import BranchCoordinator
from ..engine import RuleStore
from ..errors import GitError, PushError
from ..ledger import FixLog, HealthScore, IssueLedger, MetricsLog, OutcomeRecorder
from ..models import Outcome, Rule, clamp_confidence
from ..utils import get_logger


logger = get_logger(__name__)

CONFIDENCE_BRANCH = "debug/self-debugger/confidence-adjustment"

HIGH_APPROVAL = 90.0
LOW_APPROVAL = 30.0
RAISE_STEP = 0.05
DROP_STEP = 0.10
DECAY_STEP = 0.02


def approval_rate(outcomes: Sequence[Outcome]) -> float:
    """Percentage of outcomes where the fix was approved."""
    if not outcomes:
        return 0.0
    approved = sum(1 for outcome in outcomes if outcome.approved)
    return approved / len(outcomes) * 100


def adjust_confidence(current: float, rate: float) -> float:
    """
    90%+ approval raises confidence by 0.05, 30% or less lowers it by 0.10,
    anything in between decays it by 0.02. Clamped to [0.1, 1.0].
    """
    if rate >= HIGH_APPROVAL:
        new = current + RAISE_STEP
    elif rate <= LOW_APPROVAL:
        new = current - DROP_STEP
    else:
        new = current - DECAY_STEP
    return round(clamp_confidence(new), 2)


@dataclass
class Adjustment:
    """Planned or applied confidence change for one rule."""
    rule_id: str
    old_confidence: float
    new_confidence: float
    approval_rate: float
    outcomes: int

    @property
    def changed(self) -> bool:
        return self.new_confidence != self.old_confidence


@dataclass
class LearningReport:
    health: HealthScore
    adjustments: List[Adjustment] = field(default_factory=list)
    applied: bool = False
    commit_sha: str = ""
    pushed: bool = False
    error: Optional[str] = None


class ConfidenceLearner:
    """
    Consumes outcomes, plans confidence adjustments and, only when given a
    BranchCoordinator, writes them to the rule files and commits them on
    the confidence-adjustment branch for human review.
    """

    def __init__(
        self,
        config: DebuggerConfig,
        rule_store: Optional[RuleStore] = None,
        ledger: Optional[IssueLedger] = None,
        recorder: Optional[OutcomeRecorder] = None,
        metrics: Optional[MetricsLog] = None,
    ):
        self.config = config
        self.rule_store = rule_store or RuleStore(config.rules_dir)
        self.ledger = ledger or IssueLedger(
            config.issues_file, config.session_id, config.append_lock_timeout_seconds
        )
        self.recorder = recorder or OutcomeRecorder(
            config.outcomes_file,
            self.ledger,
            FixLog(config.fixes_file, config.append_lock_timeout_seconds),
            config.session_id,
            config.append_lock_timeout_seconds,
        )
        self.metrics = metrics or MetricsLog(
            config.metrics_file, config.session_id, config.append_lock_timeout_seconds
        )

    def health(self) -> HealthScore:
        return self.ledger.health_score(stale_days=self.config.stale_issue_days)

    def plan(self) -> List[Adjustment]:
        """Adjustments for every rule with enough outcomes. Writes nothing."""
        by_rule = self.recorder.outcomes_by_rule()
        adjustments = []

        for rule in self.rule_store.load():
            outcomes = by_rule.get(rule.rule_id, [])
            if len(outcomes) < self.config.min_outcomes_for_adjustment:
                logger.debug(f"Not enough data for rule: {rule.rule_id} (only {len(outcomes)} outcomes)")
                continue

            rate = approval_rate(outcomes)
            logger.info(f"Rule: {rule.rule_id} - Approval rate: {rate:.0f}%")
            adjustments.append(Adjustment(
                rule_id=rule.rule_id,
                old_confidence=rule.confidence,
                new_confidence=adjust_confidence(rule.confidence, rate),
                approval_rate=rate,
                outcomes=len(outcomes),
            ))

        return adjustments

    def apply(self, coordinator: Optional[BranchCoordinator] = None, push: bool = False) -> LearningReport:
        """
        Plan, then persist and commit the changed confidences.

        Args:
            coordinator: Git access; without it nothing is written
            push: Push the confidence-adjustment branch after committing

        Returns:
            LearningReport with health, adjustments and commit details

        Raises:
            LockContentionError: the confidence branch is locked
            GitError: checkout or commit failed
        """
        health = self.health()
        logger.info(f"Self-debugger health score: {health.score:.0f}/100")

        report = LearningReport(health=health, adjustments=self.plan())
        changed = [adj for adj in report.adjustments if adj.changed]

        if not changed:
            logger.info("No rule updates needed (insufficient data or no change)")
        elif coordinator is None:
            logger.warning(
                f"{len(changed)} confidence adjustments planned but not written (no branch coordinator)"
            )
        else:
            self._commit(coordinator, changed, report, push)

        self.metrics.record(
            "self_improvement",
            health_score=round(health.score, 1),
            rules_updated=len(changed) if report.applied else 0,
        )
        return report

    def _commit(
        self,
        coordinator: BranchCoordinator,
        changed: List[Adjustment],
        report: LearningReport,
        push: bool,
    ) -> None:
        rules: Dict[str, Rule] = {rule.rule_id: rule for rule in self.rule_store.load()}
        repo_root = coordinator.repo_root.resolve()
        for adj in changed:
            source = rules[adj.rule_id].source_path
            if source is None or not source.resolve().is_relative_to(repo_root):
                raise GitError(f"Rule file for {adj.rule_id} is outside the repository: {source}")

        logger.info("Committing rule confidence adjustments...")
        with coordinator.lock(CONFIDENCE_BRANCH):
            start_branch = coordinator.current_branch()
            coordinator.checkout_branch(CONFIDENCE_BRANCH)

            paths: List[Path] = []
            for adj in changed:
                _, path = self.rule_store.write_confidence(rules[adj.rule_id], adj.new_confidence)
                paths.append(path)

            report.commit_sha = coordinator.commit_paths(
                paths,
                subject="self-improve: Adjust rule confidence based on approval rates",
                body=commit_body(changed, report.health),
                trailers={"Auto-generated": "self-debugger self-improvement"},
            )
            report.applied = True
            logger.info(f"Committed {len(changed)} rule confidence adjustments")

            if push:
                try:
                    coordinator.push(CONFIDENCE_BRANCH)
                    report.pushed = True
                    logger.info("Create a pull request for human review")
                except PushError as e:
                    report.error = str(e)

            if start_branch != CONFIDENCE_BRANCH:
                coordinator.checkout_branch(start_branch)


def commit_body(adjustments: Sequence[Adjustment], health: HealthScore) -> str:
    lines = [
        f"Updated {len(adjustments)} rules based on fix approval metrics.",
        "",
        f"Health score: {health.score:.0f}/100",
        "",
        "Rule adjustments:",
    ]
    for adj in adjustments:
        lines.append(
            f"  - {adj.rule_id}: confidence {adj.old_confidence:.2f} -> {adj.new_confidence:.2f} "
            f"(approval {adj.approval_rate:.0f}%, {adj.outcomes} outcomes)"
        )
    return "\n".join(lines)
