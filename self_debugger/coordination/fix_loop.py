"""Fix loop: Propose → Critique → Lock → Branch → Commit → Push.

A pending issue becomes at most one commit on ``debug/<plugin>/<issue_id[:8]>``.
Nothing touches git until the critic has scored the proposal at or above
``min_critic_score``; the branch lock is held from checkout to the fix record.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from ..config import DebuggerConfig
from ..engine import RuleStore
from ..errors import DebuggerError, GitError, LockContentionError, PushError
from ..ledger import FixLog, IssueLedger, MetricsLog
from ..models import FixProposal, FixRecord, FixResult, Issue
from ..utils import get_logger
from .branches import BranchCoordinator, branch_name_for, coordinator_from_config

if TYPE_CHECKING:
    from ..tools import Critic, Fixer, GitHubTool


logger = get_logger(__name__)


@dataclass
class FixStatus:
    """What one run of the fix loop did."""
    result: FixResult
    issue: Optional[Issue] = None
    proposal: Optional[FixProposal] = None
    critic_score: Optional[float] = None
    branch: str = ""
    commit_sha: str = ""
    pushed: bool = False
    pr_number: Optional[int] = None
    error: Optional[str] = None


def pull_request_body(issue: Issue, proposal: FixProposal, score: float) -> str:
    return "\n".join([
        f"Automated fix for `{issue.rule_id}` in `{issue.plugin}/{issue.component}`.",
        "",
        f"- Issue: `{issue.issue_id}` ({issue.severity})",
        f"- Problem: {issue.evidence.error_message}",
        f"- Fix: {proposal.description} ({proposal.fix_type.value})",
        f"- Critic score: {score:.0f}/100",
        "",
        "Merging records the fix as approved; closing without merge records it as rejected.",
    ])


async def run_fix(
    issue_id: str,
    config: DebuggerConfig,
    fixer: "Fixer",
    critic: "Critic",
    coordinator: Optional[BranchCoordinator] = None,
    ledger: Optional[IssueLedger] = None,
    rule_store: Optional[RuleStore] = None,
    fix_log: Optional[FixLog] = None,
    metrics: Optional[MetricsLog] = None,
    github: Optional["GitHubTool"] = None,
    dry_run: bool = False,
    push: bool = False,
    base_branch: Optional[str] = None,
) -> FixStatus:
    """
    Propose, validate and commit a fix for one pending issue.

    Args:
        issue_id: Full issue id or a prefix of at least 8 characters
        config: Engine configuration
        fixer: Produces the FixProposal
        critic: Scores the proposal (0-100)
        coordinator: Git access (defaults to the detected source repo)
        github: Opens a pull request after a successful push
        dry_run: Stop after the critic; never touch git
        push: Push the fix branch to origin

    Returns:
        FixStatus; git and push failures are reported in it, not raised

    Raises:
        IssueNotFound: no issue matches ``issue_id``
    """
    ledger = ledger or IssueLedger(config.issues_file, config.session_id, config.append_lock_timeout_seconds)
    rule_store = rule_store or RuleStore(config.rules_dir)
    fix_log = fix_log or FixLog(config.fixes_file, config.append_lock_timeout_seconds)
    metrics = metrics or MetricsLog(config.metrics_file, config.session_id, config.append_lock_timeout_seconds)

    issue = ledger.get(issue_id)
    status = FixStatus(result=FixResult.ERROR, issue=issue)

    logger.info(f"Generating fix for issue: {issue.issue_id}")
    if not issue.is_pending:
        status.error = f"Issue is already {issue.status.value}"
        logger.warning(status.error)
        return status

    applied = fix_log.count_for_session(config.session_id)
    if applied >= config.max_fixes_per_session:
        status.result = FixResult.LIMIT_REACHED
        status.error = f"Session fix limit reached ({applied}/{config.max_fixes_per_session})"
        logger.warning(status.error)
        return status

    rule = rule_store.get(issue.rule_id)
    if rule is None:
        logger.warning(f"Rule {issue.rule_id} no longer loaded, proposing without a fix template")
    fix_template = rule.fix_template if rule is not None else None

    # Step 1: Propose
    logger.info("[1/4] Requesting fix proposal...")
    proposal = await fixer.propose(issue, fix_template)
    if proposal is None:
        status.error = "Fixer produced no proposal"
        logger.error(status.error)
        return status
    status.proposal = proposal

    # Step 2: Critique
    logger.info("[2/4] Scoring proposal...")
    score = float(await critic.score(proposal, issue))
    status.critic_score = score
    if score < config.min_critic_score:
        status.result = FixResult.REJECTED_BY_CRITIC
        logger.warning(f"Fix rejected by critic (score: {score:.0f} < {config.min_critic_score:.0f})")
        return status
    logger.info(f"Fix approved by critic (score: {score:.0f})")

    if dry_run:
        status.result = FixResult.DRY_RUN
        logger.warning("DRY RUN MODE - No changes will be applied")
        return status

    # Step 3: Lock, branch, apply, commit
    coordinator = coordinator or coordinator_from_config(config)
    branch = branch_name_for(issue.plugin, issue.short_id)
    status.branch = branch

    try:
        with coordinator.lock(branch):
            logger.info(f"[3/4] Committing on {branch}...")
            target = Path(issue.location.file)
            coordinator.repo_relative(target)
            start_branch = coordinator.current_branch()
            coordinator.ensure_branch(issue.plugin, issue.short_id)
            coordinator.apply_proposal(proposal, target)
            status.commit_sha = coordinator.commit_fix(
                issue.issue_id, issue.plugin, issue.component, proposal.description
            )
            status.result = FixResult.COMMITTED

            # Step 4: Push and pull request
            if push:
                logger.info("[4/4] Pushing branch to origin...")
                try:
                    coordinator.push(branch)
                    status.pushed = True
                except PushError as e:
                    status.error = f"Push failed (commit kept locally): {e}"
                    logger.warning(status.error)

            if status.pushed and github is not None:
                try:
                    status.pr_number = github.open_pull_request(
                        branch,
                        title=f"fix({issue.plugin}): {proposal.description}",
                        body=pull_request_body(issue, proposal, score),
                        base=base_branch,
                    )
                except DebuggerError as e:
                    status.error = str(e)
                    logger.warning(f"Pull request not opened: {e}")

            fix_log.append(FixRecord(
                issue_id=issue.issue_id,
                rule_id=issue.rule_id,
                branch=branch,
                plugin=issue.plugin,
                component=issue.component,
                description=proposal.description,
                session_id=config.session_id,
                critic_score=score,
                commit_sha=status.commit_sha,
                pushed=status.pushed,
                pr_number=status.pr_number,
            ))
            metrics.record(
                "fix_applied",
                issue_id=issue.issue_id,
                plugin=issue.plugin,
                branch=branch,
                critic_score=score,
                pushed=status.pushed,
            )

            if start_branch != branch:
                coordinator.checkout_branch(start_branch)

    except LockContentionError as e:
        status.result = FixResult.LOCKED
        status.error = str(e)
        logger.error(status.error)
        return status
    except GitError as e:
        if status.result != FixResult.COMMITTED:
            status.result = FixResult.ERROR
        status.error = str(e)
        logger.error(f"Failed to apply fix: {e}")
        return status

    logger.info(f"Fix applied successfully on branch {branch}")
    return status


def run_fix_sync(issue_id: str, config: DebuggerConfig, fixer: "Fixer", critic: "Critic", **kwargs) -> FixStatus:
    """Synchronous wrapper for run_fix."""
    return asyncio.run(run_fix(issue_id, config, fixer, critic, **kwargs))
