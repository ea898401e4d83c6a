#!/usr/bin/env python3
"""
Self-Debugger - Main Entry Point

Scans plugin artifacts against validation rules, records deduplicated
issues, commits critic-approved fixes on debug/ branches and recalibrates
rule confidence from fix outcomes.

Usage:
    python -m self_debugger.main scan
    python -m self_debugger.main start          # background monitor
    python -m self_debugger.main fix <issue-id> --dry-run
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .config import DebuggerConfig, validate_session_id
from .coordination import coordinator_from_config, run_fix_sync
from .engine import RuleStore, build_external_rule
from .errors import DebuggerError
from .ledger import FixLog, IssueLedger, MetricsLog, OutcomeRecorder, format_health_report
from .learning import ConfidenceLearner
from .models import FixResult, IssueStatus
from .pipeline import ScanCycle, ScanScheduler, monitor_status, start_monitor, stop_monitor
from .utils import setup_logging, level_for


def build_config(args) -> DebuggerConfig:
    """Environment and config file first, then command-line overrides."""
    config = DebuggerConfig.load()
    overrides = {}
    if args.home:
        overrides["home"] = Path(args.home).expanduser()
    if args.session:
        overrides["session_id"] = args.session
    if args.plugins_dir:
        overrides["plugins_dir"] = Path(args.plugins_dir).expanduser()
    if args.rules_dir:
        overrides["rules_dir"] = Path(args.rules_dir).expanduser()
    if args.debug:
        overrides["verbose"] = True
    if overrides:
        config = replace(config, **overrides)
    validate_session_id(config.session_id)
    return config


def _ledger(config: DebuggerConfig) -> IssueLedger:
    return IssueLedger(config.issues_file, config.session_id, config.append_lock_timeout_seconds)


def _recorder(config: DebuggerConfig) -> OutcomeRecorder:
    return OutcomeRecorder(
        config.outcomes_file,
        _ledger(config),
        FixLog(config.fixes_file, config.append_lock_timeout_seconds),
        config.session_id,
        config.append_lock_timeout_seconds,
    )


def cmd_scan(args, config: DebuggerConfig) -> int:
    """Handle 'scan' subcommand."""
    report = ScanCycle(config).run()

    for issue in report.new_issues:
        print(f"{issue.short_id}  {issue.severity:<7}  {issue.plugin}/{issue.component}  "
              f"{issue.rule_id}: {issue.evidence.error_message}")
    print(f"Scanned {report.artifacts_scanned} artifacts in {report.plugins_scanned} plugins: "
          f"{report.violations} violations, {len(report.new_issues)} new issues")
    return 0


def cmd_monitor(args, config: DebuggerConfig) -> int:
    """Handle 'monitor' subcommand (foreground scheduler)."""
    ScanScheduler(config).run(max_cycles=args.max_cycles)
    return 0


def cmd_start(args, config: DebuggerConfig) -> int:
    pid = start_monitor(config)
    print(f"Monitor running (session: {config.session_id}, PID: {pid})")
    return 0


def cmd_stop(args, config: DebuggerConfig) -> int:
    stop_monitor(config, wait_seconds=args.wait)
    return 0


def cmd_status(args, config: DebuggerConfig) -> int:
    status = monitor_status(config)
    print(f"Session:        {status.session_id}")
    print(f"Status:         {status.status}")
    if status.pid is not None:
        print(f"PID:            {status.pid} ({'alive' if status.alive else 'not running'})")
    if status.started_at:
        print(f"Started:        {status.started_at}")
    if status.last_heartbeat:
        print(f"Last heartbeat: {status.last_heartbeat}")
    return 0


def cmd_health(args, config: DebuggerConfig) -> int:
    """Handle 'health' subcommand."""
    learner = ConfidenceLearner(config)
    print(format_health_report(learner.health(), learner.plan()))
    return 0


def cmd_issues(args, config: DebuggerConfig) -> int:
    """Handle 'issues' subcommand."""
    ledger = _ledger(config)
    issues = ledger.issues() if args.all else ledger.pending()
    if args.plugin:
        issues = [issue for issue in issues if issue.plugin == args.plugin]

    if args.json:
        print(json.dumps([issue.to_dict() for issue in issues], indent=2))
        return 0

    if not issues:
        print("No issues.")
        return 0
    for issue in issues:
        print(f"{issue.short_id}  {issue.status.value:<8}  {issue.severity:<7}  "
              f"{issue.plugin}/{issue.component}  {issue.rule_id}  ({issue.detected_at})")
    return 0


def cmd_learn(args, config: DebuggerConfig) -> int:
    """Handle 'learn' subcommand."""
    learner = ConfidenceLearner(config)

    if not args.apply:
        adjustments = learner.plan()
        print(format_health_report(learner.health(), adjustments))
        if adjustments:
            print("\nRe-run with --apply to commit these adjustments.")
        return 0

    report = learner.apply(coordinator_from_config(config), push=args.push)
    print(format_health_report(report.health, report.adjustments))
    if report.applied:
        print(f"\nCommitted {report.commit_sha[:12]}" + (" and pushed" if report.pushed else ""))
    if report.error:
        print(f"Warning: {report.error}", file=sys.stderr)
    return 0


def cmd_fix(args, config: DebuggerConfig) -> int:
    """Handle 'fix' subcommand."""
    from .tools import ClaudeCritic, ClaudeFixer, GitHubTool

    github = None
    if args.open_pr:
        github = GitHubTool(repo=args.repo or config.github_repo, token=config.github_token)

    status = run_fix_sync(
        args.issue_id,
        config,
        ClaudeFixer(),
        ClaudeCritic(),
        github=github,
        dry_run=args.dry_run,
        push=args.push or args.open_pr,
        base_branch=args.base,
    )

    if status.proposal is not None and status.result in (FixResult.DRY_RUN, FixResult.REJECTED_BY_CRITIC):
        print(json.dumps(status.proposal.to_dict(), indent=2))

    score = f"{status.critic_score:.0f}" if status.critic_score is not None else "-"
    print(f"Result: {status.result.value} (critic score: {score})")
    if status.branch:
        print(f"Branch: {status.branch}")
    if status.commit_sha:
        print(f"Commit: {status.commit_sha[:12]}")
    if status.pr_number is not None:
        print(f"Pull request: #{status.pr_number}")
    if status.error:
        print(f"Error: {status.error}", file=sys.stderr)

    return 0 if status.result in (FixResult.COMMITTED, FixResult.DRY_RUN) else 1


def cmd_record_outcome(args, config: DebuggerConfig) -> int:
    outcome = _recorder(config).record(args.issue_id, IssueStatus(args.status), note=args.note)
    if outcome is None:
        return 1
    print(f"Recorded {outcome.status} for issue {outcome.issue_id} (rule: {outcome.rule_id})")
    return 0


def cmd_sync_outcomes(args, config: DebuggerConfig) -> int:
    from .tools import GitHubTool

    github = GitHubTool(repo=args.repo or config.github_repo, token=config.github_token)
    outcomes = _recorder(config).sync_from_github(github)
    for outcome in outcomes:
        print(f"{outcome.issue_id[:8]}  {outcome.status:<8}  {outcome.rule_id}  {outcome.note}")
    print(f"Recorded {len(outcomes)} outcomes")
    return 0


def cmd_locks(args, config: DebuggerConfig) -> int:
    from .coordination import LockManager

    locks = LockManager(config.locks_dir, config.session_id, config.stale_lock_threshold_seconds).list_locks()
    if not locks:
        print("No branch locks held.")
        return 0
    for info in locks:
        age = f"{info.age_seconds / 60:.0f}m" if info.age_seconds is not None else "?"
        holder = "alive" if info.holder_alive else "dead"
        print(f"{info.branch_name}  pid={info.pid} ({holder})  session={info.session_id}  age={age}")
    return 0


def cmd_add_external_rule(args, config: DebuggerConfig) -> int:
    """Handle 'add-external-rule' subcommand."""
    rule_data = build_external_rule(
        rule_id=args.rule_id,
        pattern=args.pattern,
        source_url=args.source_url,
        description=args.description,
        has_code_examples=args.code_examples,
        component=args.component,
        path_pattern=args.path_pattern,
    )
    path = RuleStore(config.rules_dir).add_external(rule_data)
    if path is None:
        return 1
    print(f"Created {path} (confidence: {rule_data['confidence']})")
    MetricsLog(config.metrics_file, config.session_id).record(
        "external_rule_added", rule_id=args.rule_id, confidence=rule_data["confidence"]
    )
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "monitor": cmd_monitor,
    "start": cmd_start,
    "stop": cmd_stop,
    "status": cmd_status,
    "health": cmd_health,
    "issues": cmd_issues,
    "learn": cmd_learn,
    "fix": cmd_fix,
    "record-outcome": cmd_record_outcome,
    "sync-outcomes": cmd_sync_outcomes,
    "locks": cmd_locks,
    "add-external-rule": cmd_add_external_rule,
}


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--home", type=str, help="State directory (default: $DEBUGGER_HOME or ~/.claude/self-debugger)")
    common.add_argument("--session", type=str, help="Session ID (default: $CLAUDE_SESSION_ID or 'default')")
    common.add_argument("--plugins-dir", type=str, help="Directory of plugins to scan (default: <repo>/plugins)")
    common.add_argument("--rules-dir", type=str, help="Rules directory with core/, learned/, external/")
    common.add_argument("--debug", action="store_true", help="Enable debug logging")

    parser = argparse.ArgumentParser(
        description="Self-debugger: plugin health scanning, fixing and confidence learning"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("scan", parents=[common], help="Run one scan cycle")

    monitor_parser = subparsers.add_parser("monitor", parents=[common], help="Run the scan scheduler in the foreground")
    monitor_parser.add_argument("--max-cycles", type=int, default=None, help="Stop after N scan cycles")

    subparsers.add_parser("start", parents=[common], help="Start the background monitor")

    stop_parser = subparsers.add_parser("stop", parents=[common], help="Stop the background monitor")
    stop_parser.add_argument("--wait", type=int, default=5, help="Seconds to wait before SIGKILL (default: 5)")

    subparsers.add_parser("status", parents=[common], help="Show background monitor status")
    subparsers.add_parser("health", parents=[common], help="Show health score and planned confidence changes")

    issues_parser = subparsers.add_parser("issues", parents=[common], help="List recorded issues")
    issues_parser.add_argument("--all", action="store_true", help="Include fixed and rejected issues")
    issues_parser.add_argument("--plugin", type=str, help="Only issues of this plugin")
    issues_parser.add_argument("--json", action="store_true", help="Print JSON")

    learn_parser = subparsers.add_parser("learn", parents=[common], help="Recalibrate rule confidence from outcomes")
    learn_parser.add_argument("--apply", action="store_true", help="Write and commit the adjustments")
    learn_parser.add_argument("--push", action="store_true", help="Push the confidence-adjustment branch")

    fix_parser = subparsers.add_parser("fix", parents=[common], help="Propose, score and commit a fix for an issue")
    fix_parser.add_argument("issue_id", help="Issue ID (or 8+ character prefix)")
    fix_parser.add_argument("--dry-run", action="store_true", help="Show the proposal without touching git")
    fix_parser.add_argument("--push", action="store_true", help="Push the fix branch to origin")
    fix_parser.add_argument("--open-pr", action="store_true", help="Push and open a pull request")
    fix_parser.add_argument("--repo", type=str, help="Repository in format owner/repo (default: $GITHUB_REPOSITORY)")
    fix_parser.add_argument("--base", type=str, help="Pull-request base branch (default: repository default)")

    outcome_parser = subparsers.add_parser("record-outcome", parents=[common], help="Record a human verdict on an issue")
    outcome_parser.add_argument("issue_id", help="Issue ID (or 8+ character prefix)")
    outcome_parser.add_argument("status", choices=["fixed", "rejected"])
    outcome_parser.add_argument("--note", type=str, default="", help="Free-form note")

    sync_parser = subparsers.add_parser("sync-outcomes", parents=[common], help="Record outcomes from merged/closed pull requests")
    sync_parser.add_argument("--repo", type=str, help="Repository in format owner/repo (default: $GITHUB_REPOSITORY)")

    subparsers.add_parser("locks", parents=[common], help="List branch locks")

    ext_parser = subparsers.add_parser("add-external-rule", parents=[common], help="Ingest an externally discovered rule")
    ext_parser.add_argument("rule_id")
    ext_parser.add_argument("--pattern", required=True, help="Regex the artifact must contain")
    ext_parser.add_argument("--source-url", required=True, help="Where the rule was found")
    ext_parser.add_argument("--description", required=True, help="Error message for violations")
    ext_parser.add_argument("--code-examples", action="store_true", help="Source includes code examples")
    ext_parser.add_argument("--component", type=str, default="hooks", help="Component directory (default: hooks)")
    ext_parser.add_argument("--path-pattern", type=str, default=r".*\.md$", help="Artifact path regex")

    return parser


def main(argv: Optional[List[str]] = None):
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        # No subcommand - show help
        parser.print_help()
        sys.exit(0)

    logger = setup_logging(level=level_for(args.debug))

    try:
        config = build_config(args)
        # DEBUGGER_VERBOSE can enable debug output without --debug
        logger.setLevel(level_for(config.verbose))
        config.ensure_directories()
        sys.exit(handler(args, config))
    except DebuggerError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
