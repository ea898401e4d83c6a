"""Tests for the confidence learning loop."""

import json
from dataclasses import replace

import pytest

from self_debugger.coordination import BranchCoordinator, LockManager
from self_debugger.errors import GitError
from self_debugger.learning import (
    CONFIDENCE_BRANCH,
    ConfidenceLearner,
    adjust_confidence,
    approval_rate,
)
from self_debugger.ledger import MetricsLog, append_jsonl
from self_debugger.models import Outcome

from conftest import git, requires_git, rule_data, write_rule


def add_outcomes(config, rule_id, approved, rejected):
    for n in range(approved + rejected):
        status = "fixed" if n < approved else "rejected"
        outcome = Outcome(issue_id=f"issue-{rule_id}-{n}", rule_id=rule_id, status=status, session_id="s")
        append_jsonl(config.outcomes_file, outcome.to_dict())


class TestAdjustConfidence:
    """Tests for the adjustment table."""

    @pytest.mark.parametrize("current,rate,expected", [
        (0.80, 100.0, 0.85),
        (0.80, 90.0, 0.85),
        (0.80, 30.0, 0.70),
        (0.80, 0.0, 0.70),
        (0.80, 50.0, 0.78),
        (0.98, 95.0, 1.0),
        (0.15, 10.0, 0.1),
        (0.11, 60.0, 0.1),
    ])
    def test_table(self, current, rate, expected):
        assert adjust_confidence(current, rate) == expected

    def test_approval_rate(self):
        outcomes = [Outcome("a", "r", "fixed", "s"), Outcome("b", "r", "rejected", "s")]
        assert approval_rate(outcomes) == 50.0
        assert approval_rate([]) == 0.0


class TestConfidenceLearnerPlan:
    """Tests for planning without side effects."""

    def test_rules_below_minimum_outcomes_skipped(self, config):
        """Given 4 outcomes with a minimum of 5, should plan nothing."""
        add_outcomes(config, "agent-name", approved=4, rejected=0)

        assert ConfidenceLearner(config).plan() == []

    def test_plans_raise_for_high_approval(self, config):
        """Given 5 approved outcomes, should plan 0.80 -> 0.85."""
        # Given
        add_outcomes(config, "agent-name", approved=5, rejected=0)

        # When
        [adjustment] = ConfidenceLearner(config).plan()

        # Then
        assert adjustment.rule_id == "agent-name"
        assert adjustment.old_confidence == 0.8
        assert adjustment.new_confidence == 0.85
        assert adjustment.outcomes == 5
        assert adjustment.changed

    def test_apply_without_coordinator_writes_nothing(self, config, rules_dir):
        """Given planned changes and no git access, rule files stay untouched."""
        # Given
        add_outcomes(config, "agent-name", approved=1, rejected=4)
        rule_file = rules_dir / "core" / "agent-name.json"
        before = rule_file.read_text()

        # When
        report = ConfidenceLearner(config).apply()

        # Then
        assert not report.applied
        assert report.adjustments[0].new_confidence == 0.7
        assert rule_file.read_text() == before
        [event] = MetricsLog(config.metrics_file).events("self_improvement")
        assert event["rules_updated"] == 0
        assert event["health_score"] == 100


@requires_git
class TestConfidenceLearnerApply:
    """Tests for committing adjustments on the confidence branch."""

    @pytest.fixture
    def repo_config(self, config, git_repo):
        write_rule(git_repo / "rules", "core", rule_data("agent-name", confidence=0.8))
        git(git_repo, "add", "-A")
        git(git_repo, "commit", "-q", "-m", "add rules")
        return replace(config, rules_dir=git_repo / "rules", repo_root=git_repo, plugins_dir=None)

    def coordinator(self, config, git_repo):
        locks = LockManager(config.locks_dir, session_id=config.session_id, retries=1, retry_delay=0)
        return BranchCoordinator(git_repo, locks, session_id=config.session_id)

    def test_commits_on_confidence_branch(self, repo_config, git_repo):
        """Given high approval, should commit the new confidence on its own branch and return to main."""
        # Given
        add_outcomes(repo_config, "agent-name", approved=5, rejected=0)

        # When
        report = ConfidenceLearner(repo_config).apply(self.coordinator(repo_config, git_repo))

        # Then
        assert report.applied
        assert report.commit_sha == git(git_repo, "rev-parse", CONFIDENCE_BRANCH)
        assert git(git_repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"
        main_rule = json.loads((git_repo / "rules" / "core" / "agent-name.json").read_text())
        assert main_rule["confidence"] == 0.8
        branch_rule = json.loads(git(git_repo, "show", f"{CONFIDENCE_BRANCH}:rules/core/agent-name.json"))
        assert branch_rule["confidence"] == 0.85
        message = git(git_repo, "log", "-1", "--format=%B", CONFIDENCE_BRANCH)
        assert message.startswith("self-improve: Adjust rule confidence based on approval rates")
        assert "agent-name: confidence 0.80 -> 0.85" in message
        assert "Auto-generated: self-debugger self-improvement" in message
        [event] = MetricsLog(repo_config.metrics_file).events("self_improvement")
        assert event["rules_updated"] == 1

    def test_rules_outside_repository_refused(self, config, git_repo):
        """Given rule files outside the repo, should raise GitError before touching git."""
        add_outcomes(config, "agent-name", approved=5, rejected=0)

        with pytest.raises(GitError, match="outside the repository"):
            ConfidenceLearner(config).apply(self.coordinator(config, git_repo))

        assert git(git_repo, "branch", "--list", CONFIDENCE_BRANCH) == ""
