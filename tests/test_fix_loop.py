"""Tests for the Propose -> Critique -> Lock -> Branch -> Commit -> Push loop.

Fixer, Critic and GitHub are replaced by small fakes; git is real.
"""

import os
from dataclasses import replace

import pytest

from self_debugger.coordination import LockManager, branch_name_for, run_fix_sync
from self_debugger.errors import IssueNotFound
from self_debugger.ledger import FixLog, IssueLedger, MetricsLog
from self_debugger.models import FixProposal, FixResult, FixType, IssueStatus
from self_debugger.pipeline import ScanCycle

from conftest import git, requires_git


class FakeFixer:
    def __init__(self, proposal=True):
        self.proposal = proposal
        self.templates = []

    async def propose(self, issue, fix_template):
        self.templates.append(fix_template)
        if not self.proposal:
            return None
        return FixProposal(
            issue_id=issue.issue_id,
            description="add agent name",
            fix_type=FixType.PREPEND,
            fixed_content="name: reviewer",
        )


class FakeCritic:
    def __init__(self, score):
        self.value = score

    async def score(self, proposal, issue):
        return self.value


class FakeGitHub:
    def __init__(self, number):
        self.number = number
        self.opened = []

    def open_pull_request(self, branch, title, body, base=None):
        self.opened.append((branch, title, base))
        return self.number


def detect_one_issue(config):
    [issue] = ScanCycle(config).run().new_issues
    return issue


class TestFixGates:
    """Tests for everything that stops before git is touched."""

    def test_critic_below_threshold_rejects(self, config):
        """Given a score under min_critic_score, should stop without a branch or fix record."""
        # Given
        issue = detect_one_issue(config)

        # When
        status = run_fix_sync(issue.issue_id, config, FakeFixer(), FakeCritic(50))

        # Then
        assert status.result == FixResult.REJECTED_BY_CRITIC
        assert status.critic_score == 50
        assert status.branch == ""
        assert FixLog(config.fixes_file).records() == []

    def test_fixer_receives_rule_fix_template(self, config):
        issue = detect_one_issue(config)
        fixer = FakeFixer()

        run_fix_sync(issue.short_id, config, fixer, FakeCritic(10))

        assert fixer.templates == [{"type": "prepend", "content": "---\nname: x\n---\n"}]

    def test_dry_run_applies_nothing(self, config):
        """Given an approved proposal in dry-run mode, the artifact should be unchanged."""
        # Given
        issue = detect_one_issue(config)
        target = issue.location.file
        before = open(target, encoding="utf-8").read()

        # When
        status = run_fix_sync(issue.issue_id, config, FakeFixer(), FakeCritic(95), dry_run=True)

        # Then
        assert status.result == FixResult.DRY_RUN
        assert status.proposal.description == "add agent name"
        assert open(target, encoding="utf-8").read() == before

    def test_session_limit(self, config):
        issue = detect_one_issue(config)

        status = run_fix_sync(issue.issue_id, replace(config, max_fixes_per_session=0), FakeFixer(), FakeCritic(95))

        assert status.result == FixResult.LIMIT_REACHED

    def test_no_proposal_is_error(self, config):
        issue = detect_one_issue(config)

        status = run_fix_sync(issue.issue_id, config, FakeFixer(proposal=False), FakeCritic(95))

        assert status.result == FixResult.ERROR
        assert "no proposal" in status.error

    def test_resolved_issue_is_not_fixed_again(self, config):
        issue = detect_one_issue(config)
        IssueLedger(config.issues_file).append_status(issue, IssueStatus.REJECTED)

        status = run_fix_sync(issue.issue_id, config, FakeFixer(), FakeCritic(95))

        assert status.result == FixResult.ERROR
        assert "already rejected" in status.error

    def test_unknown_issue_raises(self, config):
        with pytest.raises(IssueNotFound):
            run_fix_sync("deadbeefdeadbeef", config, FakeFixer(), FakeCritic(95))


@requires_git
class TestFixCommit:
    """Tests for the git side of the loop."""

    @pytest.fixture
    def repo_config(self, config, git_repo):
        return replace(config, plugins_dir=None, repo_root=git_repo)

    def test_commits_on_issue_branch(self, repo_config, git_repo):
        """Given an approved proposal, should commit on debug/<plugin>/<id8> and return to main."""
        # Given
        issue = detect_one_issue(repo_config)
        expected_branch = branch_name_for("reflect", issue.short_id)

        # When
        status = run_fix_sync(issue.issue_id, repo_config, FakeFixer(), FakeCritic(85))

        # Then
        assert status.result == FixResult.COMMITTED
        assert status.branch == expected_branch
        assert status.commit_sha == git(git_repo, "rev-parse", expected_branch)
        assert git(git_repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"
        fixed = git(git_repo, "show", f"{expected_branch}:plugins/reflect/agents/reviewer.md")
        assert fixed.startswith("name: reviewer")
        message = git(git_repo, "log", "-1", "--format=%B", expected_branch)
        assert f"Issue-ID: {issue.issue_id}" in message

        [record] = FixLog(repo_config.fixes_file).records()
        assert record.critic_score == 85
        assert record.commit_sha == status.commit_sha
        assert len(MetricsLog(repo_config.metrics_file).events("fix_applied")) == 1
        assert not os.listdir(repo_config.locks_dir)

    def test_issue_outside_repository_is_error(self, config, git_repo):
        """Given plugins scanned outside the source repo, should report ERROR without switching branches."""
        # Given
        outside_config = replace(config, repo_root=git_repo)
        issue = detect_one_issue(outside_config)

        # When
        status = run_fix_sync(issue.issue_id, outside_config, FakeFixer(), FakeCritic(85))

        # Then
        assert status.result == FixResult.ERROR
        assert "outside repository" in status.error
        assert git(git_repo, "rev-parse", "--abbrev-ref", "HEAD") == "main"
        assert git(git_repo, "branch", "--list", "debug/*") == ""
        assert FixLog(outside_config.fixes_file).records() == []
        assert not os.listdir(outside_config.locks_dir)

    def test_locked_branch(self, repo_config):
        """Given the issue branch locked by another holder, should report LOCKED."""
        # Given
        issue = detect_one_issue(repo_config)
        branch = branch_name_for(issue.plugin, issue.short_id)
        LockManager(repo_config.locks_dir, session_id="other").acquire(branch)

        # When
        status = run_fix_sync(issue.issue_id, repo_config, FakeFixer(), FakeCritic(85))

        # Then
        assert status.result == FixResult.LOCKED
        assert FixLog(repo_config.fixes_file).records() == []

    def test_push_failure_keeps_commit(self, repo_config):
        """Given no origin remote, the fix stays committed and the push error is reported."""
        issue = detect_one_issue(repo_config)

        status = run_fix_sync(issue.issue_id, repo_config, FakeFixer(), FakeCritic(85), push=True)

        assert status.result == FixResult.COMMITTED
        assert not status.pushed
        assert "Push failed" in status.error

    def test_push_opens_pull_request(self, repo_config, git_repo, tmp_path):
        """Given a reachable origin and a GitHub client, should push and record the PR number."""
        # Given
        remote = tmp_path / "origin.git"
        git(tmp_path, "init", "-q", "--bare", str(remote))
        git(git_repo, "remote", "add", "origin", str(remote))
        issue = detect_one_issue(repo_config)
        github = FakeGitHub(7)

        # When
        status = run_fix_sync(
            issue.issue_id, repo_config, FakeFixer(), FakeCritic(85),
            push=True, github=github, base_branch="main",
        )

        # Then
        assert status.pushed
        assert status.pr_number == 7
        assert github.opened == [(status.branch, "fix(reflect): add agent name", "main")]
        assert FixLog(repo_config.fixes_file).records()[0].pr_number == 7
