"""GitHub API wrapper for fix pull requests."""

import os
from typing import Optional

from github import Auth, Github, GithubException
from github.Repository import Repository

from ..errors import DebuggerError
from ..utils import get_logger


logger = get_logger(__name__)


class GitHubTool:
    """
    GitHub API wrapper for the fix loop.

    Handles:
    - Opening a pull request for a pushed fix branch
    - Reading pull-request state back for outcome syncing
    """

    def __init__(self, repo: str, token: Optional[str] = None):
        """
        Initialize GitHub tool.

        Args:
            repo: Repository in format "owner/repo"
            token: GitHub token (defaults to GITHUB_TOKEN env var)
        """
        if not repo:
            raise DebuggerError("GitHub repository required. Set GITHUB_REPOSITORY or pass --repo.")
        self.token = token or os.environ.get("GITHUB_TOKEN")
        if not self.token:
            raise DebuggerError("GitHub token required. Set GITHUB_TOKEN env var or pass token parameter.")

        self.gh = Github(auth=Auth.Token(self.token))
        self.repo_name = repo
        self._repo: Optional[Repository] = None

    @property
    def repo(self) -> Repository:
        """Repository object (cached)."""
        if self._repo is None:
            self._repo = self.gh.get_repo(self.repo_name)
        return self._repo

    def open_pull_request(self, branch: str, title: str, body: str, base: Optional[str] = None) -> int:
        """
        Open a pull request from a fix branch.

        Args:
            branch: Head branch (already pushed)
            title: Pull-request title
            body: Pull-request description
            base: Target branch (defaults to the repository default branch)

        Returns:
            Pull-request number
        """
        base = base or self.repo.default_branch
        try:
            pr = self.repo.create_pull(title=title, body=body, head=branch, base=base)
        except GithubException as e:
            raise DebuggerError(f"Failed to open pull request for {branch}: {e}") from e

        logger.info(f"Opened pull request #{pr.number}: {pr.html_url}")
        return pr.number

    def get_pull_state(self, number: int) -> str:
        """
        Returns:
            "merged", "closed" (without merge) or "open"
        """
        try:
            pr = self.repo.get_pull(number)
        except GithubException as e:
            raise DebuggerError(f"Failed to read pull request #{number}: {e}") from e

        if pr.merged:
            return "merged"
        return pr.state
