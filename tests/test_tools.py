"""Tests for the store buffer and the GitHub wrapper.

- Minimal mocking (only the GitHub API client)
"""

from unittest.mock import MagicMock, patch

import pytest
from github import GithubException

from self_debugger.errors import DebuggerError
from self_debugger.tools.github_tool import GitHubTool
from self_debugger.tools.storage_tool import StorageTool


class TestStorageTool:
    """Tests for StorageTool."""

    def test_store_returns_tool_response(self):
        """Given a stored value, should answer with a numbered text block."""
        storage = StorageTool("fix")

        response = storage.store({"description": "x"})

        assert response == {"content": [{"type": "text", "text": "Stored fix #1"}]}
        assert len(storage) == 1

    def test_latest_wins(self):
        storage = StorageTool("score")
        storage.store({"score": 40})
        storage.store({"score": 90})

        assert storage.latest == {"score": 90}
        assert len(storage.values) == 2

    def test_empty_and_clear(self):
        storage = StorageTool()
        assert storage.latest is None

        storage.store(1)
        storage.clear()

        assert storage.latest is None
        assert len(storage) == 0


@pytest.fixture
def github_client():
    with patch("self_debugger.tools.github_tool.Github") as github_cls:
        client = MagicMock()
        github_cls.return_value = client
        yield client


class TestGitHubTool:
    """Tests for GitHubTool with the API client mocked."""

    def test_requires_repo_and_token(self, monkeypatch):
        monkeypatch.delenv("GITHUB_TOKEN", raising=False)

        with pytest.raises(DebuggerError, match="repository required"):
            GitHubTool("", token="t")
        with pytest.raises(DebuggerError, match="token required"):
            GitHubTool("owner/repo")

    def test_open_pull_request_defaults_base(self, github_client):
        """Given no base, should target the repository default branch and return the PR number."""
        # Given
        repo = github_client.get_repo.return_value
        repo.default_branch = "main"
        repo.create_pull.return_value = MagicMock(number=12, html_url="https://example.com/pr/12")
        tool = GitHubTool("owner/plugins", token="t")

        # When
        number = tool.open_pull_request("debug/reflect/abc12345", "fix(reflect): x", "body")

        # Then
        assert number == 12
        github_client.get_repo.assert_called_once_with("owner/plugins")
        repo.create_pull.assert_called_once_with(
            title="fix(reflect): x", body="body", head="debug/reflect/abc12345", base="main"
        )

    def test_open_pull_request_failure(self, github_client):
        repo = github_client.get_repo.return_value
        repo.create_pull.side_effect = GithubException(422, {"message": "exists"}, None)
        tool = GitHubTool("owner/plugins", token="t")

        with pytest.raises(DebuggerError, match="Failed to open pull request"):
            tool.open_pull_request("b", "t", "body", base="main")

    @pytest.mark.parametrize("merged,state,expected", [
        (True, "closed", "merged"),
        (False, "closed", "closed"),
        (False, "open", "open"),
    ])
    def test_pull_state(self, github_client, merged, state, expected):
        github_client.get_repo.return_value.get_pull.return_value = MagicMock(merged=merged, state=state)

        assert GitHubTool("owner/plugins", token="t").get_pull_state(3) == expected
