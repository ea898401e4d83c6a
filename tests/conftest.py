"""Shared fixtures: temporary state home, rules tree, plugins tree and git repo."""

import json
import shutil
import subprocess
from pathlib import Path

import pytest

from self_debugger.config import DebuggerConfig


def write_rule(rules_dir: Path, tier: str, data: dict, name: str = None) -> Path:
    path = rules_dir / tier / f"{name or data['rule_id']}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


def rule_data(rule_id: str, /, confidence: float = 0.8, **overrides) -> dict:
    """A valid rule document: agents/*.md must contain 'name:'."""
    data = {
        "rule_id": rule_id,
        "version": "1.0.0",
        "category": "agents",
        "severity": "warning",
        "confidence": confidence,
        "applies_to": {"component": "agents", "pattern": r"\.md$"},
        "validation": {
            "checks": [
                {
                    "check_id": "has-name",
                    "type": "regex",
                    "pattern": r"^name:\s*\S+",
                    "error_message": "Agent must declare a name",
                }
            ]
        },
        "fix_template": {"type": "prepend", "content": "---\nname: x\n---\n"},
        "references": [],
        "learned_from": None,
        "last_updated": "2026-01-01T00:00:00Z",
    }
    data.update(overrides)
    return data


def write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def plugins_dir(tmp_path) -> Path:
    """Two plugins: 'good' passes every check, 'broken' has a nameless agent."""
    root = tmp_path / "plugins"
    write_file(root / "good" / "agents" / "helper.md", "---\nname: helper\n---\nHelps.\n")
    write_file(root / "broken" / "agents" / "nameless.md", "---\ndescription: no name\n---\n")
    write_file(root / "self-debugger" / "agents" / "nameless.md", "no frontmatter\n")
    return root


@pytest.fixture
def rules_dir(tmp_path) -> Path:
    root = tmp_path / "rules"
    write_rule(root, "core", rule_data("agent-name"))
    return root


@pytest.fixture
def config(tmp_path, plugins_dir, rules_dir) -> DebuggerConfig:
    cfg = DebuggerConfig(
        home=tmp_path / "home",
        plugins_dir=plugins_dir,
        rules_dir=rules_dir,
        session_id="test-session",
        startup_delay_seconds=0,
        scan_interval_seconds=0,
        lock_retries=1,
        lock_retry_delay_seconds=0,
        append_lock_timeout_seconds=2,
    )
    cfg.ensure_directories()
    return cfg


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, text=True)
    return result.stdout.strip()


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def git_repo(tmp_path) -> Path:
    """A source repo with plugins/ and one commit on 'main'."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "checkout", "-q", "-b", "main")
    git(repo, "config", "user.email", "debugger@example.com")
    git(repo, "config", "user.name", "Self Debugger")
    git(repo, "config", "commit.gpgsign", "false")
    write_file(repo / "plugins" / "reflect" / "agents" / "reviewer.md", "---\ndescription: reviews\n---\nBody\n")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "initial")
    return repo
