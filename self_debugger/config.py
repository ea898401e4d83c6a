"""Configuration for the self-debugger engine."""

import json
import os
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .errors import InvalidSessionId


PACKAGE_RULES_DIR = Path(__file__).resolve().parent / "rules"

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]+$")
MAX_SESSION_ID_LENGTH = 64

# Keys accepted in <home>/config.json
FILE_OVERRIDES = {
    "scan_interval_seconds": float,
    "min_critic_score": float,
    "max_fixes_per_session": int,
    "stale_lock_threshold_minutes": float,
    "shutdown_grace_seconds": float,
    "min_outcomes_for_adjustment": int,
}


def validate_session_id(session_id: str) -> str:
    """Return the session id unchanged, or raise InvalidSessionId."""
    if not session_id:
        raise InvalidSessionId("Session ID cannot be empty")
    if len(session_id) > MAX_SESSION_ID_LENGTH:
        raise InvalidSessionId(f"Session ID too long (max {MAX_SESSION_ID_LENGTH} characters)")
    if not SESSION_ID_PATTERN.match(session_id):
        raise InvalidSessionId(f"Invalid session ID format: {session_id!r}")
    return session_id


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.lower() == "true"


@dataclass(frozen=True)
class DebuggerConfig:
    """Immutable configuration, built once at process start and passed down."""

    # Locations
    home: Path = field(default_factory=lambda: Path.home() / ".claude" / "self-debugger")
    plugins_dir: Optional[Path] = None   # None: <repo_root>/plugins
    rules_dir: Path = PACKAGE_RULES_DIR  # holds core/, learned/, external/
    repo_root: Optional[Path] = None     # None: detected from the working directory

    # Identity
    session_id: str = "default"

    # Scheduler
    scan_interval_seconds: float = 300.0
    startup_delay_seconds: float = 5.0
    shutdown_grace_seconds: float = 10.0

    # Fix gating
    min_critic_score: float = 70.0
    max_fixes_per_session: int = 10

    # Locking
    stale_lock_threshold_minutes: float = 30.0
    lock_retries: int = 3
    lock_retry_delay_seconds: float = 1.0
    append_lock_timeout_seconds: float = 10.0

    # Learning / health
    min_outcomes_for_adjustment: int = 5
    stale_issue_days: int = 7

    # Scanning
    exclude_plugins: Tuple[str, ...] = ("self-debugger",)

    # GitHub (optional, used to open pull requests and sync outcomes)
    github_repo: str = ""
    github_token: Optional[str] = None

    verbose: bool = False

    @property
    def findings_dir(self) -> Path:
        return self.home / "findings"

    @property
    def issues_file(self) -> Path:
        return self.findings_dir / "issues.jsonl"

    @property
    def fixes_file(self) -> Path:
        return self.findings_dir / "fixes.jsonl"

    @property
    def outcomes_file(self) -> Path:
        return self.findings_dir / "outcomes.jsonl"

    @property
    def sessions_dir(self) -> Path:
        return self.home / "sessions"

    @property
    def locks_dir(self) -> Path:
        return self.home / "locks"

    @property
    def metrics_file(self) -> Path:
        return self.home / "metrics.jsonl"

    @property
    def config_file(self) -> Path:
        return self.home / "config.json"

    @property
    def stale_lock_threshold_seconds(self) -> float:
        return self.stale_lock_threshold_minutes * 60

    def ensure_directories(self) -> None:
        """Create the state directories if they are missing."""
        for directory in (self.home, self.findings_dir, self.sessions_dir, self.locks_dir):
            directory.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "DebuggerConfig":
        """Create config from environment variables."""
        env = os.environ if env is None else env
        defaults = cls()

        plugins_dir = env.get("DEBUGGER_PLUGINS_DIR")
        repo_root = env.get("DEBUGGER_REPO_ROOT")

        return cls(
            home=Path(env.get("DEBUGGER_HOME", str(defaults.home))).expanduser(),
            plugins_dir=Path(plugins_dir).expanduser() if plugins_dir else None,
            rules_dir=Path(env.get("DEBUGGER_RULES_DIR", str(defaults.rules_dir))).expanduser(),
            repo_root=Path(repo_root).expanduser() if repo_root else None,
            session_id=env.get("CLAUDE_SESSION_ID", defaults.session_id),
            scan_interval_seconds=float(env.get("DEBUGGER_SCAN_INTERVAL", defaults.scan_interval_seconds)),
            min_critic_score=float(env.get("DEBUGGER_MIN_CRITIC_SCORE", defaults.min_critic_score)),
            max_fixes_per_session=int(env.get("DEBUGGER_MAX_FIXES", defaults.max_fixes_per_session)),
            stale_lock_threshold_minutes=float(
                env.get("DEBUGGER_STALE_LOCK_THRESHOLD", defaults.stale_lock_threshold_minutes)
            ),
            github_repo=env.get("GITHUB_REPOSITORY", ""),
            github_token=env.get("GITHUB_TOKEN"),
            verbose=_env_bool(env.get("DEBUGGER_VERBOSE"), defaults.verbose),
        )

    def with_file_overrides(self) -> "DebuggerConfig":
        """Overlay the numeric settings found in <home>/config.json."""
        if not self.config_file.is_file():
            return self

        try:
            data = json.loads(self.config_file.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return self
        if not isinstance(data, dict):
            return self

        overrides = {}
        for key, cast in FILE_OVERRIDES.items():
            if key in data:
                try:
                    overrides[key] = cast(data[key])
                except (TypeError, ValueError):
                    continue
        return replace(self, **overrides) if overrides else self

    @classmethod
    def load(cls, env: Optional[Mapping[str, str]] = None) -> "DebuggerConfig":
        """Environment first, then the optional config file on top."""
        return cls.from_env(env).with_file_overrides()


# Default configuration
DEFAULT_CONFIG = DebuggerConfig()
