"""Per-issue git branches, traceable fix commits and explicit pushes."""

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, TYPE_CHECKING

from ..errors import GitError, PushError, SourceRepoNotFound
from ..models import FixProposal, FixType
from ..utils import get_logger
from .locks import LockManager

if TYPE_CHECKING:
    from ..config import DebuggerConfig


logger = get_logger(__name__)

BRANCH_PREFIX = "debug"


def branch_name_for(plugin: str, issue_slug: str) -> str:
    return f"{BRANCH_PREFIX}/{plugin}/{issue_slug}"


def detect_source_repo(start_dir: Optional[Path] = None) -> Path:
    """
    Walk up from ``start_dir`` to the repository that owns the plugins.

    The first directory with a ``.git`` entry must also contain ``plugins/``.

    Raises:
        SourceRepoNotFound: no such repository above ``start_dir``
    """
    current = Path(start_dir or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            if (candidate / "plugins").is_dir():
                logger.debug(f"Source repo detected: {candidate}")
                return candidate
            raise SourceRepoNotFound(f"Found .git but no plugins/ directory at: {candidate}")
    raise SourceRepoNotFound(f"No source repository found above {current}")


class BranchCoordinator:
    """
    Git operations for fixes.

    Handles:
    - Creating or reusing ``debug/<plugin>/<slug>`` branches
    - Applying fix proposals and staging them
    - Committing with Issue-ID / Session-ID trailers
    - Pushing (never forced, never retried)

    Callers serialize work on a branch through ``locks``.
    """

    def __init__(self, repo_root: Path, locks: LockManager, session_id: str = "default"):
        self.repo_root = Path(repo_root)
        self.locks = locks
        self.session_id = session_id

    def _git(self, *args: str, input_text: Optional[str] = None) -> str:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_root,
                input=input_text,
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or e.stdout or "").strip()
            raise GitError(f"git {' '.join(args)} failed: {detail}") from e
        except FileNotFoundError as e:
            raise GitError("git executable not found") from e
        return result.stdout.strip()

    def lock(self, branch_name: str):
        """Context manager holding the branch lock (raises LockContentionError)."""
        return self.locks.hold(branch_name)

    def branch_exists(self, branch_name: str) -> bool:
        try:
            self._git("rev-parse", "--verify", "--quiet", f"refs/heads/{branch_name}")
        except GitError:
            return False
        return True

    def current_branch(self) -> str:
        return self._git("rev-parse", "--abbrev-ref", "HEAD")

    def head_sha(self, short: bool = False) -> str:
        if short:
            return self._git("rev-parse", "--short", "HEAD")
        return self._git("rev-parse", "HEAD")

    def is_working_tree_clean(self) -> bool:
        return self._git("status", "--porcelain") == ""

    def checkout_branch(self, branch_name: str) -> str:
        """Switch to ``branch_name``, creating it from HEAD if absent."""
        if self.branch_exists(branch_name):
            logger.warning(f"Branch already exists: {branch_name}")
            self._git("checkout", branch_name)
        else:
            self._git("checkout", "-b", branch_name)
            logger.info(f"Created feature branch: {branch_name}")
        return branch_name

    def ensure_branch(self, plugin: str, issue_slug: str) -> str:
        """
        Create or switch to the branch for an issue.

        Returns:
            Branch name ``debug/<plugin>/<issue_slug>``
        """
        return self.checkout_branch(branch_name_for(plugin, issue_slug))

    def repo_relative(self, target: Path) -> str:
        """
        Path of ``target`` relative to the repository root.

        Raises:
            GitError: target lies outside the repository
        """
        try:
            return str(Path(target).resolve().relative_to(self.repo_root.resolve()))
        except ValueError:
            raise GitError(f"{target} is outside repository {self.repo_root}") from None

    def apply_proposal(self, proposal: FixProposal, target: Path) -> List[str]:
        """
        Apply a fix proposal to the working tree and stage it.

        Args:
            proposal: Fixer output
            target: Artifact file the proposal is for

        Returns:
            Repository-relative paths that were staged

        Raises:
            GitError: target outside the repository, or git refused the change
        """
        relative = self.repo_relative(target)

        if proposal.fix_type == FixType.DIFF:
            if not proposal.diff.strip():
                raise GitError("Fix proposal has an empty diff")
            diff = proposal.diff if proposal.diff.endswith("\n") else proposal.diff + "\n"
            self._git("apply", "--check", "--index", input_text=diff)
            self._git("apply", "--index", input_text=diff)
            logger.info("Applied diff successfully")
            return [relative]

        if not proposal.fixed_content:
            raise GitError(f"Fix proposal ({proposal.fix_type.value}) has no fixed_content")

        path = self.repo_root / relative
        if proposal.fix_type == FixType.PREPEND:
            current = path.read_text(encoding="utf-8") if path.exists() else ""
            content = proposal.fixed_content
            if not content.endswith("\n"):
                content += "\n"
            path.write_text(content + current, encoding="utf-8")
            logger.info(f"Prepended content to {relative}")
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(proposal.fixed_content, encoding="utf-8")
            logger.info(f"Replaced content of {relative}")

        self._git("add", "--", relative)
        return [relative]

    def stage(self, paths: Sequence[Path]) -> None:
        if paths:
            self._git("add", "--", *[str(p) for p in paths])

    def has_staged_changes(self) -> bool:
        try:
            self._git("diff", "--cached", "--quiet")
        except GitError:
            return True
        return False

    def commit(self, subject: str, body: str = "", trailers: Optional[dict] = None) -> str:
        """
        Commit whatever is staged.

        Returns:
            Commit sha

        Raises:
            GitError: nothing staged, or git refused the commit
        """
        if not self.has_staged_changes():
            raise GitError("No staged changes to commit")

        parts = [subject]
        if body:
            parts.append(body)
        if trailers:
            parts.append("\n".join(f"{key}: {value}" for key, value in trailers.items()))
        message = "\n\n".join(parts) + "\n"

        self._git("commit", "-F", "-", input_text=message)
        return self.head_sha()

    def commit_fix(self, issue_id: str, plugin: str, component: str, description: str) -> str:
        """
        Commit staged changes for an issue with traceable metadata.

        Returns:
            Commit sha
        """
        sha = self.commit(
            subject=f"fix({plugin}): {description}",
            body=f"Fixes detected issue in {component}",
            trailers={
                "Issue-ID": issue_id,
                "Session-ID": self.session_id,
                "Auto-generated": "self-debugger",
            },
        )
        logger.info(f"Committed fix for issue: {issue_id}")
        return sha

    def commit_paths(
        self,
        paths: Sequence[Path],
        subject: str,
        body: str = "",
        trailers: Optional[dict] = None,
    ) -> str:
        """Stage ``paths`` and commit them with a Session-ID trailer (plus any extra trailers)."""
        self.stage(paths)
        return self.commit(subject, body, trailers={"Session-ID": self.session_id, **(trailers or {})})

    def push(self, branch_name: str, remote: str = "origin") -> None:
        """
        Push a branch and set its upstream. One attempt, never forced.

        Raises:
            PushError: the push failed; the local commit is untouched
        """
        try:
            self._git("push", "-u", remote, branch_name)
        except GitError as e:
            logger.error(f"Failed to push branch {branch_name}: {e}")
            raise PushError(str(e)) from e
        logger.info(f"Pushed branch to {remote}: {branch_name}")


def coordinator_from_config(config: "DebuggerConfig") -> BranchCoordinator:
    """BranchCoordinator for the detected source repository, with config-driven locks."""
    repo_root = detect_source_repo(config.repo_root)
    locks = LockManager(
        config.locks_dir,
        session_id=config.session_id,
        stale_threshold_seconds=config.stale_lock_threshold_seconds,
        retries=config.lock_retries,
        retry_delay=config.lock_retry_delay_seconds,
    )
    return BranchCoordinator(repo_root, locks, session_id=config.session_id)
