"""Branch locks: one directory per branch name, created atomically with mkdir.

Lock directory layout::

    <locks_dir>/debug_reflect_hook-frontmatter/
        pid        holder process id
        session    holder session id
        timestamp  acquisition time (UTC ISO 8601)

A lock older than the staleness threshold is reclaimed only after the
holder pid has been verified not running. A live holder is never
reclaimed, however old its lock.
"""

import os
import shutil
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Set

from ..errors import LedgerLockTimeout, LockContentionError
from ..ledger.jsonl import file_lock
from ..models import LockInfo
from ..utils import get_logger
from ..utils.timeutil import age_seconds, format_timestamp


logger = get_logger(__name__)

RECLAIM_SUFFIX = ".reclaim"
RECLAIM_GUARD_TIMEOUT_SECONDS = 5.0
STALE_MARKER = ".stale."


def lock_dir_name(branch_name: str) -> str:
    """Directory-safe key for a branch name ("debug/x/y" -> "debug_x_y")."""
    return branch_name.replace("/", "_")


def parse_pid(raw: Optional[str]) -> Optional[int]:
    """Positive integer pid, or None for missing/invalid content."""
    if raw is None:
        return None
    raw = raw.strip()
    if not raw.isdigit():
        return None
    pid = int(raw)
    return pid if pid > 0 else None


def pid_alive(pid: Optional[int]) -> bool:
    """Check a pid with signal 0. Unknown or invalid pids count as not running."""
    if pid is None or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError:
        return False
    return True


def _read(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return None


class LockManager:
    """
    Named advisory locks keyed by branch name.

    Mutual exclusion relies on ``mkdir`` being atomic on a local POSIX
    filesystem; it is not a distributed lock. Reclaiming a stale lock is
    serialized through an ``flock`` guard per branch, and the stale
    directory is renamed aside before removal, so a reclaimer never deletes
    a lock that was re-created after it first looked.
    """

    def __init__(
        self,
        locks_dir: Path,
        session_id: str = "default",
        stale_threshold_seconds: float = 30 * 60,
        retries: int = 3,
        retry_delay: float = 1.0,
        pid: Optional[int] = None,
    ):
        self.locks_dir = Path(locks_dir)
        self.session_id = session_id
        self.stale_threshold_seconds = stale_threshold_seconds
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.pid = pid if pid is not None else os.getpid()
        self._held: Set[str] = set()

    def lock_path(self, branch_name: str) -> Path:
        return self.locks_dir / lock_dir_name(branch_name)

    def _create(self, branch_name: str) -> bool:
        lock_dir = self.lock_path(branch_name)
        try:
            lock_dir.mkdir()
        except FileExistsError:
            return False

        self._held.add(branch_name)
        (lock_dir / "pid").write_text(f"{self.pid}\n", encoding="utf-8")
        (lock_dir / "session").write_text(f"{self.session_id}\n", encoding="utf-8")
        (lock_dir / "timestamp").write_text(f"{format_timestamp()}\n", encoding="utf-8")

        logger.info(f"Acquired branch lock: {branch_name}")
        return True

    def _lock_age(self, lock_dir: Path) -> Optional[float]:
        """Age from the timestamp file, falling back to the directory mtime."""
        timestamp = _read(lock_dir / "timestamp")
        if timestamp:
            age = age_seconds(timestamp)
            if age is not None:
                return age
        try:
            return time.time() - lock_dir.stat().st_mtime
        except OSError:
            return None

    def _stale_reason(self, lock_dir: Path, branch_name: str) -> Optional[str]:
        """Why the lock may be reclaimed, or None if it must be left alone."""
        age = self._lock_age(lock_dir)
        if age is None:
            return None

        if age < self.stale_threshold_seconds:
            logger.debug(f"Branch locked by another process (age {age / 60:.0f}m): {branch_name}")
            return None

        pid = parse_pid(_read(lock_dir / "pid"))
        if pid_alive(pid):
            logger.error(f"Lock held by running process (PID {pid}, age {age / 60:.0f}m): {branch_name}")
            return None

        holder = f"PID {pid} not running" if pid is not None else "missing or invalid PID"
        return f"{holder}, age {age / 60:.0f}m"

    def _reclaim(self, branch_name: str) -> bool:
        """Replace a stale lock with our own, under the branch's reclaim guard."""
        lock_dir = self.lock_path(branch_name)
        guard = self.locks_dir / f"{lock_dir.name}{RECLAIM_SUFFIX}"

        try:
            with file_lock(guard, timeout=RECLAIM_GUARD_TIMEOUT_SECONDS):
                if not lock_dir.is_dir():
                    return self._create(branch_name)

                # Check again: another process may have reclaimed it since our first look
                reason = self._stale_reason(lock_dir, branch_name)
                if reason is None:
                    return False

                tombstone = lock_dir.with_name(f"{lock_dir.name}{STALE_MARKER}{uuid.uuid4().hex}")
                os.rename(lock_dir, tombstone)
                logger.warning(f"Removing stale lock ({reason}): {branch_name}")
                shutil.rmtree(tombstone, ignore_errors=True)
                return self._create(branch_name)
        except LedgerLockTimeout:
            logger.warning(f"Another process is reclaiming the lock: {branch_name}")
            return False

    def _try_acquire(self, branch_name: str) -> bool:
        """One acquisition attempt, including at most one reclaim."""
        if self._create(branch_name):
            return True

        lock_dir = self.lock_path(branch_name)
        if not lock_dir.is_dir():
            logger.warning(f"Lock directory disappeared, retrying: {branch_name}")
            return self._create(branch_name)

        if self._stale_reason(lock_dir, branch_name) is None:
            return False
        return self._reclaim(branch_name)

    def acquire(self, branch_name: str) -> bool:
        """
        Acquire the lock for a branch.

        Makes ``retries`` attempts with a fixed sleep in between and never
        blocks beyond that.

        Returns:
            True if this process now holds the lock
        """
        self.locks_dir.mkdir(parents=True, exist_ok=True)

        for attempt in range(1, self.retries + 1):
            if self._try_acquire(branch_name):
                return True
            if attempt < self.retries:
                time.sleep(self.retry_delay)

        logger.error(f"Failed to acquire branch lock after {self.retries} attempts: {branch_name}")
        return False

    def release(self, branch_name: str) -> bool:
        """
        Release the lock if this process holds it.

        A lock without a readable pid counts as ours only if this manager
        created it.

        Returns:
            True if a lock was removed. Releasing an absent lock is a no-op.
        """
        lock_dir = self.lock_path(branch_name)
        if not lock_dir.is_dir():
            self._held.discard(branch_name)
            return False

        holder = parse_pid(_read(lock_dir / "pid"))
        owned = holder == self.pid if holder is not None else branch_name in self._held
        if not owned:
            logger.warning(f"Not releasing branch lock held by PID {holder}: {branch_name}")
            return False

        shutil.rmtree(lock_dir, ignore_errors=True)
        self._held.discard(branch_name)
        logger.debug(f"Released branch lock: {branch_name}")
        return True

    @contextmanager
    def hold(self, branch_name: str) -> Iterator[None]:
        """
        Hold the branch lock for the duration of the block.

        Raises:
            LockContentionError: the lock could not be acquired
        """
        if not self.acquire(branch_name):
            raise LockContentionError(
                f"Branch {branch_name} is locked (another instance may be working on it)"
            )
        try:
            yield
        finally:
            self.release(branch_name)

    def inspect(self, branch_name: str) -> Optional[LockInfo]:
        return self._info(self.lock_path(branch_name), branch_name)

    def _info(self, lock_dir: Path, branch_name: str) -> Optional[LockInfo]:
        if not lock_dir.is_dir():
            return None
        pid = parse_pid(_read(lock_dir / "pid"))
        return LockInfo(
            branch_name=branch_name,
            pid=pid,
            session_id=_read(lock_dir / "session") or "",
            acquired_at=_read(lock_dir / "timestamp") or "",
            age_seconds=self._lock_age(lock_dir),
            holder_alive=pid_alive(pid),
        )

    def list_locks(self) -> List[LockInfo]:
        """Every lock currently on disk. Branch names are shown in directory form."""
        if not self.locks_dir.is_dir():
            return []
        locks = []
        for lock_dir in sorted(self.locks_dir.iterdir()):
            if STALE_MARKER in lock_dir.name:
                continue
            info = self._info(lock_dir, lock_dir.name)
            if info is not None:
                locks.append(info)
        return locks
