"""Line-delimited JSON files shared between processes.

Every mutation goes through an exclusive ``flock`` on ``<file>.lock`` so
concurrent scanners on the same host never interleave partial lines, and
so read-check-append sequences (issue dedup) are atomic across processes.
Whole-file rewrites (rule files, status records) use temp + fsync + replace.
"""

import fcntl
import json
import os
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List

from ..errors import LedgerLockTimeout
from ..utils import get_logger


logger = get_logger(__name__)

LOCK_POLL_SECONDS = 0.05


def lock_path_for(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


@contextmanager
def file_lock(path: Path, timeout: float = 10.0) -> Iterator[None]:
    """Hold an exclusive advisory lock for ``path`` (via its .lock sibling).

    Raises:
        LedgerLockTimeout: lock not obtained within ``timeout`` seconds
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path_for(path).open("a+", encoding="utf-8")
    try:
        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError:
                if time.monotonic() >= deadline:
                    raise LedgerLockTimeout(f"Failed to acquire lock on {path} after {timeout}s")
                time.sleep(LOCK_POLL_SECONDS)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()


def read_jsonl(path: Path) -> List[Dict[str, Any]]:
    """All JSON objects in the file, in order. Corrupt lines are skipped."""
    if not path.is_file():
        return []

    records = []
    with path.open("r", encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                logger.warning(f"Skipping corrupt line {number} in {path}")
                continue
            if isinstance(record, dict):
                records.append(record)
    return records


def _append_unlocked(path: Path, record: Dict[str, Any]) -> None:
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, sort_keys=False) + "\n")
        handle.flush()
        os.fsync(handle.fileno())


def append_jsonl(path: Path, record: Dict[str, Any], timeout: float = 10.0) -> None:
    """Append one record under the file's exclusive lock."""
    with file_lock(path, timeout):
        _append_unlocked(path, record)


class LockedJsonl:
    """A JSONL file opened under its lock, for read-check-append sequences."""

    def __init__(self, path: Path):
        self.path = path

    def read(self) -> List[Dict[str, Any]]:
        return read_jsonl(self.path)

    def append(self, record: Dict[str, Any]) -> None:
        _append_unlocked(self.path, record)


@contextmanager
def locked_jsonl(path: Path, timeout: float = 10.0) -> Iterator[LockedJsonl]:
    with file_lock(path, timeout):
        yield LockedJsonl(path)


def atomic_write_text(path: Path, text: str) -> None:
    """Write a whole file so readers see either the old or the new content."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def atomic_write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, json.dumps(data, indent=2) + "\n")
