"""Data models for locks and scanner sessions."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class LockInfo:
    """Holder metadata read back from a branch lock directory."""
    branch_name: str
    pid: Optional[int]
    session_id: str
    acquired_at: str
    age_seconds: Optional[float] = None
    holder_alive: bool = False


@dataclass
class SessionStatus:
    """Liveness record of a background scanner."""
    session_id: str
    status: str                      # running, stopped or absent
    pid: Optional[int] = None
    started_at: str = ""
    last_heartbeat: str = ""
    alive: bool = False
