"""Start, stop and inspect the background scanner process of a session."""

import json
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Dict, Optional

from ..config import DebuggerConfig, validate_session_id
from ..coordination.locks import parse_pid, pid_alive
from ..errors import DebuggerError
from ..models import SessionStatus
from ..utils import get_logger


logger = get_logger(__name__)


def _session_dir(config: DebuggerConfig) -> Path:
    return config.sessions_dir / validate_session_id(config.session_id)


def _read_pid(pid_file: Path) -> Optional[int]:
    try:
        return parse_pid(pid_file.read_text(encoding="utf-8"))
    except OSError:
        return None


def _child_env(config: DebuggerConfig) -> Dict[str, str]:
    """Environment that rebuilds the same configuration in the child."""
    env = dict(os.environ)
    env["DEBUGGER_HOME"] = str(config.home)
    env["DEBUGGER_RULES_DIR"] = str(config.rules_dir)
    env["CLAUDE_SESSION_ID"] = config.session_id
    env["DEBUGGER_SCAN_INTERVAL"] = str(config.scan_interval_seconds)
    if config.plugins_dir is not None:
        env["DEBUGGER_PLUGINS_DIR"] = str(config.plugins_dir)
    if config.repo_root is not None:
        env["DEBUGGER_REPO_ROOT"] = str(config.repo_root)
    if config.verbose:
        env["DEBUGGER_VERBOSE"] = "true"
    return env


def start_monitor(config: DebuggerConfig) -> int:
    """
    Launch ``self-debugger monitor`` detached from the calling session.

    Returns:
        PID of the monitor (the existing one if it is already running)
    """
    session_dir = _session_dir(config)
    session_dir.mkdir(parents=True, exist_ok=True)

    existing = _read_pid(session_dir / "monitor.pid")
    if pid_alive(existing):
        logger.warning(f"Monitor already running (PID: {existing})")
        return existing

    log_path = session_dir / "monitor.log"
    with log_path.open("a", encoding="utf-8") as log_file:
        process = subprocess.Popen(
            [sys.executable, "-m", "self_debugger.main", "monitor"],
            stdin=subprocess.DEVNULL,
            stdout=log_file,
            stderr=subprocess.STDOUT,
            env=_child_env(config),
            start_new_session=True,
        )

    logger.info(f"Started monitor (PID: {process.pid}, log: {log_path})")
    return process.pid


def stop_monitor(config: DebuggerConfig, wait_seconds: int = 5) -> bool:
    """
    SIGTERM the monitor, SIGKILL it if still alive after ``wait_seconds``.

    Returns:
        True if a running monitor was signalled
    """
    session_dir = _session_dir(config)
    pid_file = session_dir / "monitor.pid"

    logger.info(f"Stopping monitor (session: {config.session_id})")
    if not pid_file.exists():
        logger.warning(f"No monitor PID file found at: {pid_file}")
        return False

    pid = _read_pid(pid_file)
    if pid is None:
        pid_file.unlink(missing_ok=True)
        raise DebuggerError(f"Invalid PID in file: {pid_file}")

    if not pid_alive(pid):
        logger.warning(f"Monitor process (PID: {pid}) not running, cleaning up")
        pid_file.unlink(missing_ok=True)
        return False

    logger.info(f"Sending SIGTERM to monitor (PID: {pid})")
    os.kill(pid, signal.SIGTERM)

    waited = 0
    while pid_alive(pid):
        if waited >= wait_seconds:
            logger.warning("Monitor did not stop gracefully, sending SIGKILL")
            try:
                os.kill(pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            break
        time.sleep(1)
        waited += 1

    pid_file.unlink(missing_ok=True)
    logger.info("Monitor stopped successfully")
    return True


def monitor_status(config: DebuggerConfig) -> SessionStatus:
    """Liveness of the session's monitor, from its status, pid and heartbeat files."""
    session_dir = _session_dir(config)
    status_file = session_dir / "status.json"

    if not status_file.exists():
        return SessionStatus(session_id=config.session_id, status="absent")

    try:
        data = json.loads(status_file.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        data = {}

    try:
        heartbeat = (session_dir / "heartbeat.ts").read_text(encoding="utf-8").strip()
    except OSError:
        heartbeat = ""

    pid = _read_pid(session_dir / "monitor.pid")
    return SessionStatus(
        session_id=config.session_id,
        status=data.get("status", "unknown"),
        pid=pid,
        started_at=data.get("started_at", ""),
        last_heartbeat=heartbeat,
        alive=pid_alive(pid),
    )
