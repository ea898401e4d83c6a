"""Background scan loop with heartbeat, status record and graceful shutdown.

Session files under ``<home>/sessions/<session_id>/``::

    status.json    {"status": "running"|"stopped", "pid", "started_at", ...}
    monitor.pid    pid of the running scheduler
    heartbeat.ts   timestamp of the last tick
"""

import os
import signal
import time
from pathlib import Path
from typing import Callable, Optional

from ..config import DebuggerConfig, validate_session_id
from ..errors import ScanAborted
from ..ledger.jsonl import atomic_write_json, atomic_write_text
from ..utils import get_logger
from ..utils.timeutil import format_timestamp
from .scan import ScanCycle


logger = get_logger(__name__)

# Longest uninterrupted sleep; bounds how late a stop request is noticed
SLEEP_SLICE_SECONDS = 0.5


class ScanScheduler:
    """
    Runs a ScanCycle every ``scan_interval_seconds``.

    SIGTERM/SIGINT request a stop. A cycle already running may finish within
    ``shutdown_grace_seconds``; after that it is aborted between artifacts.
    Idle waits end immediately.
    """

    def __init__(
        self,
        config: DebuggerConfig,
        cycle: Optional[ScanCycle] = None,
        install_signals: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        validate_session_id(config.session_id)
        self.config = config
        self.cycle = cycle or ScanCycle(config)
        self.install_signals = install_signals
        self.clock = clock
        self.cycles_run = 0
        self._stop_requested_at: Optional[float] = None

    @property
    def session_dir(self) -> Path:
        return self.config.sessions_dir / self.config.session_id

    @property
    def status_file(self) -> Path:
        return self.session_dir / "status.json"

    @property
    def pid_file(self) -> Path:
        return self.session_dir / "monitor.pid"

    @property
    def heartbeat_file(self) -> Path:
        return self.session_dir / "heartbeat.ts"

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested_at is not None

    def request_stop(self, signum: Optional[int] = None, frame=None) -> None:
        if self._stop_requested_at is None:
            name = signal.Signals(signum).name if signum else "request"
            logger.info(f"Monitor: Stop requested ({name}), shutting down gracefully")
            self._stop_requested_at = self.clock()

    def should_abort(self) -> bool:
        """True once a stop was requested and the grace period has run out."""
        if self._stop_requested_at is None:
            return False
        return self.clock() - self._stop_requested_at >= self.config.shutdown_grace_seconds

    def wait(self, seconds: float) -> bool:
        """
        Sleep in slices, returning early on a stop request.

        Returns:
            True if the full wait elapsed
        """
        deadline = self.clock() + seconds
        while not self.stop_requested:
            remaining = deadline - self.clock()
            if remaining <= 0:
                return True
            time.sleep(min(SLEEP_SLICE_SECONDS, remaining))
        return False

    def write_status(self, status: str, **fields) -> None:
        record = {"status": status, "session_id": self.config.session_id}
        record.update(fields)
        atomic_write_json(self.status_file, record)

    def update_heartbeat(self) -> None:
        atomic_write_text(self.heartbeat_file, format_timestamp() + "\n")

    def _install_handlers(self) -> dict:
        previous = {}
        for signum in (signal.SIGTERM, signal.SIGINT):
            previous[signum] = signal.signal(signum, self.request_stop)
        return previous

    def run_once(self) -> bool:
        """
        One tick: heartbeat, then a scan cycle.

        Returns:
            False if the cycle was aborted for shutdown
        """
        self.cycles_run += 1
        logger.info(
            f"Monitor: Starting scan #{self.cycles_run} (interval: {self.config.scan_interval_seconds:.0f}s)"
        )
        self.update_heartbeat()

        try:
            report = self.cycle.run(should_abort=self.should_abort)
        except ScanAborted as e:
            logger.warning(f"Monitor: Scan #{self.cycles_run} aborted: {e}")
            return False
        except Exception as e:
            logger.error(f"Monitor: Scan #{self.cycles_run} failed: {e}", exc_info=self.config.verbose)
            return True

        logger.debug(
            f"Monitor: Scan #{self.cycles_run} completed "
            f"({report.artifacts_scanned} artifacts, {len(report.new_issues)} new issues)"
        )
        return True

    def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Run until stopped (or for ``max_cycles`` ticks).

        Returns:
            Number of cycles started
        """
        self.session_dir.mkdir(parents=True, exist_ok=True)
        previous_handlers = self._install_handlers() if self.install_signals else {}

        logger.info(f"Monitor: Starting background monitor (session: {self.config.session_id})")
        started_at = format_timestamp()
        self.write_status("running", pid=os.getpid(), started_at=started_at)
        atomic_write_text(self.pid_file, f"{os.getpid()}\n")

        try:
            logger.debug(f"Monitor: Waiting {self.config.startup_delay_seconds:.0f}s for session initialization...")
            if self.config.startup_delay_seconds > 0:
                self.wait(self.config.startup_delay_seconds)

            while not self.stop_requested:
                if not self.run_once():
                    break
                if max_cycles is not None and self.cycles_run >= max_cycles:
                    break
                logger.debug(f"Monitor: Waiting {self.config.scan_interval_seconds:.0f}s until next scan...")
                self.wait(self.config.scan_interval_seconds)
        finally:
            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)
            self._cleanup(started_at)

        return self.cycles_run

    def _cleanup(self, started_at: str) -> None:
        logger.info(f"Monitor: Shutting down (session: {self.config.session_id})")
        for path in (self.pid_file, self.heartbeat_file):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
        self.write_status(
            "stopped",
            started_at=started_at,
            stopped_at=format_timestamp(),
            cycles=self.cycles_run,
        )
