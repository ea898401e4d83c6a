"""Tests for branch locks."""

import multiprocessing
import os
from datetime import timedelta

import pytest

from self_debugger.coordination import LockManager, lock_dir_name, pid_alive
from self_debugger.coordination import locks as locks_module
from self_debugger.errors import LockContentionError
from self_debugger.utils.timeutil import format_timestamp, utcnow

# Above the kernel's pid_max, so never a running process
DEAD_PID = 999999999

BRANCH = "debug/reflect/abc12345"


def manager(tmp_path, pid, session="s", retries=1):
    return LockManager(tmp_path / "locks", session_id=session, retries=retries, retry_delay=0, pid=pid)


def backdate(lock_manager, branch):
    (lock_manager.lock_path(branch) / "timestamp").write_text("2020-01-01T00:00:00Z\n")


def stamp_age(lock_manager, branch, seconds):
    moment = utcnow() - timedelta(seconds=seconds)
    (lock_manager.lock_path(branch) / "timestamp").write_text(f"{format_timestamp(moment)}\n")


def _acquire_in_child(args):
    locks_dir, branch = args
    return LockManager(locks_dir, retries=1, retry_delay=0).acquire(branch)


class TestLockManager:
    """Tests for acquire, release and stale reclaim."""

    def test_lock_dir_name(self):
        assert lock_dir_name("debug/reflect/abc") == "debug_reflect_abc"

    def test_acquire_writes_holder_files(self, tmp_path):
        """Given a free branch, acquire should create the lock directory with pid, session and timestamp."""
        # Given
        locks = manager(tmp_path, pid=os.getpid(), session="alpha")

        # When
        acquired = locks.acquire(BRANCH)

        # Then
        assert acquired
        lock_dir = tmp_path / "locks" / "debug_reflect_abc12345"
        assert (lock_dir / "pid").read_text().strip() == str(os.getpid())
        assert (lock_dir / "session").read_text().strip() == "alpha"
        assert (lock_dir / "timestamp").read_text().strip().endswith("Z")

    def test_mutual_exclusion(self, tmp_path):
        """Given a fresh lock held by one process, another cannot take it."""
        # Given
        first = manager(tmp_path, pid=os.getpid())
        second = manager(tmp_path, pid=DEAD_PID)
        first.acquire(BRANCH)

        # When
        acquired = second.acquire(BRANCH)

        # Then
        assert not acquired

    def test_stale_lock_of_dead_holder_is_reclaimed(self, tmp_path):
        """Given an old lock whose pid is not running, acquire should reclaim it."""
        # Given
        dead = manager(tmp_path, pid=DEAD_PID, session="gone")
        dead.acquire(BRANCH)
        backdate(dead, BRANCH)
        live = manager(tmp_path, pid=os.getpid(), session="live")

        # When
        acquired = live.acquire(BRANCH)

        # Then
        assert acquired
        assert live.inspect(BRANCH).session_id == "live"

    def test_old_lock_of_live_holder_is_kept(self, tmp_path):
        """Given an old lock whose pid is still running, acquire must not reclaim it."""
        # Given
        holder = manager(tmp_path, pid=os.getpid())
        holder.acquire(BRANCH)
        backdate(holder, BRANCH)
        other = manager(tmp_path, pid=DEAD_PID)

        # When
        acquired = other.acquire(BRANCH)

        # Then
        assert not acquired
        assert holder.inspect(BRANCH).pid == os.getpid()

    def test_invalid_pid_file_is_reclaimable_when_old(self, tmp_path):
        locks = manager(tmp_path, pid=os.getpid())
        lock_dir = locks.lock_path(BRANCH)
        lock_dir.mkdir(parents=True)
        (lock_dir / "pid").write_text("not-a-pid\n")
        (lock_dir / "timestamp").write_text("2020-01-01T00:00:00Z\n")

        assert locks.acquire(BRANCH)

    def test_release_refuses_other_holder(self, tmp_path):
        """Given a lock held by another pid, release should leave it in place."""
        # Given
        holder = manager(tmp_path, pid=os.getpid())
        holder.acquire(BRANCH)
        other = manager(tmp_path, pid=DEAD_PID)

        # When
        released = other.release(BRANCH)

        # Then
        assert not released
        assert holder.lock_path(BRANCH).is_dir()

    def test_release_absent_is_noop(self, tmp_path):
        assert not manager(tmp_path, pid=os.getpid()).release(BRANCH)

    def test_hold_releases_on_exit(self, tmp_path):
        locks = manager(tmp_path, pid=os.getpid())

        with locks.hold(BRANCH):
            assert locks.lock_path(BRANCH).is_dir()

        assert not locks.lock_path(BRANCH).exists()

    def test_hold_releases_on_error(self, tmp_path):
        locks = manager(tmp_path, pid=os.getpid())

        with pytest.raises(RuntimeError):
            with locks.hold(BRANCH):
                raise RuntimeError("boom")

        assert not locks.lock_path(BRANCH).exists()

    def test_hold_raises_on_contention(self, tmp_path):
        """Given a branch locked elsewhere, hold should raise LockContentionError."""
        manager(tmp_path, pid=os.getpid()).acquire(BRANCH)

        with pytest.raises(LockContentionError):
            with manager(tmp_path, pid=DEAD_PID, retries=2).hold(BRANCH):
                pass

    def test_list_locks(self, tmp_path):
        """Given two held locks, list_locks should report both with holder liveness."""
        # Given
        manager(tmp_path, pid=os.getpid(), session="a").acquire("debug/a/1")
        manager(tmp_path, pid=DEAD_PID, session="b").acquire("debug/b/2")

        # When
        locks = manager(tmp_path, pid=os.getpid()).list_locks()

        # Then
        assert [lock.branch_name for lock in locks] == ["debug_a_1", "debug_b_2"]
        assert [lock.holder_alive for lock in locks] == [True, False]
        assert [lock.session_id for lock in locks] == ["a", "b"]

    def test_release_refuses_lock_without_pid_it_did_not_create(self, tmp_path):
        """Given a lock directory with no pid file made by someone else, release should keep it."""
        # Given
        locks = manager(tmp_path, pid=os.getpid())
        lock_dir = locks.lock_path(BRANCH)
        lock_dir.mkdir(parents=True)

        # When
        released = locks.release(BRANCH)

        # Then
        assert not released
        assert lock_dir.is_dir()

    def test_release_own_lock_after_pid_file_lost(self, tmp_path):
        """Given a lock this manager created whose pid file vanished, release should still remove it."""
        # Given
        locks = manager(tmp_path, pid=os.getpid())
        locks.acquire(BRANCH)
        (locks.lock_path(BRANCH) / "pid").unlink()

        # When
        released = locks.release(BRANCH)

        # Then
        assert released
        assert not locks.lock_path(BRANCH).exists()


class TestStaleThreshold:
    """Reclaim decisions right at the staleness threshold."""

    THRESHOLD = 1800

    def seeded(self, tmp_path, holder_pid, age):
        holder = manager(tmp_path, pid=holder_pid, session="holder")
        holder.acquire(BRANCH)
        stamp_age(holder, BRANCH, age)
        return holder

    def test_live_holder_at_threshold_is_kept(self, tmp_path):
        """Given a lock exactly threshold old held by a running pid, it must not be reclaimed."""
        # Given
        self.seeded(tmp_path, os.getpid(), self.THRESHOLD)
        other = manager(tmp_path, pid=DEAD_PID, session="other")

        # When
        acquired = other.acquire(BRANCH)

        # Then
        assert not acquired
        assert other.inspect(BRANCH).session_id == "holder"

    def test_dead_holder_at_threshold_is_reclaimed(self, tmp_path):
        """Given a lock exactly threshold old whose pid is gone, it is reclaimed."""
        # Given
        self.seeded(tmp_path, DEAD_PID, self.THRESHOLD)
        other = manager(tmp_path, pid=os.getpid(), session="other")

        # When
        acquired = other.acquire(BRANCH)

        # Then
        assert acquired
        assert other.inspect(BRANCH).session_id == "other"

    def test_dead_holder_under_threshold_is_kept(self, tmp_path):
        """Given a dead holder's lock a minute short of the threshold, it is not reclaimed yet."""
        # Given
        self.seeded(tmp_path, DEAD_PID, self.THRESHOLD - 60)
        other = manager(tmp_path, pid=os.getpid(), session="other")

        # When
        acquired = other.acquire(BRANCH)

        # Then
        assert not acquired
        assert other.inspect(BRANCH).session_id == "holder"


class TestConcurrentAcquire:
    """Mutual exclusion between competing processes."""

    def race(self, locks_dir):
        context = multiprocessing.get_context("fork")
        with context.Pool(4) as pool:
            return pool.map(_acquire_in_child, [(str(locks_dir), BRANCH)] * 8)

    def test_one_winner_for_free_lock(self, tmp_path):
        """Given several processes racing for a free branch, exactly one acquires it."""
        # When
        acquired = self.race(tmp_path / "locks")

        # Then
        assert sum(acquired) == 1

    def test_one_winner_for_stale_lock(self, tmp_path):
        """Given several processes racing to reclaim a dead holder's stale lock, exactly one wins."""
        # Given
        dead = manager(tmp_path, pid=DEAD_PID, session="gone")
        dead.acquire(BRANCH)
        backdate(dead, BRANCH)

        # When
        acquired = self.race(tmp_path / "locks")

        # Then
        assert sum(acquired) == 1
        assert dead.inspect(BRANCH).session_id == "default"
        assert [lock.branch_name for lock in dead.list_locks()] == ["debug_reflect_abc12345"]

    def test_reclaim_does_not_remove_lock_taken_after_stale_check(self, tmp_path, monkeypatch):
        """Given another process reclaims between our staleness check and our reclaim, we back off."""
        # Given
        dead = manager(tmp_path, pid=DEAD_PID, session="gone")
        dead.acquire(BRANCH)
        backdate(dead, BRANCH)
        winner = manager(tmp_path, pid=os.getpid(), session="winner")
        loser = manager(tmp_path, pid=DEAD_PID - 1, session="loser")

        original_pid_alive = locks_module.pid_alive
        interleaved = []

        def pid_alive_then_competitor_reclaims(pid):
            # The competitor runs right after the loser sees the dead holder
            alive = original_pid_alive(pid)
            if not interleaved:
                interleaved.append(pid)
                assert winner.acquire(BRANCH)
            return alive

        monkeypatch.setattr(locks_module, "pid_alive", pid_alive_then_competitor_reclaims)

        # When
        acquired = loser.acquire(BRANCH)

        # Then
        assert interleaved == [DEAD_PID]
        assert not acquired
        info = winner.inspect(BRANCH)
        assert info.pid == os.getpid()
        assert info.session_id == "winner"


class TestPidAlive:
    def test_current_process_alive(self):
        assert pid_alive(os.getpid())

    def test_invalid_pids(self):
        assert not pid_alive(None)
        assert not pid_alive(0)
        assert not pid_alive(DEAD_PID)
