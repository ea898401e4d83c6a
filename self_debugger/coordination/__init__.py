"""Branch locks, git coordination and the fix loop."""

from .locks import LockManager, lock_dir_name, pid_alive
from .branches import BranchCoordinator, branch_name_for, detect_source_repo, coordinator_from_config
from .fix_loop import FixStatus, run_fix, run_fix_sync

__all__ = [
    "LockManager",
    "lock_dir_name",
    "pid_alive",
    "BranchCoordinator",
    "branch_name_for",
    "detect_source_repo",
    "coordinator_from_config",
    "FixStatus",
    "run_fix",
    "run_fix_sync",
]
