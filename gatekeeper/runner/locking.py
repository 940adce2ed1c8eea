"""
Lock management for gatekeeper.

Uses flock for per-task locking so read-modify-transition sequences from
separate processes (or threads) are serialized.
"""

import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path

from gatekeeper.lib.errors import GatekeeperError

POLL_INTERVAL = 0.05


class LockTimeout(GatekeeperError):
    """Lock acquisition timed out."""

    reason = "lock_timeout"


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Internal helper to acquire a file lock.

    Lock files are never deleted: removing one lets two holders end up with
    exclusive locks on different inodes behind the same path.

    Args:
        lock_file: Path to the lock file
        timeout: Seconds to wait for lock
        lock_name: Human-readable name for error messages
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'w')
    start = time.time()

    while True:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            break
        except BlockingIOError:
            if time.time() - start > timeout:
                fd.close()
                raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
            time.sleep(POLL_INTERVAL)

    try:
        fd.write(f"{os.getpid()}\n")
        fd.flush()
        yield
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        fd.close()


@contextmanager
def task_lock(state_dir: Path, task_id: str, timeout: float = 30):
    """Acquire the per-task lock, yield, release on exit."""
    lock_file = state_dir / "locks" / f"{task_id}.lock"
    with _acquire_lock(lock_file, timeout, f"lock for {task_id}"):
        yield
