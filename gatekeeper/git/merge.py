"""Trial merges used by the conflict-first gate.

A trial merge runs in a throwaway detached worktree, so the caller's
working tree, index and MERGE_HEAD are never touched and concurrent trial
merges cannot see each other's state.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from gatekeeper.git.runner import run_git
from gatekeeper.git.status import get_conflicted_paths
from gatekeeper.lib.process import ProcessResult, ProcessRunner

logger = logging.getLogger(__name__)


def fetch(repo: Path, remote: str = "origin", branch: str | None = None,
          runner: Optional[ProcessRunner] = None) -> ProcessResult:
    """Fetch from remote."""
    args = ["fetch", remote]
    if branch:
        args.append(branch)
    return run_git(args, repo, timeout=60, runner=runner)


def trial_merge(repo: Path, ref: str, runner: Optional[ProcessRunner] = None) -> list[str]:
    """Merge `ref` into a scratch checkout of HEAD and collect conflicts.

    Returns the list of conflicted paths (empty when the merge is clean or
    the scratch worktree could not be created).
    """
    scratch = Path(tempfile.mkdtemp(prefix="gk-trial-merge-"))
    added = run_git(["worktree", "add", "--detach", str(scratch), "HEAD"], repo, timeout=60, runner=runner)
    if not added.success:
        logger.warning(f"Could not create trial merge worktree: {added.stderr.strip()}")
        shutil.rmtree(scratch, ignore_errors=True)
        return []

    try:
        result = run_git(["merge", "--no-commit", "--no-ff", ref], scratch, timeout=60, runner=runner)
        conflicts: list[str] = []
        if not result.success:
            conflicts = get_conflicted_paths(scratch, runner=runner)
            if not conflicts:
                logger.warning(f"Trial merge of {ref} failed without conflicts: {result.stderr.strip()}")

        abort = run_git(["merge", "--abort"], scratch, runner=runner)
        if not abort.success and "MERGE_HEAD missing" not in abort.stderr:
            logger.warning(f"merge --abort failed: {abort.stderr.strip()}")
        return conflicts
    finally:
        _remove_worktree(repo, scratch, runner)


def _remove_worktree(repo: Path, scratch: Path, runner: Optional[ProcessRunner]) -> None:
    removed = run_git(["worktree", "remove", "--force", str(scratch)], repo, runner=runner)
    if scratch.exists():
        shutil.rmtree(scratch, ignore_errors=True)
    if not removed.success:
        logger.warning(f"worktree remove failed for {scratch}: {removed.stderr.strip()}")
        run_git(["worktree", "prune"], repo, runner=runner)
