"""Git status operations."""

from pathlib import Path
from typing import Optional

from gatekeeper.git.runner import run_git
from gatekeeper.lib.process import ProcessRunner

# Porcelain XY codes that mean an unresolved merge conflict
CONFLICT_CODES = {"UU", "AA", "DD", "AU", "UA", "DU", "UD"}


def has_uncommitted_changes(worktree: Path, runner: Optional[ProcessRunner] = None) -> bool:
    """Check if worktree has any uncommitted changes (staged, unstaged, or untracked)."""
    result = run_git(["status", "--porcelain"], worktree, runner=runner)
    return bool(result.stdout.strip())


def parse_porcelain_z(output: str) -> list[tuple[str, str]]:
    """Parse `git status --porcelain -z` into (XY, path) pairs.

    Renames and copies report the destination path.
    """
    entries = output.split('\0')
    parsed = []
    i = 0
    while i < len(entries):
        entry = entries[i]
        if len(entry) < 4:
            i += 1
            continue

        status = entry[:2]
        filename = entry[3:]

        parsed.append((status, filename))
        # -z puts the rename source in the following entry
        i += 2 if status[0] in ('R', 'C') else 1

    return parsed


def get_changed_files(worktree: Path, runner: Optional[ProcessRunner] = None) -> list[str]:
    """Get list of changed files (staged + unstaged + untracked).

    Returns empty list on git failure (e.g., not a repo).
    """
    result = run_git(["status", "--porcelain", "-z"], worktree, runner=runner)
    if not result.success or not result.stdout:
        return []
    return [path for _status, path in parse_porcelain_z(result.stdout)]


def get_conflicted_paths(worktree: Path, runner: Optional[ProcessRunner] = None) -> list[str]:
    """Get paths whose porcelain status marks an unresolved conflict."""
    result = run_git(["status", "--porcelain", "-z"], worktree, runner=runner)
    if not result.success or not result.stdout:
        return []
    return [path for status, path in parse_porcelain_z(result.stdout) if status in CONFLICT_CODES]
