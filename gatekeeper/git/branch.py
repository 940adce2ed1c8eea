"""Git branch and commit lookups."""

from pathlib import Path
from typing import Optional

from gatekeeper.git.runner import run_git
from gatekeeper.lib.process import ProcessRunner


def get_current_branch(worktree: Path, runner: Optional[ProcessRunner] = None) -> str | None:
    """Get the current branch name, or None if detached HEAD."""
    result = run_git(["branch", "--show-current"], worktree, runner=runner)
    if result.success:
        return result.stdout.strip() or None
    return None


def get_commit_sha(worktree: Path, ref: str = "HEAD", runner: Optional[ProcessRunner] = None) -> str | None:
    """Get the SHA of a ref."""
    result = run_git(["rev-parse", ref], worktree, runner=runner)
    if result.success:
        return result.stdout.strip()
    return None


def ref_exists(worktree: Path, ref: str, runner: Optional[ProcessRunner] = None) -> bool:
    """Check if a ref resolves to a commit."""
    result = run_git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], worktree, runner=runner)
    return result.success


def get_commit_message(worktree: Path, ref: str = "HEAD", runner: Optional[ProcessRunner] = None) -> str:
    """Get the full message of a commit, or empty string."""
    result = run_git(["log", "-1", "--pretty=%B", ref], worktree, timeout=10, runner=runner)
    return result.stdout.strip() if result.success else ""


def resolve_base_ref(
    worktree: Path,
    candidates: list[str],
    runner: Optional[ProcessRunner] = None,
) -> str | None:
    """Return the first candidate ref that exists, falling back to HEAD~1."""
    for ref in candidates + ["HEAD~1"]:
        if ref and ref_exists(worktree, ref, runner=runner):
            return ref
    return None
