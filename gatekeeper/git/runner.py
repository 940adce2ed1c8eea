"""Git command runner on top of the process capability."""

from pathlib import Path
from typing import Optional

from gatekeeper.lib.process import DEFAULT_TIMEOUT, ProcessResult, ProcessRunner, SubprocessRunner

_default_runner: ProcessRunner = SubprocessRunner()


def run_git(
    args: list[str],
    cwd: Path,
    timeout: int = DEFAULT_TIMEOUT,
    runner: Optional[ProcessRunner] = None,
) -> ProcessResult:
    """
    Run a git command with timeout handling.

    Args:
        args: Git command arguments (e.g., ["status", "--porcelain"])
        cwd: Working directory for the command
        timeout: Timeout in seconds
        runner: Process runner (defaults to subprocess)

    Returns:
        ProcessResult with returncode, stdout, stderr, and timed_out flag
    """
    cmd = ["git", "-C", str(cwd)] + args
    return (runner or _default_runner).run(cmd, timeout=timeout)
