"""External process capability with timeout handling.

Checks depend only on `ProcessRunner.run(command, timeout, cwd)`; the
concrete tool invocation comes from configuration. Tests substitute a fake
runner instead of patching subprocess everywhere.
"""

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


@dataclass
class ProcessResult:
    """Result of an external command."""
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}".strip()


class ProcessRunner(Protocol):
    def run(self, command: Sequence[str], timeout: float, cwd: Optional[Path] = None) -> ProcessResult:
        ...


class SubprocessRunner:
    """ProcessRunner backed by subprocess.run."""

    def run(self, command: Sequence[str], timeout: float, cwd: Optional[Path] = None) -> ProcessResult:
        cmd = list(command)
        start = time.time()
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return ProcessResult(
                returncode=-1,
                stdout="",
                stderr=f"Command timed out after {timeout}s",
                timed_out=True,
                duration=time.time() - start,
            )
        except FileNotFoundError:
            return ProcessResult(
                returncode=127,
                stdout="",
                stderr=f"Command not found: {cmd[0]}",
                duration=time.time() - start,
            )

        duration = time.time() - start
        logger.debug(f"exit={result.returncode} duration={duration:.2f}s $ {shlex.join(cmd)}")
        return ProcessResult(
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=duration,
        )

