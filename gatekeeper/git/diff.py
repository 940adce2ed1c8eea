"""Git diff operations."""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from gatekeeper.git.runner import run_git
from gatekeeper.lib.process import ProcessRunner

SHORTSTAT_PATTERN = re.compile(
    r'(?P<files>\d+) files? changed'
    r'(?:, (?P<insertions>\d+) insertions?\(\+\))?'
    r'(?:, (?P<deletions>\d+) deletions?\(-\))?'
)
HUNK_PATTERN = re.compile(r'^@@ -\d+(?:,\d+)? \+(\d+)(?:,(\d+))? @@', re.MULTILINE)


@dataclass
class DiffStat:
    files: int = 0
    insertions: int = 0
    deletions: int = 0

    @property
    def lines(self) -> int:
        return self.insertions + self.deletions

    def __add__(self, other: "DiffStat") -> "DiffStat":
        return DiffStat(
            self.files + other.files,
            self.insertions + other.insertions,
            self.deletions + other.deletions,
        )


def parse_shortstat(output: str) -> DiffStat:
    """Parse `git diff --shortstat` output. Empty output means no changes."""
    match = SHORTSTAT_PATTERN.search(output)
    if not match:
        return DiffStat()
    return DiffStat(
        files=int(match.group("files")),
        insertions=int(match.group("insertions") or 0),
        deletions=int(match.group("deletions") or 0),
    )


def get_shortstat(worktree: Path, args: list[str], runner: Optional[ProcessRunner] = None) -> DiffStat | None:
    """Run `git diff --shortstat <args>`; None if git failed."""
    result = run_git(["diff", "--shortstat"] + args, worktree, runner=runner)
    if not result.success:
        return None
    return parse_shortstat(result.stdout)


def get_diff_names(worktree: Path, ref: str = "HEAD", runner: Optional[ProcessRunner] = None) -> list[str]:
    """Get list of changed file names between ref and HEAD."""
    result = run_git(["diff", "--name-only", ref, "HEAD"], worktree, runner=runner)
    if not result.success:
        return []
    return [f.strip() for f in result.stdout.splitlines() if f.strip()]


def parse_added_lines(diff_output: str) -> dict[str, set[int]]:
    """Map file -> line numbers added or modified, from a -U0 diff."""
    changed: dict[str, set[int]] = {}
    current: str | None = None

    for line in diff_output.splitlines():
        if line.startswith("+++ "):
            target = line[4:].strip()
            if target == "/dev/null":
                current = None
            else:
                current = target[2:] if target.startswith("b/") else target
                changed.setdefault(current, set())
            continue

        if current is None or not line.startswith("@@"):
            continue

        match = HUNK_PATTERN.match(line)
        if not match:
            continue
        start = int(match.group(1))
        count = int(match.group(2)) if match.group(2) is not None else 1
        changed[current].update(range(start, start + count))

    return {path: lines for path, lines in changed.items() if lines}


def get_changed_lines(worktree: Path, base_ref: str, runner: Optional[ProcessRunner] = None) -> dict[str, set[int]]:
    """Changed line numbers per file between base_ref and the working tree."""
    result = run_git(["diff", "-U0", "--no-color", base_ref], worktree, runner=runner)
    if not result.success:
        return {}
    return parse_added_lines(result.stdout)
