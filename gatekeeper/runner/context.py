"""
Execution context for a check run or phase certification.

The context is an immutable snapshot gathered once per invocation: git
state, CI detection, the resolved delivery mode and the current phase
marker. Checks read it, never mutate it.
"""

import json
import logging
import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Mapping, Optional

from gatekeeper import git
from gatekeeper.lib.check_commands import CheckCommands, load_check_commands
from gatekeeper.lib.config import Config, get_state_dir
from gatekeeper.lib.constants import CI_ENV_VARS, MODE_FUNCTIONAL, MODE_NON_FUNCTIONAL, MODES
from gatekeeper.lib.process import ProcessRunner, SubprocessRunner
from gatekeeper.workflow.phase_store import read_marker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitInfo:
    """Version-control facts observed at context build time."""
    current_branch: Optional[str]
    is_main_branch: bool
    base_ref: Optional[str]
    changed_files: tuple[str, ...]
    has_uncommitted_changes: bool
    commit_message: str


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable per-run snapshot handed to every check."""
    project_dir: Path
    config: Config
    git: GitInfo
    is_ci: bool
    mode: str
    mode_source: str
    phase: Optional[str]
    task_id: Optional[str]
    commands: CheckCommands = field(compare=False)
    runner: ProcessRunner = field(compare=False)
    run_id: str = ""
    started_at: datetime = field(default_factory=datetime.now)
    environ: Mapping[str, str] = field(default_factory=dict, compare=False, repr=False)

    @property
    def state_dir(self) -> Path:
        return get_state_dir(self.project_dir)

    @property
    def is_functional(self) -> bool:
        return self.mode == MODE_FUNCTIONAL

    def summary(self) -> str:
        return (
            f"{self.mode} mode ({self.mode_source}), "
            f"branch={self.git.current_branch or 'detached'}, "
            f"base={self.git.base_ref or 'none'}, "
            f"{len(self.git.changed_files)} changed file(s)"
            + (", CI" if self.is_ci else "")
            + (f", phase={self.phase}" if self.phase else "")
        )


_MODE_ALIASES = {
    "functional": MODE_FUNCTIONAL,
    "f": MODE_FUNCTIONAL,
    "non_functional": MODE_NON_FUNCTIONAL,
    "non-functional": MODE_NON_FUNCTIONAL,
    "nonfunctional": MODE_NON_FUNCTIONAL,
    "nf": MODE_NON_FUNCTIONAL,
}


def normalize_mode(value: str) -> str:
    """Map mode spellings to functional / non_functional.

    Raises:
        ValueError: for unknown modes
    """
    mode = _MODE_ALIASES.get(value.strip().lower())
    if mode is None:
        raise ValueError(f"Unknown mode '{value}' (expected one of: {', '.join(MODES)})")
    return mode


def detect_ci(environ: Mapping[str, str]) -> bool:
    return any(environ.get(var) for var in CI_ENV_VARS)


def resolve_mode(
    state_dir: Path,
    environ: Mapping[str, str],
    explicit: Optional[str] = None,
) -> tuple[str, str]:
    """Resolve the delivery mode and where it came from.

    Order: explicit argument, GATEKEEPER_MODE, TASK.json in the state dir,
    PR labels, PR title markers, default functional.
    """
    if explicit:
        return normalize_mode(explicit), "explicit"

    env_mode = environ.get("GATEKEEPER_MODE")
    if env_mode:
        try:
            return normalize_mode(env_mode), "env"
        except ValueError:
            logger.warning(f"Ignoring invalid GATEKEEPER_MODE '{env_mode}'")

    task_file = state_dir / "TASK.json"
    if task_file.exists():
        try:
            data = json.loads(task_file.read_text())
            if isinstance(data, dict) and data.get("mode"):
                return normalize_mode(str(data["mode"])), "task-file"
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable {task_file}: {e}")

    labels = [label.strip().lower() for label in environ.get("GITHUB_PR_LABELS", "").split(",")]
    if "mode:functional" in labels:
        return MODE_FUNCTIONAL, "pr-label"
    if "mode:non-functional" in labels or "mode:non_functional" in labels:
        return MODE_NON_FUNCTIONAL, "pr-label"

    title = environ.get("GITHUB_PR_TITLE") or environ.get("PR_TITLE") or ""
    if "[MODE:NF]" in title.upper():
        return MODE_NON_FUNCTIONAL, "pr-title"
    if "[MODE:F]" in title.upper():
        return MODE_FUNCTIONAL, "pr-title"

    return MODE_FUNCTIONAL, "default"


def collect_git_info(
    project_dir: Path,
    config: Config,
    runner: ProcessRunner,
    environ: Mapping[str, str],
) -> GitInfo:
    branch = git.get_current_branch(project_dir, runner=runner)

    candidates = []
    if environ.get("GITHUB_BASE_REF"):
        candidates.append(f"origin/{environ['GITHUB_BASE_REF']}")
    candidates.append(config.git.base_ref)
    base_ref = git.resolve_base_ref(project_dir, candidates, runner=runner)
    if base_ref is None:
        logger.warning("No base ref found; changed files limited to the working tree")

    changed: list[str] = []
    if base_ref:
        changed.extend(git.get_diff_names(project_dir, base_ref, runner=runner))
    for path in git.get_changed_files(project_dir, runner=runner):
        if path not in changed:
            changed.append(path)

    uncommitted = git.has_uncommitted_changes(project_dir, runner=runner)

    return GitInfo(
        current_branch=branch,
        is_main_branch=branch == config.git.main_branch,
        base_ref=base_ref,
        changed_files=tuple(changed),
        has_uncommitted_changes=uncommitted,
        commit_message=git.get_commit_message(project_dir, runner=runner),
    )


def new_run_id() -> str:
    return f"{datetime.now().strftime('%Y%m%d-%H%M%S')}-{secrets.token_hex(3)}"


def build_context(
    project_dir: Path,
    config: Config,
    *,
    mode: Optional[str] = None,
    task_id: Optional[str] = None,
    runner: Optional[ProcessRunner] = None,
    environ: Optional[Mapping[str, str]] = None,
    commands: Optional[CheckCommands] = None,
) -> ExecutionContext:
    """Gather the immutable snapshot for one run."""
    if environ is None:
        environ = os.environ
    runner = runner or SubprocessRunner()
    state_dir = get_state_dir(project_dir)

    git_info = collect_git_info(project_dir, config, runner, environ)
    resolved_mode, mode_source = resolve_mode(state_dir, environ, mode)

    marker = read_marker(state_dir)
    phase = None
    if marker is not None and (task_id is None or marker.task_id == task_id):
        phase = marker.phase

    ctx = ExecutionContext(
        project_dir=project_dir,
        config=config,
        git=git_info,
        is_ci=detect_ci(environ),
        mode=resolved_mode,
        mode_source=mode_source,
        phase=phase,
        task_id=task_id,
        commands=commands or load_check_commands(project_dir),
        runner=runner,
        run_id=new_run_id(),
        environ=dict(environ),
    )
    logger.info(f"Context: {ctx.summary()}")
    return ctx
