"""Shared fixtures: a scripted ProcessRunner and context builders."""

import threading
import time
from pathlib import Path

import pytest

from gatekeeper.lib.check_commands import CheckCommands
from gatekeeper.lib.config import config_from_document, merge_layers
from gatekeeper.lib.process import ProcessResult
from gatekeeper.runner.context import ExecutionContext, GitInfo


class FakeRunner:
    """ProcessRunner returning canned results for commands containing a fragment.

    Rules registered later win. Unmatched commands succeed with no output.
    """

    def __init__(self):
        self.rules = []
        self.calls = []
        self._lock = threading.Lock()

    def on(self, fragment, returncode=0, stdout="", stderr="", timed_out=False, delay=0.0):
        self.rules.insert(0, (fragment, ProcessResult(returncode, stdout, stderr, timed_out), delay))
        return self

    def run(self, command, timeout, cwd=None):
        line = " ".join(command)
        with self._lock:
            self.calls.append(line)
        for fragment, result, delay in self.rules:
            if fragment in line:
                if delay:
                    time.sleep(delay)
                return result
        return ProcessResult(0, "", "")

    def ran(self, fragment):
        return any(fragment in call for call in self.calls)


def make_config(**values):
    """Config snapshot from defaults plus KEY=value overrides."""
    document, sources = merge_layers({}, {key: str(value) for key, value in values.items()})
    return config_from_document(document, sources)


def make_context(
    project_dir: Path,
    config=None,
    runner=None,
    *,
    changed=(),
    mode="functional",
    phase=None,
    task_id=None,
    is_ci=False,
    environ=None,
    base_ref="origin/main",
    uncommitted=False,
    commit_message="",
    branch="feature/x",
    commands=None,
):
    config = config or make_config()
    return ExecutionContext(
        project_dir=project_dir,
        config=config,
        git=GitInfo(
            current_branch=branch,
            is_main_branch=branch == config.git.main_branch,
            base_ref=base_ref,
            changed_files=tuple(changed),
            has_uncommitted_changes=uncommitted,
            commit_message=commit_message,
        ),
        is_ci=is_ci,
        mode=mode,
        mode_source="explicit",
        phase=phase,
        task_id=task_id,
        commands=CheckCommands(commands=dict(commands)) if commands is not None else CheckCommands(),
        runner=runner or FakeRunner(),
        run_id="run-test",
        environ=environ or {},
    )


@pytest.fixture
def fake_runner():
    return FakeRunner()
