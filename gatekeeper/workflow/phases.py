"""Red/green/refactor sequence validation and phase certification.

Sequencing uses the transitions library the same way the task FSM does:
the machine starts in the last recorded phase ("none" for an empty
history) and a requested phase is legal when its trigger is available.

Accepted histories are the prefixes of (red+ green+ refactor+)*.

Usage:
    from gatekeeper.workflow.phases import certify, Phase

    result = certify(Phase.RED, ctx, PhaseStore(ctx.state_dir, task_id))
    if not result.ok:
        print(result.reason)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from transitions import Machine, MachineError

from gatekeeper import git
from gatekeeper.checks.coverage import load_coverage_report
from gatekeeper.checks.tooling import run_tool
from gatekeeper.lib.errors import CheckTimeout, InvalidSequence
from gatekeeper.lib.globs import split_changes
from gatekeeper.lib.test_parser import ParsedTestOutput, parse_test_output
from gatekeeper.runner.context import ExecutionContext
from gatekeeper.workflow.phase_store import Phase, PhaseRecord, PhaseStore

logger = logging.getLogger(__name__)

NO_PHASE = "none"

STATES = [NO_PHASE, Phase.RED.value, Phase.GREEN.value, Phase.REFACTOR.value]

TRANSITIONS = [
    # Start (or restart) a cycle
    {"trigger": "enter_red", "source": NO_PHASE, "dest": "red"},
    {"trigger": "enter_red", "source": "red", "dest": "red"},
    {"trigger": "enter_red", "source": "refactor", "dest": "red"},

    {"trigger": "enter_green", "source": "red", "dest": "green"},
    {"trigger": "enter_green", "source": "green", "dest": "green"},

    {"trigger": "enter_refactor", "source": "green", "dest": "refactor"},
    {"trigger": "enter_refactor", "source": "refactor", "dest": "refactor"},
]

TRIGGER_FOR_PHASE = {phase.value: f"enter_{phase.value}" for phase in Phase}

# (last phase, requested) -> violated edge
_VIOLATIONS = {
    (NO_PHASE, "green"): "Cannot reach Green phase without completing Red phase",
    (NO_PHASE, "refactor"): "Cannot reach Refactor phase without completing Green phase",
    ("red", "refactor"): "Cannot reach Refactor phase without completing Green phase",
    ("green", "red"): "Cannot go back to Red phase after completing Green phase",
    ("refactor", "green"): "Cannot go back to Green phase after completing Refactor phase",
}

PHASE_MESSAGES = {
    "red": "TDD Red phase marked - Write failing tests before implementation",
    "green": "TDD Green phase marked - Make tests pass with minimal implementation",
    "refactor": "TDD Refactor phase marked - Improve code quality while preserving behavior",
}

# Exit status of a command the shell or runner could not find
COMMAND_NOT_FOUND = 127

REFACTOR_INTENT_WORDS = [
    "refactor",
    "improve",
    "optimize",
    "clean",
    "simplify",
    "extract",
    "consolidate",
    "reorganize",
    "restructure",
]


class PhaseSequence:
    """Transitions model tracking the current phase of one cycle."""

    def __init__(self, initial: str = NO_PHASE):
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
        )

    def allowed(self) -> list[str]:
        triggers = self.machine.get_triggers(self.state)
        return [phase for phase, trigger in TRIGGER_FOR_PHASE.items() if trigger in triggers]

    def advance(self, requested: str) -> None:
        """Move to requested phase.

        Raises:
            InvalidSequence: if the edge is not in the phase machine
        """
        last = self.state
        trigger = TRIGGER_FOR_PHASE.get(requested)
        if trigger is None:
            raise InvalidSequence(f"Unknown phase: {requested}", last_phase=last, requested=requested)
        try:
            getattr(self, trigger)()
        except MachineError as e:
            message = _VIOLATIONS.get((last, requested), f"Cannot move from {last} to {requested}")
            raise InvalidSequence(message, last_phase=last, requested=requested) from e


def _phase_value(phase: "Phase | str") -> str:
    return phase.value if isinstance(phase, Phase) else str(phase)


def check_next(history: Iterable["Phase | str"], requested: "Phase | str") -> None:
    """Raise InvalidSequence unless `requested` may follow `history`."""
    history = [_phase_value(p) for p in history]
    validate_sequence(history)
    sequence = PhaseSequence(history[-1] if history else NO_PHASE)
    sequence.advance(_phase_value(requested))


def validate_sequence(history: Iterable["Phase | str"]) -> None:
    """Replay a full history; raises InvalidSequence at the first bad edge."""
    sequence = PhaseSequence()
    for phase in history:
        sequence.advance(_phase_value(phase))


def allowed_next(history: Iterable["Phase | str"]) -> list[str]:
    history = [_phase_value(p) for p in history]
    return PhaseSequence(history[-1] if history else NO_PHASE).allowed()


@dataclass
class PhaseCertification:
    """Outcome of certifying one phase."""
    phase: str
    ok: bool
    reason: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    record: Optional[PhaseRecord] = None

    @property
    def message(self) -> str:
        if self.ok:
            return PHASE_MESSAGES[self.phase]
        return self.reason or f"{self.phase} phase rejected"


def _run_tests(ctx: ExecutionContext, paths: Optional[list[str]] = None) -> tuple[Optional[ParsedTestOutput], int, Optional[str]]:
    """Run the configured test command; returns (parsed, returncode, error)."""
    try:
        ran = run_tool(ctx, "tests", paths=paths)
    except CheckTimeout as e:
        return None, -1, str(e)
    if ran is None:
        return None, -1, "no test command configured"
    cmd, result = ran
    if result.returncode == COMMAND_NOT_FOUND:
        return None, result.returncode, f"test command not found: {cmd[0]}"
    return parse_test_output(result.stdout, result.stderr), result.returncode, None


def _failing_count(parsed: ParsedTestOutput, returncode: int) -> int:
    if parsed.recognized:
        return parsed.failing
    # Unrecognized output: the exit code is all we have
    return 1 if returncode != 0 else 0


def _coverage_note(ctx: ExecutionContext, details: dict) -> None:
    """Coverage is informational during certification."""
    if not ctx.config.toggles.coverage:
        return
    path = ctx.project_dir / ctx.config.paths.coverage_file
    if not path.exists():
        return
    try:
        report = load_coverage_report(path)
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"[PHASE] Could not read coverage report: {e}")
        return
    if report.total is None:
        return
    details["coverage"] = round(report.total, 2)
    threshold = ctx.config.thresholds.global_coverage
    if report.total < threshold:
        logger.warning(f"[PHASE] Coverage {report.total:.1f}% below {threshold}% (informational)")


def _certify_red(ctx: ExecutionContext, sources: list[str], tests: list[str]) -> PhaseCertification:
    if not tests:
        return PhaseCertification("red", False, "no test file in change set", {"changed_files": list(ctx.git.changed_files)})

    parsed, returncode, error = _run_tests(ctx, paths=tests)
    if error:
        return PhaseCertification("red", False, error)

    if not parsed.recognized:
        return PhaseCertification("red", False, "could not determine failing tests", {"test_files": tests, "returncode": returncode})

    details = {"test_files": tests, "failing": parsed.failing, "passed": parsed.passed}
    if parsed.failing >= 1 and parsed.passed == 0:
        return PhaseCertification("red", True, details=details)
    return PhaseCertification("red", False, "red phase requires failing tests", details)


def _certify_green(ctx: ExecutionContext) -> PhaseCertification:
    parsed, returncode, error = _run_tests(ctx)
    if error:
        return PhaseCertification("green", False, error)

    failing = _failing_count(parsed, returncode)
    details = {"failing": failing, "passed": parsed.passed}
    if failing == 0 and returncode == 0:
        return PhaseCertification("green", True, details=details)
    return PhaseCertification("green", False, f"green phase requires passing tests ({parsed.summary})", details)


def _certify_refactor(ctx: ExecutionContext, sources: list[str]) -> PhaseCertification:
    if not sources:
        return PhaseCertification("refactor", False, "no refactor occurred", {"changed_files": list(ctx.git.changed_files)})

    parsed, returncode, error = _run_tests(ctx)
    if error:
        return PhaseCertification("refactor", False, error)

    failing = _failing_count(parsed, returncode)
    message = ctx.git.commit_message.lower()
    markers = [word for word in REFACTOR_INTENT_WORDS if word in message]
    details = {"source_files": sources, "failing": failing, "passed": parsed.passed, "intent_markers": markers}
    if not markers:
        logger.warning("[PHASE] No refactor intent marker in commit message (advisory)")

    if failing == 0 and returncode == 0:
        return PhaseCertification("refactor", True, details=details)
    return PhaseCertification("refactor", False, f"refactor changed behavior: {parsed.summary}", details)


def certify(phase: "Phase | str", ctx: ExecutionContext, store: PhaseStore) -> PhaseCertification:
    """Validate the sequence, run the phase's content checks, record on success.

    Raises:
        InvalidSequence: history was wiped or the phase may not follow history
    """
    requested = _phase_value(phase)
    if store.history_was_wiped():
        raise InvalidSequence(
            "Phase history is missing for the current marker; run 'gk phase reset' to start a new cycle",
            last_phase=store.read_marker().phase,
            requested=requested,
        )

    history = store.phases()
    check_next(history, requested)

    paths = ctx.config.paths
    sources, tests = split_changes(ctx.git.changed_files, paths.src_globs, paths.test_globs)

    if requested == Phase.RED.value:
        result = _certify_red(ctx, sources, tests)
    elif requested == Phase.GREEN.value:
        result = _certify_green(ctx)
    else:
        result = _certify_refactor(ctx, sources)

    if not result.ok:
        logger.warning(f"[PHASE] {requested} rejected: {result.reason}")
        return result

    _coverage_note(ctx, result.details)
    commit = git.get_commit_sha(ctx.project_dir, runner=ctx.runner)
    result.record = store.record(requested, ref=ctx.run_id, commit=commit)
    logger.info(f"[PHASE] {PHASE_MESSAGES[requested]}")
    return result
