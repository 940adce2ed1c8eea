"""
Failure taxonomy for gatekeeper.

Every engine failure carries a machine-stable `reason` plus optional
human-readable detail. The CLI maps these to exit codes.
"""

from typing import Optional


class GatekeeperError(Exception):
    """Base class for engine failures."""

    reason = "error"
    exit_code = 1

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> dict:
        data = {"reason": self.reason, "message": self.message}
        if self.detail:
            data["detail"] = self.detail
        return data


class NotFound(GatekeeperError):
    """A task record or required file does not exist."""

    reason = "not_found"
    exit_code = 2

    def __init__(self, kind: str, ident: str):
        self.kind = kind
        self.ident = ident
        super().__init__(f"{kind} not found: {ident}")


class InvalidTransition(GatekeeperError):
    """A status precondition was violated."""

    reason = "invalid_transition"

    def __init__(self, from_status: str, to_status: str, task_id: str = "", detail: Optional[str] = None):
        self.from_status = from_status
        self.to_status = to_status
        self.task_id = task_id
        super().__init__(
            f"Invalid transition: {from_status} -> {to_status}"
            + (f" (task: {task_id})" if task_id else ""),
            detail,
        )


class InvalidSequence(GatekeeperError):
    """A red/green/refactor ordering rule was violated."""

    reason = "invalid_sequence"

    def __init__(self, message: str, last_phase: Optional[str] = None, requested: Optional[str] = None):
        self.last_phase = last_phase
        self.requested = requested
        super().__init__(message)


class CheckTimeout(GatekeeperError):
    """An external process exceeded its time budget."""

    reason = "check_timeout"

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"timeout after {timeout:g}s: {command}")


class CheckFailed(GatekeeperError):
    """An external process ran but reported failure.

    When raised by the coordinator after a battery run, `report` holds the
    full RunReport so callers can still print every outcome.
    """

    reason = "check_failed"

    def __init__(self, check_id: str, message: str, detail: Optional[str] = None, report=None):
        self.check_id = check_id
        self.report = report
        super().__init__(f"[{check_id}] {message}", detail)


class ConfigurationInvalid(GatekeeperError):
    """Configuration failed to parse or validate. Fatal at startup."""

    reason = "configuration_invalid"
    exit_code = 2

    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        super().__init__(message + (f" at {path}" if path else ""))


class FeedbackUnresolved(GatekeeperError):
    """Completion blocked by open actionable review feedback."""

    reason = "feedback_unresolved"

    def __init__(self, task_id: str, open_items: list[int]):
        self.task_id = task_id
        self.open_items = open_items
        numbers = ", ".join(f"#{n}" for n in open_items)
        super().__init__(
            f"Task {task_id} has unresolved feedback: {numbers}",
            "Resolve each item with 'gk resolve <id> <number>' before completing.",
        )
