"""Task status enum and transition validation.

Thin layer over the FSM in fsm.py:
- TaskStatus enum for type safety
- check_transition() mapping a destination onto an FSM trigger

Usage:
    from gatekeeper.workflow.state_machine import TaskStatus, check_transition

    trigger = check_transition("task-abc", "ready", TaskStatus.IN_PROGRESS)
"""

import logging
from enum import Enum

from transitions import MachineError

from gatekeeper.lib.errors import InvalidTransition
from gatekeeper.workflow.fsm import TRIGGER_FOR, TaskFSM

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    """All task statuses. Values double as bucket directory names."""

    PENDING = "pending"
    READY = "ready"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    COMPLETED = "completed"
    FAILED = "failed"


def parse_status(status_str: str | None) -> TaskStatus | None:
    """Parse a status string into TaskStatus; None if unknown."""
    if status_str is None:
        return None
    normalized = status_str.strip().lower().replace("_", "-")
    for status in TaskStatus:
        if status.value == normalized:
            return status
    return None


def check_transition(task_id: str, current: str, target: TaskStatus) -> str:
    """Validate current -> target on the FSM and return the trigger fired.

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    trigger = TRIGGER_FOR.get((current, target.value))
    if trigger is None:
        raise InvalidTransition(current, target.value, task_id)

    fsm = TaskFSM(task_id, current)
    try:
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current, target.value, task_id) from e
    return trigger
