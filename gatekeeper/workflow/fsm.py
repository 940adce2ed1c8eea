"""Task status state machine using the transitions library.

The machine is the single source of truth for which status moves are
legal. TaskStore maps a destination-based request onto the trigger that
performs it via TRIGGER_FOR.

Usage:
    from gatekeeper.workflow.fsm import TaskFSM

    fsm = TaskFSM("task-abc", "ready")
    fsm.claim()  # -> in-progress
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)


# Values match TaskStatus
STATES = [
    "pending",
    "ready",
    "in-progress",
    "review",
    "completed",
    "failed",
]

TRANSITIONS = [
    # Forward path
    {"trigger": "prepare", "source": "pending", "dest": "ready"},
    {"trigger": "claim", "source": "ready", "dest": "in-progress"},
    {"trigger": "request_review", "source": "in-progress", "dest": "review"},
    {"trigger": "complete", "source": "review", "dest": "completed"},

    # Review feedback sends the task back to the queue
    {"trigger": "add_feedback", "source": "review", "dest": "ready"},

    # Failure from any live state
    {"trigger": "fail", "source": "pending", "dest": "failed"},
    {"trigger": "fail", "source": "ready", "dest": "failed"},
    {"trigger": "fail", "source": "in-progress", "dest": "failed"},
    {"trigger": "fail", "source": "review", "dest": "failed"},
    {"trigger": "fail", "source": "completed", "dest": "failed"},

    {"trigger": "retry", "source": "failed", "dest": "ready"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class TaskFSM:
    """In-memory status machine for one task.

    Persistence belongs to TaskStore; this class only validates and logs.
    """

    def __init__(self, task_id: str, initial: str, on_transition: Callable[[str, str, str], None] | None = None):
        """
        Args:
            task_id: Task identifier (for log lines)
            initial: Current status
            on_transition: Optional callback(from_state, to_state, trigger)
        """
        self.task_id = task_id
        self.on_transition = on_transition
        if initial not in STATES:
            raise ValueError(f"Unknown task status '{initial}' for {task_id}")

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.task_id}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)
