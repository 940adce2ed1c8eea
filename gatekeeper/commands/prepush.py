"""
gk prepush - Block pushes while completed tasks carry unresolved feedback.

Intended for a git pre-push hook: exits 1 when the push should be blocked.
"""

from gatekeeper.workflow.coordinator import HandoffCoordinator


def cmd_prepush(args, coordinator: HandoffCoordinator):
    violations = coordinator.prepush_guard()
    if not violations:
        print("No unresolved feedback on completed tasks.")
        return 0

    print("Push blocked - unresolved review feedback:")
    print()
    for violation in violations:
        task = violation.task
        print(f"  Task: {task.title} ({task.id})")
        print(f"  Location: {coordinator.store.find(task.id)}")
        for entry in violation.open_feedback:
            print(f"    #{entry.number} {entry.author}: {entry.text.splitlines()[0] if entry.text else ''}")
        print()
    print("Resolve each item with 'gk resolve <task-id> <number>', then push again.")
    return 1
