"""
gk show / list / next - read task records.
"""

from gatekeeper.workflow.coordinator import HandoffCoordinator
from gatekeeper.workflow.tasks import Task, status_of


def print_task(task: Task, store_path=None):
    print(f"Task: {task.id}")
    print("=" * 60)
    print(f"Title:          {task.title}")
    print(f"Status:         {task.status}")
    print(f"Priority:       {task.priority}")
    print(f"Actor:          {task.actor}")
    print(f"Classification: {task.classification or '-'}")
    print(f"Approach:       {task.approach or '-'}")
    print(f"Created:        {task.created}")
    print(f"Last updated:   {task.last_updated}")
    if store_path:
        print(f"Location:       {store_path}")
    print()

    if task.goal:
        print("Goal")
        print("-" * 40)
        print(f"  {task.goal}")
        print()

    if task.acceptance_criteria:
        print("Acceptance Criteria")
        print("-" * 40)
        for item in task.acceptance_criteria:
            print(f"  - {item}")
        print()

    if task.dependencies:
        print(f"Depends on: {', '.join(task.dependencies)}")
        print()

    if task.feedback:
        open_numbers = {f.number for f in task.open_feedback()}
        print("Review Feedback")
        print("-" * 40)
        for entry in task.feedback:
            marker = "!" if entry.number in open_numbers else " "
            print(f"  [{marker}] #{entry.number} {entry.author}: {entry.text.splitlines()[0] if entry.text else ''}")
        print()

    if task.errors:
        print("Errors")
        print("-" * 40)
        for entry in task.errors[-5:]:
            print(f"  #{entry.number} {entry.timestamp}: {entry.text}")
        print()

    context = task.git_context
    if any(context.values()):
        print(f"Git: branch={context['branch'] or '-'} commit={context['commit'] or '-'} pr={context['pr'] or '-'}")


def cmd_show(args, coordinator: HandoffCoordinator):
    task = coordinator.store.get(args.id)
    print_task(task, coordinator.store.find(args.id))
    return 0


def cmd_list(args, coordinator: HandoffCoordinator):
    status = status_of(args.status) if args.status else None
    tasks = coordinator.store.list(status)
    if not tasks:
        print("No tasks.")
        return 0

    print(f"{'ID':<24} {'PRI':<4} {'STATUS':<12} {'ACTOR':<11} TITLE")
    for task in tasks:
        print(f"{task.id:<24} {task.priority:<4} {task.status:<12} {task.actor:<11} {task.title}")
    return 0


def cmd_next(args, coordinator: HandoffCoordinator):
    task = coordinator.next_for_actor(args.actor)
    if task is None:
        print(f"No ready task for {args.actor}.")
        return 1
    print(f"{task.id} ({task.priority}): {task.title}")
    return 0
