"""
gk status - Task counts per status.
"""

import json

from gatekeeper.workflow.coordinator import HandoffCoordinator


def cmd_status(args, coordinator: HandoffCoordinator):
    summary = coordinator.status()

    if args.json:
        data = {
            "counts": summary.counts,
            "tasks": {
                status: [{"id": t.id, "title": t.title, "priority": t.priority, "actor": t.actor} for t in tasks]
                for status, tasks in summary.tasks.items()
            },
        }
        print(json.dumps(data, indent=2))
        return 0

    print(f"Tasks: {summary.total}")
    print("=" * 40)
    for status, count in summary.counts.items():
        print(f"  {status:<12} {count}")

    for status in ("in-progress", "review", "ready"):
        tasks = summary.tasks.get(status, [])
        if tasks:
            print()
            print(f"{status}:")
            for task in tasks:
                print(f"  {task.id} [{task.priority}] {task.title} ({task.actor})")
    return 0
