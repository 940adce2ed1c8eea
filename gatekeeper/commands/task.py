"""
gk create / prepare / claim / review / complete / fail / feedback / resolve /
retry / git / classify - task lifecycle commands.
"""

from gatekeeper.workflow.classifier import KeywordClassifier, approach_for
from gatekeeper.workflow.coordinator import HandoffCoordinator


def cmd_create(args, coordinator: HandoffCoordinator):
    task = coordinator.create(
        args.title,
        args.priority,
        acceptance_criteria=args.criteria,
        dependencies=args.dependencies,
        goal=args.goal,
        overview=args.overview,
        files_affected=args.files,
    )
    print(f"Created {task.id} ({task.priority}): {task.title}")
    if not task.acceptance_criteria:
        print("  Note: add acceptance criteria before 'gk prepare'")
    return 0


def cmd_prepare(args, coordinator: HandoffCoordinator):
    task = coordinator.prepare(args.id)
    print(f"{task.id} is ready")
    print(f"  Classification: {task.classification}")
    print(f"  Approach:       {task.approach}")
    return 0


def cmd_claim(args, coordinator: HandoffCoordinator):
    task = coordinator.claim(args.id, args.actor)
    print(f"{task.id} claimed by {task.actor}")
    return 0


def cmd_review(args, coordinator: HandoffCoordinator):
    task, report = coordinator.request_review(args.id)
    print(report.format_text())
    print()
    print(f"{task.id} is ready for review")
    return 0


def cmd_complete(args, coordinator: HandoffCoordinator):
    task = coordinator.complete(args.id)
    print(f"{task.id} completed")
    return 0


def cmd_fail(args, coordinator: HandoffCoordinator):
    task = coordinator.fail(args.id, args.reason, author=args.author)
    print(f"{task.id} failed: {args.reason}")
    return 0


def cmd_feedback(args, coordinator: HandoffCoordinator):
    task = coordinator.add_feedback(args.id, args.text, author=args.author)
    entry = task.feedback[-1]
    print(f"Feedback #{entry.number} added to {task.id} (status: {task.status})")
    if entry in task.open_feedback():
        print(f"  Actionable: resolve with 'gk resolve {task.id} {entry.number}'")
    return 0


def cmd_resolve(args, coordinator: HandoffCoordinator):
    task = coordinator.resolve_feedback(args.id, args.number, args.note, author=args.author)
    remaining = task.open_feedback()
    print(f"Resolved feedback #{args.number} on {task.id}")
    if remaining:
        print(f"  Still open: {', '.join(f'#{f.number}' for f in remaining)}")
    return 0


def cmd_retry(args, coordinator: HandoffCoordinator):
    task = coordinator.retry(args.id)
    print(f"{task.id} is ready again")
    return 0


def cmd_git(args, coordinator: HandoffCoordinator):
    task = coordinator.record_git(args.id, branch=args.branch, commit=args.commit, pr=args.pr)
    context = task.git_context
    print(f"{task.id}: branch={context['branch'] or '-'} commit={context['commit'] or '-'} pr={context['pr'] or '-'}")
    return 0


def cmd_classify(args):
    classifier = KeywordClassifier()
    functional, non_functional = classifier.matches(args.title, args.criteria)
    classification = classifier.classify(args.title, args.criteria)
    print(f"Classification: {classification}")
    print(f"Approach:       {approach_for(classification)}")
    print(f"  functional terms:     {', '.join(functional) or '(none)'}")
    print(f"  non-functional terms: {', '.join(non_functional) or '(none)'}")
    return 0
