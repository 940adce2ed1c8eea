"""
gk phase red|green|refactor|status|reset - TDD phase certification.
"""

from pathlib import Path

from gatekeeper.lib.config import Config, get_state_dir
from gatekeeper.runner.context import build_context
from gatekeeper.workflow.phase_store import PhaseStore
from gatekeeper.workflow.phases import allowed_next, certify


def cmd_phase(args, project_dir: Path, config: Config):
    store = PhaseStore(get_state_dir(project_dir), args.task)
    ctx = build_context(project_dir, config, task_id=args.task)

    result = certify(args.phase, ctx, store)
    if not result.ok:
        print(f"ERROR: {args.phase} phase rejected: {result.reason}")
        for key, value in result.details.items():
            print(f"  {key}: {value}")
        return 1

    print(result.message)
    if "coverage" in result.details:
        print(f"  coverage: {result.details['coverage']}% (informational)")
    return 0


def cmd_phase_status(args, project_dir: Path, config: Config):
    store = PhaseStore(get_state_dir(project_dir), args.task)
    history = store.history()

    print(f"Phase history ({args.task or 'default'})")
    print("-" * 40)
    if not history:
        print("  (no phases recorded)")
    for record in history:
        ref = f" [{record.ref}]" if record.ref else ""
        print(f"  {record.timestamp}  {record.phase}{ref}")

    if store.history_was_wiped():
        print()
        print("  History is missing for the current marker; run 'gk phase reset'.")
        return 1

    print()
    print(f"Next allowed: {', '.join(allowed_next(store.phases()))}")
    return 0


def cmd_phase_reset(args, project_dir: Path, config: Config):
    store = PhaseStore(get_state_dir(project_dir), args.task)
    store.reset(args.reason)
    print(f"Phase cycle reset for {args.task or 'default'}. Start again with 'gk phase red'.")
    return 0
