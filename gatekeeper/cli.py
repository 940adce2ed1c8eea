#!/usr/bin/env python3
"""gatekeeper CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from gatekeeper.lib.config import load_config
from gatekeeper.lib.constants import ACTORS, PRIORITIES
from gatekeeper.lib.errors import CheckFailed, GatekeeperError
from gatekeeper.workflow.coordinator import HandoffCoordinator
from gatekeeper.commands import config as cmd_config_module
from gatekeeper.commands import phase as cmd_phase_module
from gatekeeper.commands import prepush as cmd_prepush_module
from gatekeeper.commands import run as cmd_run_module
from gatekeeper.commands import show as cmd_show_module
from gatekeeper.commands import status as cmd_status_module
from gatekeeper.commands import task as cmd_task_module

CLAIMING_ACTORS = [a for a in ACTORS if a != "unassigned"]


def get_project_dir(args) -> Path:
    return Path(args.directory).resolve()


def get_coordinator(args) -> HandoffCoordinator:
    project_dir = get_project_dir(args)
    return HandoffCoordinator(project_dir, load_config(project_dir))


def with_coordinator(handler):
    def command(args):
        return handler(args, get_coordinator(args))
    return command


def with_config(handler):
    def command(args):
        project_dir = get_project_dir(args)
        return handler(args, project_dir, load_config(project_dir))
    return command


def configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def run_command(args) -> int:
    """Run the selected command, mapping engine failures to exit codes."""
    try:
        return args.func(args)
    except CheckFailed as e:
        if e.report is not None:
            print(e.report.format_text())
            print()
        print(f"ERROR: {e.message}")
        if e.detail:
            print(e.detail)
        return e.exit_code
    except GatekeeperError as e:
        print(f"ERROR: {e.message}")
        if e.detail:
            print(f"  {e.detail}")
        return e.exit_code
    except ValueError as e:
        print(f"ERROR: {e}")
        return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='gk', description='Workflow enforcement: task handoffs, TDD phases, quality gates')
    parser.add_argument('-C', dest='directory', default='.', help='Project directory (default: current)')
    parser.add_argument('-v', '--verbose', action='count', default=0, help='More logging (-vv for debug)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # gk create
    p_create = subparsers.add_parser('create', help='Create a task (pending)')
    p_create.add_argument('title', help='Task title')
    p_create.add_argument('--priority', '-p', choices=PRIORITIES, default='P1')
    p_create.add_argument('--criterion', '-a', action='append', default=[], dest='criteria',
                          help='Acceptance criterion (repeatable)')
    p_create.add_argument('--depends-on', '-d', action='append', default=[], dest='dependencies',
                          help='Task id that must complete first (repeatable)')
    p_create.add_argument('--goal', default='', help='Goal text')
    p_create.add_argument('--overview', default='', help='Overview text')
    p_create.add_argument('--file', '-f', action='append', default=[], dest='files', help='File affected (repeatable)')
    p_create.set_defaults(func=with_coordinator(cmd_task_module.cmd_create))

    # gk prepare
    p_prepare = subparsers.add_parser('prepare', help='Classify and move pending -> ready')
    p_prepare.add_argument('id', help='Task ID')
    p_prepare.set_defaults(func=with_coordinator(cmd_task_module.cmd_prepare))

    # gk claim
    p_claim = subparsers.add_parser('claim', help='Claim a ready task')
    p_claim.add_argument('id', help='Task ID')
    p_claim.add_argument('actor', choices=CLAIMING_ACTORS)
    p_claim.set_defaults(func=with_coordinator(cmd_task_module.cmd_claim))

    # gk review
    p_review = subparsers.add_parser('review', help='Run review checks and move in-progress -> review')
    p_review.add_argument('id', help='Task ID')
    p_review.set_defaults(func=with_coordinator(cmd_task_module.cmd_review))

    # gk complete
    p_complete = subparsers.add_parser('complete', help='Move review -> completed')
    p_complete.add_argument('id', help='Task ID')
    p_complete.set_defaults(func=with_coordinator(cmd_task_module.cmd_complete))

    # gk fail
    p_fail = subparsers.add_parser('fail', help='Mark a task failed')
    p_fail.add_argument('id', help='Task ID')
    p_fail.add_argument('reason', help='Error context')
    p_fail.add_argument('--author', default='gatekeeper')
    p_fail.set_defaults(func=with_coordinator(cmd_task_module.cmd_fail))

    # gk feedback
    p_feedback = subparsers.add_parser('feedback', help='Add review feedback (review -> ready)')
    p_feedback.add_argument('id', help='Task ID')
    p_feedback.add_argument('text', help='Feedback text')
    p_feedback.add_argument('--author', default='reviewer')
    p_feedback.set_defaults(func=with_coordinator(cmd_task_module.cmd_feedback))

    # gk resolve
    p_resolve = subparsers.add_parser('resolve', help='Resolve a feedback entry')
    p_resolve.add_argument('id', help='Task ID')
    p_resolve.add_argument('number', type=int, help='Feedback entry number')
    p_resolve.add_argument('note', nargs='?', default='', help='Resolution note')
    p_resolve.add_argument('--author', default='gatekeeper')
    p_resolve.set_defaults(func=with_coordinator(cmd_task_module.cmd_resolve))

    # gk retry
    p_retry = subparsers.add_parser('retry', help='Move failed -> ready')
    p_retry.add_argument('id', help='Task ID')
    p_retry.set_defaults(func=with_coordinator(cmd_task_module.cmd_retry))

    # gk git
    p_git = subparsers.add_parser('git', help='Record branch / commit / PR on a task')
    p_git.add_argument('id', help='Task ID')
    p_git.add_argument('--branch')
    p_git.add_argument('--commit')
    p_git.add_argument('--pr')
    p_git.set_defaults(func=with_coordinator(cmd_task_module.cmd_git))

    # gk show
    p_show = subparsers.add_parser('show', help='Show a task')
    p_show.add_argument('id', help='Task ID')
    p_show.set_defaults(func=with_coordinator(cmd_show_module.cmd_show))

    # gk list
    p_list = subparsers.add_parser('list', help='List tasks')
    p_list.add_argument('--status', '-s', help='Only this status')
    p_list.set_defaults(func=with_coordinator(cmd_show_module.cmd_list))

    # gk next
    p_next = subparsers.add_parser('next', help='Next ready task for an actor')
    p_next.add_argument('actor', choices=CLAIMING_ACTORS)
    p_next.set_defaults(func=with_coordinator(cmd_show_module.cmd_next))

    # gk status
    p_status = subparsers.add_parser('status', help='Task counts per status')
    p_status.add_argument('--json', action='store_true', help='Machine-readable output')
    p_status.set_defaults(func=with_coordinator(cmd_status_module.cmd_status))

    # gk run
    p_run = subparsers.add_parser('run', help='Run the quality gate battery')
    p_run.add_argument('--quick', action='store_true', help='Quick battery (env, typecheck, lint, tests)')
    p_run.add_argument('--json', action='store_true', help='Print the report as JSON')
    p_run.add_argument('--mode', help='functional | non-functional (overrides detection)')
    p_run.add_argument('--task', help='Task ID for phase context')
    p_run.add_argument('--only', action='append', help='Run only this check id (repeatable)')
    p_run.add_argument('--skip', action='append', default=[], help='Skip this check id (repeatable)')
    p_run.set_defaults(func=with_config(cmd_run_module.cmd_run))

    # gk phase
    p_phase = subparsers.add_parser('phase', help='TDD phase commands')
    phase_sub = p_phase.add_subparsers(dest='phase_command', required=True)
    for name in ('red', 'green', 'refactor'):
        p = phase_sub.add_parser(name, help=f'Certify and record the {name} phase')
        p.add_argument('--task', help='Task ID (default scope if omitted)')
        p.set_defaults(func=with_config(cmd_phase_module.cmd_phase), phase=name)
    p_phase_status = phase_sub.add_parser('status', help='Show phase history')
    p_phase_status.add_argument('--task', help='Task ID')
    p_phase_status.set_defaults(func=with_config(cmd_phase_module.cmd_phase_status))
    p_phase_reset = phase_sub.add_parser('reset', help='Start a new red/green/refactor cycle')
    p_phase_reset.add_argument('--task', help='Task ID')
    p_phase_reset.add_argument('--reason', default='', help='Why the cycle is reset')
    p_phase_reset.set_defaults(func=with_config(cmd_phase_module.cmd_phase_reset))

    # gk classify
    p_classify = subparsers.add_parser('classify', help='Classify a title + criteria without creating a task')
    p_classify.add_argument('title')
    p_classify.add_argument('criteria', nargs='*')
    p_classify.set_defaults(func=cmd_task_module.cmd_classify)

    # gk prepush
    p_prepush = subparsers.add_parser('prepush', help='Block pushes while completed tasks have open feedback')
    p_prepush.set_defaults(func=with_coordinator(cmd_prepush_module.cmd_prepush))

    # gk config
    p_config = subparsers.add_parser('config', help='Show resolved configuration and value sources')
    p_config.set_defaults(func=with_config(cmd_config_module.cmd_config))

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)
    return run_command(args)


if __name__ == '__main__':
    sys.exit(main())
