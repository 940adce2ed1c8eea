"""
gk run - Run the quality gate battery and print the report.
"""

import json
from pathlib import Path

from gatekeeper.checks.runner import run_checks
from gatekeeper.lib.config import Config
from gatekeeper.runner.context import build_context


def cmd_run(args, project_dir: Path, config: Config):
    ctx = build_context(project_dir, config, mode=args.mode, task_id=args.task)
    report = run_checks(ctx, quick=args.quick, exclude=args.skip, only=args.only)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        print(f"Context: {ctx.summary()}")
        print()
        print(report.format_text())
        for result in report.failed():
            output = (result.details or {}).get("output")
            if output:
                print()
                print(f"--- {result.id} ---")
                print(output)

    return 0 if report.ok else 1
