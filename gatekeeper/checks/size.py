"""Change-size checks: commit-size and size-budget."""

import logging

from gatekeeper import git
from gatekeeper.checks.registry import CheckOutcome, failed, passed, register, skipped
from gatekeeper.checks.tooling import run_tool, tail
from gatekeeper.runner.context import ExecutionContext

logger = logging.getLogger(__name__)


def measure_change(ctx: ExecutionContext) -> git.DiffStat | None:
    """Lines changed on this branch.

    Uses `base...HEAD`; when that is empty (or there is no base ref) and the
    tree is dirty, falls back to the unstaged plus staged diff.
    """
    stat = None
    if ctx.git.base_ref:
        stat = git.get_shortstat(ctx.project_dir, [f"{ctx.git.base_ref}...HEAD"], runner=ctx.runner)

    if (stat is None or stat.lines == 0) and ctx.git.has_uncommitted_changes:
        unstaged = git.get_shortstat(ctx.project_dir, [], runner=ctx.runner)
        staged = git.get_shortstat(ctx.project_dir, ["--cached"], runner=ctx.runner)
        if unstaged is not None or staged is not None:
            stat = (unstaged or git.DiffStat()) + (staged or git.DiffStat())
    return stat


@register("commit-size", toggle="commit_size")
def check_commit_size(ctx: ExecutionContext) -> CheckOutcome:
    stat = measure_change(ctx)
    if stat is None:
        return failed("could not compute diff size")

    limit = ctx.config.thresholds.max_commit_size
    details = {"files": stat.files, "insertions": stat.insertions, "deletions": stat.deletions}
    if stat.lines > limit:
        return failed(f"Commit size exceeds limit: {stat.lines} lines changed (max: {limit})", **details)
    return passed(f"{stat.lines} lines changed", **details)


@register("size-budget", toggle="size_budget")
def check_size_budget(ctx: ExecutionContext) -> CheckOutcome:
    """Run the configured bundle/artifact size budget command."""
    ran = run_tool(ctx, "size-budget")
    if ran is None:
        return skipped("not configured")
    _cmd, result = ran
    if not result.success:
        return failed("size budget exceeded", output=tail(result.output))
    return passed()
