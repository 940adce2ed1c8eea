"""Environment and branch checks: env, trunk, pre-conflict."""

import logging

from gatekeeper import git
from gatekeeper.checks.registry import CheckOutcome, failed, passed, register, skipped
from gatekeeper.runner.context import ExecutionContext

logger = logging.getLogger(__name__)


@register("env", quick=True)
def check_env(ctx: ExecutionContext) -> CheckOutcome:
    """Every REQUIRED_ENV variable must be set and non-empty.

    In CI, when none of the variables are present at all, the secrets were
    not provisioned for this pipeline and the check is skipped.
    """
    required = ctx.config.paths.required_env
    if not required:
        return skipped("no required environment variables configured")

    missing = [name for name in required if not ctx.environ.get(name)]
    if not missing:
        return passed(checked=list(required))

    if ctx.is_ci and len(missing) == len(required):
        logger.info("[CHECK] env: skipped in CI, secrets not configured")
        return skipped("skipped (secrets not configured in CI)", missing=missing)

    return failed(f"missing environment variables: {', '.join(missing)}", missing=missing)


@register("trunk")
def check_trunk(ctx: ExecutionContext) -> CheckOutcome:
    settings = ctx.config.git
    if not settings.require_main_branch:
        return skipped("main branch not required")
    if ctx.git.is_main_branch:
        return passed(branch=ctx.git.current_branch)
    return failed(
        f"not on {settings.main_branch} (current: {ctx.git.current_branch or 'detached HEAD'})",
        branch=ctx.git.current_branch,
    )


@register("pre-conflict", full_only=True)
def check_pre_conflict(ctx: ExecutionContext) -> CheckOutcome:
    """Trial-merge the base ref and report conflicted paths."""
    if not ctx.config.git.enable_pre_conflict_check:
        return skipped("pre-conflict check disabled")

    base_ref = ctx.git.base_ref
    if not base_ref:
        return skipped("no base ref to merge")
    if ctx.git.has_uncommitted_changes:
        return skipped("working tree has uncommitted changes")

    if "/" in base_ref:
        remote, branch = base_ref.split("/", 1)
        result = git.fetch(ctx.project_dir, remote, branch, runner=ctx.runner)
        if not result.success:
            logger.warning(f"[CHECK] pre-conflict: fetch {base_ref} failed, using local ref: {result.stderr.strip()}")

    conflicts = git.trial_merge(ctx.project_dir, base_ref, runner=ctx.runner)
    if conflicts:
        return failed(
            f"merge conflicts with {base_ref}: {', '.join(conflicts)}",
            conflicts=conflicts,
            base_ref=base_ref,
        )
    return passed(base_ref=base_ref)
