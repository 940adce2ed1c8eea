"""Delivery-mode checks: TDD change pairing and problem analysis documents."""

import logging

from gatekeeper.checks.registry import CheckOutcome, failed, passed, register, skipped
from gatekeeper.lib.constants import MODE_FUNCTIONAL, MODE_NON_FUNCTIONAL
from gatekeeper.lib.globs import split_changes
from gatekeeper.runner.context import ExecutionContext

logger = logging.getLogger(__name__)

PROBLEM_ANALYSIS_SECTIONS = [
    "## Analyze",
    "## Identify Root Cause",
    "## Fix Directly",
    "## Validate",
]
PLACEHOLDER_MARKERS = ("[REPLACE:",)


@register("tdd-changed-has-tests", toggle="tdd", modes=[MODE_FUNCTIONAL])
def check_changed_has_tests(ctx: ExecutionContext) -> CheckOutcome:
    """Source changes in a functional task must come with test changes."""
    paths = ctx.config.paths
    sources, tests = split_changes(ctx.git.changed_files, paths.src_globs, paths.test_globs)
    logger.debug(f"[CHECK] tdd-changed-has-tests: {len(sources)} source, {len(tests)} test file(s) changed")

    if not sources:
        return passed("no source files changed", test_files=tests)
    if not tests:
        return failed(
            "source files changed without test changes",
            source_files=sources,
        )
    return passed(source_files=sources, test_files=tests)


def validate_problem_analysis(content: str, min_length: int) -> CheckOutcome:
    """Structural validation of a problem analysis document."""
    missing = [s for s in PROBLEM_ANALYSIS_SECTIONS if s not in content]
    if missing:
        return failed(f"Missing required section: {missing[0]}", missing_sections=missing)

    if any(marker in content for marker in PLACEHOLDER_MARKERS):
        return failed("Problem analysis contains placeholder content")

    length = len(content.strip())
    if length < min_length:
        return failed(f"Insufficient content length: {length} chars (minimum {min_length})", length=length)

    return passed(length=length)


@register("problem-analysis", modes=[MODE_NON_FUNCTIONAL])
def check_problem_analysis(ctx: ExecutionContext) -> CheckOutcome:
    settings = ctx.config.non_functional
    if not settings.require_problem_analysis:
        return skipped("problem analysis not required")

    path = ctx.project_dir / ctx.config.paths.problem_analysis_file
    if not path.exists():
        return failed("Problem analysis file not found", expected=str(path))

    return validate_problem_analysis(path.read_text(), settings.problem_analysis_min_length)
