"""Tool-backed checks: typecheck, lint, tests."""

import logging
import re

from gatekeeper.checks.registry import CheckOutcome, failed, passed, register, skipped
from gatekeeper.checks.tooling import run_tool, tail
from gatekeeper.lib.test_parser import format_failures, parse_test_output
from gatekeeper.runner.context import ExecutionContext

logger = logging.getLogger(__name__)

# "src/app.py:12:5: F401 ..." (ruff concise, flake8, mypy, tsc --pretty false)
_DIAGNOSTIC_LINE = re.compile(r'^\S+:\d+(?::\d+)?:\s', re.MULTILINE)
# eslint: "✖ 5 problems (2 errors, 3 warnings)"
_ESLINT_WARNINGS = re.compile(r'(\d+) warnings?\)')


@register("typecheck", quick=True)
def check_typecheck(ctx: ExecutionContext) -> CheckOutcome:
    ran = run_tool(ctx, "typecheck")
    if ran is None:
        return skipped("not configured")
    _cmd, result = ran
    if result.success:
        return passed()
    errors = len(_DIAGNOSTIC_LINE.findall(result.output))
    reason = f"type errors: {errors}" if errors else f"typecheck exited with code {result.returncode}"
    return failed(reason, output=tail(result.output))


def count_warnings(output: str) -> int:
    """Warnings reported by a linter run."""
    match = _ESLINT_WARNINGS.search(output)
    if match:
        return int(match.group(1))
    return len(_DIAGNOSTIC_LINE.findall(output))


@register("lint", quick=True)
def check_lint(ctx: ExecutionContext) -> CheckOutcome:
    """Fails on a non-zero exit or more warnings than MAX_WARNINGS."""
    ran = run_tool(ctx, "lint")
    if ran is None:
        return skipped("not configured")
    _cmd, result = ran

    warnings = count_warnings(result.output)
    limit = ctx.config.thresholds.max_warnings
    if not result.success:
        return failed(
            f"lint exited with code {result.returncode}",
            warnings=warnings,
            output=tail(result.output),
        )
    if warnings > limit:
        return failed(f"{warnings} lint warnings (max: {limit})", warnings=warnings, output=tail(result.output))
    return passed(warnings=warnings)


@register("tests", quick=True)
def check_tests(ctx: ExecutionContext) -> CheckOutcome:
    ran = run_tool(ctx, "tests")
    if ran is None:
        return skipped("not configured")
    _cmd, result = ran

    parsed = parse_test_output(result.stdout, result.stderr)
    details = parsed.to_dict() if parsed.recognized else {}

    if parsed.recognized and parsed.total == 0:
        if ctx.is_functional and ctx.config.functional.require_tests:
            return failed("no tests were run", **details)
        return passed("no tests collected", **details)

    if parsed.failing or not result.success:
        reason = f"tests failed: {parsed.summary}" if parsed.recognized else f"tests exited with code {result.returncode}"
        output = format_failures(parsed) if parsed.failures else tail(result.output)
        return failed(reason, output=output, **details)

    logger.info(f"[CHECK] tests: {parsed.summary}")
    return passed(parsed.summary if parsed.recognized else None, **details)
