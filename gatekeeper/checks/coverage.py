"""
Coverage checks.

Both read the JSON report written by `coverage json` (coverage.py):

    {"totals": {"percent_covered": 87.5, ...},
     "files": {"src/app.py": {"executed_lines": [...], "missing_lines": [...]}}}

An Istanbul coverage-summary.json ({"total": {"lines": {"pct": ..}}}) is
accepted for the global total.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from gatekeeper import git
from gatekeeper.checks.registry import CheckOutcome, failed, passed, register, skipped
from gatekeeper.checks.tooling import run_tool, tail
from gatekeeper.lib.constants import MODE_FUNCTIONAL
from gatekeeper.lib.globs import split_changes
from gatekeeper.runner.context import ExecutionContext
from gatekeeper.workflow.phase_store import Phase

logger = logging.getLogger(__name__)


@dataclass
class FileCoverage:
    executed: set[int] = field(default_factory=set)
    missing: set[int] = field(default_factory=set)


@dataclass
class CoverageReport:
    total: Optional[float]
    files: dict[str, FileCoverage] = field(default_factory=dict)

    def lookup(self, path: str) -> Optional[FileCoverage]:
        """Find a file by repo-relative path, tolerating absolute report keys."""
        if path in self.files:
            return self.files[path]
        for key, value in self.files.items():
            if key.endswith("/" + path):
                return value
        return None


def load_coverage_report(path: Path) -> CoverageReport:
    """Parse a coverage JSON report.

    Raises:
        ValueError: if the file is not a recognized coverage report
    """
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON in {path}: {e}")

    if not isinstance(data, dict):
        raise ValueError(f"unrecognized coverage report: {path}")

    if "totals" in data:
        files = {
            name: FileCoverage(
                executed=set(entry.get("executed_lines", [])),
                missing=set(entry.get("missing_lines", [])),
            )
            for name, entry in data.get("files", {}).items()
        }
        return CoverageReport(total=float(data["totals"].get("percent_covered", 0.0)), files=files)

    if "total" in data:
        return CoverageReport(total=float(data["total"]["lines"]["pct"]))

    raise ValueError(f"unrecognized coverage report: {path}")


def _read_report(ctx: ExecutionContext) -> tuple[Optional[CoverageReport], Optional[CheckOutcome]]:
    path = ctx.project_dir / ctx.config.paths.coverage_file
    if not path.exists():
        return None, failed(f"coverage report not found: {ctx.config.paths.coverage_file}")
    try:
        return load_coverage_report(path), None
    except (ValueError, KeyError, TypeError) as e:
        return None, failed(f"could not read coverage report: {e}")


@register("coverage", toggle="coverage")
def check_coverage(ctx: ExecutionContext) -> CheckOutcome:
    """Global line coverage against GLOBAL_COVERAGE."""
    ran = run_tool(ctx, "coverage")
    if ran is not None:
        _cmd, result = ran
        if not result.success:
            return failed(f"coverage command exited with code {result.returncode}", output=tail(result.output))

    report, problem = _read_report(ctx)
    if problem:
        return problem
    if report.total is None:
        return failed("coverage report has no total")

    threshold = ctx.config.thresholds.global_coverage
    pct = round(report.total, 2)
    if pct < threshold:
        return failed(f"coverage {pct}% is below {threshold}%", percent=pct, threshold=threshold)
    return passed(f"coverage {pct}%", percent=pct, threshold=threshold)


def diff_coverage(changed: dict[str, set[int]], report: CoverageReport) -> tuple[int, int, dict[str, list[int]]]:
    """Return (covered, measurable, uncovered lines per file) for changed lines."""
    covered = 0
    measurable = 0
    uncovered: dict[str, list[int]] = {}
    for path, lines in changed.items():
        entry = report.lookup(path)
        if entry is None:
            continue
        hit = lines & entry.executed
        miss = lines & entry.missing
        covered += len(hit)
        measurable += len(hit) + len(miss)
        if miss:
            uncovered[path] = sorted(miss)
    return covered, measurable, uncovered


@register("diff-coverage", toggle="diff_coverage", modes=[MODE_FUNCTIONAL], depends_on=["tests"])
def check_diff_coverage(ctx: ExecutionContext) -> CheckOutcome:
    """Coverage of changed source lines against the functional threshold.

    The refactor threshold applies while the current phase is refactor.
    """
    if not ctx.config.functional.require_diff_coverage:
        return skipped("diff coverage not required")
    if not ctx.git.base_ref:
        return skipped("no base ref to diff against")

    report, problem = _read_report(ctx)
    if problem:
        return problem

    paths = ctx.config.paths
    changed = git.get_changed_lines(ctx.project_dir, ctx.git.base_ref, runner=ctx.runner)
    sources, _tests = split_changes(changed, paths.src_globs, paths.test_globs)
    changed = {path: changed[path] for path in sources}

    covered, measurable, uncovered = diff_coverage(changed, report)
    if measurable == 0:
        return passed("no measurable changed lines")

    thresholds = ctx.config.thresholds
    if ctx.phase == Phase.REFACTOR.value:
        threshold = thresholds.diff_coverage_refactor
    else:
        threshold = thresholds.diff_coverage_functional

    pct = round(covered * 100.0 / measurable, 2)
    details = {"percent": pct, "threshold": threshold, "covered": covered, "measurable": measurable}
    if pct < threshold:
        return failed(f"diff coverage {pct}% is below {threshold}%", uncovered=uncovered, **details)
    return passed(f"diff coverage {pct}%", **details)
