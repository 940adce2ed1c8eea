"""Tests for the built-in quality checks."""

import json

import pytest

from conftest import FakeRunner, make_config, make_context

from gatekeeper.checks.coverage import (
    CoverageReport,
    FileCoverage,
    check_coverage,
    check_diff_coverage,
    diff_coverage,
    load_coverage_report,
)
from gatekeeper.checks.discipline import check_changed_has_tests, check_problem_analysis, validate_problem_analysis
from gatekeeper.checks.environment import check_env, check_pre_conflict, check_trunk
from gatekeeper.checks.external import check_security, parse_audit
from gatekeeper.checks.size import check_commit_size, check_size_budget
from gatekeeper.checks.static import check_lint, check_tests, check_typecheck, count_warnings
from gatekeeper.lib.constants import MODE_NON_FUNCTIONAL
from gatekeeper.lib.errors import CheckTimeout

GOOD_ANALYSIS = """# Problem Analysis

## Analyze
The build fails on CI because the cache key ignores the lock file, so stale
wheels are restored after dependency bumps.

## Identify Root Cause
The cache key is derived from requirements.txt only; poetry.lock changes never
invalidate it.

## Fix Directly
Include the lock file hash in the cache key.

## Validate
Bumped a dependency on a branch and confirmed a cache miss followed by a green build.
"""


class TestEnvCheck:

    def test_skipped_without_required_vars(self, tmp_path):
        outcome = check_env(make_context(tmp_path))
        assert outcome.ok and outcome.skipped

    def test_passes_when_set(self, tmp_path):
        config = make_config(REQUIRED_ENV="DATABASE_URL,API_KEY")
        ctx = make_context(tmp_path, config, environ={"DATABASE_URL": "x", "API_KEY": "y"})
        assert check_env(ctx).ok

    def test_fails_listing_missing(self, tmp_path):
        config = make_config(REQUIRED_ENV="DATABASE_URL,API_KEY")
        outcome = check_env(make_context(tmp_path, config, environ={"DATABASE_URL": "x", "API_KEY": ""}))
        assert not outcome.ok
        assert outcome.reason == "missing environment variables: API_KEY"

    def test_ci_without_secrets_skips(self, tmp_path):
        config = make_config(REQUIRED_ENV="DATABASE_URL")
        outcome = check_env(make_context(tmp_path, config, is_ci=True, environ={}))
        assert outcome.skipped
        assert outcome.reason == "skipped (secrets not configured in CI)"

    def test_ci_with_partial_secrets_fails(self, tmp_path):
        config = make_config(REQUIRED_ENV="DATABASE_URL,API_KEY")
        outcome = check_env(make_context(tmp_path, config, is_ci=True, environ={"API_KEY": "k"}))
        assert not outcome.ok


class TestTrunkCheck:

    def test_skipped_by_default(self, tmp_path):
        assert check_trunk(make_context(tmp_path)).skipped

    def test_fails_off_main(self, tmp_path):
        ctx = make_context(tmp_path, make_config(REQUIRE_MAIN_BRANCH="true"))
        outcome = check_trunk(ctx)
        assert not outcome.ok
        assert "not on main" in outcome.reason

    def test_passes_on_main(self, tmp_path):
        ctx = make_context(tmp_path, make_config(REQUIRE_MAIN_BRANCH="true"), branch="main")
        assert check_trunk(ctx).ok


class TestPreConflictCheck:

    def test_skipped_when_dirty(self, tmp_path):
        runner = FakeRunner()
        outcome = check_pre_conflict(make_context(tmp_path, runner=runner, uncommitted=True))
        assert outcome.skipped
        assert not runner.ran("merge")

    def test_fetches_and_reports_conflicts(self, tmp_path):
        runner = (
            FakeRunner()
            .on("merge --no-commit", returncode=1)
            .on("status --porcelain -z", stdout="UU src/app.py\0")
        )
        outcome = check_pre_conflict(make_context(tmp_path, runner=runner))
        assert runner.ran("fetch origin main")
        assert not outcome.ok
        assert outcome.reason == "merge conflicts with origin/main: src/app.py"

    def test_clean_merge_passes(self, tmp_path):
        assert check_pre_conflict(make_context(tmp_path, base_ref="main")).ok

    def test_disabled(self, tmp_path):
        ctx = make_context(tmp_path, make_config(ENABLE_PRE_CONFLICT_CHECK="false"))
        assert check_pre_conflict(ctx).skipped


class TestStaticChecks:
    """typecheck, lint and tests run the configured tool."""

    def test_typecheck_not_configured(self, tmp_path):
        ctx = make_context(tmp_path, commands={"typecheck": None})
        assert check_typecheck(ctx).skipped

    def test_typecheck_counts_errors(self, tmp_path):
        runner = FakeRunner().on("mypy", returncode=1, stdout="src/a.py:3: error: x\nsrc/b.py:9: error: y\n")
        outcome = check_typecheck(make_context(tmp_path, runner=runner))
        assert not outcome.ok
        assert outcome.reason == "type errors: 2"

    def test_count_warnings(self):
        assert count_warnings("src/a.py:1:1: F401 unused\nsrc/a.py:2:1: E501 long\n") == 2
        assert count_warnings("✖ 5 problems (2 errors, 3 warnings)") == 3

    def test_lint_warning_budget(self, tmp_path):
        runner = FakeRunner().on("ruff", stdout="src/a.py:1:1: W291 trailing whitespace\n")
        outcome = check_lint(make_context(tmp_path, make_config(MAX_WARNINGS=1), runner=runner))
        assert outcome.ok

        outcome = check_lint(make_context(tmp_path, make_config(MAX_WARNINGS=0), runner=runner))
        assert not outcome.ok
        assert outcome.reason == "1 lint warnings (max: 0)"

    def test_lint_nonzero_exit(self, tmp_path):
        runner = FakeRunner().on("ruff", returncode=2, stderr="config error")
        outcome = check_lint(make_context(tmp_path, runner=runner))
        assert outcome.reason == "lint exited with code 2"

    def test_tests_pass(self, tmp_path):
        runner = FakeRunner().on("pytest", stdout="12 passed in 1.0s")
        outcome = check_tests(make_context(tmp_path, runner=runner))
        assert outcome.ok
        assert outcome.details["passed"] == 12

    def test_tests_fail(self, tmp_path):
        runner = FakeRunner().on(
            "pytest", returncode=1,
            stdout="FAILED tests/test_a.py::test_x - assert 1 == 2\n1 failed, 3 passed in 0.5s",
        )
        outcome = check_tests(make_context(tmp_path, runner=runner))
        assert not outcome.ok
        assert outcome.reason == "tests failed: 3 passed, 1 failed"
        assert "test_x" in outcome.details["output"]

    def test_no_tests_in_functional_mode(self, tmp_path):
        runner = FakeRunner().on("pytest", returncode=5, stdout="no tests ran in 0.01s")
        outcome = check_tests(make_context(tmp_path, runner=runner))
        assert not outcome.ok
        assert outcome.reason == "no tests were run"

    def test_no_tests_allowed_in_non_functional_mode(self, tmp_path):
        runner = FakeRunner().on("pytest", stdout="0 passed in 0.01s")
        outcome = check_tests(make_context(tmp_path, runner=runner, mode=MODE_NON_FUNCTIONAL))
        assert outcome.ok

    def test_tests_timeout_raises_for_runner(self, tmp_path):
        runner = FakeRunner().on("pytest", returncode=-1, timed_out=True)
        with pytest.raises(CheckTimeout, match=r"timeout after 120s: pytest -q"):
            check_tests(make_context(tmp_path, runner=runner))


class TestTddChangedHasTests:

    def test_source_without_tests_fails(self, tmp_path):
        outcome = check_changed_has_tests(make_context(tmp_path, changed=["src/cart.py"]))
        assert not outcome.ok
        assert outcome.reason == "source files changed without test changes"
        assert outcome.details["source_files"] == ["src/cart.py"]

    def test_source_with_tests_passes(self, tmp_path):
        outcome = check_changed_has_tests(make_context(tmp_path, changed=["src/cart.py", "tests/test_cart.py"]))
        assert outcome.ok

    def test_js_test_markers(self, tmp_path):
        config = make_config(SRC_GLOBS="src/**")
        outcome = check_changed_has_tests(make_context(tmp_path, config, changed=["src/cart.ts", "src/cart.test.ts"]))
        assert outcome.ok

    def test_no_source_changes(self, tmp_path):
        outcome = check_changed_has_tests(make_context(tmp_path, changed=["README.md"]))
        assert outcome.ok
        assert outcome.reason == "no source files changed"


class TestProblemAnalysis:

    def test_valid_document(self):
        assert validate_problem_analysis(GOOD_ANALYSIS, 200).ok

    def test_missing_section(self):
        outcome = validate_problem_analysis(GOOD_ANALYSIS.replace("## Validate", "## Checked"), 10)
        assert outcome.reason == "Missing required section: ## Validate"

    def test_placeholder(self):
        outcome = validate_problem_analysis(GOOD_ANALYSIS + "\n[REPLACE: describe impact]\n", 10)
        assert outcome.reason == "Problem analysis contains placeholder content"

    def test_too_short(self):
        text = "## Analyze\n## Identify Root Cause\n## Fix Directly\n## Validate\n"
        outcome = validate_problem_analysis(text, 200)
        assert outcome.reason.startswith("Insufficient content length:")
        assert "(minimum 200)" in outcome.reason

    def test_file_missing(self, tmp_path):
        outcome = check_problem_analysis(make_context(tmp_path, mode=MODE_NON_FUNCTIONAL))
        assert outcome.reason == "Problem analysis file not found"

    def test_reads_configured_file(self, tmp_path):
        (tmp_path / "PROBLEM_ANALYSIS.md").write_text(GOOD_ANALYSIS)
        assert check_problem_analysis(make_context(tmp_path, mode=MODE_NON_FUNCTIONAL)).ok

    def test_not_required(self, tmp_path):
        config = make_config(NONFUNCTIONAL_REQUIRE_PROBLEM_ANALYSIS="false")
        assert check_problem_analysis(make_context(tmp_path, config, mode=MODE_NON_FUNCTIONAL)).skipped


def write_coverage(path, total, files=None):
    data = {"totals": {"percent_covered": total}, "files": files or {}}
    path.write_text(json.dumps(data))


class TestCoverage:

    def test_load_coverage_py_report(self, tmp_path):
        path = tmp_path / "coverage.json"
        write_coverage(path, 81.5, {"src/a.py": {"executed_lines": [1, 2], "missing_lines": [3]}})
        report = load_coverage_report(path)
        assert report.total == 81.5
        assert report.lookup("src/a.py").missing == {3}

    def test_load_istanbul_summary(self, tmp_path):
        path = tmp_path / "coverage-summary.json"
        path.write_text(json.dumps({"total": {"lines": {"pct": 64.2}}}))
        assert load_coverage_report(path).total == 64.2

    def test_lookup_tolerates_absolute_keys(self):
        report = CoverageReport(total=50.0, files={"/ci/build/src/a.py": FileCoverage({1}, set())})
        assert report.lookup("src/a.py") is not None

    def test_below_threshold(self, tmp_path):
        write_coverage(tmp_path / "coverage.json", 20.0)
        outcome = check_coverage(make_context(tmp_path))
        assert not outcome.ok
        assert outcome.reason == "coverage 20.0% is below 25%"

    def test_meets_threshold(self, tmp_path):
        write_coverage(tmp_path / "coverage.json", 25.0)
        assert check_coverage(make_context(tmp_path)).ok

    def test_missing_report(self, tmp_path):
        outcome = check_coverage(make_context(tmp_path))
        assert outcome.reason == "coverage report not found: coverage.json"


class TestDiffCoverage:

    DIFF = "+++ b/src/cart.py\n@@ -1,0 +1,4 @@\n+++ b/tests/test_cart.py\n@@ -1,0 +1,2 @@\n"

    def test_diff_coverage_counts_measurable_lines(self):
        report = CoverageReport(total=90.0, files={"src/a.py": FileCoverage({1, 2, 3}, {4})})
        covered, measurable, uncovered = diff_coverage({"src/a.py": {2, 4, 10}, "src/b.py": {1}}, report)
        assert (covered, measurable) == (1, 2)
        assert uncovered == {"src/a.py": [4]}

    def test_fails_below_functional_threshold(self, tmp_path):
        write_coverage(tmp_path / "coverage.json", 90.0, {
            "src/cart.py": {"executed_lines": [1, 2, 3], "missing_lines": [4]},
        })
        runner = FakeRunner().on("diff -U0", stdout=self.DIFF)
        outcome = check_diff_coverage(make_context(tmp_path, runner=runner))
        assert not outcome.ok
        assert outcome.reason == "diff coverage 75.0% is below 85%"
        assert outcome.details["uncovered"] == {"src/cart.py": [4]}

    def test_refactor_phase_uses_refactor_threshold(self, tmp_path):
        write_coverage(tmp_path / "coverage.json", 90.0, {
            "src/cart.py": {"executed_lines": [1, 2, 3], "missing_lines": [4]},
        })
        runner = FakeRunner().on("diff -U0", stdout=self.DIFF)
        outcome = check_diff_coverage(make_context(tmp_path, runner=runner, phase="refactor"))
        assert outcome.ok
        assert outcome.details["threshold"] == 60

    def test_no_measurable_lines(self, tmp_path):
        write_coverage(tmp_path / "coverage.json", 90.0)
        runner = FakeRunner().on("diff -U0", stdout=self.DIFF)
        outcome = check_diff_coverage(make_context(tmp_path, runner=runner))
        assert outcome.ok
        assert outcome.reason == "no measurable changed lines"


class TestCommitSize:

    def test_within_limit(self, tmp_path):
        runner = FakeRunner().on("diff --shortstat", stdout=" 2 files changed, 40 insertions(+), 10 deletions(-)")
        outcome = check_commit_size(make_context(tmp_path, runner=runner))
        assert outcome.ok
        assert outcome.reason == "50 lines changed"

    def test_exceeds_limit(self, tmp_path):
        runner = FakeRunner().on("diff --shortstat", stdout=" 9 files changed, 290 insertions(+), 30 deletions(-)")
        outcome = check_commit_size(make_context(tmp_path, runner=runner))
        assert not outcome.ok
        assert outcome.reason == "Commit size exceeds limit: 320 lines changed (max: 300)"

    def test_falls_back_to_working_tree(self, tmp_path):
        runner = (
            FakeRunner()
            .on("diff --shortstat", stdout="")
            .on("diff --shortstat --cached", stdout=" 1 file changed, 5 insertions(+)")
        )
        ctx = make_context(tmp_path, runner=runner, base_ref=None, uncommitted=True)
        outcome = check_commit_size(ctx)
        assert outcome.reason == "5 lines changed"

    def test_size_budget_not_configured(self, tmp_path):
        assert check_size_budget(make_context(tmp_path)).skipped


class TestSecurity:

    AUDIT = json.dumps({"dependencies": [
        {"name": "requests", "version": "2.19.0", "vulns": [{"id": "PYSEC-2018-28", "fix_versions": ["2.20.0"]}]},
        {"name": "pyyaml", "version": "6.0.1", "vulns": []},
    ]})

    def test_parse_audit(self):
        vulns = parse_audit(self.AUDIT)
        assert vulns == [{"package": "requests", "version": "2.19.0", "id": "PYSEC-2018-28", "fix_versions": ["2.20.0"]}]

    def test_parse_bare_list(self):
        assert parse_audit("[]") == []

    def test_reports_vulnerabilities(self, tmp_path):
        runner = FakeRunner().on("pip-audit", returncode=1, stdout=self.AUDIT)
        outcome = check_security(make_context(tmp_path, runner=runner))
        assert not outcome.ok
        assert outcome.reason == "1 known vulnerability in requests"

    def test_unparseable_failure(self, tmp_path):
        runner = FakeRunner().on("pip-audit", returncode=2, stderr="network unreachable")
        outcome = check_security(make_context(tmp_path, runner=runner))
        assert outcome.reason == "Security scan failed - could not parse results"
