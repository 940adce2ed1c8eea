"""Tests for gatekeeper.checks registry and runner."""

import json
import threading
import time

import pytest

from conftest import FakeRunner, make_config, make_context

from gatekeeper.checks import (
    CheckRunner,
    CheckSpec,
    RunReport,
    build_plan,
    execute_check,
    failed,
    get_registry,
    passed,
    run_checks,
    skipped,
)
from gatekeeper.checks.registry import CheckResult, order_plan
from gatekeeper.lib.constants import MODE_FUNCTIONAL, MODE_NON_FUNCTIONAL
from gatekeeper.lib.errors import CheckFailed, CheckTimeout


def spec(check_id, outcome=None, fn=None, depends_on=()):
    if fn is None:
        result = outcome if outcome is not None else passed()
        fn = lambda ctx: result  # noqa: E731
    return CheckSpec(id=check_id, fn=fn, depends_on=tuple(depends_on))


def run(plan, tmp_path, concurrency=1, fail_fast=True, timeout_for=None):
    runner = CheckRunner(plan, concurrency=concurrency, fail_fast=fail_fast, timeout_for=timeout_for)
    return runner.run(make_context(tmp_path))


class TestAggregation:
    """The run passes iff every counted check passed."""

    def test_all_pass(self, tmp_path):
        report = run([spec("a"), spec("b"), spec("c")], tmp_path, fail_fast=False)
        assert report.ok
        assert [r.id for r in report.results] == ["a", "b", "c"]

    def test_single_failure_fails_run(self, tmp_path):
        report = run([spec("a"), spec("b", failed("broken")), spec("c")], tmp_path, fail_fast=False)
        assert not report.ok
        assert [r.id for r in report.failed()] == ["b"]
        assert report.get("b").reason == "broken"
        assert len(report.passed()) == 2

    def test_skipped_excluded_from_aggregate(self, tmp_path):
        report = run([spec("a", skipped("not configured")), spec("b")], tmp_path)
        assert report.ok
        assert report.get("a").skipped
        assert not report.get("a").counted
        assert len(report.passed()) == 1

    def test_empty_plan_passes(self, tmp_path):
        report = run([], tmp_path)
        assert report.ok
        assert report.results == []


class TestFailFast:
    """Fail-fast stops scheduling after the first failure."""

    def test_serial_stops_after_failure(self, tmp_path):
        calls = []

        def tracked(check_id, outcome):
            def fn(ctx):
                calls.append(check_id)
                return outcome
            return fn

        plan = [
            spec("a", fn=tracked("a", passed())),
            spec("b", fn=tracked("b", failed("boom"))),
            spec("c", fn=tracked("c", passed())),
        ]
        report = run(plan, tmp_path, concurrency=1, fail_fast=True)

        assert calls == ["a", "b"]
        assert [r.id for r in report.results] == ["a", "b"]
        assert report.cancelled == ["c"]
        assert report.get("c") is None
        assert not report.ok

    def test_without_fail_fast_everything_runs(self, tmp_path):
        report = run([spec("a", failed("boom")), spec("b")], tmp_path, fail_fast=False)
        assert [r.id for r in report.results] == ["a", "b"]
        assert report.cancelled == []

    def test_late_finisher_is_discarded(self, tmp_path):
        def slow_failure(ctx):
            time.sleep(0.2)
            return failed("late")

        plan = [spec("fast", failed("first")), spec("slow", fn=slow_failure)]
        report = run(plan, tmp_path, concurrency=2, fail_fast=True)

        assert report.get("slow").discarded
        assert [r.id for r in report.failed()] == ["fast"]
        assert "DISCARDED" in report.format_text()


class TestTimeouts:
    """A check past its deadline is recorded as timed out."""

    def test_timeout_does_not_block_siblings(self, tmp_path, monkeypatch):
        monkeypatch.setattr("gatekeeper.checks.runner.DEADLINE_GRACE", 0.0)
        release = threading.Event()

        def hang(ctx):
            release.wait(5)
            return passed()

        plan = [spec("slow", fn=hang), spec("quick")]
        try:
            start = time.time()
            report = run(
                plan, tmp_path, concurrency=2, fail_fast=False,
                timeout_for=lambda check_id: 0.2 if check_id == "slow" else 5,
            )
            elapsed = time.time() - start
        finally:
            release.set()

        assert elapsed < 2
        assert report.get("quick").ok
        slow = report.get("slow")
        assert not slow.ok
        assert slow.reason == "timeout after 0.2s"
        assert not report.ok

    def test_check_timeout_exception_becomes_result(self, tmp_path):
        def timed_out(ctx):
            raise CheckTimeout("pytest -q", 120)

        result = execute_check(spec("tests", fn=timed_out), make_context(tmp_path))
        assert not result.ok
        assert result.reason == "timeout after 120s: pytest -q"


class TestDependencies:
    """depends_on orders execution and blocks on failure."""

    def test_dependent_waits_for_dependency(self, tmp_path):
        order = []

        def dependency(ctx):
            time.sleep(0.1)
            order.append("tests-done")
            return passed()

        def dependent(ctx):
            order.append("diff-coverage-start")
            return passed()

        plan = [spec("tests", fn=dependency), spec("diff-coverage", fn=dependent, depends_on=["tests"])]
        report = run(plan, tmp_path, concurrency=4, fail_fast=False)

        assert order == ["tests-done", "diff-coverage-start"]
        assert report.ok

    def test_failed_dependency_blocks(self, tmp_path):
        plan = [spec("tests", failed("tests failed")), spec("diff-coverage", depends_on=["tests"])]
        report = run(plan, tmp_path, concurrency=4, fail_fast=False)

        blocked = report.get("diff-coverage")
        assert blocked.skipped
        assert blocked.reason == "blocked by tests"
        assert [r.id for r in report.failed()] == ["tests"]

    def test_order_plan_rejects_dependency_after_dependent(self):
        with pytest.raises(ValueError, match="planned after it"):
            order_plan([spec("b", depends_on=["a"]), spec("a")])

    def test_order_plan_drops_dependency_outside_plan(self):
        plan = order_plan([spec("diff-coverage", depends_on=["tests"])])
        assert plan[0].depends_on == ()


class TestExecuteCheck:
    """Exceptions from a check become failed results."""

    def test_check_failed(self, tmp_path):
        def broken(ctx):
            raise CheckFailed("lint", "exited with code 2", "E501 line too long")

        result = execute_check(spec("lint", fn=broken), make_context(tmp_path))
        assert not result.ok
        assert result.reason == "[lint] exited with code 2"
        assert result.details == {"output": "E501 line too long"}

    def test_unexpected_exception_logged(self, tmp_path, caplog):
        def crash(ctx):
            raise RuntimeError("boom")

        result = execute_check(spec("typecheck", fn=crash), make_context(tmp_path))
        assert not result.ok
        assert result.reason == "typecheck check failed: boom"
        assert "typecheck raised unexpectedly" in caplog.text


class TestBuildPlan:
    """Plan selection over the built-in registry."""

    def test_registry_order(self):
        ids = list(get_registry())
        assert ids.index("env") < ids.index("tests") < ids.index("diff-coverage")

    def test_quick_battery(self):
        plan = build_plan(make_config(), quick=True, mode=MODE_FUNCTIONAL)
        assert [s.id for s in plan] == ["env", "typecheck", "lint", "tests"]

    def test_quick_with_include(self):
        plan = build_plan(make_config(), quick=True, mode=MODE_FUNCTIONAL, include=["tdd-changed-has-tests"])
        assert [s.id for s in plan] == ["env", "typecheck", "lint", "tests", "tdd-changed-has-tests"]

    def test_full_functional_defaults(self):
        plan = build_plan(make_config(), quick=False, mode=MODE_FUNCTIONAL)
        assert [s.id for s in plan] == [
            "env", "trunk", "pre-conflict", "typecheck", "lint", "tests",
            "tdd-changed-has-tests", "coverage", "diff-coverage", "commit-size",
        ]

    def test_full_non_functional_defaults(self):
        plan = build_plan(make_config(), quick=False, mode=MODE_NON_FUNCTIONAL)
        ids = [s.id for s in plan]
        assert "problem-analysis" in ids
        assert "diff-coverage" not in ids
        assert "tdd-changed-has-tests" not in ids

    def test_toggles_enable_checks(self):
        config = make_config(ENABLE_SECURITY="true", ENABLE_COVERAGE="false")
        ids = [s.id for s in build_plan(config, quick=False, mode=MODE_FUNCTIONAL)]
        assert "security" in ids
        assert "coverage" not in ids

    def test_exclude_and_only(self):
        config = make_config()
        assert "lint" not in [s.id for s in build_plan(config, quick=True, mode=MODE_FUNCTIONAL, exclude=["lint"])]
        plan = build_plan(config, quick=False, mode=MODE_FUNCTIONAL, only=["tests", "diff-coverage"])
        assert [s.id for s in plan] == ["tests", "diff-coverage"]
        assert plan[1].depends_on == ("tests",)

    def test_unknown_only_id(self):
        with pytest.raises(ValueError, match="Unknown check id"):
            build_plan(make_config(), quick=False, mode=MODE_FUNCTIONAL, only=["nope"])


class TestRunReport:
    """Report formatting and persistence."""

    def make_report(self):
        return RunReport(
            run_id="20260101-000000-abcdef",
            mode=MODE_FUNCTIONAL,
            quick=True,
            results=[
                CheckResult("env", True, 1, reason="no required environment variables configured", skipped=True),
                CheckResult("lint", False, 40, reason="3 lint warnings (max: 0)"),
                CheckResult("tests", True, 900, reason="12 passed, 0 failed"),
            ],
            cancelled=["coverage"],
            total_ms=950,
        )

    def test_format_text(self):
        text = self.make_report().format_text()
        assert "FAIL      lint" in text
        assert "CANCELLED coverage" in text
        assert "Quality gate FAILED: 1/2 checks passed (functional, quick, 950ms)" in text

    def test_write_validates_and_persists(self, tmp_path):
        path = self.make_report().write(tmp_path)
        assert path == tmp_path / "reports" / "20260101-000000-abcdef.json"
        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert data["ok"] is False
        assert data["cancelled"] == ["coverage"]
        assert data["results"][0]["skipped"] is True


class TestRunChecks:
    """End-to-end through configuration."""

    def test_writes_report(self, tmp_path):
        runner = FakeRunner().on("pytest", stdout="4 passed in 0.10s")
        ctx = make_context(tmp_path, runner=runner)
        report = run_checks(ctx, only=["tests"])

        assert report.ok
        assert report.get("tests").reason == "4 passed, 0 failed"
        assert (tmp_path / ".gatekeeper" / "reports" / "run-test.json").exists()
