"""
Check runner.

Executes a plan of checks with bounded concurrency, per-check deadlines,
dependency ordering and optional fail-fast, and aggregates the outcomes
into a RunReport. The report is produced whether or not the run passed.
"""

import json
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from gatekeeper.checks.registry import CheckResult, CheckSpec, build_plan
from gatekeeper.lib import validate
from gatekeeper.lib.errors import CheckFailed, CheckTimeout
from gatekeeper.runner.context import ExecutionContext

logger = logging.getLogger(__name__)

# Seconds past a check's timeout before the runner gives up on it
DEADLINE_GRACE = 1.0


@dataclass
class RunReport:
    """Structured result of one battery run."""
    run_id: str
    mode: str
    quick: bool
    results: list[CheckResult] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    total_ms: int = 0
    task_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        """AND of every counted outcome."""
        return all(r.ok for r in self.results if r.counted)

    def failed(self) -> list[CheckResult]:
        return [r for r in self.results if r.counted and not r.ok]

    def passed(self) -> list[CheckResult]:
        return [r for r in self.results if r.counted and r.ok]

    def get(self, check_id: str) -> Optional[CheckResult]:
        for result in self.results:
            if result.id == check_id:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "version": 1,
            "run_id": self.run_id,
            "ok": self.ok,
            "mode": self.mode,
            "quick": self.quick,
            "task_id": self.task_id,
            "total_ms": self.total_ms,
            "results": [r.to_dict() for r in self.results],
            "cancelled": list(self.cancelled),
        }

    def format_text(self) -> str:
        lines = []
        for r in self.results:
            if r.discarded:
                mark = "DISCARDED"
            elif r.skipped:
                mark = "SKIP"
            else:
                mark = "PASS" if r.ok else "FAIL"
            reason = f"  {r.reason}" if r.reason else ""
            lines.append(f"  {mark:<9} {r.id:<22} {r.ms:>7}ms{reason}")
        for check_id in self.cancelled:
            lines.append(f"  {'CANCELLED':<9} {check_id:<22}")

        counted = [r for r in self.results if r.counted]
        verdict = "PASSED" if self.ok else "FAILED"
        lines.append("")
        lines.append(
            f"Quality gate {verdict}: {len(self.passed())}/{len(counted)} checks passed"
            f" ({self.mode}, {'quick' if self.quick else 'full'}, {self.total_ms}ms)"
        )
        return "\n".join(lines)

    def write(self, state_dir: Path) -> Path:
        """Persist the report as reports/<run_id>.json (schema validated)."""
        path = state_dir / "reports" / f"{self.run_id}.json"
        data = self.to_dict()
        validate.validate_before_write(data, "report", path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2, default=str))
        return path


def execute_check(spec: CheckSpec, ctx: ExecutionContext) -> CheckResult:
    """Run one check, converting every failure mode into a CheckResult."""
    start = time.time()
    try:
        outcome = spec.fn(ctx)
    except CheckTimeout as e:
        return CheckResult(spec.id, False, _ms(start), reason=str(e))
    except CheckFailed as e:
        details = {"output": e.detail} if e.detail else None
        return CheckResult(spec.id, False, _ms(start), reason=e.message, details=details)
    except Exception as e:
        logger.exception(f"[CHECK] {spec.id} raised unexpectedly")
        return CheckResult(spec.id, False, _ms(start), reason=f"{spec.id} check failed: {e}")

    return CheckResult(
        id=spec.id,
        ok=outcome.ok,
        ms=_ms(start),
        reason=outcome.reason,
        details=outcome.details,
        skipped=outcome.skipped,
    )


def _ms(start: float) -> int:
    return int((time.time() - start) * 1000)


class CheckRunner:
    """Bounded-parallel executor for a check plan.

    Args:
        plan: Ordered checks (dependencies must precede dependents)
        concurrency: Max checks in flight; 1 runs serially in plan order
        fail_fast: Stop scheduling after the first failure
        timeout_for: check id -> seconds
    """

    def __init__(
        self,
        plan: list[CheckSpec],
        concurrency: int = 1,
        fail_fast: bool = True,
        timeout_for: Optional[Callable[[str], float]] = None,
    ):
        self.plan = list(plan)
        self.concurrency = max(1, concurrency)
        self.fail_fast = fail_fast
        self.timeout_for = timeout_for or (lambda _check_id: 300)

    def run(self, ctx: ExecutionContext, *, quick: bool = False) -> RunReport:
        report = RunReport(run_id=ctx.run_id, mode=ctx.mode, quick=quick, task_id=ctx.task_id)
        if not self.plan:
            return report

        start = time.time()
        pending = list(self.plan)
        running: dict[Future, tuple[CheckSpec, float]] = {}
        outcome_by_id: dict[str, bool] = {}
        stopped = False

        # One thread per check so an abandoned (timed out) check never
        # holds a slot that a sibling needs.
        pool = ThreadPoolExecutor(max_workers=len(self.plan), thread_name_prefix="check")
        try:
            while pending or running:
                if not stopped:
                    self._schedule(ctx, pool, pending, running, outcome_by_id, report)

                if not running:
                    if pending and not stopped:
                        # Nothing runnable and nothing in flight: unresolvable dependencies
                        raise RuntimeError(f"Check plan stalled at: {[s.id for s in pending]}")
                    break

                now = time.time()
                next_deadline = min(deadline for _spec, deadline in running.values())
                done, _ = wait(list(running), timeout=max(0.0, next_deadline - now), return_when=FIRST_COMPLETED)

                finished: list[CheckResult] = []
                for future in sorted(done, key=lambda f: self._position(running[f][0].id)):
                    spec, _deadline = running.pop(future)
                    finished.append(future.result())

                now = time.time()
                for future, (spec, deadline) in list(running.items()):
                    if now >= deadline:
                        running.pop(future)
                        future.cancel()
                        timeout = self.timeout_for(spec.id)
                        logger.error(f"[CHECK] {spec.id}: timed out after {timeout:g}s")
                        finished.append(CheckResult(
                            spec.id, False, int(timeout * 1000), reason=f"timeout after {timeout:g}s",
                        ))

                for result in finished:
                    if stopped:
                        result.discarded = True
                        logger.info(f"[CHECK] {result.id}: finished after fail-fast stop (discarded)")
                    else:
                        self._log_result(result)
                    report.results.append(result)
                    outcome_by_id[result.id] = result.ok or result.skipped
                    if not stopped and self.fail_fast and result.counted and not result.ok:
                        stopped = True
                        logger.error(f"[CHECK] Critical check failed - stopping execution ({result.id})")

                if stopped and pending:
                    report.cancelled.extend(s.id for s in pending)
                    pending.clear()
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        report.total_ms = _ms(start)
        failed = report.failed()
        if failed:
            logger.error(
                f"[CHECK] Checks failed: {len(failed)} of {len([r for r in report.results if r.counted])}"
                f" ({', '.join(r.id for r in failed)})"
            )
        else:
            logger.info(f"[CHECK] All checks passed ({report.total_ms}ms)")
        return report

    def _position(self, check_id: str) -> int:
        for index, spec in enumerate(self.plan):
            if spec.id == check_id:
                return index
        return len(self.plan)

    def _schedule(self, ctx, pool, pending, running, outcome_by_id, report) -> None:
        """Submit every pending check whose dependencies are satisfied."""
        for spec in list(pending):
            if len(running) >= self.concurrency:
                return

            unfinished = [d for d in spec.depends_on if d not in outcome_by_id]
            if unfinished:
                # Keep plan order for serial runs
                if self.concurrency == 1:
                    return
                continue

            pending.remove(spec)
            blocked = [d for d in spec.depends_on if not outcome_by_id[d]]
            if blocked:
                result = CheckResult(spec.id, False, 0, reason=f"blocked by {', '.join(blocked)}", skipped=True)
                logger.info(f"[CHECK] {spec.id}: skipped, blocked by {', '.join(blocked)}")
                report.results.append(result)
                outcome_by_id[spec.id] = False
                continue

            logger.info(f"[CHECK] Running {spec.id}")
            deadline = time.time() + self.timeout_for(spec.id) + DEADLINE_GRACE
            running[pool.submit(execute_check, spec, ctx)] = (spec, deadline)

    @staticmethod
    def _log_result(result: CheckResult) -> None:
        if result.skipped:
            logger.info(f"[CHECK] {result.id}: skipped ({result.reason})")
        elif result.ok:
            logger.info(f"[CHECK] {result.id}: passed ({result.ms}ms)")
        else:
            logger.error(f"[CHECK] {result.id}: failed - {result.reason}")


def run_checks(
    ctx: ExecutionContext,
    *,
    quick: bool = False,
    exclude: Iterable[str] = (),
    only: Optional[Iterable[str]] = None,
    include: Iterable[str] = (),
    write_report: bool = True,
) -> RunReport:
    """Build the plan for ctx and run it with configured concurrency and fail-fast."""
    config = ctx.config
    plan = build_plan(config, quick=quick, mode=ctx.mode, exclude=exclude, only=only, include=include)
    logger.info(f"[CHECK] Plan ({'quick' if quick else 'full'}): {', '.join(s.id for s in plan) or '(empty)'}")

    runner = CheckRunner(
        plan,
        concurrency=config.runner.concurrency,
        fail_fast=config.runner.fail_fast,
        timeout_for=config.timeout_for,
    )
    report = runner.run(ctx, quick=quick)
    if write_report:
        report.write(ctx.state_dir)
    return report
