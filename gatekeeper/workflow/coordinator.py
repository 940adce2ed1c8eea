"""
Handoff coordinator.

Composes the task store, classifier, phase history and check runner into
the operations actors call to pass work between each other. Each operation
loads the current record, validates the move, runs any gates, and only
then transitions. On failure the record keeps its status; check failures
are appended to its error context.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping, Optional

from gatekeeper import git
from gatekeeper.checks.runner import RunReport, run_checks
from gatekeeper.lib.config import Config, get_state_dir, load_config
from gatekeeper.lib.constants import ACTORS, MODE_FUNCTIONAL, MODE_NON_FUNCTIONAL
from gatekeeper.lib.errors import CheckFailed, FeedbackUnresolved, InvalidSequence, InvalidTransition, NotFound
from gatekeeper.lib.process import ProcessRunner, SubprocessRunner
from gatekeeper.runner.context import build_context
from gatekeeper.workflow.classifier import Classifier, KeywordClassifier, approach_for
from gatekeeper.workflow.phase_store import Phase, PhaseStore
from gatekeeper.workflow.state_machine import TaskStatus, check_transition
from gatekeeper.workflow.tasks import UNASSIGNED, ContextPatch, LogEntry, Task, TaskStore

logger = logging.getLogger(__name__)

# Mode-discipline checks that stay in a quick review battery
REVIEW_DISCIPLINE_CHECKS = ["tdd-changed-has-tests", "problem-analysis"]


@dataclass
class StatusSummary:
    counts: dict[str, int]
    tasks: dict[str, list[Task]] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass
class PrepushViolation:
    task: Task
    open_feedback: list[LogEntry]


class HandoffCoordinator:
    """Task handoff operations for one project."""

    def __init__(
        self,
        project_dir: Path,
        config: Optional[Config] = None,
        classifier: Optional[Classifier] = None,
        runner: Optional[ProcessRunner] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.project_dir = project_dir
        self.environ = environ if environ is not None else os.environ
        self.config = config or load_config(project_dir, self.environ)
        self.classifier = classifier or KeywordClassifier()
        self.runner = runner or SubprocessRunner()
        self.state_dir = get_state_dir(project_dir)
        self.store = TaskStore(self.state_dir)

    # --- lifecycle -----------------------------------------------------------

    def create(
        self,
        title: str,
        priority: str = "P1",
        acceptance_criteria: Iterable[str] = (),
        dependencies: Iterable[str] = (),
        **fields,
    ) -> Task:
        return self.store.create(
            title,
            priority,
            acceptance_criteria=list(acceptance_criteria),
            dependencies=list(dependencies),
            **fields,
        )

    def prepare(self, task_id: str) -> Task:
        """pending -> ready. Classifies the task the first time through."""
        task = self.store.get(task_id)
        classification = task.classification or self.classifier.classify(task.title, task.acceptance_criteria)
        patch = ContextPatch(classification=classification, approach=task.approach or approach_for(classification))

        def guard(current: Task) -> None:
            for dep_id in current.dependencies:
                dep = self.store.get(dep_id)
                if dep.status != TaskStatus.COMPLETED.value:
                    raise InvalidTransition(
                        current.status, TaskStatus.READY.value, task_id,
                        detail=f"dependency {dep_id} is {dep.status}, not completed",
                    )
            if not current.acceptance_criteria:
                raise InvalidTransition(
                    current.status, TaskStatus.READY.value, task_id,
                    detail="at least one acceptance criterion is required",
                )

        task = self.store.transition(task_id, TaskStatus.READY, patch, guard=guard)
        logger.info(f"[TASK] {task_id}: classified {task.classification} ({task.approach})")
        return task

    def claim(self, task_id: str, actor: str) -> Task:
        """ready -> in-progress, assigned to actor."""
        if actor not in ACTORS or actor == UNASSIGNED:
            raise ValueError(f"Unknown actor '{actor}' (expected one of: {', '.join(a for a in ACTORS if a != UNASSIGNED)})")

        task = self.store.get(task_id)
        check_transition(task_id, task.status, TaskStatus.IN_PROGRESS)

        if self.config.git.enable_pre_conflict_check:
            self._pre_claim_conflict_check(task_id)

        return self.store.transition(task_id, TaskStatus.IN_PROGRESS, ContextPatch(author=actor, actor=actor))

    def _pre_claim_conflict_check(self, task_id: str) -> None:
        if git.has_uncommitted_changes(self.project_dir, runner=self.runner):
            logger.warning(f"[TASK] {task_id}: skipping conflict check, working tree is dirty")
            return
        base_ref = git.resolve_base_ref(self.project_dir, [self.config.git.base_ref], runner=self.runner)
        if base_ref is None or base_ref.startswith("HEAD"):
            logger.warning(f"[TASK] {task_id}: skipping conflict check, {self.config.git.base_ref} not found")
            return

        conflicts = git.trial_merge(self.project_dir, base_ref, runner=self.runner)
        if conflicts:
            message = f"merge conflicts with {base_ref}: {', '.join(conflicts)}"
            self.store.annotate(task_id, ContextPatch(error=f"Claim blocked: {message}"))
            raise CheckFailed("pre-conflict", message)

    def request_review(self, task_id: str) -> tuple[Task, RunReport]:
        """in-progress -> review after the review battery passes.

        Raises:
            InvalidSequence: functional task without a certified green phase
            CheckFailed: the battery failed (carries the report)
        """
        task = self.store.get(task_id)
        check_transition(task_id, task.status, TaskStatus.REVIEW)

        mode = task.classification or MODE_FUNCTIONAL
        if mode == MODE_FUNCTIONAL and self.config.functional.require_tdd:
            phases = PhaseStore(self.state_dir, task_id).phases()
            if Phase.GREEN.value not in phases and Phase.REFACTOR.value not in phases:
                raise InvalidSequence(
                    "Cannot request review without completing Green phase",
                    last_phase=phases[-1] if phases else None,
                    requested="review",
                )

        exclude = []
        if mode == MODE_NON_FUNCTIONAL and not self.config.non_functional.require_lint:
            exclude.append("lint")

        ctx = build_context(
            self.project_dir,
            self.config,
            mode=mode,
            task_id=task_id,
            runner=self.runner,
            environ=self.environ,
        )
        report = run_checks(
            ctx,
            quick=self.config.runner.review_check_mode == "quick",
            exclude=exclude,
            include=REVIEW_DISCIPLINE_CHECKS,
        )

        if not report.ok:
            failed_ids = ", ".join(r.id for r in report.failed())
            self.store.annotate(task_id, ContextPatch(error=f"Review checks failed ({report.run_id}): {failed_ids}"))
            raise CheckFailed("review", f"{len(report.failed())} check(s) failed: {failed_ids}", report=report)

        commit = git.get_commit_sha(self.project_dir, runner=self.runner)
        task = self.store.transition(task_id, TaskStatus.REVIEW, ContextPatch(commit=commit))
        return task, report

    def complete(self, task_id: str) -> Task:
        """review -> completed; blocked while actionable feedback is open."""

        def guard(current: Task) -> None:
            open_items = current.open_feedback()
            if open_items:
                raise FeedbackUnresolved(task_id, [f.number for f in open_items])

        return self.store.transition(task_id, TaskStatus.COMPLETED, guard=guard)

    def fail(self, task_id: str, reason: str, author: str = "gatekeeper") -> Task:
        """Any live status -> failed. A failed task only gains the error entry."""
        patch = ContextPatch(author=author, error=reason)
        task = self.store.get(task_id)
        if task.status == TaskStatus.FAILED.value:
            return self.store.annotate(task_id, patch)
        return self.store.transition(task_id, TaskStatus.FAILED, patch)

    def add_feedback(self, task_id: str, text: str, author: str = "reviewer") -> Task:
        """review -> ready with the feedback appended.

        Feedback on a completed task is appended without a status change; the
        pre-push guard then reports it until resolved.
        """
        patch = ContextPatch(author=author, feedback=text)
        task = self.store.get(task_id)
        if task.status == TaskStatus.COMPLETED.value:
            return self.store.annotate(task_id, patch)
        return self.store.transition(task_id, TaskStatus.READY, patch)

    def resolve_feedback(self, task_id: str, number: int, note: str = "", author: str = "gatekeeper") -> Task:
        task = self.store.get(task_id)
        if not any(f.number == number for f in task.feedback):
            raise NotFound("feedback", f"{task_id}#{number}")
        return self.store.annotate(
            task_id,
            ContextPatch(author=author, resolution=note or "resolved", resolves=number),
        )

    def retry(self, task_id: str) -> Task:
        return self.store.transition(task_id, TaskStatus.READY)

    def record_git(
        self,
        task_id: str,
        branch: Optional[str] = None,
        commit: Optional[str] = None,
        pr: Optional[str] = None,
    ) -> Task:
        if not (branch or commit or pr):
            raise ValueError("At least one of branch, commit or pr is required")
        return self.store.annotate(task_id, ContextPatch(branch=branch, commit=commit, pr=pr))

    # --- read-only -----------------------------------------------------------

    def status(self) -> StatusSummary:
        tasks = self.store.list()
        summary = StatusSummary(counts={s.value: 0 for s in TaskStatus})
        for task in tasks:
            summary.counts[task.status] = summary.counts.get(task.status, 0) + 1
            summary.tasks.setdefault(task.status, []).append(task)
        return summary

    def next_for_actor(self, actor: str) -> Optional[Task]:
        return self.store.next_for_actor(actor)

    def prepush_guard(self) -> list[PrepushViolation]:
        """Completed tasks that still carry open actionable feedback."""
        violations = []
        for task in self.store.list(TaskStatus.COMPLETED):
            open_items = task.open_feedback()
            if open_items:
                violations.append(PrepushViolation(task, open_items))
        if violations:
            logger.error(f"[TASK] Push blocked: {len(violations)} completed task(s) with unresolved feedback")
        return violations
