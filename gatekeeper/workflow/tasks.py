"""
Task records and their lifecycle store.

Each task is a markdown document with labeled sections stored at
.gatekeeper/tasks/<status>/<task-id>.md. The directory encodes the status,
so any actor can see a handoff by listing a bucket. A transition writes
the document into the destination bucket and removes the old copy.

Feedback, resolutions, errors and git references are append-only logs.
"""

import logging
import re
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from gatekeeper.lib.constants import ACTOR_PRIORITIES, ACTORS, PRIORITIES, TASK_ID_PATTERN
from gatekeeper.lib.errors import NotFound
from gatekeeper.lib.fsutil import write_text_atomic
from gatekeeper.runner.locking import task_lock
from gatekeeper.workflow.state_machine import TaskStatus, check_transition, parse_status

logger = logging.getLogger(__name__)

UNASSIGNED = "unassigned"

ACTIONABLE_KEYWORDS = [
    "consider",
    "recommend",
    "suggest",
    "improve",
    "fix",
    "address",
    "warning",
    "issue",
    "problem",
    "concern",
    "better",
    "enhance",
]

_BASE36 = string.digits + string.ascii_lowercase

_ENTRY_HEADER = re.compile(r'^### #(\d+) (\S+) \((.*?)\)(?: -> #(\d+))?$')
_GIT_FIELD = re.compile(r'(branch|commit|pr)=(\S+)')


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _base36(n: int) -> str:
    digits = []
    while n:
        n, rem = divmod(n, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def generate_task_id() -> str:
    """task-<base36 millis>-<5 random base36 chars>"""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"task-{_base36(int(time.time() * 1000))}-{suffix}"


def one_line(value: str) -> str:
    """Fold a multi-line value onto a single line."""
    return " ".join(part.strip() for part in value.splitlines() if part.strip())


def is_actionable(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in ACTIONABLE_KEYWORDS)


@dataclass
class LogEntry:
    """Immutable entry in one of a task's append-only logs."""
    number: int
    timestamp: str
    author: str
    text: str
    ref: Optional[int] = None  # resolution entries point at a feedback number


@dataclass
class GitRef:
    timestamp: str
    branch: Optional[str] = None
    commit: Optional[str] = None
    pr: Optional[str] = None


@dataclass
class Task:
    """A unit of work handed between actors."""
    id: str
    title: str
    priority: str = "P1"
    status: str = TaskStatus.PENDING.value
    actor: str = UNASSIGNED
    classification: Optional[str] = None
    approach: Optional[str] = None
    created: str = ""
    last_updated: str = ""
    assigned: Optional[str] = None
    completed: Optional[str] = None
    overview: str = ""
    goal: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    definition_of_ready: list[str] = field(default_factory=list)
    definition_of_done: list[str] = field(default_factory=list)
    files_affected: list[str] = field(default_factory=list)
    implementation_notes: str = ""
    feedback: list[LogEntry] = field(default_factory=list)
    resolutions: list[LogEntry] = field(default_factory=list)
    errors: list[LogEntry] = field(default_factory=list)
    git_refs: list[GitRef] = field(default_factory=list)

    def open_feedback(self) -> list[LogEntry]:
        """Actionable feedback entries with no resolution yet."""
        resolved = {r.ref for r in self.resolutions if r.ref is not None}
        return [f for f in self.feedback if is_actionable(f.text) and f.number not in resolved]

    @property
    def feedback_resolved(self) -> bool:
        return not self.open_feedback()

    @property
    def git_context(self) -> dict[str, Optional[str]]:
        """Latest known branch / commit / PR."""
        context: dict[str, Optional[str]] = {"branch": None, "commit": None, "pr": None}
        for ref in self.git_refs:
            for key in context:
                value = getattr(ref, key)
                if value:
                    context[key] = value
        return context


@dataclass
class ContextPatch:
    """Context appended to a task alongside a transition or annotation."""
    author: str = "gatekeeper"
    feedback: Optional[str] = None
    error: Optional[str] = None
    resolution: Optional[str] = None
    resolves: Optional[int] = None
    branch: Optional[str] = None
    commit: Optional[str] = None
    pr: Optional[str] = None
    actor: Optional[str] = None
    classification: Optional[str] = None
    approach: Optional[str] = None

    def apply(self, task: Task, now: str) -> None:
        if self.feedback:
            task.feedback.append(LogEntry(len(task.feedback) + 1, now, self.author, self.feedback))
        if self.error:
            task.errors.append(LogEntry(len(task.errors) + 1, now, self.author, self.error))
        if self.resolution is not None:
            task.resolutions.append(
                LogEntry(len(task.resolutions) + 1, now, self.author, self.resolution, ref=self.resolves)
            )
        if self.branch or self.commit or self.pr:
            refs = [one_line(v) if v else None for v in (self.branch, self.commit, self.pr)]
            task.git_refs.append(GitRef(now, *refs))
        if self.actor:
            task.actor = one_line(self.actor)
        if self.classification:
            task.classification = one_line(self.classification)
        if self.approach:
            task.approach = one_line(self.approach)


# --- Markdown format ---------------------------------------------------------

_SCALARS = [
    ("Status", "status"),
    ("Priority", "priority"),
    ("Actor", "actor"),
    ("Classification", "classification"),
    ("Approach", "approach"),
    ("Created", "created"),
    ("Last Updated", "last_updated"),
    ("Assigned", "assigned"),
    ("Completed", "completed"),
]
_SCALAR_ATTRS = {attr for _label, attr in _SCALARS}
_TEXT_SECTIONS = [
    ("Overview", "overview"),
    ("Goal", "goal"),
    ("Implementation Notes", "implementation_notes"),
]
_CHECKLISTS = [
    ("Acceptance Criteria", "acceptance_criteria"),
    ("Definition of Ready", "definition_of_ready"),
    ("Definition of Done", "definition_of_done"),
]
_LISTS = [
    ("Dependencies", "dependencies"),
    ("Files Affected", "files_affected"),
]
_ITEM_ATTRS = {attr for _label, attr in _CHECKLISTS + _LISTS}
_LOGS = [
    ("Review Feedback", "feedback"),
    ("Feedback Resolution", "resolutions"),
    ("Error Context", "errors"),
]
_NONE = "-"


def _quote(text: str) -> list[str]:
    """Body lines prefixed with "> " so they can never read as a heading."""
    return [f"> {line}" if line else ">" for line in text.splitlines()]


def _unquote(lines: list[str]) -> list[str]:
    body = []
    for line in lines:
        if line.startswith("> "):
            body.append(line[2:])
        elif line.startswith(">"):
            body.append(line[1:])
        else:
            body.append(line)
    return body


def _render_log(entries: list[LogEntry]) -> list[str]:
    lines = []
    for entry in entries:
        header = f"### #{entry.number} {entry.timestamp} ({entry.author})"
        if entry.ref is not None:
            header += f" -> #{entry.ref}"
        lines.append(header)
        lines.extend(_quote(entry.text) or [">"])
        lines.append("")
    return lines


def render_task(task: Task) -> str:
    """Serialize a task to its markdown document."""
    lines = [f"# Task: {task.id} - {one_line(task.title)}", ""]
    for label, attr in _SCALARS:
        value = getattr(task, attr)
        lines.append(f"## {label}: {one_line(value) if value else _NONE}")
    lines.append("")

    for label, attr in _TEXT_SECTIONS[:2]:
        lines.extend([f"## {label}", *_quote(getattr(task, attr)), ""])
    for label, attr in _CHECKLISTS:
        lines.append(f"## {label}")
        lines.extend(f"- [ ] {one_line(item)}" for item in getattr(task, attr))
        lines.append("")
    for label, attr in _LISTS:
        lines.append(f"## {label}")
        lines.extend(f"- {one_line(item)}" for item in getattr(task, attr))
        lines.append("")
    label, attr = _TEXT_SECTIONS[2]
    lines.extend([f"## {label}", *_quote(getattr(task, attr)), ""])

    for label, attr in _LOGS:
        lines.append(f"## {label}")
        lines.extend(_render_log(getattr(task, attr)))
        if not getattr(task, attr):
            lines.append("")

    lines.append("## Git Context")
    for ref in task.git_refs:
        fields = " ".join(f"{k}={getattr(ref, k)}" for k in ("branch", "commit", "pr") if getattr(ref, k))
        lines.append(f"- {ref.timestamp}: {fields}")
    return "\n".join(lines).rstrip() + "\n"


def _split_sections(text: str) -> tuple[str, dict[str, str], dict[str, list[str]]]:
    """Return (header line, scalar sections, block sections)."""
    header = ""
    scalars: dict[str, str] = {}
    blocks: dict[str, list[str]] = {}
    current: Optional[list[str]] = None

    for line in text.splitlines():
        if line.startswith("# Task:"):
            header = line
            current = None
        elif line.startswith("## "):
            heading = line[3:]
            if ":" in heading:
                label, value = heading.split(":", 1)
                scalars[label.strip()] = value.strip()
                current = None
            else:
                current = blocks.setdefault(heading.strip(), [])
        elif current is not None:
            current.append(line)
    return header, scalars, blocks


def _parse_log(lines: list[str]) -> list[LogEntry]:
    entries: list[LogEntry] = []
    body: list[str] = []
    for line in lines + ["### end"]:
        match = _ENTRY_HEADER.match(line)
        if match or line == "### end":
            if entries:
                entries[-1].text = "\n".join(body)
            body = []
            if match:
                number, timestamp, author, ref = match.groups()
                entries.append(LogEntry(int(number), timestamp, author, "", int(ref) if ref else None))
        elif line.startswith(">"):
            body.extend(_unquote([line]))
    return entries


def _parse_items(lines: list[str]) -> list[str]:
    items = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("- [ ] ") or stripped.startswith("- [x] "):
            items.append(stripped[6:])
        elif stripped.startswith("- "):
            items.append(stripped[2:])
    return items


def _text(lines: list[str]) -> str:
    return "\n".join(_unquote(lines)).strip()


def parse_task(text: str) -> Task:
    """Parse a task markdown document.

    Raises:
        ValueError: if the document has no task header
    """
    header, scalars, blocks = _split_sections(text)
    match = re.match(r'^# Task: (\S+) - (.*)$', header)
    if not match:
        raise ValueError("missing '# Task: <id> - <title>' header")

    task = Task(id=match.group(1), title=match.group(2).strip())
    for label, attr in _SCALARS:
        value = scalars.get(label)
        if value and value != _NONE:
            setattr(task, attr, value)
    for label, attr in _TEXT_SECTIONS:
        setattr(task, attr, _text(blocks.get(label, [])))
    for label, attr in _CHECKLISTS + _LISTS:
        setattr(task, attr, _parse_items(blocks.get(label, [])))
    for label, attr in _LOGS:
        setattr(task, attr, _parse_log(blocks.get(label, [])))

    for item in _parse_items(blocks.get("Git Context", [])):
        timestamp, _, rest = item.partition(": ")
        values = dict(_GIT_FIELD.findall(rest))
        task.git_refs.append(GitRef(timestamp, values.get("branch"), values.get("commit"), values.get("pr")))
    return task


# --- Store ------------------------------------------------------------------

class TaskStore:
    """Directory-per-status task store with per-task locking."""

    def __init__(self, state_dir: Path, lock_timeout: float = 30):
        self.state_dir = state_dir
        self.tasks_dir = state_dir / "tasks"
        self.lock_timeout = lock_timeout

    def path_for(self, task_id: str, status: str) -> Path:
        return self.tasks_dir / status / f"{task_id}.md"

    def _copies(self, task_id: str) -> list[Path]:
        if not TASK_ID_PATTERN.match(task_id):
            return []
        paths = (self.path_for(task_id, status.value) for status in TaskStatus)
        return [path for path in paths if path.exists()]

    def find(self, task_id: str) -> Optional[Path]:
        """Locate a task document in any status bucket.

        An interrupted move can leave a copy in two buckets; the copy with
        the latest Last Updated wins.
        """
        copies = self._copies(task_id)
        if len(copies) <= 1:
            return copies[0] if copies else None

        def updated(path: Path) -> str:
            try:
                return parse_task(path.read_text()).last_updated
            except (ValueError, OSError):
                return ""

        latest = max(copies, key=updated)
        stale = ", ".join(p.parent.name for p in copies if p != latest)
        logger.warning(f"[TASK] {task_id}: copies in several buckets, using '{latest.parent.name}' over {stale}")
        return latest

    def _load(self, path: Path) -> Task:
        task = parse_task(path.read_text())
        bucket = path.parent.name
        if task.status != bucket:
            # The directory is authoritative
            logger.warning(f"[TASK] {task.id}: document says '{task.status}' but lives in '{bucket}'")
            task.status = bucket
        return task

    def get(self, task_id: str) -> Task:
        path = self.find(task_id)
        if path is None:
            raise NotFound("task", task_id)
        return self._load(path)

    def create(self, title: str, priority: str = "P1", **fields) -> Task:
        """Create a task in pending."""
        if priority not in PRIORITIES:
            raise ValueError(f"Invalid priority '{priority}' (expected one of {', '.join(PRIORITIES)})")
        if not title.strip():
            raise ValueError("Task title must not be empty")

        now = _now()
        task = Task(id=generate_task_id(), title=one_line(title), priority=priority, created=now, last_updated=now)
        for name, value in fields.items():
            if not hasattr(task, name) or name in ("id", "status"):
                raise TypeError(f"Unknown task field: {name}")
            if name in _ITEM_ATTRS:
                value = [one_line(item) for item in value if one_line(item)]
            elif isinstance(value, (list, tuple)):
                value = list(value)
            elif isinstance(value, str) and name in _SCALAR_ATTRS:
                value = one_line(value)
            setattr(task, name, value)

        write_text_atomic(self.path_for(task.id, task.status), render_task(task))
        logger.info(f"[TASK] Created {task.id} ({priority}): {task.title}")
        return task

    def transition(
        self,
        task_id: str,
        target: TaskStatus,
        patch: Optional[ContextPatch] = None,
        guard: Optional[Callable[[Task], None]] = None,
    ) -> Task:
        """Move a task to `target`, appending patch context.

        `guard` runs under the task lock after the edge is validated and may
        raise to veto the move. The document is untouched on any failure.

        Raises:
            NotFound: unknown task id
            InvalidTransition: target not reachable from the current status
        """
        with task_lock(self.state_dir, task_id, self.lock_timeout):
            path = self.find(task_id)
            if path is None:
                raise NotFound("task", task_id)
            task = self._load(path)
            current = task.status

            trigger = check_transition(task_id, current, target)
            if guard:
                guard(task)

            now = _now()
            if patch:
                patch.apply(task, now)
            task.status = target.value
            task.last_updated = now
            if target == TaskStatus.IN_PROGRESS:
                task.assigned = now
            elif target == TaskStatus.COMPLETED:
                task.completed = now

            new_path = self.path_for(task_id, task.status)
            write_text_atomic(new_path, render_task(task))
            for stale in self._copies(task_id):
                if stale != new_path:
                    stale.unlink(missing_ok=True)

        logger.info(f"[TASK] {task_id}: {current} -> {task.status} ({trigger})")
        return task

    def annotate(self, task_id: str, patch: ContextPatch) -> Task:
        """Append context without changing status."""
        with task_lock(self.state_dir, task_id, self.lock_timeout):
            path = self.find(task_id)
            if path is None:
                raise NotFound("task", task_id)
            task = self._load(path)
            now = _now()
            patch.apply(task, now)
            task.last_updated = now
            write_text_atomic(path, render_task(task))
        return task

    def list(self, status: Optional[TaskStatus] = None) -> list[Task]:
        """Tasks ordered by priority, then creation time."""
        statuses = [status] if status else list(TaskStatus)
        tasks = []
        for s in statuses:
            bucket = self.tasks_dir / s.value
            if not bucket.exists():
                continue
            for path in sorted(bucket.glob("task-*.md")):
                task_id = path.stem
                if len(self._copies(task_id)) > 1 and self.find(task_id) != path:
                    continue
                try:
                    tasks.append(self._load(path))
                except (ValueError, OSError) as e:
                    logger.warning(f"[TASK] Skipping unreadable task file {path}: {e}")

        def sort_key(task: Task):
            rank = PRIORITIES.index(task.priority) if task.priority in PRIORITIES else len(PRIORITIES)
            return (rank, task.created)

        return sorted(tasks, key=sort_key)

    def next_for_actor(self, actor: str) -> Optional[Task]:
        """Highest-priority ready task this actor may take."""
        if actor not in ACTORS or actor == UNASSIGNED:
            raise ValueError(f"Unknown actor '{actor}'")
        allowed = ACTOR_PRIORITIES[actor]
        for task in self.list(TaskStatus.READY):
            if task.priority in allowed:
                return task
        return None


def status_of(value: str) -> TaskStatus:
    """Parse a user-supplied status.

    Raises:
        ValueError: unknown status
    """
    status = parse_status(value)
    if status is None:
        raise ValueError(f"Unknown status '{value}'")
    return status
