"""
Phase evidence persistence.

Two files under the state directory:
- phases/<task>.jsonl: append-only history of phase records per task.
  A "reset" record starts a new cycle.
- phase.json: the current marker {phase, timestamp, ref, task_id, commit},
  readable by any later invocation.

History is reconstructed lazily: nothing is read until history() is called.
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from gatekeeper.lib import validate
from gatekeeper.lib.fsutil import write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "default"
RESET = "reset"


class Phase(str, Enum):
    RED = "red"
    GREEN = "green"
    REFACTOR = "refactor"


@dataclass
class PhaseRecord:
    """One executed phase (or a reset marker)."""
    phase: str  # red | green | refactor | reset
    timestamp: str
    ref: Optional[str] = None  # evidence reference, e.g. the check run id
    task_id: Optional[str] = None
    commit: Optional[str] = None
    reason: Optional[str] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PhaseStore:
    """Phase history and marker for one unit of work."""

    def __init__(self, state_dir: Path, task_id: Optional[str] = None):
        self.state_dir = state_dir
        self.task_id = task_id
        scope = task_id or DEFAULT_SCOPE
        self.history_path = state_dir / "phases" / f"{scope}.jsonl"
        self.marker_path = state_dir / "phase.json"

    def _read_all(self) -> list[PhaseRecord]:
        if not self.history_path.exists():
            return []

        records = []
        for line_num, line in enumerate(self.history_path.read_text().splitlines(), 1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                validate.validate(data, "phase")
                records.append(PhaseRecord(**data))
            except (json.JSONDecodeError, TypeError, validate.ValidationError) as e:
                logger.warning(f"[PHASE] Skipping corrupted line {line_num} in {self.history_path}: {e}")
        return records

    def history(self) -> list[PhaseRecord]:
        """Records of the active cycle (everything after the latest reset)."""
        records = self._read_all()
        for i in range(len(records) - 1, -1, -1):
            if records[i].phase == RESET:
                return records[i + 1:]
        return records

    def phases(self) -> list[str]:
        return [r.phase for r in self.history()]

    def _append(self, record: PhaseRecord) -> None:
        data = asdict(record)
        validate.validate_before_write(data, "phase", self.history_path)
        self.history_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.history_path, "a") as f:
            f.write(json.dumps(data) + "\n")
            f.flush()

    def record(self, phase: str, ref: Optional[str] = None, commit: Optional[str] = None) -> PhaseRecord:
        """Append a phase record and point the marker at it."""
        record = PhaseRecord(phase=phase, timestamp=_now(), ref=ref, task_id=self.task_id, commit=commit)
        self._append(record)

        marker = asdict(record)
        validate.validate_before_write(marker, "phase", self.marker_path)
        write_json_atomic(self.marker_path, marker)
        logger.info(f"[PHASE] {self.task_id or DEFAULT_SCOPE}: recorded {phase}")
        return record

    def reset(self, reason: str = "") -> PhaseRecord:
        """Start a brand-new cycle. Prior records stay in the file for audit."""
        record = PhaseRecord(phase=RESET, timestamp=_now(), task_id=self.task_id, reason=reason or None)
        self._append(record)
        marker = self.read_marker()
        if marker is not None and marker.task_id == self.task_id:
            self.marker_path.unlink(missing_ok=True)
        logger.info(f"[PHASE] {self.task_id or DEFAULT_SCOPE}: cycle reset ({reason or 'no reason given'})")
        return record

    def read_marker(self) -> Optional[PhaseRecord]:
        return read_marker(self.state_dir)

    def history_was_wiped(self) -> bool:
        """Marker names a phase for this scope but the active history is empty."""
        marker = self.read_marker()
        if marker is None or marker.phase == RESET or marker.task_id != self.task_id:
            return False
        return not self.history()


def read_marker(state_dir: Path) -> Optional[PhaseRecord]:
    """Read the current phase marker; None if absent or invalid."""
    path = state_dir / "phase.json"
    if not path.exists():
        return None
    try:
        data = validate.validate_file(path, "phase")
        return PhaseRecord(**data)
    except (validate.ValidationError, TypeError) as e:
        logger.warning(f"[PHASE] Ignoring invalid marker {path}: {e}")
        return None
