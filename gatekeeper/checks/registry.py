"""
Check registry.

A check is a function ExecutionContext -> CheckOutcome registered under a
stable id. Registration records whether the check belongs to the quick
battery, which toggle gates it, which delivery modes it applies to and
which checks must finish before it may start.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

if TYPE_CHECKING:
    from gatekeeper.lib.config import Config
    from gatekeeper.runner.context import ExecutionContext

logger = logging.getLogger(__name__)


@dataclass
class CheckOutcome:
    """What a check function returns."""
    ok: bool
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    skipped: bool = False


def passed(reason: Optional[str] = None, **details) -> CheckOutcome:
    return CheckOutcome(ok=True, reason=reason, details=details or None)


def failed(reason: str, **details) -> CheckOutcome:
    return CheckOutcome(ok=False, reason=reason, details=details or None)


def skipped(reason: str, **details) -> CheckOutcome:
    """Check did not apply (disabled, not configured, wrong mode)."""
    return CheckOutcome(ok=True, reason=reason, details=details or None, skipped=True)


@dataclass
class CheckResult:
    """Outcome of one check execution inside a run."""
    id: str
    ok: bool
    ms: int
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    skipped: bool = False
    discarded: bool = False  # finished after a fail-fast stop; audit only

    @property
    def counted(self) -> bool:
        """Whether this result takes part in the aggregate decision."""
        return not (self.skipped or self.discarded)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"id": self.id, "ok": self.ok, "ms": self.ms}
        if self.reason:
            data["reason"] = self.reason
        if self.details:
            data["details"] = self.details
        if self.skipped:
            data["skipped"] = True
        if self.discarded:
            data["discarded"] = True
        return data


CheckFn = Callable[["ExecutionContext"], CheckOutcome]


@dataclass
class CheckSpec:
    """A registered check."""
    id: str
    fn: CheckFn
    quick: bool = False
    toggle: Optional[str] = None  # Toggles field name
    depends_on: tuple[str, ...] = ()
    modes: Optional[frozenset[str]] = None  # None = all modes
    full_only: bool = False

    def applies_to(self, mode: str) -> bool:
        return self.modes is None or mode in self.modes


# Canonical plan order; ids registered but not listed run after these
CHECK_ORDER = [
    "env",
    "trunk",
    "pre-conflict",
    "typecheck",
    "lint",
    "tests",
    "tdd-changed-has-tests",
    "problem-analysis",
    "coverage",
    "diff-coverage",
    "commit-size",
    "size-budget",
    "security",
    "contracts",
    "db-migrations",
]

_REGISTRY: dict[str, CheckSpec] = {}


def register(
    check_id: str,
    *,
    quick: bool = False,
    toggle: Optional[str] = None,
    depends_on: Iterable[str] = (),
    modes: Optional[Iterable[str]] = None,
    full_only: bool = False,
) -> Callable[[CheckFn], CheckFn]:
    """Decorator registering a check function under a stable id."""

    def decorator(fn: CheckFn) -> CheckFn:
        if check_id in _REGISTRY and _REGISTRY[check_id].fn is not fn:
            raise ValueError(f"Check id registered twice: {check_id}")
        _REGISTRY[check_id] = CheckSpec(
            id=check_id,
            fn=fn,
            quick=quick,
            toggle=toggle,
            depends_on=tuple(depends_on),
            modes=frozenset(modes) if modes is not None else None,
            full_only=full_only,
        )
        return fn

    return decorator


def get_registry() -> dict[str, CheckSpec]:
    """Registered checks in canonical order."""
    def position(check_id: str) -> int:
        return CHECK_ORDER.index(check_id) if check_id in CHECK_ORDER else len(CHECK_ORDER)

    ordered = sorted(_REGISTRY.values(), key=lambda s: position(s.id))
    return {spec.id: spec for spec in ordered}


def order_plan(specs: list[CheckSpec]) -> list[CheckSpec]:
    """Drop dependencies outside the plan and verify they come first.

    Raises:
        ValueError: if a dependency is scheduled after its dependent
    """
    ids = [s.id for s in specs]
    plan = []
    for index, spec in enumerate(specs):
        deps = tuple(d for d in spec.depends_on if d in ids)
        for dep in deps:
            if ids.index(dep) > index:
                raise ValueError(f"Check '{spec.id}' depends on '{dep}', which is planned after it")
        plan.append(CheckSpec(
            id=spec.id,
            fn=spec.fn,
            quick=spec.quick,
            toggle=spec.toggle,
            depends_on=deps,
            modes=spec.modes,
            full_only=spec.full_only,
        ))
    return plan


def build_plan(
    config: "Config",
    *,
    quick: bool,
    mode: str,
    exclude: Iterable[str] = (),
    only: Optional[Iterable[str]] = None,
    include: Iterable[str] = (),
    registry: Optional[dict[str, CheckSpec]] = None,
) -> list[CheckSpec]:
    """Select the checks for a run.

    Quick mode keeps the quick battery (env, typecheck, lint, tests) plus any
    ids in `include`. Full mode keeps every check whose toggle is on and
    whose modes admit `mode`.
    """
    registry = registry if registry is not None else get_registry()
    excluded = set(exclude)
    included = set(include)
    wanted = set(only) if only is not None else None

    selected = []
    for spec in registry.values():
        if spec.id in excluded:
            continue
        if wanted is not None and spec.id not in wanted:
            continue
        if quick and not spec.quick and spec.id not in included:
            continue
        if spec.full_only and quick:
            continue
        if not spec.applies_to(mode):
            continue
        if spec.toggle and not config.toggles.enabled(spec.toggle):
            logger.debug(f"[CHECK] {spec.id}: disabled by toggle {spec.toggle}")
            continue
        selected.append(spec)

    if wanted:
        unknown = wanted - set(registry)
        if unknown:
            raise ValueError(f"Unknown check id(s): {', '.join(sorted(unknown))}")

    return order_plan(selected)
