"""Quality checks.

Importing this package registers every built-in check with the registry.
"""

from gatekeeper.checks import coverage, discipline, environment, external, size, static  # noqa: F401
from gatekeeper.checks.registry import (
    CheckOutcome,
    CheckResult,
    CheckSpec,
    build_plan,
    failed,
    get_registry,
    passed,
    register,
    skipped,
)
from gatekeeper.checks.runner import CheckRunner, RunReport, execute_check, run_checks

__all__ = [
    "CheckOutcome",
    "CheckResult",
    "CheckSpec",
    "CheckRunner",
    "RunReport",
    "build_plan",
    "execute_check",
    "failed",
    "get_registry",
    "passed",
    "register",
    "run_checks",
    "skipped",
]
