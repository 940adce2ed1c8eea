"""Checks delegated to project tooling: security, contracts, db-migrations."""

import json
import logging

from gatekeeper.checks.registry import CheckOutcome, failed, passed, register, skipped
from gatekeeper.checks.tooling import run_tool, tail
from gatekeeper.runner.context import ExecutionContext

logger = logging.getLogger(__name__)


def parse_audit(output: str) -> list[dict]:
    """Vulnerabilities from `pip-audit -f json` output.

    Raises:
        ValueError: if the output is not pip-audit JSON
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ValueError(f"could not parse audit output: {e}")

    # pip-audit >= 2.5 wraps the list in {"dependencies": [...]}
    dependencies = data.get("dependencies", []) if isinstance(data, dict) else data
    if not isinstance(dependencies, list):
        raise ValueError("unexpected audit output shape")

    vulns = []
    for dep in dependencies:
        for vuln in dep.get("vulns", []):
            vulns.append({
                "package": dep.get("name"),
                "version": dep.get("version"),
                "id": vuln.get("id"),
                "fix_versions": vuln.get("fix_versions", []),
            })
    return vulns


@register("security", toggle="security")
def check_security(ctx: ExecutionContext) -> CheckOutcome:
    ran = run_tool(ctx, "security")
    if ran is None:
        return skipped("not configured")
    _cmd, result = ran

    try:
        vulns = parse_audit(result.stdout)
    except ValueError as e:
        if result.success:
            return passed("audit produced no JSON")
        return failed("Security scan failed - could not parse results", error=str(e), output=tail(result.output))

    if vulns:
        packages = sorted({v["package"] for v in vulns if v["package"]})
        return failed(
            f"{len(vulns)} known vulnerabilit{'y' if len(vulns) == 1 else 'ies'} in {', '.join(packages)}",
            vulnerabilities=vulns,
        )
    return passed(vulnerabilities=[])


def _run_validator(ctx: ExecutionContext, check_id: str, label: str) -> CheckOutcome:
    ran = run_tool(ctx, check_id)
    if ran is None:
        return skipped("not configured")
    _cmd, result = ran
    if not result.success:
        return failed(f"{label} validation failed", output=tail(result.output))
    return passed()


@register("contracts", toggle="contracts")
def check_contracts(ctx: ExecutionContext) -> CheckOutcome:
    return _run_validator(ctx, "contracts", "contract")


@register("db-migrations", toggle="db_migrations")
def check_db_migrations(ctx: ExecutionContext) -> CheckOutcome:
    return _run_validator(ctx, "db-migrations", "migration")
