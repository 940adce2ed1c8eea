"""Shared helpers for checks that shell out to a configured tool."""

import logging
import shlex
from typing import Optional

from gatekeeper.lib.check_commands import build_command
from gatekeeper.lib.errors import CheckTimeout
from gatekeeper.lib.process import ProcessResult
from gatekeeper.runner.context import ExecutionContext

logger = logging.getLogger(__name__)

# Max characters of tool output kept in a check's details
OUTPUT_TAIL = 2000


def run_tool(
    ctx: ExecutionContext,
    check_id: str,
    paths: Optional[list[str]] = None,
) -> Optional[tuple[list[str], ProcessResult]]:
    """Run the command configured for check_id.

    Returns None when no command is configured. Raises CheckTimeout when
    the process overran its budget.
    """
    cmd = build_command(
        ctx.commands,
        check_id,
        paths=paths,
        variables={"coverage_file": ctx.config.paths.coverage_file},
    )
    if not cmd:
        return None

    timeout = ctx.config.timeout_for(check_id)
    logger.debug(f"[CHECK] {check_id}: $ {shlex.join(cmd)} (timeout {timeout}s)")
    result = ctx.runner.run(cmd, timeout=timeout, cwd=ctx.project_dir)
    if result.timed_out:
        raise CheckTimeout(shlex.join(cmd), timeout)
    return cmd, result


def tail(text: str, limit: int = OUTPUT_TAIL) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]
