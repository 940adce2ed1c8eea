"""
Check command configuration.

Loads checks.yaml to determine which external command each check runs.
If no config file exists, returns defaults for a Python project.

Templates are split with shlex. Supported placeholders:
- {paths}: expands to zero or more path arguments (the changed test files
  during red-phase certification, nothing otherwise). Must be a whole token.
- {coverage_file}: the configured coverage report path.

A check whose command is null is reported as skipped ("not configured")
when its toggle is on.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .constants import CHECKS_FILENAME

logger = logging.getLogger(__name__)


DEFAULT_CHECK_COMMANDS: dict[str, Optional[str]] = {
    "typecheck": "mypy .",
    "lint": "ruff check . --output-format concise",
    "tests": "pytest -q {paths}",
    "coverage": None,  # report is produced by the test command (pytest --cov)
    "security": "pip-audit -f json",
    "size-budget": None,
    "contracts": None,
    "db-migrations": None,
}


@dataclass
class CheckCommands:
    """Check command templates from checks.yaml."""
    commands: dict[str, Optional[str]] = field(default_factory=lambda: DEFAULT_CHECK_COMMANDS.copy())


def load_check_commands(project_dir: Optional[Path]) -> CheckCommands:
    """Load checks.yaml and return CheckCommands.

    If project_dir is None or file doesn't exist, returns defaults.
    """
    if project_dir is None:
        return CheckCommands()

    config_path = project_dir / CHECKS_FILENAME
    if not config_path.exists():
        return CheckCommands()

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return CheckCommands()

    commands = DEFAULT_CHECK_COMMANDS.copy()
    if isinstance(data, dict) and isinstance(data.get("commands"), dict):
        for check_id, template in data["commands"].items():
            if template is not None and not isinstance(template, str):
                logger.warning(f"Ignoring non-string command for '{check_id}' in {config_path}")
                continue
            commands[str(check_id)] = template
    elif data:
        logger.warning(f"{config_path} has no 'commands' mapping; using defaults")
    return CheckCommands(commands=commands)


def build_command(
    commands: CheckCommands,
    check_id: str,
    paths: Optional[list[str]] = None,
    variables: Optional[dict[str, str]] = None,
) -> list[str] | None:
    """Build the argv for a check, or None if it has no command.

    Example:
        >>> build_command(CheckCommands(), "tests", paths=["tests/test_a.py"])
        ['pytest', '-q', 'tests/test_a.py']
    """
    template = commands.commands.get(check_id)
    if not template:
        return None

    cmd: list[str] = []
    for token in shlex.split(template):
        if token == "{paths}":
            cmd.extend(paths or [])
            continue
        for key, value in (variables or {}).items():
            token = token.replace(f"{{{key}}}", value)
        cmd.append(token)

    leftover = [t for t in cmd if re.search(r'\{\w+\}', t)]
    if leftover:
        logger.error(f"Check '{check_id}' has unsubstituted variables: {leftover}")
    return cmd
