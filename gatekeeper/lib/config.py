"""
Configuration resolver for gatekeeper.

Builds one immutable snapshot per invocation from three layers:
built-in defaults, the project's gatekeeper.env, and GATEKEEPER_* process
environment variables (environment wins). The merged document is schema
validated before any dataclass is constructed.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from . import envparse
from . import validate
from .constants import CONFIG_FILENAME, ENV_PREFIX, STATE_DIR_NAME
from .errors import ConfigurationInvalid

logger = logging.getLogger(__name__)


# (KEY, section, field, kind, default)
FIELDS = [
    ("DIFF_COVERAGE_FUNCTIONAL", "thresholds", "diff_coverage_functional", "int", 85),
    ("DIFF_COVERAGE_REFACTOR", "thresholds", "diff_coverage_refactor", "int", 60),
    ("GLOBAL_COVERAGE", "thresholds", "global_coverage", "int", 25),
    ("MAX_WARNINGS", "thresholds", "max_warnings", "int", 0),
    ("MAX_COMMIT_SIZE", "thresholds", "max_commit_size", "int", 300),

    ("CONCURRENCY", "runner", "concurrency", "int", 4),
    ("FAIL_FAST", "runner", "fail_fast", "bool", True),
    ("REVIEW_CHECK_MODE", "runner", "review_check_mode", "str", "quick"),

    ("ENABLE_COVERAGE", "toggles", "coverage", "bool", True),
    ("ENABLE_DIFF_COVERAGE", "toggles", "diff_coverage", "bool", True),
    ("ENABLE_COMMIT_SIZE", "toggles", "commit_size", "bool", True),
    ("ENABLE_SIZE_BUDGET", "toggles", "size_budget", "bool", False),
    ("ENABLE_SECURITY", "toggles", "security", "bool", False),
    ("ENABLE_CONTRACTS", "toggles", "contracts", "bool", False),
    ("ENABLE_DB_MIGRATIONS", "toggles", "db_migrations", "bool", False),
    ("ENABLE_TDD", "toggles", "tdd", "bool", True),

    ("TIMEOUT_DEFAULT", "timeouts", "default", "int", 300),
    ("TIMEOUT_TYPECHECK", "timeouts", "typecheck", "int", 60),
    ("TIMEOUT_LINT", "timeouts", "lint", "int", 30),
    ("TIMEOUT_TESTS", "timeouts", "tests", "int", 120),
    ("TIMEOUT_BUILD", "timeouts", "build", "int", 180),
    ("TIMEOUT_COVERAGE", "timeouts", "coverage", "int", 60),

    ("FUNCTIONAL_REQUIRE_TDD", "functional", "require_tdd", "bool", True),
    ("FUNCTIONAL_REQUIRE_DIFF_COVERAGE", "functional", "require_diff_coverage", "bool", True),
    ("FUNCTIONAL_REQUIRE_TESTS", "functional", "require_tests", "bool", True),

    ("NONFUNCTIONAL_REQUIRE_PROBLEM_ANALYSIS", "non_functional", "require_problem_analysis", "bool", True),
    ("NONFUNCTIONAL_PROBLEM_ANALYSIS_MIN_LENGTH", "non_functional", "problem_analysis_min_length", "int", 200),
    ("NONFUNCTIONAL_REQUIRE_LINT", "non_functional", "require_lint", "bool", False),

    ("BASE_REF", "git", "base_ref", "str", "origin/main"),
    ("MAIN_BRANCH", "git", "main_branch", "str", "main"),
    ("REQUIRE_MAIN_BRANCH", "git", "require_main_branch", "bool", False),
    ("ENABLE_PRE_CONFLICT_CHECK", "git", "enable_pre_conflict_check", "bool", True),

    ("SRC_GLOBS", "paths", "src_globs", "list", ["**/*.py"]),
    ("TEST_GLOBS", "paths", "test_globs", "list", ["tests/**", "**/test_*.py", "**/*_test.py"]),
    ("COVERAGE_FILE", "paths", "coverage_file", "str", "coverage.json"),
    ("PROBLEM_ANALYSIS_FILE", "paths", "problem_analysis_file", "str", "PROBLEM_ANALYSIS.md"),
    ("REQUIRED_ENV", "paths", "required_env", "list", []),
]

KNOWN_KEYS = {f[0] for f in FIELDS}

_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


@dataclass(frozen=True)
class Thresholds:
    diff_coverage_functional: int
    diff_coverage_refactor: int
    global_coverage: int
    max_warnings: int
    max_commit_size: int


@dataclass(frozen=True)
class RunnerSettings:
    concurrency: int
    fail_fast: bool
    review_check_mode: str  # "quick" or "full"


@dataclass(frozen=True)
class Toggles:
    coverage: bool
    diff_coverage: bool
    commit_size: bool
    size_budget: bool
    security: bool
    contracts: bool
    db_migrations: bool
    tdd: bool

    def enabled(self, name: str) -> bool:
        return bool(getattr(self, name))


# Check ids that share a timeout bucket other than their own name
_TIMEOUT_ALIASES = {
    "diff-coverage": "coverage",
    "size-budget": "build",
    "contracts": "build",
    "db-migrations": "build",
    "security": "tests",
}


@dataclass(frozen=True)
class Timeouts:
    """Per-check timeouts in seconds."""
    default: int
    typecheck: int
    lint: int
    tests: int
    build: int
    coverage: int

    def for_check(self, check_id: str) -> int:
        name = _TIMEOUT_ALIASES.get(check_id, check_id)
        return getattr(self, name, self.default)


@dataclass(frozen=True)
class FunctionalMode:
    require_tdd: bool
    require_diff_coverage: bool
    require_tests: bool


@dataclass(frozen=True)
class NonFunctionalMode:
    require_problem_analysis: bool
    problem_analysis_min_length: int
    require_lint: bool  # style check in the relaxed review profile


@dataclass(frozen=True)
class GitSettings:
    base_ref: str
    main_branch: str
    require_main_branch: bool
    enable_pre_conflict_check: bool


@dataclass(frozen=True)
class PathSettings:
    src_globs: tuple[str, ...]
    test_globs: tuple[str, ...]
    coverage_file: str
    problem_analysis_file: str
    required_env: tuple[str, ...]


@dataclass(frozen=True)
class Config:
    """Immutable configuration snapshot."""
    thresholds: Thresholds
    runner: RunnerSettings
    toggles: Toggles
    timeouts: Timeouts
    functional: FunctionalMode
    non_functional: NonFunctionalMode
    git: GitSettings
    paths: PathSettings
    # KEY -> "default" | "file" | "env", for `gk config`
    sources: Mapping[str, str] = field(default_factory=dict, compare=False)

    def timeout_for(self, check_id: str) -> int:
        return self.timeouts.for_check(check_id)


def _coerce(key: str, raw: Any, kind: str) -> Any:
    """Coerce a raw string value to the field's type."""
    if not isinstance(raw, str):
        return raw
    value = raw.strip()
    if kind == "int":
        try:
            return int(value)
        except ValueError:
            raise ConfigurationInvalid(f"{key} must be an integer, got '{raw}'") from None
    if kind == "bool":
        lowered = value.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigurationInvalid(f"{key} must be true or false, got '{raw}'")
    if kind == "list":
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def _load_project_file(project_dir: Path) -> dict[str, str]:
    path = project_dir / CONFIG_FILENAME
    if not path.exists():
        return {}
    try:
        values = envparse.load_env(path)
    except ValueError as e:
        raise ConfigurationInvalid(str(e)) from None

    unknown = sorted(set(values) - KNOWN_KEYS)
    if unknown:
        logger.warning(f"[CONFIG] Ignoring unknown keys in {path.name}: {', '.join(unknown)}")
    return values


def merge_layers(
    file_values: Mapping[str, str],
    env_values: Mapping[str, str],
) -> tuple[dict, dict[str, str]]:
    """Merge defaults < file < env into the nested config document.

    Returns (document, sources).
    """
    document: dict[str, dict] = {}
    sources: dict[str, str] = {}

    for key, section, name, kind, default in FIELDS:
        value, source = default, "default"
        if key in file_values:
            value, source = file_values[key], "file"
        if key in env_values:
            value, source = env_values[key], "env"
        document.setdefault(section, {})[name] = _coerce(key, value, kind)
        sources[key] = source

    return document, sources


def load_config(project_dir: Path, environ: Optional[Mapping[str, str]] = None) -> Config:
    """Resolve the configuration snapshot for a project.

    Raises:
        ConfigurationInvalid: if any layer fails to parse or the merged
            document does not match config.schema.json
    """
    if environ is None:
        environ = os.environ

    file_values = _load_project_file(project_dir)
    env_values = envparse.prefixed_overrides(environ, ENV_PREFIX)
    document, sources = merge_layers(file_values, env_values)

    try:
        validate.validate(document, "config")
    except validate.ValidationError as e:
        raise ConfigurationInvalid(f"Invalid configuration: {e.message}", e.path) from None

    overridden = [k for k, s in sources.items() if s != "default"]
    if overridden:
        logger.debug(f"[CONFIG] Overrides: {', '.join(f'{k}({sources[k]})' for k in overridden)}")

    return config_from_document(document, sources)


def config_from_document(document: dict, sources: Optional[Mapping[str, str]] = None) -> Config:
    """Build the frozen snapshot from an already validated document."""
    paths = document["paths"]
    return Config(
        thresholds=Thresholds(**document["thresholds"]),
        runner=RunnerSettings(**document["runner"]),
        toggles=Toggles(**document["toggles"]),
        timeouts=Timeouts(**document["timeouts"]),
        functional=FunctionalMode(**document["functional"]),
        non_functional=NonFunctionalMode(**document["non_functional"]),
        git=GitSettings(**document["git"]),
        paths=PathSettings(
            src_globs=tuple(paths["src_globs"]),
            test_globs=tuple(paths["test_globs"]),
            coverage_file=paths["coverage_file"],
            problem_analysis_file=paths["problem_analysis_file"],
            required_env=tuple(paths["required_env"]),
        ),
        sources=dict(sources or {}),
    )


def default_config() -> Config:
    """Snapshot built from defaults only (no file, no environment)."""
    document, sources = merge_layers({}, {})
    return config_from_document(document, sources)


def get_state_dir(project_dir: Path) -> Path:
    """Directory holding task buckets, phase records, locks and reports."""
    return project_dir / STATE_DIR_NAME
