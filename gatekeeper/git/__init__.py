"""Git operations for gatekeeper.

Every helper runs through run_git, which accepts an optional ProcessRunner
so tests can inject canned git output.

Return type conventions:
- Functions returning ProcessResult: Caller must check .success before using output.
  Examples: fetch()
- Functions returning bool: True on condition met, False otherwise.
  Examples: has_uncommitted_changes(), ref_exists()
- Functions returning parsed values (str, list, dict): Return empty/None on failure.
  Examples: get_changed_files() -> [], get_current_branch() -> None
"""

from gatekeeper.git.runner import run_git
from gatekeeper.git.status import (
    has_uncommitted_changes,
    get_changed_files,
    get_conflicted_paths,
    parse_porcelain_z,
)
from gatekeeper.git.diff import (
    DiffStat,
    get_changed_lines,
    get_diff_names,
    get_shortstat,
    parse_added_lines,
    parse_shortstat,
)
from gatekeeper.git.branch import (
    get_current_branch,
    get_commit_sha,
    get_commit_message,
    ref_exists,
    resolve_base_ref,
)
from gatekeeper.git.merge import (
    fetch,
    trial_merge,
)

__all__ = [
    "run_git",
    # status
    "has_uncommitted_changes",
    "get_changed_files",
    "get_conflicted_paths",
    "parse_porcelain_z",
    # diff
    "DiffStat",
    "get_changed_lines",
    "get_diff_names",
    "get_shortstat",
    "parse_added_lines",
    "parse_shortstat",
    # branch
    "get_current_branch",
    "get_commit_sha",
    "get_commit_message",
    "ref_exists",
    "resolve_base_ref",
    # merge
    "fetch",
    "trial_merge",
]
