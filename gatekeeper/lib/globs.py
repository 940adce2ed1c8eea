"""Path classification against source/test glob patterns."""

from fnmatch import fnmatchcase
from typing import Iterable

# Recognized regardless of configured globs (JS/TS conventions)
TEST_MARKERS = (".test.", ".spec.", "__tests__/", "__mocks__/")


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    """fnmatch with a leading `**/` also matching at the top level."""
    path = path.replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    for pattern in patterns:
        if fnmatchcase(path, pattern):
            return True
        if pattern.startswith("**/") and fnmatchcase(path, pattern[3:]):
            return True
    return False


def is_test_file(path: str, test_globs: Iterable[str]) -> bool:
    normalized = path.replace("\\", "/")
    if any(marker in normalized for marker in TEST_MARKERS):
        return True
    return matches_any(normalized, test_globs)


def split_changes(paths: Iterable[str], src_globs: Iterable[str], test_globs: Iterable[str]) -> tuple[list[str], list[str]]:
    """Split changed paths into (source files, test files).

    A test file is never counted as source even if a source glob matches it.
    """
    src_globs = list(src_globs)
    test_globs = list(test_globs)
    sources, tests = [], []
    for path in paths:
        if is_test_file(path, test_globs):
            tests.append(path)
        elif matches_any(path, src_globs):
            sources.append(path)
    return sources, tests
