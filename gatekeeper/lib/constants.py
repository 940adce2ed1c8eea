"""Shared constants for gatekeeper."""

import re

# Project layout
STATE_DIR_NAME = ".gatekeeper"
CONFIG_FILENAME = "gatekeeper.env"
CHECKS_FILENAME = "checks.yaml"
ENV_PREFIX = "GATEKEEPER_"

# Task records
TASK_ID_PATTERN = re.compile(r'^task-[0-9a-z]+-[0-9a-z]{5}$')
PRIORITIES = ["P0", "P1", "P2"]  # highest first
ACTORS = ["cursor", "codex", "chatgpt", "unassigned"]

# Which priorities each actor picks up from the ready bucket
ACTOR_PRIORITIES = {
    "cursor": {"P0", "P1"},
    "codex": {"P0", "P2"},
    "chatgpt": {"P0", "P1", "P2"},
}

MODE_FUNCTIONAL = "functional"
MODE_NON_FUNCTIONAL = "non_functional"
MODES = [MODE_FUNCTIONAL, MODE_NON_FUNCTIONAL]

CI_ENV_VARS = ["CI", "GITHUB_ACTIONS", "GITLAB_CI", "JENKINS_URL", "BUILDKITE", "CIRCLECI"]
