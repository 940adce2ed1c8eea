"""Tests for gatekeeper.lib.config module."""

from pathlib import Path

import pytest

from gatekeeper.lib.config import default_config, get_state_dir, load_config
from gatekeeper.lib.errors import ConfigurationInvalid


class TestDefaults:
    """Built-in defaults with no file and no environment."""

    def test_default_thresholds(self):
        config = default_config()
        assert config.thresholds.diff_coverage_functional == 85
        assert config.thresholds.diff_coverage_refactor == 60
        assert config.thresholds.global_coverage == 25
        assert config.thresholds.max_warnings == 0
        assert config.thresholds.max_commit_size == 300

    def test_default_runner(self):
        config = default_config()
        assert config.runner.concurrency == 4
        assert config.runner.fail_fast is True
        assert config.runner.review_check_mode == "quick"

    def test_default_toggles(self):
        toggles = default_config().toggles
        assert toggles.enabled("coverage")
        assert toggles.enabled("tdd")
        assert not toggles.enabled("security")
        assert not toggles.enabled("size_budget")

    def test_all_sources_default(self):
        config = load_config(Path("/nonexistent-project"), environ={})
        assert set(config.sources.values()) == {"default"}


class TestLayering:
    """defaults < gatekeeper.env < GATEKEEPER_* environment."""

    def test_file_overrides_default(self, tmp_path):
        (tmp_path / "gatekeeper.env").write_text("MAX_COMMIT_SIZE=150\nFAIL_FAST=false\n")
        config = load_config(tmp_path, environ={})
        assert config.thresholds.max_commit_size == 150
        assert config.runner.fail_fast is False
        assert config.sources["MAX_COMMIT_SIZE"] == "file"

    def test_env_overrides_file(self, tmp_path):
        (tmp_path / "gatekeeper.env").write_text("MAX_COMMIT_SIZE=150\n")
        config = load_config(tmp_path, environ={"GATEKEEPER_MAX_COMMIT_SIZE": "500"})
        assert config.thresholds.max_commit_size == 500
        assert config.sources["MAX_COMMIT_SIZE"] == "env"

    def test_list_values_split_on_commas(self, tmp_path):
        (tmp_path / "gatekeeper.env").write_text("REQUIRED_ENV=DATABASE_URL, API_KEY\n")
        config = load_config(tmp_path, environ={})
        assert config.paths.required_env == ("DATABASE_URL", "API_KEY")

    def test_unknown_keys_warn(self, tmp_path, caplog):
        (tmp_path / "gatekeeper.env").write_text("NOT_A_SETTING=1\n")
        load_config(tmp_path, environ={})
        assert "NOT_A_SETTING" in caplog.text


class TestInvalidConfiguration:
    """Invalid configuration is fatal at startup."""

    def test_non_integer(self, tmp_path):
        (tmp_path / "gatekeeper.env").write_text("MAX_WARNINGS=many\n")
        with pytest.raises(ConfigurationInvalid, match="MAX_WARNINGS must be an integer"):
            load_config(tmp_path, environ={})

    def test_bad_boolean(self, tmp_path):
        with pytest.raises(ConfigurationInvalid, match="FAIL_FAST must be true or false"):
            load_config(tmp_path, environ={"GATEKEEPER_FAIL_FAST": "maybe"})

    def test_schema_range(self, tmp_path):
        (tmp_path / "gatekeeper.env").write_text("GLOBAL_COVERAGE=150\n")
        with pytest.raises(ConfigurationInvalid, match="Invalid configuration"):
            load_config(tmp_path, environ={})

    def test_schema_enum(self, tmp_path):
        with pytest.raises(ConfigurationInvalid):
            load_config(tmp_path, environ={"GATEKEEPER_REVIEW_CHECK_MODE": "sometimes"})

    def test_unparseable_file(self, tmp_path):
        (tmp_path / "gatekeeper.env").write_text("BASE_REF=$(rm -rf /)\n")
        with pytest.raises(ConfigurationInvalid, match="Forbidden pattern"):
            load_config(tmp_path, environ={})

    def test_exit_code_is_configuration_error(self):
        assert ConfigurationInvalid("x").exit_code == 2


class TestTimeouts:
    """Per-check timeout lookup."""

    def test_own_bucket(self):
        config = default_config()
        assert config.timeout_for("tests") == 120
        assert config.timeout_for("lint") == 30

    def test_aliased_bucket(self):
        config = default_config()
        assert config.timeout_for("diff-coverage") == config.timeouts.coverage
        assert config.timeout_for("contracts") == config.timeouts.build

    def test_unknown_uses_default(self):
        assert default_config().timeout_for("env") == 300


class TestStateDir:

    def test_under_project(self, tmp_path):
        assert get_state_dir(tmp_path) == tmp_path / ".gatekeeper"
