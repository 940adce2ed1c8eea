"""Tests for gatekeeper.git module."""

import shutil
import subprocess
from pathlib import Path
from unittest.mock import patch, MagicMock

import pytest

from conftest import FakeRunner

from gatekeeper import git
from gatekeeper.git.runner import run_git
from gatekeeper.lib.process import ProcessResult, SubprocessRunner


class TestProcessResult:
    """Test ProcessResult dataclass."""

    def test_success_when_returncode_zero(self):
        result = ProcessResult(returncode=0, stdout="ok", stderr="")
        assert result.success is True

    def test_failure_when_returncode_nonzero(self):
        result = ProcessResult(returncode=1, stdout="", stderr="error")
        assert result.success is False

    def test_failure_when_timed_out(self):
        result = ProcessResult(returncode=0, stdout="ok", stderr="", timed_out=True)
        assert result.success is False


class TestSubprocessRunner:
    """Test the subprocess-backed runner."""

    @patch("gatekeeper.lib.process.subprocess.run")
    def test_returns_result_on_success(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="output", stderr="")
        result = SubprocessRunner().run(["git", "status"], timeout=5, cwd=Path("/tmp"))
        assert result.success
        assert result.stdout == "output"
        assert mock_run.call_args.kwargs["timeout"] == 5

    @patch("gatekeeper.lib.process.subprocess.run")
    def test_handles_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd=["pytest"], timeout=5)
        result = SubprocessRunner().run(["pytest"], timeout=5)
        assert result.timed_out is True
        assert result.returncode == -1

    @patch("gatekeeper.lib.process.subprocess.run")
    def test_handles_missing_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError()
        result = SubprocessRunner().run(["mypy", "."], timeout=5)
        assert result.returncode == 127
        assert "Command not found: mypy" in result.stderr

    @patch("gatekeeper.lib.process.subprocess.run")
    def test_undecodable_output_replaced(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        SubprocessRunner().run(["ruff", "check"], timeout=5)
        assert mock_run.call_args.kwargs["errors"] == "replace"

    @pytest.mark.skipif(shutil.which("printf") is None, reason="printf not installed")
    def test_non_utf8_bytes_do_not_raise(self):
        result = SubprocessRunner().run([shutil.which("printf"), "\\377ok"], timeout=5)
        assert result.success
        assert result.stdout == "\ufffdok"


class TestRunGit:

    def test_prefixes_git_and_worktree(self):
        runner = FakeRunner()
        run_git(["status"], Path("/repo"), runner=runner)
        assert runner.calls == ["git -C /repo status"]


class TestStatus:
    """Porcelain parsing and change detection."""

    def test_parse_porcelain_z_with_rename(self):
        output = " M src/app.py\0R  new.py\0old.py\0?? tests/test_app.py\0"
        assert git.parse_porcelain_z(output) == [
            (" M", "src/app.py"),
            ("R ", "new.py"),
            ("??", "tests/test_app.py"),
        ]

    def test_get_changed_files(self):
        runner = FakeRunner().on("status --porcelain -z", stdout=" M a.py\0?? b.py\0")
        assert git.get_changed_files(Path("/repo"), runner=runner) == ["a.py", "b.py"]

    def test_get_changed_files_empty_on_failure(self):
        runner = FakeRunner().on("status", returncode=128, stderr="not a git repository")
        assert git.get_changed_files(Path("/repo"), runner=runner) == []

    def test_conflicted_paths(self):
        runner = FakeRunner().on("status --porcelain -z", stdout="UU src/a.py\0 M src/b.py\0AA src/c.py\0")
        assert git.get_conflicted_paths(Path("/repo"), runner=runner) == ["src/a.py", "src/c.py"]

    def test_has_uncommitted_changes(self):
        assert git.has_uncommitted_changes(Path("/r"), runner=FakeRunner().on("status --porcelain", stdout=" M a.py\n"))
        assert not git.has_uncommitted_changes(Path("/r"), runner=FakeRunner())


class TestBranch:

    def test_current_branch(self):
        runner = FakeRunner().on("branch --show-current", stdout="feature/login\n")
        assert git.get_current_branch(Path("/r"), runner=runner) == "feature/login"

    def test_detached_head(self):
        assert git.get_current_branch(Path("/r"), runner=FakeRunner()) is None

    def test_resolve_base_ref_first_existing(self):
        runner = FakeRunner().on("origin/main^{commit}", returncode=1)
        ref = git.resolve_base_ref(Path("/r"), ["origin/main", "main"], runner=runner)
        assert ref == "main"

    def test_resolve_base_ref_falls_back_to_parent(self):
        runner = FakeRunner().on("rev-parse --verify", returncode=1).on("HEAD~1^{commit}", returncode=0)
        assert git.resolve_base_ref(Path("/r"), ["origin/main"], runner=runner) == "HEAD~1"

    def test_resolve_base_ref_none(self):
        runner = FakeRunner().on("rev-parse --verify", returncode=1)
        assert git.resolve_base_ref(Path("/r"), ["origin/main"], runner=runner) is None


class TestDiff:

    def test_parse_shortstat(self):
        stat = git.parse_shortstat(" 3 files changed, 120 insertions(+), 14 deletions(-)\n")
        assert (stat.files, stat.insertions, stat.deletions) == (3, 120, 14)
        assert stat.lines == 134

    def test_parse_shortstat_insertions_only(self):
        stat = git.parse_shortstat(" 1 file changed, 1 insertion(+)")
        assert stat.lines == 1

    def test_parse_shortstat_empty(self):
        assert git.parse_shortstat("").lines == 0

    def test_diffstat_addition(self):
        total = git.DiffStat(1, 10, 2) + git.DiffStat(2, 5, 5)
        assert (total.files, total.lines) == (3, 22)

    def test_get_shortstat_none_on_failure(self):
        runner = FakeRunner().on("diff --shortstat", returncode=128)
        assert git.get_shortstat(Path("/r"), ["origin/main...HEAD"], runner=runner) is None

    def test_parse_added_lines(self):
        diff = """diff --git a/src/app.py b/src/app.py
--- a/src/app.py
+++ b/src/app.py
@@ -10,0 +11,3 @@ def handler():
+    a = 1
+    b = 2
+    return a + b
@@ -40 +43 @@ def other():
-    pass
+    return None
diff --git a/old.py b/old.py
--- a/old.py
+++ /dev/null
@@ -1,2 +0,0 @@
-x = 1
-y = 2
"""
        assert git.parse_added_lines(diff) == {"src/app.py": {11, 12, 13, 43}}

    def test_pure_deletion_hunk_adds_nothing(self):
        diff = "+++ b/src/app.py\n@@ -5,2 +4,0 @@\n"
        assert git.parse_added_lines(diff) == {}


class TestTrialMerge:
    """Trial merge runs in a scratch worktree and always cleans it up."""

    def merge_calls(self, runner):
        return [call for call in runner.calls if " merge " in call]

    def test_clean_merge(self):
        runner = FakeRunner()
        assert git.trial_merge(Path("/r"), "origin/main", runner=runner) == []
        assert runner.ran("-C /r worktree add --detach")
        assert runner.ran("merge --abort")
        assert runner.ran("-C /r worktree remove --force")
        # the merge never runs against the caller's checkout
        assert self.merge_calls(runner)
        assert not any("-C /r merge" in call for call in self.merge_calls(runner))

    def test_conflicts_reported(self):
        runner = (
            FakeRunner()
            .on("merge --no-commit", returncode=1, stdout="CONFLICT (content)")
            .on("status --porcelain -z", stdout="UU src/app.py\0")
        )
        assert git.trial_merge(Path("/r"), "origin/main", runner=runner) == ["src/app.py"]
        assert runner.ran("merge --abort")
        assert runner.ran("worktree remove --force")

    def test_scratch_directory_removed(self):
        runner = FakeRunner()
        git.trial_merge(Path("/r"), "origin/main", runner=runner)
        add = next(call for call in runner.calls if "worktree add" in call)
        scratch = Path(add.split()[-2])
        assert scratch.name.startswith("gk-trial-merge-")
        assert not scratch.exists()

    def test_worktree_add_failure(self):
        runner = FakeRunner().on("worktree add", returncode=128, stderr="fatal: invalid reference: HEAD")
        assert git.trial_merge(Path("/r"), "origin/main", runner=runner) == []
        assert not runner.ran("merge --no-commit")

    def test_remove_failure_prunes(self):
        runner = FakeRunner().on("worktree remove", returncode=1, stderr="fatal: not a working tree")
        git.trial_merge(Path("/r"), "origin/main", runner=runner)
        assert runner.ran("worktree prune")

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    def test_live_checkout_untouched(self, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()

        def sh(*args):
            subprocess.run(
                ["git", "-c", "user.name=t", "-c", "user.email=t@example.com", *args],
                cwd=repo, check=True, capture_output=True,
            )

        sh("init", "-q", "-b", "main")
        (repo / "app.py").write_text("total = 1\n")
        sh("add", "app.py")
        sh("commit", "-q", "-m", "base")
        sh("checkout", "-q", "-b", "feature")
        (repo / "app.py").write_text("total = 2\n")
        sh("commit", "-q", "-am", "feature change")
        sh("checkout", "-q", "main")
        (repo / "app.py").write_text("total = 3\n")
        sh("commit", "-q", "-am", "main change")
        sh("checkout", "-q", "feature")

        assert git.trial_merge(repo, "main") == ["app.py"]
        assert (repo / "app.py").read_text() == "total = 2\n"
        assert not (repo / ".git" / "MERGE_HEAD").exists()
        assert not git.has_uncommitted_changes(repo)
        listed = subprocess.run(["git", "worktree", "list"], cwd=repo, capture_output=True, text=True).stdout
        assert len(listed.strip().splitlines()) == 1
