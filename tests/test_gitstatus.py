"""Tests for scopegate.lib.gitstatus and the argv runner behind it."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from scopegate.lib.errors import ScopegateError
from scopegate.lib.gitstatus import changed_files, is_work_tree, parse_porcelain_z
from scopegate.lib.proc import CommandResult, run_argv


def ok(stdout=""):
    return CommandResult("git", 0, stdout, "")


class TestRunArgv:
    @patch("scopegate.lib.proc.subprocess.run")
    def test_passes_argv_and_cwd(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="true\n", stderr="")
        result = run_argv(["git", "-C", "/my/repo", "status"], Path("/my/repo"), timeout=5)
        assert mock_run.call_args[0][0] == ["git", "-C", "/my/repo", "status"]
        assert mock_run.call_args[1]["cwd"] == "/my/repo"
        assert result.success
        assert result.command == "git -C /my/repo status"

    @patch("scopegate.lib.proc.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=30)
        result = run_argv(["git", "status"], Path("/tmp"), timeout=30)
        assert result.timed_out
        assert not result.success
        assert result.describe_failure() == "'git status' timed out"

    @patch("scopegate.lib.proc.subprocess.run")
    def test_missing_executable(self, mock_run):
        mock_run.side_effect = FileNotFoundError("git")
        result = run_argv(["git", "status"], Path("/tmp"), timeout=30)
        assert result.returncode == 127
        assert "executable not found" in result.stderr


class TestIsWorkTree:
    @patch("scopegate.lib.gitstatus.git")
    def test_inside(self, mock_git):
        mock_git.return_value = ok("true\n")
        assert is_work_tree(Path("/repo")) is True

    @patch("scopegate.lib.gitstatus.git")
    def test_outside(self, mock_git):
        mock_git.return_value = CommandResult("git", 128, "", "fatal: not a git repository")
        assert is_work_tree(Path("/tmp")) is False

    def test_plain_directory(self, tmp_path):
        assert is_work_tree(tmp_path) is False


class TestChangedFiles:
    """Porcelain -z parsing."""

    def test_modified_and_untracked(self):
        assert parse_porcelain_z(" M lib/auth/token.py\0?? docs/new file.md\0") == [
            "lib/auth/token.py",
            "docs/new file.md",
        ]

    def test_rename_reports_new_path(self):
        # -z puts the new path first, then the original
        output = "R  lib/auth/session.py\0lib/session.py\0 M README.md\0"
        assert parse_porcelain_z(output) == ["lib/auth/session.py", "README.md"]

    def test_clean(self):
        assert parse_porcelain_z("") == []

    @patch("scopegate.lib.gitstatus.git")
    def test_single_status_call(self, mock_git):
        mock_git.return_value = ok("A  lib/new.py\0")
        assert changed_files(Path("/repo")) == ["lib/new.py"]
        mock_git.assert_called_once_with(["status", "--porcelain", "-z", "--untracked-files=all"], Path("/repo"))

    @patch("scopegate.lib.gitstatus.git")
    def test_failure_raises(self, mock_git):
        mock_git.return_value = CommandResult("git status", 128, "", "fatal: bad index")
        with pytest.raises(ScopegateError, match="bad index"):
            changed_files(Path("/repo"))
