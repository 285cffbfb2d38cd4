"""Tests for process.py - shell command execution."""

import sys

import pytest

from terse.process import TIMEOUT_EXIT_CODE, ProcessOutput, run_shell_command

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell syntax")


class TestProcessOutput:
    """Tests for the ProcessOutput container."""

    def test_combined_stdout_only(self):
        """Test combined output without stderr."""
        out = ProcessOutput(stdout="hello\n")
        assert out.combined == "hello\n"

    def test_combined_appends_stderr(self):
        """Test stderr is appended after a newline."""
        out = ProcessOutput(stdout="out", stderr="err\n")
        assert out.combined == "out\nerr"

    def test_combined_ignores_blank_stderr(self):
        """Test whitespace-only stderr is dropped."""
        out = ProcessOutput(stdout="out\n", stderr="  \n")
        assert out.combined == "out\n"

    def test_success(self):
        """Test success requires exit 0 and no timeout."""
        assert ProcessOutput(exit_code=0).success
        assert not ProcessOutput(exit_code=1).success
        assert not ProcessOutput(exit_code=0, timed_out=True).success


@posix_only
class TestRunShellCommand:
    """Tests for run_shell_command."""

    def test_captures_stdout(self):
        """Test stdout is captured."""
        out = run_shell_command("echo hello")
        assert out.stdout.strip() == "hello"
        assert out.exit_code == 0

    def test_captures_stderr_separately(self):
        """Test stderr is captured separately."""
        out = run_shell_command("echo oops 1>&2")
        assert out.stdout == ""
        assert out.stderr.strip() == "oops"

    def test_preserves_exit_code(self):
        """Test the exit status is mirrored."""
        out = run_shell_command("exit 3")
        assert out.exit_code == 3
        assert not out.timed_out

    def test_timeout(self):
        """Test a timed-out command reports exit 124."""
        out = run_shell_command("sleep 5", timeout=0.2)
        assert out.timed_out
        assert out.exit_code == TIMEOUT_EXIT_CODE

    def test_cwd(self, tmp_path):
        """Test the working directory is honoured."""
        out = run_shell_command("pwd", cwd=str(tmp_path))
        assert out.stdout.strip().endswith(tmp_path.name)
