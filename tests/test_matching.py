"""Tests for matching.py - command normalization."""

import pytest

from terse.matching import (
    CommandContext,
    command_shape,
    contains_heredoc,
    extract_core_command,
    has_file_redirect,
    is_output_piped,
    is_terse_invocation,
    program_name,
    split_command_segments,
)


class TestExtractCoreCommand:
    """Tests for extract_core_command."""

    @pytest.mark.parametrize(
        "command,expected",
        [
            ("git status", "git status"),
            ("  git status  ", "git status"),
            ("(git status)", "git status"),
            ("bash -c 'git status'", "git status"),
            ('sh -c "git log --oneline"', "git log --oneline"),
            ("/bin/zsh -c 'ls -la'", "ls -la"),
            ("cd /repo && git status", "git status"),
            ("cd /repo; git status", "git status"),
            ("git log | head -n 5", "git log"),
            ("GIT_PAGER=cat git log", "git log"),
            ("A=1 B='two words' cargo test", "cargo test"),
        ],
    )
    def test_unwraps(self, command, expected):
        """Test each wrapper layer is removed."""
        assert extract_core_command(command) == expected

    def test_combined_prefixes(self):
        """Test dir-change, env assignment and pipe together."""
        command = "cd /repo && GIT_PAGER=cat git status | head -n 20"
        assert extract_core_command(command) == "git status"

    def test_nested_wrappers(self):
        """Test a shell wrapper inside a chain inside a subshell."""
        command = "(cd /repo && bash -c 'NO_COLOR=1 cargo build')"
        assert extract_core_command(command) == "cargo build"

    def test_quoted_operators_not_split(self):
        """Test operators inside quotes are left alone."""
        command = "git commit -m 'fix && cleanup | more'"
        assert extract_core_command(command) == command

    def test_logical_or_is_not_a_pipe(self):
        """Test `||` does not cut the command."""
        assert extract_core_command("git status || true") == "git status || true"

    def test_unbalanced_quotes_used_as_is(self):
        """Test unbalanced quoting returns the whole command."""
        command = "cd /repo && echo \"unterminated"
        assert extract_core_command(command) == command

    def test_empty(self):
        """Test empty input."""
        assert extract_core_command("") == ""
        assert extract_core_command("   ") == ""

    def test_assignments_only_kept(self):
        """Test a bare assignment is not reduced to nothing."""
        assert extract_core_command("FOO=bar") == "FOO=bar"


class TestCommandContext:
    """Tests for CommandContext."""

    def test_from_command(self):
        """Test the context keeps the original and the core."""
        ctx = CommandContext.from_command("cd /repo && git status")
        assert ctx.original == "cd /repo && git status"
        assert ctx.core == "git status"
        assert ctx.program == "git"

    def test_prefix_only_falls_back_to_original(self):
        """Test a prefix-only command keeps a non-empty core."""
        ctx = CommandContext.from_command("cd /repo && ")
        assert ctx.core == "cd /repo &&"

    def test_lower_core(self):
        """Test the lowercased core."""
        assert CommandContext.from_command("Git Status").lower_core == "git status"

    def test_self_invocation(self):
        """Test loop-guard detection on the original text."""
        assert CommandContext.from_command("terse run 'git status'").is_self_invocation
        assert not CommandContext.from_command("git status").is_self_invocation

    def test_output_piped(self):
        """Test the piped flag is read from the original text."""
        assert CommandContext.from_command("cd /repo && git log | grep fix").output_piped
        assert not CommandContext.from_command("cd /repo && git log").output_piped


class TestIsOutputPiped:
    """Tests for is_output_piped."""

    @pytest.mark.parametrize(
        "command",
        [
            "git log | grep needle",
            "cd repo && git log | grep needle || true",
            "git status || true",
            "GIT_PAGER=cat git log | head -5",
            "bash -c 'git log | head'",
            "(git status) || echo failed",
        ],
    )
    def test_piped(self, command):
        """Test a later pipe stage or `||` hides the core's output."""
        assert is_output_piped(command)

    @pytest.mark.parametrize(
        "command",
        [
            "git status",
            "cd /repo && git status",
            "git log --grep='a|b'",
            "git status 2>&1",
            "bash -c 'git status'",
            "",
            "git log | grep 'unclosed",
        ],
    )
    def test_not_piped(self, command):
        """Test the core's output reaches the caller unchanged."""
        assert not is_output_piped(command)


class TestDetectors:
    """Tests for heredoc, loop-guard and redirect detection."""

    def test_heredoc(self):
        """Test heredoc and herestring markers."""
        assert contains_heredoc("cat <<EOF\nhello\nEOF")
        assert contains_heredoc("grep foo <<< 'foo bar'")
        assert not contains_heredoc("echo '<<EOF'")
        assert not contains_heredoc("git status")

    def test_terse_invocation(self):
        """Test the terse re-invocation pattern."""
        assert is_terse_invocation("terse run git status")
        assert is_terse_invocation("/usr/local/bin/terse run 'ls -la'")
        assert is_terse_invocation("cd /repo && terse run git log")
        assert not is_terse_invocation("echo terse")
        assert not is_terse_invocation("terse stats")

    @pytest.mark.parametrize(
        "command",
        ["ls > out.txt", "git log >> history.log", "echo hi >file", "cmd 2> errors.txt"],
    )
    def test_file_redirect(self, command):
        """Test output redirection into files is detected."""
        assert has_file_redirect(command)

    @pytest.mark.parametrize(
        "command",
        ["ls 2>&1", "ls > /dev/null", "echo 'a > b'", "diff <(ls a) >(cat)", "git status"],
    )
    def test_not_a_file_redirect(self, command):
        """Test duplications, /dev/null and quoted arrows are ignored."""
        assert not has_file_redirect(command)


class TestSegmentsAndPrograms:
    """Tests for split_command_segments, program_name and command_shape."""

    def test_split_segments(self):
        """Test splitting on every control operator."""
        assert split_command_segments("a && b || c; d | e & f") == ["a", "b", "c", "d", "e", "f"]

    def test_split_keeps_fd_duplication(self):
        """Test `2>&1` does not split a segment."""
        assert split_command_segments("make 2>&1 | tail") == ["make 2>&1", "tail"]

    def test_split_strips_parens(self):
        """Test subshell parentheses are dropped from segments."""
        assert split_command_segments("(rm -rf x) && ls") == ["rm -rf x", "ls"]

    @pytest.mark.parametrize(
        "segment,expected",
        [
            ("git status", "git"),
            ('sudo "/usr/bin/RM" -rf build', "rm"),
            ("FOO=1 cargo test", "cargo"),
            ("env -i vim file", "vim"),
            ("C:\\tools\\Docker.exe ps", "docker"),
            ("", ""),
        ],
    )
    def test_program_name(self, segment, expected):
        """Test program name normalization."""
        assert program_name(segment) == expected

    def test_command_shape(self):
        """Test digits are collapsed."""
        assert command_shape("git log -n 20") == "git log -n #"
        assert command_shape("git log -n 5") == command_shape("git log -n 50")
