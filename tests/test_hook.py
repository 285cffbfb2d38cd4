"""Tests for hook.py - the PreToolUse handler."""

import json

from terse.analytics import events_log_path
from terse.config import TerseConfig
from terse.hook import (
    PASSTHROUGH_RESPONSE,
    build_rewrite_command,
    handle_request,
    rewrite_response,
)
from terse.router import Router

EXE = "/usr/local/bin/terse"


def payload(command, tool_name="Bash"):
    return json.dumps({"tool_name": tool_name, "tool_input": {"command": command}})


def read_events():
    path = events_log_path()
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestBuildRewriteCommand:
    """Tests for the rewritten command line."""

    def test_simple(self):
        """Test a plain command is single-quoted."""
        assert build_rewrite_command("git status", EXE) == "/usr/local/bin/terse run 'git status'"

    def test_quotes_escaped(self):
        """Test embedded single quotes survive shell quoting."""
        rewritten = build_rewrite_command("git log --format='%h'", EXE)
        assert rewritten == "/usr/local/bin/terse run 'git log --format='\"'\"'%h'\"'\"''"

    def test_executable_with_spaces(self):
        """Test an executable path with spaces is quoted."""
        assert build_rewrite_command("ls", "/opt/my tools/terse").startswith("'/opt/my tools/terse' run")


class TestHandleRequest:
    """Tests for handle_request."""

    @staticmethod
    def factory(config=None):
        return lambda: Router(config)

    def test_rewrites_optimizable_command(self):
        """Test a git command is rewritten through terse run."""
        response = handle_request(payload("git status"), self.factory(), EXE)

        specific = response["hookSpecificOutput"]
        assert specific["hookEventName"] == "PreToolUse"
        assert specific["permissionDecision"] == "allow"
        assert specific["updatedInput"] == {"command": "/usr/local/bin/terse run 'git status'"}
        assert "fast path" in specific["permissionDecisionReason"]
        assert read_events()[-1]["decision"] == "rewrite"

    def test_passthrough_for_never_optimize(self):
        """Test destructive commands are left alone and logged."""
        assert handle_request(payload("rm -rf build"), self.factory(), EXE) == PASSTHROUGH_RESPONSE
        event = read_events()[-1]
        assert event["decision"] == "passthrough"
        assert event["passthrough_reason"] == "destructive or editor command"

    def test_loop_guard(self):
        """Test already-rewritten commands are not rewritten again."""
        command = build_rewrite_command("git status", EXE)
        assert handle_request(payload(command), self.factory(), EXE) == {}

    def test_other_tools_ignored(self):
        """Test non-Bash tools pass through without building a router."""
        calls = []

        def factory():
            calls.append(1)
            return Router()

        assert handle_request(payload("x", tool_name="Read"), factory, EXE) == {}
        assert calls == []
        assert read_events()[-1]["passthrough_reason"] == "unsupported tool"

    def test_tool_name_case_insensitive(self):
        """Test `bash` is treated like `Bash`."""
        response = handle_request(payload("git status", tool_name="bash"), self.factory(), EXE)
        assert "hookSpecificOutput" in response

    def test_missing_command(self):
        """Test payloads without a command pass through."""
        raw = json.dumps({"tool_name": "Bash", "tool_input": {}})
        assert handle_request(raw, self.factory(), EXE) == {}
        assert read_events()[-1]["passthrough_reason"] == "no command"

    def test_disabled(self):
        """Test a disabled configuration never rewrites."""
        config = TerseConfig()
        config.general.enabled = False
        assert handle_request(payload("git status"), self.factory(config), EXE) == {}

    def test_malformed_input(self):
        """Test bad JSON, non-objects and empty input pass through."""
        for raw in ["", "   ", "{not json", "[1, 2]", json.dumps({"tool_input": "git status"})]:
            assert handle_request(raw, self.factory(), EXE) == {}

    def test_internal_error(self):
        """Test an exception in the router still answers `{}`."""

        def broken():
            raise RuntimeError("boom")

        assert handle_request(payload("git status"), broken, EXE) == {}

    def test_rewrite_response_shape(self):
        """Test the response envelope."""
        response = rewrite_response("terse run 'ls'", "why")
        assert response["hookSpecificOutput"]["updatedInput"]["command"] == "terse run 'ls'"
        assert response["hookSpecificOutput"]["permissionDecisionReason"] == "why"
