"""Tests for analytics.py - command log, hook events and reporting."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from terse.analytics import (
    CommandLogEntry,
    base_command_name,
    command_log_path,
    compute_stats,
    compute_trends,
    discover_candidates,
    events_log_path,
    log_command_result,
    log_hook_event,
    read_entries,
)


def entry(command, path="fast", original=100, optimized=20, optimizer="git", timestamp=None):
    saved = max(0, original - optimized)
    return CommandLogEntry(
        timestamp=timestamp or datetime.now(timezone.utc).isoformat(),
        command=command,
        path=path,
        optimizer_used=optimizer,
        original_tokens=original,
        optimized_tokens=optimized,
        savings_pct=saved * 100.0 / original if original else 0.0,
    )


class TestLogging:
    """Tests for the append-only JSONL logs."""

    def test_command_log_in_terse_home(self, terse_home):
        """Test the default log lives in the terse home."""
        assert command_log_path() == terse_home / "command-log.jsonl"
        assert events_log_path() == terse_home / "events.jsonl"

    def test_log_command_result(self, terse_home):
        """Test a command entry is appended as one JSON line."""
        assert log_command_result("git status", "fast", "git", 200, 50, exit_code=1)
        assert log_command_result("cargo test", "passthrough", "passthrough", 10, 10)

        lines = command_log_path().read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        data = json.loads(lines[0])
        assert data["command"] == "git status"
        assert data["path"] == "fast"
        assert data["optimizer_used"] == "git"
        assert data["savings_pct"] == 75.0
        assert data["exit_code"] == 1
        assert data["latency_ms"] is None

    def test_log_failure_is_silent(self, tmp_path):
        """Test an unwritable log returns False instead of raising."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        assert not log_command_result("ls", "fast", "file", 1, 1, log_path=blocker / "log.jsonl")

    def test_hook_event(self, terse_home):
        """Test hook events omit unset fields."""
        log_hook_event("Bash", "rewrite", command="git status")
        log_hook_event("Read", "passthrough", passthrough_reason="not a shell tool")

        lines = [json.loads(line) for line in events_log_path().read_text().splitlines()]
        assert lines[0]["decision"] == "rewrite"
        assert lines[0]["command"] == "git status"
        assert "passthrough_reason" not in lines[0]
        assert "command" not in lines[1]
        assert lines[1]["passthrough_reason"] == "not a shell tool"


class TestReadEntries:
    """Tests for read_entries."""

    def test_missing_file(self, tmp_path):
        """Test a missing log yields nothing."""
        assert read_entries(log_path=tmp_path / "none.jsonl") == []

    def test_skips_malformed_lines(self, tmp_path):
        """Test malformed and blank lines are skipped."""
        path = tmp_path / "log.jsonl"
        good = entry("git status").to_dict()
        path.write_text(
            "\n".join([json.dumps(good), "", "{not json", json.dumps([1, 2]), json.dumps(good)]) + "\n"
        )
        entries = read_entries(log_path=path)
        assert len(entries) == 2
        assert entries[0].command == "git status"

    def test_days_filter(self, tmp_path):
        """Test entries older than the window are dropped."""
        path = tmp_path / "log.jsonl"
        old = (datetime.now(timezone.utc) - timedelta(days=10)).isoformat()
        lines = [entry("git log", timestamp=old).to_dict(), entry("git status").to_dict()]
        path.write_text("".join(json.dumps(d) + "\n" for d in lines))

        assert [e.command for e in read_entries(days=7, log_path=path)] == ["git status"]
        assert len(read_entries(log_path=path)) == 2

    def test_missing_numbers_default(self):
        """Test absent numeric fields default to zero."""
        parsed = CommandLogEntry.from_dict({"command": "ls"})
        assert parsed.original_tokens == 0
        assert parsed.path == "passthrough"


class TestBaseCommandName:
    """Tests for the grouping key."""

    @pytest.mark.parametrize(
        "command,expected",
        [
            ("git status", "git status"),
            ("cd /repo && git log --oneline -n 5", "git log"),
            ("docker ps -a", "docker ps"),
            ("ls -la /tmp", "ls"),
            ("sudo /usr/bin/cargo build --release", "cargo build"),
            ("git", "git"),
        ],
    )
    def test_names(self, command, expected):
        """Test program and sub-command extraction."""
        assert base_command_name(command) == expected


class TestReporting:
    """Tests for stats, discovery and trends."""

    def test_empty_stats(self):
        """Test no entries means zeroed stats."""
        stats = compute_stats([])
        assert stats.total_commands == 0
        assert stats.tokens_saved == 0
        assert stats.path_distribution.pct(0) == 0.0

    def test_stats(self):
        """Test totals, distribution and per-command grouping."""
        entries = [
            entry("git status", original=100, optimized=20),
            entry("git status", original=300, optimized=60),
            entry("cargo test", path="smart", original=1000, optimized=100, optimizer="llm:m"),
            entry("echo hi", path="passthrough", original=5, optimized=5, optimizer="passthrough"),
        ]
        stats = compute_stats(entries)

        assert stats.total_commands == 4
        assert stats.total_original_tokens == 1405
        assert stats.total_optimized_tokens == 185
        assert stats.tokens_saved == 1220
        dist = stats.path_distribution
        assert (dist.fast, dist.smart, dist.passthrough) == (2, 1, 1)
        assert dist.pct(dist.fast) == 50.0

        top = stats.command_stats[0]
        assert top.command == "cargo test"
        assert top.primary_optimizer == "llm:m"
        git = stats.command_stats[1]
        assert git.command == "git status"
        assert git.count == 2
        assert git.tokens_saved == 320
        assert git.avg_savings_pct == 80.0

    def test_stats_to_dict(self):
        """Test the JSON form carries tokens saved."""
        data = compute_stats([entry("git status")]).to_dict()
        assert data["tokens_saved"] == 80
        assert data["path_distribution"]["fast"] == 1

    def test_discover(self):
        """Test only non-fast commands are candidates, by total tokens."""
        entries = [
            entry("git status"),
            entry("terraform plan", path="passthrough", original=500, optimized=500),
            entry("terraform plan", path="passthrough", original=700, optimized=700),
            entry("make", path="smart", original=2000, optimized=200),
        ]
        candidates = discover_candidates(entries)
        assert [c.command for c in candidates] == ["make", "terraform"]
        terraform = candidates[1]
        assert terraform.count == 2
        assert terraform.avg_tokens == 600
        assert terraform.current_path == "passthrough"

    def test_trends(self):
        """Test daily grouping, oldest first."""
        entries = [
            entry("ls", timestamp="2026-03-02T10:00:00+00:00", original=100, optimized=50),
            entry("ls", timestamp="2026-03-01T10:00:00+00:00", original=100, optimized=10),
            entry("ls", timestamp="2026-03-02T11:00:00+00:00", original=100, optimized=70),
        ]
        trends = compute_trends(entries)
        assert [t.date for t in trends] == ["2026-03-01", "2026-03-02"]
        assert trends[1].commands == 2
        assert trends[1].tokens_saved == 80
        assert trends[1].avg_savings_pct == 40.0
