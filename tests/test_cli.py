"""Tests for cli.py - CLI interface."""

import json

import pytest
from click.testing import CliRunner

from terse import __version__, cli
from terse.analytics import command_log_path, log_command_result, read_entries
from terse.circuit_breaker import STATE_FILE_NAME, CircuitBreaker, PathId
from terse.cli import main
from terse.config import global_config_path
from terse.process import ProcessOutput
from terse.router import Router


class FakeRunner:
    """Canned command outputs instead of a shell."""

    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    def __call__(self, command, timeout=None):
        self.calls.append(command)
        return self.outputs.get(command, ProcessOutput(stdout="ok\n"))


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def fake_shell(monkeypatch):
    """Route `run` and `test` through a fake shell."""
    shell = FakeRunner(
        {
            "git status --porcelain -b": ProcessOutput(stdout="## main\n M src/app.py\n"),
            "rm missing.txt": ProcessOutput(stderr="rm: missing.txt: No such file\n", exit_code=1),
        }
    )

    def build(config):
        return Router(config, breaker=CircuitBreaker(), runner=shell)

    monkeypatch.setattr(cli, "_build_router", build)
    return shell


class TestCLIBasics:
    """Basic CLI tests."""

    def test_version(self, runner):
        """Test --version flag."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "terse" in result.output
        assert __version__ in result.output

    def test_help(self, runner):
        """Test --help flag."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ["hook", "run", "test", "stats", "discover", "health", "config", "breaker"]:
            assert command in result.output


class TestRunCommand:
    """Tests for `terse run`."""

    def test_fast_path_output(self, runner, fake_shell):
        """Test optimized output is printed and logged."""
        result = runner.invoke(main, ["run", "git", "status"])

        assert result.exit_code == 0
        assert result.output == "branch: main\nmodified (1): src/app.py\n"
        assert fake_shell.calls == ["git status --porcelain -b"]

        entries = read_entries()
        assert len(entries) == 1
        assert entries[0].command == "git status"
        assert entries[0].path == "fast"
        assert entries[0].optimizer_used == "git"

    def test_exit_code_preserved(self, runner, fake_shell):
        """Test the command's exit status becomes terse's exit status."""
        result = runner.invoke(main, ["run", "rm", "missing.txt"])
        assert result.exit_code == 1
        assert "No such file" in result.output
        assert read_entries()[0].exit_code == 1

    def test_unknown_options_passed_through(self, runner, fake_shell):
        """Test flags belong to the command, not to terse."""
        runner.invoke(main, ["run", "ls", "-la"])
        assert fake_shell.calls == ["ls -la"]

    def test_internal_error_runs_unmodified(self, runner, monkeypatch):
        """Test an internal failure falls back to running the command directly."""

        class Broken:
            def execute(self, command):
                raise RuntimeError("boom")

        monkeypatch.setattr(cli, "_build_router", lambda config: Broken())
        monkeypatch.setattr(
            cli, "run_shell_command", lambda command: ProcessOutput(stdout="raw output\n", exit_code=3)
        )

        result = runner.invoke(main, ["run", "make"])
        assert result.exit_code == 3
        assert "raw output" in result.output

    def test_error_after_execution_does_not_rerun(self, runner, monkeypatch):
        """Test a failure after the command ran never runs it a second time."""
        shell = FakeRunner({})
        reruns = []

        class FailsAfterRunning(Router):
            def execute(self, command):
                self._run(command)
                raise RuntimeError("late failure")

        monkeypatch.setattr(cli, "_build_router", lambda config: FailsAfterRunning(config, runner=shell))
        monkeypatch.setattr(cli, "run_shell_command", lambda command: reruns.append(command))

        result = runner.invoke(main, ["run", "make", "deploy"])

        assert result.exit_code == 1
        assert shell.calls == ["make deploy"]
        assert reruns == []
        assert "internal error after running the command: late failure" in result.output

    def test_bad_ollama_url_runs_once(self, runner, monkeypatch):
        """Test an unusable smart path URL leaves the command's own output."""
        config_file = global_config_path()
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text('[smart_path]\nenabled = true\nollama_url = "http://localhost:eleven"\n')
        raw = "".join(f"worker {i} handled request {i * 7}\n" for i in range(800))
        shell = FakeRunner({"my-tool": ProcessOutput(stdout=raw)})
        monkeypatch.setattr(cli, "_build_router", lambda config: Router(config, runner=shell))

        result = runner.invoke(main, ["run", "my-tool"])

        assert result.exit_code == 0
        assert shell.calls == ["my-tool"]
        assert result.output == raw

    def test_requires_command(self, runner):
        """Test a command is required."""
        result = runner.invoke(main, ["run"])
        assert result.exit_code != 0


class TestHookCommand:
    """Tests for `terse hook`."""

    def test_rewrite(self, runner):
        """Test an optimizable Bash command is rewritten."""
        payload = json.dumps({"tool_name": "Bash", "tool_input": {"command": "git status"}})
        result = runner.invoke(main, ["hook"], input=payload)

        assert result.exit_code == 0
        response = json.loads(result.output)
        assert response["hookSpecificOutput"]["updatedInput"]["command"].endswith(" run 'git status'")

    def test_passthrough(self, runner):
        """Test a destructive command yields an empty response."""
        payload = json.dumps({"tool_name": "Bash", "tool_input": {"command": "rm -rf /tmp/x"}})
        result = runner.invoke(main, ["hook"], input=payload)
        assert result.exit_code == 0
        assert json.loads(result.output) == {}

    def test_garbage_input(self, runner):
        """Test malformed input still answers `{}`."""
        result = runner.invoke(main, ["hook"], input="not json")
        assert result.exit_code == 0
        assert json.loads(result.output) == {}


class TestTestCommand:
    """Tests for `terse test`."""

    def test_preview(self, runner, fake_shell):
        """Test the preview shows the decision and the optimized output."""
        result = runner.invoke(main, ["test", "git", "status"])

        assert result.exit_code == 0
        assert "rewrite (expected: fast)" in result.output
        assert "Path taken:" in result.output
        assert "branch: main" in result.output

    def test_preview_passthrough_reason(self, runner, fake_shell):
        """Test passthrough previews show why."""
        result = runner.invoke(main, ["test", "rm", "missing.txt"])
        assert "destructive or editor command" in result.output


class TestReportCommands:
    """Tests for stats, analyze and discover."""

    @pytest.fixture
    def logged(self):
        """Write a few command log entries."""
        log_command_result("git status", "fast", "git", 400, 100)
        log_command_result("git status", "fast", "git", 200, 50)
        log_command_result("terraform plan", "passthrough", "passthrough", 900, 900)

    def test_stats_empty(self, runner):
        """Test stats with no log."""
        result = runner.invoke(main, ["stats"])
        assert result.exit_code == 0
        assert "No commands logged yet" in result.output

    def test_stats_table(self, runner, logged):
        """Test the stats table."""
        result = runner.invoke(main, ["stats"])
        assert result.exit_code == 0
        assert "Commands:" in result.output
        assert "git status" in result.output

    def test_stats_json(self, runner, logged):
        """Test stats as JSON."""
        result = runner.invoke(main, ["stats", "--format", "json"])
        data = json.loads(result.output)
        assert data["total_commands"] == 3
        assert data["tokens_saved"] == 450
        assert data["path_distribution"] == {"fast": 2, "smart": 0, "passthrough": 1}

    def test_stats_csv(self, runner, logged):
        """Test stats as CSV."""
        result = runner.invoke(main, ["stats", "-f", "csv"])
        lines = result.output.splitlines()
        assert lines[0] == "command,count,original_tokens,optimized_tokens,avg_savings_pct,optimizer"
        assert lines[1] == "git status,2,600,150,75.0,git"

    def test_discover_json(self, runner, logged):
        """Test discovery lists only non-fast commands."""
        result = runner.invoke(main, ["discover", "--format", "json"])
        data = json.loads(result.output)
        assert [c["command"] for c in data] == ["terraform"]

    def test_analyze(self, runner, logged):
        """Test daily trends."""
        result = runner.invoke(main, ["analyze", "--format", "json"])
        data = json.loads(result.output)
        assert len(data) == 1
        assert data[0]["commands"] == 3
        assert data[0]["tokens_saved"] == 450

    def test_analyze_empty(self, runner):
        """Test trends with no log."""
        result = runner.invoke(main, ["analyze"])
        assert "No commands logged in the last 7 days" in result.output


class TestHealthCommand:
    """Tests for `terse health`."""

    def test_health(self, runner):
        """Test the health check runs without a config or an LLM."""
        result = runner.invoke(main, ["health"])
        assert result.exit_code == 0
        assert "terse health check" in result.output
        assert "Circuit breaker (fast_path)" in result.output
        assert "no log file yet" in result.output

    def test_health_with_log(self, runner):
        """Test the command log is counted."""
        log_command_result("ls", "fast", "file", 10, 5)
        result = runner.invoke(main, ["health"])
        assert "1 entries" in result.output
        assert command_log_path().exists()


class TestConfigCommands:
    """Tests for `terse config`."""

    def test_show_json(self, runner):
        """Test the effective configuration as JSON."""
        result = runner.invoke(main, ["config", "show", "--format", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["general"]["mode"] == "hybrid"

    def test_show_toml(self, runner):
        """Test the default TOML rendering."""
        result = runner.invoke(main, ["config", "show"])
        assert "[general]" in result.output

    def test_init(self, runner):
        """Test init writes the file once."""
        result = runner.invoke(main, ["config", "init"])
        assert result.exit_code == 0
        assert global_config_path().exists()

        again = runner.invoke(main, ["config", "init"])
        assert again.exit_code == 1

        forced = runner.invoke(main, ["config", "init", "--force"])
        assert forced.exit_code == 0

    def test_set(self, runner):
        """Test set writes a parsed value."""
        result = runner.invoke(main, ["config", "set", "general.mode", "fast-only"])
        assert result.exit_code == 0

        shown = runner.invoke(main, ["config", "show", "-f", "json"])
        assert json.loads(shown.output)["general"]["mode"] == "fast-only"

    def test_set_unknown_key(self, runner):
        """Test unknown keys are rejected."""
        result = runner.invoke(main, ["config", "set", "general.nope", "1"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_reset(self, runner):
        """Test reset restores defaults."""
        runner.invoke(main, ["config", "set", "general.mode", "fast-only"])
        result = runner.invoke(main, ["config", "reset"])
        assert result.exit_code == 0

        shown = runner.invoke(main, ["config", "show", "-f", "json"])
        assert json.loads(shown.output)["general"]["mode"] == "hybrid"


class TestBreakerCommands:
    """Tests for `terse breaker`."""

    def test_status(self, runner):
        """Test the status table lists both paths."""
        result = runner.invoke(main, ["breaker", "status"])
        assert result.exit_code == 0
        assert "fast_path" in result.output
        assert "smart_path" in result.output

    def test_reset(self, runner, terse_home):
        """Test reset closes a tripped path."""
        state = terse_home / STATE_FILE_NAME
        breaker = CircuitBreaker.load(state)
        for _ in range(breaker.window):
            breaker.record_failure(PathId.FAST)
        assert not CircuitBreaker.load(state).is_allowed(PathId.FAST)

        result = runner.invoke(main, ["breaker", "reset", "fast"])
        assert result.exit_code == 0
        assert CircuitBreaker.load(state).is_allowed(PathId.FAST)
