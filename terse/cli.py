"""CLI interface for terse.

Commands:
- hook: PreToolUse handler (reads the hook payload from stdin)
- run: Execute a command and print its optimized output
- test: Preview how a command would be routed and optimized
- stats / analyze / discover: Token savings reports
- health: Check configuration, LLM server and circuit breaker
- config: Show, create, set or reset configuration
- breaker: Inspect or reset the circuit breaker
"""

import csv
import json
import sys

import click
from rich.console import Console

from . import __version__
from .analytics import (
    command_log_path,
    compute_stats,
    compute_trends,
    discover_candidates,
    log_command_result,
    read_entries,
)
from .circuit_breaker import STATE_FILE_NAME, CircuitBreaker, PathId
from .config import (
    ConfigError,
    global_config_path,
    init_config,
    load_config,
    project_config_path,
    render_config,
    reset_config,
    set_config_value,
    terse_home,
)
from .hook import PASSTHROUGH_RESPONSE, handle_request
from .llm import OllamaClient
from .logs import configure_logging
from .process import run_shell_command
from .router import OptimizationPath, Router

console = Console()

OUTPUT_FORMATS = ["table", "json", "csv"]

PATH_COLORS = {"fast": "green", "smart": "cyan", "passthrough": "yellow"}


def _breaker_path():
    return terse_home() / STATE_FILE_NAME


def _build_router(config) -> Router:
    return Router(config, breaker=CircuitBreaker.from_config(config, _breaker_path()))


def _setup(ctx):
    """Load config and logging once per invocation."""
    if "config" not in ctx.obj:
        config = load_config()
        configure_logging(config)
        ctx.obj["config"] = config
    return ctx.obj["config"]


def _write_csv(header, rows):
    writer = csv.writer(sys.stdout, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)


@click.group()
@click.version_option(version=__version__, prog_name="terse")
@click.pass_context
def main(ctx):
    """terse - token-efficient shell output for AI coding assistants.

    Commands routed through terse are executed normally and their output is
    compacted by rule-based optimizers (fast path) or a local LLM (smart
    path). Anything terse cannot handle safely passes through unchanged.
    """
    ctx.ensure_object(dict)


# --- Hook / Run ---


@main.command()
@click.pass_context
def hook(ctx):
    """PreToolUse hook: read the payload on stdin, answer JSON on stdout."""
    try:
        config = _setup(ctx)
        raw = sys.stdin.read()
        response = handle_request(raw, lambda: _build_router(config))
    except Exception:
        response = PASSTHROUGH_RESPONSE
    click.echo(json.dumps(response))


@main.command(context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def run(ctx, command):
    """Execute COMMAND and print its optimized output.

    The exit status is the command's own exit status.
    """
    command_line = " ".join(command)
    config = _setup(ctx)

    router = None
    try:
        router = _build_router(config)
        result = router.execute(command_line)
    except Exception as e:
        if getattr(router, "executed", False):
            # Never run a command twice
            click.echo(f"terse: internal error after running the command: {e}", err=True)
            sys.exit(1)
        # Nothing ran yet: behave exactly like running the command directly
        click.echo(f"terse: internal error, running unmodified: {e}", err=True)
        raw = run_shell_command(command_line)
        sys.stdout.write(raw.stdout)
        sys.stderr.write(raw.stderr)
        sys.stdout.flush()
        sys.exit(raw.exit_code)

    output = result.output
    if result.path != OptimizationPath.PASSTHROUGH and output and not output.endswith("\n"):
        output += "\n"
    sys.stdout.write(output)
    if result.stderr:
        sys.stderr.write(result.stderr)
    sys.stdout.flush()

    log_command_result(
        command_line,
        result.path.value,
        result.optimizer_name,
        result.original_tokens,
        result.optimized_tokens,
        latency_ms=result.latency_ms,
        exit_code=result.exit_code,
    )
    sys.exit(result.exit_code)


@main.command(context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def test(ctx, command):
    """Preview routing and optimization of COMMAND (runs it)."""
    from rich.markup import escape
    from rich.panel import Panel

    command_line = " ".join(command)
    config = _setup(ctx)
    preview = _build_router(config).preview(command_line)
    execution = preview.execution
    color = PATH_COLORS.get(execution.path.value, "white")

    console.print()
    console.print(Panel.fit("[bold blue]terse optimization preview[/bold blue]"))
    console.print(f"  [bold]Command:[/bold]       {escape(command_line)}", highlight=False)
    console.print(f"  [bold]Core:[/bold]          {escape(preview.core)}", highlight=False)
    console.print(f"  [bold]Hook decision:[/bold] {preview.hook.describe()}")
    console.print(f"  [bold]Optimizer:[/bold]     {preview.optimizer or '-'}")
    console.print(f"  [bold]Path taken:[/bold]    [{color}]{execution.path.value}[/{color}]")
    console.print(f"  [bold]Produced by:[/bold]   {execution.optimizer_name}")
    if execution.preprocessing_bytes_removed:
        console.print(
            f"  [bold]Preprocessing:[/bold] {execution.preprocessing_bytes_removed:,} bytes removed"
        )
    console.print(
        f"  [bold]Tokens:[/bold]        {execution.original_tokens:,} -> "
        f"{execution.optimized_tokens:,} ({execution.savings_pct:.1f}% savings)"
    )
    if execution.latency_ms is not None:
        console.print(f"  [bold]Latency:[/bold]       {execution.latency_ms} ms")
    if execution.fallback_reason:
        console.print(
            f"  [bold]Reason:[/bold]        [yellow]{escape(execution.fallback_reason)}[/yellow]"
        )
    console.print(f"  [bold]Exit code:[/bold]     {execution.exit_code}")

    console.print("\n[dim]--- Output ---[/dim]")
    console.print(execution.output, markup=False, highlight=False)
    if execution.stderr:
        console.print("[dim]--- Stderr ---[/dim]")
        console.print(execution.stderr, markup=False, highlight=False)


# --- Reports ---


@main.command()
@click.option("--format", "-f", "fmt", type=click.Choice(OUTPUT_FORMATS), default="table")
@click.option("--days", "-d", type=int, default=None, help="Only the last N days")
@click.pass_context
def stats(ctx, fmt: str, days):
    """Show token savings statistics."""
    from rich.table import Table

    _setup(ctx)
    result = compute_stats(read_entries(days))

    if fmt == "json":
        click.echo(json.dumps(result.to_dict(), indent=2))
        return
    if fmt == "csv":
        _write_csv(
            ["command", "count", "original_tokens", "optimized_tokens", "avg_savings_pct", "optimizer"],
            [
                [s.command, s.count, s.total_original_tokens, s.total_optimized_tokens,
                 f"{s.avg_savings_pct:.1f}", s.primary_optimizer]
                for s in result.command_stats
            ],
        )
        return

    if result.total_commands == 0:
        console.print("[yellow]No commands logged yet.[/yellow]")
        return

    dist = result.path_distribution
    console.print()
    console.print(f"[bold]Commands:[/bold] {result.total_commands:,}")
    console.print(
        f"[bold]Tokens:[/bold] {result.total_original_tokens:,} -> "
        f"{result.total_optimized_tokens:,} "
        f"([green]{result.total_savings_pct:.1f}% saved[/green], ~{result.tokens_saved:,} tokens)"
    )
    console.print(
        f"[bold]Paths:[/bold] fast {dist.fast} ({dist.pct(dist.fast):.0f}%), "
        f"smart {dist.smart} ({dist.pct(dist.smart):.0f}%), "
        f"passthrough {dist.passthrough} ({dist.pct(dist.passthrough):.0f}%)"
    )
    console.print()

    table = Table(title="Top Commands by Token Savings")
    table.add_column("Command", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Tokens saved", justify="right")
    table.add_column("Avg savings", justify="right")
    table.add_column("Optimizer")
    for s in result.command_stats[:15]:
        table.add_row(
            s.command,
            str(s.count),
            f"{s.tokens_saved:,}",
            f"{s.avg_savings_pct:.1f}%",
            s.primary_optimizer,
        )
    console.print(table)


@main.command()
@click.option("--days", "-d", type=int, default=7, help="Window in days (default: 7)")
@click.option("--format", "-f", "fmt", type=click.Choice(OUTPUT_FORMATS), default="table")
@click.pass_context
def analyze(ctx, days: int, fmt: str):
    """Show daily savings trends."""
    from rich.table import Table

    _setup(ctx)
    trends = compute_trends(read_entries(days))

    if fmt == "json":
        click.echo(json.dumps([t.to_dict() for t in trends], indent=2))
        return
    if fmt == "csv":
        _write_csv(
            ["date", "commands", "tokens_saved", "avg_savings_pct"],
            [[t.date, t.commands, t.tokens_saved, f"{t.avg_savings_pct:.1f}"] for t in trends],
        )
        return

    if not trends:
        console.print(f"[yellow]No commands logged in the last {days} days.[/yellow]")
        return

    table = Table(title=f"Savings over the last {days} days")
    table.add_column("Date")
    table.add_column("Commands", justify="right")
    table.add_column("Tokens saved", justify="right")
    table.add_column("Avg savings", justify="right")
    for t in trends:
        table.add_row(t.date, str(t.commands), f"{t.tokens_saved:,}", f"{t.avg_savings_pct:.1f}%")
    console.print(table)


@main.command()
@click.option("--format", "-f", "fmt", type=click.Choice(OUTPUT_FORMATS), default="table")
@click.option("--days", "-d", type=int, default=None, help="Only the last N days")
@click.pass_context
def discover(ctx, fmt: str, days):
    """List frequent commands without a fast-path optimizer."""
    from rich.table import Table

    _setup(ctx)
    candidates = discover_candidates(read_entries(days))

    if fmt == "json":
        click.echo(json.dumps([c.to_dict() for c in candidates], indent=2))
        return
    if fmt == "csv":
        _write_csv(
            ["command", "count", "total_tokens", "avg_tokens", "current_path"],
            [[c.command, c.count, c.total_tokens, c.avg_tokens, c.current_path] for c in candidates],
        )
        return

    if not candidates:
        console.print("[green]No unoptimized commands found.[/green]")
        return

    table = Table(title="Optimization Candidates")
    table.add_column("Command", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Avg tokens", justify="right")
    table.add_column("Path")
    for c in candidates[:20]:
        table.add_row(c.command, str(c.count), f"{c.total_tokens:,}", f"{c.avg_tokens:,}", c.current_path)
    console.print(table)


# --- Health ---


def _health_item(name: str, ok: bool, detail: str):
    mark = "[green]✓[/green]" if ok else "[red]✗[/red]"
    console.print(f"  {mark} {name:<26} [dim]{detail}[/dim]")


@main.command()
@click.pass_context
def health(ctx):
    """Check configuration, LLM server, circuit breaker and logs."""
    config = _setup(ctx)

    console.print("[bold cyan]terse health check[/bold cyan]")

    global_path = global_config_path()
    _health_item(
        "Global config",
        global_path.exists(),
        str(global_path) if global_path.exists() else "not found (run `terse config init`)",
    )
    project_path = project_config_path()
    _health_item(
        "Project config",
        project_path.exists(),
        ".terse.toml found" if project_path.exists() else "none (optional)",
    )
    _health_item("Mode / profile", True, f"{config.general.mode} / {config.general.profile}")
    if not config.optimization_enabled:
        _health_item("Optimization", False, "disabled, safe mode or passthrough mode")

    smart = config.smart_path
    _health_item("Smart path", smart.enabled, "enabled" if smart.enabled else "disabled")
    if smart.enabled:
        client = OllamaClient.from_config(smart)
        reachable = client.is_healthy()
        _health_item(
            "Ollama",
            reachable,
            f"reachable at {client.base_url}" if reachable else "not reachable, is Ollama running?",
        )
        if reachable:
            loaded = client.is_model_loaded()
            _health_item("Model", True, f"{smart.model} ({'loaded' if loaded else 'cold'})")

    breaker = CircuitBreaker.from_config(config, _breaker_path())
    for path_id in PathId:
        status = breaker.status(path_id)
        _health_item(
            f"Circuit breaker ({path_id.value})",
            status.allowed,
            "closed" if status.allowed else f"open until {status.tripped_until:%H:%M:%S}",
        )

    log_path = command_log_path()
    entries = len(read_entries()) if log_path.exists() else 0
    _health_item(
        "Command log",
        log_path.exists(),
        f"{entries} entries" if log_path.exists() else "no log file yet",
    )


# --- Config Commands ---


@main.group()
def config():
    """Configuration management."""
    pass


@config.command("show")
@click.option("--format", "-f", "fmt", type=click.Choice(["toml", "json", "yaml"]), default="toml")
@click.pass_context
def config_show(ctx, fmt: str):
    """Show the effective configuration."""
    cfg = _setup(ctx)
    click.echo(render_config(cfg, fmt))


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing config file")
def config_init(force: bool):
    """Write the default configuration file."""
    try:
        path = init_config(force=force)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]Created {path}[/green]")


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set KEY (dotted, e.g. smart_path.enabled) to VALUE."""
    try:
        parsed = set_config_value(key, value)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]{key} = {parsed!r}[/green]")


@config.command("reset")
def config_reset():
    """Reset the configuration file to defaults."""
    try:
        path = reset_config()
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    console.print(f"[green]Reset {path} to defaults[/green]")


# --- Circuit Breaker Commands ---


@main.group()
def breaker():
    """Circuit breaker inspection."""
    pass


@breaker.command("status")
@click.pass_context
def breaker_status(ctx):
    """Show per-path breaker state."""
    from rich.table import Table

    cfg = _setup(ctx)
    cb = CircuitBreaker.from_config(cfg, _breaker_path())

    table = Table(title="Circuit Breaker")
    table.add_column("Path", style="cyan")
    table.add_column("State")
    table.add_column("Recent failures", justify="right")
    table.add_column("Bypassed", justify="right")
    table.add_column("Open until")
    for path_id in PathId:
        status = cb.status(path_id)
        state = "[green]closed[/green]" if status.allowed else "[red]open[/red]"
        until = status.tripped_until.isoformat() if status.tripped_until and not status.allowed else "-"
        table.add_row(
            path_id.value,
            state,
            f"{status.recent_failures}/{status.recent_total}",
            str(status.bypassed),
            until,
        )
    console.print(table)


@breaker.command("reset")
@click.argument("path", type=click.Choice(["fast", "smart", "all"]), default="all")
@click.pass_context
def breaker_reset(ctx, path: str):
    """Close PATH (fast, smart or all) and clear its history."""
    cfg = _setup(ctx)
    cb = CircuitBreaker.from_config(cfg, _breaker_path())
    cb.reset(None if path == "all" else PathId.parse(path))
    console.print(f"[green]Circuit breaker reset: {path}[/green]")


if __name__ == "__main__":
    main()
