"""Analytics logging and reporting.

Two append-only JSONL files live in the terse home:
- `command-log.jsonl`: one entry per `terse run` (path, tokens, savings)
- `events.jsonl`: one entry per hook invocation (rewrite or passthrough)

Writes are best-effort and never raise. Reporting reads the command log and
aggregates totals, per-command stats, discovery candidates and daily trends.
"""

import json
import logging
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from terse.config import terse_home
from terse.matching import extract_core_command, program_name
from terse.tokens import savings_pct

__all__ = [
    "CommandLogEntry",
    "HookEvent",
    "PathDistribution",
    "CommandStat",
    "Stats",
    "DiscoveryCandidate",
    "TrendEntry",
    "command_log_path",
    "events_log_path",
    "log_command_result",
    "log_hook_event",
    "read_entries",
    "base_command_name",
    "compute_stats",
    "discover_candidates",
    "compute_trends",
]

logger = logging.getLogger(__name__)

COMMAND_LOG_NAME = "command-log.jsonl"
EVENTS_LOG_NAME = "events.jsonl"

# Programs whose first sub-command is part of the grouping key
SUBCOMMAND_PROGRAMS = {
    "git",
    "docker",
    "docker-compose",
    "cargo",
    "npm",
    "npx",
    "yarn",
    "pnpm",
    "dotnet",
    "go",
    "kubectl",
    "helm",
    "mvn",
    "gradle",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def command_log_path() -> Path:
    return terse_home() / COMMAND_LOG_NAME


def events_log_path() -> Path:
    return terse_home() / EVENTS_LOG_NAME


@dataclass
class CommandLogEntry:
    """One `terse run` invocation.

    Attributes:
        timestamp: ISO 8601 UTC time.
        command: Command as issued.
        path: "fast", "smart" or "passthrough".
        optimizer_used: Optimizer name, `llm:<model>`, `preprocessing` or `passthrough`.
        original_tokens: Estimated tokens of the raw output.
        optimized_tokens: Estimated tokens of what was returned.
        savings_pct: Percentage saved.
        latency_ms: LLM latency (smart path only).
        exit_code: Exit status of the command.
    """

    timestamp: str
    command: str
    path: str
    optimizer_used: str
    original_tokens: int
    optimized_tokens: int
    savings_pct: float
    latency_ms: Optional[int] = None
    exit_code: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "CommandLogEntry":
        """Create from a parsed log line; missing numbers default to 0."""
        return cls(
            timestamp=str(data.get("timestamp", "")),
            command=str(data.get("command", "")),
            path=str(data.get("path", "passthrough")),
            optimizer_used=str(data.get("optimizer_used", "passthrough")),
            original_tokens=int(data.get("original_tokens", 0)),
            optimized_tokens=int(data.get("optimized_tokens", 0)),
            savings_pct=float(data.get("savings_pct", 0.0)),
            latency_ms=data.get("latency_ms"),
            exit_code=int(data.get("exit_code", 0)),
        )


@dataclass
class HookEvent:
    """One hook invocation."""

    timestamp: str
    tool_name: str
    decision: str
    command: Optional[str] = None
    passthrough_reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"timestamp": self.timestamp, "tool_name": self.tool_name}
        if self.command is not None:
            data["command"] = self.command
        data["decision"] = self.decision
        if self.passthrough_reason is not None:
            data["passthrough_reason"] = self.passthrough_reason
        return data


def _append_json_line(path: Path, data: dict) -> bool:
    """Append one JSON line with a single write; False on any failure."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(data, ensure_ascii=False) + "\n"
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.debug("could not append to %s: %s", path, e)
        return False


def log_command_result(
    command: str,
    path: str,
    optimizer_used: str,
    original_tokens: int,
    optimized_tokens: int,
    latency_ms: Optional[int] = None,
    exit_code: int = 0,
    log_path: Optional[Path] = None,
) -> bool:
    """Append a command log entry.

    Returns:
        True if the entry was written.
    """
    entry = CommandLogEntry(
        timestamp=_now_iso(),
        command=command,
        path=path,
        optimizer_used=optimizer_used,
        original_tokens=original_tokens,
        optimized_tokens=optimized_tokens,
        savings_pct=round(savings_pct(original_tokens, optimized_tokens), 2),
        latency_ms=latency_ms,
        exit_code=exit_code,
    )
    return _append_json_line(log_path or command_log_path(), entry.to_dict())


def log_hook_event(
    tool_name: str,
    decision: str,
    command: Optional[str] = None,
    passthrough_reason: Optional[str] = None,
    log_path: Optional[Path] = None,
) -> bool:
    """Append a hook event ("rewrite" or "passthrough")."""
    event = HookEvent(
        timestamp=_now_iso(),
        tool_name=tool_name,
        decision=decision,
        command=command,
        passthrough_reason=passthrough_reason,
    )
    return _append_json_line(log_path or events_log_path(), event.to_dict())


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def read_entries(days: Optional[int] = None, log_path: Optional[Path] = None) -> List[CommandLogEntry]:
    """Read command log entries, optionally only those from the last `days` days.

    Malformed lines are skipped; a missing file yields an empty list.
    """
    path = log_path or command_log_path()
    if not path.exists():
        return []

    cutoff = None
    if days is not None:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

    entries = []
    try:
        with open(path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = CommandLogEntry.from_dict(json.loads(line))
                except (ValueError, TypeError, AttributeError):
                    continue
                if cutoff is not None:
                    ts = _parse_timestamp(entry.timestamp)
                    if ts is None or ts < cutoff:
                        continue
                entries.append(entry)
    except OSError as e:
        logger.debug("could not read %s: %s", path, e)
    return entries


def base_command_name(command: str) -> str:
    """Grouping key for a command: program, plus sub-command for multi-tools.

    Example:
        >>> base_command_name("cd /repo && git log --oneline -n 5")
        'git log'
    """
    core = extract_core_command(command) or command.strip()
    program = program_name(core)
    if not program:
        return core.split()[0] if core.split() else ""

    if program not in SUBCOMMAND_PROGRAMS:
        return program

    words = core.split()
    seen_program = False
    for word in words:
        if not seen_program:
            seen_program = program_name(word) == program
            continue
        if not word.startswith("-"):
            sub = word.strip("'\"")
            return f"{program} {sub}"
    return program


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@dataclass
class PathDistribution:
    fast: int = 0
    smart: int = 0
    passthrough: int = 0

    @property
    def total(self) -> int:
        return self.fast + self.smart + self.passthrough

    def pct(self, count: int) -> float:
        if self.total == 0:
            return 0.0
        return count * 100.0 / self.total


@dataclass
class CommandStat:
    command: str
    count: int
    total_original_tokens: int
    total_optimized_tokens: int
    avg_savings_pct: float
    primary_optimizer: str

    @property
    def tokens_saved(self) -> int:
        return max(0, self.total_original_tokens - self.total_optimized_tokens)


@dataclass
class Stats:
    """Aggregate statistics for `terse stats`."""

    total_commands: int = 0
    total_original_tokens: int = 0
    total_optimized_tokens: int = 0
    total_savings_pct: float = 0.0
    path_distribution: PathDistribution = field(default_factory=PathDistribution)
    command_stats: List[CommandStat] = field(default_factory=list)

    @property
    def tokens_saved(self) -> int:
        return max(0, self.total_original_tokens - self.total_optimized_tokens)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["tokens_saved"] = self.tokens_saved
        return data


@dataclass
class DiscoveryCandidate:
    command: str
    count: int
    total_tokens: int
    avg_tokens: int
    current_path: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class TrendEntry:
    date: str
    commands: int
    tokens_saved: int
    avg_savings_pct: float

    def to_dict(self) -> dict:
        return asdict(self)


def _group_by_base(entries: Iterable[CommandLogEntry]) -> Dict[str, List[CommandLogEntry]]:
    groups: Dict[str, List[CommandLogEntry]] = defaultdict(list)
    for entry in entries:
        groups[base_command_name(entry.command)].append(entry)
    return groups


def compute_stats(entries: List[CommandLogEntry]) -> Stats:
    """Aggregate totals, path distribution and per-command stats.

    Per-command stats are sorted by tokens saved, most first.
    """
    if not entries:
        return Stats()

    total_original = sum(e.original_tokens for e in entries)
    total_optimized = sum(e.optimized_tokens for e in entries)

    dist = PathDistribution()
    for entry in entries:
        if entry.path == "fast":
            dist.fast += 1
        elif entry.path == "smart":
            dist.smart += 1
        else:
            dist.passthrough += 1

    command_stats = []
    for name, group in _group_by_base(entries).items():
        optimizers = Counter(e.optimizer_used for e in group)
        command_stats.append(
            CommandStat(
                command=name,
                count=len(group),
                total_original_tokens=sum(e.original_tokens for e in group),
                total_optimized_tokens=sum(e.optimized_tokens for e in group),
                avg_savings_pct=sum(e.savings_pct for e in group) / len(group),
                primary_optimizer=optimizers.most_common(1)[0][0],
            )
        )
    command_stats.sort(key=lambda s: s.tokens_saved, reverse=True)

    return Stats(
        total_commands=len(entries),
        total_original_tokens=total_original,
        total_optimized_tokens=total_optimized,
        total_savings_pct=savings_pct(total_original, total_optimized),
        path_distribution=dist,
        command_stats=command_stats,
    )


def discover_candidates(entries: List[CommandLogEntry]) -> List[DiscoveryCandidate]:
    """Frequent commands not served by the fast path, by total tokens."""
    non_fast = [e for e in entries if e.path != "fast"]
    candidates = []
    for name, group in _group_by_base(non_fast).items():
        total = sum(e.original_tokens for e in group)
        paths = Counter(e.path for e in group)
        candidates.append(
            DiscoveryCandidate(
                command=name,
                count=len(group),
                total_tokens=total,
                avg_tokens=total // len(group),
                current_path=paths.most_common(1)[0][0],
            )
        )
    candidates.sort(key=lambda c: c.total_tokens, reverse=True)
    return candidates


def compute_trends(entries: List[CommandLogEntry]) -> List[TrendEntry]:
    """Daily totals, oldest day first."""
    daily: Dict[str, List[CommandLogEntry]] = defaultdict(list)
    for entry in entries:
        date = entry.timestamp[:10] if len(entry.timestamp) >= 10 else "unknown"
        daily[date].append(entry)

    trends = [
        TrendEntry(
            date=date,
            commands=len(group),
            tokens_saved=sum(max(0, e.original_tokens - e.optimized_tokens) for e in group),
            avg_savings_pct=sum(e.savings_pct for e in group) / len(group),
        )
        for date, group in daily.items()
    ]
    trends.sort(key=lambda t: t.date)
    return trends
