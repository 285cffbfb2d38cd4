"""Git output optimizer.

Handles the git subcommands that produce the most output:
- status: porcelain substitution rendered as a short summary
- log: one-line, limited substitution
- diff / show / stash show: per-file stat plus compact hunks
- branch: counts, current branch and remote-only branches
- stash list, worktree list, and one-line push/pull/fetch/add/commit results
"""

import re
from typing import List, Optional, Tuple

from terse.matching import CommandContext
from terse.optimizers.base import Optimizer, OptimizerError, first_nonblank_line, has_flag

__all__ = [
    "GitOptimizer",
    "classify_git",
    "format_porcelain_status",
    "generate_diff_stat",
    "compact_diff_hunks",
    "compact_diff_with_stat",
    "compact_branches",
]


SHORT_STATUS_ACTIONS = ("push", "pull", "fetch", "add", "commit")

# Subcommand -> flags that mean the user asked for a specific format already
SKIP_FLAGS = {
    "status": ["--short", "-s", "--porcelain", "-v", "--verbose"],
    "diff": ["--stat", "--numstat", "--shortstat"],
    "branch": ["-d", "-D", "-m", "-M", "-c", "-C"],
    "show": ["--stat", "--format", "--pretty"],
    "worktree": ["add", "remove", "prune", "lock", "unlock", "move"],
}

_PORCELAIN_RE = re.compile(r"^(?:## |[ MADRCU?!]{2} )")


def classify_git(core: str) -> Optional[str]:
    """Return the handled subcommand of a git command, or None.

    Example:
        >>> classify_git("git push origin main")
        'short'
    """
    lower = core.lower()
    if not lower.startswith("git "):
        return None
    for sub in ("status", "log", "diff", "branch", "show", "stash", "worktree"):
        if lower.startswith(f"git {sub}"):
            return sub
    for action in SHORT_STATUS_ACTIONS:
        if lower.startswith(f"git {action}"):
            return "short"
    return None


def _outside_quotes(text: str, pos: int) -> bool:
    in_single = in_double = False
    for ch in text[:pos]:
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
    return not (in_single or in_double)


def _has_numeric_limit(text: str) -> bool:
    for arg in text.split():
        if arg == "-n" or arg.startswith("--max-count"):
            return True
        if len(arg) > 1 and arg[0] == "-" and arg[1:].isdigit():
            return True
    return False


def _append_file_list(files: List[str], limit: int) -> str:
    shown = ", ".join(files[:limit])
    if len(files) > limit:
        shown += f", +{len(files) - limit} more"
    return shown


def format_porcelain_status(porcelain: str) -> str:
    """Render `git status --porcelain -b` output as a short summary.

    Raises:
        OptimizerError: If the text is not porcelain output.
    """
    lines = [line for line in porcelain.splitlines() if line.strip()]
    if not lines:
        return "clean"
    if not all(_PORCELAIN_RE.match(line) for line in lines):
        raise OptimizerError("git status output is not in porcelain format")

    result = []
    if lines[0].startswith("## "):
        result.append(f"branch: {lines[0][3:]}")
        lines = lines[1:]

    staged, modified, untracked = [], [], []
    conflicts = 0
    for line in lines:
        if len(line) < 4:
            continue
        index, worktree, path = line[0], line[1], line[3:]
        if index == "?" and worktree == "?":
            untracked.append(path)
            continue
        if index == "U" or worktree == "U":
            conflicts += 1
            continue
        if index in "MADRC":
            staged.append(path)
        if worktree in "MD":
            modified.append(path)

    if not (staged or modified or untracked or conflicts):
        result.append("clean")
        return "\n".join(result)

    if staged:
        result.append(f"staged ({len(staged)}): {_append_file_list(staged, 5)}")
    if modified:
        result.append(f"modified ({len(modified)}): {_append_file_list(modified, 5)}")
    if untracked:
        result.append(f"untracked ({len(untracked)}): {_append_file_list(untracked, 3)}")
    if conflicts:
        result.append(f"conflicts: {conflicts}")
    return "\n".join(result)


def _filter_log_output(text: str, limit: int, line_max_chars: int) -> str:
    lines = []
    for line in text.splitlines()[:limit]:
        if len(line) > line_max_chars:
            line = line[: max(0, line_max_chars - 3)] + "..."
        lines.append(line)
    return "\n".join(lines)


def _plural(count: int, word: str) -> str:
    return word if count == 1 else word + "s"


def generate_diff_stat(diff_text: str) -> str:
    """Per-file `+added -removed` lines and a totals line."""
    files: List[Tuple[str, int, int]] = []
    current = None
    added = removed = 0

    for line in diff_text.splitlines():
        if line.startswith("diff --git"):
            if current is not None:
                files.append((current, added, removed))
            parts = line.split(" b/", 1)
            current = parts[1] if len(parts) == 2 else "unknown"
            added = removed = 0
        elif line.startswith("+") and not line.startswith("+++"):
            added += 1
        elif line.startswith("-") and not line.startswith("---"):
            removed += 1
    if current is not None:
        files.append((current, added, removed))

    if not files:
        return ""

    result = [f" {name} | +{a} -{r}" for name, a, r in files]
    total_added = sum(a for _, a, _ in files)
    total_removed = sum(r for _, _, r in files)
    n = len(files)
    result.append(
        f" {n} {_plural(n, 'file')} changed, "
        f"{total_added} {_plural(total_added, 'insertion')}(+), "
        f"{total_removed} {_plural(total_removed, 'deletion')}(-)"
    )
    return "\n".join(result)


def compact_diff_hunks(diff_text: str, max_hunk_lines: int, max_total_lines: int) -> str:
    """Keep headers and the first changed lines of each hunk."""
    kept = []
    hunk_lines = 0

    for line in diff_text.splitlines():
        if line.startswith("diff --git") or line.startswith("@@ "):
            hunk_lines = 0
            kept.append(line)
        elif line.startswith(("index ", "--- ", "+++ ")):
            kept.append(line)
        elif line.startswith(("+", "-")):
            hunk_lines += 1
            if hunk_lines <= max_hunk_lines:
                kept.append(line)
            elif hunk_lines == max_hunk_lines + 1:
                kept.append("  ...(hunk truncated)")

        if len(kept) >= max_total_lines:
            kept.append("...(diff truncated)")
            break

    return "\n".join(kept)


def compact_diff_with_stat(raw: str, max_hunk_lines: int, max_total_lines: int) -> str:
    if not raw.strip():
        return "No changes"

    stat = generate_diff_stat(raw)
    hunks = compact_diff_hunks(raw, max_hunk_lines, max_total_lines)
    if not stat and not hunks:
        return raw.strip()
    return "\n\n".join(part for part in (stat, hunks) if part)


def compact_branches(raw: str, max_local: int, max_remote: int) -> str:
    """Summarize `git branch` output."""
    current = ""
    local: List[str] = []
    remote: List[str] = []

    for line in raw.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        if trimmed.startswith("* "):
            current = trimmed[2:]
        elif trimmed.startswith("remotes/"):
            name = trimmed[len("remotes/"):]
            name = name.split("/", 1)[1] if "/" in name else name
            if name.startswith("HEAD "):
                continue
            remote.append(name)
        else:
            local.append(trimmed)

    total = max(1, len(local) + (1 if current else 0))
    if remote:
        result = [f"branches: {total} local, {len(remote)} remote"]
    else:
        result = [f"branches: {total} local"]

    if current:
        result.append(f"* {current}")
    for branch in local[:max_local]:
        result.append(f"  {branch}")
    if len(local) > max_local:
        result.append(f"  +{len(local) - max_local} more")

    remote_only = [b for b in remote if b != current and b not in local]
    if remote_only:
        result.append(f"  remote-only ({len(remote_only)}):")
        for branch in remote_only[:max_remote]:
            result.append(f"    {branch}")
        if len(remote_only) > max_remote:
            result.append(f"    +{len(remote_only) - max_remote} more")

    return "\n".join(result)


def _compact_show(raw: str, max_hunk_lines: int, max_total_lines: int) -> str:
    pos = raw.find("diff --git")
    if pos == -1:
        return raw.strip()
    metadata, diff_part = raw[:pos], raw[pos:]

    result = []
    prev_blank = False
    for line in metadata.splitlines():
        is_blank = not line.strip()
        if is_blank and prev_blank:
            continue
        result.append(line)
        prev_blank = is_blank

    stat = generate_diff_stat(diff_part)
    if stat:
        result.append(stat)
    hunks = compact_diff_hunks(diff_part, max_hunk_lines, max_total_lines)
    if hunks:
        result.append("")
        result.append(hunks)
    return "\n".join(result).rstrip()


def _compact_stash_list(raw: str) -> str:
    if not raw.strip():
        return "No stashes"

    result = []
    for line in raw.splitlines():
        trimmed = line.strip()
        if not trimmed:
            continue
        if ": " in trimmed:
            index, rest = trimmed.split(": ", 1)
            # Drop the "WIP on main:" / "On main:" part
            message = rest.split(": ", 1)[1] if ": " in rest else rest
            result.append(f"{index}: {message.strip()}")
        else:
            result.append(trimmed)
    return "\n".join(result)


def _summarize_stash_operation(action: str, raw: str) -> str:
    action = action or "push"
    lower = raw.lower()
    if "error" in lower or "fatal" in lower:
        return f"git stash {action}: failed - {first_nonblank_line(raw)}"
    if "no local changes" in lower or "no stash" in lower:
        return f"git stash {action}: nothing to stash"
    return f"git stash {action}: ok"


def _summarize_operation(core: str, raw: str) -> str:
    words = core.split()
    action = words[1].lower() if len(words) > 1 else "operation"
    lower = raw.lower()
    if "error" in lower or "fatal" in lower or "rejected" in lower:
        return f"git {action}: failed - {first_nonblank_line(raw)}"
    return f"git {action}: ok"


class GitOptimizer(Optimizer):
    """Compact renditions of common git commands.

    Example:
        >>> optimizer = GitOptimizer()
        >>> ctx = CommandContext.from_command("cd /repo && git status")
        >>> optimizer.substitute(ctx)
        'cd /repo && git status --porcelain -b'
    """

    name = "git"

    DEFAULT_LIMITS = {
        "log_max_entries": 50,
        "log_default_limit": 20,
        "log_line_max_chars": 120,
        "diff_max_hunk_lines": 15,
        "diff_max_total_lines": 200,
        "branch_max_local": 20,
        "branch_max_remote": 10,
    }

    def can_handle(self, ctx: CommandContext) -> bool:
        sub = classify_git(ctx.core)
        if sub is None:
            return False
        skip = SKIP_FLAGS.get(sub)
        if skip and has_flag(ctx.core, skip):
            return False
        # Status output is only rendered from its porcelain substitute
        if sub == "status":
            return self._find(ctx.original, "git status") is not None
        return True

    def substitute(self, ctx: CommandContext) -> Optional[str]:
        if not self.can_handle(ctx) or ctx.output_piped:
            return None

        sub = classify_git(ctx.core)
        if sub == "status":
            return self._insert_after(ctx.original, "git status", "git status --porcelain -b")

        if sub == "log":
            lower = ctx.lower_core
            has_format = has_flag(lower, ["--oneline", "--pretty", "--format"])
            has_limit = _has_numeric_limit(lower)
            if has_format and has_limit:
                return None
            target = "git log"
            if not has_format:
                target += " --oneline"
            if not has_limit:
                target += f" -n {self.limits['log_default_limit']}"
            return self._insert_after(ctx.original, "git log", target)

        return None

    @staticmethod
    def _find(command: str, prefix: str) -> Optional[re.Match]:
        """Locate `prefix` in command, case and spacing insensitive.

        Prefers the last occurrence outside quotes, so `--grep="git log"` is
        skipped; falls back to the last one for `bash -c 'git status'`.
        """
        pattern = r"\b" + r"\s+".join(re.escape(word) for word in prefix.split()) + r"\b"
        matches = list(re.finditer(pattern, command, re.IGNORECASE))
        unquoted = [m for m in matches if _outside_quotes(command, m.start())]
        if unquoted:
            return unquoted[-1]
        return matches[-1] if matches else None

    def _insert_after(self, command: str, old: str, new: str) -> Optional[str]:
        """Insert the flags `new` adds to `old` right after the core's `old`."""
        match = self._find(command, old)
        if match is None:
            return None
        return command[: match.end()] + new[len(old):] + command[match.end():]

    def render(self, ctx: CommandContext, raw: str) -> str:
        sub = classify_git(ctx.core)
        if sub is None:
            raise OptimizerError(f"not a handled git command: {ctx.core}")

        limits = self.limits
        hunk_lines = limits["diff_max_hunk_lines"]
        total_lines = limits["diff_max_total_lines"]

        if sub == "status":
            return format_porcelain_status(raw)
        if sub == "log":
            return _filter_log_output(raw, limits["log_max_entries"], limits["log_line_max_chars"])
        if sub == "diff":
            return compact_diff_with_stat(raw, hunk_lines, total_lines)
        if sub == "branch":
            return compact_branches(raw, limits["branch_max_local"], limits["branch_max_remote"])
        if sub == "show":
            return _compact_show(raw, hunk_lines, total_lines)
        if sub == "stash":
            rest = ctx.lower_core[len("git stash"):].split()
            action = rest[0] if rest else ""
            if action == "list":
                return _compact_stash_list(raw)
            if action == "show":
                return compact_diff_with_stat(raw, hunk_lines, total_lines)
            return _summarize_stash_operation(action, raw)
        if sub == "worktree":
            lines = [line.strip() for line in raw.splitlines() if line.strip()]
            return "\n".join(lines) if lines else "No worktrees"
        return _summarize_operation(ctx.core, raw)
