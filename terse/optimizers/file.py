"""File and directory listing optimizer.

Covers `ls`/`dir`, `find`, `cat`/`head`/`tail`, `wc` and `tree`, including
the PowerShell Get-ChildItem table format.
"""

from typing import List, Optional

from terse.matching import CommandContext
from terse.optimizers.base import Optimizer, has_flag

__all__ = ["FileOptimizer", "classify_file_command", "TREE_NOISE_DIRS"]


COMMAND_KINDS = {
    "ls": "ls",
    "dir": "ls",
    "gci": "ls",
    "get-childitem": "ls",
    "find": "find",
    "cat": "cat",
    "head": "cat",
    "tail": "cat",
    "type": "cat",
    "get-content": "cat",
    "gc": "cat",
    "wc": "wc",
    "tree": "tree",
}

# ls flags that already produce a compact listing
COMPACT_LS_FLAGS = ["-1", "--format", "-C", "-m", "-x"]

TREE_NOISE_DIRS = {
    "node_modules",
    ".git",
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    ".tox",
    ".next",
    ".nuxt",
    ".cache",
    "coverage",
    ".nyc_output",
    "vendor",
    "pods",
    ".gradle",
    ".idea",
    ".vs",
    ".vscode",
    "bin",
    "obj",
    "target",
    "dist",
    "build",
    ".angular",
    ".svn",
    ".hg",
    ".terraform",
    ".serverless",
}

_TREE_PREFIX_CHARS = " │├└─|+`-\t"


def classify_file_command(core: str) -> Optional[str]:
    words = core.lower().split()
    if not words:
        return None
    return COMMAND_KINDS.get(words[0])


def _more_summary(shown: List[str], total: int, label: str = "more") -> str:
    return "\n".join(shown) + f"\n...+{total - len(shown)} {label} ({total} total)"


def human_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    for unit, factor in (("KB", 1024), ("MB", 1024 ** 2)):
        if size < factor * 1024:
            return f"{size / factor:.1f} {unit}"
    return f"{size / 1024 ** 3:.1f} GB"


def _is_long_format_line(line: str) -> bool:
    line = line.strip()
    if line.startswith("total "):
        return True
    return len(line) > 10 and line[0] in "d-l" and line[1] in "r-"


def _is_separator(line: str) -> bool:
    stripped = line.strip()
    return bool(stripped) and all(ch == "-" or ch.isspace() for ch in stripped)


def _is_powershell_listing(lines: List[str]) -> bool:
    if len(lines) < 3:
        return False
    has_header = any("Mode" in line and "Name" in line for line in lines[:5])
    has_separator = any(_is_separator(line) for line in lines[:6])
    return has_header and has_separator


def _compact_powershell(lines: List[str], max_entries: int) -> str:
    name_col = next((line.find("Name") for line in lines[:5] if "Name" in line), 0)
    entries = []
    dirs = files = 0

    for line in lines:
        trimmed = line.strip()
        if (
            not trimmed
            or trimmed.startswith("Directory:")
            or trimmed.startswith("Mode")
            or _is_separator(trimmed)
        ):
            continue
        words = trimmed.split()
        name = line[name_col:].strip() if 0 < name_col < len(line) else words[-1]
        if not name:
            continue
        if words[0].startswith("d"):
            dirs += 1
            entries.append(f"[D] {name}")
            continue
        files += 1
        size = next((int(w) for w in reversed(words[:-1]) if w.isdigit()), None)
        entries.append(f"    {name}  ({human_size(size)})" if size is not None else f"    {name}")

    if not entries:
        return "(empty directory)"

    result = [f"{dirs} directories, {files} files"] + entries[:max_entries]
    if len(entries) > max_entries:
        result.append(f"...+{len(entries) - max_entries} more ({len(entries)} total)")
    return "\n".join(result)


def compact_ls(raw: str, max_entries: int, max_items: int) -> str:
    """Compact `ls` output in long, simple or PowerShell format."""
    trimmed = raw.strip()
    if not trimmed:
        return "(empty directory)"

    lines = trimmed.splitlines()
    if _is_powershell_listing(lines):
        return _compact_powershell(lines, max_entries)

    if any(_is_long_format_line(line) for line in lines):
        entries = [
            line.strip()
            for line in lines
            if line.strip() and not line.strip().startswith("total ")
        ]
        if len(entries) <= max_entries:
            return "\n".join(entries)
        return _more_summary(entries[:max_entries], len(entries), "more entries")

    items = [line.strip() for line in lines if line.strip()]
    if len(items) <= max_items:
        return "\n".join(items)
    return _more_summary(items[:max_items], len(items))


def compact_find(raw: str, max_results: int) -> str:
    trimmed = raw.strip()
    if not trimmed:
        return "No files found"
    lines = trimmed.splitlines()
    if len(lines) <= max_results:
        return trimmed
    return _more_summary(lines[:max_results], len(lines))


def compact_cat(raw: str, max_lines: int, head_lines: int, tail_lines: int) -> str:
    """Keep the head and tail of long file content."""
    trimmed = raw.strip()
    if not trimmed:
        return "(empty file)"
    lines = trimmed.splitlines()
    total = len(lines)
    if total <= max_lines:
        return trimmed

    omitted = total - head_lines - tail_lines
    result = lines[:head_lines]
    result.append(f"... ({omitted} lines omitted, {total} total) ...")
    result.extend(lines[total - tail_lines:])
    return "\n".join(result)


def compact_wc(raw: str, max_lines: int) -> str:
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    if not lines:
        return "0"
    if len(lines) <= max_lines:
        return "\n".join(lines)
    # Keep the trailing "total" line
    result = lines[: max_lines - 1] + [lines[-1]]
    return "\n".join(result) + f"\n...{len(lines)} files total"


def _tree_depth(line: str) -> int:
    return len(line) - len(line.lstrip(_TREE_PREFIX_CHARS))


def _prune_tree_noise(lines: List[str], noise_dirs) -> List[str]:
    result = []
    skip_depth = None

    for line in lines:
        depth = _tree_depth(line)
        if skip_depth is not None:
            if depth > skip_depth:
                continue
            skip_depth = None

        name = line.lstrip(_TREE_PREFIX_CHARS).strip()
        if name.rstrip("/").lower() in noise_dirs:
            result.append(f"{line[:depth]}{name.rstrip('/')}/ [contents hidden]")
            skip_depth = depth
        else:
            result.append(line)

    return result


def compact_tree(raw: str, max_lines: int, noise_dirs=TREE_NOISE_DIRS) -> str:
    """Hide noise subtrees, then cap the line count."""
    trimmed = raw.strip()
    if not trimmed:
        return "(empty)"

    lines = trimmed.splitlines()
    pruned = _prune_tree_noise(lines, noise_dirs)
    if len(pruned) <= max_lines:
        return "\n".join(pruned)

    result = pruned[: max_lines - 1]
    last = pruned[-1]
    if "director" in last or "file" in last:
        # Keep the "N directories, M files" summary
        note = ""
        if len(pruned) < len(lines):
            note = f" ({len(lines) - len(pruned)} noise lines pruned)"
        return "\n".join(result + ["", last]) + f"\n...({len(pruned) - max_lines} lines omitted){note}"

    return "\n".join(result) + f"\n...+{len(pruned) - max_lines + 1} more lines ({len(lines)} total)"


class FileOptimizer(Optimizer):
    """Compact file listings and file content."""

    name = "file"

    DEFAULT_LIMITS = {
        "ls_max_entries": 50,
        "ls_max_items": 60,
        "find_max_results": 40,
        "cat_max_lines": 100,
        "cat_head_lines": 60,
        "cat_tail_lines": 30,
        "wc_max_lines": 30,
        "tree_max_lines": 60,
    }

    def can_handle(self, ctx: CommandContext) -> bool:
        kind = classify_file_command(ctx.core)
        if kind is None:
            return False
        if kind == "ls":
            return not has_flag(ctx.core, COMPACT_LS_FLAGS)
        return True

    def render(self, ctx: CommandContext, raw: str) -> str:
        kind = classify_file_command(ctx.core) or "ls"
        limits = self.limits

        if kind == "find":
            return compact_find(raw, limits["find_max_results"])
        if kind == "cat":
            return compact_cat(
                raw,
                limits["cat_max_lines"],
                limits["cat_head_lines"],
                limits["cat_tail_lines"],
            )
        if kind == "wc":
            return compact_wc(raw, limits["wc_max_lines"])
        if kind == "tree":
            return compact_tree(raw, limits["tree_max_lines"])
        return compact_ls(raw, limits["ls_max_entries"], limits["ls_max_items"])
