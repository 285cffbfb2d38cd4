"""Deterministic preprocessing of command output.

Stages run in a fixed order, each a pure text-to-text function:
1. Noise removal (ANSI escapes, progress bars, boilerplate, decoration)
2. Path filtering (dependency and build-artifact directories)
3. Deduplication (repeated, step-counter and similar lines)
4. Truncation (head + tail with error lines from the middle)
5. Whitespace trimming

Lines carrying error signal are never dropped or folded into a marker.
Every marker starts with "[... " so later stages can recognize it.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from terse.config import PreprocessingConfig

__all__ = [
    "PreprocessedOutput",
    "PreprocessingPipeline",
    "has_error_signal",
    "is_marker",
    "remove_noise",
    "filter_paths",
    "deduplicate",
    "truncate",
    "trim_whitespace",
]


MARKER_PREFIX = "[... "

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)|\x1b[()][A-B0-2]")

_PROGRESS_RE = re.compile(r"\[[\s=>#-]+\]|\b\d{1,3}(?:\.\d+)?%")

_ERROR_SIGNAL_RE = re.compile(
    r"\b(?:error|errors|fail|failed|failure|failures|fatal|panic|panicked"
    r"|traceback|exception|abort|aborted)\b|[✗✕]",
    re.IGNORECASE,
)

_STEP_RE = re.compile(r"(?<![\d/])(\d+)/(\d+)(?![\d/])")

_REPEATED_RE = re.compile(r" \[repeated \d+ times\]$")

_TREE_CHARS = "│├└─┬┤┌┐┘┴"

BOILERPLATE_PREFIXES = (
    "Compiling ",
    "Downloading ",
    "Downloaded ",
    "Checking ",
    "Fresh ",
    "Blocking waiting for file lock",
    "Updating crates.io index",
    "Unpacking ",
    "Resolving ",
    "Installing ",
    "Auditing ",
    "npm warn",
    "npm notice",
    "added ",
    "removed ",
    "changed ",
    "up to date,",
)

NOISE_DIR_SEGMENTS = (
    "node_modules",
    ".git/objects",
    ".git/refs",
    ".git/logs",
    ".git/hooks",
    "target/debug/deps",
    "target/debug/build",
    "target/debug/incremental",
    "target/release/deps",
    "target/release/build",
    "target/release/incremental",
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    ".tox",
    "dist/",
    "build/lib",
    ".next/",
    ".nuxt/",
    ".cache/",
    "coverage/",
    ".nyc_output",
    "vendor/bundle",
    "Pods/",
    ".gradle/",
    "bin/Debug",
    "bin/Release",
    "obj/Debug",
    "obj/Release",
    ".vs/",
    ".idea/",
)

# Safety bound for re-applying the stages until the text is stable
_MAX_PASSES = 4


@dataclass
class PreprocessedOutput:
    """Result of running the pipeline.

    Attributes:
        text: Processed text.
        original_bytes: UTF-8 size of the input.
        processed_bytes: UTF-8 size of the output.
        stages_applied: Names of the stages that changed the text.
    """

    text: str
    original_bytes: int
    processed_bytes: int
    stages_applied: List[str] = field(default_factory=list)

    @property
    def bytes_removed(self) -> int:
        return max(0, self.original_bytes - self.processed_bytes)


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def has_error_signal(line: str) -> bool:
    """Whether a line mentions an error, failure, panic or traceback."""
    return bool(_ERROR_SIGNAL_RE.search(line))


def is_marker(line: str) -> bool:
    return line.lstrip().startswith(MARKER_PREFIX)


# ---------------------------------------------------------------------------
# Stage 1: noise
# ---------------------------------------------------------------------------


def _strip_ansi(line: str) -> str:
    # Removing one sequence can splice together another.
    while True:
        stripped = _ANSI_RE.sub("", line)
        if stripped == line:
            return stripped
        line = stripped


def _is_decoration_line(line: str) -> bool:
    trimmed = line.strip()
    if len(trimmed) < 3:
        return False
    first = trimmed[0]
    if first.isalnum() or first.isspace() or not first.isascii():
        return False
    return all(ch == first for ch in trimmed)


def _is_progress_line(line: str) -> bool:
    trimmed = line.strip()
    if "%" not in trimmed and "[" not in trimmed:
        return False
    if is_marker(trimmed) or len(trimmed) >= 120:
        return False
    if not _PROGRESS_RE.search(trimmed):
        return False
    return len(_PROGRESS_RE.sub("", trimmed).strip()) < 10


def remove_noise(text: str, extra_boilerplate: Iterable[str] = ()) -> str:
    """Strip escape sequences, progress output and boilerplate.

    Args:
        text: Raw command output.
        extra_boilerplate: Additional line prefixes to drop.

    Returns:
        Text without noise lines; runs of 3+ blank lines collapse to one.
    """
    prefixes = BOILERPLATE_PREFIXES + tuple(p for p in extra_boilerplate if p)
    kept = []

    for raw_line in text.split("\n"):
        line = _strip_ansi(raw_line)
        if "\r" in line:
            # Carriage-return overwrites: only the last drawn segment is visible.
            segments = [s for s in line.split("\r") if s.strip()]
            line = segments[-1] if segments else ""

        if not has_error_signal(line):
            stripped = line.strip()
            if stripped.startswith(prefixes):
                continue
            if _is_decoration_line(line) or _is_progress_line(line):
                continue
        kept.append(line)

    result = []
    blank_run = []
    for line in kept:
        if not line.strip():
            blank_run.append(line)
            continue
        result.extend(blank_run[:1] if len(blank_run) >= 3 else blank_run)
        blank_run = []
        result.append(line)
    result.extend(blank_run[:1] if len(blank_run) >= 3 else blank_run)

    return "\n".join(result)


# ---------------------------------------------------------------------------
# Stage 2: paths
# ---------------------------------------------------------------------------


def _noise_segment(line: str, segments: Iterable[str]) -> Optional[str]:
    """Return the noise directory a path line belongs to, if any."""
    trimmed = line.strip()
    if not trimmed or is_marker(trimmed):
        return None
    bare = "".join(ch for ch in trimmed if ch not in _TREE_CHARS).strip()
    normalized = bare.replace("\\", "/")
    for segment in segments:
        if segment in normalized:
            return segment.rstrip("/")
    return None


def filter_paths(text: str, mode: str = "summary", extra_dirs: Iterable[str] = ()) -> str:
    """Remove or summarize lines pointing into noise directories.

    Args:
        text: Text to filter.
        mode: "summary" collapses each run into one marker; "remove" drops
            the lines silently.
        extra_dirs: Additional directory segments to treat as noise.

    Returns:
        Filtered text. Lines carrying error signal are always kept.

    Example:
        >>> filter_paths("src/a.py\\nnode_modules/x/y.js\\nnode_modules/z.js")
        'src/a.py\\n[... 2 paths in noise directories filtered (node_modules)]'
    """
    segments = NOISE_DIR_SEGMENTS + tuple(d.replace("\\", "/") for d in extra_dirs if d)
    result = []
    run_count = 0
    run_classes: List[str] = []

    def flush():
        nonlocal run_count, run_classes
        if run_count and mode != "remove":
            result.append(
                f"{MARKER_PREFIX}{run_count} paths in noise directories filtered "
                f"({', '.join(run_classes)})]"
            )
        run_count = 0
        run_classes = []

    for line in text.split("\n"):
        segment = None if has_error_signal(line) else _noise_segment(line, segments)
        if segment is None:
            flush()
            result.append(line)
            continue
        run_count += 1
        if segment not in run_classes:
            run_classes.append(segment)
    flush()

    return "\n".join(result)


# ---------------------------------------------------------------------------
# Stage 3: deduplication
# ---------------------------------------------------------------------------


def _can_join(line: str) -> bool:
    """Blank lines, markers, annotated lines and error lines never join runs."""
    return bool(
        line.strip()
        and not is_marker(line)
        and not _REPEATED_RE.search(line)
        and not has_error_signal(line)
    )


def _similarity_key(line: str) -> str:
    return re.sub(r"\d[0-9a-fA-F]*", "#", line.strip())


def _step_run(lines: List[str], start: int) -> int:
    match = _STEP_RE.search(lines[start])
    if not match:
        return 0
    total = match.group(2)
    end = start + 1
    while end < len(lines) and _can_join(lines[end]):
        other = _STEP_RE.search(lines[end])
        if not other or other.group(2) != total:
            break
        end += 1
    return end - start


def deduplicate(text: str) -> str:
    """Fold repeated, step-counter and similar-pattern line runs.

    Args:
        text: Text to deduplicate.

    Returns:
        Text where identical runs carry a `[repeated N times]` annotation,
        `k/N` step runs become one marker and runs of similar lines keep two
        representatives plus a marker.
    """
    lines = text.split("\n")
    result = []
    i = 0

    while i < len(lines):
        line = lines[i]
        if not _can_join(line):
            result.append(line)
            i += 1
            continue

        step_count = _step_run(lines, i)
        if step_count >= 3:
            first = _STEP_RE.search(lines[i])
            last = _STEP_RE.search(lines[i + step_count - 1])
            result.append(
                f"{MARKER_PREFIX}steps {first.group(1)}-{last.group(1)}/{first.group(2)} "
                f"completed ({step_count} lines)]"
            )
            i += step_count
            continue

        end = i + 1
        while end < len(lines) and lines[end] == line:
            end += 1
        if end - i >= 2:
            result.append(f"{line} [repeated {end - i} times]")
            i = end
            continue

        key = _similarity_key(line)
        end = i + 1
        while end < len(lines) and _can_join(lines[end]) and _similarity_key(lines[end]) == key:
            end += 1
        run = end - i
        if run >= 3:
            result.extend(lines[i:i + 2])
            prefix = key if len(key) <= 40 else key[:40] + "..."
            result.append(f'{MARKER_PREFIX}{run - 2} more similar lines matching "{prefix}"]')
            i = end
            continue

        result.append(line)
        i += 1

    return "\n".join(result)


# ---------------------------------------------------------------------------
# Stage 4: truncation
# ---------------------------------------------------------------------------


def _truncate_bytes(text: str, max_bytes: int) -> str:
    data = text.encode("utf-8")
    marker = f"\n{MARKER_PREFIX}{len(data)} bytes total, truncated ...]"
    budget = max_bytes - _byte_len(marker)
    if budget <= 0:
        return data[:max_bytes].decode("utf-8", errors="ignore")
    return data[:budget].decode("utf-8", errors="ignore") + marker


def _marker(omitted_lines: int, omitted_bytes: int, kept_errors: int) -> str:
    if kept_errors:
        return (
            f"{MARKER_PREFIX}{omitted_lines} lines ({omitted_bytes} bytes) truncated, "
            f"{kept_errors} error lines kept ...]"
        )
    return f"{MARKER_PREFIX}{omitted_lines} lines ({omitted_bytes} bytes) truncated ...]"


def truncate(text: str, max_bytes: int) -> str:
    """Cut text down to max_bytes keeping head, tail and error lines.

    About 40% of the budget goes to the head and 40% to the tail, cut on
    line boundaries. Error lines from the elided middle are kept after the
    marker while budget remains. Texts of six lines or fewer are cut by
    bytes instead.

    Args:
        text: Text to truncate.
        max_bytes: Ceiling in UTF-8 bytes (0 disables truncation).

    Returns:
        Text no larger than max_bytes.
    """
    if max_bytes <= 0 or _byte_len(text) <= max_bytes:
        return text

    lines = text.split("\n")
    if len(lines) <= 6:
        return _truncate_bytes(text, max_bytes)

    sizes = [_byte_len(line) + 1 for line in lines]
    share = int(max_bytes * 0.4)

    head_count, head_used = 0, 0
    while head_count < len(lines) and head_used + sizes[head_count] <= share:
        head_used += sizes[head_count]
        head_count += 1

    tail_count, tail_used = 0, 0
    while (
        tail_count < len(lines) - head_count
        and tail_used + sizes[-1 - tail_count] <= share
    ):
        tail_used += sizes[-1 - tail_count]
        tail_count += 1

    middle = list(range(head_count, len(lines) - tail_count))
    middle_bytes = sum(sizes[i] for i in middle)
    reserve = _byte_len(_marker(len(middle), middle_bytes, len(middle))) + 1
    remaining = max_bytes - head_used - tail_used - reserve
    if remaining < 0:
        return _truncate_bytes(text, max_bytes)

    kept_errors = []
    for i in middle:
        if has_error_signal(lines[i]) and sizes[i] <= remaining:
            kept_errors.append(i)
            remaining -= sizes[i]

    kept_set = set(kept_errors)
    omitted = [i for i in middle if i not in kept_set]
    marker = _marker(len(omitted), sum(sizes[i] for i in omitted), len(kept_errors))

    output = lines[:head_count] + [marker] + [lines[i] for i in kept_errors]
    if tail_count:
        output += lines[len(lines) - tail_count:]
    return "\n".join(output)


# ---------------------------------------------------------------------------
# Stage 5: whitespace
# ---------------------------------------------------------------------------


def trim_whitespace(text: str) -> str:
    """Normalize line endings, strip trailing spaces and outer blank lines."""
    lines = [line.rstrip() for line in text.replace("\r\n", "\n").split("\n")]
    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class PreprocessingPipeline:
    """Run the enabled stages in their fixed order.

    Example:
        >>> pipeline = PreprocessingPipeline()
        >>> result = pipeline.run(raw_output)
        >>> result.stages_applied
        ['noise', 'dedup', 'trim']
    """

    def __init__(self, config: Optional[PreprocessingConfig] = None):
        self.config = config or PreprocessingConfig()

    def _stages(self, category: Optional[str]):
        cfg = self.config
        mode = cfg.path_filter_mode
        if category == "file_operations":
            mode = "summary"

        stages = []
        if cfg.noise_removal:
            stages.append(("noise", lambda t: remove_noise(t, cfg.extra_boilerplate)))
        if cfg.path_filtering:
            stages.append(("paths", lambda t: filter_paths(t, mode, cfg.extra_filtered_dirs)))
        if cfg.deduplication:
            stages.append(("dedup", deduplicate))
        if cfg.truncation:
            stages.append(("truncation", lambda t: truncate(t, cfg.max_output_bytes)))
        if cfg.trim_whitespace:
            stages.append(("trim", trim_whitespace))
        return stages

    def run(self, text: str, category: Optional[str] = None) -> PreprocessedOutput:
        """Preprocess command output.

        Args:
            text: Raw output.
            category: Optional command category hint; "file_operations"
                forces summary-mode path filtering.

        Returns:
            PreprocessedOutput. Running the pipeline on its own output
            returns that output unchanged.
        """
        original_bytes = _byte_len(text)
        if not self.config.enabled:
            return PreprocessedOutput(text, original_bytes, original_bytes, [])

        applied: List[str] = []
        current = text
        stages = self._stages(category)
        for _ in range(_MAX_PASSES):
            before_pass = current
            for name, stage in stages:
                updated = stage(current)
                if updated != current and name not in applied:
                    applied.append(name)
                current = updated
            if current == before_pass:
                break

        return PreprocessedOutput(
            text=current,
            original_bytes=original_bytes,
            processed_bytes=_byte_len(current),
            stages_applied=[name for name, _ in stages if name in applied],
        )
