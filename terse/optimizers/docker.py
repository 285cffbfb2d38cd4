"""Docker output optimizer.

Compacts container and image tables, logs, inspect output, builds and
registry transfers.
"""

from typing import List, Optional

from terse.matching import CommandContext
from terse.optimizers.base import Optimizer, has_flag

__all__ = ["DockerOptimizer", "classify_docker_command"]


# (prefix, kind) in match order; compose entries come first
DOCKER_COMMANDS = [
    ("docker compose ps", "compose_ps"),
    ("docker-compose ps", "compose_ps"),
    ("docker compose build", "build"),
    ("docker-compose build", "build"),
    ("docker ps", "ps"),
    ("docker images", "images"),
    ("docker image ls", "images"),
    ("docker logs", "logs"),
    ("docker inspect", "inspect"),
    ("docker build", "build"),
    ("docker pull", "transfer"),
    ("docker push", "transfer"),
    ("docker network ls", "resource"),
    ("docker network list", "resource"),
    ("docker volume ls", "resource"),
    ("docker volume list", "resource"),
]

LAYER_PROGRESS_MARKERS = (
    ": pulling",
    ": waiting",
    ": downloading",
    ": extracting",
    ": verifying",
    ": already exists",
    ": pull complete",
    ": pushed",
    ": preparing",
    ": layer already exists",
    ": mounted from",
)

LOG_ERROR_WORDS = ("error", "fatal", "panic", "exception", "traceback")


def classify_docker_command(core: str) -> Optional[str]:
    lower = core.lower()
    for prefix, kind in DOCKER_COMMANDS:
        if lower.startswith(prefix):
            return kind
    return None


def _column_start(header: str, name: str) -> Optional[int]:
    pos = header.upper().find(name)
    return pos if pos >= 0 else None


def _column(line: str, start: Optional[int], end: Optional[int]) -> Optional[str]:
    if start is None or start >= len(line):
        return None
    if end is None or end <= start:
        return line[start:].strip()
    return line[start:end].strip()


def _trim_table(text: str, max_rows: int) -> str:
    lines = text.splitlines()
    if len(lines) <= max_rows:
        return text
    return "\n".join(lines[:max_rows]) + (
        f"\n...+{len(lines) - max_rows} more rows ({len(lines)} total)"
    )


def compact_ps(raw: str, max_rows: int) -> str:
    """Reduce `docker ps` to name, image, status and ports."""
    trimmed = raw.strip()
    if not trimmed:
        return "No containers running"
    lines = trimmed.splitlines()
    if len(lines) <= 1:
        if "container" in lines[0].lower():
            return "No containers running"
        return trimmed

    header = lines[0]
    name_col = _column_start(header, "NAMES")
    image_col = _column_start(header, "IMAGE")
    command_col = _column_start(header, "COMMAND")
    status_col = _column_start(header, "STATUS")
    ports_col = _column_start(header, "PORTS")
    if name_col is None and image_col is None:
        return _trim_table(trimmed, max_rows)

    rows = []
    for line in lines[1:]:
        if not line.strip():
            continue
        name = _column(line, name_col, None) or "-"
        image_end = command_col if command_col is not None else status_col
        image = (_column(line, image_col, image_end) or "-")[:40]
        status = _column(line, status_col, ports_col) or "-"
        ports = (_column(line, ports_col, name_col) or "-")[:30]
        rows.append(f"{name} | {image} | {status} | {ports}")

    result = ["NAME | IMAGE | STATUS | PORTS"] + rows[:max_rows]
    if len(rows) > max_rows:
        result.append(f"...+{len(rows) - max_rows} more ({len(rows)} total)")
    return "\n".join(result)


def compact_images(raw: str, max_rows: int) -> str:
    trimmed = raw.strip()
    lines = trimmed.splitlines()
    if len(lines) <= 1:
        return "No images"

    header = lines[0]
    repo_col = _column_start(header, "REPOSITORY")
    tag_col = _column_start(header, "TAG")
    id_col = _column_start(header, "IMAGE ID")
    size_col = _column_start(header, "SIZE")
    if repo_col is None:
        return _trim_table(trimmed, max_rows)

    rows = []
    for line in lines[1:]:
        if not line.strip():
            continue
        repo = _column(line, repo_col, tag_col) or "-"
        tag = _column(line, tag_col, id_col if id_col is not None else size_col) or "-"
        size = _column(line, size_col, None) or "-"
        rows.append(f"{repo}:{tag} | {size}")

    result = ["REPOSITORY:TAG | SIZE"] + rows[:max_rows]
    if len(rows) > max_rows:
        result.append(f"...+{len(rows) - max_rows} more ({len(rows)} total)")
    return "\n".join(result)


def compact_logs(raw: str, max_tail: int, max_errors: int) -> str:
    """Error lines first, then the tail of the log."""
    trimmed = raw.strip()
    if not trimmed:
        return "No logs"
    lines = trimmed.splitlines()
    total = len(lines)
    if total <= max_tail + max_errors:
        return trimmed

    errors = [line for line in lines if any(w in line.lower() for w in LOG_ERROR_WORDS)]
    errors = errors[:max_errors]

    result: List[str] = []
    if errors:
        result.append(f"ERRORS/WARNINGS ({len(errors)}):")
        result.extend(errors)
        result.append("")
    result.append(f"TAIL ({max_tail} of {total} lines):")
    result.extend(lines[total - max_tail:])
    return "\n".join(result)


def compact_inspect(raw: str, max_lines: int) -> str:
    trimmed = raw.strip()
    if not trimmed:
        return "No inspect output"
    lines = trimmed.splitlines()
    if len(lines) <= max_lines:
        return trimmed
    return "\n".join(lines[:max_lines]) + (
        f"\n...({len(lines) - max_lines} lines omitted, {len(lines)} total)"
    )


def compact_build(raw: str, max_errors: int = 20) -> str:
    trimmed = raw.strip()
    if not trimmed:
        return "Build completed (no output)"

    errors, outcome = [], []
    steps = 0
    for raw_line in trimmed.splitlines():
        line = raw_line.strip()
        lower = line.lower()
        if lower.startswith("step ") or (lower.startswith("#") and "[" in lower):
            steps += 1
            continue
        if "error" in lower or "failed" in lower:
            errors.append(line)
            continue
        if lower.startswith(("successfully", "writing image", "naming to")) or "built" in lower:
            outcome.append(line)

    result = []
    if steps:
        result.append(f"[{steps} build steps]")
    if errors:
        result.append("ERRORS:")
        result.extend(errors[:max_errors])
        if len(errors) > max_errors:
            result.append(f"...+{len(errors) - max_errors} more error lines")
    result.extend(outcome)

    if not result:
        return _trim_table(trimmed, 30)
    return "\n".join(result)


def compact_transfer(raw: str) -> str:
    """Drop per-layer progress from `docker pull` / `docker push`."""
    trimmed = raw.strip()
    if not trimmed:
        return "completed"
    lines = trimmed.splitlines()
    kept = [
        line.strip()
        for line in lines
        if not any(marker in line.lower() for marker in LAYER_PROGRESS_MARKERS)
    ]
    if not kept:
        return lines[-1].strip()
    return "\n".join(kept)


class DockerOptimizer(Optimizer):
    """Compact docker and docker compose output."""

    name = "docker"

    DEFAULT_LIMITS = {
        "ps_max_rows": 30,
        "images_max_rows": 30,
        "logs_max_tail": 30,
        "logs_max_errors": 20,
        "inspect_max_lines": 60,
        "resource_max_rows": 30,
    }

    def can_handle(self, ctx: CommandContext) -> bool:
        kind = classify_docker_command(ctx.core)
        if kind is None:
            return False
        if kind in ("ps", "images"):
            return not has_flag(ctx.lower_core, ["--format", "-f"])
        return True

    def render(self, ctx: CommandContext, raw: str) -> str:
        kind = classify_docker_command(ctx.core) or "ps"
        limits = self.limits

        if kind == "ps":
            return compact_ps(raw, limits["ps_max_rows"])
        if kind == "images":
            return compact_images(raw, limits["images_max_rows"])
        if kind == "logs":
            return compact_logs(raw, limits["logs_max_tail"], limits["logs_max_errors"])
        if kind == "inspect":
            return compact_inspect(raw, limits["inspect_max_lines"])
        if kind == "build":
            return compact_build(raw)
        if kind == "transfer":
            return compact_transfer(raw)
        if kind == "compose_ps":
            lines = raw.strip().splitlines()
            if len(lines) <= 1:
                return "No compose services running"
            return _trim_table(raw.strip(), limits["ps_max_rows"])
        if not raw.strip():
            return "No resources"
        return _trim_table(raw.strip(), limits["resource_max_rows"])
