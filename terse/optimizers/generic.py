"""Generic fallback optimizer: whitespace cleanup and a line cap."""

from terse.matching import CommandContext
from terse.optimizers.base import Optimizer

__all__ = ["GenericOptimizer", "cleanup_whitespace"]


def cleanup_whitespace(text: str, max_lines: int) -> str:
    """Strip trailing spaces, squeeze blank runs to two, cap the line count.

    Above max_lines about two thirds of the budget goes to the head and the
    rest to the tail, with an omission line between them.
    """
    result = []
    blanks = 0
    for line in text.splitlines():
        line = line.rstrip()
        if not line:
            blanks += 1
            if blanks <= 2:
                result.append("")
            continue
        blanks = 0
        result.append(line)

    while result and not result[-1]:
        result.pop()

    total = len(result)
    if total <= max_lines:
        return "\n".join(result)

    head = max_lines * 2 // 3
    tail = max_lines - head - 1
    omitted = total - head - tail
    capped = result[:head] + [f"\n... ({omitted} lines omitted, {total} total) ...\n"]
    if tail > 0:
        capped += result[total - tail:]
    return "\n".join(capped)


class GenericOptimizer(Optimizer):
    """Fallback that matches every command.

    It always sits last in the registry; outputs under `min_size_bytes`
    pass through unchanged.
    """

    name = "generic"
    is_fallback = True

    DEFAULT_LIMITS = {"min_size_bytes": 512, "max_lines": 200}

    def can_handle(self, ctx: CommandContext) -> bool:
        return True

    def render(self, ctx: CommandContext, raw: str) -> str:
        if len(raw.encode("utf-8")) < self.limits["min_size_bytes"]:
            return raw
        return cleanup_whitespace(raw, self.limits["max_lines"])
