"""Optimizer protocol and shared helpers.

An optimizer turns the raw output of a command it recognizes into a compact
rendition. It may also propose a substitute command whose output is already
more compact (e.g. `git status --porcelain -b`).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from terse.matching import CommandContext
from terse.tokens import estimate_tokens

__all__ = [
    "OptimizerError",
    "OptimizedOutput",
    "Optimizer",
    "has_flag",
    "first_nonblank_line",
    "non_empty_lines",
]


class OptimizerError(Exception):
    """Raised when an optimizer cannot produce output for a command."""


@dataclass
class OptimizedOutput:
    """Output of a successful optimization.

    Attributes:
        output: Compact rendition of the command output.
        optimized_tokens: Estimated tokens of `output`.
        optimizer_used: Name of the optimizer that produced it.
    """

    output: str
    optimized_tokens: int
    optimizer_used: str


class Optimizer(ABC):
    """Base class for rule-based optimizers.

    Subclasses set `name` and `DEFAULT_LIMITS`, implement `can_handle` and
    `render`, and may override `substitute`.
    """

    name: str = "base"
    is_fallback: bool = False

    DEFAULT_LIMITS: Dict[str, Any] = {}

    def __init__(self, limits: Optional[Dict[str, Any]] = None):
        """Initialize with optional limit overrides.

        Args:
            limits: Values overriding DEFAULT_LIMITS (unknown keys ignored).
        """
        self.limits = dict(self.DEFAULT_LIMITS)
        for key, value in (limits or {}).items():
            if key in self.limits:
                self.limits[key] = value

    @abstractmethod
    def can_handle(self, ctx: CommandContext) -> bool:
        """Whether this optimizer recognizes the core command."""

    def substitute(self, ctx: CommandContext) -> Optional[str]:
        """Return a replacement command line, or None to keep the original."""
        return None

    @abstractmethod
    def render(self, ctx: CommandContext, raw: str) -> str:
        """Produce the compact text for a command's raw output."""

    def optimize(self, ctx: CommandContext, raw: str) -> OptimizedOutput:
        """Optimize raw output.

        Args:
            ctx: Command context.
            raw: Output of the command (or of its substitute).

        Returns:
            OptimizedOutput.

        Raises:
            OptimizerError: On any failure to render.
        """
        try:
            text = self.render(ctx, raw)
        except OptimizerError:
            raise
        except Exception as e:
            raise OptimizerError(f"{self.name} optimizer failed: {e}") from e

        return OptimizedOutput(
            output=text,
            optimized_tokens=estimate_tokens(text),
            optimizer_used=self.name,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def has_flag(text: str, flags: Iterable[str]) -> bool:
    """Check whether any word equals one of the flags (or `--flag=value`).

    Example:
        >>> has_flag("git log --format=%h", ["--format"])
        True
    """
    flags = list(flags)
    for word in text.split():
        for flag in flags:
            if word == flag or (flag.startswith("--") and word.startswith(flag + "=")):
                return True
    return False


def first_nonblank_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return text.strip()


def non_empty_lines(text: str) -> List[str]:
    return [line for line in text.splitlines() if line.strip()]
