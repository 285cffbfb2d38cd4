"""Pre-execution safety classification.

Decides, before a command runs, whether it may be optimized at all:
- Loop guard (terse re-invoking itself)
- Destructive, editor and interactive programs (deny-list)
- Output redirection into files and heredocs

Classification never runs the command and never looks at its output.
"""

import fnmatch
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Set

from terse.matching import (
    CommandContext,
    contains_heredoc,
    has_file_redirect,
    program_name,
    split_command_segments,
)

__all__ = [
    "NeverOptimizeReason",
    "CommandClassification",
    "SafetyClassifier",
]


class NeverOptimizeReason(Enum):
    """Why a command is excluded from optimization."""

    LOOP_GUARD = "loop_guard"
    DENY_LIST = "deny_list"
    REDIRECT = "redirect"
    HEREDOC = "heredoc"


@dataclass(frozen=True)
class CommandClassification:
    """Outcome of safety classification.

    Attributes:
        optimizable: Whether the command may be optimized.
        reason: Why not, when optimizable is False.
    """

    optimizable: bool
    reason: Optional[NeverOptimizeReason] = None

    @classmethod
    def allowed(cls) -> "CommandClassification":
        return cls(optimizable=True)

    @classmethod
    def never(cls, reason: NeverOptimizeReason) -> "CommandClassification":
        return cls(optimizable=False, reason=reason)


class SafetyClassifier:
    """Classify commands as optimizable or never-optimize.

    Example:
        >>> classifier = SafetyClassifier()
        >>> classifier.classify(CommandContext.from_command("rm -rf build")).optimizable
        False
        >>> classifier.classify(CommandContext.from_command("git status")).optimizable
        True
    """

    # Programs whose output must reach the assistant untouched
    BUILTIN_DENY_LIST: Set[str] = {
        # Destructive file operations
        "rm",
        "rmdir",
        "mv",
        "del",
        "erase",
        "rd",
        "ren",
        "move",
        "copy",
        "xcopy",
        "robocopy",
        "dd",
        "shred",
        "truncate",
        # PowerShell
        "remove-item",
        "move-item",
        "rename-item",
        "ri",
        "mi",
        "set-content",
        "out-file",
        "add-content",
        # Editors
        "vim",
        "vi",
        "nano",
        "emacs",
        "code",
        "subl",
        "notepad",
        "notepad++",
        # Interactive / pagers
        "less",
        "more",
        "top",
        "htop",
        "watch",
        "ssh",
    }

    def __init__(self, extra_deny: Iterable[str] = ()):
        """Initialize the classifier.

        Args:
            extra_deny: Additional program names or fnmatch patterns
                (from `passthrough.commands`).
        """
        self.extra_patterns: Set[str] = set()
        self.deny_list: Set[str] = set(self.BUILTIN_DENY_LIST)
        for entry in extra_deny:
            entry = entry.strip().lower()
            if not entry:
                continue
            if any(ch in entry for ch in "*?["):
                self.extra_patterns.add(entry)
            else:
                self.deny_list.add(entry)

    def is_denied(self, program: str) -> bool:
        """Check a normalized program name against the deny-list."""
        if not program:
            return False
        if program in self.deny_list:
            return True
        return any(fnmatch.fnmatch(program, pattern) for pattern in self.extra_patterns)

    def classify(self, ctx: CommandContext) -> CommandClassification:
        """Classify a command, first matching rule wins.

        Args:
            ctx: Normalized command context.

        Returns:
            CommandClassification for the command.
        """
        if ctx.is_self_invocation:
            return CommandClassification.never(NeverOptimizeReason.LOOP_GUARD)

        if self.is_denied(ctx.program):
            return CommandClassification.never(NeverOptimizeReason.DENY_LIST)
        # Any segment of a chain counts: `rm -rf x && git status`.
        for segment in split_command_segments(ctx.original):
            if self.is_denied(program_name(segment)):
                return CommandClassification.never(NeverOptimizeReason.DENY_LIST)

        if has_file_redirect(ctx.original):
            return CommandClassification.never(NeverOptimizeReason.REDIRECT)
        if contains_heredoc(ctx.original):
            return CommandClassification.never(NeverOptimizeReason.HEREDOC)

        return CommandClassification.allowed()
