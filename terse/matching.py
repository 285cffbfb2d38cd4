"""Command normalization for matching.

Reduces an arbitrarily wrapped shell command to the "core" command used for
optimizer selection and safety classification:
- Subshell parentheses: `(git status)` -> `git status`
- Shell wrappers: `bash -c 'git status'` -> `git status`
- Chains: `cd /repo && git status` -> `git status`
- Pipelines: `git log | head` -> `git log`
- Environment prefixes: `GIT_PAGER=cat git log` -> `git log`

All functions are pure. Quoting is honoured everywhere; when quoting is
unbalanced the whole command is used as-is rather than guessing.
"""

import re
from collections import namedtuple
from dataclasses import dataclass
from typing import List

__all__ = [
    "CommandContext",
    "MAX_UNWRAP_DEPTH",
    "extract_core_command",
    "is_output_piped",
    "contains_heredoc",
    "is_terse_invocation",
    "has_file_redirect",
    "split_command_segments",
    "program_name",
    "command_shape",
]


# Upper bound on unwrap passes; every pass strips at least one layer.
MAX_UNWRAP_DEPTH = 5

_SHELL_WRAPPER = re.compile(r"^(?:\S*[/\\])?(?:ba|z|da)?sh\s+-c\s+(.+)$", re.IGNORECASE | re.DOTALL)

_ENV_ASSIGNMENT = re.compile(r"""^[A-Za-z_][A-Za-z0-9_]*=(?:"[^"]*"|'[^']*'|[^\s"']+)*\s+""")

_TERSE_INVOCATION = re.compile(
    r"""(?:^|[\s"'/\\(;&|])terse(?:\.exe)?["']?\s+run(?:\s|$)""", re.IGNORECASE
)

# Wrappers that run the next word as the real program.
_PROGRAM_PREFIXES = {"sudo", "doas", "nohup", "time", "command", "exec", "env", "nice"}

_Scan = namedtuple("_Scan", ["unquoted", "top_level", "balanced"])


def _scan(text: str) -> _Scan:
    """Classify every character of a command line.

    Returns:
        _Scan where `unquoted[i]` is True for characters outside quotes
        (and not escaped), `top_level[i]` additionally requires paren depth
        zero, and `balanced` tells whether all quotes were closed.
    """
    unquoted: List[bool] = []
    top_level: List[bool] = []
    in_single = in_double = escaped = False
    depth = 0

    for ch in text:
        if escaped:
            escaped = False
            unquoted.append(False)
            top_level.append(False)
            continue
        if ch == "\\" and not in_single:
            escaped = True
            unquoted.append(False)
            top_level.append(False)
            continue
        if ch == "'" and not in_double:
            in_single = not in_single
            unquoted.append(False)
            top_level.append(False)
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            unquoted.append(False)
            top_level.append(False)
            continue

        is_unquoted = not in_single and not in_double
        if is_unquoted and ch == "(":
            depth += 1
            unquoted.append(True)
            top_level.append(False)
            continue
        if is_unquoted and ch == ")":
            depth = max(0, depth - 1)
            unquoted.append(True)
            top_level.append(False)
            continue

        unquoted.append(is_unquoted)
        top_level.append(is_unquoted and depth == 0)

    return _Scan(unquoted, top_level, not (in_single or in_double))


def _split_on(text: str, token: str, mask: List[bool]) -> List[str]:
    """Split text on every occurrence of token where mask is all True."""
    parts = []
    start = 0
    i = text.find(token)
    while i != -1:
        if all(mask[i:i + len(token)]):
            parts.append(text[start:i])
            start = i + len(token)
            i = text.find(token, start)
        else:
            i = text.find(token, i + 1)
    parts.append(text[start:])
    return parts


def _unwrap_subshell(command: str) -> str:
    if not (command.startswith("(") and command.endswith(")")):
        return command

    scan = _scan(command)
    depth = 0
    for i, ch in enumerate(command):
        if not scan.unquoted[i]:
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                # Outer paren must close at the very end, not `(a) && (b)`.
                if i == len(command) - 1:
                    return command[1:-1].strip()
                return command
    return command


def _unwrap_shell_wrapper(command: str) -> str:
    match = _SHELL_WRAPPER.match(command)
    if not match:
        return command

    inner = match.group(1).strip()
    if len(inner) >= 2 and inner[0] == inner[-1] and inner[0] in "'\"":
        inner = inner[1:-1]
    return inner.strip()


def _last_chain_segment(command: str) -> str:
    mask = _scan(command).top_level

    parts = _split_on(command, "&&", mask)
    if len(parts) > 1:
        return parts[-1].strip()

    parts = [p for p in _split_on(command, ";", mask) if p.strip()]
    if len(parts) > 1:
        return parts[-1].strip()

    return command


def _first_pipe_segment(command: str) -> str:
    mask = _scan(command).top_level

    for i, ch in enumerate(command):
        if ch != "|" or not mask[i]:
            continue
        prev_ch = command[i - 1] if i > 0 else ""
        next_ch = command[i + 1] if i + 1 < len(command) else ""
        if prev_ch == "|" or next_ch == "|":
            continue  # `||` is a conditional, not a pipe
        return command[:i].strip()

    return command


def _strip_env_assignments(command: str) -> str:
    rest = command
    while True:
        match = _ENV_ASSIGNMENT.match(rest)
        if not match:
            return rest
        remainder = rest[match.end():]
        if not remainder.strip():
            return command  # assignments only, nothing to run
        rest = remainder


def extract_core_command(command: str) -> str:
    """Reduce a wrapped shell command to its core command.

    Args:
        command: Raw command line as issued by the assistant.

    Returns:
        The core command. May be empty when the command is only a prefix
        (`cd /repo && `); callers wanting a non-empty value should use
        CommandContext.from_command.

    Example:
        >>> extract_core_command("cd /repo && GIT_PAGER=cat git log | head")
        'git log'
    """
    current = command.strip()
    if not current:
        return ""

    if not _scan(current).balanced:
        return current

    for _ in range(MAX_UNWRAP_DEPTH):
        previous = current
        current = _unwrap_subshell(current)
        current = _unwrap_shell_wrapper(current)
        current = _unwrap_subshell(current)
        if not _scan(current).balanced:
            return previous
        current = _last_chain_segment(current)
        current = _first_pipe_segment(current)
        current = _strip_env_assignments(current)
        if current == previous:
            break

    return current


def _has_or_chain(command: str) -> bool:
    mask = _scan(command).top_level
    return any(
        mask[i] and mask[i + 1] and command[i:i + 2] == "||" for i in range(len(command) - 1)
    )


def is_output_piped(command: str) -> bool:
    """Check whether the core command's output is not what the caller sees.

    True when the core feeds a later pipeline stage (`git log | grep x`) or
    is followed by `||` (`git status || true`). Follows the same unwrap
    steps as extract_core_command.

    Example:
        >>> is_output_piped("cd /repo && git log | grep fix || true")
        True
        >>> is_output_piped("cd /repo && git status")
        False
    """
    current = command.strip()
    if not current or not _scan(current).balanced:
        return False

    for _ in range(MAX_UNWRAP_DEPTH):
        previous = current
        current = _unwrap_subshell(current)
        current = _unwrap_shell_wrapper(current)
        current = _unwrap_subshell(current)
        if not _scan(current).balanced:
            return _has_or_chain(previous)
        current = _last_chain_segment(current)
        head = _first_pipe_segment(current)
        if head != current:
            return True
        current = _strip_env_assignments(current)
        if current == previous:
            break

    return _has_or_chain(current)


def contains_heredoc(command: str) -> bool:
    """Check for an unquoted heredoc or herestring marker (`<<`, `<<<`)."""
    mask = _scan(command).unquoted
    i = command.find("<<")
    while i != -1:
        if mask[i] and mask[i + 1]:
            return True
        i = command.find("<<", i + 1)
    return False


def is_terse_invocation(command: str) -> bool:
    """Detect a command that already re-invokes `terse run` (loop guard)."""
    return bool(_TERSE_INVOCATION.search(command))


def has_file_redirect(command: str) -> bool:
    """Check for an unquoted output redirection into a file.

    File-descriptor duplication (`2>&1`), process substitution (`>(...)`)
    and redirection into /dev/null do not count.

    Args:
        command: Original command line.

    Returns:
        True if the command writes output to a file.
    """
    mask = _scan(command).unquoted

    for i, ch in enumerate(command):
        if ch != ">" or not mask[i]:
            continue
        prev_ch = command[i - 1] if i > 0 else ""
        if prev_ch == ">":
            continue  # second char of `>>`, handled with the first

        end = i + 1
        if end < len(command) and command[end] == ">":
            end += 1
        next_ch = command[end] if end < len(command) else ""
        if next_ch in ("&", "("):
            continue

        target = command[end:].lstrip()
        if target.startswith("/dev/null"):
            continue
        return True

    return False


def split_command_segments(command: str) -> List[str]:
    """Split a command line into its simple commands.

    Splits on unquoted `&&`, `||`, `;`, `|` and `&` (but not on the `&` of
    redirections such as `2>&1`). Parentheses are stripped from segments.

    Returns:
        Non-empty segments in order.
    """
    mask = _scan(command).unquoted
    segments = []
    current = []

    for i, ch in enumerate(command):
        if mask[i] and ch in "&|;":
            prev_ch = command[i - 1] if i > 0 else ""
            next_ch = command[i + 1] if i + 1 < len(command) else ""
            if ch == "&" and (prev_ch in "<>" or next_ch == ">"):
                current.append(ch)
                continue
            segments.append("".join(current))
            current = []
            continue
        current.append(ch)
    segments.append("".join(current))

    cleaned = []
    for segment in segments:
        segment = segment.strip().strip("()").strip()
        if segment:
            cleaned.append(segment)
    return cleaned


def program_name(segment: str) -> str:
    """Return the normalized program name of a simple command.

    Leading environment assignments and wrappers such as `sudo` are skipped;
    quotes, directories and a `.exe` suffix are removed; the result is
    lowercased.

    Example:
        >>> program_name('sudo "/usr/bin/RM" -rf build')
        'rm'
    """
    rest = _strip_env_assignments(segment.strip())
    for word in rest.split():
        word = word.strip("'\"()")
        if not word or "=" in word and word.split("=", 1)[0].isidentifier():
            continue
        name = re.split(r"[/\\]", word)[-1].lower()
        if name.endswith(".exe"):
            name = name[:-4]
        if name in _PROGRAM_PREFIXES or name.startswith("-"):
            continue
        return name
    return ""


def command_shape(text: str) -> str:
    """Digit-insensitive form of a command, used as a cache key."""
    return re.sub(r"\d+", "#", text.strip())


@dataclass(frozen=True)
class CommandContext:
    """A command as issued plus its normalized core.

    Attributes:
        original: Literal invocation text (used for loop-guard and
            redirection checks).
        core: Normalized command used for all matching.
    """

    original: str
    core: str

    @classmethod
    def from_command(cls, command: str) -> "CommandContext":
        """Build a context, falling back to the stripped original as core."""
        core = extract_core_command(command) or command.strip()
        return cls(original=command, core=core)

    @property
    def is_self_invocation(self) -> bool:
        """Whether this is terse re-invoking itself (loop guard)."""
        return is_terse_invocation(self.original)

    @property
    def output_piped(self) -> bool:
        """Whether a later pipe stage or `||` stands between the core and the caller."""
        return is_output_piped(self.original)

    @property
    def program(self) -> str:
        """Normalized program name of the core command."""
        return program_name(self.core)

    @property
    def lower_core(self) -> str:
        return self.core.lower()
