"""Category-aware prompts for the smart path.

Each prompt tells the model to condense command output for an AI coding
assistant and carries:
- A role preamble
- Category-specific rules
- A one-shot example (before / after)
- The command and its (preprocessed) output
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

__all__ = [
    "CommandCategory",
    "PromptTemplate",
    "TEMPLATES",
    "PROMPT_MAX_CHARS",
    "classify_command",
    "template_for",
    "build_prompt",
    "build_messages",
    "truncate_for_prompt",
]


PROMPT_MAX_CHARS = 6000

_PREAMBLE = "You are a concise output condenser for an AI coding assistant. "


class CommandCategory(Enum):
    """Broad command families used to pick a prompt template."""

    VERSION_CONTROL = "version_control"
    FILE_OPERATIONS = "file_operations"
    BUILD_TEST = "build_test"
    CONTAINER_TOOLS = "container_tools"
    LOGS = "logs"
    GENERIC = "generic"


@dataclass(frozen=True)
class PromptTemplate:
    """Prompt pieces for one category.

    Attributes:
        preamble: Role and task statement.
        rules: Bullet list of what to keep and remove.
        example_before: Sample raw output.
        example_after: Condensed rendition of the sample.
    """

    preamble: str
    rules: str
    example_before: str
    example_after: str


TEMPLATES: Dict[CommandCategory, PromptTemplate] = {
    CommandCategory.VERSION_CONTROL: PromptTemplate(
        preamble=_PREAMBLE + "Condense the following version-control command output.",
        rules=(
            "- Keep: branch name, changed files, conflict markers, ahead/behind status, commit hashes.\n"
            "- Remove: verbose status messages, decorative lines, repeated blank lines.\n"
            "- Preserve error messages exactly.\n"
            "- Output must be shorter than the input."
        ),
        example_before=(
            "On branch main\n"
            "Your branch is ahead of 'origin/main' by 2 commits.\n"
            '  (use "git push" to publish your local commits)\n'
            "\n"
            "Changes not staged for commit:\n"
            '  (use "git add <file>..." to update what will be committed)\n'
            '  (use "git restore <file>..." to discard changes in working directory)\n'
            "        modified:   src/main.rs"
        ),
        example_after="branch: main (ahead 2)\nmodified: src/main.rs",
    ),
    CommandCategory.FILE_OPERATIONS: PromptTemplate(
        preamble=_PREAMBLE + "Condense the following file-operation command output.",
        rules=(
            "- Keep: file/directory paths, sizes, important metadata.\n"
            "- Remove: permissions, owner, group, timestamps unless specifically relevant.\n"
            "- Group items logically when possible.\n"
            "- Output must be shorter than the input."
        ),
        example_before=(
            "total 48\n"
            "drwxr-xr-x  5 user staff  160 Jan 10 14:23 src\n"
            "-rw-r--r--  1 user staff  842 Jan 10 14:20 Cargo.toml\n"
            "-rw-r--r--  1 user staff 1205 Jan 10 14:23 README.md"
        ),
        example_after="src/ (dir)\nCargo.toml (842B)\nREADME.md (1205B)",
    ),
    CommandCategory.BUILD_TEST: PromptTemplate(
        preamble=_PREAMBLE + "Condense the following build/test command output.",
        rules=(
            "- Keep: errors, warnings, test failures with file/line info, final summary.\n"
            "- Remove: passing-test output, progress indicators, download logs, "
            "compilation of individual crates.\n"
            "- Preserve the exact text of error/warning messages.\n"
            "- Output must be shorter than the input."
        ),
        example_before=(
            "   Compiling serde v1.0.195\n"
            "   Compiling serde_json v1.0.111\n"
            "   Compiling myapp v0.1.0\n"
            "error[E0308]: mismatched types\n"
            " --> src/main.rs:42:5\n"
            "  |\n"
            '42 |     "hello"\n'
            "  |     ^^^^^^^ expected `i32`, found `&str`\n"
            "\n"
            "error: aborting due to 1 previous error"
        ),
        example_after=(
            "error[E0308]: mismatched types\n"
            "  --> src/main.rs:42:5 - expected `i32`, found `&str`\n"
            "1 error"
        ),
    ),
    CommandCategory.CONTAINER_TOOLS: PromptTemplate(
        preamble=_PREAMBLE + "Condense the following container/orchestration command output.",
        rules=(
            "- Keep: container names, images, status, ports, error messages.\n"
            "- Remove: full container IDs (truncate to 12 chars), verbose labels, "
            "creation timestamps.\n"
            "- Format as a compact table or list.\n"
            "- Output must be shorter than the input."
        ),
        example_before=(
            "CONTAINER ID   IMAGE          COMMAND       CREATED        STATUS        "
            "PORTS                    NAMES\n"
            'a1b2c3d4e5f6   nginx:latest   "nginx -g..."   2 hours ago    Up 2 hours    '
            "0.0.0.0:80->80/tcp       web\n"
            'f6e5d4c3b2a1   redis:7        "redis-se..."   3 hours ago    Up 3 hours    '
            "0.0.0.0:6379->6379/tcp   cache"
        ),
        example_after="web    nginx:latest  Up 2h  :80->80\ncache  redis:7       Up 3h  :6379->6379",
    ),
    CommandCategory.LOGS: PromptTemplate(
        preamble=_PREAMBLE + "Condense the following log output.",
        rules=(
            "- Keep: errors, warnings, unique messages, first/last occurrence of repeated patterns.\n"
            "- Remove: debug-level noise, duplicate lines, heartbeat/health-check entries.\n"
            '- Summarize repeated patterns with counts (e.g., "request handled (×42)").\n'
            "- Output must be shorter than the input."
        ),
        example_before=(
            "2024-01-10 14:00:01 INFO  Server started on :8080\n"
            "2024-01-10 14:00:02 DEBUG Request handled: GET /health\n"
            "2024-01-10 14:00:03 DEBUG Request handled: GET /health\n"
            "2024-01-10 14:00:04 DEBUG Request handled: GET /health\n"
            "2024-01-10 14:00:05 ERROR Connection refused: database at localhost:5432\n"
            "2024-01-10 14:00:06 WARN  Retrying database connection (attempt 2)"
        ),
        example_after=(
            "INFO  Server started on :8080\n"
            "DEBUG Request handled: GET /health (×3)\n"
            "ERROR Connection refused: database at localhost:5432\n"
            "WARN  Retrying database connection (attempt 2)"
        ),
    ),
    CommandCategory.GENERIC: PromptTemplate(
        preamble=(
            _PREAMBLE
            + "Condense the following command output, preserving all critical information."
        ),
        rules=(
            "- Keep: errors, warnings, key data, file paths, status indicators.\n"
            "- Remove: decorative lines, repeated blank lines, verbose progress output.\n"
            "- Preserve the semantic meaning of the output.\n"
            "- Output must be shorter than the input."
        ),
        example_before=(
            "==============================================\n"
            "  Processing complete!\n"
            "==============================================\n"
            "\n"
            "Results:\n"
            "  Files processed: 42\n"
            "  Errors: 1\n"
            "  Error in file.txt: line 10 - invalid syntax\n"
            "\n"
            "Done."
        ),
        example_after="42 files processed, 1 error\n  file.txt:10 - invalid syntax",
    ),
}

_LOG_PREFIXES = ("journalctl", "dmesg", "tail -f")

_FILE_PREFIXES = (
    "ls",
    "dir",
    "find ",
    "cat ",
    "type ",
    "head ",
    "tail ",
    "wc ",
    "tree",
    "du ",
    "df ",
    "file ",
    "stat ",
)

_BUILD_PREFIXES = (
    "cargo ",
    "npm ",
    "npx ",
    "yarn ",
    "pnpm ",
    "dotnet ",
    "make",
    "cmake ",
    "gradle ",
    "mvn ",
    "go ",
    "pytest",
    "python -m pytest",
    "msbuild",
)

_CONTAINER_PREFIXES = ("docker ", "podman ", "kubectl ", "helm ")


def classify_command(command: str) -> CommandCategory:
    """Pick a category by prefix of the (core) command.

    Log commands are checked before file commands so `tail -f` counts as a
    log. Anything mentioning "log" that matched nothing else is a log too.

    Example:
        >>> classify_command("tail -f /var/log/syslog")
        <CommandCategory.LOGS: 'logs'>
    """
    lower = command.strip().lower()

    if lower.startswith(("git ", "svn ", "hg ")):
        return CommandCategory.VERSION_CONTROL
    if lower.startswith(_LOG_PREFIXES):
        return CommandCategory.LOGS
    if lower.startswith(_FILE_PREFIXES):
        return CommandCategory.FILE_OPERATIONS
    if lower.startswith(_BUILD_PREFIXES):
        return CommandCategory.BUILD_TEST
    if lower.startswith(_CONTAINER_PREFIXES):
        return CommandCategory.CONTAINER_TOOLS
    if "log" in lower:
        return CommandCategory.LOGS
    return CommandCategory.GENERIC


def template_for(category: CommandCategory) -> PromptTemplate:
    return TEMPLATES[category]


def truncate_for_prompt(text: str, max_chars: int = PROMPT_MAX_CHARS) -> str:
    """Cap text at max_chars and note how much was cut."""
    if len(text) <= max_chars:
        return text
    remaining = len(text) - max_chars
    return f"{text[:max_chars]}\n[... {remaining} more characters truncated]"


def _system_prompt(template: PromptTemplate) -> str:
    return (
        f"{template.preamble}\n\n"
        f"## Rules\n{template.rules}\n\n"
        f"## Example\nBefore:\n```\n{template.example_before}\n```\n"
        f"After:\n```\n{template.example_after}\n```"
    )


def _user_prompt(command: str, text: str) -> str:
    return (
        f"## Command\n`{command}`\n\n"
        f"## Raw output\n```\n{truncate_for_prompt(text)}\n```\n\n"
        "## Condensed output\n"
    )


def build_prompt(command: str, text: str) -> str:
    """Assemble a single-string prompt (rules, example, command, output)."""
    template = template_for(classify_command(command))
    return f"{_system_prompt(template)}\n\n{_user_prompt(command, text)}"


def build_messages(command: str, text: str) -> List[Dict[str, str]]:
    """Build chat messages: the template as system, the output as user.

    Args:
        command: Core command text (used for the category and shown to the model).
        text: Output to condense.

    Returns:
        List of `{"role", "content"}` dicts for the chat endpoint.
    """
    template = template_for(classify_command(command))
    return [
        {"role": "system", "content": _system_prompt(template)},
        {"role": "user", "content": _user_prompt(command, text)},
    ]
