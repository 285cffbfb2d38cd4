"""PreToolUse hook handler.

Reads the assistant's hook payload from stdin and answers on stdout:
- `{}` leaves the tool call untouched
- A `hookSpecificOutput` with `updatedInput` rewrites a Bash command to
  `<terse> run '<command>'`

Anything unexpected (other tools, bad JSON, internal errors) answers `{}`.
"""

import json
import logging
import os
import shlex
import shutil
import sys
from typing import Any, Callable, Dict, Optional

from terse import analytics
from terse.router import HookDecision, Router

__all__ = [
    "PASSTHROUGH_RESPONSE",
    "handle_request",
    "build_rewrite_command",
    "rewrite_response",
    "resolve_executable",
]

logger = logging.getLogger(__name__)

PASSTHROUGH_RESPONSE: Dict[str, Any] = {}

_LOGGED_COMMAND_CHARS = 200


def resolve_executable() -> str:
    """Path of the terse executable used in rewritten commands."""
    argv0 = sys.argv[0] if sys.argv and sys.argv[0] else ""
    if argv0 and os.path.basename(argv0).lower().startswith("terse"):
        return os.path.abspath(argv0)
    return shutil.which("terse") or "terse"


def build_rewrite_command(command: str, executable: Optional[str] = None) -> str:
    """Wrap a command so it runs through `terse run`.

    Example:
        >>> build_rewrite_command("git status", "/usr/local/bin/terse")
        "/usr/local/bin/terse run 'git status'"
    """
    exe = executable or resolve_executable()
    return f"{shlex.quote(exe)} run {shlex.quote(command)}"


def rewrite_response(rewritten: str, reason: str) -> Dict[str, Any]:
    return {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "allow",
            "permissionDecisionReason": reason,
            "updatedInput": {"command": rewritten},
        }
    }


def _summarize(command: str) -> str:
    flat = command.replace("\r", " ").replace("\n", " ")
    if len(flat) > _LOGGED_COMMAND_CHARS:
        return flat[:_LOGGED_COMMAND_CHARS] + "..."
    return flat


def _decide(payload: dict, router_factory: Callable[[], Router], executable: Optional[str]):
    tool_name = str(payload.get("tool_name") or "")
    tool_input = payload.get("tool_input")
    command = tool_input.get("command") if isinstance(tool_input, dict) else None

    if tool_name.lower() != "bash":
        analytics.log_hook_event(tool_name, "passthrough", None, "unsupported tool")
        return PASSTHROUGH_RESPONSE
    if not isinstance(command, str) or not command.strip():
        analytics.log_hook_event(tool_name, "passthrough", None, "no command")
        return PASSTHROUGH_RESPONSE

    decision: HookDecision = router_factory().decide_hook(command)
    logger.info("hook %s: %s", decision.describe(), _summarize(command))

    if not decision.rewrite:
        reason = decision.reason.display if decision.reason else "unknown"
        analytics.log_hook_event(tool_name, "passthrough", command, reason)
        return PASSTHROUGH_RESPONSE

    rewritten = build_rewrite_command(command, executable)
    analytics.log_hook_event(tool_name, "rewrite", command)
    return rewrite_response(
        rewritten, f"terse: optimizing output ({decision.expected_path.value} path)"
    )


def handle_request(
    raw: str,
    router_factory: Callable[[], Router],
    executable: Optional[str] = None,
) -> Dict[str, Any]:
    """Turn a raw hook payload into the hook response.

    Args:
        raw: JSON text read from stdin.
        router_factory: Builds the Router (only called for Bash commands).
        executable: terse executable for the rewrite (resolved when None).

    Returns:
        Response dict; `{}` for passthrough and on any error.
    """
    if not raw or not raw.strip():
        return PASSTHROUGH_RESPONSE
    try:
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            return PASSTHROUGH_RESPONSE
        return _decide(payload, router_factory, executable)
    except Exception as e:
        # The hook must never block the assistant's tool call
        logger.warning("hook error, passing through: %s", e)
        return PASSTHROUGH_RESPONSE
