"""Shell command execution.

Runs a command line through the platform shell and captures its output:
- stdout and stderr captured separately
- Exit status preserved so callers can mirror it
- Optional timeout (exit code 124 on expiry, like coreutils `timeout`)
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

__all__ = ["ProcessOutput", "run_shell_command", "TIMEOUT_EXIT_CODE"]

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124


@dataclass
class ProcessOutput:
    """Captured result of a shell command.

    Attributes:
        stdout: Captured standard output.
        stderr: Captured standard error.
        exit_code: Process exit status.
        timed_out: Whether the command was killed by the timeout.
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def combined(self) -> str:
        """stdout followed by trimmed stderr, the text optimizers work on."""
        combined = self.stdout
        stderr = self.stderr.rstrip()
        if stderr.strip():
            if combined and not combined.endswith("\n"):
                combined += "\n"
            combined += stderr
        return combined


def _to_text(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def run_shell_command(
    command: str,
    timeout: Optional[float] = None,
    cwd: Optional[str] = None,
) -> ProcessOutput:
    """Run a command line through the shell.

    Args:
        command: Full command line, interpreted by the shell.
        timeout: Seconds before the command is killed (None = no limit).
        cwd: Working directory (defaults to the current one).

    Returns:
        ProcessOutput with captured streams and exit status.

    Raises:
        OSError: If the shell itself cannot be started.
    """
    logger.debug("executing: %s", command)
    try:
        completed = subprocess.run(
            command,
            shell=True,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            cwd=cwd,
        )
    except subprocess.TimeoutExpired as e:
        logger.warning("command timed out after %ss: %s", timeout, command)
        return ProcessOutput(
            stdout=_to_text(e.stdout),
            stderr=_to_text(e.stderr),
            exit_code=TIMEOUT_EXIT_CODE,
            timed_out=True,
        )

    return ProcessOutput(
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        exit_code=completed.returncode,
    )
