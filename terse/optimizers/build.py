"""Build, test and lint output optimizer.

Keeps failures, errors and summaries; collapses compile steps and passing
tests into counts.
"""

import re
from typing import List, Optional

from terse.matching import CommandContext
from terse.optimizers.base import Optimizer

__all__ = [
    "BuildOptimizer",
    "classify_build_command",
    "compact_test_output",
    "compact_build_output",
    "compact_lint_output",
]


TEST_PREFIXES = (
    "cargo test",
    "npm test",
    "npm run test",
    "npx jest",
    "npx vitest",
    "dotnet test",
    "pytest",
    "python -m pytest",
    "python3 -m pytest",
    "go test",
    "mvn test",
    "gradle test",
    "make test",
    "nmake test",
)

BUILD_PREFIXES = (
    "cargo build",
    "cargo install",
    "npm install",
    "npm ci",
    "npm run build",
    "npx tsc",
    "yarn install",
    "yarn build",
    "pnpm install",
    "pnpm build",
    "dotnet build",
    "dotnet restore",
    "dotnet publish",
    "go build",
    "mvn compile",
    "mvn package",
    "gradle build",
    "make",
    "cmake",
    "msbuild",
    "nmake",
    "nuget restore",
    "pip install",
    "pip3 install",
    "python -m pip",
    "python3 -m pip",
)

LINT_PREFIXES = (
    "cargo clippy",
    "cargo fmt",
    "npx eslint",
    "npm run lint",
    "dotnet format",
    "pylint",
    "flake8",
    "ruff check",
    "golint",
    "go vet",
)

COMPILE_NOISE_PREFIXES = (
    "compiling ",
    "downloading ",
    "downloaded ",
    "fresh ",
    "installing ",
    "resolving ",
    "updating ",
)

BUILD_NOISE_PREFIXES = COMPILE_NOISE_PREFIXES + (
    "added ",
    "removed ",
    "changed ",
    "packages ",
    "npm warn",
    "up to date",
    "audited ",
    "found 0 ",
    "restore complete",
    "determining projects",
    "restored ",
)

BUILD_SUCCESS_PREFIXES = ("finished", "build succeeded", "build success", "successfully ")

# `make: *** [all] Error 2`, `make[1]: *** No rule to make target`
_MAKE_FAILURE = re.compile(r"^g?make(?:\[\d+\])?: \*\*\* |\berror \d+\b", re.IGNORECASE)


def classify_build_command(core: str) -> Optional[str]:
    """Return "test", "build" or "lint" for a recognized command.

    Example:
        >>> classify_build_command("cargo test --lib")
        'test'
    """
    lower = core.lower()
    if lower.startswith(TEST_PREFIXES):
        return "test"
    if lower.startswith(BUILD_PREFIXES):
        return "build"
    if lower.startswith(LINT_PREFIXES):
        return "lint"
    return None


def is_test_summary_line(line: str) -> bool:
    lower = line.lower()
    if lower.startswith(
        (
            "test result:",
            "test suites:",
            "tests:",
            "time:",
            "passed!",
            "failed!",
            "total tests:",
            "ok  \t",
            "fail\t",
            "build success",
            "build failure",
            "tests run:",
        )
    ):
        return True
    if "passed" in lower and ("failed" in lower or "error" in lower or "warning" in lower):
        if lower.startswith("=") or " in " in lower:
            return True
    return "passed" in lower and "failed" in lower and len(lower) < 100


def is_failure_line(line: str) -> bool:
    lower = line.lower()
    if "... failed" in lower or "...failed" in lower:
        return True
    if lower.startswith(("✕", "×", "--- fail:")):
        return True
    if lower.startswith("fail") and not lower.startswith("fail\t"):
        return True
    if "failed" in lower and (lower.startswith(("failed ", "f ")) or "::" in lower):
        return True
    if "assertion" in lower and ("failed" in lower or "error" in lower):
        return True
    return lower.startswith("thread '") and "panicked" in lower


def is_error_line(line: str) -> bool:
    lower = line.lower()
    return (
        lower.startswith(("error", "e ", "fatal:"))
        or "error:" in lower
        or "error[" in lower
        or _MAKE_FAILURE.search(line) is not None
    )


def is_warning_line(line: str) -> bool:
    lower = line.lower()
    return lower.startswith(("warning", "warn ")) or "warning:" in lower or "warning[" in lower


def is_pass_line(line: str) -> bool:
    lower = line.lower()
    if "... ok" in lower or "...ok" in lower:
        return True
    if lower.startswith(("✓", "✔", "--- pass:")):
        return True
    if lower.startswith("pass") and not lower.startswith("passed"):
        return True
    return lower.endswith("passed")


def _capped(lines: List[str], limit: int, label: str) -> List[str]:
    if len(lines) <= limit:
        return list(lines)
    return lines[:limit] + [f"...+{len(lines) - limit} more {label}"]


def _head_only(text: str, max_lines: int) -> str:
    lines = text.splitlines()
    if len(lines) <= max_lines:
        return text
    return "\n".join(lines[:max_lines]) + (
        f"\n...({len(lines) - max_lines} lines omitted, {len(lines)} total)"
    )


def compact_test_output(raw: str, max_failures: int, max_errors: int, max_warnings: int) -> str:
    """Keep failures, errors, warnings and summaries of a test run."""
    trimmed = raw.strip()
    if not trimmed:
        return "No test output"

    failures, errors, warnings, summary = [], [], [], []
    passed = compiling = 0
    in_failure_block = False

    for raw_line in trimmed.splitlines():
        line = raw_line.strip()
        lower = line.lower()

        if lower.startswith(COMPILE_NOISE_PREFIXES):
            compiling += 1
            continue
        if is_test_summary_line(line):
            summary.append(line)
            in_failure_block = False
            continue
        if is_failure_line(line):
            failures.append(line)
            in_failure_block = True
            continue
        if is_error_line(line):
            errors.append(line)
            in_failure_block = True
            continue
        if is_warning_line(line):
            warnings.append(line)
            continue
        if in_failure_block and line and not is_pass_line(line):
            failures.append(line)
            continue
        in_failure_block = False
        if is_pass_line(line):
            passed += 1

    result = []
    if compiling:
        result.append(f"[{compiling} compilation steps]")
    if failures:
        result.append("FAILURES:")
        result.extend(_capped(failures, max_failures, "failure lines"))
    if errors:
        result.append("ERRORS:")
        result.extend(_capped(errors, max_errors, "error lines"))
    result.extend(_capped(warnings, max_warnings, "warnings"))
    if passed:
        result.append(f"[{passed} tests passed]")
    result.extend(summary)

    if not result:
        return _head_only(trimmed, 50)
    return "\n".join(result)


def compact_build_output(raw: str, max_errors: int, max_warnings: int) -> str:
    """Reduce build output to errors, warnings and the outcome."""
    trimmed = raw.strip()
    if not trimmed:
        return "Build completed (no output)"

    errors, warnings, summary = [], [], []
    noise = 0
    in_error_block = False

    for raw_line in trimmed.splitlines():
        line = raw_line.strip()
        lower = line.lower()

        if lower.startswith(BUILD_NOISE_PREFIXES):
            noise += 1
            continue
        if lower.startswith(BUILD_SUCCESS_PREFIXES) or "compiled successfully" in lower:
            summary.append(line)
            in_error_block = False
            continue
        if is_error_line(line):
            errors.append(line)
            in_error_block = True
            continue
        if in_error_block:
            if line:
                errors.append(line)
            else:
                in_error_block = False
            continue
        if is_warning_line(line):
            warnings.append(line)

    result = []
    if noise:
        result.append(f"[{noise} build steps]")
    if errors:
        result.append("ERRORS:")
        result.extend(_capped(errors, max_errors, "error lines"))
    result.extend(_capped(warnings, max_warnings, "warnings"))
    result.extend(summary)

    if not result:
        lower = trimmed.lower()
        if "error" in lower or "failed" in lower or "fatal" in lower:
            return _head_only(trimmed, 40)
        return "Build succeeded"
    return "\n".join(result)


def compact_lint_output(raw: str, max_issue_lines: int) -> str:
    """Keep lint issues and their context lines."""
    trimmed = raw.strip()
    if not trimmed:
        return "No lint issues found"

    issues, summary = [], []
    in_issue_block = False

    for raw_line in trimmed.splitlines():
        line = raw_line.strip()
        lower = line.lower()

        if lower.startswith(("checking ", "compiling ", "finished")):
            continue
        if (
            (lower.startswith("warning:") and "generated" in lower)
            or lower.startswith("error: could not compile")
            or "problems found" in lower
            or "errors and" in lower
            or "0 errors" in lower
        ):
            summary.append(line)
            in_issue_block = False
            continue
        if is_error_line(line) or is_warning_line(line):
            issues.append(line)
            in_issue_block = True
            continue
        if in_issue_block:
            if line:
                issues.append(line)
            else:
                in_issue_block = False

    result = _capped(issues, max_issue_lines, "issue lines") + summary
    if not result:
        lower = trimmed.lower()
        if "error" in lower or "warning" in lower:
            return _head_only(trimmed, 40)
        return "No lint issues found"
    return "\n".join(result)


class BuildOptimizer(Optimizer):
    """Compact test, build and lint output."""

    name = "build"

    DEFAULT_LIMITS = {
        "test_max_failure_lines": 80,
        "test_max_error_lines": 40,
        "test_max_warnings": 10,
        "build_max_error_lines": 60,
        "build_max_warnings": 10,
        "lint_max_issue_lines": 80,
    }

    def can_handle(self, ctx: CommandContext) -> bool:
        return classify_build_command(ctx.core) is not None

    def render(self, ctx: CommandContext, raw: str) -> str:
        kind = classify_build_command(ctx.core) or "build"
        limits = self.limits

        if kind == "test":
            return compact_test_output(
                raw,
                limits["test_max_failure_lines"],
                limits["test_max_error_lines"],
                limits["test_max_warnings"],
            )
        if kind == "lint":
            return compact_lint_output(raw, limits["lint_max_issue_lines"])
        return compact_build_output(
            raw, limits["build_max_error_lines"], limits["build_max_warnings"]
        )
