"""Acceptance checks for LLM-condensed output.

A candidate is rejected when it is empty, not materially shorter than its
input, contains refusal/fabrication/structural markers that the input does
not, or simply echoes the prompt's example. A rejected candidate is never
shown; the caller keeps the preprocessed text instead.
"""

from dataclasses import dataclass
from typing import List, Optional

from terse.prompts import CommandCategory, template_for

__all__ = [
    "ValidationResult",
    "ValidationGate",
    "clean_candidate",
    "looks_like_command",
    "REFUSAL_MARKERS",
    "FABRICATION_MARKERS",
    "STRUCTURAL_MARKERS",
]


REFUSAL_MARKERS = (
    "I apologize",
    "I'm sorry",
    "As an AI",
    "I cannot",
    "I can't fulfill",
    "I can't help",
    "I don't have access",
)

FABRICATION_MARKERS = (
    "this command will",
    "this will output",
    "this outputs",
    "the above command",
    "the following command",
    "you can use",
    "you can run",
    "to achieve this",
    "--rules=",
    "--remove-verbose",
)

# Prompt scaffolding that should never leak into an answer
STRUCTURAL_MARKERS = (
    "```",
    "## ",
    "<think>",
    "</think>",
    "Condensed output",
    "Raw output",
)

PREAMBLE_PREFIXES = (
    "here is the condensed",
    "here's the condensed",
    "here is the optimized",
    "here's the optimized",
    "here is the summarized",
    "here's the summarized",
    "here is the summary",
    "here's the summary",
    "here is the output",
    "here's the output",
    "here is a condensed",
    "here's a condensed",
    "here are the",
    "sure, here",
    "sure! here",
    "certainly!",
    "certainly,",
    "of course!",
    "of course,",
)

DEFAULT_MAX_RATIO = 0.9


@dataclass
class ValidationResult:
    """Outcome of a validation pass.

    Attributes:
        valid: Whether the candidate may be used.
        reason: Why it was rejected (None when valid).
    """

    valid: bool
    reason: Optional[str] = None

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(True)

    @classmethod
    def reject(cls, reason: str) -> "ValidationResult":
        return cls(False, reason)


def looks_like_command(line: str) -> bool:
    """Heuristic for shell command lines a model invented."""
    lower = line.strip().lower()
    if not lower:
        return False
    if lower.startswith(("$ ", "> ", "% ")):
        return True
    if "--pretty=format:" in lower:
        return True
    if lower.startswith("git ") and (" -" in lower or " | " in lower):
        return True
    return False


def _strip_preamble(lines: List[str]) -> List[str]:
    while lines:
        first = lines[0].strip().lower()
        if not first:
            lines.pop(0)
            continue
        if not first.startswith(PREAMBLE_PREFIXES):
            break
        lines.pop(0)
    return lines


def clean_candidate(text: str) -> str:
    """Remove chat preambles, wrapping code fences and invented command lines.

    Example:
        >>> clean_candidate("Here is the condensed output:\\n```\\nok\\n```")
        'ok'
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return ""

    lines = _strip_preamble(trimmed.splitlines())

    if len(lines) >= 2 and lines[0].strip().startswith("```") and lines[-1].strip() == "```":
        lines = lines[1:-1]

    kept = [line for line in lines if not looks_like_command(line)]
    return "\n".join(kept).strip()


def _normalize(text: str) -> str:
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line).lower()


def _marker_absent_from_input(candidate: str, source: str, markers, case_sensitive: bool):
    if case_sensitive:
        for marker in markers:
            if marker in candidate and marker not in source:
                return marker
        return None
    cand_lower, source_lower = candidate.lower(), source.lower()
    for marker in markers:
        m = marker.lower()
        if m in cand_lower and m not in source_lower:
            return marker
    return None


class ValidationGate:
    """Accept or reject a candidate condensation of some input text.

    Example:
        >>> gate = ValidationGate()
        >>> gate.validate("x" * 100, "", None).valid
        False
    """

    def __init__(self, max_ratio: float = DEFAULT_MAX_RATIO):
        """Initialize the gate.

        Args:
            max_ratio: Largest accepted candidate length as a fraction of the
                input length.
        """
        self.max_ratio = max_ratio

    def validate(
        self,
        input_text: str,
        candidate: Optional[str],
        category: Optional[CommandCategory] = None,
    ) -> ValidationResult:
        """Run every check; the first failure is reported.

        Args:
            input_text: Text the model was asked to condense.
            candidate: Model output (already cleaned).
            category: Prompt category, for the example-echo check.

        Returns:
            ValidationResult. Never raises.
        """
        try:
            return self._validate(input_text or "", candidate or "", category)
        except Exception as e:
            return ValidationResult.reject(f"validation error: {e}")

    def _validate(
        self, input_text: str, candidate: str, category: Optional[CommandCategory]
    ) -> ValidationResult:
        body = candidate.strip()
        if not body:
            return ValidationResult.reject("empty output")

        limit = len(input_text) * self.max_ratio
        if len(body) > limit:
            return ValidationResult.reject(
                f"output not shorter than input ({len(body)} chars vs limit {int(limit)})"
            )

        marker = _marker_absent_from_input(body, input_text, REFUSAL_MARKERS, False)
        if marker:
            return ValidationResult.reject(f"refusal marker: {marker!r}")

        marker = _marker_absent_from_input(body, input_text, FABRICATION_MARKERS, False)
        if marker:
            return ValidationResult.reject(f"fabrication marker: {marker!r}")

        marker = _marker_absent_from_input(body, input_text, STRUCTURAL_MARKERS, True)
        if marker:
            return ValidationResult.reject(f"structural marker not in input: {marker!r}")

        if category is not None:
            example = _normalize(template_for(category).example_after)
            normalized = _normalize(body)
            if normalized == example or (len(example) > 10 and example in normalized):
                if example not in _normalize(input_text):
                    return ValidationResult.reject("few-shot example echoed back")

        return ValidationResult.accept()
