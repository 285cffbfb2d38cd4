"""Tests for validation.py - acceptance checks for LLM output."""

import pytest

from terse.prompts import TEMPLATES, CommandCategory
from terse.validation import ValidationGate, ValidationResult, clean_candidate, looks_like_command

LONG_INPUT = "\n".join(f"2026-01-01 12:00:{i:02d} INFO worker {i} processed batch" for i in range(40))


class TestValidationGate:
    """Tests for ValidationGate.validate."""

    @pytest.fixture
    def gate(self):
        """Create a gate with the default ratio."""
        return ValidationGate()

    def test_accepts_good_candidate(self, gate):
        """Test a short faithful summary passes."""
        result = gate.validate(LONG_INPUT, "40 workers processed batches", CommandCategory.LOGS)
        assert result == ValidationResult.accept()

    @pytest.mark.parametrize("candidate", ["", "   \n", None])
    def test_rejects_empty(self, gate, candidate):
        """Test empty candidates are rejected."""
        result = gate.validate(LONG_INPUT, candidate)
        assert not result.valid
        assert result.reason == "empty output"

    def test_rejects_longer_candidate(self, gate):
        """Test candidates not materially shorter are rejected."""
        result = gate.validate("short input", "a much longer candidate text")
        assert not result.valid
        assert result.reason.startswith("output not shorter than input")

    def test_ratio_boundary(self):
        """Test the ratio limit is inclusive."""
        gate = ValidationGate(max_ratio=0.5)
        assert gate.validate("x" * 20, "y" * 10).valid
        assert not gate.validate("x" * 20, "y" * 11).valid

    def test_rejects_refusal(self, gate):
        """Test refusals are rejected."""
        result = gate.validate(LONG_INPUT, "I'm sorry, I cannot summarize this.")
        assert not result.valid
        assert "refusal" in result.reason

    def test_refusal_text_from_input_allowed(self, gate):
        """Test a marker already present in the input is fine."""
        text = LONG_INPUT + "\nERROR: I cannot open file config.yml"
        assert gate.validate(text, "ERROR: I cannot open file config.yml").valid

    def test_rejects_fabrication(self, gate):
        """Test explanations of the command are rejected."""
        result = gate.validate(LONG_INPUT, "This command will list the workers.")
        assert not result.valid
        assert "fabrication" in result.reason

    @pytest.mark.parametrize("candidate", ["```\nok\n```", "## Summary\nok", "<think>hmm</think> ok"])
    def test_rejects_structural_markers(self, gate, candidate):
        """Test prompt scaffolding leaking into the answer is rejected."""
        result = gate.validate(LONG_INPUT, candidate)
        assert not result.valid
        assert "structural" in result.reason

    def test_rejects_echoed_example(self, gate):
        """Test returning the few-shot example is rejected."""
        example = TEMPLATES[CommandCategory.VERSION_CONTROL].example_after
        result = gate.validate(LONG_INPUT, example, CommandCategory.VERSION_CONTROL)
        assert not result.valid
        assert result.reason == "few-shot example echoed back"

    def test_example_matching_input_allowed(self, gate):
        """Test the example may appear when the input really says it."""
        example = TEMPLATES[CommandCategory.VERSION_CONTROL].example_after
        text = LONG_INPUT + "\n" + example
        assert gate.validate(text, example, CommandCategory.VERSION_CONTROL).valid


class TestCleanCandidate:
    """Tests for clean_candidate."""

    def test_strips_preamble_and_fence(self):
        """Test chat preambles and wrapping fences are removed."""
        assert clean_candidate("Here is the condensed output:\n```\nok\n```") == "ok"

    def test_strips_invented_commands(self):
        """Test command lines the model made up are dropped."""
        text = "$ git status\nbranch: main\ngit log --oneline -n 5\nclean"
        assert clean_candidate(text) == "branch: main\nclean"

    def test_empty(self):
        """Test empty input."""
        assert clean_candidate("") == ""
        assert clean_candidate(None) == ""

    def test_looks_like_command(self):
        """Test the command-line heuristic."""
        assert looks_like_command("$ ls")
        assert looks_like_command("git log --pretty=format:%h")
        assert not looks_like_command("branch: main")
        assert not looks_like_command("")
