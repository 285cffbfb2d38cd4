"""Tests for prompts.py - smart path prompt construction."""

import pytest

from terse.prompts import (
    PROMPT_MAX_CHARS,
    TEMPLATES,
    CommandCategory,
    build_messages,
    build_prompt,
    classify_command,
    template_for,
    truncate_for_prompt,
)


class TestClassifyCommand:
    """Tests for command categorization."""

    @pytest.mark.parametrize(
        "command,expected",
        [
            ("git status", CommandCategory.VERSION_CONTROL),
            ("hg log", CommandCategory.VERSION_CONTROL),
            ("tail -f /var/log/syslog", CommandCategory.LOGS),
            ("journalctl -u nginx", CommandCategory.LOGS),
            ("tail -n 20 notes.txt", CommandCategory.FILE_OPERATIONS),
            ("ls -la", CommandCategory.FILE_OPERATIONS),
            ("cargo test", CommandCategory.BUILD_TEST),
            ("pytest -q", CommandCategory.BUILD_TEST),
            ("docker ps", CommandCategory.CONTAINER_TOOLS),
            ("kubectl get pods", CommandCategory.CONTAINER_TOOLS),
            ("show-logs --since 1h", CommandCategory.LOGS),
            ("echo hello", CommandCategory.GENERIC),
        ],
    )
    def test_categories(self, command, expected):
        """Test prefix-based categorization."""
        assert classify_command(command) == expected

    def test_every_category_has_a_template(self):
        """Test each category maps to a complete template."""
        for category in CommandCategory:
            template = template_for(category)
            assert template.preamble
            assert template.rules
            assert template.example_before
            assert template.example_after
        assert set(TEMPLATES) == set(CommandCategory)


class TestTruncateForPrompt:
    """Tests for prompt-size capping."""

    def test_short_text(self):
        """Test text under the cap is unchanged."""
        assert truncate_for_prompt("hello") == "hello"

    def test_long_text(self):
        """Test long text is cut with a note."""
        text = "x" * (PROMPT_MAX_CHARS + 10)
        result = truncate_for_prompt(text)
        assert result.startswith("x" * PROMPT_MAX_CHARS)
        assert result.endswith("\n[... 10 more characters truncated]")


class TestBuildMessages:
    """Tests for message assembly."""

    def test_messages(self):
        """Test system and user messages."""
        messages = build_messages("git status", "On branch main")
        assert [m["role"] for m in messages] == ["system", "user"]

        system = messages[0]["content"]
        assert system.startswith(TEMPLATES[CommandCategory.VERSION_CONTROL].preamble)
        assert "## Rules" in system
        assert "branch: main (ahead 2)" in system

        user = messages[1]["content"]
        assert "## Command\n`git status`" in user
        assert "## Raw output\n```\nOn branch main\n```" in user
        assert user.endswith("## Condensed output\n")

    def test_output_is_truncated(self):
        """Test huge outputs are capped inside the prompt."""
        messages = build_messages("echo", "y" * 10000)
        assert "more characters truncated" in messages[1]["content"]

    def test_single_prompt(self):
        """Test the single-string prompt carries both parts."""
        prompt = build_prompt("docker ps", "CONTAINER ID")
        assert "container" in prompt.lower()
        assert "## Example" in prompt
        assert prompt.endswith("## Condensed output\n")
