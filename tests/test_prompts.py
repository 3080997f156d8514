"""Tests for prompt rendering."""

from __future__ import annotations

from pathlib import Path

import pytest

from junior.prompts import (
    PromptError,
    get_epic_prompt,
    get_generic_prompt,
    render_template,
)


class TestPrompts:
    """Tests for the packaged prompts."""

    def test_generic_prompt_names_progress_file(self):
        prompt = get_generic_prompt("notes/progress.md")

        assert "notes/progress.md" in prompt
        assert "{{" not in prompt
        assert "in_progress" in prompt

    def test_epic_prompt_names_epic(self):
        prompt = get_epic_prompt("bd-a1b2", "progress.txt")

        assert prompt.count("bd-a1b2") >= 2
        assert "progress.txt" in prompt
        assert "{{" not in prompt


class TestRenderTemplate:
    """Tests for render_template."""

    def test_custom_directory(self, tmp_path: Path):
        (tmp_path / "mine.md").write_text("Work on {{ epic_id }}.")

        assert render_template("mine.md", templates_dir=tmp_path, epic_id="bd-9") == "Work on bd-9."

    def test_missing_template(self, tmp_path: Path):
        with pytest.raises(PromptError, match="not found"):
            render_template("nope.md", templates_dir=tmp_path)

    def test_missing_variable(self, tmp_path: Path):
        (tmp_path / "mine.md").write_text("Write to {{ progress_file }}")

        with pytest.raises(PromptError, match="Missing value"):
            render_template("mine.md", templates_dir=tmp_path)
