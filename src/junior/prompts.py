"""Agent prompt rendering.

Prompts live as Jinja2 Markdown templates in the package's ``templates``
directory:
- ``beads-ready.md``: work on the next ready task
- ``beads-epic.md``: work only on tasks of one epic
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from jinja2 import StrictUndefined, Template, UndefinedError

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"

GENERIC_TEMPLATE = "beads-ready.md"
EPIC_TEMPLATE = "beads-epic.md"


class PromptError(Exception):
    """Exception raised when a prompt template cannot be rendered."""
    pass


def render_template(name: str, templates_dir: Optional[Path] = None, **variables: str) -> str:
    """Render a prompt template.

    Args:
        name: Template file name.
        templates_dir: Directory to load from. Defaults to the packaged templates.
        **variables: Values for the template placeholders.

    Returns:
        Rendered prompt text.

    Raises:
        PromptError: If the template is missing or a placeholder has no value.
    """
    path = (templates_dir or TEMPLATES_DIR) / name
    try:
        source = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PromptError(f"Prompt template not found: {path}") from e

    try:
        rendered = Template(source, undefined=StrictUndefined).render(**variables)
    except UndefinedError as e:
        raise PromptError(f"Missing value for template {name}: {e}") from e

    logger.debug(f"Rendered prompt '{name}' ({len(rendered)} chars)")
    return rendered


def get_generic_prompt(progress_file: str) -> str:
    """Prompt for working on the next available task."""
    return render_template(GENERIC_TEMPLATE, progress_file=progress_file)


def get_epic_prompt(epic_id: str, progress_file: str) -> str:
    """Prompt for working only on tasks of ``epic_id``."""
    return render_template(EPIC_TEMPLATE, epic_id=epic_id, progress_file=progress_file)
