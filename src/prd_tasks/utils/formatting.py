"""
Canonical task-line formatting.

This module is the single source of truth for how a task line is written
back to markdown. Everything that builds a task line from parts (parse-time
normalisation, new tasks, conversions, assignment) goes through here, so
the spacing rules live in exactly one place:

    <indent><bullet> [<checkbox>] <description> @<assignee>... <ID>

with exactly one space between parts and no trailing whitespace.
"""

import re
from typing import Iterable, Optional

ASSIGNEE_NAME_RE = re.compile(r"^[\w-]+$")


def clean_assignee(raw: str) -> str:
    """
    Normalise an assignee argument to a bare name.

    Leading ``@`` characters and surrounding whitespace are dropped.

    Raises:
        ValueError: if what remains is not a valid ``[\\w-]+`` name
    """
    name = raw.strip().lstrip("@")
    if not ASSIGNEE_NAME_RE.match(name):
        raise ValueError(f"Invalid assignee: {raw!r}")
    return name


def render_assignees(assignees: Iterable[str]) -> str:
    """Render assignee names as space-separated ``@name`` tokens."""
    return " ".join(f"@{name}" for name in assignees)


def render_task_line(
    indent: str,
    checkbox: str,
    description: str,
    assignees: Iterable[str] = (),
    task_id: Optional[str] = None,
    bullet: str = "-",
) -> str:
    """
    Render a task line from its parts.

    Args:
        indent: Leading whitespace, kept verbatim
        checkbox: Checkbox content (" " or "x" once normalised)
        description: Free-text description
        assignees: Assignee names without ``@``
        task_id: Trailing identifier, if any
        bullet: List marker ("-", "*" or "N.")

    Returns:
        The task line without a trailing newline
    """
    parts = [description] if description else []
    tokens = render_assignees(assignees)
    if tokens:
        parts.append(tokens)
    if task_id:
        parts.append(task_id)
    head = f"{indent}{bullet} [{checkbox}]"
    return f"{head} {' '.join(parts)}" if parts else head


def render_list_item(indent: str, description: str, assignees: Iterable[str] = ()) -> str:
    """Render a plain ``-`` list item (no checkbox, no ID)."""
    parts = [description] if description else []
    tokens = render_assignees(assignees)
    if tokens:
        parts.append(tokens)
    return f"{indent}- {' '.join(parts)}"


def collapse_spaces(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()
