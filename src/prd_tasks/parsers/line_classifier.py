"""
Single-line classification for PRD documents.

Every function here is a pure function of one line of text. A line is one
of: a heading, a task item (list marker + checkbox), a plain list item, or
something else (returns None).

    # Heading                          → HeadingLine
    - [ ] Do thing @alice PRD-100001   → TaskLine
    * plain item                       → ListItemLine
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from ..utils.formatting import collapse_spaces, render_task_line
from ..utils.ids import DEFAULT_PREFIX, id_pattern

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")
TASK_RE = re.compile(r"^(\s*)(-|\*|\d+\.)\s*\[([^\]]*)\]\s*(.*)$")
LIST_ITEM_RE = re.compile(r"^(\s*)(-|\*|\d+\.)\s+(.+)$")

# Trailing "@name" token; the "-copilot" bot suffix is just part of the name.
BOT_SUFFIX = "-copilot"
_TRAILING_ASSIGNEE_RE = re.compile(r"(?:^|\s)@([\w-]+)$")
_CHECKBOX_PREFIX_RE = re.compile(r"^\[[^\]]*\]")

_EMPTY_CHECKBOXES = frozenset({"", " ", "  ", "   "})
_DONE_CHECKBOXES = frozenset({"x", " x", "x ", " x "})


# ---------------------------------------------------------------------------
# Line shapes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HeadingLine:
    level: int
    text: str


@dataclass(frozen=True)
class ListItemLine:
    indent: str
    bullet: str
    content: str


@dataclass(frozen=True)
class TaskLine:
    """
    A task item broken into its parts.

    ``checkbox`` is the raw content between the brackets; ``checkbox_span``
    and ``id_span`` are (start, end) offsets into the original line so
    callers can rewrite just that token.
    """

    indent: str
    bullet: str
    checkbox: str
    description: str
    assignees: List[str] = field(default_factory=list)
    task_id: Optional[str] = None
    id_count: int = 0
    checkbox_span: Tuple[int, int] = (0, 0)
    id_span: Optional[Tuple[int, int]] = None

    @property
    def completed(self) -> bool:
        return is_checked(self.checkbox)


ClassifiedLine = Union[HeadingLine, TaskLine, ListItemLine]


# ---------------------------------------------------------------------------
# Low-level parsers
# ---------------------------------------------------------------------------

def normalize_checkbox(content: str) -> str:
    """
    Map irregular checkbox content to its canonical form.

    Blank variants become " ", x variants (any case) become "x". Anything
    else is returned unchanged.
    """
    if content in _EMPTY_CHECKBOXES:
        return " "
    if content.lower() in _DONE_CHECKBOXES:
        return "x"
    return content


def is_checked(content: str) -> bool:
    return normalize_checkbox(content) == "x"


def _is_checkbox(content: str) -> bool:
    """
    True for content that can sit in a task checkbox.

    At most three characters with at most one visible mark, which covers
    "[ ]", "[]", "[x ]", "[/]" but not "[link]" or "[[wiki]]".
    """
    return len(content) <= 3 and len(content.strip()) <= 1 and "[" not in content


def indent_width(indent: str) -> int:
    """Indentation width: each space counts 1, each tab counts 4."""
    return sum(4 if ch == "\t" else 1 for ch in indent)


def split_remainder(rest: str, prefix: str = DEFAULT_PREFIX) -> Tuple[str, List[str], Optional[str], int]:
    """
    Split the text after the checkbox into (description, assignees, id, id_count).

    Every ID token is removed; the first one is the canonical ID. Trailing
    ``@name`` tokens are then peeled off the end as assignees.
    """
    pattern = id_pattern(prefix)
    text = rest.strip()
    ids = pattern.findall(text)
    if ids:
        text = collapse_spaces(pattern.sub("", text))

    assignees: List[str] = []
    while True:
        m = _TRAILING_ASSIGNEE_RE.search(text)
        if not m:
            break
        assignees.insert(0, m.group(1))
        text = text[: m.start()].rstrip()

    return text, assignees, (ids[0] if ids else None), len(ids)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def parse_heading(line: str) -> Optional[HeadingLine]:
    m = HEADING_RE.match(line)
    if not m:
        return None
    return HeadingLine(level=len(m.group(1)), text=m.group(2).strip())


def parse_task_line(line: str, prefix: str = DEFAULT_PREFIX) -> Optional[TaskLine]:
    """Return the TaskLine for ``line`` or None if it is not a task item."""
    m = TASK_RE.match(line)
    if not m:
        return None
    checkbox = m.group(3)
    if not _is_checkbox(checkbox):
        return None
    # "- [ ](url)" is a link, not a checkbox
    if line[m.end(3) + 1: m.end(3) + 2] == "(":
        return None

    description, assignees, task_id, id_count = split_remainder(m.group(4), prefix)
    id_span = None
    if task_id:
        id_match = id_pattern(prefix).search(line, m.start(4))
        id_span = id_match.span() if id_match else None

    return TaskLine(
        indent=m.group(1),
        bullet=m.group(2),
        checkbox=checkbox,
        description=description,
        assignees=assignees,
        task_id=task_id,
        id_count=id_count,
        checkbox_span=m.span(3),
        id_span=id_span,
    )


def parse_list_item(line: str, prefix: str = DEFAULT_PREFIX) -> Optional[ListItemLine]:
    """Return a ListItemLine for a bulleted/numbered line without a checkbox."""
    m = LIST_ITEM_RE.match(line)
    if not m:
        return None
    content = m.group(3)
    if _CHECKBOX_PREFIX_RE.match(content) or parse_task_line(line, prefix):
        return None
    return ListItemLine(indent=m.group(1), bullet=m.group(2), content=content)


def classify_line(line: str, prefix: str = DEFAULT_PREFIX) -> Optional[ClassifiedLine]:
    """Classify one line as heading, task item, plain list item, or None."""
    return parse_heading(line) or parse_task_line(line, prefix) or parse_list_item(line, prefix)


def is_task_line(line: str, prefix: str = DEFAULT_PREFIX) -> bool:
    return parse_task_line(line, prefix) is not None


def is_heading_line(line: str) -> bool:
    return HEADING_RE.match(line) is not None


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def normalize_task_line(line: str, prefix: str = DEFAULT_PREFIX) -> str:
    """
    Rewrite a task line into canonical form.

    Checkbox content is normalised, the bullet becomes "-", duplicate ID
    tokens collapse to the first one at the end of the line, and parts are
    separated by exactly one space. Non-task lines are returned unchanged.
    The result is a fixed point: normalising it again changes nothing.
    """
    task = parse_task_line(line, prefix)
    if task is None:
        return line
    return render_task_line(
        task.indent,
        normalize_checkbox(task.checkbox),
        task.description,
        task.assignees,
        task.task_id,
    )
