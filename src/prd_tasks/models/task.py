"""
Core task data models.

A Task is rebuilt from the document text on every parse. Only ``id`` is
expected to survive a reparse; everything else (line numbers included) is a
cache of the last parse and must be re-validated before it is used to write.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .edits import LineEdit


@dataclass(frozen=True)
class Heading:
    """A Markdown heading and the line it was found on."""

    text: str
    level: int
    line: int


@dataclass(eq=False)
class Task:
    """
    A single checkbox list item parsed from a PRD document.

    ``children`` owns the subtasks; ``parent`` is a weak back-reference that
    is only ever set by the parser while it builds the tree.
    """

    text: str
    id: Optional[str] = None
    completed: bool = False
    assignees: List[str] = field(default_factory=list)
    document: Optional[Path] = None
    line: int = 0
    indent: int = 0
    bullet: str = "-"
    checkbox: str = " "
    children: List[Task] = field(default_factory=list)
    headers: List[Heading] = field(default_factory=list)
    _parent: Optional[weakref.ReferenceType] = field(default=None, repr=False)

    @property
    def assignee(self) -> Optional[str]:
        """First assignee name (without ``@``), or None."""
        return self.assignees[0] if self.assignees else None

    @property
    def parent(self) -> Optional[Task]:
        return self._parent() if self._parent is not None else None

    def attach_child(self, child: Task) -> None:
        self.children.append(child)
        child._parent = weakref.ref(self)

    @property
    def ref(self) -> Optional[str]:
        """Task reference in 'path:line' format, or None if unavailable."""
        if self.document:
            return f"{self.document.as_posix()}:{self.line}"
        return None

    @property
    def section(self) -> Optional[str]:
        """Innermost heading text, if any."""
        return self.headers[-1].text if self.headers else None

    def all_tasks(self) -> List[Task]:
        """Return this task and all descendants as a flat list."""
        result = [self]
        for child in self.children:
            result.extend(child.all_tasks())
        return result


@dataclass
class DocumentTasks:
    """
    All tasks of one document: the top-level forest plus an ID index.

    Tasks without an ID are part of the forest but not of ``index``.
    """

    document: Optional[Path] = None
    tasks: List[Task] = field(default_factory=list)
    index: Dict[str, Task] = field(default_factory=dict)
    headings: List[Heading] = field(default_factory=list)

    def all_tasks(self) -> List[Task]:
        """Return every task in document order."""
        result = []
        for task in self.tasks:
            result.extend(task.all_tasks())
        return result

    def find_by_id(self, task_id: str) -> Optional[Task]:
        return self.index.get(task_id)

    def find_heading(self, text: str, level: Optional[int] = None) -> Optional[Heading]:
        """First heading with this text (and level, when given)."""
        for heading in self.headings:
            if heading.text == text and (level is None or heading.level == level):
                return heading
        return None


@dataclass
class ParseResult:
    """
    Output of parse_document.

    ``corrections`` are whole-line rewrites (normalisation, generated IDs)
    the caller should write back; ``normalized_text`` is the document with
    all of them applied, or None when nothing needed correcting.
    """

    tree: DocumentTasks
    corrections: List[LineEdit] = field(default_factory=list)
    normalized_text: Optional[str] = None
    duplicate_lines: List[int] = field(default_factory=list)

    @property
    def tasks(self) -> List[Task]:
        return self.tree.tasks

    @property
    def modified(self) -> bool:
        return bool(self.corrections)


@dataclass
class CachedDocument:
    """A parsed document held in the task cache."""

    path: Path
    tree: DocumentTasks
    mtime: float
    duplicate_lines: List[int] = field(default_factory=list)
