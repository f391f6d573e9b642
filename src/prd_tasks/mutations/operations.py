"""
Structure-preserving task mutations.

Each operation takes the current document text and returns an EditResult:
the smallest set of LineEdit / LineInsert instructions that performs the
change. Nothing outside the target line (or the insertion point) is ever
touched. Apply the result with mutations.apply.apply_edits.

Line numbers passed in (``line=``, ``parent_line=``) are hints from an
earlier parse. They are re-validated against the text; if the line is no
longer the expected task, StaleTargetError is raised instead of guessing.

Line lifecycle:
    list item --convert--> [ ] task <--toggle--> [x] task --deconvert--> list item
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

from ..errors import StaleTargetError
from ..models.edits import LineEdit, LineInsert
from ..parsers.document_parser import collect_ids
from ..parsers.line_classifier import (
    TaskLine,
    indent_width,
    is_heading_line,
    normalize_task_line,
    parse_heading,
    parse_list_item,
    parse_task_line,
)
from ..utils.files import split_lines
from ..utils.formatting import (
    clean_assignee,
    collapse_spaces,
    render_list_item,
    render_task_line,
)
from ..utils.ids import DEFAULT_PREFIX, IdAllocator, id_pattern

SUBTASK_INDENT = "  "


@dataclass
class EditResult:
    """
    Edits for one operation plus what they produced.

    ``line`` is the index of the affected (or newly inserted) task line in
    the text after the edits are applied.
    """

    edits: List[Union[LineEdit, LineInsert]] = field(default_factory=list)
    task_ids: List[str] = field(default_factory=list)
    line: Optional[int] = None

    @property
    def task_id(self) -> Optional[str]:
        return self.task_ids[0] if self.task_ids else None

    @property
    def changed(self) -> bool:
        return bool(self.edits)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _locate_task(
    lines: List[str],
    task_id: Optional[str],
    line: Optional[int],
    prefix: str,
) -> Tuple[int, TaskLine]:
    """Find the task line by (validated) line hint, or by scanning for its ID."""
    if line is not None:
        if not 0 <= line < len(lines):
            raise StaleTargetError(f"Line {line} is out of range")
        task = parse_task_line(lines[line], prefix)
        if task is None:
            raise StaleTargetError(f"Line {line} is no longer a task")
        if task_id is not None and task.task_id != task_id:
            raise StaleTargetError(f"Task mismatch: expected {task_id}, found {task.task_id}")
        return line, task

    if task_id is None:
        raise ValueError("Either task_id or line is required")

    for line_num, text in enumerate(lines):
        task = parse_task_line(text, prefix)
        if task and task.task_id == task_id:
            return line_num, task
    raise StaleTargetError(f"Task {task_id} not found in document")


def _is_block_line(line: str, prefix: str) -> bool:
    """Lines a new task can sit next to without a separating blank line."""
    return bool(
        is_heading_line(line)
        or parse_task_line(line, prefix)
        or parse_list_item(line, prefix)
    )


def _plan_insertion(
    lines: List[str],
    after: int,
    new_line: str,
    prefix: str,
    separate: bool = False,
) -> LineInsert:
    """
    Insert ``new_line`` after index ``after`` (-1 = top of document).

    A blank line is added on either side where the neighbour is prose, so
    the new task does not get glued onto a paragraph. With ``separate`` any
    non-blank neighbour gets one. Existing blank lines are never doubled.
    """
    block = [new_line]
    if after >= 0:
        prev = lines[after]
        if prev.strip() and (separate or not _is_block_line(prev, prefix)):
            block.insert(0, "")
    if after + 1 < len(lines):
        nxt = lines[after + 1]
        if nxt.strip() and (separate or not _is_block_line(nxt, prefix)):
            block.append("")
    return LineInsert(line=after + 1, lines=tuple(block))


def _new_task_line(indent: str, task_text: str, assignee: Optional[str], task_id: str) -> str:
    description = collapse_spaces(task_text)
    if not description:
        raise ValueError("Task text must not be empty")
    assignees = [clean_assignee(assignee)] if assignee else []
    return render_task_line(indent, " ", description, assignees, task_id)


def _insert(
    lines: List[str],
    after: int,
    indent: str,
    task_text: str,
    assignee: Optional[str],
    allocator: IdAllocator,
    separate: bool = False,
) -> EditResult:
    # Validate the text before an ID is spent on it
    _new_task_line(indent, task_text, assignee, "")
    allocator.observe(collect_ids(lines, allocator.prefix))
    task_id = allocator.allocate()
    new_line = _new_task_line(indent, task_text, assignee, task_id)
    insert = _plan_insertion(lines, after, new_line, allocator.prefix, separate)
    return EditResult(
        edits=[insert],
        task_ids=[task_id],
        line=insert.line + insert.lines.index(new_line),
    )


def _last_non_blank(lines: List[str], start: int = 0, stop: Optional[int] = None) -> int:
    stop = len(lines) if stop is None else stop
    for i in range(stop - 1, start - 1, -1):
        if lines[i].strip():
            return i
    return start - 1


# ---------------------------------------------------------------------------
# Completion and assignment
# ---------------------------------------------------------------------------

def toggle_task(
    text: str,
    *,
    task_id: Optional[str] = None,
    line: Optional[int] = None,
    prefix: str = DEFAULT_PREFIX,
) -> EditResult:
    """
    Flip ``[ ]`` ↔ ``[x]`` on one task line.

    Only the checkbox characters change; indent, bullet, description,
    assignees and ID stay byte-identical.
    """
    lines, _ = split_lines(text)
    line_num, task = _locate_task(lines, task_id, line, prefix)
    old = lines[line_num]
    start, end = task.checkbox_span
    new_checkbox = " " if task.completed else "x"
    new_line = f"{old[:start]}{new_checkbox}{old[end:]}"
    return EditResult(
        edits=[LineEdit(line=line_num, new_text=new_line, old_text=old)],
        task_ids=[task.task_id] if task.task_id else [],
        line=line_num,
    )


def assign_task(
    text: str,
    task_id: Optional[str],
    assignee: Optional[str],
    *,
    line: Optional[int] = None,
    prefix: str = DEFAULT_PREFIX,
) -> EditResult:
    """
    Set (or clear) the assignee of one task.

    The first trailing ``@name`` token is replaced; without one, the new
    token goes right before the ID. ``assignee=None`` or ``""`` removes the
    first token. Lines carrying several assignees keep the others.
    """
    name = clean_assignee(assignee) if assignee else None
    lines, _ = split_lines(text)
    line_num, task = _locate_task(lines, task_id, line, prefix)

    assignees = list(task.assignees)
    if name:
        if assignees:
            assignees[0] = name
        else:
            assignees.append(name)
    else:
        assignees = assignees[1:]

    old = lines[line_num]
    new_line = render_task_line(
        task.indent, task.checkbox, task.description, assignees, task.task_id, bullet=task.bullet
    )
    edits = [LineEdit(line=line_num, new_text=new_line, old_text=old)] if new_line != old else []
    return EditResult(edits=edits, task_ids=[task.task_id] if task.task_id else [], line=line_num)


# ---------------------------------------------------------------------------
# Insertion
# ---------------------------------------------------------------------------

def insert_task_at_cursor(
    text: str,
    line: int,
    task_text: str,
    *,
    allocator: IdAllocator,
    assignee: Optional[str] = None,
) -> EditResult:
    """Insert a new top-level task directly after ``line``."""
    lines, _ = split_lines(text)
    if not 0 <= line < len(lines):
        raise StaleTargetError(f"Line {line} is out of range")
    return _insert(lines, line, "", task_text, assignee, allocator)


def insert_task_at_end(
    text: str,
    task_text: str,
    *,
    allocator: IdAllocator,
    assignee: Optional[str] = None,
) -> EditResult:
    """Insert a new task after the last non-blank line of the document."""
    lines, _ = split_lines(text)
    return _insert(lines, _last_non_blank(lines), "", task_text, assignee, allocator)


def insert_task_after_last_task(
    text: str,
    task_text: str,
    *,
    allocator: IdAllocator,
    assignee: Optional[str] = None,
) -> EditResult:
    """Insert after the last task line, or at the end if there is none."""
    lines, _ = split_lines(text)
    after = _last_non_blank(lines)
    for i in range(len(lines) - 1, -1, -1):
        if parse_task_line(lines[i], allocator.prefix):
            after = i
            break
    return _insert(lines, after, "", task_text, assignee, allocator)


def insert_task_under_heading(
    text: str,
    heading_line: int,
    task_text: str,
    *,
    allocator: IdAllocator,
    assignee: Optional[str] = None,
    expected_heading: Optional[str] = None,
) -> EditResult:
    """
    Insert a new task at the end of a heading's section.

    The section runs until the next heading of the same or a higher level,
    so subsections belong to it and the task lands after their content.
    In an empty section the task is set off from the heading by a blank
    line.
    """
    lines, _ = split_lines(text)
    if not 0 <= heading_line < len(lines):
        raise StaleTargetError(f"Line {heading_line} is out of range")
    heading = parse_heading(lines[heading_line])
    if heading is None:
        raise StaleTargetError(f"Line {heading_line} is no longer a heading")
    if expected_heading is not None and heading.text != expected_heading:
        raise StaleTargetError(
            f"Heading mismatch: expected {expected_heading!r}, found {heading.text!r}"
        )

    section_end = len(lines)
    for i in range(heading_line + 1, len(lines)):
        h = parse_heading(lines[i])
        if h and h.level <= heading.level:
            section_end = i
            break

    after = _last_non_blank(lines, heading_line + 1, section_end)
    if after < heading_line + 1:
        return _insert(lines, heading_line, "", task_text, assignee, allocator, separate=True)
    return _insert(lines, after, "", task_text, assignee, allocator)


def insert_subtask(
    text: str,
    parent_id: str,
    task_text: str,
    *,
    allocator: IdAllocator,
    parent_line: Optional[int] = None,
    assignee: Optional[str] = None,
) -> EditResult:
    """
    Insert a new task as the last child of ``parent_id``.

    The parent's block is every following line indented deeper than the
    parent (blank lines inside it included); the new task goes after the
    last of them, two spaces deeper than the parent.
    """
    lines, _ = split_lines(text)
    parent_num, parent = _locate_task(lines, parent_id, parent_line, allocator.prefix)
    parent_indent = indent_width(parent.indent)

    last = parent_num
    for i in range(parent_num + 1, len(lines)):
        candidate = lines[i]
        if not candidate.strip():
            continue
        if is_heading_line(candidate):
            break
        lead = candidate[: len(candidate) - len(candidate.lstrip())]
        if indent_width(lead) <= parent_indent:
            break
        last = i

    return _insert(lines, last, parent.indent + SUBTASK_INDENT, task_text, assignee, allocator)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------

def _convertible(line: str, prefix: str) -> bool:
    item = parse_list_item(line, prefix)
    return bool(item and item.content.strip() and not id_pattern(prefix).search(item.content))


def convert_list_item(text: str, line: int, *, allocator: IdAllocator) -> EditResult:
    """Turn one plain list item into an open task with a new ID."""
    prefix = allocator.prefix
    lines, _ = split_lines(text)
    if not 0 <= line < len(lines) or not _convertible(lines[line], prefix):
        raise StaleTargetError(f"Line {line} is not a convertible list item")

    item = parse_list_item(lines[line], prefix)
    allocator.observe(collect_ids(lines, prefix))
    task_id = allocator.allocate()
    new_line = render_task_line(item.indent, " ", item.content.strip(), (), task_id)
    return EditResult(
        edits=[LineEdit(line=line, new_text=new_line, old_text=lines[line])],
        task_ids=[task_id],
        line=line,
    )


def convert_list_items(
    text: str,
    *,
    allocator: IdAllocator,
    heading_line: Optional[int] = None,
) -> EditResult:
    """
    Convert every plain list item in the document, or in one section.

    With ``heading_line`` only the lines up to the next heading are
    considered. IDs are one strictly increasing run above the current
    maximum.
    """
    prefix = allocator.prefix
    lines, _ = split_lines(text)
    start, stop = 0, len(lines)
    if heading_line is not None:
        if not 0 <= heading_line < len(lines) or not is_heading_line(lines[heading_line]):
            raise StaleTargetError(f"Line {heading_line} is not a heading")
        start = heading_line + 1
        for i in range(start, len(lines)):
            if is_heading_line(lines[i]):
                stop = i
                break

    targets = [i for i in range(start, stop) if _convertible(lines[i], prefix)]
    if not targets:
        return EditResult()

    allocator.observe(collect_ids(lines, prefix))
    ids = allocator.allocate_sequence(len(targets))
    edits: List[Union[LineEdit, LineInsert]] = []
    for line_num, task_id in zip(targets, ids):
        item = parse_list_item(lines[line_num], prefix)
        new_line = render_task_line(item.indent, " ", item.content.strip(), (), task_id)
        edits.append(LineEdit(line=line_num, new_text=new_line, old_text=lines[line_num]))
    return EditResult(edits=edits, task_ids=ids, line=targets[0])


def deconvert_task(
    text: str,
    *,
    task_id: Optional[str] = None,
    line: Optional[int] = None,
    prefix: str = DEFAULT_PREFIX,
) -> EditResult:
    """Turn a task back into a plain ``-`` list item, keeping its assignees."""
    lines, _ = split_lines(text)
    line_num, task = _locate_task(lines, task_id, line, prefix)
    new_line = render_list_item(task.indent, task.description, task.assignees)
    return EditResult(
        edits=[LineEdit(line=line_num, new_text=new_line, old_text=lines[line_num])],
        task_ids=[task.task_id] if task.task_id else [],
        line=line_num,
    )


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

def normalize_checkboxes(text: str, prefix: str = DEFAULT_PREFIX) -> List[LineEdit]:
    """Edits for every task line whose canonical form differs from the current one."""
    lines, _ = split_lines(text)
    edits = []
    for line_num, line in enumerate(lines):
        normalized = normalize_task_line(line, prefix)
        if normalized != line:
            edits.append(LineEdit(line=line_num, new_text=normalized, old_text=line))
    return edits
