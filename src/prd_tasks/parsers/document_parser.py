"""
Parser for PRD documents.

Main API:
    parse_document(text, config=..., allocator=..., claimed=...)  → ParseResult

One pass over the lines with two stacks: the heading stack (pushing a level
L heading pops every open heading with level >= L) and the nesting stack of
(task, indent) pairs (a task becomes the child of the nearest preceding task
with a smaller indent). Both stacks are local to the call.

The parser never writes. Line rewrites it wants (normalised formatting,
generated IDs) are returned as ``corrections`` plus the corrected full
text; applying them is the caller's job.
"""

import logging
from pathlib import Path
from typing import AbstractSet, List, Optional, Set, Tuple

from ..config import EngineConfig
from ..models.edits import LineEdit
from ..models.task import DocumentTasks, Heading, ParseResult, Task
from ..utils.files import join_lines, split_lines
from ..utils.ids import IdAllocator, id_pattern
from .line_classifier import (
    indent_width,
    normalize_task_line,
    parse_heading,
    parse_task_line,
)

log = logging.getLogger(__name__)


def collect_ids(lines: List[str], prefix: str) -> Set[str]:
    """Every ID token appearing on a task line."""
    pattern = id_pattern(prefix)
    found: Set[str] = set()
    for line in lines:
        if parse_task_line(line, prefix):
            found.update(pattern.findall(line))
    return found


def parse_document(
    text: str,
    *,
    config: Optional[EngineConfig] = None,
    allocator: Optional[IdAllocator] = None,
    claimed: AbstractSet[str] = frozenset(),
    document: Optional[Path] = None,
) -> ParseResult:
    """
    Parse document text into a task forest.

    Args:
        text: Full document text
        config: Engine options (auto_generate_ids, normalize_checkboxes, id_prefix)
        allocator: Source of new IDs; without one, missing IDs stay missing
        claimed: IDs owned by other tracked documents; a task using one is
            treated as a duplicate and skipped
        document: Owning document, stored on every task

    Returns:
        ParseResult with the forest, ID index, and any line corrections
    """
    config = config or EngineConfig()
    prefix = config.id_prefix
    lines, newline = split_lines(text)

    if allocator is not None:
        allocator.observe(collect_ids(lines, prefix))

    tree = DocumentTasks(document=document)
    corrections: List[LineEdit] = []
    duplicate_lines: List[int] = []
    heading_stack: List[Heading] = []
    task_stack: List[Tuple[Task, int]] = []
    seen: Set[str] = set()

    for line_num, original in enumerate(lines):
        heading = parse_heading(original)
        if heading:
            while heading_stack and heading_stack[-1].level >= heading.level:
                heading_stack.pop()
            entry = Heading(text=heading.text, level=heading.level, line=line_num)
            heading_stack.append(entry)
            tree.headings.append(entry)
            continue

        line = original
        if config.normalize_checkboxes:
            line = normalize_task_line(line, prefix)

        parsed = parse_task_line(line, prefix)
        if parsed is None:
            continue

        task_id = parsed.task_id
        if task_id is None and config.auto_generate_ids and allocator is not None:
            task_id = allocator.allocate()
            line = f"{line.rstrip()} {task_id}"
            log.debug("Generated %s for line %d", task_id, line_num)

        if line != original:
            lines[line_num] = line
            corrections.append(LineEdit(line=line_num, new_text=line, old_text=original))

        if task_id and (task_id in seen or task_id in claimed):
            # Left for the duplicate resolver; stacks are not touched.
            duplicate_lines.append(line_num)
            continue

        task = Task(
            text=parsed.description,
            id=task_id,
            completed=parsed.completed,
            assignees=list(parsed.assignees),
            document=document,
            line=line_num,
            indent=indent_width(parsed.indent),
            bullet=parsed.bullet,
            checkbox=parsed.checkbox,
            headers=list(heading_stack),
        )
        if task_id:
            seen.add(task_id)
            tree.index[task_id] = task

        while task_stack and task_stack[-1][1] >= task.indent:
            task_stack.pop()
        if task_stack:
            task_stack[-1][0].attach_child(task)
        else:
            tree.tasks.append(task)
        task_stack.append((task, task.indent))

    normalized_text = join_lines(lines, newline) if corrections else None
    if corrections:
        log.debug("%s: %d line(s) need correcting", document or "<text>", len(corrections))

    return ParseResult(
        tree=tree,
        corrections=corrections,
        normalized_text=normalized_text,
        duplicate_lines=duplicate_lines,
    )
