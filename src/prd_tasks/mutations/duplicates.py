"""
Duplicate task ID detection and repair.

Finding duplicates is an ordinary query and returns data. Repair is an
explicit pass: the first occurrence of every ID is kept, each later one is
given the next free ID above it, and only the ID token on that line is
rewritten.
"""

import logging
from typing import Dict, Iterable, List

from ..models.edits import LineEdit
from ..parsers.document_parser import collect_ids
from ..parsers.line_classifier import parse_task_line
from ..utils.files import split_lines
from ..utils.ids import DEFAULT_PREFIX, IdAllocator

log = logging.getLogger(__name__)


def find_duplicates(text: str, prefix: str = DEFAULT_PREFIX) -> Dict[str, List[int]]:
    """
    Map every ID used on more than one task line to those line numbers.

    Keys are in order of first appearance; line numbers are ascending.
    Tasks without an ID are ignored.
    """
    lines, _ = split_lines(text)
    seen: Dict[str, List[int]] = {}
    for line_num, line in enumerate(lines):
        task = parse_task_line(line, prefix)
        if task and task.task_id:
            seen.setdefault(task.task_id, []).append(line_num)
    return {task_id: nums for task_id, nums in seen.items() if len(nums) > 1}


def resolve_duplicates(
    text: str,
    *,
    allocator: IdAllocator,
    claimed: Iterable[str] = (),
) -> List[LineEdit]:
    """
    Compute the edits that give every duplicate occurrence a fresh ID.

    Args:
        text: Document text
        allocator: Allocator shared with every other tracked document
        claimed: IDs already owned by other documents; an occurrence of
            one of these counts as a duplicate even if it is the first here

    Returns:
        One LineEdit per rewritten line, each carrying ``old_text`` so the
        batch is rejected as a whole if the document changed meanwhile.
        Empty when the document has no duplicates.
    """
    prefix = allocator.prefix
    lines, _ = split_lines(text)
    taken = set(claimed)
    allocator.observe(taken)
    allocator.observe(collect_ids(lines, prefix))

    edits: List[LineEdit] = []
    for line_num, line in enumerate(lines):
        task = parse_task_line(line, prefix)
        if not task or not task.task_id or task.id_span is None:
            continue
        if task.task_id not in taken:
            taken.add(task.task_id)
            continue

        new_id = allocator.allocate_next(task.task_id)
        taken.add(new_id)
        start, end = task.id_span
        new_line = f"{line[:start]}{new_id}{line[end:]}"
        edits.append(LineEdit(line=line_num, new_text=new_line, old_text=line))
        log.info("Duplicate %s on line %d → %s", task.task_id, line_num, new_id)

    return edits
