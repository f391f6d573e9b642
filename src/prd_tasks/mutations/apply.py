"""
Atomic application of edit batches.

A batch is validated in full against the current text before anything is
changed; if any edit is stale or out of range, StaleTargetError is raised
and no text is produced. Line numbers in a batch always refer to the text
the batch was computed from.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Union

from ..errors import StaleTargetError
from ..models.edits import LineEdit, LineInsert
from ..utils.files import join_lines, split_lines

Edit = Union[LineEdit, LineInsert]


def validate_edits(lines: List[str], edits: Iterable[Edit]) -> None:
    """Raise StaleTargetError if any edit does not fit ``lines``."""
    replaced = set()
    for edit in edits:
        if isinstance(edit, LineInsert):
            if not 0 <= edit.line <= len(lines):
                raise StaleTargetError(f"Insert position {edit.line} is out of range")
            continue
        if not 0 <= edit.line < len(lines):
            raise StaleTargetError(f"Line {edit.line} is out of range")
        if edit.line in replaced:
            raise ValueError(f"Line {edit.line} is replaced twice in one batch")
        if edit.old_text is not None and lines[edit.line] != edit.old_text:
            raise StaleTargetError(
                f"Line {edit.line} changed since it was read: {lines[edit.line]!r}"
            )
        replaced.add(edit.line)


def apply_edits(text: str, edits: Iterable[Edit]) -> str:
    """
    Apply a batch of line edits and return the new text.

    Replacements are applied in place; inserts at the same position keep
    their order in the batch. The newline style of ``text`` is preserved.
    """
    edits = list(edits)
    lines, newline = split_lines(text)
    validate_edits(lines, edits)
    if not edits:
        return text

    replacements: Dict[int, str] = {}
    inserts: Dict[int, List[str]] = defaultdict(list)
    for edit in edits:
        if isinstance(edit, LineInsert):
            inserts[edit.line].extend(edit.lines)
        else:
            replacements[edit.line] = edit.new_text

    result: List[str] = []
    for i in range(len(lines) + 1):
        result.extend(inserts.get(i, ()))
        if i < len(lines):
            result.append(replacements.get(i, lines[i]))
    return join_lines(result, newline)
