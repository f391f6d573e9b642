"""Task mutations: each returns line edits; apply_edits turns them into text."""

from .apply import apply_edits, validate_edits
from .duplicates import find_duplicates, resolve_duplicates
from .operations import (
    EditResult,
    assign_task,
    convert_list_item,
    convert_list_items,
    deconvert_task,
    insert_subtask,
    insert_task_after_last_task,
    insert_task_at_cursor,
    insert_task_at_end,
    insert_task_under_heading,
    normalize_checkboxes,
    toggle_task,
)

__all__ = [
    "EditResult",
    "apply_edits",
    "validate_edits",
    "find_duplicates",
    "resolve_duplicates",
    "toggle_task",
    "assign_task",
    "insert_task_at_cursor",
    "insert_task_at_end",
    "insert_task_after_last_task",
    "insert_task_under_heading",
    "insert_subtask",
    "convert_list_item",
    "convert_list_items",
    "deconvert_task",
    "normalize_checkboxes",
]
