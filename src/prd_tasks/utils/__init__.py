from .formatting import clean_assignee, render_list_item, render_task_line
from .ids import IdAllocator, format_id, id_pattern, suffix_of

__all__ = [
    "IdAllocator",
    "format_id",
    "id_pattern",
    "suffix_of",
    "clean_assignee",
    "render_task_line",
    "render_list_item",
]
