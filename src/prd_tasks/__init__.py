"""
prd-tasks: task tracking embedded in Markdown PRD documents.

Main API:
    parse_document(text)            → ParseResult
    find_duplicates(text)           → {id: [line, ...]}
    resolve_duplicates(text, ...)   → [LineEdit, ...]
    toggle_task / assign_task / insert_* / convert_* / deconvert_task
    apply_edits(text, edits)        → new text

TaskCache wraps the engine for a set of tracked documents on disk and is
what the MCP server, REST API and watcher talk to.
"""

from .config import EngineConfig
from .errors import (
    DocumentAccessError,
    DocumentBusyError,
    DocumentNotFoundError,
    StaleTargetError,
    TaskEngineError,
    TaskNotFoundError,
)
from .models import CachedDocument, DocumentTasks, Heading, LineEdit, LineInsert, ParseResult, Task
from .mutations import (
    apply_edits,
    assign_task,
    convert_list_item,
    convert_list_items,
    deconvert_task,
    find_duplicates,
    insert_subtask,
    insert_task_after_last_task,
    insert_task_at_cursor,
    insert_task_at_end,
    insert_task_under_heading,
    normalize_checkboxes,
    resolve_duplicates,
    toggle_task,
)
from .parsers import classify_line, parse_document
from .utils.ids import IdAllocator

__version__ = "0.3.0"

__all__ = [
    "EngineConfig",
    "TaskEngineError",
    "TaskNotFoundError",
    "StaleTargetError",
    "DocumentBusyError",
    "DocumentNotFoundError",
    "DocumentAccessError",
    "Task",
    "CachedDocument",
    "Heading",
    "DocumentTasks",
    "ParseResult",
    "LineEdit",
    "LineInsert",
    "IdAllocator",
    "classify_line",
    "parse_document",
    "find_duplicates",
    "resolve_duplicates",
    "apply_edits",
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
