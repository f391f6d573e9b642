from .document_parser import collect_ids, parse_document
from .line_classifier import (
    HeadingLine,
    ListItemLine,
    TaskLine,
    classify_line,
    indent_width,
    is_checked,
    normalize_checkbox,
    normalize_task_line,
    parse_heading,
    parse_list_item,
    parse_task_line,
    split_remainder,
)

__all__ = [
    "parse_document",
    "collect_ids",
    "classify_line",
    "parse_heading",
    "parse_task_line",
    "parse_list_item",
    "normalize_checkbox",
    "normalize_task_line",
    "is_checked",
    "indent_width",
    "split_remainder",
    "HeadingLine",
    "TaskLine",
    "ListItemLine",
]
