from .edits import LineEdit, LineInsert
from .task import CachedDocument, DocumentTasks, Heading, ParseResult, Task

__all__ = [
    "Task",
    "CachedDocument",
    "Heading",
    "DocumentTasks",
    "ParseResult",
    "LineEdit",
    "LineInsert",
]
