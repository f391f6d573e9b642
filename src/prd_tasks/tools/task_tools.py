"""
Task tool handlers.

Core logic lives in handle_* functions (return dicts, shared with the REST
API). MCP wrappers in register_task_tools() serialize to JSON strings and
turn engine errors into ``{"error": ...}`` payloads.
"""

import json
import logging
from typing import Any, Callable, Optional

from mcp.server.fastmcp import FastMCP

from ..errors import TaskEngineError
from ..reports import render_report

log = logging.getLogger(__name__)


def _task_to_dict(task, include_children: bool = True) -> dict:
    """Serialize a Task to a JSON-serializable dict."""
    parent = task.parent
    d = {
        "id": task.id,
        "text": task.text,
        "completed": task.completed,
        "assignee": task.assignee,
        "assignees": list(task.assignees),
        "section": task.section,
        "headers": [h.text for h in task.headers],
        "indent": task.indent,
        "line": task.line,
        "document": str(task.document) if task.document else None,
        "parent_id": parent.id if parent else None,
    }
    if include_children and task.children:
        d["children"] = [_task_to_dict(c, include_children=True) for c in task.children]
    return d


# ---------------------------------------------------------------------------
# Handler functions (return dicts, shared by MCP tools and REST API)
# ---------------------------------------------------------------------------


def handle_list_tasks(
    cache,
    *,
    filter: str = "all",
    document: Optional[str] = None,
    assignee: Optional[str] = None,
) -> list[dict]:
    tasks = cache.list_tasks(filter, document=document, assignee=assignee)
    return [_task_to_dict(t, include_children=False) for t in tasks]


def handle_get_task(cache, *, task_id: str) -> dict:
    entry = cache.get_task(task_id)
    if not entry:
        return {"error": f"Task {task_id} not found"}
    task, _ = entry
    return _task_to_dict(task, include_children=True)


def handle_toggle_task(cache, *, task_id: str) -> dict:
    task = cache.toggle_task(task_id)
    state = "completed" if task.completed else "uncompleted"
    return {
        "message": f"Task {task_id} marked as {state}",
        "task": _task_to_dict(task, include_children=False),
    }


def handle_create_task(
    cache,
    *,
    text: str,
    assignee: Optional[str] = None,
    document: Optional[str] = None,
    heading: Optional[str] = None,
    parent_id: Optional[str] = None,
) -> dict:
    task = cache.create_task(text, assignee, document, heading=heading, parent_id=parent_id)
    message = f"Created task {task.id}: {task.text}"
    if task.assignee:
        message += f" (assigned to @{task.assignee})"
    return {"message": message, "task": _task_to_dict(task, include_children=False)}


def handle_assign_task(cache, *, task_id: str, assignee: Optional[str]) -> dict:
    task = cache.assign_task(task_id, assignee)
    if task.assignee:
        message = f"Task {task_id} assigned to @{task.assignee}"
    else:
        message = f"Task {task_id} unassigned"
    return {"message": message, "task": _task_to_dict(task, include_children=False)}


def handle_deconvert_task(cache, *, task_id: str) -> dict:
    path, edit = cache.deconvert_task(task_id)
    return {
        "message": f"Task {task_id} converted back to a list item",
        "document": str(path),
        "line": edit.line,
        "text": edit.new_text,
    }


def handle_find_duplicates(cache, *, document: Optional[str] = None) -> dict:
    duplicates = cache.find_duplicates(document)
    return {
        "has_duplicates": bool(duplicates),
        "documents": duplicates,
    }


def handle_fix_duplicates(cache, *, document: Optional[str] = None) -> dict:
    changes = cache.fix_duplicates(document)
    fixed = sum(len(c) for c in changes.values())
    return {"fixed": fixed, "documents": changes}


def handle_normalize_document(cache, *, document: Optional[str] = None) -> dict:
    changes = cache.normalize_document(document)
    return {"lines_changed": sum(len(c) for c in changes.values()), "documents": changes}


def handle_convert_list_items(
    cache,
    *,
    document: Optional[str] = None,
    heading: Optional[str] = None,
    line: Optional[int] = None,
) -> dict:
    if line is not None:
        tasks = cache.convert_list_item(document, line)
    else:
        tasks = cache.convert_list_items(document, heading)
    return {
        "converted": len(tasks),
        "tasks": [_task_to_dict(t, include_children=False) for t in tasks],
    }


def handle_progress_report(cache, *, fmt: str = "markdown", document: Optional[str] = None) -> dict:
    if document:
        tasks = cache.list_tasks("all", document=document)
    else:
        tasks = cache.all_tasks()
    return {"format": fmt, "report": render_report(tasks, fmt)}


def handle_cache_status(cache) -> dict:
    return cache.status()


# ---------------------------------------------------------------------------
# MCP tool registration (thin wrappers)
# ---------------------------------------------------------------------------


def _dump(handler: Callable[..., Any], *args, **kwargs) -> str:
    try:
        return json.dumps(handler(*args, **kwargs), indent=2)
    except (TaskEngineError, ValueError) as e:
        log.info("%s failed: %s", handler.__name__, e)
        return json.dumps({"error": str(e)})


def register_task_tools(mcp: FastMCP, cache) -> None:
    """Register all task-related MCP tools onto the FastMCP instance."""

    @mcp.tool()
    def list_tasks(filter: str = "all", document: Optional[str] = None) -> str:
        """
        List all PRD tasks with optional filtering.

        Args:
            filter: "all", "completed" or "uncompleted" (default "all")
            document: Restrict to one PRD document (path or file name)

        Returns:
            JSON array of flat task objects in document order; a subtask is its
            own entry pointing at its parent through parent_id
        """
        return _dump(handle_list_tasks, cache, filter=filter, document=document)

    @mcp.tool()
    def get_task(taskId: str) -> str:
        """
        Get a single task by ID with its subtasks.

        Args:
            taskId: Task ID (e.g. "PRD-100001")

        Returns:
            JSON task object with nested children, or error message
        """
        return _dump(handle_get_task, cache, task_id=taskId)

    @mcp.tool()
    def toggle_task(taskId: str) -> str:
        """
        Toggle a task between completed and uncompleted.

        Args:
            taskId: Task ID (e.g. "PRD-100001")
        """
        return _dump(handle_toggle_task, cache, task_id=taskId)

    @mcp.tool()
    def create_task(text: str, assignee: Optional[str] = None, document: Optional[str] = None) -> str:
        """
        Create a new open task with a generated ID.

        The task is added after the last task of the document (or at its end).

        Args:
            text: The task description
            assignee: Optional assignee name, with or without "@"
            document: Target PRD document; defaults to the first tracked one

        Returns:
            JSON object with the new task
        """
        return _dump(handle_create_task, cache, text=text, assignee=assignee, document=document)

    @mcp.tool()
    def assign_task(taskId: str, assignee: str) -> str:
        """
        Assign a task to someone, replacing the current assignee.

        Args:
            taskId: Task ID (e.g. "PRD-100001")
            assignee: Name with or without "@" (e.g. "alice" or "@bob-copilot");
                an empty string removes the assignee
        """
        return _dump(handle_assign_task, cache, task_id=taskId, assignee=assignee)

    @mcp.tool()
    def find_duplicates(document: Optional[str] = None) -> str:
        """
        Report task IDs used on more than one line.

        Args:
            document: Restrict to one document; default checks all tracked documents
        """
        return _dump(handle_find_duplicates, cache, document=document)

    @mcp.tool()
    def fix_duplicates(document: Optional[str] = None) -> str:
        """
        Give every duplicate task ID occurrence (after the first) a fresh ID.

        Args:
            document: Restrict to one document; default fixes all tracked documents
        """
        return _dump(handle_fix_duplicates, cache, document=document)

    @mcp.tool()
    def normalize_document(document: Optional[str] = None) -> str:
        """
        Rewrite irregular checkboxes and spacing on task lines into canonical form.

        Args:
            document: Restrict to one document; default normalizes all tracked documents
        """
        return _dump(handle_normalize_document, cache, document=document)

    @mcp.tool()
    def convert_list_items(document: Optional[str] = None, heading: Optional[str] = None) -> str:
        """
        Convert plain list items into tasks with generated IDs.

        Args:
            document: Target PRD document; defaults to the first tracked one
            heading: Only convert items in the section under this heading
        """
        return _dump(handle_convert_list_items, cache, document=document, heading=heading)

    @mcp.tool()
    def deconvert_task(taskId: str) -> str:
        """
        Turn a task back into a plain list item (checkbox and ID removed).

        Args:
            taskId: Task ID (e.g. "PRD-100001")
        """
        return _dump(handle_deconvert_task, cache, task_id=taskId)

    @mcp.tool()
    def progress_report(format: str = "markdown", document: Optional[str] = None) -> str:
        """
        Summarise progress: totals, completion percentage, and per-assignee breakdown.

        Args:
            format: "markdown", "csv" or "json"
            document: Restrict to one document
        """
        return _dump(handle_progress_report, cache, fmt=format, document=document)

    @mcp.tool()
    def cache_status() -> str:
        """
        Show task cache statistics.

        Returns:
            JSON with document count, task count, last scan time, etc.
        """
        return _dump(handle_cache_status, cache)
