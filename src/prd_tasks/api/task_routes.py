"""REST API routes for task and document operations."""

from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from ..errors import (
    DocumentBusyError,
    DocumentNotFoundError,
    StaleTargetError,
    TaskEngineError,
    TaskNotFoundError,
)
from ..tools.task_tools import (
    handle_assign_task,
    handle_cache_status,
    handle_convert_list_items,
    handle_create_task,
    handle_deconvert_task,
    handle_find_duplicates,
    handle_fix_duplicates,
    handle_get_task,
    handle_list_tasks,
    handle_normalize_document,
    handle_progress_report,
    handle_toggle_task,
)


class TaskCreateBody(BaseModel):
    text: str
    assignee: Optional[str] = None
    document: Optional[str] = None
    heading: Optional[str] = None
    parent_id: Optional[str] = None


class AssigneeBody(BaseModel):
    assignee: Optional[str] = None


class DocumentBody(BaseModel):
    document: Optional[str] = None


class ConvertBody(BaseModel):
    document: Optional[str] = None
    heading: Optional[str] = None
    line: Optional[int] = None


def _http_error(e: Exception) -> HTTPException:
    """Map an engine failure to an HTTP status."""
    if isinstance(e, (TaskNotFoundError, DocumentNotFoundError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (StaleTargetError, DocumentBusyError)):
        return HTTPException(status_code=409, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def _call(handler, *args, **kwargs):
    try:
        return handler(*args, **kwargs)
    except (TaskEngineError, ValueError) as e:
        raise _http_error(e) from e


def register_task_routes(app_router: APIRouter, cache) -> None:
    """Attach task REST routes that use the shared cache."""

    @app_router.get("/tasks")
    def list_tasks(
        filter: Literal["all", "completed", "uncompleted"] = Query("all"),
        document: Optional[str] = Query(None),
        assignee: Optional[str] = Query(None),
    ):
        return _call(handle_list_tasks, cache, filter=filter, document=document, assignee=assignee)

    @app_router.get("/tasks/{task_id}")
    def get_task(task_id: str):
        result = handle_get_task(cache, task_id=task_id)
        if "error" in result:
            raise HTTPException(status_code=404, detail=result["error"])
        return result

    @app_router.post("/tasks", status_code=201)
    def create_task(body: TaskCreateBody):
        return _call(handle_create_task, cache, **body.model_dump())

    @app_router.post("/tasks/{task_id}/toggle")
    def toggle_task(task_id: str):
        return _call(handle_toggle_task, cache, task_id=task_id)

    @app_router.put("/tasks/{task_id}/assignee")
    def assign_task(task_id: str, body: AssigneeBody):
        return _call(handle_assign_task, cache, task_id=task_id, assignee=body.assignee)

    @app_router.post("/tasks/{task_id}/deconvert")
    def deconvert_task(task_id: str):
        return _call(handle_deconvert_task, cache, task_id=task_id)

    @app_router.get("/documents/duplicates")
    def find_duplicates(document: Optional[str] = Query(None)):
        return _call(handle_find_duplicates, cache, document=document)

    @app_router.post("/documents/fix-duplicates")
    def fix_duplicates(body: DocumentBody):
        return _call(handle_fix_duplicates, cache, document=body.document)

    @app_router.post("/documents/normalize")
    def normalize_document(body: DocumentBody):
        return _call(handle_normalize_document, cache, document=body.document)

    @app_router.post("/documents/convert")
    def convert_list_items(body: ConvertBody):
        return _call(handle_convert_list_items, cache, **body.model_dump())

    @app_router.get("/report")
    def progress_report(
        format: Literal["markdown", "csv", "json"] = Query("markdown"),
        document: Optional[str] = Query(None),
    ):
        result = _call(handle_progress_report, cache, fmt=format, document=document)
        media_type = {"markdown": "text/markdown", "csv": "text/csv", "json": "application/json"}[format]
        return PlainTextResponse(result["report"], media_type=media_type)

    @app_router.get("/cache/status")
    def get_cache_status():
        return handle_cache_status(cache)
