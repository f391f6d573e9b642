"""
Thread-safe registry of tracked PRD documents with SQLite metadata index.

Design:
    Primary store   — Dict[Path, CachedDocument]       (parsed forest per document)
    ID index        — Dict[str, Tuple[Task, Path]]      (O(1) task lookup)
    SQLite :memory: — tasks table                       (filtered listing)
    IdAllocator     — every ID seen in any document     (cross-document uniqueness)

All state changes acquire _lock (threading.RLock). Writes to a document go
through the _writing() guard; while a document is being written its own
change notifications are ignored, and a second write to it is rejected with
DocumentBusyError.

The watcher queues paths on _update_queue; a worker thread drains it.
"""

import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import AbstractSet, Callable, Dict, FrozenSet, Iterator, List, Optional, Set, Tuple, Union

from ..config import EngineConfig
from ..errors import (
    DocumentAccessError,
    DocumentBusyError,
    DocumentNotFoundError,
    TaskEngineError,
    TaskNotFoundError,
)
from ..models.edits import LineEdit
from ..models.task import CachedDocument, Task
from ..mutations import operations as ops
from ..mutations.apply import apply_edits
from ..mutations.duplicates import find_duplicates as find_duplicate_lines
from ..mutations.duplicates import resolve_duplicates
from ..parsers.document_parser import parse_document
from ..parsers.line_classifier import parse_task_line
from ..utils.files import find_documents, is_prd_file, read_document, split_lines, write_document
from ..utils.ids import IdAllocator

log = logging.getLogger(__name__)

DocumentRef = Union[str, Path, None]

TASK_FILTERS = ("all", "completed", "uncompleted")

# ---------------------------------------------------------------------------
# SQLite schema
# ---------------------------------------------------------------------------

_CREATE_TASKS_TABLE = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT,
    text TEXT NOT NULL,
    completed INTEGER NOT NULL DEFAULT 0,
    assignees TEXT NOT NULL DEFAULT '',
    file_path TEXT NOT NULL,
    section TEXT,
    indent INTEGER NOT NULL DEFAULT 0,
    line INTEGER NOT NULL,
    parent_id TEXT
);
"""

_CREATE_TASKS_INDEX = """
CREATE INDEX IF NOT EXISTS idx_tasks_file_completed ON tasks (file_path, completed);
"""


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _task_to_row(task: Task, file_path: Path) -> dict:
    """Convert a Task to a SQLite row dict."""
    parent = task.parent
    return {
        "id": task.id,
        "text": task.text,
        "completed": 1 if task.completed else 0,
        # Space-delimited on both sides so a name can be matched with instr()
        "assignees": f" {' '.join(task.assignees)} " if task.assignees else "",
        "file_path": str(file_path),
        "section": task.section,
        "indent": task.indent,
        "line": task.line,
        "parent_id": parent.id if parent else None,
    }


def _insert_rows(cursor: sqlite3.Cursor, tasks: List[Task], file_path: Path) -> None:
    for task in tasks:
        cursor.execute(
            """
            INSERT INTO tasks
            (id, text, completed, assignees, file_path, section, indent, line, parent_id)
            VALUES
            (:id, :text, :completed, :assignees, :file_path, :section, :indent, :line, :parent_id)
            """,
            _task_to_row(task, file_path),
        )


def _id_change(edit: LineEdit, prefix: str) -> dict:
    old = parse_task_line(edit.old_text or "", prefix)
    new = parse_task_line(edit.new_text, prefix)
    return {
        "line": edit.line,
        "old_id": old.task_id if old else None,
        "new_id": new.task_id if new else None,
    }


# ---------------------------------------------------------------------------
# TaskCache
# ---------------------------------------------------------------------------

class TaskCache:
    """
    Thread-safe in-memory registry of tracked documents.

    Initialize with initialize(), then start the background worker with
    start_worker(). The watcher calls enqueue_refresh() to schedule
    document re-parses without blocking the watcher thread.
    """

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or EngineConfig()
        self.allocator = IdAllocator(prefix=self.config.id_prefix, floor=self.config.id_floor)
        self._lock = threading.RLock()
        self._documents: Dict[Path, CachedDocument] = {}
        self._tasks_by_id: Dict[str, Tuple[Task, Path]] = {}
        self._tasks_by_ref: Dict[Tuple[Path, int], Task] = {}
        self._writing_docs: Set[Path] = set()
        self._root: Optional[Path] = None
        self._exclude_dirs: Set[str] = set()
        self._db: sqlite3.Connection = sqlite3.connect(":memory:", check_same_thread=False)
        self._db.row_factory = sqlite3.Row
        self._db.executescript(_CREATE_TASKS_TABLE + _CREATE_TASKS_INDEX)
        self._update_queue: "queue.Queue[Optional[Path]]" = queue.Queue()
        self._worker_thread: Optional[threading.Thread] = None
        self._last_full_scan: Optional[datetime] = None

    @property
    def prefix(self) -> str:
        return self.config.id_prefix

    @property
    def root(self) -> Optional[Path]:
        return self._root

    @property
    def exclude_dirs(self) -> FrozenSet[str]:
        return frozenset(self._exclude_dirs)

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def initialize(self, root: Path, exclude_dirs: Optional[AbstractSet[str]] = None) -> None:
        """
        Discover and load every tracked document under root. Blocks until complete.
        Call once at server startup before starting the watcher.
        """
        self._root = root
        self._exclude_dirs = set(exclude_dirs or ())
        log.info("Starting document scan: %s", root)
        for path in find_documents(root, self.config.file_patterns, self._exclude_dirs):
            with self._lock:
                try:
                    self._load_document(path)
                except TaskEngineError:
                    log.exception("Failed to load %s", path)
        self._last_full_scan = datetime.now()
        log.info(
            "Document scan complete: %d documents, %d tasks",
            len(self._documents),
            len(self._tasks_by_id),
        )

    def start_worker(self) -> None:
        """Start the background queue-drain worker thread (daemon)."""
        self._worker_thread = threading.Thread(
            target=self._worker_loop, daemon=True, name="prd-cache-worker"
        )
        self._worker_thread.start()

    def stop_worker(self) -> None:
        """Signal the worker thread to stop and wait for it."""
        self._update_queue.put(None)  # sentinel
        if self._worker_thread:
            self._worker_thread.join(timeout=5)

    # ------------------------------------------------------------------
    # Loading and indexing
    # ------------------------------------------------------------------

    def load_document(self, path: Path) -> CachedDocument:
        """Parse ``path`` (writing back any corrections) and track it."""
        with self._lock:
            return self._load_document(path)

    def _claimed_ids(self, path: Path) -> FrozenSet[str]:
        """IDs owned by every tracked document other than ``path``."""
        if not self.config.cross_document_ids:
            return frozenset()
        claimed: Set[str] = set()
        for other, cached in self._documents.items():
            if other != path:
                claimed.update(cached.tree.index)
        return frozenset(claimed)

    def _parse(self, path: Path, text: str):
        return parse_document(
            text,
            config=self.config,
            allocator=self.allocator,
            claimed=self._claimed_ids(path),
            document=path,
        )

    def _load_document(self, path: Path) -> CachedDocument:
        """Parse and index one document. Caller must hold _lock."""
        text = read_document(path)
        result = self._parse(path, text)

        if result.modified and result.normalized_text is not None:
            with self._writing(path):
                write_document(path, result.normalized_text)
            log.info("Wrote %d correction(s) to %s", len(result.corrections), path)
            result = self._parse(path, result.normalized_text)

        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            raise DocumentAccessError(f"Cannot stat {path}: {e}") from e

        if result.duplicate_lines:
            log.info("%s: %d duplicate ID line(s)", path, len(result.duplicate_lines))

        cached = CachedDocument(
            path=path,
            tree=result.tree,
            mtime=mtime,
            duplicate_lines=list(result.duplicate_lines),
        )
        self._upsert(cached)
        return cached

    def _upsert(self, cached: CachedDocument) -> None:
        """Store a CachedDocument in all indexes. Caller must hold _lock."""
        path = cached.path
        old = self._documents.get(path)
        if old:
            self._drop_index(path, old)

        self._documents[path] = cached
        all_tasks = cached.tree.all_tasks()
        for task in all_tasks:
            self._tasks_by_ref[(path, task.line)] = task
            if task.id:
                self._tasks_by_id[task.id] = (task, path)

        cursor = self._db.cursor()
        _insert_rows(cursor, all_tasks, path)
        self._db.commit()

    def _drop_index(self, path: Path, cached: CachedDocument) -> None:
        for task in cached.tree.all_tasks():
            self._tasks_by_ref.pop((path, task.line), None)
            entry = self._tasks_by_id.get(task.id) if task.id else None
            if entry and entry[1] == path:
                del self._tasks_by_id[task.id]
        self._db.execute("DELETE FROM tasks WHERE file_path = ?", (str(path),))
        self._db.commit()

    def remove_document(self, path: Path) -> None:
        """
        Stop tracking a document and release the IDs only it used.

        Documents holding duplicate lines are re-parsed first: a line that
        repeated an ID owned by the dropped document now owns that ID.
        """
        with self._lock:
            cached = self._documents.pop(path, None)
            if not cached:
                return
            self._drop_index(path, cached)

            settled = True
            for other in sorted(self._documents):
                if not self._documents[other].duplicate_lines:
                    continue
                if other in self._writing_docs:
                    settled = False
                    continue
                try:
                    self._load_document(other)
                except TaskEngineError:
                    settled = False
                    log.exception("Failed to re-parse %s", other)

            # An unparsed duplicate line may still carry one of the dropped IDs
            if settled:
                still_used: Set[str] = set()
                for other in self._documents.values():
                    still_used.update(other.tree.index)
                self.allocator.forget(set(cached.tree.index) - still_used)
            log.info("Stopped tracking %s", path)

    # ------------------------------------------------------------------
    # Write guard
    # ------------------------------------------------------------------

    @contextmanager
    def _writing(self, path: Path) -> Iterator[None]:
        """Mark ``path`` as being written for the duration of the block."""
        with self._lock:
            if path in self._writing_docs:
                raise DocumentBusyError(f"A write to {path} is already in progress")
            self._writing_docs.add(path)
        try:
            yield
        finally:
            with self._lock:
                self._writing_docs.discard(path)

    def is_writing(self, path: Path) -> bool:
        with self._lock:
            return path in self._writing_docs

    # ------------------------------------------------------------------
    # Background worker
    # ------------------------------------------------------------------

    def _worker_loop(self) -> None:
        """Drain the update queue, re-parsing documents as they arrive."""
        while True:
            item = self._update_queue.get()
            if item is None:  # sentinel → stop
                break
            try:
                self.refresh_file(item)
            except Exception:
                log.exception("Worker failed to refresh %s", item)

    def enqueue_refresh(self, path: Path) -> None:
        """Schedule a document re-parse from a watcher callback (non-blocking)."""
        self._update_queue.put(path)

    def refresh_file(self, path: Path) -> None:
        """
        Re-parse a single document if it changed on disk.
        Thread-safe; blocks on _lock. Documents being written are skipped.
        """
        if not is_prd_file(path, self.config.file_patterns) and path not in self._documents:
            return

        if not path.exists():
            self.remove_document(path)
            return

        try:
            mtime = path.stat().st_mtime
        except OSError:
            return

        with self._lock:
            if path in self._writing_docs:
                return
            existing = self._documents.get(path)
            if existing and existing.mtime >= mtime:
                return  # Already up to date
            self._load_document(path)

    def _refresh_if_stale(self, path: Path) -> None:
        """Reload ``path`` if it changed since the last parse. Caller holds _lock."""
        if path in self._writing_docs:
            return
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            raise DocumentAccessError(f"Cannot stat {path}: {e}") from e
        cached = self._documents.get(path)
        if cached is None or cached.mtime < mtime:
            self._load_document(path)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve_document(self, document: DocumentRef) -> Path:
        """
        Map a document argument to a tracked path.

        ``None`` means the first tracked document. Relative paths are taken
        from the workspace root; a bare file name matches a tracked document
        with that name. An untracked file is loaded and tracked only when it
        would have been discovered: a PRD-named file under the root and
        outside the excluded directories.
        """
        with self._lock:
            if document is None or document == "":
                if not self._documents:
                    raise TaskEngineError("No PRD documents are tracked")
                return sorted(self._documents)[0]

            path = Path(document)
            if not path.is_absolute() and self._root is not None:
                path = self._root / path
            if path in self._documents:
                return path

            by_name = [p for p in self._documents if p.name == Path(document).name]
            if len(by_name) == 1:
                return by_name[0]

            if path.is_file() and self._is_adoptable(path):
                self._load_document(path)
                return path
            raise DocumentNotFoundError(f"Document '{document}' is not tracked")

    def _is_adoptable(self, path: Path) -> bool:
        if self._root is None or not is_prd_file(path, self.config.file_patterns):
            return False
        try:
            rel = path.resolve().relative_to(self._root.resolve())
        except ValueError:
            return False
        return not any(part in self._exclude_dirs for part in rel.parts[:-1])

    def _require_task(self, task_id: str) -> Tuple[Task, Path]:
        """Current (Task, path) for ``task_id``, reloading its document if stale."""
        entry = self._tasks_by_id.get(task_id)
        if entry:
            self._refresh_if_stale(entry[1])
            entry = self._tasks_by_id.get(task_id)
        if not entry:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return entry

    # ------------------------------------------------------------------
    # Task queries
    # ------------------------------------------------------------------

    def list_tasks(
        self,
        filter: str = "all",
        *,
        document: DocumentRef = None,
        assignee: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Task]:
        """
        Query tasks using the SQLite index; resolve full Task objects from memory.

        Args:
            filter: "all", "completed" or "uncompleted"
            document: Restrict to one tracked document
            assignee: Only tasks carrying this ``@name`` (leading "@" optional)
            limit: Max results; None returns every match

        Returns:
            Tasks in document order (documents sorted by path)
        """
        if filter not in TASK_FILTERS:
            raise ValueError(f"Unknown filter '{filter}', expected one of {', '.join(TASK_FILTERS)}")

        clauses = []
        params: list = []

        if filter == "completed":
            clauses.append("completed = 1")
        elif filter == "uncompleted":
            clauses.append("completed = 0")

        if document:
            clauses.append("file_path = ?")
            params.append(str(self.resolve_document(document)))

        if assignee:
            clauses.append("instr(assignees, ?) > 0")
            params.append(f" {assignee.strip().lstrip('@')} ")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT file_path, line FROM tasks {where} ORDER BY file_path, line"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._lock:
            rows = self._db.execute(sql, params).fetchall()
            tasks = []
            for row in rows:
                task = self._tasks_by_ref.get((Path(row["file_path"]), row["line"]))
                if task is not None:
                    tasks.append(task)
            return tasks

    def get_task(self, task_id: str) -> Optional[Tuple[Task, Path]]:
        """Return (Task, document path) or None."""
        with self._lock:
            return self._tasks_by_id.get(task_id)

    def get_document(self, path: Path) -> Optional[CachedDocument]:
        with self._lock:
            return self._documents.get(path)

    def documents(self) -> List[Path]:
        """Tracked document paths, sorted."""
        with self._lock:
            return sorted(self._documents)

    def all_task_ids(self) -> List[str]:
        with self._lock:
            return list(self._tasks_by_id.keys())

    def all_tasks(self) -> List[Task]:
        """Every task of every tracked document, in document order."""
        with self._lock:
            result: List[Task] = []
            for path in sorted(self._documents):
                result.extend(self._documents[path].tree.all_tasks())
            return result

    # ------------------------------------------------------------------
    # Mutations (write-through to disk)
    # ------------------------------------------------------------------

    def _apply(self, path: Path, compute: Callable[[str], ops.EditResult]) -> ops.EditResult:
        """
        Read ``path``, compute edits against its current text, write the
        result atomically and reload. Nothing is written when the
        computation raises or produces no edits.
        """
        with self._lock:
            with self._writing(path):
                text = read_document(path)
                result = compute(text)
                if result.edits:
                    write_document(path, apply_edits(text, result.edits))
                    log.info("Applied %d edit(s) to %s", len(result.edits), path)
            if result.edits:
                self._load_document(path)
            return result

    def _tasks_for(self, task_ids: List[str]) -> List[Task]:
        return [self._tasks_by_id[i][0] for i in task_ids if i in self._tasks_by_id]

    def toggle_task(self, task_id: str) -> Task:
        """Flip a task between open and completed. Returns the updated task."""
        with self._lock:
            task, path = self._require_task(task_id)
            line = task.line
            self._apply(
                path,
                lambda text: ops.toggle_task(text, task_id=task_id, line=line, prefix=self.prefix),
            )
            return self._require_task(task_id)[0]

    def assign_task(self, task_id: str, assignee: Optional[str]) -> Task:
        """Set the task's assignee; None or "" removes it."""
        with self._lock:
            task, path = self._require_task(task_id)
            line = task.line
            self._apply(
                path,
                lambda text: ops.assign_task(text, task_id, assignee, line=line, prefix=self.prefix),
            )
            return self._require_task(task_id)[0]

    def create_task(
        self,
        text: str,
        assignee: Optional[str] = None,
        document: DocumentRef = None,
        *,
        heading: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> Task:
        """
        Add a new open task with a fresh ID.

        Placement: as the last child of ``parent_id`` when given, else as the
        last item under ``heading``, else after the last task of the document
        (or at its end when it has none). Without ``document`` the first
        tracked document is used.

        Returns:
            The new Task as re-parsed from disk
        """
        with self._lock:
            if parent_id:
                parent, path = self._require_task(parent_id)
                parent_line = parent.line
                result = self._apply(
                    path,
                    lambda body: ops.insert_subtask(
                        body, parent_id, text,
                        allocator=self.allocator, parent_line=parent_line, assignee=assignee,
                    ),
                )
            elif heading:
                path = self.resolve_document(document)
                self._refresh_if_stale(path)
                found = self._documents[path].tree.find_heading(heading)
                if found is None:
                    raise TaskEngineError(f"Heading '{heading}' not found in {path.name}")
                result = self._apply(
                    path,
                    lambda body: ops.insert_task_under_heading(
                        body, found.line, text,
                        allocator=self.allocator, assignee=assignee, expected_heading=found.text,
                    ),
                )
            else:
                path = self.resolve_document(document)
                result = self._apply(
                    path,
                    lambda body: ops.insert_task_after_last_task(
                        body, text, allocator=self.allocator, assignee=assignee,
                    ),
                )

            log.info("Created %s in %s", result.task_id, path)
            return self._require_task(result.task_id)[0]

    def deconvert_task(self, task_id: str) -> Tuple[Path, LineEdit]:
        """Turn a task back into a plain list item. Returns (document, edit)."""
        with self._lock:
            task, path = self._require_task(task_id)
            line = task.line
            result = self._apply(
                path,
                lambda text: ops.deconvert_task(text, task_id=task_id, line=line, prefix=self.prefix),
            )
            return path, result.edits[0]

    def convert_list_item(self, document: DocumentRef, line: int) -> List[Task]:
        """Convert one plain list item to a task. Returns the new task."""
        with self._lock:
            path = self.resolve_document(document)
            result = self._apply(
                path, lambda text: ops.convert_list_item(text, line, allocator=self.allocator)
            )
            return self._tasks_for(result.task_ids)

    def convert_list_items(self, document: DocumentRef, heading: Optional[str] = None) -> List[Task]:
        """Convert every plain list item in a document (or one section of it)."""
        with self._lock:
            path = self.resolve_document(document)
            heading_line = None
            if heading:
                self._refresh_if_stale(path)
                found = self._documents[path].tree.find_heading(heading)
                if found is None:
                    raise TaskEngineError(f"Heading '{heading}' not found in {path.name}")
                heading_line = found.line
            result = self._apply(
                path,
                lambda text: ops.convert_list_items(
                    text, allocator=self.allocator, heading_line=heading_line
                ),
            )
            return self._tasks_for(result.task_ids)

    # ------------------------------------------------------------------
    # Document-wide passes
    # ------------------------------------------------------------------

    def _targets(self, document: DocumentRef) -> List[Path]:
        if document:
            return [self.resolve_document(document)]
        return sorted(self._documents)

    def find_duplicates(self, document: DocumentRef = None) -> Dict[str, Dict[str, List[int]]]:
        """
        Duplicate IDs per document: {path: {id: [line, ...]}}.

        An ID appears when it is used on more than one task line of the
        document, or (with cross-document IDs) when another tracked document
        already owns it. Documents without duplicates are omitted.
        """
        report: Dict[str, Dict[str, List[int]]] = {}
        with self._lock:
            for path in self._targets(document):
                text = read_document(path)
                groups = find_duplicate_lines(text, self.prefix)
                claimed = self._claimed_ids(path)
                if claimed:
                    lines, _ = split_lines(text)
                    for line_num, line in enumerate(lines):
                        parsed = parse_task_line(line, self.prefix)
                        if parsed and parsed.task_id in claimed:
                            nums = groups.setdefault(parsed.task_id, [])
                            if line_num not in nums:
                                nums.append(line_num)
                if groups:
                    report[str(path)] = groups
        return report

    def fix_duplicates(self, document: DocumentRef = None) -> Dict[str, List[dict]]:
        """Give every duplicate occurrence a fresh ID. Returns the ID changes per document."""
        changes: Dict[str, List[dict]] = {}
        with self._lock:
            for path in self._targets(document):
                claimed = self._claimed_ids(path)
                result = self._apply(
                    path,
                    lambda text, claimed=claimed: ops.EditResult(
                        edits=resolve_duplicates(text, allocator=self.allocator, claimed=claimed)
                    ),
                )
                if result.edits:
                    changes[str(path)] = [_id_change(e, self.prefix) for e in result.edits]
        return changes

    def normalize_document(self, document: DocumentRef = None) -> Dict[str, List[dict]]:
        """Rewrite irregular task lines into canonical form. Returns the edits per document."""
        changes: Dict[str, List[dict]] = {}
        with self._lock:
            for path in self._targets(document):
                result = self._apply(
                    path,
                    lambda text: ops.EditResult(edits=ops.normalize_checkboxes(text, self.prefix)),
                )
                if result.edits:
                    changes[str(path)] = [e.to_dict() for e in result.edits]
        return changes

    # ------------------------------------------------------------------
    # Status / diagnostics
    # ------------------------------------------------------------------

    def status(self) -> dict:
        with self._lock:
            return {
                "documents_indexed": len(self._documents),
                "tasks_indexed": len(self._tasks_by_ref),
                "ids_indexed": len(self._tasks_by_id),
                "duplicate_lines": sum(len(d.duplicate_lines) for d in self._documents.values()),
                "last_full_scan": self._last_full_scan.isoformat() if self._last_full_scan else None,
                "root": str(self._root) if self._root else None,
                "exclude_dirs": sorted(self._exclude_dirs),
                "id_prefix": self.prefix,
                "file_patterns": list(self.config.file_patterns),
            }

    def is_file_stale(self, path: Path) -> bool:
        """Return True if the document has been modified since last parse."""
        try:
            mtime = path.stat().st_mtime
        except OSError:
            return False
        with self._lock:
            cached = self._documents.get(path)
            return cached is None or cached.mtime < mtime
