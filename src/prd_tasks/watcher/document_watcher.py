"""
Document watcher — polling-based.

Filesystem events are not forwarded reliably from every mount (network
shares, container volumes), so changes are found by periodic mtime polling
instead of an event-based observer.

The watcher runs a daemon thread that:
1. Walks the workspace root every POLL_INTERVAL seconds
2. Compares document mtimes against the previous poll
3. Enqueues a cache refresh for every document that changed, appeared, or disappeared

The cache ignores refreshes for documents it is writing itself, so the
watcher does not need to know about the cache's own writes.
"""

import logging
import os
import threading
from pathlib import Path
from typing import AbstractSet, Dict, Iterable, Optional

from ..config import DEFAULT_FILE_PATTERNS
from ..utils.files import find_documents

log = logging.getLogger(__name__)

# Default polling interval in seconds (configurable via POLL_INTERVAL env var)
_DEFAULT_POLL_INTERVAL = 2.0


class DocumentWatcher:
    """
    Polling-based document watcher.

    Usage:
        watcher = DocumentWatcher(cache, root, exclude_dirs)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        cache,
        root: Path,
        exclude_dirs: AbstractSet[str],
        poll_interval: Optional[float] = None,
        file_patterns: Optional[Iterable[str]] = None,
    ) -> None:
        self._cache = cache
        self._root = root
        self._exclude_dirs = set(exclude_dirs)
        self._poll_interval = poll_interval or float(
            os.environ.get("POLL_INTERVAL", _DEFAULT_POLL_INTERVAL)
        )
        if file_patterns is None:
            config = getattr(cache, "config", None)
            file_patterns = config.file_patterns if config else DEFAULT_FILE_PATTERNS
        self._file_patterns = tuple(file_patterns)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Known documents and their mtimes from the last poll cycle
        self._known_files: Dict[Path, float] = {}

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def start(self) -> None:
        """Start the polling thread (daemon)."""
        log.info("Starting document watcher (polling every %.1fs)", self._poll_interval)
        self._known_files = self._snapshot()
        self._thread = threading.Thread(
            target=self._poll_loop, daemon=True, name="prd-watcher"
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal the poll thread to stop and wait for it."""
        log.info("Stopping document watcher")
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._poll_interval + 2)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _poll_loop(self) -> None:
        while not self._stop_event.is_set():
            self._stop_event.wait(self._poll_interval)
            if self._stop_event.is_set():
                break
            try:
                self.check_for_changes()
            except Exception:
                log.exception("Error during poll cycle")

    def check_for_changes(self) -> int:
        """Single poll cycle. Returns the number of refreshes enqueued."""
        current = self._snapshot()
        enqueued = 0

        for path, mtime in current.items():
            old_mtime = self._known_files.get(path)
            if old_mtime is None:
                log.debug("New document detected: %s", path)
            elif mtime > old_mtime:
                log.debug("Modified document: %s", path)
            else:
                continue
            self._cache.enqueue_refresh(path)
            enqueued += 1

        for path in self._known_files:
            if path not in current:
                log.debug("Deleted document: %s", path)
                self._cache.enqueue_refresh(path)
                enqueued += 1

        self._known_files = current
        return enqueued

    def _snapshot(self) -> Dict[Path, float]:
        """Walk the root and return {path: mtime} for every tracked document."""
        snapshot: Dict[Path, float] = {}
        try:
            for path in find_documents(self._root, self._file_patterns, self._exclude_dirs):
                try:
                    snapshot[path] = path.stat().st_mtime
                except OSError:
                    pass
        except OSError:
            log.exception("Error walking %s for documents", self._root)
        return snapshot
