"""
Document I/O helpers: line splitting, whole-file reads/writes, discovery.

Reads and writes are all-or-nothing. A write goes to a temp file in the
same directory and is moved into place with os.replace, so a reader never
sees a half-written document.
"""

import fnmatch
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, Iterator, List, Set, Tuple

from ..errors import DocumentAccessError

log = logging.getLogger(__name__)


def split_lines(text: str) -> Tuple[List[str], str]:
    """
    Split document text into lines, remembering the newline style.

    Returns:
        (lines, newline) where newline is "\\r\\n" if the text uses CRLF,
        else "\\n". A trailing newline yields a final empty line, so
        join_lines(*split_lines(text)) == text.
    """
    newline = "\r\n" if "\r\n" in text else "\n"
    return text.split(newline), newline


def join_lines(lines: List[str], newline: str = "\n") -> str:
    return newline.join(lines)


def read_document(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DocumentAccessError(f"Cannot read {path}: {e}") from e


def write_document(path: Path, text: str) -> None:
    """Atomically replace ``path`` with ``text`` (UTF-8)."""
    try:
        fd, temp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp", prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, path)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
    except OSError as e:
        raise DocumentAccessError(f"Cannot write {path}: {e}") from e


def is_prd_file(path: Path, patterns: Iterable[str]) -> bool:
    """True if the file name matches any pattern (case-insensitive)."""
    name = path.name.lower()
    if not name.endswith(".md"):
        return False
    return any(fnmatch.fnmatchcase(name, pattern.lower()) for pattern in patterns)


def find_documents(root: Path, patterns: Iterable[str], exclude_dirs: Set[str]) -> Iterator[Path]:
    """Yield every tracked document under root, skipping excluded directories."""
    patterns = tuple(patterns)
    for path in sorted(root.rglob("*")):
        try:
            rel = path.relative_to(root)
        except ValueError:
            continue
        if any(part in exclude_dirs for part in rel.parts[:-1]):
            continue
        if path.is_file() and is_prd_file(path, patterns):
            yield path
