"""
Task ID allocation.

IDs look like ``PRD-100001``: a prefix, a dash and a six digit, zero padded
number. New IDs are always strictly above the highest known one; gaps left
by deleted tasks are never refilled.
"""

import logging
import re
import threading
import time
from typing import FrozenSet, Iterable, List, Optional, Pattern, Set

log = logging.getLogger(__name__)

DEFAULT_PREFIX = "PRD"
DEFAULT_FLOOR = 100000
DEFAULT_MAX_ATTEMPTS = 100


def id_pattern(prefix: str = DEFAULT_PREFIX) -> Pattern[str]:
    """
    Regex matching an ID token for ``prefix``.

    The token must not be glued to a longer word or number on either side,
    so ``XPRD-100001`` and ``PRD-1000012`` do not match.
    """
    return re.compile(rf"(?<![\w-]){re.escape(prefix)}-\d{{6}}(?!\d)")


def format_id(number: int, prefix: str = DEFAULT_PREFIX) -> str:
    return f"{prefix}-{number:06d}"


def suffix_of(task_id: str, prefix: str = DEFAULT_PREFIX) -> Optional[int]:
    """Numeric part of ``task_id``, or None if it is not a ``PREFIX-<digits>`` ID."""
    m = re.fullmatch(rf"{re.escape(prefix)}-(\d+)", task_id or "")
    return int(m.group(1)) if m else None


class IdAllocator:
    """
    Thread-safe ID allocator over a set of known IDs.

    Every successful allocation is reserved (added to the known set) before
    it is returned, so repeated calls never hand out the same ID twice.

    Usage:
        allocator = IdAllocator(known=["PRD-100001", "PRD-100005"])
        allocator.allocate()                  # "PRD-100006"
        allocator.allocate_next("PRD-100001")  # "PRD-100002"
    """

    def __init__(
        self,
        prefix: str = DEFAULT_PREFIX,
        floor: int = DEFAULT_FLOOR,
        known: Iterable[str] = (),
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.prefix = prefix
        self.floor = floor
        self.max_attempts = max_attempts
        self._lock = threading.Lock()
        self._known: Set[str] = set(known)
        self._pattern = re.compile(rf"{re.escape(prefix)}-(\d{{6}})")

    # ------------------------------------------------------------------
    # Known-ID bookkeeping
    # ------------------------------------------------------------------

    @property
    def known(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._known)

    def is_known(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._known

    def observe(self, ids: Iterable[str]) -> None:
        """Record IDs that exist somewhere so they are never handed out."""
        with self._lock:
            self._known.update(i for i in ids if i)

    def forget(self, ids: Iterable[str]) -> None:
        """Drop IDs whose owning document is no longer tracked."""
        with self._lock:
            self._known.difference_update(ids)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate(self) -> str:
        """
        Return ``PREFIX-(highest known + 1)``.

        The floor only seeds the very first ID (floor + 1) when no conforming
        ID is known yet; existing IDs below it are continued, not skipped.
        """
        with self._lock:
            new_id = format_id(self._highest() + 1, self.prefix)
            self._known.add(new_id)
            return new_id

    def allocate_next(self, after: str) -> str:
        """
        Return the first free ID above ``after``.

        Probes at most ``max_attempts`` consecutive numbers; past that a
        time-derived fallback is returned (unique, but not six digits).
        A malformed ``after`` falls back to allocate().
        """
        base = suffix_of(after, self.prefix)
        if base is None:
            return self.allocate()

        with self._lock:
            candidate = base
            for _ in range(self.max_attempts):
                candidate += 1
                new_id = format_id(candidate, self.prefix)
                if new_id not in self._known:
                    self._known.add(new_id)
                    return new_id

            fallback = self._fallback_id()
            log.warning(
                "No free ID within %d of %s, using fallback %s",
                self.max_attempts, after, fallback,
            )
            return fallback

    def allocate_sequence(self, count: int) -> List[str]:
        """Reserve ``count`` consecutive IDs just above the current maximum."""
        with self._lock:
            start = self._highest() + 1
            ids = [format_id(start + i, self.prefix) for i in range(count)]
            self._known.update(ids)
            return ids

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _highest(self) -> int:
        """Largest known six-digit suffix; the floor only when none is known."""
        suffixes = [
            int(m.group(1))
            for m in (self._pattern.fullmatch(task_id) for task_id in self._known)
            if m
        ]
        return max(suffixes) if suffixes else self.floor

    def _fallback_id(self) -> str:
        stamp = int(time.time() * 1000)
        new_id = f"{self.prefix}-{stamp}"
        while new_id in self._known:
            stamp += 1
            new_id = f"{self.prefix}-{stamp}"
        self._known.add(new_id)
        return new_id
