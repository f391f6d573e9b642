"""
Exception taxonomy for the task engine.

Parse-level irregularities never raise; they are absorbed into the model.
Everything here is a mutation-level or I/O-level failure that the caller
is expected to report or retry.
"""


class TaskEngineError(Exception):
    """Base class for engine failures."""


class TaskNotFoundError(TaskEngineError, KeyError):
    """No tracked task carries the requested ID."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class StaleTargetError(TaskEngineError):
    """The target line no longer matches what the edit was computed from."""


class DocumentBusyError(TaskEngineError):
    """A write to the same document is already in progress."""


class DocumentAccessError(TaskEngineError):
    """The document could not be read or written."""


class DocumentNotFoundError(TaskEngineError, KeyError):
    """The requested document is not tracked."""

    def __str__(self) -> str:
        return Exception.__str__(self)
