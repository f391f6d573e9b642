from .task_cache import TASK_FILTERS, TaskCache

__all__ = ["TaskCache", "TASK_FILTERS"]
