"""Markdown task store."""

from coworker.store.markdown_format import (
    TaskFile,
    generate_task_id,
    parse_task_file,
    serialize_task_file,
)
from coworker.store.task_store import (
    TaskNotFoundError,
    TaskStore,
    TaskStoreError,
    TaskValidationError,
)

__all__ = [
    "TaskFile",
    "generate_task_id",
    "parse_task_file",
    "serialize_task_file",
    "TaskNotFoundError",
    "TaskStore",
    "TaskStoreError",
    "TaskValidationError",
]
