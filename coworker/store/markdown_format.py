"""Markdown task list format.

A list file is an optional header followed by record blocks::

    ## Ship report
    - id: ship-report
    - parent_id: none
    - subtasks: none
    - status: open
    - priority: high
    - deadline: none
    - target_date: 2025-03-01
    - days_in_today: 0
    - notes:
      - [Created by Agent agent-1 - 2025-02-01 09:00:00]

Parsing is tolerant: unknown priorities/statuses fall back to defaults,
unknown metadata keys are carried in ``Task.extra`` and blocks without an
id are dropped.
"""

import re
from typing import Optional

from pydantic import BaseModel

from coworker.app.models.task import Priority, Task, TaskStatus, flatten_line, normalize_none

TITLE_MARKER = "## "
NOTE_INDENT = "  "
NONE = "none"


class TaskFile(BaseModel):
    """In-memory document for one list file."""
    header: list[str] = []
    tasks: list[Task] = []

    def find(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def remove(self, task_id: str) -> Optional[Task]:
        for index, task in enumerate(self.tasks):
            if task.id == task_id:
                return self.tasks.pop(index)
        return None


def generate_task_id(title: str) -> str:
    """
    Slugify a task title into an id.

    Args:
        title: Task title

    Returns:
        Lowercase, hyphenated id of at most 50 characters
    """
    slug = re.sub(r"[^a-z0-9\s-]", "", title.lower()).strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug[:50] or "task"


def split_list(value: str) -> list[str]:
    """Parse a comma-joined field ('none' means empty)."""
    if normalize_none(value) is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip() and item.strip() != NONE]


def join_list(items: list[str]) -> str:
    return ", ".join(items) if items else NONE


def single_line(text: str) -> str:
    """Notes are single-line; embedded newlines are stored escaped."""
    return text.replace("\r\n", "\n").replace("\n", "\\n")


def parse_task_file(content: str) -> TaskFile:
    """
    Parse a task list file.

    Args:
        content: Raw file content

    Returns:
        TaskFile with header lines and parsed tasks
    """
    header: list[str] = []
    blocks: list[list[str]] = []

    for line in content.splitlines():
        if line.startswith(TITLE_MARKER):
            blocks.append([line])
        elif blocks:
            blocks[-1].append(line)
        else:
            header.append(line)

    while header and not header[-1].strip():
        header.pop()

    tasks = []
    for block in blocks:
        task = _parse_block(block)
        if task is not None:
            tasks.append(task)

    return TaskFile(header=header, tasks=tasks)


def _parse_block(lines: list[str]) -> Optional[Task]:
    fields: dict[str, str] = {}
    extra: dict[str, str] = {}
    notes: list[str] = []
    in_notes = False

    for line in lines[1:]:
        stripped = line.strip()
        if not stripped.startswith("- "):
            continue

        if line.startswith((" ", "\t")):
            if in_notes:
                notes.append(stripped[2:])
            continue

        key, sep, value = stripped[2:].partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()

        if key == "notes":
            in_notes = True
        elif key in _KNOWN_FIELDS:
            fields[key] = value
        else:
            extra[key] = value

    task_id = normalize_none(fields.get("id"))
    if task_id is None:
        # Unreferenceable record
        return None

    return Task(
        title=lines[0][len(TITLE_MARKER):].strip(),
        id=task_id,
        parent_id=normalize_none(fields.get("parent_id")),
        subtasks=split_list(fields.get("subtasks", NONE)),
        status=_enum_or_default(TaskStatus, fields.get("status"), TaskStatus.OPEN),
        priority=_enum_or_default(Priority, fields.get("priority"), Priority.NONE),
        deadline=normalize_none(fields.get("deadline")),
        target_date=normalize_none(fields.get("target_date")),
        days_in_today=_int_or_zero(fields.get("days_in_today")),
        completed_date=normalize_none(fields.get("completed_date")),
        attachments=split_list(fields.get("attachments", NONE)),
        extra=extra,
        notes=notes
    )


_KNOWN_FIELDS = frozenset({
    "id",
    "parent_id",
    "subtasks",
    "status",
    "priority",
    "deadline",
    "target_date",
    "days_in_today",
    "completed_date",
    "attachments",
})


def _enum_or_default(enum_cls, value: Optional[str], default):
    try:
        return enum_cls((value or "").strip().lower())
    except ValueError:
        return default


def _int_or_zero(value: Optional[str]) -> int:
    try:
        return int((value or "").strip())
    except ValueError:
        return 0


def serialize_task(task: Task) -> str:
    """Render one record block in canonical field order."""
    lines = [
        f"{TITLE_MARKER}{flatten_line(task.title)}",
        f"- id: {task.id}",
        f"- parent_id: {task.parent_id or NONE}",
        f"- subtasks: {join_list(task.subtasks)}",
        f"- status: {task.status.value}",
        f"- priority: {task.priority.value}",
        f"- deadline: {flatten_line(task.deadline) or NONE}",
        f"- target_date: {flatten_line(task.target_date) or NONE}",
        f"- days_in_today: {task.days_in_today}",
    ]
    if task.completed_date:
        lines.append(f"- completed_date: {task.completed_date}")
    if task.attachments:
        lines.append(f"- attachments: {join_list(task.attachments)}")
    for key, value in task.extra.items():
        lines.append(f"- {key}: {flatten_line(value)}")

    lines.append("- notes:")
    lines.extend(f"{NOTE_INDENT}- {single_line(note)}" for note in task.notes)
    return "\n".join(lines)


def serialize_task_file(task_file: TaskFile) -> str:
    """
    Render a whole list file. Inverse of parse_task_file.

    Args:
        task_file: Document to render

    Returns:
        File content ending in a newline (empty string for an empty document)
    """
    sections = []
    if task_file.header:
        sections.append("\n".join(task_file.header))
    sections.extend(serialize_task(task) for task in task_file.tasks)
    if not sections:
        return ""
    return "\n\n".join(sections) + "\n"
