"""Task records held in the markdown task lists."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator


class TaskLocation(str, Enum):
    """List a task lives in. Membership is mutually exclusive."""
    TODAY = "today"
    DUE_SOON = "due_soon"
    BACKLOG = "backlog"
    DONE = "done"
    DROPPED = "dropped"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_LOCATIONS


# Scan order for lookups: first match wins
ACTIVE_LOCATIONS = (TaskLocation.TODAY, TaskLocation.DUE_SOON, TaskLocation.BACKLOG)
ARCHIVE_LOCATIONS = (TaskLocation.DONE, TaskLocation.DROPPED)
ALL_LOCATIONS = ACTIVE_LOCATIONS + ARCHIVE_LOCATIONS


class TaskStatus(str, Enum):
    """Task status."""
    OPEN = "open"
    COMPLETED = "completed"
    DROPPED = "dropped"


class Priority(str, Enum):
    """Task priority."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class Task(BaseModel):
    """One record block of a task list file."""
    title: str
    id: str
    parent_id: Optional[str] = None
    subtasks: list[str] = []
    status: TaskStatus = TaskStatus.OPEN
    priority: Priority = Priority.NONE
    deadline: Optional[str] = None
    target_date: Optional[str] = None
    days_in_today: int = 0
    completed_date: Optional[str] = None
    attachments: list[str] = []
    extra: dict[str, str] = {}  # unrecognised metadata, kept for round-trips
    notes: list[str] = []

    @property
    def has_deadline(self) -> bool:
        return self.deadline is not None

    def to_summary(self, location: TaskLocation) -> "TaskSummary":
        """Compact listing view: notes are reduced to a count."""
        return TaskSummary(
            id=self.id,
            title=self.title,
            location=location,
            priority=self.priority,
            deadline=self.deadline,
            target_date=self.target_date,
            parent_id=self.parent_id,
            subtasks=list(self.subtasks),
            notes_count=len(self.notes)
        )


class TaskSummary(BaseModel):
    """Task listing entry without note bodies."""
    id: str
    title: str
    location: TaskLocation
    priority: Priority
    deadline: Optional[str] = None
    target_date: Optional[str] = None
    parent_id: Optional[str] = None
    subtasks: list[str] = []
    notes_count: int = 0


class TaskCreate(BaseModel):
    """Input for creating a task."""
    title: str
    location: TaskLocation = TaskLocation.BACKLOG
    priority: Priority = Priority.NONE
    deadline: Optional[str] = None
    target_date: Optional[str] = None
    notes: list[str] = []
    parent_id: Optional[str] = None

    @field_validator("title", "deadline", "target_date", "parent_id")
    @classmethod
    def _single_line(cls, value: Optional[str]) -> Optional[str]:
        return flatten_line(value)


class TaskUpdate(BaseModel):
    """Patch for an existing task. Only fields that are set are applied."""
    title: Optional[str] = None
    priority: Optional[Priority] = None
    deadline: Optional[str] = None
    target_date: Optional[str] = None
    add_notes: list[str] = []

    @field_validator("title", "deadline", "target_date")
    @classmethod
    def _single_line(cls, value: Optional[str]) -> Optional[str]:
        return flatten_line(value)


class TaskFilters(BaseModel):
    """Filters for listing tasks."""
    location: Optional[TaskLocation] = None
    priority: Optional[Priority] = None
    has_deadline: bool = False
    parent_id: Optional[str] = None


class MoveResult(BaseModel):
    """Result of moving a task between active lists."""
    task_id: str
    destination: TaskLocation
    moved: bool
    message: str = ""


def normalize_none(value: Optional[str]) -> Optional[str]:
    """Map the on-disk 'none' marker (and blanks) to None."""
    if value is None:
        return None
    value = value.strip()
    if not value or value.lower() == "none":
        return None
    return value


def flatten_line(value: Optional[str]) -> Optional[str]:
    """Collapse line breaks in a single-line field (titles, dates) into spaces."""
    if value is None:
        return None
    return " ".join(part.strip() for part in value.splitlines() if part.strip())
