"""Domain models."""

from coworker.app.models.agent import (
    ActivityLogEntry,
    ActivityStatus,
    Agent,
    AgentState,
    AgentSummary,
    ImageBlock,
    InvalidStateTransitionError,
    Message,
    PendingImage,
    PendingQuestion,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)
from coworker.app.models.task import (
    MoveResult,
    Priority,
    Task,
    TaskCreate,
    TaskFilters,
    TaskLocation,
    TaskStatus,
    TaskSummary,
    TaskUpdate,
)

__all__ = [
    "ActivityLogEntry",
    "ActivityStatus",
    "Agent",
    "AgentState",
    "AgentSummary",
    "ImageBlock",
    "InvalidStateTransitionError",
    "Message",
    "PendingImage",
    "PendingQuestion",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "MoveResult",
    "Priority",
    "Task",
    "TaskCreate",
    "TaskFilters",
    "TaskLocation",
    "TaskStatus",
    "TaskSummary",
    "TaskUpdate",
]
