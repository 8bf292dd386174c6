"""Agent records, conversation content blocks and activity log entries."""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class AgentState(str, Enum):
    """Agent lifecycle state."""
    INITIALIZING = "initializing"
    WORKING = "working"
    WAITING_FOR_TOOL_APPROVAL = "waiting_for_tool_approval"
    WAITING_FOR_USER_FEEDBACK = "waiting_for_user_feedback"
    WAITING_FOR_COMPLETION_REVIEW = "waiting_for_completion_review"
    COMPLETED = "completed"
    FAILED = "failed"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentState.FAILED, AgentState.TERMINATED)


ALLOWED_TRANSITIONS: dict[AgentState, frozenset[AgentState]] = {
    AgentState.INITIALIZING: frozenset({
        AgentState.WORKING,
        AgentState.FAILED,
        AgentState.TERMINATED,
    }),
    AgentState.WORKING: frozenset({
        AgentState.WORKING,
        AgentState.WAITING_FOR_TOOL_APPROVAL,
        AgentState.WAITING_FOR_USER_FEEDBACK,
        AgentState.WAITING_FOR_COMPLETION_REVIEW,
        AgentState.COMPLETED,
        AgentState.FAILED,
        AgentState.TERMINATED,
    }),
    AgentState.WAITING_FOR_TOOL_APPROVAL: frozenset({AgentState.WORKING, AgentState.TERMINATED}),
    AgentState.WAITING_FOR_USER_FEEDBACK: frozenset({AgentState.WORKING, AgentState.TERMINATED}),
    AgentState.WAITING_FOR_COMPLETION_REVIEW: frozenset({AgentState.WORKING, AgentState.TERMINATED}),
    AgentState.COMPLETED: frozenset({AgentState.WORKING, AgentState.TERMINATED}),
    AgentState.FAILED: frozenset({AgentState.TERMINATED}),
    AgentState.TERMINATED: frozenset(),
}


class InvalidStateTransitionError(Exception):
    """Raised when an agent is moved along an edge the transition table forbids."""
    pass


# ---------------------------------------------------------------------------
# Conversation content
# ---------------------------------------------------------------------------

class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: dict[str, Any] = {}


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: Optional[bool] = None


class ImageSource(BaseModel):
    type: Literal["base64"] = "base64"
    media_type: str
    data: str


class ImageBlock(BaseModel):
    type: Literal["image"] = "image"
    source: ImageSource


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock, ImageBlock],
    Field(discriminator="type"),
]

_content_adapter = TypeAdapter(list[ContentBlock])


def parse_content_blocks(raw: list[dict[str, Any]]) -> list[ContentBlock]:
    """
    Parse content blocks returned by the model API.

    Block types the conversation does not model (e.g. thinking) are skipped.

    Args:
        raw: Content blocks as JSON dicts

    Returns:
        Typed content blocks
    """
    known = [block for block in raw if block.get("type") in ("text", "tool_use", "tool_result", "image")]
    return _content_adapter.validate_python(known)


class Message(BaseModel):
    """One conversation message. Messages are append-only."""
    role: Literal["user", "assistant"]
    content: list[ContentBlock]

    def to_api(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": [block.model_dump(exclude_none=True) for block in self.content],
        }

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock))


# ---------------------------------------------------------------------------
# Pending human interaction
# ---------------------------------------------------------------------------

class PendingQuestion(BaseModel):
    question: str
    context: Optional[str] = None


class PendingImage(BaseModel):
    """Decoded image staged for the next tool-result message."""
    filename: str
    media_type: str
    base64: str
    sent: bool = False  # included in a message, cleared after the next model call

    def to_block(self) -> ImageBlock:
        return ImageBlock(source=ImageSource(media_type=self.media_type, data=self.base64))


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------

class ActivityStatus(str, Enum):
    EXECUTING = "executing"
    SUCCESS = "success"
    ERROR = "error"


class ActivityLogEntry(BaseModel):
    """Audit record of one tool execution. Immutable once finalized."""
    id: str
    timestamp: datetime
    tool: str
    input: dict[str, Any] = {}
    status: ActivityStatus = ActivityStatus.EXECUTING
    model: str = "unknown"
    result: Optional[Any] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None

    def mark_success(self, result: Any, duration_ms: int) -> None:
        self._ensure_open()
        self.status = ActivityStatus.SUCCESS
        self.result = result
        self.duration_ms = duration_ms

    def mark_error(self, error: str, duration_ms: int) -> None:
        self._ensure_open()
        self.status = ActivityStatus.ERROR
        self.error = error
        self.duration_ms = duration_ms

    def _ensure_open(self) -> None:
        if self.status != ActivityStatus.EXECUTING:
            raise ValueError(f"Activity entry {self.id} already finalized as {self.status.value}")


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class Agent(BaseModel):
    """One autonomous run of a delegated task."""
    id: str
    name: str
    task_description: str
    linked_task_id: Optional[str] = None
    state: AgentState = AgentState.INITIALIZING
    conversation: list[Message] = []
    system_prompt: str = ""

    pending_tool_use: Optional[ToolUseBlock] = None
    pending_question: Optional[PendingQuestion] = None
    pending_image: Optional[PendingImage] = None

    # Tool batch requested by the latest assistant message, awaiting resolution
    pending_batch: list[ToolUseBlock] = []
    approved_tool_ids: list[str] = []
    rejected_tools: dict[str, str] = {}  # tool_use_id -> rejection reason

    workspace_dir: Path
    created_files: list[str] = []
    primary_artifact: Optional[str] = None
    completion_summary: Optional[str] = None
    activity_log: list[ActivityLogEntry] = []

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_model_used: Optional[str] = None
    last_tool_used: Optional[str] = None
    last_response: Optional[str] = None
    error: Optional[str] = None

    def transition_to(self, new_state: AgentState) -> None:
        """
        Move the agent to a new state.

        Args:
            new_state: Target state

        Raises:
            InvalidStateTransitionError: If the transition table forbids the edge
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(
                f"Agent {self.id} cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state

    def append_message(self, message: Message) -> None:
        self.conversation.append(message)

    def clear_batch(self) -> None:
        self.pending_batch = []
        self.approved_tool_ids = []
        self.rejected_tools = {}
        self.pending_tool_use = None

    def to_summary(self) -> "AgentSummary":
        return AgentSummary(
            id=self.id,
            name=self.name,
            task_description=self.task_description,
            linked_task_id=self.linked_task_id,
            state=self.state,
            created_at=self.created_at,
            pending_tool_use=self.pending_tool_use,
            pending_question=self.pending_question,
            completion_summary=self.completion_summary,
            primary_artifact=self.primary_artifact,
            created_files=list(self.created_files),
            error=self.error
        )


class AgentSummary(BaseModel):
    """Agent listing entry without conversation or activity log."""
    id: str
    name: str
    task_description: str
    linked_task_id: Optional[str] = None
    state: AgentState
    created_at: datetime
    pending_tool_use: Optional[ToolUseBlock] = None
    pending_question: Optional[PendingQuestion] = None
    completion_summary: Optional[str] = None
    primary_artifact: Optional[str] = None
    created_files: list[str] = []
    error: Optional[str] = None
