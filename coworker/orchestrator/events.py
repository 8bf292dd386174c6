"""Agent events broadcast to observers (UI, websocket clients, tests)."""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from coworker.app.models.agent import ActivityLogEntry, Agent, ToolUseBlock

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    AGENT_STATE_CHANGED = "agent_state_changed"
    AGENT_NEEDS_TOOL_APPROVAL = "agent_needs_tool_approval"
    AGENT_NEEDS_USER_FEEDBACK = "agent_needs_user_feedback"
    AGENT_ACTIVITY = "agent_activity"


class AgentEvent(BaseModel):
    """One notification about an agent."""
    type: EventType
    agent_id: str
    data: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


EventCallback = Callable[[AgentEvent], None]


class EventBus:
    """
    Fan-out of agent events.

    Subscribers are either plain callbacks, invoked synchronously on publish,
    or asyncio queues consumed by long-lived readers such as websockets.
    """

    def __init__(self, queue_size: int = 1000):
        self._callbacks: list[EventCallback] = []
        self._queues: list[asyncio.Queue] = []
        self._queue_size = queue_size

    def subscribe(self, callback: EventCallback) -> None:
        self._callbacks.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def open_queue(self) -> asyncio.Queue:
        """Register a queue receiving every future event."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._queues.append(queue)
        return queue

    def close_queue(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def publish(self, event: AgentEvent) -> None:
        """
        Deliver an event to every subscriber.

        A failing callback is logged and does not stop delivery to the others.
        A full queue drops the event for that queue only.
        """
        logger.debug(f"Agent {event.agent_id}: event {event.type.value}")

        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Event callback failed for {event.type.value}: {e}", exc_info=True)

        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Event queue full, dropping {event.type.value} for agent {event.agent_id}")

    # Convenience publishers

    def state_changed(self, agent: Agent) -> None:
        self.publish(AgentEvent(
            type=EventType.AGENT_STATE_CHANGED,
            agent_id=agent.id,
            data={"state": agent.state.value}
        ))

    def needs_tool_approval(self, agent: Agent, tool_use: ToolUseBlock) -> None:
        self.publish(AgentEvent(
            type=EventType.AGENT_NEEDS_TOOL_APPROVAL,
            agent_id=agent.id,
            data={"tool": tool_use.model_dump(exclude={"type"})}
        ))

    def needs_user_feedback(self, agent: Agent, question: str, context: Any = None) -> None:
        self.publish(AgentEvent(
            type=EventType.AGENT_NEEDS_USER_FEEDBACK,
            agent_id=agent.id,
            data={"question": question, "context": context}
        ))

    def activity(self, agent: Agent, entry: ActivityLogEntry) -> None:
        self.publish(AgentEvent(
            type=EventType.AGENT_ACTIVITY,
            agent_id=agent.id,
            data={"entry": entry.model_dump(mode="json")}
        ))
