"""Turn loop of one agent: model calls, tool batches and human checkpoints."""

import asyncio
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from coworker.app.config import Settings
from coworker.app.models.agent import (
    ActivityLogEntry,
    Agent,
    AgentState,
    ImageBlock,
    Message,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    parse_content_blocks,
)
from coworker.llm.bedrock_client import BedrockClient, BedrockInvocationError
from coworker.llm.model_selection import ModelTier, select_model_tier
from coworker.llm.prompt_templates import (
    INITIAL_USER_MESSAGE,
    get_agent_system_prompt,
    get_task_context,
)
from coworker.orchestrator.events import EventBus
from coworker.orchestrator.permissions import PermissionGate
from coworker.orchestrator.tool_executor import ToolExecutor, is_image_file, load_image
from coworker.orchestrator.tool_registry import (
    LOOP_TERMINAL_TOOLS,
    MARK_COMPLETE,
    ToolExecutionError,
    tools_for_api,
)
from coworker.store.task_store import TaskStore, TaskStoreError

logger = logging.getLogger(__name__)

SUPERSEDED_BY_FEEDBACK = "Superseded by user feedback"


class TurnOutcome(str, Enum):
    CONTINUE = "continue"  # tool results appended, call the model again
    END_TURN = "end_turn"  # model answered without requesting tools
    PAUSED = "paused"  # waiting on a human (approval, feedback or review)
    STOPPED = "stopped"  # failed or terminated


class ConversationDriver:
    """
    Drives an agent's conversation with the model.

    All tool calls of one model response form a batch. The batch is held
    back while any member still needs approval; once every member is
    approved (or rejected) the whole batch runs in request order and its
    results go back to the model in a single message.

    The driver does no locking of its own: callers serialize run(),
    approve(), reject() and provide_feedback() per agent.
    """

    def __init__(
        self,
        llm_client: BedrockClient,
        settings: Settings,
        gate: PermissionGate,
        executor: ToolExecutor,
        events: EventBus,
        task_store: TaskStore
    ):
        self.llm = llm_client
        self.settings = settings
        self.gate = gate
        self.executor = executor
        self.events = events
        self.task_store = task_store

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def start(self, agent: Agent) -> TurnOutcome:
        """
        Build the agent's prompt and first message, then run the loop.

        Args:
            agent: Freshly created agent in state initializing

        Returns:
            Outcome of the last turn taken
        """
        task_context = ""
        first_message: list[Any] = [TextBlock(text=INITIAL_USER_MESSAGE)]

        if agent.linked_task_id:
            task_context, images = await self._load_linked_task(agent)
            first_message.extend(images)
            if agent.state == AgentState.TERMINATED:
                return TurnOutcome.STOPPED

        agent.system_prompt = get_agent_system_prompt(agent.task_description, task_context)
        agent.append_message(Message(role="user", content=first_message))
        self._set_state(agent, AgentState.WORKING)

        return await self.run(agent)

    async def _load_linked_task(self, agent: Agent) -> tuple[str, list[ImageBlock]]:
        task = await self.task_store.read_task(agent.linked_task_id)
        if task is None:
            logger.warning(f"Agent {agent.id}: linked task {agent.linked_task_id} not found")
            return "", []

        loaded: list[str] = []
        if task.attachments:
            try:
                loaded = await self.task_store.get_attachments(task.id, Path(agent.workspace_dir))
            except OSError as e:
                logger.error(f"Agent {agent.id}: failed to load attachments: {e}")

        images: list[ImageBlock] = []
        image_names: list[str] = []
        for filename in loaded:
            if not is_image_file(filename):
                continue
            try:
                images.append(load_image(Path(agent.workspace_dir) / filename).to_block())
                image_names.append(filename)
            except OSError as e:
                logger.error(f"Agent {agent.id}: failed to load image {filename}: {e}")

        if images:
            logger.info(f"Agent {agent.id}: including {len(images)} pre-loaded image(s) in initial context")
        return get_task_context(task, loaded, image_names), images

    async def run(self, agent: Agent) -> TurnOutcome:
        """Take turns until the agent pauses, ends its turn, fails or is terminated."""
        while True:
            outcome = await self.take_turn(agent)
            if outcome != TurnOutcome.CONTINUE:
                logger.info(f"Agent {agent.id}: loop stopped ({outcome.value}, state={agent.state.value})")
                return outcome

    async def take_turn(self, agent: Agent) -> TurnOutcome:
        """
        One request/response exchange with the model.

        Returns:
            TurnOutcome telling the caller whether to keep looping
        """
        if agent.state.is_terminal:
            return TurnOutcome.STOPPED
        if agent.state != AgentState.WORKING:
            return TurnOutcome.PAUSED
        if not agent.conversation or agent.conversation[-1].role != "user":
            # Nothing new for the model to answer
            return TurnOutcome.END_TURN

        model_id = self._model_id(select_model_tier(agent))
        try:
            response = await asyncio.to_thread(
                self.llm.create_message,
                model_id=model_id,
                messages=[message.to_api() for message in agent.conversation],
                system_prompt=agent.system_prompt,
                tools=tools_for_api(),
                max_tokens=self.settings.max_tokens
            )
        except BedrockInvocationError as e:
            if agent.state == AgentState.TERMINATED:
                return TurnOutcome.STOPPED
            logger.error(f"Agent {agent.id}: model call failed: {e}")
            agent.error = str(e)
            self._set_state(agent, AgentState.FAILED)
            return TurnOutcome.STOPPED

        # terminate() does not wait for the model; drop the late response
        if agent.state == AgentState.TERMINATED:
            logger.info(f"Agent {agent.id}: discarding response received after termination")
            return TurnOutcome.STOPPED

        agent.last_model_used = model_id
        if agent.pending_image is not None and agent.pending_image.sent:
            agent.pending_image = None

        message = Message(role="assistant", content=parse_content_blocks(response.content))
        agent.append_message(message)

        tool_uses = message.tool_uses
        if not tool_uses:
            if message.text:
                agent.last_response = message.text
            logger.info(f"Agent {agent.id}: turn complete (stop_reason={response.stop_reason})")
            return TurnOutcome.END_TURN

        agent.pending_batch = list(tool_uses)
        agent.approved_tool_ids = []
        agent.rejected_tools = {}
        return await self._advance_batch(agent)

    def _model_id(self, tier: ModelTier) -> str:
        if tier == ModelTier.CAPABLE:
            return self.settings.capable_model_id
        return self.settings.cheap_model_id

    # ------------------------------------------------------------------
    # Tool batches
    # ------------------------------------------------------------------

    def _next_gated(self, agent: Agent) -> Optional[ToolUseBlock]:
        for tool_use in agent.pending_batch:
            if tool_use.id in agent.approved_tool_ids or tool_use.id in agent.rejected_tools:
                continue
            if self.gate.requires_approval(tool_use.name):
                return tool_use
        return None

    async def _advance_batch(self, agent: Agent) -> TurnOutcome:
        """Pause on the next member needing approval, or run the whole batch."""
        gated = self._next_gated(agent)
        if gated is not None:
            agent.pending_tool_use = gated
            self._set_state(agent, AgentState.WAITING_FOR_TOOL_APPROVAL)
            self.events.needs_tool_approval(agent, gated)
            logger.info(f"Agent {agent.id}: waiting for approval of {gated.name} ({gated.id})")
            return TurnOutcome.PAUSED

        results: list[Any] = []
        terminal_tools: list[str] = []
        for tool_use in agent.pending_batch:
            if tool_use.id in agent.rejected_tools:
                reason = agent.rejected_tools[tool_use.id]
                results.append(_error_result(tool_use.id, f"Tool use rejected by user: {reason}"))
                continue

            block = await self._execute_logged(agent, tool_use)
            if agent.state == AgentState.TERMINATED:
                return TurnOutcome.STOPPED

            results.append(block)
            agent.last_tool_used = tool_use.name
            if tool_use.name in LOOP_TERMINAL_TOOLS and not block.is_error:
                terminal_tools.append(tool_use.name)

        agent.append_message(Message(role="user", content=results + self._staged_image(agent)))
        agent.clear_batch()

        if MARK_COMPLETE in terminal_tools:
            await self._attach_artifact(agent)

        if terminal_tools:
            return TurnOutcome.PAUSED

        self._set_state(agent, AgentState.WORKING)
        return TurnOutcome.CONTINUE

    def _staged_image(self, agent: Agent) -> list[ImageBlock]:
        image = agent.pending_image
        if image is None or image.sent:
            return []
        image.sent = True
        return [image.to_block()]

    async def _execute_logged(self, agent: Agent, tool_use: ToolUseBlock) -> ToolResultBlock:
        entry = ActivityLogEntry(
            id=f"activity-{uuid.uuid4().hex[:12]}",
            timestamp=datetime.now(timezone.utc),
            tool=tool_use.name,
            input=tool_use.input,
            model=agent.last_model_used or "unknown"
        )
        agent.activity_log.append(entry)
        self.events.activity(agent, entry)

        started = time.monotonic()
        try:
            result = await self.executor.execute(agent, tool_use)
        except ToolExecutionError as e:
            entry.mark_error(str(e), _elapsed_ms(started))
            self.events.activity(agent, entry)
            logger.warning(f"Agent {agent.id}: {tool_use.name} failed: {e}")
            return _error_result(tool_use.id, str(e))
        except Exception as e:
            error = f"Unexpected error in {tool_use.name}: {type(e).__name__}: {e}"
            entry.mark_error(error, _elapsed_ms(started))
            self.events.activity(agent, entry)
            logger.error(f"Agent {agent.id}: {error}", exc_info=True)
            return _error_result(tool_use.id, error)

        entry.mark_success(result, _elapsed_ms(started))
        self.events.activity(agent, entry)
        return ToolResultBlock(tool_use_id=tool_use.id, content=json.dumps(result))

    async def _attach_artifact(self, agent: Agent) -> None:
        if not agent.linked_task_id or not agent.primary_artifact:
            return
        try:
            await self.task_store.attach_artifact_note(
                agent.linked_task_id,
                Path(agent.workspace_dir) / agent.primary_artifact,
                agent_id=agent.id
            )
        except (TaskStoreError, OSError) as e:
            logger.warning(f"Agent {agent.id}: failed to attach artifact to task {agent.linked_task_id}: {e}")

    # ------------------------------------------------------------------
    # Human checkpoints
    # ------------------------------------------------------------------

    async def approve(self, agent: Agent) -> bool:
        """
        Approve the pending tool and move the batch forward.

        Args:
            agent: Agent in state waiting_for_tool_approval

        Returns:
            True if the loop should resume
        """
        tool_use = agent.pending_tool_use
        logger.info(f"Agent {agent.id}: {tool_use.name} ({tool_use.id}) approved")
        agent.approved_tool_ids.append(tool_use.id)
        agent.pending_tool_use = None
        self._set_state(agent, AgentState.WORKING)
        return await self._advance_batch(agent) == TurnOutcome.CONTINUE

    async def reject(self, agent: Agent, reason: str) -> bool:
        """
        Reject the pending tool. The model receives the reason as a tool error.

        Args:
            agent: Agent in state waiting_for_tool_approval
            reason: Why the user rejected the call

        Returns:
            True if the loop should resume
        """
        tool_use = agent.pending_tool_use
        logger.info(f"Agent {agent.id}: {tool_use.name} ({tool_use.id}) rejected: {reason}")
        agent.rejected_tools[tool_use.id] = reason
        agent.pending_tool_use = None
        self._set_state(agent, AgentState.WORKING)
        return await self._advance_batch(agent) == TurnOutcome.CONTINUE

    async def provide_feedback(self, agent: Agent, text: str) -> bool:
        """
        Send free-form user feedback to the agent.

        An unresolved tool batch is closed first, every member answered with
        an error result, so the conversation stays valid.

        Args:
            agent: Agent in any non-terminal state
            text: Feedback text

        Returns:
            True (the loop always resumes)
        """
        content: list[Any] = [
            _error_result(tool_use.id, SUPERSEDED_BY_FEEDBACK) for tool_use in agent.pending_batch
        ]
        if content:
            logger.info(f"Agent {agent.id}: feedback supersedes {len(content)} pending tool call(s)")
        content.extend(self._staged_image(agent))
        content.append(TextBlock(text=f"User feedback: {text}"))

        agent.append_message(Message(role="user", content=content))
        agent.clear_batch()
        agent.pending_question = None
        self._set_state(agent, AgentState.WORKING)
        return True

    def _set_state(self, agent: Agent, state: AgentState) -> None:
        if agent.state == state:
            return
        agent.transition_to(state)
        self.events.state_changed(agent)


def _error_result(tool_use_id: str, error: str) -> ToolResultBlock:
    return ToolResultBlock(
        tool_use_id=tool_use_id,
        content=json.dumps({"success": False, "error": error}),
        is_error=True
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
