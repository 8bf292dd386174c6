"""Agent registry and control surface: spawn, approve, reject, feedback, terminate."""

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from coworker.app.config import Settings, UserSettings, load_user_settings
from coworker.app.models.agent import (
    ALLOWED_TRANSITIONS,
    ActivityLogEntry,
    Agent,
    AgentState,
    AgentSummary,
)
from coworker.llm.bedrock_client import BedrockClient
from coworker.locking import LocalLockManager, LockManager
from coworker.orchestrator.conversation_driver import ConversationDriver
from coworker.orchestrator.events import EventBus
from coworker.orchestrator.permissions import PermissionGate
from coworker.orchestrator.tool_executor import ToolExecutor, resolve_workspace_path
from coworker.orchestrator.tool_registry import ToolExecutionError
from coworker.orchestrator.web_tools import WebClient
from coworker.store.task_store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_ARTIFACT = "artifact.md"


class OperationResult(BaseModel):
    """Outcome of a control-surface call."""
    success: bool
    error: Optional[str] = None


class WorkspaceFile(BaseModel):
    filename: str
    content: str


class Orchestrator:
    """
    Owns every live agent and serializes all work on each of them.

    Each agent has an asyncio.Lock held by its background run and by the
    approve, reject and feedback operations, so a human action never
    interleaves with a turn in progress. terminate() deliberately skips the
    lock: it marks the agent terminated and the running turn discards
    whatever it receives next.
    """

    def __init__(
        self,
        settings: Settings,
        llm_client: BedrockClient,
        task_store: TaskStore,
        events: Optional[EventBus] = None,
        web_client: Optional[WebClient] = None
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Process settings
            llm_client: Bedrock client used by every agent
            task_store: Shared task store
            events: Event bus (default: a new one)
            web_client: Client for web tools (default: built from settings)
        """
        self.settings = settings
        self.task_store = task_store
        self.events = events or EventBus()
        self.web = web_client or WebClient(
            timeout=settings.fetch_timeout,
            max_bytes=settings.fetch_max_bytes,
            max_chars=settings.fetch_max_chars
        )

        self.gate = PermissionGate(self.load_user_settings)
        self.executor = ToolExecutor(
            task_store=task_store,
            load_settings=self.load_user_settings,
            web_client=self.web,
            events=self.events,
            delegate=self._delegate
        )
        self.driver = ConversationDriver(
            llm_client=llm_client,
            settings=settings,
            gate=self.gate,
            executor=self.executor,
            events=self.events,
            task_store=task_store
        )

        self._agents: dict[str, Agent] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._runs: dict[str, asyncio.Task] = {}

    def load_user_settings(self) -> UserSettings:
        return load_user_settings(self.settings.user_settings_path)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def spawn(self, task_description: str, linked_task_id: Optional[str] = None) -> Agent:
        """
        Create an agent with its own workspace and start it in the background.

        Args:
            task_description: What the agent should do
            linked_task_id: Optional task whose context and attachments are loaded

        Returns:
            The new agent (its first turn may still be running)

        Raises:
            AgentSpawnError: If the description is empty or the workspace cannot be created
        """
        if not task_description or not task_description.strip():
            raise AgentSpawnError("Task description must not be empty")

        agent_id = f"agent-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        workspace_dir = self.settings.agent_workspaces_dir / agent_id
        try:
            workspace_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create workspace for {agent_id}: {e}")
            raise AgentSpawnError(f"Failed to create workspace: {e}") from e

        agent = Agent(
            id=agent_id,
            name=task_description[:50],
            task_description=task_description,
            linked_task_id=linked_task_id,
            workspace_dir=workspace_dir
        )
        self._agents[agent_id] = agent
        self._locks[agent_id] = asyncio.Lock()

        logger.info(f"Agent {agent_id}: created for task: {task_description}")
        self._start_run(agent, lambda: self.driver.start(agent))
        return agent

    def _start_run(self, agent: Agent, step: Callable[[], Awaitable[Any]]) -> Optional[asyncio.Task]:
        # The lock is looked up now; terminate() may drop it before the task first runs
        lock = self._locks.get(agent.id)
        if lock is None:
            return None
        run = asyncio.create_task(self._guarded_run(agent, lock, step), name=f"run-{agent.id}")
        self._runs[agent.id] = run
        return run

    async def _guarded_run(
        self,
        agent: Agent,
        lock: asyncio.Lock,
        step: Callable[[], Awaitable[Any]]
    ) -> None:
        try:
            async with lock:
                if agent.state == AgentState.TERMINATED:
                    return
                await step()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Agent {agent.id}: run failed: {e}", exc_info=True)
            agent.error = str(e)
            if AgentState.FAILED in ALLOWED_TRANSITIONS[agent.state]:
                agent.transition_to(AgentState.FAILED)
                self.events.state_changed(agent)
        finally:
            if self._runs.get(agent.id) is asyncio.current_task():
                del self._runs[agent.id]

    async def _delegate(self, task_description: str, linked_task_id: str) -> Agent:
        try:
            return await self.spawn(task_description, linked_task_id=linked_task_id)
        except AgentSpawnError as e:
            raise ToolExecutionError(str(e)) from e

    async def wait_for_agent(self, agent_id: str) -> None:
        """Wait until the agent has no background run in progress."""
        while True:
            run = self._runs.get(agent_id)
            if run is None or run.done():
                return
            await asyncio.wait({run})

    async def shutdown(self) -> None:
        """Cancel outstanding runs and release the web client."""
        runs = list(self._runs.values())
        for run in runs:
            run.cancel()
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)
        await self.web.aclose()
        logger.info(f"Orchestrator shut down ({len(runs)} run(s) cancelled)")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_agent(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return agent

    def _require_live(self, agent: Agent) -> None:
        # Terminated while the caller waited for the agent lock
        if agent.state == AgentState.TERMINATED:
            raise AgentNotFoundError(f"Agent {agent.id} not found")

    def list_agents(self) -> list[AgentSummary]:
        return [agent.to_summary() for agent in self._agents.values()]

    def get_activity_log(self, agent_id: str) -> list[ActivityLogEntry]:
        return list(self.get_agent(agent_id).activity_log)

    def get_primary_artifact(self, agent_id: str) -> Optional[WorkspaceFile]:
        """
        Read the agent's main deliverable.

        Falls back to artifact.md when the agent has not written any file.

        Returns:
            WorkspaceFile, or None if the file does not exist
        """
        agent = self.get_agent(agent_id)
        filename = agent.primary_artifact or DEFAULT_ARTIFACT
        path = Path(agent.workspace_dir) / filename
        if not path.is_file():
            return None
        return WorkspaceFile(filename=filename, content=path.read_text(encoding="utf-8"))

    def list_workspace_files(self, agent_id: str) -> list[str]:
        workspace = Path(self.get_agent(agent_id).workspace_dir)
        if not workspace.is_dir():
            return []
        return sorted(entry.name for entry in workspace.iterdir() if entry.is_file())

    def read_workspace_file(self, agent_id: str, filename: str) -> WorkspaceFile:
        """
        Read one file of an agent's workspace.

        Raises:
            AgentNotFoundError: If the agent does not exist
            WorkspaceFileError: If the path escapes the workspace or the file is missing
        """
        agent = self.get_agent(agent_id)
        try:
            path = resolve_workspace_path(agent.workspace_dir, filename)
        except ToolExecutionError as e:
            raise WorkspaceFileError(str(e)) from e
        if not path.is_file():
            raise WorkspaceFileError(f"File not found in workspace: {filename}")
        return WorkspaceFile(filename=filename, content=path.read_text(encoding="utf-8"))

    # ------------------------------------------------------------------
    # Human actions
    # ------------------------------------------------------------------

    async def approve_tool(self, agent_id: str) -> OperationResult:
        """
        Approve the agent's pending tool call.

        Raises:
            AgentNotFoundError: If the agent does not exist
            NoPendingToolError: If no tool is waiting for approval
        """
        agent = self.get_agent(agent_id)
        async with self._locks[agent_id]:
            self._require_live(agent)
            if agent.pending_tool_use is None:
                raise NoPendingToolError(f"No pending tool for agent {agent_id}")
            resume = await self.driver.approve(agent)

        if resume:
            self._start_run(agent, lambda: self.driver.run(agent))
        return OperationResult(success=True)

    async def reject_tool(self, agent_id: str, reason: str) -> OperationResult:
        """
        Reject the agent's pending tool call.

        Raises:
            AgentNotFoundError: If the agent does not exist
            NoPendingToolError: If no tool is waiting for approval
        """
        agent = self.get_agent(agent_id)
        async with self._locks[agent_id]:
            self._require_live(agent)
            if agent.pending_tool_use is None:
                raise NoPendingToolError(f"No pending tool for agent {agent_id}")
            resume = await self.driver.reject(agent, reason)

        if resume:
            self._start_run(agent, lambda: self.driver.run(agent))
        return OperationResult(success=True)

    async def provide_feedback(self, agent_id: str, feedback: str) -> OperationResult:
        """
        Send user feedback to an agent in any non-terminal state.

        Raises:
            AgentNotFoundError: If the agent does not exist
            InvalidAgentStateError: If the agent has failed or was terminated
        """
        agent = self.get_agent(agent_id)
        async with self._locks[agent_id]:
            self._require_live(agent)
            if agent.state.is_terminal:
                raise InvalidAgentStateError(
                    f"Agent {agent_id} is {agent.state.value} and cannot take feedback"
                )
            resume = await self.driver.provide_feedback(agent, feedback)

        if resume:
            self._start_run(agent, lambda: self.driver.run(agent))
        return OperationResult(success=True)

    async def terminate(self, agent_id: str) -> OperationResult:
        """
        Stop an agent and remove it from the registry.

        A model call already in flight is not interrupted; its response is
        discarded when it arrives.

        Raises:
            AgentNotFoundError: If the agent does not exist
        """
        agent = self.get_agent(agent_id)
        agent.transition_to(AgentState.TERMINATED)
        self.events.state_changed(agent)

        del self._agents[agent_id]
        self._locks.pop(agent_id, None)
        logger.info(f"Agent {agent_id}: terminated")
        return OperationResult(success=True)


def create_orchestrator(settings: Settings, events: Optional[EventBus] = None) -> Orchestrator:
    """
    Build an orchestrator and its collaborators from settings.

    Uses Redis locks for the task store when redis_url is set, otherwise
    in-process locks.
    """
    lock_manager: LockManager
    if settings.redis_url:
        import redis.asyncio as redis
        from coworker.locking.redis_lock import RedisLock

        lock_manager = RedisLock(redis.from_url(settings.redis_url))
        logger.info(f"Task store locking via Redis at {settings.redis_url}")
    else:
        lock_manager = LocalLockManager()

    task_store = TaskStore(settings.pa_root, lock_manager=lock_manager, lock_timeout=settings.lock_timeout)
    llm_client = BedrockClient(
        profile=settings.aws_profile,
        region=settings.aws_region,
        max_tokens=settings.max_tokens
    )
    return Orchestrator(settings, llm_client, task_store, events=events)


class OrchestratorError(Exception):
    """Base class for control-surface errors."""
    pass


class AgentNotFoundError(OrchestratorError):
    """Raised when an agent id is not in the registry."""
    pass


class NoPendingToolError(OrchestratorError):
    """Raised when approving or rejecting an agent with no pending tool."""
    pass


class InvalidAgentStateError(OrchestratorError):
    """Raised when an operation is not allowed in the agent's current state."""
    pass


class AgentSpawnError(OrchestratorError):
    """Raised when an agent cannot be created."""
    pass


class WorkspaceFileError(OrchestratorError):
    """Raised when a workspace file cannot be served."""
    pass
