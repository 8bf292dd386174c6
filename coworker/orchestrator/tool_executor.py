"""Execution of agent tool calls against the workspace, the task store and the web."""

import base64
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from coworker.app.config import UserSettings
from coworker.app.models.agent import Agent, AgentState, PendingImage, PendingQuestion, ToolUseBlock
from coworker.app.models.task import TaskCreate, TaskFilters, TaskUpdate
from coworker.orchestrator import tool_registry as tools
from coworker.orchestrator.events import EventBus
from coworker.orchestrator.tool_registry import ToolExecutionError, validate_tool_input
from coworker.orchestrator.web_tools import SEARCH_DISABLED_MESSAGE, WebClient, WebToolError
from coworker.store.task_store import TaskStore, TaskStoreError

logger = logging.getLogger(__name__)

IMAGE_MEDIA_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
}

DEFAULT_SEARCH_COUNT = 5

# Spawns a child agent: (task_description, linked_task_id) -> Agent
DelegateCallback = Callable[[str, str], Awaitable[Agent]]


def is_image_file(filename: str) -> bool:
    return Path(filename).suffix.lower().lstrip(".") in IMAGE_MEDIA_TYPES


def load_image(path: Path) -> PendingImage:
    """Read an image file and base64-encode it. Unknown extensions are sent as PNG."""
    media_type = IMAGE_MEDIA_TYPES.get(path.suffix.lower().lstrip("."), "image/png")
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return PendingImage(filename=path.name, media_type=media_type, base64=data)


def resolve_workspace_path(workspace_dir: Path, filename: str) -> Path:
    """
    Resolve a filename inside an agent workspace.

    Args:
        workspace_dir: Agent workspace root
        filename: Relative filename supplied by the model or a user

    Returns:
        Absolute path inside the workspace

    Raises:
        ToolExecutionError: If the name is empty or escapes the workspace
    """
    if not filename or not filename.strip():
        raise ToolExecutionError("Filename must not be empty")
    if "\x00" in filename:
        raise ToolExecutionError("Filename must not contain NUL bytes")

    root = Path(workspace_dir).resolve()
    path = (root / filename).resolve()
    if path == root or not path.is_relative_to(root):
        raise ToolExecutionError(f"Path is outside the agent workspace: {filename}")
    return path


class ToolExecutor:
    """
    Runs one validated tool call for an agent.

    Handlers return JSON-serializable result dicts. Any failure is raised as
    ToolExecutionError so the caller can hand it back to the model.
    """

    def __init__(
        self,
        task_store: TaskStore,
        load_settings: Callable[[], UserSettings],
        web_client: WebClient,
        events: EventBus,
        delegate: Optional[DelegateCallback] = None
    ):
        """
        Initialize tool executor.

        Args:
            task_store: Store backing the task tools
            load_settings: Returns current user settings (web search switch and key)
            web_client: Client for fetch_url and web_search
            events: Event bus for state and feedback notifications
            delegate: Spawns child agents for delegate_task_to_agent
        """
        self.task_store = task_store
        self.load_settings = load_settings
        self.web_client = web_client
        self.events = events
        self.delegate = delegate

        self._handlers: dict[str, Callable[[Agent, dict[str, Any]], Awaitable[dict[str, Any]]]] = {
            tools.WRITE_FILE: self._write_file,
            tools.READ_FILE: self._read_file,
            tools.LIST_FILES: self._list_files,
            tools.REQUEST_USER_FEEDBACK: self._request_user_feedback,
            tools.MARK_COMPLETE: self._mark_complete,
            tools.FETCH_URL: self._fetch_url,
            tools.WEB_SEARCH: self._web_search,
            tools.READ_TASK: self._read_task,
            tools.LIST_TASKS: self._list_tasks,
            tools.CREATE_TASK: self._create_task,
            tools.UPDATE_TASK: self._update_task,
            tools.MARK_TASK_DONE: self._mark_task_done,
            tools.DELEGATE_TASK_TO_AGENT: self._delegate_task,
            tools.MOVE_TASK: self._move_task,
            tools.ATTACH_FILE_TO_TASK: self._attach_file,
            tools.GET_TASK_ATTACHMENTS: self._get_attachments,
            tools.VIEW_IMAGE: self._view_image,
        }

    async def execute(self, agent: Agent, tool_use: ToolUseBlock) -> dict[str, Any]:
        """
        Validate and run a tool call.

        Args:
            agent: Agent that requested the tool
            tool_use: The tool_use block from the model response

        Returns:
            Result dict, always with "success": True

        Raises:
            ToolExecutionError: On invalid input or any failure while running
        """
        validate_tool_input(tool_use.name, tool_use.input)
        handler = self._handlers[tool_use.name]

        logger.info(f"Agent {agent.id}: executing {tool_use.name}")
        try:
            return await handler(agent, tool_use.input)
        except ToolExecutionError:
            raise
        except (TaskStoreError, WebToolError, ValidationError) as e:
            raise ToolExecutionError(str(e)) from e
        except OSError as e:
            raise ToolExecutionError(f"{type(e).__name__}: {e.strerror or e}") from e
        except ValueError as e:
            # Includes UnicodeDecodeError and embedded NUL bytes in paths
            raise ToolExecutionError(f"{type(e).__name__}: {e}") from e

    # ------------------------------------------------------------------
    # Workspace tools
    # ------------------------------------------------------------------

    async def _write_file(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        filename = tool_input["filename"]
        path = resolve_workspace_path(agent.workspace_dir, filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(tool_input["content"], encoding="utf-8")

        if filename not in agent.created_files:
            agent.created_files.append(filename)
        agent.primary_artifact = filename  # last written file wins

        logger.info(f"Agent {agent.id}: wrote {filename}, primary artifact now {filename}")
        return {"success": True, "message": f"File {filename} written successfully"}

    async def _read_file(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        filename = tool_input["filename"]
        path = resolve_workspace_path(agent.workspace_dir, filename)
        if not path.is_file():
            raise ToolExecutionError(f"File not found in workspace: {filename}")
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ToolExecutionError(
                f"File {filename} is not a UTF-8 text file. Use view_image for images."
            ) from e
        return {"success": True, "content": content}

    async def _list_files(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        workspace = Path(agent.workspace_dir)
        files = sorted(entry.name for entry in workspace.iterdir()) if workspace.is_dir() else []
        return {"success": True, "files": files}

    async def _view_image(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        filename = tool_input["filename"]
        path = resolve_workspace_path(agent.workspace_dir, filename)
        if not path.is_file():
            raise ToolExecutionError(f"Image file not found in workspace: {filename}")

        agent.pending_image = load_image(path)
        logger.info(f"Agent {agent.id}: loaded image {filename} ({agent.pending_image.media_type})")

        question = tool_input.get("question")
        message = (
            f'Image "{filename}" loaded. Analyzing with focus on: {question}' if question
            else f'Image "{filename}" loaded and ready for analysis.'
        )
        return {"success": True, "message": message}

    # ------------------------------------------------------------------
    # Loop-terminal tools
    # ------------------------------------------------------------------

    def _settle(self, agent: Agent, new_state: AgentState) -> None:
        if agent.state == AgentState.TERMINATED:
            raise ToolExecutionError("Agent was terminated")
        # A second terminal tool in the same batch replaces the first one's pause
        if agent.state != AgentState.WORKING:
            agent.transition_to(AgentState.WORKING)
        agent.transition_to(new_state)
        self.events.state_changed(agent)

    async def _request_user_feedback(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        question = tool_input["question"]
        context = tool_input.get("context")
        agent.pending_question = PendingQuestion(question=question, context=context)
        self._settle(agent, AgentState.WAITING_FOR_USER_FEEDBACK)
        self.events.needs_user_feedback(agent, question, context)
        return {"success": True, "message": "Waiting for user feedback"}

    async def _mark_complete(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        agent.completion_summary = tool_input["summary"]
        agent.pending_question = None
        self._settle(
            agent,
            AgentState.WAITING_FOR_COMPLETION_REVIEW if tool_input["needs_review"]
            else AgentState.COMPLETED
        )
        return {"success": True, "message": "Task marked as complete"}

    # ------------------------------------------------------------------
    # Web tools
    # ------------------------------------------------------------------

    async def _fetch_url(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        page = await self.web_client.fetch_page(tool_input["url"])
        return {
            "success": True,
            "content": page.content,
            "url": page.url,
            "size": page.size,
            "message": f"Fetched {page.size} characters of content",
        }

    async def _web_search(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        user_settings = self.load_settings()
        if not user_settings.web_search_enabled or not user_settings.brave_search_api_key:
            logger.info(f"Agent {agent.id}: web search disabled")
            raise ToolExecutionError(SEARCH_DISABLED_MESSAGE)

        query = tool_input["query"]
        count = int(tool_input.get("count") or DEFAULT_SEARCH_COUNT)
        results = await self.web_client.search(query, count, user_settings.brave_search_api_key)

        logger.info(f"Agent {agent.id}: found {len(results)} search results")
        return {
            "success": True,
            "query": query,
            "results": [result.model_dump() for result in results],
            "count": len(results),
            "message": f'Found {len(results)} results for "{query}"',
        }

    # ------------------------------------------------------------------
    # Task tools
    # ------------------------------------------------------------------

    async def _read_task(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        task_id = tool_input["task_id"]
        task = await self.task_store.read_task(task_id)
        if task is None:
            raise ToolExecutionError(f"Task {task_id} not found")
        return {"success": True, "task": task.model_dump(mode="json")}

    async def _list_tasks(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        filters = TaskFilters(
            location=tool_input.get("location"),
            priority=tool_input.get("priority"),
            has_deadline=bool(tool_input.get("has_deadline")),
            parent_id=tool_input.get("parent_id")
        )
        summaries = await self.task_store.list_tasks(filters)
        return {
            "success": True,
            "tasks": [summary.model_dump(mode="json") for summary in summaries],
            "count": len(summaries),
        }

    async def _create_task(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        fields = ("title", "location", "priority", "deadline", "target_date", "notes", "parent_id")
        data = TaskCreate(**{key: tool_input[key] for key in fields if tool_input.get(key) is not None})
        task = await self.task_store.create_task(data, agent_id=agent.id)
        return {
            "success": True,
            "task": task.model_dump(mode="json"),
            "message": f'Created task "{task.title}" with ID: {task.id}',
        }

    async def _update_task(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        fields = ("title", "priority", "deadline", "target_date", "add_notes")
        patch = TaskUpdate(**{key: tool_input[key] for key in fields if key in tool_input})
        task = await self.task_store.update_task(tool_input["task_id"], patch, agent_id=agent.id)
        return {"success": True, "task_id": task.id, "message": f"Updated task {task.id}"}

    async def _mark_task_done(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        task = await self.task_store.mark_task_done(
            tool_input["task_id"],
            completion_notes=tool_input.get("completion_notes"),
            agent_id=agent.id
        )
        return {"success": True, "task_id": task.id, "message": f"Marked task {task.id} as completed"}

    async def _move_task(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        result = await self.task_store.move_task(
            tool_input["task_id"], tool_input["destination"], agent_id=agent.id
        )
        return {
            "success": True,
            "task_id": result.task_id,
            "destination": result.destination.value,
            "message": result.message or f"Moved task {result.task_id} to {result.destination.value}",
        }

    async def _attach_file(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        task_id = tool_input["task_id"]
        filename = tool_input["source_file"]
        source = resolve_workspace_path(agent.workspace_dir, filename)
        await self.task_store.attach_file(
            task_id, source, description=tool_input.get("description"), agent_id=agent.id
        )
        return {
            "success": True,
            "task_id": task_id,
            "filename": source.name,
            "message": f"Attached {source.name} to task {task_id}",
        }

    async def _get_attachments(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        task_id = tool_input["task_id"]
        if not await self.task_store.task_id_exists(task_id):
            raise ToolExecutionError(f"Task {task_id} not found")

        copied = await self.task_store.get_attachments(task_id, Path(agent.workspace_dir))
        return {
            "success": True,
            "attachments": copied,
            "message": (
                f"Copied {len(copied)} attachment(s) to your workspace: {', '.join(copied)}. "
                "Use view_image to analyze image files."
            ),
        }

    async def _delegate_task(self, agent: Agent, tool_input: dict[str, Any]) -> dict[str, Any]:
        if self.delegate is None:
            raise ToolExecutionError("Delegation is not available")

        task_id = tool_input["task_id"]
        task = await self.task_store.read_task(task_id)
        if task is None:
            raise ToolExecutionError(f"Task {task_id} not found")

        instructions = tool_input.get("instructions")
        description = (
            f"{instructions}\n\nTask: {task.title}" if instructions
            else f"Work on: {task.title}"
        )
        child = await self.delegate(description, task_id)

        logger.info(f"Agent {agent.id}: delegated task {task_id} to agent {child.id}")
        return {
            "success": True,
            "agent_id": child.id,
            "task_id": task_id,
            "message": f"Delegated task {task_id} to agent {child.id}",
        }
