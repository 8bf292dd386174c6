"""Static catalog of tools agents may request, with input validation."""

from typing import Any, Optional

from pydantic import BaseModel

# Tool names
WRITE_FILE = "write_file"
READ_FILE = "read_file"
LIST_FILES = "list_files"
REQUEST_USER_FEEDBACK = "request_user_feedback"
MARK_COMPLETE = "mark_complete"
FETCH_URL = "fetch_url"
WEB_SEARCH = "web_search"
READ_TASK = "read_task"
LIST_TASKS = "list_tasks"
CREATE_TASK = "create_task"
UPDATE_TASK = "update_task"
MARK_TASK_DONE = "mark_task_done"
DELEGATE_TASK_TO_AGENT = "delegate_task_to_agent"
MOVE_TASK = "move_task"
ATTACH_FILE_TO_TASK = "attach_file_to_task"
GET_TASK_ATTACHMENTS = "get_task_attachments"
VIEW_IMAGE = "view_image"

# Tools that end the turn loop whatever their permission tier
LOOP_TERMINAL_TOOLS = frozenset({REQUEST_USER_FEEDBACK, MARK_COMPLETE})

_ACTIVE_LISTS = ["today", "backlog", "due_soon"]
_PRIORITIES = ["high", "medium", "low", "none"]


class ToolDefinition(BaseModel):
    """Tool descriptor sent to the model."""
    name: str
    description: str
    input_schema: dict[str, Any]

    def to_api(self) -> dict[str, Any]:
        return self.model_dump()

    @property
    def required(self) -> list[str]:
        return self.input_schema.get("required", [])

    @property
    def properties(self) -> dict[str, Any]:
        return self.input_schema.get("properties", {})


def _schema(properties: dict[str, Any], required: Optional[list[str]] = None) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _string(description: str, **extra: Any) -> dict[str, Any]:
    return {"type": "string", "description": description, **extra}


TOOL_REGISTRY: list[ToolDefinition] = [
    ToolDefinition(
        name=WRITE_FILE,
        description="Write content to a file in the agent workspace",
        input_schema=_schema({
            "filename": _string('Name of the file to write (e.g., "artifact.md")'),
            "content": _string("Content to write to the file"),
        }, ["filename", "content"])
    ),
    ToolDefinition(
        name=READ_FILE,
        description="Read content from a file in the agent workspace",
        input_schema=_schema({
            "filename": _string("Name of the file to read"),
        }, ["filename"])
    ),
    ToolDefinition(
        name=LIST_FILES,
        description="List all files in the agent workspace",
        input_schema=_schema({})
    ),
    ToolDefinition(
        name=REQUEST_USER_FEEDBACK,
        description=(
            "Ask the user a question or request feedback/clarification before proceeding. "
            "Use this when you need user input to make a decision or clarify requirements."
        ),
        input_schema=_schema({
            "question": _string("The question to ask the user"),
            "context": _string("Additional context about why this feedback is needed (optional)"),
        }, ["question"])
    ),
    ToolDefinition(
        name=MARK_COMPLETE,
        description="Mark the task as complete with optional review requirement",
        input_schema=_schema({
            "needs_review": {
                "type": "boolean",
                "description": "Whether the work needs human review before use",
            },
            "summary": _string("Brief summary of what was accomplished"),
        }, ["needs_review", "summary"])
    ),
    ToolDefinition(
        name=FETCH_URL,
        description=(
            "Fetch and parse content from a web URL. Returns the page content converted to "
            "clean markdown format. Use this to read articles, documentation, or any web page "
            "content. Maximum content size: 50KB of text."
        ),
        input_schema=_schema({
            "url": _string("The URL to fetch (must start with http:// or https://)"),
        }, ["url"])
    ),
    ToolDefinition(
        name=WEB_SEARCH,
        description=(
            "Search the web using Brave Search API. Returns a list of search results with "
            "titles, URLs, and descriptions. Use this to find information, research topics, or "
            "discover relevant resources. Then use fetch_url to read the full content of "
            "interesting results."
        ),
        input_schema=_schema({
            "query": _string('The search query (e.g., "latest AI trends 2025")'),
            "count": {
                "type": "number",
                "description": "Number of results to return (1-10, default: 5)",
                "minimum": 1,
                "maximum": 10,
            },
        }, ["query"])
    ),
    ToolDefinition(
        name=READ_TASK,
        description=(
            "Read a specific task by its ID. Returns full task details including all "
            "metadata and notes."
        ),
        input_schema=_schema({
            "task_id": _string("The unique ID of the task to read"),
        }, ["task_id"])
    ),
    ToolDefinition(
        name=LIST_TASKS,
        description=(
            "List tasks with optional filters. Use this to see what tasks exist, find tasks "
            "by priority or location, or get subtasks of a parent task."
        ),
        input_schema=_schema({
            "location": _string("Filter by task location (optional)", enum=_ACTIVE_LISTS),
            "priority": _string("Filter by priority (optional)", enum=_PRIORITIES),
            "has_deadline": {
                "type": "boolean",
                "description": "Only show tasks with deadlines (optional)",
            },
            "parent_id": _string("Only show subtasks of this parent task (optional)"),
        })
    ),
    ToolDefinition(
        name=CREATE_TASK,
        description=(
            "Create a new task in the PersonalAssistant system. Tasks must have either a "
            "deadline (hard date) or target_date (soft goal). Use this to create follow-up "
            "tasks, break work into subtasks, or plan next steps."
        ),
        input_schema=_schema({
            "title": _string("The task title"),
            "location": _string("Where to create the task (default: backlog)", enum=_ACTIVE_LISTS),
            "priority": _string("Task priority (optional)", enum=_PRIORITIES),
            "deadline": _string(
                "Hard deadline in YYYY-MM-DD format (optional, but must have either deadline or target_date)"
            ),
            "target_date": _string(
                "Soft target date in YYYY-MM-DD format (optional, but must have either deadline or target_date)"
            ),
            "notes": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Initial notes for the task (optional)",
            },
            "parent_id": _string("Parent task ID if this is a subtask (optional)"),
        }, ["title"])
    ),
    ToolDefinition(
        name=UPDATE_TASK,
        description=(
            "Update an existing task. Can modify priority, deadline, target_date, title, and "
            "add notes. Notes are always appended (never replaced) to preserve history."
        ),
        input_schema=_schema({
            "task_id": _string("The unique ID of the task to update"),
            "priority": _string("New priority (optional)", enum=_PRIORITIES),
            "deadline": _string('New deadline in YYYY-MM-DD format or "none" (optional)'),
            "target_date": _string('New target date in YYYY-MM-DD format or "none" (optional)'),
            "title": _string("New title (optional)"),
            "add_notes": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Notes to append to the task (optional)",
            },
        }, ["task_id"])
    ),
    ToolDefinition(
        name=MARK_TASK_DONE,
        description=(
            "Mark a task as completed. The task will be moved to the archive with completion "
            "date. Use this when you or another agent has finished a task."
        ),
        input_schema=_schema({
            "task_id": _string("The unique ID of the task to mark as done"),
            "completion_notes": _string("Optional notes about the completion (optional)"),
        }, ["task_id"])
    ),
    ToolDefinition(
        name=DELEGATE_TASK_TO_AGENT,
        description=(
            "Delegate a task to a new agent. The new agent will work on the task "
            "independently, and when done, will attach output to the task. Use this to "
            "parallelize work by breaking down a task and delegating subtasks to other agents."
        ),
        input_schema=_schema({
            "task_id": _string("The unique ID of the task to delegate"),
            "instructions": _string("Additional instructions or context for the new agent (optional)"),
        }, ["task_id"])
    ),
    ToolDefinition(
        name=MOVE_TASK,
        description=(
            "Move a task between lists (today, backlog, due_soon). Use this to adjust task "
            "priority or urgency based on findings or changing requirements."
        ),
        input_schema=_schema({
            "task_id": _string("The unique ID of the task to move"),
            "destination": _string("Where to move the task", enum=_ACTIVE_LISTS),
        }, ["task_id", "destination"])
    ),
    ToolDefinition(
        name=ATTACH_FILE_TO_TASK,
        description=(
            "Attach a file from your workspace to a task. Use this to save your outputs "
            "(analysis documents, diagrams, reports, etc.) to a specific task for later reference."
        ),
        input_schema=_schema({
            "task_id": _string("The unique ID of the task to attach the file to"),
            "source_file": _string("The filename of the file in your workspace to attach"),
            "description": _string("Optional description of what the attachment contains"),
        }, ["task_id", "source_file"])
    ),
    ToolDefinition(
        name=GET_TASK_ATTACHMENTS,
        description=(
            "Get attachments from a task and copy them to your workspace so you can access "
            "them. Use this when you need to view or work with files attached to a task "
            "(like screenshots, images, documents)."
        ),
        input_schema=_schema({
            "task_id": _string("The unique ID of the task to get attachments from"),
        }, ["task_id"])
    ),
    ToolDefinition(
        name=VIEW_IMAGE,
        description=(
            "View and analyze an image file (PNG, JPG, etc.) from your workspace. This enables "
            "vision capabilities to describe what is in the image. The image will be included "
            "in the conversation for analysis."
        ),
        input_schema=_schema({
            "filename": _string("The filename of the image in your workspace to view and analyze"),
            "question": _string("Optional question or instruction about what to look for in the image"),
        }, ["filename"])
    ),
]

_TOOLS_BY_NAME = {tool.name: tool for tool in TOOL_REGISTRY}


def get_tool(name: str) -> Optional[ToolDefinition]:
    return _TOOLS_BY_NAME.get(name)


def tool_names() -> list[str]:
    return [tool.name for tool in TOOL_REGISTRY]


def tools_for_api() -> list[dict[str, Any]]:
    """Full registry in the shape the Messages API expects."""
    return [tool.to_api() for tool in TOOL_REGISTRY]


_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "boolean": (bool,),
    "number": (int, float),
    "integer": (int,),
    "array": (list,),
    "object": (dict,),
}


def _type_matches(value: Any, json_type: str) -> bool:
    expected = _JSON_TYPES.get(json_type)
    if expected is None:
        return True
    # bool is an int subclass but never a JSON number
    if json_type in ("number", "integer") and isinstance(value, bool):
        return False
    return isinstance(value, expected)


def validate_tool_input(name: str, tool_input: Any) -> ToolDefinition:
    """
    Check a requested tool call against the registry before dispatch.

    Args:
        name: Requested tool name
        tool_input: Input object supplied by the model

    Returns:
        The matching ToolDefinition

    Raises:
        UnknownToolError: If the tool is not registered
        ToolInputError: If the input does not match the tool's schema
    """
    tool = get_tool(name)
    if tool is None:
        raise UnknownToolError(f"Unknown tool: {name}")

    if not isinstance(tool_input, dict):
        raise ToolInputError(f"Input for {name} must be an object")

    missing = [field for field in tool.required if field not in tool_input]
    if missing:
        raise ToolInputError(f"Missing required field(s) for {name}: {', '.join(missing)}")

    for field, value in tool_input.items():
        field_schema = tool.properties.get(field)
        if field_schema is None or value is None:
            continue

        json_type = field_schema.get("type")
        if json_type and not _type_matches(value, json_type):
            raise ToolInputError(f"Field '{field}' of {name} must be of type {json_type}")

        if "enum" in field_schema and value not in field_schema["enum"]:
            raise ToolInputError(
                f"Field '{field}' of {name} must be one of: {', '.join(field_schema['enum'])}"
            )

        if json_type in ("number", "integer"):
            if "minimum" in field_schema and value < field_schema["minimum"]:
                raise ToolInputError(f"Field '{field}' of {name} must be >= {field_schema['minimum']}")
            if "maximum" in field_schema and value > field_schema["maximum"]:
                raise ToolInputError(f"Field '{field}' of {name} must be <= {field_schema['maximum']}")

        item_type = field_schema.get("items", {}).get("type") if json_type == "array" else None
        if item_type and not all(_type_matches(item, item_type) for item in value):
            raise ToolInputError(f"Items of '{field}' in {name} must be of type {item_type}")

    return tool


class ToolExecutionError(Exception):
    """Raised when a tool cannot be carried out. Reported back to the model."""
    pass


class UnknownToolError(ToolExecutionError):
    """Raised when the model requests a tool that is not registered."""
    pass


class ToolInputError(ToolExecutionError):
    """Raised when a tool's input does not match its schema."""
    pass
