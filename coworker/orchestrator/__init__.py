"""Agent orchestration: tools, permissions, the turn loop and the agent registry."""

from coworker.orchestrator.agent_manager import (
    AgentNotFoundError,
    AgentSpawnError,
    InvalidAgentStateError,
    NoPendingToolError,
    OperationResult,
    Orchestrator,
    OrchestratorError,
    WorkspaceFileError,
    create_orchestrator,
)
from coworker.orchestrator.conversation_driver import ConversationDriver, TurnOutcome
from coworker.orchestrator.events import AgentEvent, EventBus, EventType
from coworker.orchestrator.permissions import DEFAULT_TOOL_PERMISSIONS, PermissionGate
from coworker.orchestrator.tool_registry import (
    TOOL_REGISTRY,
    ToolExecutionError,
    ToolInputError,
    UnknownToolError,
    validate_tool_input,
)

__all__ = [
    "AgentNotFoundError",
    "AgentSpawnError",
    "InvalidAgentStateError",
    "NoPendingToolError",
    "OperationResult",
    "Orchestrator",
    "OrchestratorError",
    "WorkspaceFileError",
    "create_orchestrator",
    "ConversationDriver",
    "TurnOutcome",
    "AgentEvent",
    "EventBus",
    "EventType",
    "DEFAULT_TOOL_PERMISSIONS",
    "PermissionGate",
    "TOOL_REGISTRY",
    "ToolExecutionError",
    "ToolInputError",
    "UnknownToolError",
    "validate_tool_input",
]
