"""Choose between the cheap and the capable model for an agent's next turn."""

import logging
from enum import Enum

from coworker.app.models.agent import Agent

logger = logging.getLogger(__name__)


class ModelTier(str, Enum):
    CHEAP = "cheap"  # Haiku: fast execution turns
    CAPABLE = "capable"  # Sonnet: planning, vision, synthesis


# First user message + first reply + first tool results
PLANNING_MESSAGE_COUNT = 3

SIMPLE_TOOLS = frozenset({
    "read_file",
    "write_file",
    "list_files",
    "read_task",
    "update_task",
    "mark_task_done",
    "move_task",
    "attach_file_to_task",
    "get_task_attachments",
    "mark_complete",
})

COMPLEX_TOOLS = frozenset({
    "request_user_feedback",
    "create_task",
    "web_search",
    "fetch_url",
    "list_tasks",
    "delegate_task_to_agent",
    "view_image",
})


def select_model_tier(agent: Agent) -> ModelTier:
    """
    Pick the model tier for the agent's next request. First matching rule wins.

    Args:
        agent: Agent about to take a turn

    Returns:
        ModelTier.CAPABLE or ModelTier.CHEAP
    """
    if len(agent.conversation) <= PLANNING_MESSAGE_COUNT:
        logger.debug(f"Agent {agent.id}: capable model for planning (messages={len(agent.conversation)})")
        return ModelTier.CAPABLE

    if agent.pending_image is not None:
        logger.debug(f"Agent {agent.id}: capable model for vision")
        return ModelTier.CAPABLE

    last_tool = agent.last_tool_used
    if last_tool in SIMPLE_TOOLS:
        logger.debug(f"Agent {agent.id}: cheap model after simple tool {last_tool}")
        return ModelTier.CHEAP

    if last_tool in COMPLEX_TOOLS:
        logger.debug(f"Agent {agent.id}: capable model after complex tool {last_tool}")
        return ModelTier.CAPABLE

    return ModelTier.CHEAP
