"""Per-tool permission tiers: run immediately or wait for a human."""

import logging
from typing import Callable

from coworker.app.config import PermissionTier, UserSettings
from coworker.orchestrator import tool_registry as tools

logger = logging.getLogger(__name__)

# Read-only or workspace-local tools run without asking; anything that
# changes shared tasks, reaches the network or spawns agents needs approval.
DEFAULT_TOOL_PERMISSIONS: dict[str, PermissionTier] = {
    tools.WRITE_FILE: PermissionTier.AUTO,
    tools.READ_FILE: PermissionTier.AUTO,
    tools.LIST_FILES: PermissionTier.AUTO,
    tools.READ_TASK: PermissionTier.AUTO,
    tools.LIST_TASKS: PermissionTier.AUTO,
    tools.GET_TASK_ATTACHMENTS: PermissionTier.AUTO,
    tools.ATTACH_FILE_TO_TASK: PermissionTier.AUTO,
    tools.VIEW_IMAGE: PermissionTier.AUTO,
    tools.MARK_COMPLETE: PermissionTier.AUTO,
    tools.CREATE_TASK: PermissionTier.APPROVE,
    tools.UPDATE_TASK: PermissionTier.APPROVE,
    tools.MARK_TASK_DONE: PermissionTier.APPROVE,
    tools.MOVE_TASK: PermissionTier.APPROVE,
    tools.REQUEST_USER_FEEDBACK: PermissionTier.APPROVE,
    tools.WEB_SEARCH: PermissionTier.APPROVE,
    tools.FETCH_URL: PermissionTier.APPROVE,
    tools.DELEGATE_TASK_TO_AGENT: PermissionTier.APPROVE,
}


class PermissionGate:
    """
    Decides whether a tool call needs human approval.

    User settings are re-read on every lookup so edits to settings.json
    apply to the next tool call without a restart.
    """

    def __init__(self, load_settings: Callable[[], UserSettings]):
        """
        Initialize permission gate.

        Args:
            load_settings: Returns the current user settings
        """
        self.load_settings = load_settings

    def active_permissions(self) -> dict[str, PermissionTier]:
        """Permission map in force: the user's map if configured, else the defaults."""
        configured = self.load_settings().tool_permissions
        if configured is not None:
            return configured
        return DEFAULT_TOOL_PERMISSIONS

    def tier_for(self, tool_name: str) -> PermissionTier:
        tier = self.active_permissions().get(tool_name)
        if tier is None:
            logger.debug(f"No permission configured for {tool_name}, requiring approval")
            return PermissionTier.APPROVE
        return tier

    def requires_approval(self, tool_name: str) -> bool:
        return self.tier_for(tool_name) == PermissionTier.APPROVE
