"""Application configuration."""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings."""

    # PersonalAssistant data root (task lists, archive, attachments, config)
    pa_root: Path = Path.home() / "PersonalAssistant"
    workspaces_dir: Optional[Path] = None

    # AWS Bedrock
    aws_profile: Optional[str] = None
    aws_region: str = "eu-west-1"
    capable_model_id: str = "eu.anthropic.claude-sonnet-4-5-20250929-v1:0"
    cheap_model_id: str = "eu.anthropic.claude-haiku-4-5-20251001-v1:0"
    max_tokens: int = 4096

    # Redis (optional, enables cross-process task store locking)
    redis_url: Optional[str] = None
    lock_timeout: int = 30  # seconds

    # Web tools
    fetch_timeout: float = 10.0  # seconds
    fetch_max_bytes: int = 2 * 1024 * 1024
    fetch_max_chars: int = 50 * 1024

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False
    )

    @property
    def agent_workspaces_dir(self) -> Path:
        """Directory holding one scratch workspace per agent."""
        return self.workspaces_dir or self.pa_root / "agents" / "workspaces"

    @property
    def user_settings_path(self) -> Path:
        """Path of the user-editable settings.json."""
        return self.pa_root / "config" / "settings.json"


class PermissionTier(str, Enum):
    """Whether a tool runs immediately or waits for a human."""
    AUTO = "auto"
    APPROVE = "approve"


class UserSettings(BaseModel):
    """User-editable settings, re-read on every decision that needs them."""
    tool_permissions: Optional[dict[str, PermissionTier]] = None
    web_search_enabled: bool = False
    brave_search_api_key: Optional[str] = None


def load_user_settings(path: Path) -> UserSettings:
    """
    Load user settings from a JSON file.

    A missing, unreadable or invalid file yields default settings so the
    permission gate falls back to its built-in policy.

    Args:
        path: Path to settings.json

    Returns:
        Parsed UserSettings
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return UserSettings.model_validate(data)
    except FileNotFoundError:
        logger.debug(f"No user settings at {path}, using defaults")
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Failed to load user settings from {path}: {e}")
    return UserSettings()


# Global settings instance
settings = Settings()
