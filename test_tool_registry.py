"""Test script for the tool registry, permission gate and model selection."""

import json
import logging
import sys
import tempfile
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from coworker.app.config import PermissionTier, UserSettings, load_user_settings
from coworker.app.models.agent import Agent, ImageBlock, Message, PendingImage, TextBlock
from coworker.llm.model_selection import ModelTier, select_model_tier
from coworker.orchestrator.permissions import DEFAULT_TOOL_PERMISSIONS, PermissionGate
from coworker.orchestrator.tool_registry import (
    LOOP_TERMINAL_TOOLS,
    TOOL_REGISTRY,
    ToolInputError,
    UnknownToolError,
    tool_names,
    tools_for_api,
    validate_tool_input,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def test_registry_contents():
    """All seventeen tools are registered with object schemas."""
    names = tool_names()

    assert len(names) == 17
    assert len(set(names)) == 17
    assert set(names) == set(DEFAULT_TOOL_PERMISSIONS)
    assert LOOP_TERMINAL_TOOLS == {"request_user_feedback", "mark_complete"}

    for definition in tools_for_api():
        assert set(definition) == {"name", "description", "input_schema"}
        assert definition["input_schema"]["type"] == "object"
    print(f"   ✓ {len(TOOL_REGISTRY)} tools registered")


def test_validate_tool_input():
    assert validate_tool_input("write_file", {"filename": "a.md", "content": "x"}).name == "write_file"
    assert validate_tool_input("list_files", {}).name == "list_files"
    validate_tool_input("web_search", {"query": "ai", "count": 3})
    validate_tool_input("create_task", {"title": "T", "notes": ["a", "b"], "location": "today"})

    with pytest.raises(UnknownToolError):
        validate_tool_input("delete_everything", {})
    with pytest.raises(ToolInputError):
        validate_tool_input("write_file", {"filename": "a.md"})
    with pytest.raises(ToolInputError):
        validate_tool_input("write_file", ["a.md"])
    with pytest.raises(ToolInputError):
        validate_tool_input("mark_complete", {"needs_review": "yes", "summary": "done"})
    with pytest.raises(ToolInputError):
        validate_tool_input("move_task", {"task_id": "t", "destination": "done"})
    with pytest.raises(ToolInputError):
        validate_tool_input("web_search", {"query": "ai", "count": 11})
    with pytest.raises(ToolInputError):
        validate_tool_input("web_search", {"query": "ai", "count": True})
    with pytest.raises(ToolInputError):
        validate_tool_input("update_task", {"task_id": "t", "add_notes": ["ok", 3]})


def test_default_permissions():
    gate = PermissionGate(lambda: UserSettings())

    for name in ("write_file", "read_file", "list_files", "read_task", "list_tasks",
                 "get_task_attachments", "attach_file_to_task", "view_image", "mark_complete"):
        assert gate.tier_for(name) == PermissionTier.AUTO, name
    for name in ("create_task", "update_task", "mark_task_done", "move_task",
                 "request_user_feedback", "web_search", "fetch_url", "delegate_task_to_agent"):
        assert gate.requires_approval(name), name

    assert gate.requires_approval("some_future_tool")


def test_configured_permissions_replace_defaults():
    gate = PermissionGate(lambda: UserSettings(tool_permissions={"create_task": PermissionTier.AUTO}))

    assert not gate.requires_approval("create_task")
    # Absent from the configured map, so approval is required
    assert gate.requires_approval("write_file")


def test_permissions_are_reloaded_every_call():
    """Editing settings.json takes effect on the next lookup."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = Path(temp_dir) / "config" / "settings.json"
        gate = PermissionGate(lambda: load_user_settings(path))

        assert gate.requires_approval("fetch_url")

        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"tool_permissions": {"fetch_url": "auto"}}))
        assert not gate.requires_approval("fetch_url")

        path.write_text("{broken")
        assert gate.requires_approval("fetch_url")
        assert not gate.requires_approval("write_file")


def _agent(messages: int, last_tool=None, image=False) -> Agent:
    conversation = [
        Message(role="user" if i % 2 == 0 else "assistant", content=[TextBlock(text=str(i))])
        for i in range(messages)
    ]
    return Agent(
        id="agent-test",
        name="t",
        task_description="t",
        workspace_dir=Path("/tmp/agent-test"),
        conversation=conversation,
        last_tool_used=last_tool,
        pending_image=PendingImage(filename="a.png", media_type="image/png", base64="AAAA") if image else None
    )


def test_model_selection_rules():
    # Planning phase
    assert select_model_tier(_agent(1)) == ModelTier.CAPABLE
    assert select_model_tier(_agent(3, last_tool="read_file")) == ModelTier.CAPABLE
    # Vision beats a simple last tool
    assert select_model_tier(_agent(5, last_tool="read_file", image=True)) == ModelTier.CAPABLE
    # Simple and complex tool sets
    assert select_model_tier(_agent(5, last_tool="write_file")) == ModelTier.CHEAP
    assert select_model_tier(_agent(5, last_tool="mark_complete")) == ModelTier.CHEAP
    assert select_model_tier(_agent(5, last_tool="fetch_url")) == ModelTier.CAPABLE
    assert select_model_tier(_agent(5, last_tool="delegate_task_to_agent")) == ModelTier.CAPABLE
    # Default
    assert select_model_tier(_agent(5)) == ModelTier.CHEAP
    assert select_model_tier(_agent(5, last_tool="unknown_tool")) == ModelTier.CHEAP


def test_image_block_serialization():
    image = PendingImage(filename="a.png", media_type="image/png", base64="AAAA")
    message = Message(role="user", content=[image.to_block()])

    assert isinstance(message.content[0], ImageBlock)
    assert message.to_api() == {
        "role": "user",
        "content": [{"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"}}],
    }


def main():
    """Run all tests."""
    try:
        test_registry_contents()
        test_validate_tool_input()
        test_default_permissions()
        test_configured_permissions_replace_defaults()
        test_permissions_are_reloaded_every_call()
        test_model_selection_rules()
        test_image_block_serialization()

        print("\n" + "=" * 70)
        print("✅ TOOL REGISTRY TESTS COMPLETED")
        print("=" * 70)

    except Exception as e:
        print(f"\n❌ TEST FAILED: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
