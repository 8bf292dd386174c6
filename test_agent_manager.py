"""Test script for the Orchestrator and its conversation driver."""

import asyncio
import base64
import json
import logging
import sys
import tempfile
import threading
from pathlib import Path
from typing import Optional

import httpx
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from coworker.app.config import Settings
from coworker.app.models.agent import (
    ActivityStatus,
    AgentState,
    ImageBlock,
    TextBlock,
    ToolResultBlock,
)
from coworker.app.models.task import TaskCreate, TaskLocation
from coworker.llm.bedrock_client import BedrockInvocationError, BedrockResponse
from coworker.orchestrator.agent_manager import (
    AgentNotFoundError,
    AgentSpawnError,
    InvalidAgentStateError,
    NoPendingToolError,
    Orchestrator,
    WorkspaceFileError,
)
from coworker.orchestrator.events import AgentEvent, EventType
from coworker.orchestrator.web_tools import WebClient
from coworker.store.task_store import TaskStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CAPABLE = "test-capable-model"
CHEAP = "test-cheap-model"


# ---------------------------------------------------------------------------
# Scripted model
# ---------------------------------------------------------------------------

def text(value: str) -> dict:
    return {"type": "text", "text": value}


def tool(tool_id: str, name: str, **tool_input) -> dict:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": tool_input}


def reply(*blocks: dict) -> BedrockResponse:
    has_tools = any(block["type"] == "tool_use" for block in blocks)
    return BedrockResponse(
        content=list(blocks),
        stop_reason="tool_use" if has_tools else "end_turn",
        usage={"input_tokens": 1, "output_tokens": 1},
        model="scripted"
    )


class ScriptedLLM:
    """
    Stand-in for BedrockClient that replays canned responses.

    Scripts are keyed by a substring of the agent's system prompt so that
    several agents can share one client; the "" script matches any agent.
    """

    def __init__(self, responses: Optional[list] = None, scripts: Optional[dict[str, list]] = None):
        self.scripts = dict(scripts or {})
        if responses is not None:
            self.scripts[""] = list(responses)
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def create_message(self, model_id, messages, system_prompt=None, tools=None, max_tokens=None):
        with self._lock:
            self.calls.append({
                "model_id": model_id,
                "messages": json.loads(json.dumps(messages)),
                "system_prompt": system_prompt,
                "tools": tools,
            })
            key = next(
                k for k in sorted(self.scripts, key=len, reverse=True) if k in (system_prompt or "")
            )
            script = self.scripts[key]
            item = script.pop(0) if script else reply(text("Nothing more to do."))
        if isinstance(item, Exception):
            raise item
        return item


class BlockingLLM:
    """Model call that does not return until released."""

    def __init__(self, response: BedrockResponse):
        self.response = response
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def create_message(self, model_id, messages, system_prompt=None, tools=None, max_tokens=None):
        self.calls += 1
        self.started.set()
        self.release.wait(5)
        return self.response


def make_orchestrator(temp_dir: str, llm, permissions: Optional[dict] = None) -> Orchestrator:
    root = Path(temp_dir)
    settings = Settings(
        _env_file=None,
        pa_root=root / "pa",
        workspaces_dir=root / "workspaces",
        capable_model_id=CAPABLE,
        cheap_model_id=CHEAP
    )
    if permissions is not None:
        settings.user_settings_path.parent.mkdir(parents=True, exist_ok=True)
        settings.user_settings_path.write_text(json.dumps({"tool_permissions": permissions}))

    web = WebClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, html="<p>ok</p>")))
    return Orchestrator(settings, llm, TaskStore(settings.pa_root), web_client=web)


def collect_events(orchestrator: Orchestrator) -> list[AgentEvent]:
    events: list[AgentEvent] = []
    orchestrator.events.subscribe(events.append)
    return events


def tool_results(message) -> list[ToolResultBlock]:
    return [block for block in message.content if isinstance(block, ToolResultBlock)]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

async def test_write_and_complete_in_one_batch():
    """Both auto tools run in order and the agent stops for review."""
    print("=" * 70)
    print("Test: write_file + mark_complete batch")
    print("=" * 70)

    llm = ScriptedLLM([
        reply(
            text("Drafting the report."),
            tool("toolu_1", "write_file", filename="artifact.md", content="# Report\nDone."),
            tool("toolu_2", "mark_complete", needs_review=True, summary="Report drafted"),
        ),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        events = collect_events(orchestrator)
        try:
            agent = await orchestrator.spawn("Write the quarterly report")
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.WAITING_FOR_COMPLETION_REVIEW
            assert len(llm.calls) == 1
            assert llm.calls[0]["model_id"] == CAPABLE
            assert len(llm.calls[0]["tools"]) == 17
            assert "Task: Write the quarterly report" in llm.calls[0]["system_prompt"]

            assert (agent.workspace_dir / "artifact.md").read_text() == "# Report\nDone."
            assert agent.primary_artifact == "artifact.md"
            assert agent.created_files == ["artifact.md"]
            assert agent.completion_summary == "Report drafted"

            assert [message.role for message in agent.conversation] == ["user", "assistant", "user"]
            results = tool_results(agent.conversation[2])
            assert [result.tool_use_id for result in results] == ["toolu_1", "toolu_2"]
            assert not any(result.is_error for result in results)

            assert [entry.tool for entry in agent.activity_log] == ["write_file", "mark_complete"]
            assert all(entry.status == ActivityStatus.SUCCESS for entry in agent.activity_log)
            assert all(entry.model == CAPABLE for entry in agent.activity_log)

            states = [e.data["state"] for e in events if e.type == EventType.AGENT_STATE_CHANGED]
            assert states == ["working", "waiting_for_completion_review"]
            print("   ✓ Agent waiting for completion review after one model call")
        finally:
            await orchestrator.shutdown()


@pytest.mark.parametrize("gated_position", [0, 1, 2])
async def test_batch_gated_at_any_position(gated_position):
    """One approval-tier tool anywhere in a batch holds back every member."""
    batch = [
        tool(f"toolu_{i}", "write_file", filename=f"file_{i}.md", content="x")
        for i in range(3)
    ]
    batch[gated_position] = tool(f"toolu_{gated_position}", "fetch_url", url="https://example.com")
    llm = ScriptedLLM([reply(*batch)])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        events = collect_events(orchestrator)
        try:
            agent = await orchestrator.spawn("Collect sources")
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.WAITING_FOR_TOOL_APPROVAL
            assert agent.pending_tool_use.id == f"toolu_{gated_position}"
            assert agent.pending_tool_use.name == "fetch_url"
            assert agent.activity_log == []
            assert list(agent.workspace_dir.iterdir()) == []
            assert len(llm.calls) == 1

            approvals = [e for e in events if e.type == EventType.AGENT_NEEDS_TOOL_APPROVAL]
            assert len(approvals) == 1
            assert approvals[0].data["tool"]["id"] == f"toolu_{gated_position}"
        finally:
            await orchestrator.shutdown()


async def test_batch_members_are_approved_one_by_one():
    """The first gated member pauses the batch; the rest are re-gated in turn."""
    llm = ScriptedLLM([
        reply(
            tool("toolu_a", "write_file", filename="plan.md", content="plan"),
            tool("toolu_b", "create_task", title="Follow up with vendor", target_date="2025-03-01"),
            tool("toolu_c", "fetch_url", url="https://example.com"),
        ),
        reply(text("All set.")),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            agent = await orchestrator.spawn("Plan vendor follow-up")
            await orchestrator.wait_for_agent(agent.id)
            assert agent.pending_tool_use.id == "toolu_b"

            await orchestrator.approve_tool(agent.id)
            assert agent.state == AgentState.WAITING_FOR_TOOL_APPROVAL
            assert agent.pending_tool_use.id == "toolu_c"
            assert agent.activity_log == []

            await orchestrator.reject_tool(agent.id, "no browsing today")
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.WORKING
            assert agent.last_response == "All set."
            assert len(llm.calls) == 2

            results = tool_results(agent.conversation[2])
            assert [result.tool_use_id for result in results] == ["toolu_a", "toolu_b", "toolu_c"]
            assert not results[0].is_error and not results[1].is_error
            assert results[2].is_error
            assert json.loads(results[2].content) == {
                "success": False,
                "error": "Tool use rejected by user: no browsing today",
            }
            assert [entry.tool for entry in agent.activity_log] == ["write_file", "create_task"]

            task = await orchestrator.task_store.read_task("follow-up-with-vendor")
            assert task is not None
            assert task.notes[0].startswith(f"[Created by Agent {agent.id} - ")
        finally:
            await orchestrator.shutdown()


async def test_reject_resumes_with_error_result():
    llm = ScriptedLLM([
        reply(tool("toolu_1", "web_search", query="competitors")),
        reply(text("Understood, continuing without search.")),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            agent = await orchestrator.spawn("Research competitors")
            await orchestrator.wait_for_agent(agent.id)

            result = await orchestrator.reject_tool(agent.id, "not allowed")
            assert result.success
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.WORKING
            assert agent.pending_tool_use is None
            assert agent.activity_log == []
            rejected = tool_results(agent.conversation[2])[0]
            assert rejected.is_error
            assert "Tool use rejected by user: not allowed" in rejected.content
            assert llm.calls[1]["messages"][2]["content"][0]["is_error"] is True

            with pytest.raises(NoPendingToolError):
                await orchestrator.approve_tool(agent.id)
        finally:
            await orchestrator.shutdown()


async def test_question_then_feedback():
    """An approved question pauses; feedback resumes the loop."""
    llm = ScriptedLLM([
        reply(tool("toolu_q", "request_user_feedback", question="Formal or casual?", context="Tone")),
        reply(
            tool("toolu_w", "write_file", filename="artifact.md", content="Dear team"),
            tool("toolu_d", "mark_complete", needs_review=False, summary="Email written"),
        ),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        events = collect_events(orchestrator)
        try:
            agent = await orchestrator.spawn("Write an email to the team")
            await orchestrator.wait_for_agent(agent.id)
            assert agent.pending_tool_use.name == "request_user_feedback"

            await orchestrator.approve_tool(agent.id)
            await orchestrator.wait_for_agent(agent.id)
            assert agent.state == AgentState.WAITING_FOR_USER_FEEDBACK
            assert agent.pending_question.question == "Formal or casual?"
            assert len(llm.calls) == 1

            questions = [e for e in events if e.type == EventType.AGENT_NEEDS_USER_FEEDBACK]
            assert questions[0].data == {"question": "Formal or casual?", "context": "Tone"}

            await orchestrator.provide_feedback(agent.id, "Formal please")
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.COMPLETED
            assert agent.pending_question is None
            assert len(llm.calls) == 2
            feedback = agent.conversation[3]
            assert feedback.role == "user"
            assert feedback.text == "User feedback: Formal please"

            artifact = orchestrator.get_primary_artifact(agent.id)
            assert artifact.filename == "artifact.md"
            assert artifact.content == "Dear team"
        finally:
            await orchestrator.shutdown()


async def test_feedback_supersedes_pending_batch():
    llm = ScriptedLLM([
        reply(tool("toolu_1", "fetch_url", url="https://example.com/a")),
        reply(text("OK, skipping the page.")),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            agent = await orchestrator.spawn("Summarise the page")
            await orchestrator.wait_for_agent(agent.id)
            assert agent.state == AgentState.WAITING_FOR_TOOL_APPROVAL

            await orchestrator.provide_feedback(agent.id, "Skip that page")
            await orchestrator.wait_for_agent(agent.id)

            message = agent.conversation[2]
            superseded = tool_results(message)[0]
            assert superseded.tool_use_id == "toolu_1"
            assert superseded.is_error
            assert "Superseded by user feedback" in superseded.content
            assert message.text == "User feedback: Skip that page"

            assert agent.pending_tool_use is None
            assert agent.pending_batch == []
            assert agent.last_response == "OK, skipping the page."
        finally:
            await orchestrator.shutdown()


async def test_terminate_discards_in_flight_response():
    llm = BlockingLLM(reply(tool("toolu_1", "write_file", filename="late.md", content="late")))

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            agent = await orchestrator.spawn("Slow task")
            assert await asyncio.to_thread(llm.started.wait, 5)

            result = await orchestrator.terminate(agent.id)
            assert result.success
            assert orchestrator.list_agents() == []
            with pytest.raises(AgentNotFoundError):
                orchestrator.get_agent(agent.id)

            llm.release.set()
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.TERMINATED
            assert len(agent.conversation) == 1
            assert agent.activity_log == []
            assert not (agent.workspace_dir / "late.md").exists()
            assert llm.calls == 1
        finally:
            llm.release.set()
            await orchestrator.shutdown()


async def test_terminate_before_first_run():
    llm = ScriptedLLM([reply(text("Too late."))])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            agent = await orchestrator.spawn("Never starts")
            result = await orchestrator.terminate(agent.id)
            assert result.success

            await orchestrator.wait_for_agent(agent.id)

            assert orchestrator._runs == {}
            assert llm.calls == []
            assert agent.state == AgentState.TERMINATED
            assert len(agent.conversation) <= 1
        finally:
            await orchestrator.shutdown()


async def test_transport_error_fails_agent():
    llm = ScriptedLLM([BedrockInvocationError("Failed to invoke model: throttled")])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            agent = await orchestrator.spawn("Anything")
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.FAILED
            assert agent.error == "Failed to invoke model: throttled"
            assert len(llm.calls) == 1

            with pytest.raises(InvalidAgentStateError):
                await orchestrator.provide_feedback(agent.id, "try again")

            await orchestrator.terminate(agent.id)
            assert orchestrator.list_agents() == []
        finally:
            await orchestrator.shutdown()


async def test_tool_errors_go_back_to_the_model():
    llm = ScriptedLLM([
        reply(
            tool("toolu_1", "read_file", filename="missing.md"),
            tool("toolu_2", "write_file", filename="../escape.md", content="x"),
            tool("toolu_3", "write_file", filename="notes.md"),
        ),
        reply(text("I'll try something else.")),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            agent = await orchestrator.spawn("Read my notes")
            await orchestrator.wait_for_agent(agent.id)

            results = tool_results(agent.conversation[2])
            assert all(result.is_error for result in results)
            errors = [json.loads(result.content)["error"] for result in results]
            assert errors[0] == "File not found in workspace: missing.md"
            assert "outside the agent workspace" in errors[1]
            assert "Missing required field" in errors[2]

            assert not (Path(temp_dir) / "workspaces" / "escape.md").exists()
            assert [entry.status for entry in agent.activity_log] == [ActivityStatus.ERROR] * 3
            assert agent.state == AgentState.WORKING
            assert agent.last_response == "I'll try something else."
        finally:
            await orchestrator.shutdown()


async def test_unreadable_files_become_error_results():
    """Binary content and malformed names come back as tool errors, not crashes."""
    llm = ScriptedLLM([
        reply(
            tool("toolu_1", "read_file", filename="img.png"),
            tool("toolu_2", "read_file", filename="bad\x00name.md"),
            tool("toolu_3", "list_files"),
        ),
        reply(text("That file is an image.")),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)

        async def broken_listing(agent, tool_input):
            raise RuntimeError("disk went away")

        orchestrator.executor._handlers["list_files"] = broken_listing
        try:
            agent = await orchestrator.spawn("Read the image")
            (agent.workspace_dir / "img.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\xff\xfe")
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.WORKING
            assert agent.last_response == "That file is an image."
            assert len(llm.calls) == 2

            results = tool_results(agent.conversation[2])
            assert [result.tool_use_id for result in results] == ["toolu_1", "toolu_2", "toolu_3"]
            assert all(result.is_error for result in results)
            errors = [json.loads(result.content)["error"] for result in results]
            assert "not a UTF-8 text file" in errors[0]
            assert "NUL" in errors[1]
            assert errors[2] == "Unexpected error in list_files: RuntimeError: disk went away"
            assert [entry.status for entry in agent.activity_log] == [ActivityStatus.ERROR] * 3
        finally:
            await orchestrator.shutdown()


async def test_approved_tool_failure_resumes_the_agent():
    llm = ScriptedLLM([
        reply(tool("toolu_1", "read_file", filename="img.png")),
        reply(text("Could not read it.")),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm, permissions={"read_file": "approve"})
        try:
            agent = await orchestrator.spawn("Read the image")
            (agent.workspace_dir / "img.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\xff\xfe")
            await orchestrator.wait_for_agent(agent.id)
            assert agent.pending_tool_use.name == "read_file"

            result = await orchestrator.approve_tool(agent.id)
            assert result.success
            await orchestrator.wait_for_agent(agent.id)

            assert agent.state == AgentState.WORKING
            assert agent.pending_tool_use is None
            assert agent.pending_batch == []
            assert len(llm.calls) == 2
            assert tool_results(agent.conversation[2])[0].is_error
            assert agent.activity_log[0].status == ActivityStatus.ERROR
        finally:
            await orchestrator.shutdown()


async def test_pending_image_selects_capable_model():
    png = b"\x89PNG fake image"
    llm = ScriptedLLM([
        reply(tool("toolu_1", "write_file", filename="notes.md", content="see photo")),
        reply(tool("toolu_2", "read_file", filename="notes.md")),
        reply(
            tool("toolu_3", "view_image", filename="photo.png", question="What is shown?"),
            tool("toolu_4", "read_file", filename="notes.md"),
        ),
        reply(text("It is a photo.")),
    ])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            agent = await orchestrator.spawn("Describe the photo")
            (agent.workspace_dir / "photo.png").write_bytes(png)
            await orchestrator.wait_for_agent(agent.id)

            assert [call["model_id"] for call in llm.calls] == [CAPABLE, CAPABLE, CHEAP, CAPABLE]

            image_message = agent.conversation[6]
            assert isinstance(image_message.content[-1], ImageBlock)
            assert image_message.content[-1].source.media_type == "image/png"
            assert image_message.content[-1].source.data == base64.b64encode(png).decode()
            assert llm.calls[3]["messages"][6]["content"][-1]["type"] == "image"

            assert agent.pending_image is None
            assert agent.last_tool_used == "read_file"
        finally:
            await orchestrator.shutdown()


async def test_linked_task_context_and_attachments():
    llm = ScriptedLLM([reply(text("Ready."))])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            store = orchestrator.task_store
            task = await store.create_task(
                TaskCreate(title="Fix login bug", deadline="2025-02-14", notes=["Seen on Safari"])
            )
            screenshot = Path(temp_dir) / "screenshot.png"
            screenshot.write_bytes(b"\x89PNG")
            await store.attach_file(task.id, screenshot)

            agent = await orchestrator.spawn("Investigate the login bug", linked_task_id=task.id)
            await orchestrator.wait_for_agent(agent.id)

            prompt = llm.calls[0]["system_prompt"]
            assert f"- Task ID: {task.id}" in prompt
            assert "  * Seen on Safari" in prompt
            assert "- Attachments loaded: screenshot.png" in prompt
            assert "screenshot.png (image loaded for your analysis)" in prompt
            assert "All available information has been loaded." in prompt
            assert "begin work immediately" in prompt

            first = agent.conversation[0]
            assert isinstance(first.content[0], TextBlock)
            assert isinstance(first.content[1], ImageBlock)
            assert (agent.workspace_dir / "screenshot.png").exists()
            assert agent.system_prompt == prompt
        finally:
            await orchestrator.shutdown()


async def test_delegation_spawns_linked_child():
    """A delegated child runs on its own and reports back to the task."""
    print("=" * 70)
    print("Test: delegate_task_to_agent")
    print("=" * 70)

    llm = ScriptedLLM(scripts={
        "": [
            reply(tool("toolu_d", "delegate_task_to_agent", task_id="research-vendors",
                       instructions="Compare prices")),
            reply(text("Delegated.")),
        ],
        "Compare prices": [
            reply(
                tool("toolu_w", "write_file", filename="artifact.md", content="Vendor A is cheapest"),
                tool("toolu_c", "mark_complete", needs_review=False, summary="Compared vendors"),
            ),
        ],
    })

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            await orchestrator.task_store.create_task(
                TaskCreate(title="Research vendors", target_date="2025-03-01", location=TaskLocation.TODAY)
            )

            parent = await orchestrator.spawn("Organise vendor selection")
            await orchestrator.wait_for_agent(parent.id)
            assert parent.pending_tool_use.name == "delegate_task_to_agent"

            await orchestrator.approve_tool(parent.id)
            await orchestrator.wait_for_agent(parent.id)

            children = [s for s in orchestrator.list_agents() if s.id != parent.id]
            assert len(children) == 1
            child = orchestrator.get_agent(children[0].id)
            await orchestrator.wait_for_agent(child.id)

            assert child.linked_task_id == "research-vendors"
            assert child.task_description == "Compare prices\n\nTask: Research vendors"
            assert child.state == AgentState.COMPLETED

            delegated = json.loads(tool_results(parent.conversation[2])[0].content)
            assert delegated["agent_id"] == child.id
            assert parent.last_response == "Delegated."

            task = await orchestrator.task_store.read_task("research-vendors")
            assert task.notes[-1].startswith("[Agent Output - ")
            assert task.notes[-1].endswith("\\nVendor A is cheapest")
            print(f"   ✓ Child {child.id} completed and attached its output")
        finally:
            await orchestrator.shutdown()


async def test_live_permission_change():
    """Tools absent from a configured permission map require approval."""
    llm = ScriptedLLM([reply(tool("toolu_1", "write_file", filename="a.md", content="x"))])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm, permissions={"read_file": "auto"})
        try:
            agent = await orchestrator.spawn("Write a file")
            await orchestrator.wait_for_agent(agent.id)
            assert agent.pending_tool_use.name == "write_file"
        finally:
            await orchestrator.shutdown()


async def test_control_surface_validation():
    llm = ScriptedLLM([reply(text("Hello."))])

    with tempfile.TemporaryDirectory() as temp_dir:
        orchestrator = make_orchestrator(temp_dir, llm)
        try:
            with pytest.raises(AgentSpawnError):
                await orchestrator.spawn("   ")
            with pytest.raises(AgentNotFoundError):
                await orchestrator.approve_tool("agent-missing")
            with pytest.raises(AgentNotFoundError):
                await orchestrator.terminate("agent-missing")

            agent = await orchestrator.spawn("Say hello")
            await orchestrator.wait_for_agent(agent.id)

            assert agent.id.startswith("agent-")
            assert agent.name == "Say hello"
            with pytest.raises(NoPendingToolError):
                await orchestrator.reject_tool(agent.id, "nothing to reject")

            (agent.workspace_dir / "draft.md").write_text("draft")
            assert orchestrator.list_workspace_files(agent.id) == ["draft.md"]
            assert orchestrator.read_workspace_file(agent.id, "draft.md").content == "draft"
            assert orchestrator.get_primary_artifact(agent.id) is None
            with pytest.raises(WorkspaceFileError):
                orchestrator.read_workspace_file(agent.id, "../../etc/passwd")
            with pytest.raises(WorkspaceFileError):
                orchestrator.read_workspace_file(agent.id, "missing.md")

            summary = orchestrator.list_agents()[0]
            assert summary.id == agent.id
            assert summary.state == AgentState.WORKING
        finally:
            await orchestrator.shutdown()


async def main():
    """Run all tests."""
    try:
        await test_write_and_complete_in_one_batch()
        for position in range(3):
            await test_batch_gated_at_any_position(position)
        await test_batch_members_are_approved_one_by_one()
        await test_reject_resumes_with_error_result()
        await test_question_then_feedback()
        await test_feedback_supersedes_pending_batch()
        await test_terminate_discards_in_flight_response()
        await test_terminate_before_first_run()
        await test_transport_error_fails_agent()
        await test_tool_errors_go_back_to_the_model()
        await test_unreadable_files_become_error_results()
        await test_approved_tool_failure_resumes_the_agent()
        await test_pending_image_selects_capable_model()
        await test_linked_task_context_and_attachments()
        await test_delegation_spawns_linked_child()
        await test_live_permission_change()
        await test_control_surface_validation()

        print("\n" + "=" * 70)
        print("✅ ORCHESTRATOR TESTS COMPLETED")
        print("=" * 70)

    except Exception as e:
        print(f"\n❌ TEST FAILED: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
