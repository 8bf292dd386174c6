"""FastAPI control surface for the agent orchestrator."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from coworker.app.config import settings
from coworker.orchestrator import tool_registry
from coworker.orchestrator.agent_manager import (
    AgentNotFoundError,
    AgentSpawnError,
    InvalidAgentStateError,
    NoPendingToolError,
    Orchestrator,
    OrchestratorError,
    WorkspaceFileError,
    create_orchestrator,
)

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


class SpawnRequest(BaseModel):
    task_description: str
    linked_task_id: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str = "No reason provided"


class FeedbackRequest(BaseModel):
    feedback: str


_ERROR_STATUS = {
    AgentNotFoundError: 404,
    WorkspaceFileError: 404,
    NoPendingToolError: 409,
    InvalidAgentStateError: 409,
    AgentSpawnError: 400,
}


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        orchestrator: Orchestrator to serve (default: built from settings at startup)

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown."""
        # Startup
        logger.info("Starting coworker orchestrator API")
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = create_orchestrator(settings)
        logger.info(f"Task store at {settings.pa_root}")

        yield

        # Shutdown
        logger.info("Shutting down coworker orchestrator API")
        await app.state.orchestrator.shutdown()

    app = FastAPI(
        title="Coworker Orchestrator API",
        description="Supervised task agents with human approval of tool calls",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan
    )
    app.state.orchestrator = orchestrator

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(OrchestratorError)
    async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
        status = _ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(status_code=status, content={"success": False, "error": str(exc)})

    def get_orchestrator() -> Orchestrator:
        return app.state.orchestrator

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Coworker Orchestrator API",
            "version": "0.1.0",
            "status": "running"
        }

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/tools")
    async def list_tools():
        """Tool catalog with the permission tier currently in force."""
        gate = get_orchestrator().gate
        return [
            {**tool.to_api(), "permission": gate.tier_for(tool.name).value}
            for tool in tool_registry.TOOL_REGISTRY
        ]

    @app.post("/agents")
    async def spawn_agent(request: SpawnRequest):
        agent = await get_orchestrator().spawn(request.task_description, request.linked_task_id)
        return {"success": True, "agent_id": agent.id}

    @app.get("/agents")
    async def list_agents():
        return [summary.model_dump(mode="json") for summary in get_orchestrator().list_agents()]

    @app.get("/agents/{agent_id}")
    async def get_agent(agent_id: str):
        agent = get_orchestrator().get_agent(agent_id)
        return agent.model_dump(mode="json")

    @app.post("/agents/{agent_id}/approve")
    async def approve_tool(agent_id: str):
        result = await get_orchestrator().approve_tool(agent_id)
        return result.model_dump()

    @app.post("/agents/{agent_id}/reject")
    async def reject_tool(agent_id: str, request: RejectRequest):
        result = await get_orchestrator().reject_tool(agent_id, request.reason)
        return result.model_dump()

    @app.post("/agents/{agent_id}/feedback")
    async def provide_feedback(agent_id: str, request: FeedbackRequest):
        result = await get_orchestrator().provide_feedback(agent_id, request.feedback)
        return result.model_dump()

    @app.delete("/agents/{agent_id}")
    async def terminate_agent(agent_id: str):
        result = await get_orchestrator().terminate(agent_id)
        return result.model_dump()

    @app.get("/agents/{agent_id}/artifact")
    async def get_artifact(agent_id: str):
        artifact = get_orchestrator().get_primary_artifact(agent_id)
        if artifact is None:
            return {"filename": None, "content": None}
        return artifact.model_dump()

    @app.get("/agents/{agent_id}/activity")
    async def get_activity(agent_id: str):
        return [entry.model_dump(mode="json") for entry in get_orchestrator().get_activity_log(agent_id)]

    @app.get("/agents/{agent_id}/files")
    async def list_files(agent_id: str):
        return {"files": get_orchestrator().list_workspace_files(agent_id)}

    @app.get("/agents/{agent_id}/files/{filename:path}")
    async def read_file(agent_id: str, filename: str):
        return get_orchestrator().read_workspace_file(agent_id, filename).model_dump()

    @app.websocket("/ws/events")
    async def events_socket(websocket: WebSocket):
        """Stream agent events as JSON until the client disconnects."""
        events = get_orchestrator().events
        queue = events.open_queue()

        async def forward_events():
            while True:
                event = await queue.get()
                await websocket.send_json(event.model_dump(mode="json"))

        sender: Optional[asyncio.Task] = None
        try:
            await websocket.accept()
            sender = asyncio.create_task(forward_events())
            # Clients only listen; receiving detects the disconnect
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Event websocket disconnected")
        finally:
            if sender is not None:
                sender.cancel()
            events.close_queue(queue)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
