"""
API Server for Claw

HTTP endpoints for:
- Sending messages and voice transcripts to the agent
- Answering approval requests
- Fetching messages the agent sent on its own (outbox)
- Inspecting status, history and tools

The server and the other listeners share one Agent instance.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from listeners.inbound import InboundHandler
from senders.outbox import OutboxSender
from utils.console import console

logger = logging.getLogger(__name__)

CHANNEL = "api"


# =============================================================================
# Request/Response Models
# =============================================================================

class MessageRequest(BaseModel):
    """Incoming message. ``voice`` marks a speech transcript."""
    user_id: str
    content: str
    voice: bool = False


class MessageResponse(BaseModel):
    user_id: str
    reply: str | None = None


class ApprovalRequest(BaseModel):
    user_id: str
    approved: bool


class ApprovalResponse(BaseModel):
    user_id: str
    resolved: bool


class StatusResponse(BaseModel):
    status: str
    current_task: str | None = None
    working_users: list[str] = []
    pending_approvals: list[str] = []
    tools: int
    scheduled_tasks: int


class HistoryResponse(BaseModel):
    user_id: str
    messages: list[dict]


class OutboxResponse(BaseModel):
    user_id: str
    messages: list[dict]


# =============================================================================
# App
# =============================================================================

def create_app(agent, manage_lifecycle: bool = True) -> FastAPI:
    """Build the API around ``agent``.

    Args:
        agent: The shared Agent instance
        manage_lifecycle: Start and stop the agent with the app. Off when
            main.py runs the server next to other listeners.
    """
    outbox = agent.senders.get(CHANNEL)
    if outbox is None:
        outbox = OutboxSender()
        agent.register_sender(CHANNEL, outbox)
    inbound = InboundHandler(agent, channel=CHANNEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if manage_lifecycle:
            await agent.start()
        logger.debug("API server started")
        yield
        if manage_lifecycle:
            await agent.stop()

    app = FastAPI(
        title="Claw API",
        description="HTTP interface for the Claw personal agent",
        lifespan=lifespan,
    )
    app.state.agent = agent
    app.state.outbox = outbox

    def _require_allowed(user_id: str):
        if not agent.is_allowed(user_id):
            raise HTTPException(status_code=403, detail=f"User {user_id} is not allowed")

    @app.post("/message", response_model=MessageResponse)
    async def post_message(request: MessageRequest):
        """Run a message through the agent and return its reply.

        Blocks until the turn finishes. A turn waiting for approval finishes
        once ``POST /approval`` (or a /yes message) answers it.
        """
        _require_allowed(request.user_id)
        console.activity(CHANNEL, f"message from {request.user_id}")
        if request.voice:
            reply = await inbound.handle_transcript(request.user_id, request.content)
        else:
            reply = await inbound.handle_text(request.user_id, request.content)
        return MessageResponse(user_id=request.user_id, reply=reply)

    @app.post("/approval", response_model=ApprovalResponse)
    async def post_approval(request: ApprovalRequest):
        _require_allowed(request.user_id)
        resolved = agent.approvals.resolve(request.user_id, request.approved)
        if not resolved:
            raise HTTPException(status_code=404, detail="No pending approval for this user")
        return ApprovalResponse(user_id=request.user_id, resolved=True)

    @app.get("/messages/{user_id}", response_model=OutboxResponse)
    async def get_messages(user_id: str):
        """Drain messages the agent sent to ``user_id`` outside a reply."""
        _require_allowed(user_id)
        return OutboxResponse(user_id=user_id, messages=outbox.drain(user_id))

    @app.get("/status", response_model=StatusResponse)
    async def get_status():
        state = agent.state.to_dict()
        return StatusResponse(
            **state,
            pending_approvals=agent.approvals.pending_users(),
            tools=len(agent.registry),
            scheduled_tasks=len(agent.scheduler.list(include_disabled=True)),
        )

    @app.get("/history/{user_id}", response_model=HistoryResponse)
    async def get_history(user_id: str):
        _require_allowed(user_id)
        session = agent.sessions.peek(user_id)
        return HistoryResponse(user_id=user_id, messages=list(session.history) if session else [])

    @app.delete("/history/{user_id}")
    async def delete_history(user_id: str):
        _require_allowed(user_id)
        return {"user_id": user_id, "cleared": agent.sessions.clear(user_id)}

    @app.get("/tools")
    async def list_tools():
        return {"tools": agent.registry.schemas()}

    return app
