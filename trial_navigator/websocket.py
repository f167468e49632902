"""WebSocket handler for chat turns."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from trial_navigator.agents.orchestrator import TrialAgent, create_agent
from trial_navigator.errors import MissingCredentialsError
from trial_navigator.session import SessionManager

logger = logging.getLogger(__name__)
router = APIRouter()

# One agent per session, shared with the REST chat endpoint
_agents: dict[str, TrialAgent] = {}


def get_agent(session_id: str, session_mgr: SessionManager) -> TrialAgent:
    """Return the session's agent, creating it (and restoring its token) on first use."""
    if session_id not in _agents:
        _agents[session_id] = create_agent(session_id, session_mgr)
    return _agents[session_id]


def live_agent(session_id: str) -> TrialAgent | None:
    return _agents.get(session_id)


@router.websocket("/ws/{session_id}")
async def websocket_endpoint(websocket: WebSocket, session_id: str):
    await websocket.accept()
    session_mgr = SessionManager()

    try:
        session_mgr.session_dir(session_id)
    except ValueError:
        await websocket.send_json({"type": "error", "content": "Invalid session ID"})
        await websocket.close()
        return

    try:
        agent = get_agent(session_id, session_mgr)
    except MissingCredentialsError as exc:
        await websocket.send_json({"type": "error", "content": str(exc)})
        await websocket.close()
        return

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                data = None
            if isinstance(data, str):
                data = {"type": "message", "content": data}
            elif not isinstance(data, dict):
                data = {"type": "message", "content": raw}

            msg_type = data.get("type", "message")
            if msg_type == "reset":
                agent.reset_conversation(clear_cache=bool(data.get("clear_cache")))
                await websocket.send_json({"type": "reset_done"})
                continue

            user_content = data.get("content")
            if not isinstance(user_content, str):
                user_content = "" if user_content is None else json.dumps(user_content)
            if not user_content.strip():
                continue

            try:
                reply = await agent.chat(user_content)
            except Exception:
                logger.exception("Chat turn failed for session %s", session_id)
                await websocket.send_json({
                    "type": "error",
                    "content": "An unexpected error occurred. Please try again.",
                })
                continue

            await websocket.send_json({
                "type": "agent_response",
                **reply.model_dump(mode="json", by_alias=True),
            })

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for session %s", session_id)
        # Agent stays cached so the session can be resumed
