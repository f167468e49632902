from __future__ import annotations

import logging
import os

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from trial_navigator.config import settings
from trial_navigator.errors import MissingCredentialsError, ModelEndpointError, SourceError
from trial_navigator.models.patient import PatientProfile
from trial_navigator.session import SessionManager
from trial_navigator.sources.scri import ScriClient
from trial_navigator.websocket import get_agent, live_agent
from trial_navigator.websocket import router as ws_router

logger = logging.getLogger(__name__)

app = FastAPI(title="SCRI Trial Navigator", version="0.1.0")

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
if os.environ.get("FRONTEND_URL"):
    origins.append(os.environ["FRONTEND_URL"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

session_mgr = SessionManager()


class ChatRequest(BaseModel):
    message: str


def _require_session(session_id: str) -> None:
    try:
        session_mgr.session_dir(session_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _agent_for(session_id: str):
    _require_session(session_id)
    try:
        return get_agent(session_id, session_mgr)
    except MissingCredentialsError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.get("/health")
async def health():
    return {"status": "ok", "service": "trial-navigator"}


@app.post("/api/sessions")
async def create_session():
    session_id = session_mgr.create_session()
    return {"session_id": session_id}


@app.get("/api/sessions/{session_id}/profile")
async def get_profile(session_id: str):
    _require_session(session_id)
    return session_mgr.get_profile(session_id).model_dump(mode="json", by_alias=True)


@app.put("/api/sessions/{session_id}/profile")
async def put_profile(session_id: str, profile: PatientProfile):
    _require_session(session_id)
    session_mgr.save_profile(session_id, profile)
    # An agent created later loads the profile from disk
    agent = live_agent(session_id)
    if agent is not None:
        agent.set_patient_profile(profile)
    return profile.model_dump(mode="json", by_alias=True)


@app.post("/api/sessions/{session_id}/chat")
async def chat(session_id: str, body: ChatRequest):
    agent = _agent_for(session_id)
    try:
        reply = await agent.chat(body.message)
    except ModelEndpointError as exc:
        logger.error("Chat turn failed for session %s: %s", session_id, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return reply.model_dump(mode="json", by_alias=True)


@app.post("/api/sessions/{session_id}/reset")
async def reset(session_id: str, clear_cache: bool = False):
    agent = _agent_for(session_id)
    agent.reset_conversation(clear_cache=clear_cache)
    return agent.get_conversation_state().model_dump()


@app.get("/api/sessions/{session_id}/state")
async def get_state(session_id: str):
    return _agent_for(session_id).get_conversation_state().model_dump()


@app.get("/api/cancer-types")
async def cancer_types():
    try:
        return await ScriClient().list_cancer_types()
    except SourceError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


app.include_router(ws_router)


def run() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    run()
