from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from mantis.agent.cognition.dialogue.engine import DialogueEngine
from mantis.agent.cognition.nlu.catalog import get_default_catalog, load_catalog
from mantis.agent.cognition.nlu.intent_recognizer import IntentRecognizer
from mantis.agent.session.registry import SessionRegistry
from mantis.config import settings

app = FastAPI(title="Mantis API", version="0.1.0")
registry = SessionRegistry()


class RecognizeRequest(BaseModel):
    text: str
    history: list[str] = Field(default_factory=list)
    chain: bool = False


class MessageRequest(BaseModel):
    text: str


class OutcomeRequest(BaseModel):
    intent: str
    entities: dict[str, str] = Field(default_factory=dict)
    response: str | None = None
    is_nested: bool = False
    success: bool = True
    confidence: float | None = None


@app.post("/nlu/recognize")
def recognize(
    payload: RecognizeRequest,
    x_mantis_api_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _assert_api_token(x_mantis_api_token)
    recognizer = _recognizer()
    if payload.chain:
        commands = recognizer.recognize_chain(payload.text, payload.history)
        return {"commands": [command.to_dict() for command in commands]}
    return recognizer.recognize(payload.text, payload.history).to_dict()


@app.post("/sessions/{session_id}/messages")
async def post_message(
    session_id: str,
    payload: MessageRequest,
    x_mantis_api_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _assert_api_token(x_mantis_api_token)
    engine = registry.get_or_create(session_id)
    async with registry.lock_for(session_id):
        result = await engine.handle_turn(payload.text)
    return {"session_id": session_id, "result": result.to_dict(), "state": engine.current_frame.state.value}


@app.post("/sessions/{session_id}/outcome")
async def post_outcome(
    session_id: str,
    payload: OutcomeRequest,
    x_mantis_api_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _assert_api_token(x_mantis_api_token)
    engine = _require_session(session_id)
    async with registry.lock_for(session_id):
        follow = engine.update_context(
            payload.intent,
            payload.entities,
            payload.response,
            is_nested=payload.is_nested,
            success=payload.success,
            confidence=payload.confidence,
        )
    return {
        "session_id": session_id,
        "result": follow.to_dict() if follow else None,
        "state": engine.current_frame.state.value,
    }


@app.post("/sessions/{session_id}/resume")
async def post_resume(
    session_id: str,
    x_mantis_api_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _assert_api_token(x_mantis_api_token)
    engine = _require_session(session_id)
    async with registry.lock_for(session_id):
        result = engine.resume()
    return {
        "session_id": session_id,
        "resumed": result is not None,
        "result": result.to_dict() if result else None,
    }


@app.get("/sessions/{session_id}/context")
async def get_context(
    session_id: str,
    full: bool = False,
    x_mantis_api_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _assert_api_token(x_mantis_api_token)
    engine = _require_session(session_id)
    async with registry.lock_for(session_id):
        if full:
            return engine.get_full_context()
        context = engine.get_context()
        pending = engine.peek_timeout()
    if pending is not None:
        context["timeout"] = pending.to_dict()
    return context


@app.get("/sessions/{session_id}/suggestion")
async def get_suggestion(
    session_id: str,
    x_mantis_api_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _assert_api_token(x_mantis_api_token)
    engine = _require_session(session_id)
    async with registry.lock_for(session_id):
        suggestion = engine.suggest_next_interaction()
    return {"session_id": session_id, "suggestion": suggestion.to_dict() if suggestion else None}


@app.delete("/sessions/{session_id}")
def delete_session(
    session_id: str,
    x_mantis_api_token: str | None = Header(default=None),
) -> dict[str, Any]:
    _assert_api_token(x_mantis_api_token)
    if not registry.drop(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"deleted": True, "session_id": session_id}


def _recognizer() -> IntentRecognizer:
    path = settings.get_nlu_catalog_path()
    catalog = load_catalog(path) if path else get_default_catalog()
    return IntentRecognizer(catalog, analysis_char_limit=settings.get_analysis_char_limit())


def _require_session(session_id: str) -> DialogueEngine:
    engine = registry.get(session_id)
    if engine is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return engine


def _assert_api_token(provided: str | None) -> None:
    expected = settings.get_api_token()
    if expected and provided != expected:
        raise HTTPException(status_code=401, detail="Invalid API token")
