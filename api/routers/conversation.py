"""Conversation router - prompt / cancel / clear / save / load / reset + event stream."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from api.deps import MissingApiKey, get_broker, get_controller, require_llm_config
from api.schemas.conversation import (
    ConversationListResponse,
    CurrentConversationResponse,
    PromptRequest,
    StatusResponse,
)
from gptchat.chat.conversation import ConversationLocked
from gptchat.llm.client import LLMError
from gptchat.storage.catalog import ConversationNotFound, PersistenceError

router = APIRouter(tags=["conversation"])


# ==================== Current conversation ====================

@router.get("/conversation", response_model=CurrentConversationResponse)
def get_current_conversation():
    """Current id, cached name, lock state and messages."""
    controller = get_controller()
    snapshot = controller.snapshot()
    return {
        "id": snapshot.id,
        "name": snapshot.name,
        "date_created": snapshot.date_created,
        "locked": controller.is_locked,
        "messages": [m.to_dict() for m in snapshot.messages],
    }


@router.get("/conversation/id")
def get_current_id():
    return {"id": get_controller().get_current_id()}


@router.post("/conversation/prompt", response_model=StatusResponse)
def prompt(body: PromptRequest):
    """Start a streaming turn; content arrives on /events."""
    try:
        config = require_llm_config()
        get_controller().prompt(body.text, config)
    except MissingApiKey as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConversationLocked as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LLMError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "ok"}


@router.post("/conversation/cancel", response_model=StatusResponse)
def cancel():
    get_controller().cancel()
    return {"status": "ok"}


@router.post("/conversation/clear", response_model=StatusResponse)
def clear():
    try:
        get_controller().clear()
    except ConversationLocked as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "ok"}


@router.post("/conversation/save", response_model=StatusResponse)
def save():
    try:
        config = require_llm_config()
        get_controller().save(config)
    except MissingApiKey as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok"}


@router.post("/conversation/reset", response_model=StatusResponse)
def reset():
    get_controller().reset_conversation()
    return {"status": "ok"}


# ==================== Saved conversations ====================

@router.get("/conversations", response_model=ConversationListResponse)
def list_conversations():
    try:
        conversations = get_controller().list_conversations()
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"conversations": [c.to_dict() for c in conversations]}


@router.post("/conversations/{conversation_id}/load", response_model=StatusResponse)
def load_conversation(conversation_id: int):
    try:
        get_controller().load_conversation(conversation_id)
    except ConversationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok"}


@router.delete("/conversations/{conversation_id}", response_model=StatusResponse)
def delete_conversation(conversation_id: int):
    try:
        get_controller().delete_conversation(conversation_id)
    except ConversationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "ok"}


# ==================== Notifications ====================

@router.get("/events")
def events():
    """SSE endpoint: lock / content / cost / refresh notifications."""
    return StreamingResponse(get_broker().stream(), media_type="text/event-stream")
