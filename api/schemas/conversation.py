"""Pydantic v2 schemas for conversation endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class MessageSchema(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str
    cost_dollars: float | None = None


class PromptRequest(BaseModel):
    text: str = Field(min_length=1)


class ConversationSnapshot(BaseModel):
    name: str = ""
    id: int
    date_created: int
    messages: list[MessageSchema] = []


class CurrentConversationResponse(BaseModel):
    id: int
    name: str = ""
    date_created: int
    locked: bool
    messages: list[MessageSchema] = []


class ConversationListResponse(BaseModel):
    conversations: list[ConversationSnapshot]


class StatusResponse(BaseModel):
    status: str = "ok"
