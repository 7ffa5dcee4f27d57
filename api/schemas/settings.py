"""Pydantic v2 schemas for settings endpoints."""

from __future__ import annotations

from pydantic import BaseModel

from gptchat.chat.cost import Model


class SettingsResponse(BaseModel):
    api_key: str = ""
    base_url: str = ""
    model: Model = Model.GPT3


class SettingsUpdate(BaseModel):
    api_key: str | None = None
    base_url: str | None = None
    model: Model | None = None
