"""Settings router - API key / base URL / model endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from api.deps import load_settings, save_settings
from api.schemas.settings import SettingsResponse, SettingsUpdate
from gptchat.chat.cost import Model

router = APIRouter(tags=["settings"])


@router.get("/settings", response_model=SettingsResponse)
def get_settings():
    """Get current settings."""
    current = load_settings()
    current["model"] = Model.parse(current.get("model"), default=Model.GPT3)
    return current


@router.put("/settings", response_model=SettingsResponse)
def update_settings(body: SettingsUpdate):
    """Update settings."""
    current = load_settings()
    updates = body.model_dump(exclude_unset=True, exclude_none=True, mode="json")
    # Strip whitespace from string values
    for k, v in updates.items():
        if isinstance(v, str):
            updates[k] = v.strip()
    current.update(updates)
    save_settings(current)
    current["model"] = Model.parse(current.get("model"), default=Model.GPT3)
    return current
