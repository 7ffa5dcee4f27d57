"""Shared dependencies - the live controller, event broker, settings."""

from __future__ import annotations

import threading

from gptchat.chat.conversation import ConversationController
from gptchat.llm.client import LLMConfig
from gptchat.settings import get_llm_config, load_settings, save_settings
from gptchat.storage.catalog import ConversationCatalog

from api.services.events import EventBroker

__all__ = [
    "get_broker",
    "get_controller",
    "get_llm_config",
    "load_settings",
    "require_llm_config",
    "save_settings",
]

# ==================== Singletons ====================

_init_lock = threading.Lock()
_broker: EventBroker | None = None
_controller: ConversationController | None = None


def get_broker() -> EventBroker:
    global _broker
    with _init_lock:
        if _broker is None:
            _broker = EventBroker()
        return _broker


def get_controller() -> ConversationController:
    global _controller
    broker = get_broker()
    with _init_lock:
        if _controller is None:
            _controller = ConversationController(
                catalog=ConversationCatalog(),
                notifier=broker,
            )
        return _controller


# ==================== LLM Settings ====================

class MissingApiKey(Exception):
    pass


def require_llm_config() -> LLMConfig:
    config = get_llm_config()
    if config is None:
        raise MissingApiKey("Please provide an API key in the settings menu")
    return config
