"""Notifications sent to whatever is presenting the conversation."""

from __future__ import annotations

from typing import Any, Protocol

LOCK_STATE_CHANGED = "lock-state-changed"
MESSAGE_CONTENT_APPENDED = "message-content-appended"
COST_COMPUTED = "cost-computed"
MESSAGES_REFRESHED = "messages-refreshed"


class Notifier(Protocol):
    def emit(self, event: str, payload: Any) -> None:
        ...


class NullNotifier:
    def emit(self, event: str, payload: Any) -> None:
        pass
