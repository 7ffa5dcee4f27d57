"""对话消息与 Transcript"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    role: Role
    content: str = ""
    cost_dollars: float | None = None

    def add_content(self, fragment: str) -> None:
        self.content += fragment

    def set_cost(self, cost: float) -> None:
        if self.cost_dollars is not None:
            raise ValueError("cost already set for this message")
        self.cost_dollars = cost

    def to_api(self) -> dict:
        """Wire shape: role and content only."""
        return {"role": self.role.value, "content": self.content}

    def to_dict(self) -> dict:
        data = {"role": self.role.value, "content": self.content}
        if self.cost_dollars is not None:
            data["cost_dollars"] = self.cost_dollars
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        if not isinstance(data, dict):
            raise ValueError(f"message must be an object, got {type(data).__name__}")
        content = data["content"]
        if not isinstance(content, str):
            raise ValueError("message content must be a string")
        cost = data.get("cost_dollars")
        if cost is not None and not isinstance(cost, (int, float)):
            raise ValueError("cost_dollars must be a number")
        return cls(
            role=Role(data["role"]),
            content=content,
            cost_dollars=float(cost) if cost is not None else None,
        )

    def copy(self) -> "Message":
        return Message(self.role, self.content, self.cost_dollars)


@dataclass
class Transcript:
    """User/assistant history in conversation order.

    The system directive is never stored here; it is prepended when a
    request is built (see gptchat.llm.prompts.build_request_messages).
    """

    messages: list[Message] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def append(self, message: Message) -> Message:
        if message.role == Role.SYSTEM:
            raise ValueError("system messages are injected per request, not stored")
        self.messages.append(message)
        return message

    def clear(self) -> None:
        self.messages = []

    def replace(self, messages: list[Message]) -> None:
        self.messages = [m for m in messages if m.role != Role.SYSTEM]

    def text(self) -> str:
        return "\n".join(m.content for m in self.messages)

    def copy(self) -> "Transcript":
        return Transcript([m.copy() for m in self.messages])

    def to_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self.messages]
