"""对话持久化 — 每个对话一个 JSON 文件，文件名为对话 id"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger
from platformdirs import user_data_dir

from gptchat.chat.transcript import Message

APP_NAME = "gptchat"


class PersistenceError(Exception):
    pass


class ConversationNotFound(PersistenceError):
    pass


@dataclass
class SerializedConversation:
    """Durable projection of a conversation; lock/cancel state is never stored."""

    name: str
    id: int
    date_created: int
    messages: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "id": self.id,
            "date_created": self.date_created,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SerializedConversation":
        if not isinstance(data, dict):
            raise ValueError("conversation snapshot must be an object")
        conv_id = data["id"]
        created = data["date_created"]
        if not isinstance(conv_id, int) or isinstance(conv_id, bool) or conv_id < 0:
            raise ValueError(f"invalid conversation id: {conv_id!r}")
        if not isinstance(created, (int, float)) or isinstance(created, bool):
            raise ValueError(f"invalid date_created: {created!r}")
        messages = data["messages"]
        if not isinstance(messages, list):
            raise ValueError("messages must be a list")
        name = data.get("name") or ""
        if not isinstance(name, str):
            raise ValueError("name must be a string")
        return cls(
            name=name,
            id=conv_id,
            date_created=int(created),
            messages=[Message.from_dict(m) for m in messages],
        )


def default_conversations_dir() -> Path:
    return Path(user_data_dir(APP_NAME)) / "conversations"


class ConversationCatalog:
    """目录式对话仓库：save / load / list / delete"""

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root) if root else default_conversations_dir()
        self._write_lock = threading.Lock()

    def path_for(self, conversation_id: int) -> Path:
        return self.root / str(conversation_id)

    def save(self, snapshot: SerializedConversation) -> Path:
        path = self.path_for(snapshot.id)
        # 临时文件名不是纯数字，ids() 不会把它当成对话
        tmp = path.with_name(f".{snapshot.id}.{threading.get_ident()}.tmp")
        with self._write_lock:
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(snapshot.to_dict(), f, ensure_ascii=False, indent=2)
                os.replace(tmp, path)
            except OSError as e:
                tmp.unlink(missing_ok=True)
                raise PersistenceError(f"Failed to write conversation {snapshot.id}: {e}") from e
        logger.debug(f"Conversation saved: {path} ({len(snapshot.messages)} messages)")
        return path

    def load(self, conversation_id: int) -> SerializedConversation:
        path = self.path_for(conversation_id)
        if not path.is_file():
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return SerializedConversation.from_dict(data)
        except OSError as e:
            raise PersistenceError(f"Failed to read conversation {conversation_id}: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Conversation {conversation_id} is malformed: {e}") from e

    def ids(self) -> list[int]:
        if not self.root.is_dir():
            return []
        ids = []
        for fp in self.root.iterdir():
            if fp.is_file() and fp.name.isdigit():
                ids.append(int(fp.name))
        return ids

    def list(self) -> list[SerializedConversation]:
        """All readable snapshots, most recent first. Corrupt files are skipped."""
        results = []
        for conversation_id in self.ids():
            try:
                results.append(self.load(conversation_id))
            except PersistenceError as e:
                logger.warning(f"Skipping conversation {conversation_id}: {e}")
                continue
        results.sort(key=lambda c: c.date_created, reverse=True)
        return results

    def delete(self, conversation_id: int) -> None:
        path = self.path_for(conversation_id)
        if not path.is_file():
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        try:
            path.unlink()
        except OSError as e:
            raise PersistenceError(f"Failed to delete conversation {conversation_id}: {e}") from e
        logger.info(f"Conversation deleted: {conversation_id}")
