"""Conversation state and the single-flight turn controller.

One ``ConversationController`` owns the live conversation. ``prompt`` takes
the lock, appends the user message and an empty assistant placeholder, and
hands the stream to a background thread which folds deltas into the
placeholder until ``Done``, end of stream, a decode error, cancellation, or
the inactivity timeout. The turn then prices itself, unlocks, and saves.
"""

from __future__ import annotations

import queue
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from loguru import logger

from gptchat.chat.cost import calculate_cost, count_words, estimate_tokens
from gptchat.chat.events import (
    COST_COMPUTED,
    LOCK_STATE_CHANGED,
    MESSAGE_CONTENT_APPENDED,
    MESSAGES_REFRESHED,
    NullNotifier,
    Notifier,
)
from gptchat.chat.transcript import Message, Role, Transcript
from gptchat.llm.client import ChatCompletionClient, DeltaStream, LLMConfig, LLMError
from gptchat.llm.prompts import build_request_messages, build_title_messages, clean_title
from gptchat.llm.sse import ContentDelta, Done, StreamError, StreamReadFailed
from gptchat.storage.catalog import (
    ConversationCatalog,
    PersistenceError,
    SerializedConversation,
)

INACTIVITY_TIMEOUT = 5.0

_END_OF_STREAM = object()


class ConversationError(Exception):
    pass


class ConversationLocked(ConversationError):
    def __init__(self, message: str = "There is already a request in progress"):
        super().__init__(message)


def new_conversation_id() -> int:
    return random.getrandbits(32)


@dataclass
class Conversation:
    id: int = field(default_factory=new_conversation_id)
    name: str | None = None
    date_created: int = field(default_factory=lambda: int(time.time()))
    transcript: Transcript = field(default_factory=Transcript)
    # 每次 reset / load 递增，后台 turn 借此识别自己是否已过期
    epoch: int = 0

    def reset(self) -> None:
        self.id = new_conversation_id()
        self.name = None
        self.date_created = int(time.time())
        self.transcript = Transcript()
        self.epoch += 1

    def restore(self, snapshot: SerializedConversation) -> None:
        self.id = snapshot.id
        self.name = snapshot.name or None
        self.date_created = snapshot.date_created
        self.transcript = Transcript()
        self.transcript.replace([m.copy() for m in snapshot.messages])
        self.epoch += 1

    def serialize(self) -> SerializedConversation:
        return SerializedConversation(
            name=self.name or "",
            id=self.id,
            date_created=self.date_created,
            messages=[m.copy() for m in self.transcript],
        )


@dataclass
class _Turn:
    token: object
    epoch: int
    config: LLMConfig
    stream: DeltaStream
    placeholder: Message
    input_tokens: int
    fragments: list[str] = field(default_factory=list)


class ConversationController:
    """Drives prompts against the one live conversation.

    Transcript and name are guarded by ``_mutex``. The lock flag (the token
    of the turn holding it) has its own guard so ``is_locked`` never waits
    on transcript access; the cancel flag is a plain ``threading.Event``.
    """

    def __init__(
        self,
        catalog: ConversationCatalog | None = None,
        notifier: Notifier | None = None,
        client_factory: Callable[[LLMConfig], Any] = ChatCompletionClient,
        inactivity_timeout: float = INACTIVITY_TIMEOUT,
    ):
        self.catalog = catalog or ConversationCatalog()
        self.notifier = notifier or NullNotifier()
        self.client_factory = client_factory
        self.inactivity_timeout = inactivity_timeout

        self.conversation = Conversation()
        self._mutex = threading.Lock()
        # snapshot + write 一起串行，后写入的总是较新的快照
        self._save_lock = threading.Lock()
        self._flag_guard = threading.Lock()
        self._lock_owner: object | None = None
        self._cancel = threading.Event()
        self._worker: threading.Thread | None = None

    # ==================== 状态查询 ====================

    @property
    def is_locked(self) -> bool:
        return self._lock_owner is not None

    def get_current_id(self) -> int:
        return self.conversation.id

    def messages(self) -> list[Message]:
        with self._mutex:
            return [m.copy() for m in self.conversation.transcript]

    def snapshot(self) -> SerializedConversation:
        with self._mutex:
            return self.conversation.serialize()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Join the current turn thread. Returns False if it is still running."""
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    # ==================== 命令 ====================

    def prompt(self, text: str, config: LLMConfig) -> None:
        """Start a turn. Returns once the turn is running in the background."""
        token = object()
        with self._flag_guard:
            if self._lock_owner is not None:
                raise ConversationLocked()

            client = self.client_factory(config)
            with self._mutex:
                history = self.conversation.transcript.copy()
            history.append(Message(Role.USER, text))
            history.append(Message(Role.ASSISTANT, ""))
            # TransportUnavailable propagates before anything is locked or appended
            stream = client.open_stream(build_request_messages(history))

            self._lock_owner = token
            self._cancel.clear()

        with self._mutex:
            transcript = self.conversation.transcript
            transcript.append(Message(Role.USER, text))
            input_tokens = estimate_tokens(count_words(transcript.text()))
            placeholder = transcript.append(Message(Role.ASSISTANT, ""))
            turn = _Turn(
                token=token,
                epoch=self.conversation.epoch,
                config=config,
                stream=stream,
                placeholder=placeholder,
                input_tokens=input_tokens,
            )

        logger.info(f"Turn started: conversation={self.conversation.id}, input≈{input_tokens} tokens")
        self._emit(LOCK_STATE_CHANGED, True)

        t = threading.Thread(target=self._run_turn, args=(turn,), daemon=True)
        self._worker = t
        t.start()

    def cancel(self) -> None:
        """Ask the running turn to stop at the next delta. Dropped when idle."""
        if self.is_locked:
            self._cancel.set()
        else:
            logger.debug("Cancel requested while idle, ignored")

    def clear(self) -> None:
        if self.is_locked:
            raise ConversationLocked()
        with self._mutex:
            self.conversation.transcript.clear()
            messages = self.conversation.transcript.to_dicts()
        self._emit(MESSAGES_REFRESHED, messages)

    def save(self, config: LLMConfig | None = None) -> SerializedConversation:
        """Persist the conversation, generating a title first if none is cached."""
        return self._save(config)

    def _save(self, config: LLMConfig | None, expected_epoch: int | None = None
              ) -> SerializedConversation | None:
        """With ``expected_epoch`` the write is skipped once the conversation was reset or replaced."""
        with self._mutex:
            epoch = self.conversation.epoch
            if expected_epoch is not None and epoch != expected_epoch:
                return None
            needs_name = not self.conversation.name and len(self.conversation.transcript) > 0
            history = self.conversation.transcript.copy()

        if needs_name and config is not None:
            title = self._generate_title(history, config)
            if title:
                with self._mutex:
                    if self.conversation.epoch == epoch and not self.conversation.name:
                        self.conversation.name = title

        with self._save_lock:
            with self._mutex:
                if expected_epoch is not None and self.conversation.epoch != expected_epoch:
                    logger.info("Conversation changed during save, skipping the write")
                    return None
                snapshot = self.conversation.serialize()
            self.catalog.save(snapshot)
        return snapshot

    def list_conversations(self) -> list[SerializedConversation]:
        return self.catalog.list()

    def load_conversation(self, conversation_id: int) -> None:
        snapshot = self.catalog.load(conversation_id)
        with self._mutex:
            self.conversation.restore(snapshot)
            messages = self.conversation.transcript.to_dicts()
        logger.info(f"Conversation loaded: {conversation_id} ({len(messages)} messages)")
        self._emit(MESSAGES_REFRESHED, messages)

    def reset_conversation(self) -> None:
        """Start a new conversation. Also abandons a wedged turn."""
        with self._mutex:
            self.conversation.reset()
            messages = self.conversation.transcript.to_dicts()

        with self._flag_guard:
            was_locked = self._lock_owner is not None
            self._lock_owner = None
            self._cancel.clear()

        if was_locked:
            logger.warning("Conversation reset while a turn was streaming; the turn is abandoned")
            self._emit(LOCK_STATE_CHANGED, False)
        self._emit(MESSAGES_REFRESHED, messages)

    def delete_conversation(self, conversation_id: int) -> None:
        self.catalog.delete(conversation_id)

    # ==================== 后台 turn ====================

    def _run_turn(self, turn: _Turn) -> None:
        deltas: queue.Queue = queue.Queue()
        pump = threading.Thread(target=self._pump, args=(turn.stream, deltas), daemon=True)
        pump.start()

        try:
            self._consume(turn, deltas)
        finally:
            turn.stream.close()

        self._finish_turn(turn)

    @staticmethod
    def _pump(stream: DeltaStream, deltas: queue.Queue) -> None:
        try:
            for delta in stream:
                deltas.put(delta)
        except StreamError as e:
            deltas.put(e)
        except Exception as e:
            # closing the response under a blocked read lands here
            deltas.put(StreamReadFailed(f"Error while reading response stream: {e}"))
        finally:
            deltas.put(_END_OF_STREAM)

    def _consume(self, turn: _Turn, deltas: queue.Queue) -> None:
        while True:
            try:
                item = deltas.get(timeout=self.inactivity_timeout)
            except queue.Empty:
                logger.warning(f"No data for {self.inactivity_timeout}s, abandoning stream")
                return

            if item is _END_OF_STREAM:
                logger.debug("Stream ended without [DONE]")
                return
            if isinstance(item, StreamError):
                logger.error(f"Stream failed: {item}")
                return
            if isinstance(item, Done):
                return
            if not isinstance(item, ContentDelta):
                continue

            if self._consume_cancel():
                logger.info("Turn cancelled")
                return
            if not self._apply(turn, item.text):
                logger.info("Turn belongs to a conversation that was reset or replaced, dropping")
                return

    def _consume_cancel(self) -> bool:
        if self._cancel.is_set():
            self._cancel.clear()
            return True
        return False

    def _apply(self, turn: _Turn, fragment: str) -> bool:
        with self._mutex:
            if self.conversation.epoch != turn.epoch:
                return False
            turn.placeholder.add_content(fragment)
            turn.fragments.append(fragment)
        self._emit(MESSAGE_CONTENT_APPENDED, fragment)
        return True

    def _finish_turn(self, turn: _Turn) -> None:
        output_tokens = estimate_tokens(count_words("".join(turn.fragments)))
        cost = calculate_cost(turn.config.model, turn.input_tokens, output_tokens)

        with self._mutex:
            stale = self.conversation.epoch != turn.epoch
            if not stale:
                turn.placeholder.set_cost(cost)

        with self._flag_guard:
            owned = self._lock_owner is turn.token
            if owned:
                self._lock_owner = None

        if stale:
            # reset already released the lock; after a load it is still ours
            if owned:
                self._emit(LOCK_STATE_CHANGED, False)
            return

        logger.info(
            f"Turn finished: {len(turn.fragments)} fragments, output≈{output_tokens} tokens, "
            f"cost≈${cost:.6f}"
        )

        try:
            self._save(turn.config, expected_epoch=turn.epoch)
        except (PersistenceError, LLMError) as e:
            logger.warning(f"Automatic save after turn failed: {e}")

        with self._mutex:
            stale = self.conversation.epoch != turn.epoch
        if not stale:
            self._emit(COST_COMPUTED, cost)
        self._emit(LOCK_STATE_CHANGED, False)

    def _generate_title(self, history: Transcript, config: LLMConfig) -> str:
        try:
            raw = self.client_factory(config).chat(build_title_messages(history))
        except LLMError as e:
            logger.warning(f"Title generation failed, saving without a name: {e}")
            return ""
        return clean_title(raw)

    def _emit(self, event: str, payload: Any) -> None:
        try:
            self.notifier.emit(event, payload)
        except Exception as e:
            logger.warning(f"Notifier failed on {event}: {e}")
