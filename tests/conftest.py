"""Shared fixtures: a scripted chat client and a recording notifier."""

import threading
import time

import pytest

from gptchat.chat.conversation import ConversationController
from gptchat.chat.cost import Model
from gptchat.llm.client import LLMConfig
from gptchat.storage.catalog import ConversationCatalog

# 放在脚本里表示：保持连接直到 close()
BLOCK = object()


class Gate:
    """Pauses the scripted stream until the test opens it."""

    def __init__(self):
        self._event = threading.Event()

    def open(self):
        self._event.set()

    def wait(self, timeout=5):
        self._event.wait(timeout)


class FakeStream:
    def __init__(self, items):
        self.items = list(items)
        self.closed = threading.Event()

    def __iter__(self):
        for item in self.items:
            if item is BLOCK:
                self.closed.wait(5)
                return
            if isinstance(item, Gate):
                item.wait()
                continue
            if isinstance(item, Exception):
                raise item
            yield item

    def close(self):
        self.closed.set()


class FakeClient:
    def __init__(self, streams=None, title="Simple arithmetic", open_error=None, title_error=None,
                 on_chat=None):
        self.streams = list(streams or [])
        self.title = title
        self.open_error = open_error
        self.title_error = title_error
        self.on_chat = on_chat
        self.requests = []
        self.title_requests = []
        self.opened = []

    def open_stream(self, messages):
        if self.open_error is not None:
            raise self.open_error
        self.requests.append(messages)
        stream = FakeStream(self.streams.pop(0) if self.streams else [])
        self.opened.append(stream)
        return stream

    def chat(self, messages):
        self.title_requests.append(messages)
        if self.on_chat is not None:
            self.on_chat()
        if self.title_error is not None:
            raise self.title_error
        return self.title


class RecordingNotifier:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def emit(self, event, payload):
        with self._lock:
            self.events.append((event, payload))

    def of(self, event):
        with self._lock:
            return [p for e, p in self.events if e == event]


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def config():
    return LLMConfig(api_key="sk-test", model=Model.GPT4)


@pytest.fixture
def catalog(tmp_path):
    return ConversationCatalog(tmp_path / "conversations")


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def controller(catalog, notifier, client):
    return ConversationController(
        catalog=catalog,
        notifier=notifier,
        client_factory=lambda config: client,
        inactivity_timeout=0.3,
    )
