"""API 层测试：路由 → 控制器的转发与错误码"""

import queue

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.routers import conversation as conversation_router
from api.routers import settings as settings_router
from api.services.events import EventBroker, format_sse
from conftest import BLOCK, FakeClient
from gptchat.chat.conversation import ConversationController
from gptchat.chat.transcript import Message, Role
from gptchat.llm.client import LLMConfig
from gptchat.llm.sse import ContentDelta, Done
from gptchat.storage.catalog import SerializedConversation


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def broker():
    return EventBroker()


@pytest.fixture
def controller(catalog, broker, fake_client):
    return ConversationController(
        catalog=catalog,
        notifier=broker,
        client_factory=lambda config: fake_client,
        inactivity_timeout=0.3,
    )


@pytest.fixture
def http(monkeypatch, controller):
    monkeypatch.setattr(conversation_router, "get_controller", lambda: controller)
    monkeypatch.setattr(conversation_router, "require_llm_config", lambda: LLMConfig(api_key="sk-test"))
    return TestClient(app)


def test_health(http):
    assert http.get("/api/health").json() == {"status": "ok"}


def test_prompt_and_current_conversation(http, controller, fake_client):
    fake_client.streams.append([ContentDelta("4"), Done()])
    resp = http.post("/api/conversation/prompt", json={"text": "2+2?"})
    assert resp.status_code == 200
    assert controller.wait_idle(5)

    body = http.get("/api/conversation").json()
    assert body["id"] == controller.get_current_id()
    assert body["locked"] is False
    assert [m["content"] for m in body["messages"]] == ["2+2?", "4"]
    assert body["messages"][1]["cost_dollars"] is not None
    assert http.get("/api/conversation/id").json() == {"id": controller.get_current_id()}


def test_prompt_while_locked_is_409(http, controller, fake_client):
    fake_client.streams.append([BLOCK])
    assert http.post("/api/conversation/prompt", json={"text": "a"}).status_code == 200
    assert http.post("/api/conversation/prompt", json={"text": "b"}).status_code == 409
    assert http.post("/api/conversation/clear").status_code == 409
    controller.wait_idle(5)


def test_prompt_without_key_is_400(monkeypatch, http):
    from api.deps import MissingApiKey

    def missing():
        raise MissingApiKey("Please provide an API key in the settings menu")

    monkeypatch.setattr(conversation_router, "require_llm_config", missing)
    resp = http.post("/api/conversation/prompt", json={"text": "a"})
    assert resp.status_code == 400
    assert "API key" in resp.json()["detail"]


def test_empty_prompt_rejected(http):
    assert http.post("/api/conversation/prompt", json={"text": ""}).status_code == 422


def test_list_load_delete(http, catalog, controller):
    catalog.save(SerializedConversation("Older", 1, 100, [Message(Role.USER, "a")]))
    catalog.save(SerializedConversation("Newer", 2, 200, [Message(Role.USER, "b")]))

    listed = http.get("/api/conversations").json()["conversations"]
    assert [c["id"] for c in listed] == [2, 1]

    assert http.post("/api/conversations/1/load").status_code == 200
    assert controller.get_current_id() == 1
    assert http.post("/api/conversations/999/load").status_code == 404

    assert http.delete("/api/conversations/2").status_code == 200
    assert http.delete("/api/conversations/2").status_code == 404


def test_save_and_reset(http, catalog, controller):
    old_id = controller.get_current_id()
    assert http.post("/api/conversation/save").status_code == 200
    assert catalog.ids() == [old_id]
    assert http.post("/api/conversation/reset").status_code == 200
    assert controller.get_current_id() != old_id


def test_cancel_when_idle(http):
    assert http.post("/api/conversation/cancel").status_code == 200


def test_settings_roundtrip(monkeypatch):
    store = {}

    monkeypatch.setattr(settings_router, "load_settings",
                        lambda: dict(store) or {"api_key": "", "base_url": "https://api.openai.com/v1", "model": "gpt3"})
    monkeypatch.setattr(settings_router, "save_settings", lambda s: store.update(s))
    client = TestClient(app)

    assert client.get("/api/settings").json()["model"] == "gpt3"
    resp = client.put("/api/settings", json={"api_key": "  sk-new  ", "model": "gpt4turbo"})
    assert resp.status_code == 200
    assert store["api_key"] == "sk-new"
    assert store["model"] == "gpt4turbo"
    assert client.put("/api/settings", json={"model": "gpt-9"}).status_code == 422


# ==================== Event broker ====================

def test_broker_fans_out_to_subscribers(broker):
    a = broker.subscribe()
    b = broker.subscribe()
    broker.emit("cost-computed", 0.5)
    assert a.get_nowait() == ("cost-computed", 0.5)
    assert b.get_nowait() == ("cost-computed", 0.5)

    broker.unsubscribe(a)
    broker.emit("lock-state-changed", False)
    with pytest.raises(queue.Empty):
        a.get_nowait()
    assert broker.subscriber_count == 1


def test_broker_stream_frames(broker):
    stream = broker.stream(keepalive=0.05)
    assert next(stream) == ": keep-alive\n\n"
    broker.emit("message-content-appended", "4")
    assert next(stream) == format_sse("message-content-appended", "4")
    stream.close()
    assert broker.subscriber_count == 0


def test_format_sse():
    assert format_sse("lock-state-changed", True) == "event: lock-state-changed\ndata: true\n\n"
