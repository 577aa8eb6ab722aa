# tests/test_assistant.py — Assistant chat and bounded history
import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient

from main import app
from routers import assistant
from session_store import ConversationStore, get_conversation_store
from tests.conftest import get_auth_headers


@pytest_asyncio.fixture
async def store(client):
    fresh = ConversationStore(max_sessions=10, ttl_seconds=60)
    app.dependency_overrides[get_conversation_store] = lambda: fresh
    yield fresh
    app.dependency_overrides.pop(get_conversation_store, None)


@pytest.mark.asyncio
async def test_chat_without_key_returns_stub(client: AsyncClient, store, developer):
    resp = await client.post(
        "/api/v1/assistant/chat", json={"message": "How do I log time?"}, headers=get_auth_headers(developer),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["response"] == "[Stub] Received: How do I log time?"


@pytest.mark.asyncio
async def test_history_keeps_last_exchanges(client: AsyncClient, store, developer):
    headers = get_auth_headers(developer)
    for i in range(3):
        await client.post("/api/v1/assistant/chat", json={"message": f"q{i}"}, headers=headers)

    history = store.get(developer.id)
    assert len(history) == 4
    assert [m["content"] for m in history if m["role"] == "user"] == ["q1", "q2"]


@pytest.mark.asyncio
async def test_history_is_per_user(client: AsyncClient, store, developer, other_developer):
    await client.post("/api/v1/assistant/chat", json={"message": "hi"}, headers=get_auth_headers(developer))
    assert store.get(other_developer.id) == []


@pytest.mark.asyncio
async def test_clear_history(client: AsyncClient, store, developer):
    headers = get_auth_headers(developer)
    await client.post("/api/v1/assistant/chat", json={"message": "hi"}, headers=headers)

    resp = await client.delete("/api/v1/assistant/history", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["message"] == "Conversation history cleared"
    assert store.get(developer.id) == []


@pytest.mark.asyncio
async def test_chat_requires_auth(client: AsyncClient, store):
    resp = await client.post("/api/v1/assistant/chat", json={"message": "hi"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_empty_message_rejected(client: AsyncClient, store, developer):
    resp = await client.post("/api/v1/assistant/chat", json={"message": ""}, headers=get_auth_headers(developer))
    assert resp.status_code == 400
    assert "message" in resp.json()["errors"]


def _provider_returns(monkeypatch, response: httpx.Response):
    real_client = httpx.AsyncClient

    def handler(request):
        return response

    monkeypatch.setattr(assistant, "ANTHROPIC_API_KEY", "test-key")
    monkeypatch.setattr(
        assistant.httpx, "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )


@pytest.mark.asyncio
async def test_provider_text_is_returned(monkeypatch):
    _provider_returns(monkeypatch, httpx.Response(200, json={"content": [{"type": "text", "text": "Log it daily."}]}))
    assert await assistant._call_llm([{"role": "user", "content": "tips?"}]) == "Log it daily."


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"content": []}),
    httpx.Response(200, text="<html>gateway error</html>"),
    httpx.Response(200, json=["unexpected"]),
    httpx.Response(529, json={"error": {"type": "overloaded_error"}}),
])
async def test_unusable_provider_reply_falls_back(monkeypatch, response):
    _provider_returns(monkeypatch, response)
    reply = await assistant._call_llm([{"role": "user", "content": "ping"}])
    assert reply == "[Fallback] Received: ping"


@pytest.mark.asyncio
async def test_unreachable_provider_falls_back(monkeypatch):
    monkeypatch.setattr(assistant, "ANTHROPIC_API_KEY", "test-key")
    monkeypatch.setattr(assistant, "ANTHROPIC_BASE_URL", "http://127.0.0.1:9")
    reply = await assistant._call_llm([{"role": "user", "content": "ping"}])
    assert reply == "[Fallback] Received: ping"
