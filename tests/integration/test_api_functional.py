from datetime import date

from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from hatchery_chat.agent.models import CompletionClient
from hatchery_chat.agent.orchestrator import ChatOrchestrator
from hatchery_chat.agent.registry import ToolRegistry
from hatchery_chat.agent.tools import register_hatchery_tools
from hatchery_chat.api.main import create_app
from hatchery_chat.config import Settings
from hatchery_chat.errors import APOLOGY

VALID_KEY = "sk-test-0123456789abcdef"


class EchoChatModel:
    def __init__(self) -> None:
        self.calls = []

    def bind_tools(self, tools, tool_choice=None):
        return self

    async def ainvoke(self, messages):
        self.calls.append(messages)
        return AIMessage(content=f"You said: {messages[-1].content}")


def _client(store, model: EchoChatModel) -> TestClient:
    registry = ToolRegistry()
    register_hatchery_tools(registry, store, today=lambda: date(2026, 10, 17))
    orchestrator = ChatOrchestrator(
        tool_registry=registry,
        completion=CompletionClient(lambda candidate, phase: model),
        settings=Settings(openai_api_key=VALID_KEY),
    )
    return TestClient(create_app(orchestrator))


def test_health_and_chat(hatchery_store) -> None:
    model = EchoChatModel()
    client = _client(hatchery_store, model)

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["openai_configured"] is True

    chat = client.post(
        "/chat",
        json={"message": "hello", "history": [{"role": "user", "content": "earlier"}]},
    )
    assert chat.status_code == 200
    assert chat.json() == {"response": "You said: hello", "actions": []}
    assert [m.content for m in model.calls[0][1:]] == ["earlier", "hello"]


def test_health_sentinel_needs_no_backends() -> None:
    client = TestClient(create_app(settings=Settings()))

    response = client.post("/chat", json={"message": "__health_check__"})

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "health_check"
    assert body["status"] == "healthy"
    assert body["openai_configured"] is False
    assert body["actions"] == []


def test_missing_openai_key_is_a_configuration_error() -> None:
    client = TestClient(create_app(settings=Settings()))

    response = client.post("/chat", json={"message": "How many batches are hatching?"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"].startswith("OPENAI_API_KEY not configured")
    assert body["response"].startswith("I need an OpenAI API key")


def test_missing_store_configuration() -> None:
    client = TestClient(create_app(settings=Settings(openai_api_key=VALID_KEY)))

    response = client.post("/chat", json={"message": "How many batches are hatching?"})

    assert response.status_code == 500
    assert "SUPABASE_URL" in response.json()["error"]


def test_invalid_requests_use_error_envelope(hatchery_store) -> None:
    model = EchoChatModel()
    client = _client(hatchery_store, model)

    empty = client.post("/chat", json={"message": "   "})
    missing = client.post("/chat", json={})
    bad_role = client.post(
        "/chat", json={"message": "hi", "history": [{"role": "system", "content": "x"}]}
    )

    assert empty.status_code == 500
    assert empty.json() == {"error": "Message is required", "response": APOLOGY}
    assert missing.json()["error"] == "Message is required"
    assert bad_role.status_code == 500
    assert bad_role.json()["error"].startswith("Invalid request - body.history.0.role")
    assert bad_role.json()["response"] == APOLOGY
    assert model.calls == []
