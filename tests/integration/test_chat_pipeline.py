import json
from datetime import date, datetime, timezone

import httpx
import openai
import pytest
from langchain_core.messages import AIMessage, SystemMessage, ToolMessage

from hatchery_chat.agent.fallback import DEGRADED_NOTE
from hatchery_chat.agent.models import DEFAULT_CANDIDATES, CompletionClient
from hatchery_chat.agent.orchestrator import ChatOrchestrator
from hatchery_chat.agent.registry import ToolRegistry
from hatchery_chat.agent.tools import register_hatchery_tools
from hatchery_chat.config import Settings
from hatchery_chat.errors import ConfigurationError, UpstreamUnavailableError

TODAY = date(2026, 10, 17)
NOW = datetime(2026, 10, 17, 9, 0, tzinfo=timezone.utc)
GPT5, GPT41, MINI = (candidate.model for candidate in DEFAULT_CANDIDATES)


def _upstream_error() -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.APIStatusError(
        "model not available", response=httpx.Response(404, request=request), body=None
    )


class ScriptedChatModel:
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls = []

    def bind_tools(self, tools, tool_choice=None):
        return self

    async def ainvoke(self, messages):
        self.calls.append(messages)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _plan(*calls: tuple[str, dict[str, object]]) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[
            {"name": name, "args": args, "id": f"call_{i}"} for i, (name, args) in enumerate(calls, 1)
        ],
    )


def _orchestrator(store, models, *, api_key: str = "sk-test-0123456789abcdef") -> ChatOrchestrator:
    registry = ToolRegistry()
    register_hatchery_tools(registry, store, today=lambda: TODAY)
    for candidate in DEFAULT_CANDIDATES:
        models.setdefault(candidate.model, ScriptedChatModel())
    return ChatOrchestrator(
        tool_registry=registry,
        completion=CompletionClient(lambda candidate, phase: models[candidate.model]),
        settings=Settings(openai_api_key=api_key),
        today=lambda: TODAY,
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_house_comparison_retries_by_unit_end_to_end(houseless_store) -> None:
    models = {GPT5: ScriptedChatModel(_plan(("get_fertility_rates", {"group_by": "house"})))}

    reply = await _orchestrator(houseless_store, models).handle("Compare fertility between houses")

    assert reply["source"] == "smart_default"
    envelope = reply["response"]
    assert envelope["type"] == "analytics"
    assert [row["name"] for row in envelope["charts"][0]["data"]] == ["Unit A", "Unit B"]
    assert any("instead of house" in insight for insight in envelope["insights"])
    assert len(models[GPT5].calls) == 1


@pytest.mark.asyncio
async def test_batch_overview_smart_default(hatchery_store) -> None:
    models = {GPT5: ScriptedChatModel(_plan(("get_all_batches", {})))}

    reply = await _orchestrator(hatchery_store, models).handle("Give me a batch overview")

    assert reply["source"] == "smart_default"
    assert reply["timestamp"] == NOW.isoformat()
    assert reply["response"]["title"] == "Batch Overview"
    assert [chart["type"] for chart in reply["response"]["charts"]] == ["pie", "bar"]


@pytest.mark.asyncio
async def test_explicit_pie_skips_final_model_call(hatchery_store) -> None:
    models = {GPT5: ScriptedChatModel(_plan(("get_fertility_rates", {"group_by": "house"})))}

    reply = await _orchestrator(hatchery_store, models).handle(
        "Show fertility by house as a pie chart"
    )

    assert reply["source"] == "explicit_intent"
    assert [chart["type"] for chart in reply["response"]["charts"]] == ["pie"]
    assert len(models[GPT5].calls) == 1


@pytest.mark.asyncio
async def test_plain_reply_without_tools(hatchery_store) -> None:
    models = {GPT5: ScriptedChatModel(AIMessage(content="Hello! Ask me about your batches."))}

    reply = await _orchestrator(hatchery_store, models).handle("hi there")

    assert reply == {"response": "Hello! Ask me about your batches.", "actions": []}


@pytest.mark.asyncio
async def test_prompt_carries_date_and_last_ten_turns(hatchery_store) -> None:
    models = {GPT5: ScriptedChatModel(AIMessage(content="ok"))}
    history = [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"turn {i}"} for i in range(12)
    ]

    await _orchestrator(hatchery_store, models).handle("next", history=history)

    [messages] = models[GPT5].calls
    assert isinstance(messages[0], SystemMessage)
    assert "Current date: 2026-10-17" in messages[0].content
    assert [m.content for m in messages[1:-1]] == [f"turn {i}" for i in range(2, 12)]
    assert isinstance(messages[-2], AIMessage)
    assert messages[-1].content == "next"


@pytest.mark.asyncio
async def test_final_answer_falls_back_to_next_candidate(hatchery_store) -> None:
    models = {
        GPT5: ScriptedChatModel(
            _plan(("get_qa_alerts", {}), ("get_recent_activity", {"days": 30})),
            _upstream_error(),
        ),
        GPT41: ScriptedChatModel(AIMessage(content="One warning alert is active on S-01.")),
    }

    reply = await _orchestrator(hatchery_store, models).handle("Any active alerts?")

    assert reply["response"] == "One warning alert is active on S-01."
    assert reply["source"] == "openai"
    assert reply["model"] == GPT41
    assert reply["actions"] == []
    final_messages = models[GPT41].calls[0]
    tool_messages = [m for m in final_messages if isinstance(m, ToolMessage)]
    assert [m.tool_call_id for m in tool_messages] == ["call_1", "call_2"]
    assert json.loads(tool_messages[0].content)["alerts"][0]["batch_number"] == "B-001"


@pytest.mark.asyncio
async def test_exhausted_final_answer_uses_summary(hatchery_store) -> None:
    models = {
        GPT5: ScriptedChatModel(_plan(("get_qa_alerts", {})), _upstream_error()),
        GPT41: ScriptedChatModel(_upstream_error()),
        MINI: ScriptedChatModel(_upstream_error()),
    }

    reply = await _orchestrator(hatchery_store, models).handle("Any active alerts?")

    assert reply["source"] == "fallback"
    assert "• Found 1 active alerts" in reply["response"]
    assert reply["response"].endswith(DEGRADED_NOTE)
    assert "model" not in reply


@pytest.mark.asyncio
async def test_exhausted_final_answer_still_charts_when_warranted(hatchery_store) -> None:
    models = {
        GPT5: ScriptedChatModel(_plan(("get_machine_status", {})), _upstream_error()),
        GPT41: ScriptedChatModel(_upstream_error()),
        MINI: ScriptedChatModel(_upstream_error()),
    }

    reply = await _orchestrator(hatchery_store, models).handle("Compare machine utilization")

    assert reply["source"] == "fallback"
    assert reply["response"]["title"] == "Machine Utilization"
    assert reply["response"]["summary"].startswith("I found some information for you:")


@pytest.mark.asyncio
async def test_prose_answer_is_enhanced_with_charts(hatchery_store) -> None:
    models = {
        GPT5: ScriptedChatModel(
            _plan(("get_machine_status", {})), AIMessage(content="S-01 is the busiest setter.")
        )
    }

    reply = await _orchestrator(hatchery_store, models).handle("Compare machine utilization")

    assert reply["source"] == "enhanced"
    assert reply["model"] == GPT5
    assert reply["response"]["summary"] == "S-01 is the busiest setter."
    assert reply["response"]["charts"][0]["type"] == "bar"


@pytest.mark.asyncio
async def test_model_json_envelope_is_returned_verbatim(hatchery_store) -> None:
    envelope = {"type": "chart", "chartType": "bar", "title": "Alerts", "data": []}
    models = {
        GPT5: ScriptedChatModel(
            _plan(("get_qa_alerts", {})),
            AIMessage(content=f"```json\n{json.dumps(envelope)}\n```"),
        )
    }

    reply = await _orchestrator(hatchery_store, models).handle("Any active alerts?")

    assert reply["source"] == "openai"
    assert reply["response"] == envelope


@pytest.mark.asyncio
async def test_prose_with_batches_carries_overview_payload(hatchery_store) -> None:
    models = {
        GPT5: ScriptedChatModel(
            _plan(("get_batch_info", {"batch_identifier": "B-002"}), ("get_all_batches", {"limit": 2})),
            AIMessage(content="B-002 is six days past its expected hatch."),
        )
    }

    reply = await _orchestrator(hatchery_store, models).handle("When will B-002 finish?")

    assert reply["source"] == "openai"
    assert [action["type"] for action in reply["actions"]] == ["export_csv", "view_batches"]
    assert reply["payload"]["type"] == "batch_overview"
    assert [row["batch_number"] for row in reply["payload"]["rows"]] == ["B-004", "B-001"]
    assert reply["payload"]["analytics"]["total_batches"] == 4


@pytest.mark.asyncio
async def test_plan_exhaustion_raises(hatchery_store) -> None:
    models = {
        GPT5: ScriptedChatModel(_upstream_error()),
        GPT41: ScriptedChatModel(_upstream_error()),
        MINI: ScriptedChatModel(_upstream_error()),
    }

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await _orchestrator(hatchery_store, models).handle("Any active alerts?")

    assert GPT5 in excinfo.value.error


@pytest.mark.asyncio
async def test_health_sentinel_makes_no_calls(hatchery_store) -> None:
    models: dict[str, ScriptedChatModel] = {}
    orchestrator = _orchestrator(hatchery_store, models, api_key="")

    reply = await orchestrator.handle("__health_check__")

    assert reply == {
        "response": "Hatchery assistant is running.",
        "actions": [],
        "status": "healthy",
        "openai_configured": False,
        "timestamp": NOW.isoformat(),
        "source": "health_check",
    }
    assert all(not model.calls for model in models.values())
    assert hatchery_store.executed == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("api_key", "error"),
    [("", "OPENAI_API_KEY not configured"), ("pk-0123456789abcdefghij", "Invalid OpenAI API key format")],
)
async def test_configuration_is_checked_before_any_call(hatchery_store, api_key, error) -> None:
    models: dict[str, ScriptedChatModel] = {}

    with pytest.raises(ConfigurationError) as excinfo:
        await _orchestrator(hatchery_store, models, api_key=api_key).handle("hello")

    assert excinfo.value.error.startswith(error)
    assert all(not model.calls for model in models.values())
