"""Tests for the OpenAI and Anthropic endpoint adapters with mocked SDK clients."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from trial_navigator.agents import model_endpoint
from trial_navigator.agents.model_endpoint import (
    AnthropicMessagesEndpoint,
    OpenAIResponsesEndpoint,
    TranscriptStore,
    create_endpoint,
)
from trial_navigator.agents.tools import TOOLS
from trial_navigator.errors import MissingCredentialsError, ModelEndpointError
from trial_navigator.models.session import ToolCallOutput, ToolCallRequest, UserTurn


def _openai_client(*responses) -> MagicMock:
    client = MagicMock()
    client.responses.create = AsyncMock(side_effect=list(responses))
    return client


def _anthropic_client(*messages) -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=list(messages))
    return client


def _text(text):
    return SimpleNamespace(type="text", text=text)


def _tool_use(block_id, name, tool_input):
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=tool_input)


# ---------------------------------------------------------------------------
# TestOpenAIResponsesEndpoint
# ---------------------------------------------------------------------------


class TestOpenAIResponsesEndpoint:
    async def test_maps_request_and_response(self):
        raw = SimpleNamespace(
            id="resp_1",
            status="completed",
            output=[
                SimpleNamespace(type="reasoning"),
                SimpleNamespace(type="function_call", call_id="call_1", name="search_trials",
                                arguments='{"cancerType": "Breast"}'),
                SimpleNamespace(type="message", content=[
                    SimpleNamespace(type="output_text", text="Searching..."),
                    SimpleNamespace(type="refusal", refusal="no"),
                ]),
            ],
        )
        client = _openai_client(raw)
        endpoint = OpenAIResponsesEndpoint(client=client, model="gpt-5-mini", reasoning_effort="low")

        response = await endpoint.create("be kind", [UserTurn(content="hi")], TOOLS)

        kwargs = client.responses.create.call_args.kwargs
        assert kwargs["instructions"] == "be kind"
        assert kwargs["input"] == [{"role": "user", "content": "hi"}]
        assert kwargs["reasoning"] == {"effort": "low"}
        assert "previous_response_id" not in kwargs
        assert kwargs["tools"][0]["type"] == "function"
        assert kwargs["tools"][0]["parameters"] == TOOLS[0]["parameters"]

        assert response.id == "resp_1"
        assert response.tool_calls == [
            ToolCallRequest(call_id="call_1", name="search_trials", arguments='{"cancerType": "Breast"}')
        ]
        assert response.text_segments == ["Searching..."]

    async def test_tool_outputs_and_continuation(self):
        client = _openai_client(SimpleNamespace(id="resp_2", status="completed", output=[]))
        endpoint = OpenAIResponsesEndpoint(client=client, reasoning_effort="")

        await endpoint.create("x", [ToolCallOutput(call_id="call_1", output="{}")], TOOLS, "resp_1")

        kwargs = client.responses.create.call_args.kwargs
        assert kwargs["input"] == [{"type": "function_call_output", "call_id": "call_1", "output": "{}"}]
        assert kwargs["previous_response_id"] == "resp_1"
        assert "reasoning" not in kwargs

    async def test_raw_text_input_passed_through(self):
        client = _openai_client(SimpleNamespace(id="resp_3", status="completed", output=[]))
        await OpenAIResponsesEndpoint(client=client).create("x", "hello again", TOOLS, "resp_2")
        assert client.responses.create.call_args.kwargs["input"] == "hello again"

    async def test_tool_calls_can_be_disabled(self):
        client = _openai_client(SimpleNamespace(id="resp_4", status="completed", output=[]))
        await OpenAIResponsesEndpoint(client=client).create(
            "x", [ToolCallOutput(call_id="call_1", output="{}")], TOOLS, "resp_3", allow_tool_calls=False
        )
        kwargs = client.responses.create.call_args.kwargs
        assert kwargs["tool_choice"] == "none"
        assert kwargs["tools"]


# ---------------------------------------------------------------------------
# TestAnthropicMessagesEndpoint
# ---------------------------------------------------------------------------


class TestAnthropicMessagesEndpoint:
    async def test_tool_round_trip_replays_transcript(self):
        client = _anthropic_client(
            SimpleNamespace(
                content=[_text("Let me look."), _tool_use("toolu_1", "search_trials", {"cancerType": "Lung"})],
                stop_reason="tool_use",
            ),
            SimpleNamespace(content=[_text("Found 3 trials.")], stop_reason="end_turn"),
        )
        endpoint = AnthropicMessagesEndpoint(client=client, model="claude-test", max_output_tokens=100)

        first = await endpoint.create("sys", [UserTurn(content="lung trials")], TOOLS)
        assert first.id.startswith("anth_")
        assert first.tool_calls[0].call_id == "toolu_1"
        assert json.loads(first.tool_calls[0].arguments) == {"cancerType": "Lung"}
        assert first.text_segments == ["Let me look."]

        second = await endpoint.create(
            "sys", [ToolCallOutput(call_id="toolu_1", output='{"totalFound": 3}')], TOOLS, first.id
        )
        assert second.text_segments == ["Found 3 trials."]
        assert second.id != first.id

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["tools"][0]["input_schema"] == TOOLS[0]["parameters"]
        roles = [m["role"] for m in kwargs["messages"]]
        assert roles == ["user", "assistant", "user"]
        assert kwargs["messages"][2]["content"][0] == {
            "type": "tool_result", "tool_use_id": "toolu_1", "content": '{"totalFound": 3}',
        }

    async def test_unknown_token_raises(self):
        endpoint = AnthropicMessagesEndpoint(client=_anthropic_client())
        with pytest.raises(ModelEndpointError, match="Unknown continuation token"):
            await endpoint.create("sys", "hi", TOOLS, "anth_missing")

    async def test_max_tokens_marks_incomplete(self):
        client = _anthropic_client(SimpleNamespace(content=[_text("partial")], stop_reason="max_tokens"))
        response = await AnthropicMessagesEndpoint(client=client).create("sys", "hi", TOOLS)
        assert response.status == "incomplete"

    async def test_transcripts_survive_restart(self, tmp_path):
        client = _anthropic_client(
            SimpleNamespace(content=[_text("Hello")], stop_reason="end_turn"),
            SimpleNamespace(content=[_text("Welcome back")], stop_reason="end_turn"),
        )
        first = await AnthropicMessagesEndpoint(client=client, transcripts=TranscriptStore(tmp_path)).create(
            "sys", "hi", TOOLS
        )

        restarted = AnthropicMessagesEndpoint(client=client, transcripts=TranscriptStore(tmp_path))
        await restarted.create("sys", "still there?", TOOLS, first.id)

        messages = client.messages.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "user", "content": "hi"}
        assert messages[1] == {"role": "assistant", "content": [{"type": "text", "text": "Hello"}]}
        assert messages[2] == {"role": "user", "content": "still there?"}

    async def test_each_response_stores_only_its_own_messages(self, tmp_path):
        client = _anthropic_client(
            SimpleNamespace(content=[_text("one")], stop_reason="end_turn"),
            SimpleNamespace(content=[_text("two")], stop_reason="end_turn"),
            SimpleNamespace(content=[_text("three")], stop_reason="end_turn"),
        )
        store = TranscriptStore(tmp_path)
        endpoint = AnthropicMessagesEndpoint(client=client, transcripts=store)

        first = await endpoint.create("sys", "a", TOOLS)
        second = await endpoint.create("sys", "b", TOOLS, first.id)
        third = await endpoint.create("sys", "c", TOOLS, second.id)

        saved = json.loads((tmp_path / f"{third.id}.json").read_text())
        assert saved["parent"] == second.id
        assert [m["role"] for m in saved["messages"]] == ["user", "assistant"]
        assert [m["content"] for m in TranscriptStore(tmp_path).get(third.id) if m["role"] == "user"] == [
            "a", "b", "c",
        ]

    async def test_missing_ancestor_is_unknown(self, tmp_path):
        client = _anthropic_client(
            SimpleNamespace(content=[_text("one")], stop_reason="end_turn"),
            SimpleNamespace(content=[_text("two")], stop_reason="end_turn"),
        )
        endpoint = AnthropicMessagesEndpoint(client=client, transcripts=TranscriptStore(tmp_path))
        first = await endpoint.create("sys", "a", TOOLS)
        second = await endpoint.create("sys", "b", TOOLS, first.id)
        (tmp_path / f"{first.id}.json").unlink()

        assert TranscriptStore(tmp_path).get(second.id) is None

    async def test_tool_calls_can_be_disabled(self):
        client = _anthropic_client(SimpleNamespace(content=[_text("done")], stop_reason="end_turn"))
        await AnthropicMessagesEndpoint(client=client).create("sys", "hi", TOOLS, allow_tool_calls=False)
        assert client.messages.create.call_args.kwargs["tool_choice"] == {"type": "none"}


# ---------------------------------------------------------------------------
# TestCreateEndpoint
# ---------------------------------------------------------------------------


class TestCreateEndpoint:
    def test_missing_openai_key(self):
        with patch.object(model_endpoint.settings, "openai_api_key", ""):
            with pytest.raises(MissingCredentialsError):
                create_endpoint("openai")

    def test_missing_anthropic_key(self):
        with patch.object(model_endpoint.settings, "anthropic_api_key", ""):
            with pytest.raises(MissingCredentialsError):
                create_endpoint("anthropic")

    def test_anthropic_transcripts_under_session_dir(self, tmp_path):
        with patch.object(model_endpoint.settings, "anthropic_api_key", "sk-test"):
            endpoint = create_endpoint("anthropic", tmp_path)
        assert endpoint.transcripts.directory == tmp_path / "transcripts"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_endpoint("palm")
