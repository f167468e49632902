"""Language-model endpoints behind one continuation-token contract.

The orchestrator only ever sees ``ModelResponse``; each adapter maps its
provider's wire format onto it. OpenAI's Responses API continues a
conversation server-side from ``previous_response_id``. Anthropic's Messages
API is stateless, so its adapter keeps the transcript per synthesized
response id and replays it.
"""

from __future__ import annotations

import abc
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Union

import anthropic
import openai

from trial_navigator.config import settings
from trial_navigator.errors import MissingCredentialsError, ModelEndpointError
from trial_navigator.models.session import (
    ModelResponse,
    OutputMessage,
    ToolCallOutput,
    ToolCallRequest,
    UserTurn,
)

logger = logging.getLogger(__name__)

ModelInput = Union[str, list[UserTurn], list[ToolCallOutput]]


class ModelEndpoint(abc.ABC):
    @abc.abstractmethod
    async def create(
        self,
        instructions: str,
        input: ModelInput,
        tools: list[dict[str, Any]],
        previous_response_id: str | None = None,
        allow_tool_calls: bool = True,
    ) -> ModelResponse:
        """Send one request and return the normalized response.

        With ``allow_tool_calls=False`` the tools stay declared but the model
        must answer in text.
        """


# ---------------------------------------------------------------------------
# OpenAI Responses API
# ---------------------------------------------------------------------------


class OpenAIResponsesEndpoint(ModelEndpoint):
    def __init__(
        self,
        client: Any = None,
        model: str | None = None,
        reasoning_effort: str | None = None,
        max_output_tokens: int | None = None,
    ):
        self.client = client or openai.AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.model
        self.reasoning_effort = (
            settings.reasoning_effort if reasoning_effort is None else reasoning_effort
        )
        self.max_output_tokens = max_output_tokens or settings.max_output_tokens

    @staticmethod
    def _to_input(input: ModelInput) -> str | list[dict[str, Any]]:
        if isinstance(input, str):
            return input
        items: list[dict[str, Any]] = []
        for item in input:
            if isinstance(item, ToolCallOutput):
                items.append(
                    {"type": "function_call_output", "call_id": item.call_id, "output": item.output}
                )
            else:
                items.append({"role": item.role, "content": item.content})
        return items

    @staticmethod
    def _to_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "name": tool["name"],
                "description": tool["description"],
                "parameters": tool["parameters"],
            }
            for tool in tools
        ]

    @staticmethod
    def _from_response(response: Any) -> ModelResponse:
        output: list[ToolCallRequest | OutputMessage] = []
        for item in response.output or []:
            if item.type == "function_call":
                output.append(
                    ToolCallRequest(
                        call_id=item.call_id, name=item.name, arguments=item.arguments or "{}"
                    )
                )
            elif item.type == "message":
                texts = [
                    part.text
                    for part in (item.content or [])
                    if getattr(part, "type", None) == "output_text"
                ]
                output.append(OutputMessage(content=texts))
            # reasoning items carry no user-visible content
        return ModelResponse(id=response.id, status=response.status or "completed", output=output)

    async def create(
        self,
        instructions: str,
        input: ModelInput,
        tools: list[dict[str, Any]],
        previous_response_id: str | None = None,
        allow_tool_calls: bool = True,
    ) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "instructions": instructions,
            "input": self._to_input(input),
            "tools": self._to_tools(tools),
            "max_output_tokens": self.max_output_tokens,
        }
        if previous_response_id:
            kwargs["previous_response_id"] = previous_response_id
        if self.reasoning_effort:
            kwargs["reasoning"] = {"effort": self.reasoning_effort}
        if not allow_tool_calls:
            kwargs["tool_choice"] = "none"

        try:
            response = await self.client.responses.create(**kwargs)
        except openai.OpenAIError as exc:
            raise ModelEndpointError(f"OpenAI request failed: {exc}") from exc
        return self._from_response(response)


# ---------------------------------------------------------------------------
# Anthropic Messages API
# ---------------------------------------------------------------------------


class TranscriptStore:
    """Message history per synthesized response id; on disk when given a directory.

    Each id keeps only the messages its request added plus the id it
    continued from, so a conversation stores every message once. ``get``
    walks the chain back to the first request.
    """

    def __init__(self, directory: Path | None = None):
        self.directory = directory
        self._memory: dict[str, dict[str, Any]] = {}
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)

    def _path(self, response_id: str) -> Path:
        return self.directory / f"{response_id}.json"

    def _entry(self, response_id: str) -> dict[str, Any] | None:
        if response_id in self._memory:
            return self._memory[response_id]
        if self.directory is None:
            return None
        path = self._path(response_id)
        if not path.exists():
            return None
        entry = json.loads(path.read_text(encoding="utf-8"))
        self._memory[response_id] = entry
        return entry

    def get(self, response_id: str) -> list[dict[str, Any]] | None:
        segments: list[list[dict[str, Any]]] = []
        current: str | None = response_id
        while current is not None:
            entry = self._entry(current)
            if entry is None:
                if current != response_id:
                    logger.warning("Transcript %s is missing ancestor %s", response_id, current)
                return None
            segments.append(entry["messages"])
            current = entry.get("parent")
        return [message for segment in reversed(segments) for message in segment]

    def put(self, response_id: str, parent_id: str | None, messages: list[dict[str, Any]]) -> None:
        entry = {"parent": parent_id, "messages": list(messages)}
        self._memory[response_id] = entry
        if self.directory is not None:
            self._path(response_id).write_text(json.dumps(entry), encoding="utf-8")


class AnthropicMessagesEndpoint(ModelEndpoint):
    def __init__(
        self,
        client: Any = None,
        model: str | None = None,
        max_output_tokens: int | None = None,
        transcripts: TranscriptStore | None = None,
    ):
        self.client = client or anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self.model = model or settings.anthropic_model
        self.max_output_tokens = max_output_tokens or settings.max_output_tokens
        self.transcripts = transcripts or TranscriptStore()

    @staticmethod
    def _to_message(input: ModelInput) -> dict[str, Any]:
        if isinstance(input, str):
            return {"role": "user", "content": input}
        blocks: list[dict[str, Any]] = []
        for item in input:
            if isinstance(item, ToolCallOutput):
                blocks.append(
                    {"type": "tool_result", "tool_use_id": item.call_id, "content": item.output}
                )
            else:
                blocks.append({"type": "text", "text": item.content})
        return {"role": "user", "content": blocks}

    @staticmethod
    def _to_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {"name": t["name"], "description": t["description"], "input_schema": t["parameters"]}
            for t in tools
        ]

    async def create(
        self,
        instructions: str,
        input: ModelInput,
        tools: list[dict[str, Any]],
        previous_response_id: str | None = None,
        allow_tool_calls: bool = True,
    ) -> ModelResponse:
        history: list[dict[str, Any]] = []
        if previous_response_id:
            stored = self.transcripts.get(previous_response_id)
            if stored is None:
                raise ModelEndpointError(f"Unknown continuation token: {previous_response_id}")
            history = stored
        request_message = self._to_message(input)
        history.append(request_message)

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_output_tokens,
            "system": instructions,
            "tools": self._to_tools(tools),
            "messages": list(history),
        }
        if not allow_tool_calls:
            kwargs["tool_choice"] = {"type": "none"}

        try:
            message = await self.client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            raise ModelEndpointError(f"Anthropic request failed: {exc}") from exc

        assistant_content: list[dict[str, Any]] = []
        output: list[ToolCallRequest | OutputMessage] = []
        texts: list[str] = []
        for block in message.content:
            if block.type == "text":
                texts.append(block.text)
                assistant_content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                output.append(
                    ToolCallRequest(
                        call_id=block.id, name=block.name, arguments=json.dumps(block.input)
                    )
                )
                assistant_content.append(
                    {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
                )
        if texts:
            output.insert(0, OutputMessage(content=texts))

        response_id = f"anth_{uuid.uuid4().hex}"
        self.transcripts.put(
            response_id,
            previous_response_id or None,
            [request_message, {"role": "assistant", "content": assistant_content}],
        )

        status = "incomplete" if message.stop_reason == "max_tokens" else "completed"
        return ModelResponse(id=response_id, status=status, output=output)


def create_endpoint(provider: str | None = None, session_dir: Path | None = None) -> ModelEndpoint:
    """Build the configured endpoint; fails fast when its API key is missing."""
    provider = (provider or settings.model_provider).lower()
    if provider == "openai":
        if not settings.openai_api_key:
            raise MissingCredentialsError("OPENAI_API_KEY is not set")
        return OpenAIResponsesEndpoint()
    if provider == "anthropic":
        if not settings.anthropic_api_key:
            raise MissingCredentialsError("ANTHROPIC_API_KEY is not set")
        transcripts = TranscriptStore(session_dir / "transcripts" if session_dir else None)
        return AnthropicMessagesEndpoint(transcripts=transcripts)
    raise ValueError(f"Unknown model provider: {provider}")
