from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from trial_navigator.models.trial import TrialView


class ConversationState(BaseModel):
    continuation_token: str | None = None
    active: bool = False


class ChatReply(BaseModel):
    text: str
    trials: list[TrialView] | None = None
    incomplete: bool = False  # safety bound hit with tool calls still pending


# ---------------------------------------------------------------------------
# Model endpoint wire types
# ---------------------------------------------------------------------------


class ToolCallRequest(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    call_id: str
    name: str
    arguments: str = "{}"  # JSON text, parsed by the orchestrator


class OutputMessage(BaseModel):
    type: Literal["message"] = "message"
    content: list[str] = Field(default_factory=list)


OutputItem = Annotated[ToolCallRequest | OutputMessage, Field(discriminator="type")]


class ModelResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    status: str = "completed"
    output: list[OutputItem] = Field(default_factory=list)

    @property
    def tool_calls(self) -> list[ToolCallRequest]:
        return [item for item in self.output if isinstance(item, ToolCallRequest)]

    @property
    def text_segments(self) -> list[str]:
        return [
            segment
            for item in self.output
            if isinstance(item, OutputMessage)
            for segment in item.content
            if segment
        ]


class ToolCallOutput(BaseModel):
    call_id: str
    output: str  # JSON text


class UserTurn(BaseModel):
    role: Literal["user"] = "user"
    content: str
