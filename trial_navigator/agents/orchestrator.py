"""Agent orchestrator: drives the model/tool loop for one trial-navigation conversation."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from pydantic import TypeAdapter

from trial_navigator.agents.model_endpoint import ModelEndpoint, create_endpoint
from trial_navigator.agents.tools import SEARCH_TRIALS, TOOLS, SearchTrialsResult, ToolExecutor
from trial_navigator.config import settings
from trial_navigator.models.patient import PatientProfile
from trial_navigator.models.session import (
    ChatReply,
    ConversationState,
    ModelResponse,
    ToolCallOutput,
    ToolCallRequest,
    UserTurn,
)
from trial_navigator.models.trial import TrialView
from trial_navigator.session import SessionManager, SessionStateStore
from trial_navigator.sources.geocoding import coverage_message

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"

FALLBACK_REPLY = "I apologize, but I was unable to generate a response."
SKIPPED_CALL_ERROR = "Not executed: tool-call limit reached for this turn. Answer with what you have."

_ANY = TypeAdapter(Any)


def _load_prompt(name: str) -> str:
    path = PROMPTS_DIR / f"{name}.md"
    if path.exists():
        return path.read_text(encoding="utf-8")
    logger.warning("Prompt file not found: %s", path)
    return ""


def _short(token: str | None) -> str:
    return token[:20] if token else "none"


def _serialize(result: Any) -> str:
    return json.dumps(_ANY.dump_python(result, mode="json", by_alias=True))


class TrialAgent:
    """One conversation: continuation token, trial cache, patient profile.

    Tool calls inside a model turn run one after another in the order the
    model issued them, so a search can populate the cache for a detail
    lookup later in the same batch.
    """

    def __init__(
        self,
        endpoint: ModelEndpoint,
        executor: ToolExecutor | None = None,
        profile: PatientProfile | None = None,
        state_store: SessionStateStore | None = None,
        max_iterations: int | None = None,
    ):
        self.endpoint = endpoint
        self.executor = executor or ToolExecutor()
        self.state_store = state_store
        self.max_iterations = max_iterations or settings.max_tool_iterations
        self._continuation_token: str | None = None
        self._base_prompt = _load_prompt("navigator")
        self.set_patient_profile(profile)

    # -- conversation API ---------------------------------------------------

    @property
    def profile(self) -> PatientProfile | None:
        return self._profile

    def set_patient_profile(self, profile: PatientProfile | None) -> None:
        """Replace the profile snapshot; no merging happens here."""
        self._profile = profile
        self.executor.profile = profile

    def get_conversation_state(self) -> ConversationState:
        return ConversationState(
            continuation_token=self._continuation_token,
            active=self._continuation_token is not None,
        )

    def restore_conversation_state(self, token: str | None) -> None:
        self._continuation_token = token or None
        if self._continuation_token:
            logger.info("Restored conversation %s", _short(self._continuation_token))

    def reset_conversation(self, clear_cache: bool = False) -> None:
        self._continuation_token = None
        if self.state_store is not None:
            self.state_store.clear()
        if clear_cache:
            self.executor.cache.clear()
        logger.info("Conversation reset (cache %s)", "cleared" if clear_cache else "kept")

    def get_system_prompt(self) -> str:
        prompt = self._base_prompt
        if self._profile is None:
            return prompt

        lines = self._profile.context_lines()
        if lines:
            prompt += "\n\n## Current Patient Profile\n" + "\n".join(lines)
        if self._profile.zip_code:
            prompt += f"\n\n## Site Coverage\n{coverage_message(self._profile.zip_code)}"
        return prompt

    async def execute_tool(self, tool_name: str, tool_input: dict[str, Any]) -> Any:
        return await self.executor.execute(tool_name, tool_input)

    async def chat(self, user_message: str) -> ChatReply:
        """Run one user turn to completion and return the final text plus any trials found."""
        model_input: str | list[UserTurn] = (
            user_message if self._continuation_token else [UserTurn(content=user_message)]
        )
        logger.info("Chat turn start (continuation: %s)", _short(self._continuation_token))

        response = await self._call_model(model_input, self._continuation_token)

        trials: list[TrialView] = []
        iterations = 0
        incomplete = False
        while response.status == "completed" and response.tool_calls:
            if iterations >= self.max_iterations:
                logger.warning(
                    "Stopping after %d tool rounds with %d call(s) still pending",
                    iterations, len(response.tool_calls),
                )
                incomplete = True
                # Close out the pending calls so the saved token never points at unanswered ones.
                skipped = [
                    ToolCallOutput(call_id=call.call_id, output=json.dumps({"error": SKIPPED_CALL_ERROR}))
                    for call in response.tool_calls
                ]
                response = await self._call_model(skipped, response.id, allow_tool_calls=False)
                break
            iterations += 1

            outputs = []
            for call in response.tool_calls:
                outputs.append(await self._run_tool_call(call, trials))

            # Chain from the response that issued these calls, not the turn's starting token.
            response = await self._call_model(outputs, response.id)

        self._continuation_token = response.id
        if self.state_store is not None:
            self.state_store.save(response.id)
        logger.info("Chat turn done (continuation: %s)", _short(response.id))

        text = "\n".join(response.text_segments) or FALLBACK_REPLY
        return ChatReply(text=text, trials=trials or None, incomplete=incomplete)

    # -- internals ------------------------------------------------------------

    async def _call_model(
        self,
        model_input: Any,
        previous_response_id: str | None,
        allow_tool_calls: bool = True,
    ) -> ModelResponse:
        response = await self.endpoint.create(
            instructions=self.get_system_prompt(),
            input=model_input,
            tools=TOOLS,
            previous_response_id=previous_response_id,
            allow_tool_calls=allow_tool_calls,
        )
        logger.debug("Model response %s status=%s", _short(response.id), response.status)
        return response

    async def _run_tool_call(self, call: ToolCallRequest, trials: list[TrialView]) -> ToolCallOutput:
        """Execute one call; any failure becomes an error payload for that call only."""
        start = time.perf_counter()
        try:
            args = json.loads(call.arguments or "{}")
            if not isinstance(args, dict):
                raise ValueError("Tool arguments must be a JSON object")
            result = await self.executor.execute(call.name, args)
            output = _serialize(result)
        except Exception as exc:
            logger.exception("Tool %s failed", call.name)
            return ToolCallOutput(call_id=call.call_id, output=json.dumps({"error": str(exc)}))

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("Tool %s completed in %.0fms", call.name, elapsed_ms)
        logger.info("  result preview: %s", output[:200])

        if call.name == SEARCH_TRIALS and isinstance(result, SearchTrialsResult):
            trials.extend(result.trials)
        return ToolCallOutput(call_id=call.call_id, output=output)


def create_agent(
    session_id: str | None = None,
    session_mgr: SessionManager | None = None,
    provider: str | None = None,
) -> TrialAgent:
    """Build an agent for a session, restoring its saved continuation token.

    Raises ``MissingCredentialsError`` before any turn when the configured
    provider has no API key.
    """
    session_dir = None
    profile = None
    state_store = None
    if session_id is not None:
        session_mgr = session_mgr or SessionManager()
        session_dir = session_mgr.session_dir(session_id)
        profile = session_mgr.get_profile(session_id)
        state_store = session_mgr.state_store(session_id)

    endpoint = create_endpoint(provider, session_dir)
    agent = TrialAgent(endpoint, profile=profile, state_store=state_store)
    if state_store is not None:
        agent.restore_conversation_state(state_store.restore())
    return agent
