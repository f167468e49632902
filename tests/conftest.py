"""Shared fakes: trial records, a scripted model endpoint, stub data sources."""

from __future__ import annotations

from typing import Any

import pytest

from trial_navigator.agents.cache import TrialCache
from trial_navigator.agents.tools import ToolExecutor
from trial_navigator.errors import ScriApiError
from trial_navigator.models.session import ModelResponse, OutputMessage, ToolCallRequest
from trial_navigator.models.trial import ScriSearchPage, ScriTrial

NASHVILLE = (36.1627, -86.7816)
BIRMINGHAM = (33.5186, -86.8104)
SEATTLE = (47.6097, -122.3331)


def make_trial(
    study_id: str = "BRE-430-001",
    name: str = "BRE 430",
    nct: str = "NCT03448926",
    sites: list[tuple[str, str, tuple[float, float] | None]] | None = None,
) -> ScriTrial:
    """Build a raw trial the way the source serves it (camelCase keys)."""
    sites = sites if sites is not None else [("Nashville", "TN", NASHVILLE)]
    return ScriTrial.model_validate({
        "studyId": study_id,
        "studyName": name,
        "protocolTitle": f"A study of {name}",
        "nct": nct,
        "phaseNames": ["Phase 2"],
        "programTypeNames": ["Breast"],
        "siteList": [
            {
                "siteName1": f"{city} Oncology",
                "displayName": f"{city} Oncology",
                "city": city,
                "state": state,
                "phoneNumber1": "615-555-0100",
                "latitude": str(coords[0]) if coords else None,
                "longitude": str(coords[1]) if coords else None,
            }
            for city, state, coords in sites
        ],
    })


def reply(response_id: str, *texts: str) -> ModelResponse:
    return ModelResponse(id=response_id, output=[OutputMessage(content=list(texts))])


def tool_turn(response_id: str, *calls: tuple[str, str, str]) -> ModelResponse:
    """A model response requesting (call_id, name, arguments_json) tool calls."""
    return ModelResponse(
        id=response_id,
        output=[ToolCallRequest(call_id=c, name=n, arguments=a) for c, n, a in calls],
    )


class FakeEndpoint:
    """Returns scripted responses in order and records every request."""

    def __init__(self, responses: list[ModelResponse]):
        self.responses = list(responses)
        self.requests: list[dict[str, Any]] = []

    async def create(self, instructions, input, tools, previous_response_id=None, allow_tool_calls=True):
        self.requests.append({
            "instructions": instructions,
            "input": input,
            "tools": tools,
            "previous_response_id": previous_response_id,
            "allow_tool_calls": allow_tool_calls,
        })
        if not self.responses:
            raise AssertionError("FakeEndpoint ran out of scripted responses")
        return self.responses.pop(0)


class FakeScri:
    def __init__(self, trials: list[ScriTrial] | None = None, total: int | None = None):
        self.trials = trials if trials is not None else [make_trial()]
        self.total = total if total is not None else len(self.trials)
        self.search_calls: list[tuple[str, int]] = []
        self.detail_calls: list[str] = []

    async def search_trials(self, cancer_type: str, page: int = 1) -> ScriSearchPage:
        self.search_calls.append((cancer_type, page))
        return ScriSearchPage(
            current_page=page,
            total_item_count=self.total,
            total_page_count=1,
            search_results_data=self.trials,
        )

    async def get_trial_details(self, study_id: str) -> ScriTrial:
        self.detail_calls.append(study_id)
        for trial in self.trials:
            if trial.study_id == study_id:
                return trial
        raise ScriApiError(f"Trial {study_id} not found")

    async def list_cancer_types(self) -> list[str]:
        return ["Breast", "Lung", "Lymphoma"]


class FakeRegistry:
    def __init__(self, studies: dict | None = None, search_results: list | None = None):
        self.studies = studies or {}
        self.search_results = search_results or []
        self.search_calls: list[tuple] = []

    async def fetch_study(self, nct_id: str):
        return self.studies.get(nct_id)

    async def search_studies(self, condition, location=None, distance_miles=100, max_results=10):
        self.search_calls.append((condition, location, distance_miles, max_results))
        return self.search_results


@pytest.fixture
def fake_scri() -> FakeScri:
    return FakeScri()


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def executor(fake_scri, fake_registry) -> ToolExecutor:
    return ToolExecutor(
        scri=fake_scri,
        registry=fake_registry,
        cache=TrialCache(),
        search_limit=20,
        backstop_limit=10,
        backstop_radius=100,
    )
