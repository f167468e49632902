"""Tests for the tool executor: dispatch, argument validation, payload shapes."""

from __future__ import annotations

import httpx
import pytest
from conftest import FakeRegistry, FakeScri, make_trial

from trial_navigator.agents.cache import TrialCache
from trial_navigator.agents.tools import TOOLS, SearchTrialsResult, ToolExecutor
from trial_navigator.errors import ScriApiError, ToolArgumentError, UnknownToolError
from trial_navigator.models.patient import PatientProfile
from trial_navigator.models.trial import (
    RegistryIntervention,
    RegistryLocation,
    RegistrySearchResult,
    RegistryStudy,
)
from trial_navigator.sources.scri import ScriClient

CRITERIA = """Inclusion Criteria:
- Age 18 or older
- HER2-positive breast cancer
- ECOG 0-1

Exclusion Criteria:
- Active brain metastases
- Pregnancy
"""


def _study(nct_id: str = "NCT03448926") -> RegistryStudy:
    return RegistryStudy(
        nct_id=nct_id,
        brief_title="Zanidatamab in HER2+ breast cancer",
        eligibility_criteria=CRITERIA,
        minimum_age="18 Years",
        sex="ALL",
        interventions=[
            RegistryIntervention(type="DRUG", name="Zanidatamab", description="x" * 300),
        ],
    )


# ---------------------------------------------------------------------------
# TestRegistry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_every_advertised_tool_is_handled(self, executor):
        assert sorted(executor.tool_names) == sorted(t["name"] for t in TOOLS)

    def test_schemas_name_required_arguments(self):
        by_name = {t["name"]: t for t in TOOLS}
        assert by_name["search_trials"]["parameters"]["required"] == ["cancerType"]
        assert by_name["get_study_details"]["parameters"]["required"] == ["studyId"]
        assert by_name["get_trial_eligibility"]["parameters"]["required"] == ["nctId"]
        assert by_name["search_all_trials"]["parameters"]["required"] == ["condition"]

    async def test_unknown_tool_raises(self, executor):
        with pytest.raises(UnknownToolError, match="Unknown tool: book_flight"):
            await executor.execute("book_flight", {})

    async def test_missing_required_argument_raises(self, executor):
        with pytest.raises(ToolArgumentError):
            await executor.execute("search_trials", {})


# ---------------------------------------------------------------------------
# TestSearchTrials
# ---------------------------------------------------------------------------


class TestSearchTrials:
    async def test_populates_cache_and_returns_slim_results(self, executor, fake_scri):
        result = await executor.execute("search_trials", {"cancerType": "Breast", "zipCode": "37203"})
        assert isinstance(result, SearchTrialsResult)
        assert fake_scri.search_calls == [("Breast", 1)]
        assert result.total_found == 1
        assert result.showing == 1
        assert result.trials[0].kind == "slim"
        assert result.trials[0].distance < 5
        assert executor.cache.get("BRE-430-001").zip_code == "37203"
        assert "sorted by distance" in result.message

    async def test_falls_back_to_profile_zip(self, executor):
        executor.profile = PatientProfile(zip_code="37203")
        result = await executor.execute("search_trials", {"cancerType": "Breast"})
        assert result.search_query["zipCode"] == "37203"
        assert executor.cache.get("BRE-430-001").zip_code == "37203"

    async def test_without_zip(self, executor):
        result = await executor.execute("search_trials", {"cancerType": "Breast"})
        assert result.search_query["zipCode"] == "not provided"
        assert result.trials[0].distance is None
        assert "Provide ZIP" in result.message

    async def test_empty_result_is_not_an_error(self):
        executor = ToolExecutor(scri=FakeScri(trials=[]), registry=FakeRegistry(), cache=TrialCache())
        result = await executor.execute("search_trials", {"cancerType": "Sarcoma"})
        assert result.total_found == 0
        assert result.trials == []

    async def test_caps_result_count(self):
        trials = [make_trial(f"T{i}", f"TRIAL {i}") for i in range(30)]
        executor = ToolExecutor(
            scri=FakeScri(trials=trials), registry=FakeRegistry(), cache=TrialCache(), search_limit=20
        )
        result = await executor.execute("search_trials", {"cancerType": "Breast"})
        assert result.total_found == 30
        assert result.showing == 20
        assert len(executor.cache) == 60

    async def test_upstream_failure_becomes_error_payload(self, executor, fake_scri):
        async def boom(cancer_type, page=1):
            raise ScriApiError("API error: 503")

        fake_scri.search_trials = boom
        result = await executor.execute("search_trials", {"cancerType": "Breast"})
        assert result == {"error": "API error: 503"}

    async def test_unreadable_source_body_becomes_error_payload(self, fake_registry):
        scri = ScriClient(
            base_url="https://scri.test/api/v1",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, text="<html>maintenance</html>")
            ),
        )
        executor = ToolExecutor(scri=scri, registry=fake_registry, cache=TrialCache())

        result = await executor.execute("search_trials", {"cancerType": "Breast"})

        assert set(result) == {"error"}
        assert len(executor.cache) == 0

    def test_camel_case_dump(self):
        result = SearchTrialsResult(
            search_query={"cancerType": "Breast", "zipCode": "37203"},
            total_found=0,
            showing=0,
            message="",
            trials=[],
        )
        dumped = result.model_dump(by_alias=True)
        assert set(dumped) == {"searchQuery", "totalFound", "showing", "message", "trials"}


# ---------------------------------------------------------------------------
# TestStudyDetails
# ---------------------------------------------------------------------------


class TestStudyDetails:
    async def test_served_from_cache_by_partial_id(self, executor, fake_scri):
        await executor.execute("search_trials", {"cancerType": "Breast", "zipCode": "37203"})
        result = await executor.execute("get_study_details", {"studyId": "BRE-430"})
        assert result["found"] is True
        assert result["source"] == "cache"
        assert result["trial"].kind == "full"
        assert result["trial"].closest_location.distance < 5
        assert fake_scri.detail_calls == []

    async def test_cache_miss_fetches_from_source(self, executor, fake_scri):
        result = await executor.execute("get_study_details", {"studyId": "BRE-430-001"})
        assert result["source"] == "api"
        assert fake_scri.detail_calls == ["BRE-430-001"]

    async def test_not_found_anywhere(self, executor):
        result = await executor.execute("get_study_details", {"studyId": "GI-999"})
        assert result["found"] is False
        assert 'Could not find trial with ID "GI-999"' in result["error"]


# ---------------------------------------------------------------------------
# TestRegistryLookups
# ---------------------------------------------------------------------------


class TestRegistryLookups:
    async def test_eligibility_summary(self, fake_scri):
        registry = FakeRegistry(studies={"NCT03448926": _study()})
        executor = ToolExecutor(scri=fake_scri, registry=registry, cache=TrialCache())
        result = await executor.execute("get_trial_eligibility", {"nctId": "NCT03448926"})
        assert result["nctId"] == "NCT03448926"
        eligibility = result["eligibility"]
        assert eligibility["ageRange"] == "18 Years or older"
        assert eligibility["sex"] is None
        assert eligibility["inclusion"] == [
            "Age 18 or older", "HER2-positive breast cancer", "ECOG 0-1",
        ]
        assert eligibility["exclusion"] == ["Active brain metastases", "Pregnancy"]
        assert "**Key Inclusion Criteria:**" in result["eligibilityText"]

    async def test_eligibility_not_found_is_payload(self, executor):
        result = await executor.execute("get_trial_eligibility", {"nctId": "NCT00000000"})
        assert result == {"error": "Could not fetch study NCT00000000 from ClinicalTrials.gov"}

    async def test_treatment_info_truncates_description(self, fake_scri):
        registry = FakeRegistry(studies={"NCT03448926": _study()})
        executor = ToolExecutor(scri=fake_scri, registry=registry, cache=TrialCache())
        result = await executor.execute("get_trial_treatment_info", {"nctId": "NCT03448926"})
        item = result["interventions"][0]
        assert item["name"] == "Zanidatamab"
        assert item["type"] == "DRUG"
        assert len(item["description"]) == 200
        assert item["description"].endswith("...")

    async def test_cancer_types(self, executor):
        assert await executor.execute("get_available_cancer_types", {}) == ["Breast", "Lung", "Lymphoma"]


# ---------------------------------------------------------------------------
# TestBackstop
# ---------------------------------------------------------------------------


class TestBackstop:
    async def test_default_radius_and_shape(self, fake_scri):
        registry = FakeRegistry(search_results=[
            RegistrySearchResult(
                nct_id="NCT05000001",
                brief_title="Backstop trial",
                phase="PHASE2",
                status="RECRUITING",
                conditions=["Breast Cancer"],
                interventions=["Drug A"],
                locations=[RegistryLocation(facility="MGH", city="Boston", state="Massachusetts")],
            )
        ])
        executor = ToolExecutor(
            scri=fake_scri, registry=registry, cache=TrialCache(), backstop_radius=100, backstop_limit=10
        )
        result = await executor.execute("search_all_trials", {"condition": "breast cancer", "location": "02115"})
        assert registry.search_calls == [("breast cancer", "02115", 100, 10)]
        assert result["source"] == "ClinicalTrials.gov"
        assert result["totalFound"] == 1
        trial = result["trials"][0]
        assert trial["nctId"] == "NCT05000001"
        assert trial["treatments"] == ["Drug A"]
        assert trial["sampleLocations"][0]["city"] == "Boston"

    async def test_explicit_distance(self, executor, fake_registry):
        await executor.execute("search_all_trials", {"condition": "lymphoma", "distance": 250})
        assert fake_registry.search_calls == [("lymphoma", None, 250, 10)]

