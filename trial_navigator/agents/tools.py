"""Tool declarations advertised to the model and the executor that runs them."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from trial_navigator.agents.cache import TrialCache
from trial_navigator.agents.projection import rank_search_results, to_trial_summary
from trial_navigator.config import settings
from trial_navigator.errors import (
    ScriApiError,
    SourceError,
    ToolArgumentError,
    UnknownToolError,
)
from trial_navigator.models.patient import PatientProfile
from trial_navigator.models.trial import TrialSearchResult
from trial_navigator.sources.clinical_trials import (
    RegistryClient,
    format_eligibility_for_display,
    format_treatment_info,
    summarize_eligibility,
    summarize_treatments,
)
from trial_navigator.sources.scri import ScriClient

logger = logging.getLogger(__name__)

SEARCH_TRIALS = "search_trials"
GET_STUDY_DETAILS = "get_study_details"
GET_TRIAL_ELIGIBILITY = "get_trial_eligibility"
GET_TRIAL_TREATMENT_INFO = "get_trial_treatment_info"
GET_AVAILABLE_CANCER_TYPES = "get_available_cancer_types"
SEARCH_ALL_TRIALS = "search_all_trials"

# Provider-neutral declarations; endpoint adapters wrap them in their own envelope.
TOOLS: list[dict[str, Any]] = [
    {
        "name": SEARCH_TRIALS,
        "description": (
            "Search for SCRI clinical trials by cancer type. Returns slim results "
            "(id, name, phase, location, distance). Call get_study_details for full "
            "info on promising matches. If ZIP code is provided, results are sorted by distance."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "cancerType": {
                    "type": "string",
                    "description": "The type of cancer to search for. Examples: 'Breast', 'Lung', 'Lymphoma'",
                },
                "zipCode": {
                    "type": "string",
                    "description": "Optional: Patient's 5-digit ZIP code for distance calculations and sorting by proximity",
                },
            },
            "required": ["cancerType"],
        },
    },
    {
        "name": GET_STUDY_DETAILS,
        "description": (
            "Get full details for a specific trial by study ID. Use after search_trials "
            "to dig deeper on promising matches. Returns title, all locations, cancer types, and links."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "studyId": {
                    "type": "string",
                    "description": 'The SCRI study ID (e.g., "BRE-430" or the full GUID)',
                },
            },
            "required": ["studyId"],
        },
    },
    {
        "name": GET_TRIAL_ELIGIBILITY,
        "description": (
            "Get detailed eligibility criteria for a specific trial from ClinicalTrials.gov. "
            "Use this when a patient asks about eligibility requirements or wants to know if they might qualify."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "nctId": {"type": "string", "description": 'The NCT identifier (e.g., "NCT03448926")'},
            },
            "required": ["nctId"],
        },
    },
    {
        "name": GET_TRIAL_TREATMENT_INFO,
        "description": (
            "Get information about the treatments and interventions in a specific trial. "
            "Use when patient wants to understand what drugs or treatments are being studied."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "nctId": {"type": "string", "description": 'The NCT identifier (e.g., "NCT03448926")'},
            },
            "required": ["nctId"],
        },
    },
    {
        "name": GET_AVAILABLE_CANCER_TYPES,
        "description": (
            "Get the list of all available cancer types that SCRI has trials for. "
            "Use this to help patients understand what's available."
        ),
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": SEARCH_ALL_TRIALS,
        "description": (
            "Search ClinicalTrials.gov for ALL recruiting trials (not just SCRI). Use as a BACKSTOP "
            "when SCRI has no coverage in patient's area, or when SCRI search returns no relevant "
            "results. Returns trials from any institution."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "condition": {
                    "type": "string",
                    "description": "Cancer type or condition to search for. Example: 'HER2 positive breast cancer'",
                },
                "location": {
                    "type": "string",
                    "description": 'City and state, or ZIP code. Example: "Nashville, TN" or "37203"',
                },
                "distance": {
                    "type": "number",
                    "description": "Maximum distance in miles from location (default: 100)",
                },
            },
            "required": ["condition"],
        },
    },
]


# ---------------------------------------------------------------------------
# Argument and result models
# ---------------------------------------------------------------------------


class ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SearchTrialsArgs(ToolArgs):
    cancer_type: str = Field(min_length=1)
    zip_code: str | None = None


class StudyDetailsArgs(ToolArgs):
    study_id: str = Field(min_length=1)


class RegistryIdArgs(ToolArgs):
    nct_id: str


class NoArgs(ToolArgs):
    pass


class SearchAllTrialsArgs(ToolArgs):
    condition: str = Field(min_length=1)
    location: str | None = None
    distance: float | None = None


class SearchTrialsResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    search_query: dict[str, str]
    total_found: int
    showing: int
    message: str
    trials: list[TrialSearchResult]


Handler = Callable[[Any], Awaitable[Any]]


class ToolExecutor:
    """Runs one named tool against the data sources, the cache and the current profile."""

    def __init__(
        self,
        scri: ScriClient | None = None,
        registry: RegistryClient | None = None,
        cache: TrialCache | None = None,
        profile: PatientProfile | None = None,
        search_limit: int | None = None,
        backstop_limit: int | None = None,
        backstop_radius: int | None = None,
    ):
        self.scri = scri or ScriClient()
        self.registry = registry or RegistryClient()
        self.cache = cache if cache is not None else TrialCache()
        self.profile = profile
        self.search_limit = search_limit or settings.search_result_limit
        self.backstop_limit = backstop_limit or settings.backstop_result_limit
        self.backstop_radius = backstop_radius or settings.backstop_default_radius_miles

        self._handlers: dict[str, tuple[type[ToolArgs], Handler]] = {
            SEARCH_TRIALS: (SearchTrialsArgs, self._search_trials),
            GET_STUDY_DETAILS: (StudyDetailsArgs, self._get_study_details),
            GET_TRIAL_ELIGIBILITY: (RegistryIdArgs, self._get_trial_eligibility),
            GET_TRIAL_TREATMENT_INFO: (RegistryIdArgs, self._get_trial_treatment_info),
            GET_AVAILABLE_CANCER_TYPES: (NoArgs, self._get_available_cancer_types),
            SEARCH_ALL_TRIALS: (SearchAllTrialsArgs, self._search_all_trials),
        }
        self._check_registry()

    def _check_registry(self) -> None:
        advertised = {tool["name"] for tool in TOOLS}
        registered = set(self._handlers)
        if advertised != registered:
            raise RuntimeError(
                f"Tool registry mismatch: unhandled={sorted(advertised - registered)}, "
                f"unadvertised={sorted(registered - advertised)}"
            )

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    async def execute(self, tool_name: str, tool_input: dict[str, Any]) -> Any:
        """Run a tool and return its JSON-ready payload.

        Data-source failures come back as ``{"error": ...}``. An unregistered
        name raises ``UnknownToolError``; arguments that do not fit the
        declared shape raise ``ToolArgumentError``.
        """
        try:
            args_model, handler = self._handlers[tool_name]
        except KeyError:
            raise UnknownToolError(tool_name) from None

        try:
            args = args_model.model_validate(tool_input or {})
        except ValidationError as exc:
            raise ToolArgumentError(f"Invalid arguments for {tool_name}: {exc}") from exc

        try:
            return await handler(args)
        except SourceError as exc:
            logger.warning("Tool %s failed upstream: %s", tool_name, exc)
            return {"error": str(exc)}

    async def _search_trials(self, args: SearchTrialsArgs) -> SearchTrialsResult:
        zip_code = args.zip_code or (self.profile.zip_code if self.profile else None)

        page = await self.scri.search_trials(args.cancer_type, 1)
        self.cache.put(page.search_results_data, zip_code)

        trials = rank_search_results(page.search_results_data, zip_code, self.search_limit)
        if zip_code:
            message = (
                f"Found {page.total_item_count} {args.cancer_type} trials. Showing top "
                f"{len(trials)} sorted by distance. Use get_study_details to dig deeper."
            )
        else:
            message = (
                f"Found {page.total_item_count} {args.cancer_type} trials. Showing "
                f"{len(trials)}. Provide ZIP to sort by distance. Use get_study_details to dig deeper."
            )

        return SearchTrialsResult(
            search_query={"cancerType": args.cancer_type, "zipCode": zip_code or "not provided"},
            total_found=page.total_item_count,
            showing=len(trials),
            message=message,
            trials=trials,
        )

    async def _get_study_details(self, args: StudyDetailsArgs) -> dict[str, Any]:
        cached = self.cache.get(args.study_id)
        if cached is not None:
            logger.info("Found %s in cache", args.study_id)
            summary = to_trial_summary(cached.trial, cached.zip_code)
            return {"found": True, "source": "cache", "trial": summary}

        logger.info("Fetching %s from SCRI API", args.study_id)
        try:
            trial = await self.scri.get_trial_details(args.study_id)
        except ScriApiError:
            return {
                "found": False,
                "error": (
                    f'Could not find trial with ID "{args.study_id}". '
                    "Make sure to use the study ID from search results."
                ),
            }
        zip_code = self.profile.zip_code if self.profile else None
        return {"found": True, "source": "api", "trial": to_trial_summary(trial, zip_code)}

    async def _get_trial_eligibility(self, args: RegistryIdArgs) -> dict[str, Any]:
        study = await self.registry.fetch_study(args.nct_id)
        if study is None:
            return {"error": f"Could not fetch study {args.nct_id} from ClinicalTrials.gov"}
        return {
            "nctId": study.nct_id or args.nct_id,
            "title": study.brief_title,
            "eligibility": summarize_eligibility(study),
            "eligibilityText": format_eligibility_for_display(study),
        }

    async def _get_trial_treatment_info(self, args: RegistryIdArgs) -> dict[str, Any]:
        study = await self.registry.fetch_study(args.nct_id)
        if study is None:
            return {"error": f"Could not fetch study {args.nct_id} from ClinicalTrials.gov"}
        return {
            "nctId": study.nct_id or args.nct_id,
            "title": study.brief_title,
            "interventions": summarize_treatments(study),
            "treatmentInfo": format_treatment_info(study),
        }

    async def _get_available_cancer_types(self, args: NoArgs) -> list[str]:
        return await self.scri.list_cancer_types()

    async def _search_all_trials(self, args: SearchAllTrialsArgs) -> dict[str, Any]:
        distance = args.distance or self.backstop_radius
        logger.info(
            "Backstop search on ClinicalTrials.gov: %r near %r within %smi",
            args.condition, args.location or "any", distance,
        )
        results = await self.registry.search_studies(
            args.condition, args.location, distance, self.backstop_limit
        )
        return {
            "source": "ClinicalTrials.gov",
            "note": "These are trials from ALL institutions, not just SCRI",
            "searchQuery": {
                "condition": args.condition,
                "location": args.location,
                "distance": distance,
            },
            "totalFound": len(results),
            "trials": [
                {
                    "nctId": r.nct_id,
                    "title": r.brief_title,
                    "phase": r.phase,
                    "status": r.status,
                    "conditions": r.conditions,
                    "treatments": r.interventions,
                    "sampleLocations": [loc.model_dump() for loc in r.locations],
                }
                for r in results[: self.backstop_limit]
            ],
        }
