from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Trial source (SCRI) raw records
# ---------------------------------------------------------------------------


class ScriModel(BaseModel):
    """Base for records as the trial source serves them (camelCase, nullable)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # The source sends null for absent text fields; let defaults apply.
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class ScriSite(ScriModel):
    site_id: str = ""
    site_name1: str = ""
    site_name2: str = ""
    display_name: str = ""
    phone_number1: str = ""
    phone_number2: str = ""
    fax_number: str = ""
    address1: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""
    latitude: str | float | None = None
    longitude: str | float | None = None
    distance_from_target_zip_code: float | None = None

    def coordinates(self) -> tuple[float, float] | None:
        """Parsed (lat, lon), or None when either value is missing or malformed."""
        if self.latitude in (None, "") or self.longitude in (None, ""):
            return None
        try:
            return float(self.latitude), float(self.longitude)
        except (TypeError, ValueError):
            return None


class ScriOffice(ScriSite):
    office_id: str = ""
    office_name: str = ""
    rf_site_id: str = ""
    rf_site_name: str = ""
    eng_site_id: str = ""
    eng_site_name: str = ""


class ScriTrial(ScriModel):
    search_score: float | None = None
    provider: str = ""
    study_id: str
    study_name: str = ""
    protocol_name: str = ""
    protocol_title: str = ""
    nct: str = ""
    site_list: list[ScriSite] = Field(default_factory=list)
    office_list: list[ScriOffice] = Field(default_factory=list)
    program_type_names: list[str] = Field(default_factory=list)
    phase_names: list[str] = Field(default_factory=list)
    search_cancer_type: list[str] = Field(default_factory=list)
    nct_conditions: list[str] = Field(default_factory=list, alias="ncT_Conditions")
    nct_keywords: list[str] = Field(default_factory=list, alias="ncT_Keywords")

    @property
    def locations(self) -> list[ScriSite]:
        """Offices are the finer-grained list; fall back to sites."""
        return list(self.office_list) if self.office_list else list(self.site_list)


class ScriSearchPage(ScriModel):
    current_page: int = 1
    items_per_page: int = 0
    total_item_count: int = 0
    total_page_count: int = 0
    search_results_data: list[ScriTrial] = Field(default_factory=list)


class ScriFilterItem(ScriModel):
    filter_item_id: int = 0
    filter_item_text: str = ""
    filter_item_text_description: str = ""
    is_enabled: bool = False
    sort_order: int = 0


class CacheEntry(BaseModel):
    """A fetched trial plus the ZIP code in effect when it was fetched."""

    model_config = ConfigDict(frozen=True)

    trial: ScriTrial
    zip_code: str | None = None


# ---------------------------------------------------------------------------
# Public registry (ClinicalTrials.gov) records
# ---------------------------------------------------------------------------


class RegistryIntervention(BaseModel):
    type: str = ""
    name: str = ""
    description: str | None = None


class RegistryStudy(BaseModel):
    nct_id: str
    brief_title: str = ""
    official_title: str | None = None
    brief_summary: str | None = None
    detailed_description: str | None = None
    eligibility_criteria: str | None = None
    minimum_age: str | None = None
    maximum_age: str | None = None
    sex: str | None = None
    healthy_volunteers: bool | str | None = None
    phase: str | None = None
    study_type: str | None = None
    conditions: list[str] = Field(default_factory=list)
    interventions: list[RegistryIntervention] = Field(default_factory=list)
    primary_outcomes: list[dict[str, Any]] = Field(default_factory=list)
    contacts: list[dict[str, Any]] = Field(default_factory=list)


class RegistryLocation(BaseModel):
    facility: str = ""
    city: str = ""
    state: str = ""
    country: str = ""


class RegistrySearchResult(BaseModel):
    nct_id: str = ""
    brief_title: str = ""
    phase: str | None = None
    status: str = "Unknown"
    conditions: list[str] = Field(default_factory=list)
    interventions: list[str] = Field(default_factory=list)
    locations: list[RegistryLocation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Projected views handed to the model and to callers
# ---------------------------------------------------------------------------


class ViewModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class LocationSummary(ViewModel):
    name: str = ""
    city: str = ""
    state: str = ""
    distance: float | None = None
    phone: str | None = None


class TrialSummary(ViewModel):
    kind: Literal["full"] = "full"
    id: str
    name: str = ""
    title: str = ""
    nct_id: str = ""
    phases: list[str] = Field(default_factory=list)
    cancer_types: list[str] = Field(default_factory=list)
    location_count: int = 0
    closest_location: LocationSummary | None = None
    all_locations: list[LocationSummary] | None = None
    scri_url: str = ""
    ct_gov_url: str = ""


class TrialSearchResult(ViewModel):
    """Slim view for scanning search results before a detail lookup."""

    kind: Literal["slim"] = "slim"
    id: str
    name: str = ""
    nct_id: str = ""
    phases: list[str] = Field(default_factory=list)
    closest_city: str | None = None
    closest_state: str | None = None
    distance: float | None = None
    scri_url: str = ""


TrialView = Annotated[TrialSummary | TrialSearchResult, Field(discriminator="kind")]
