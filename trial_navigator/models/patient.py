from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TrialPhase = Literal["Phase 1", "Phase 2", "Phase 3", "Phase 4"]


class PatientProfile(BaseModel):
    """Snapshot of what the patient has told us.

    Frozen: an update replaces the whole profile, callers merge before
    handing a new snapshot to the agent.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    # Demographics
    age: int | None = None
    zip_code: str | None = None
    travel_radius: int | None = None  # miles

    # Cancer
    cancer_type: str | None = None
    cancer_subtype: str | None = None
    stage: str | None = None
    diagnosis_date: str | None = None

    # Treatment history
    previous_treatments: list[str] = Field(default_factory=list)
    current_medications: list[str] = Field(default_factory=list)

    # Health status
    performance_status: str | None = None  # ECOG 0-5
    comorbidities: list[str] = Field(default_factory=list)

    # Preferences
    preferred_locations: list[str] = Field(default_factory=list)
    trial_phase_preferences: list[TrialPhase] = Field(default_factory=list)

    def context_lines(self) -> list[str]:
        """Render the populated fields as system-prompt bullet lines."""
        lines: list[str] = []
        if self.cancer_type:
            subtype = f" ({self.cancer_subtype})" if self.cancer_subtype else ""
            lines.append(f"- Cancer Type: {self.cancer_type}{subtype}")
        if self.zip_code:
            lines.append(f"- Location (ZIP): {self.zip_code}")
        if self.age:
            lines.append(f"- Age: {self.age}")
        if self.stage:
            lines.append(f"- Stage: {self.stage}")
        if self.travel_radius:
            lines.append(f"- Willing to travel: {self.travel_radius} miles")
        if self.previous_treatments:
            lines.append(f"- Previous treatments: {', '.join(self.previous_treatments)}")
        if self.performance_status:
            lines.append(f"- ECOG performance status: {self.performance_status}")
        if self.trial_phase_preferences:
            lines.append(f"- Preferred phases: {', '.join(self.trial_phase_preferences)}")
        return lines
