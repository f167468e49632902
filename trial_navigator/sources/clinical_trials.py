"""ClinicalTrials.gov API v2 wrapper.

Supplies eligibility and treatment text for trials the primary source
lists, and serves as the backstop search across all institutions.

API docs: https://clinicaltrials.gov/data-api/api
No authentication required. Rate limit ~10 req/sec.

Uses aiohttp instead of httpx because ClinicalTrials.gov blocks httpx's
TLS fingerprint.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import aiohttp

from trial_navigator.config import settings
from trial_navigator.errors import RegistryError
from trial_navigator.models.trial import (
    RegistryIntervention,
    RegistryLocation,
    RegistrySearchResult,
    RegistryStudy,
)
from trial_navigator.sources.geocoding import resolve_location

logger = logging.getLogger(__name__)

NCT_ID_PATTERN = re.compile(r"^NCT\d{8}$")

_MAX_PAGE_SIZE = 20
_MAX_INCLUSION = 5
_MAX_EXCLUSION = 3
_MAX_DESCRIPTION = 200


async def _get(url: str, params: dict[str, Any], timeout: float) -> dict:
    """Make a GET request to the ClinicalTrials.gov API."""
    async with aiohttp.ClientSession() as session:
        async with session.get(
            url,
            params=params,
            headers={"Accept": "application/json"},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            resp.raise_for_status()
            return await resp.json()


def normalize_nct_id(nct_id: str) -> str | None:
    cleaned = nct_id.strip().upper()
    return cleaned if NCT_ID_PATTERN.match(cleaned) else None


def _parse_study(raw: dict) -> RegistryStudy | None:
    """Flatten a full study record into the fields we surface."""
    protocol = raw.get("protocolSection")
    if not protocol:
        return None

    ident = protocol.get("identificationModule", {})
    description = protocol.get("descriptionModule", {})
    eligibility = protocol.get("eligibilityModule", {})
    design = protocol.get("designModule", {})
    conditions = protocol.get("conditionsModule", {})
    arms = protocol.get("armsInterventionsModule", {})
    outcomes = protocol.get("outcomesModule", {})
    contacts = protocol.get("contactsLocationsModule", {})

    phases = design.get("phases") or []
    return RegistryStudy(
        nct_id=ident.get("nctId", ""),
        brief_title=ident.get("briefTitle") or "",
        official_title=ident.get("officialTitle"),
        brief_summary=description.get("briefSummary"),
        detailed_description=description.get("detailedDescription"),
        eligibility_criteria=eligibility.get("eligibilityCriteria"),
        minimum_age=eligibility.get("minimumAge"),
        maximum_age=eligibility.get("maximumAge"),
        sex=eligibility.get("sex"),
        healthy_volunteers=eligibility.get("healthyVolunteers"),
        phase=", ".join(phases) if phases else None,
        study_type=design.get("studyType"),
        conditions=conditions.get("conditions") or [],
        interventions=[
            RegistryIntervention(
                type=i.get("type") or "",
                name=i.get("name") or "",
                description=i.get("description"),
            )
            for i in arms.get("interventions") or []
        ],
        primary_outcomes=[
            {
                "measure": o.get("measure", ""),
                "description": o.get("description"),
                "timeFrame": o.get("timeFrame"),
            }
            for o in outcomes.get("primaryOutcomes") or []
        ],
        contacts=[
            {"name": c.get("name"), "phone": c.get("phone"), "email": c.get("email")}
            for c in contacts.get("centralContacts") or []
        ],
    )


def _parse_search_hit(study: dict) -> RegistrySearchResult:
    protocol = study.get("protocolSection", {})
    ident = protocol.get("identificationModule", {})
    design = protocol.get("designModule", {})
    status = protocol.get("statusModule", {})
    conditions = protocol.get("conditionsModule", {})
    arms = protocol.get("armsInterventionsModule", {})
    contacts_locations = protocol.get("contactsLocationsModule", {})

    phases = design.get("phases") or []
    return RegistrySearchResult(
        nct_id=ident.get("nctId") or "",
        brief_title=ident.get("briefTitle") or "",
        phase=", ".join(phases) if phases else None,
        status=status.get("overallStatus") or "Unknown",
        conditions=conditions.get("conditions") or [],
        interventions=[i.get("name", "") for i in arms.get("interventions") or [] if i.get("name")],
        locations=[
            RegistryLocation(
                facility=loc.get("facility") or "",
                city=loc.get("city") or "",
                state=loc.get("state") or "",
                country=loc.get("country") or "",
            )
            for loc in (contacts_locations.get("locations") or [])[:3]
        ],
    )


class RegistryClient:
    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.ctgov_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds

    async def fetch_study(self, nct_id: str) -> RegistryStudy | None:
        """Fetch one study; None for a malformed id (no request made) or a 404."""
        clean_id = normalize_nct_id(nct_id)
        if clean_id is None:
            logger.info("Skipping registry lookup for malformed id %r", nct_id)
            return None

        try:
            raw = await _get(f"{self.base_url}/studies/{clean_id}", {"format": "json"}, self.timeout)
        except aiohttp.ClientResponseError as exc:
            if exc.status == 404:
                return None
            logger.error(
                "ClinicalTrials.gov API HTTP error %s for nct_id=%s: %s",
                exc.status, clean_id, exc,
            )
            raise RegistryError(f"ClinicalTrials.gov returned {exc.status} for {clean_id}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("Error fetching trial details for nct_id=%s: %r", clean_id, exc)
            raise RegistryError(f"ClinicalTrials.gov request failed: {exc!r}") from exc
        except ValueError as exc:
            logger.error("Unreadable ClinicalTrials.gov response for nct_id=%s", clean_id)
            raise RegistryError("ClinicalTrials.gov returned an unreadable response") from exc

        if not isinstance(raw, dict):
            raise RegistryError("ClinicalTrials.gov returned an unexpected payload")
        return _parse_study(raw)

    async def search_studies(
        self,
        condition: str,
        location: str | None = None,
        distance_miles: float = 100,
        max_results: int = 10,
    ) -> list[RegistrySearchResult]:
        """Search recruiting studies from every institution.

        A rejected geographic filter is retried once without it.
        """
        params: dict[str, Any] = {
            "query.cond": condition,
            "filter.overallStatus": "RECRUITING",
            "pageSize": min(max_results, _MAX_PAGE_SIZE),
            "sort": "LastUpdatePostDate:desc",
            "format": "json",
        }

        trimmed = (location or "").strip()
        if trimmed:
            coords = await resolve_location(trimmed)
            where = f"{coords[0]},{coords[1]}" if coords else trimmed
            params["filter.geo"] = f"distance({where},{distance_miles:g}mi)"

        url = f"{self.base_url}/studies"
        try:
            data = await _get(url, params, self.timeout)
        except aiohttp.ClientResponseError as exc:
            if exc.status == 400 and "filter.geo" in params:
                logger.warning(
                    "Geo filter %r rejected, retrying without location filter",
                    params["filter.geo"],
                )
                params.pop("filter.geo")
                try:
                    data = await _get(url, params, self.timeout)
                except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as retry_exc:
                    raise RegistryError(f"ClinicalTrials.gov search failed: {retry_exc!r}") from retry_exc
            else:
                logger.error(
                    "ClinicalTrials.gov API HTTP error %s for condition=%r: %s",
                    exc.status, condition, exc,
                )
                raise RegistryError(f"ClinicalTrials.gov search returned {exc.status}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.error("Error searching trials for condition=%r: %r", condition, exc)
            raise RegistryError(f"ClinicalTrials.gov search failed: {exc!r}") from exc

        studies = data.get("studies") if isinstance(data, dict) else None
        if not isinstance(studies, list):
            studies = []
        return [_parse_search_hit(s) for s in studies[:max_results] if isinstance(s, dict)]


# ---------------------------------------------------------------------------
# Eligibility and treatment text
# ---------------------------------------------------------------------------


def parse_criteria_text(text: str | None) -> tuple[list[str], list[str]]:
    """Split eligibility criteria free-text into inclusion and exclusion lists.

    Without any section header the whole text counts as inclusion.
    """
    inclusion: list[str] = []
    exclusion: list[str] = []

    if not text:
        return inclusion, exclusion

    text_lower = text.lower()
    inc_start = text_lower.find("inclusion criteria")
    exc_start = text_lower.find("exclusion criteria")

    if inc_start != -1 and exc_start != -1:
        if inc_start < exc_start:
            inc_section = text[inc_start:exc_start]
            exc_section = text[exc_start:]
        else:
            exc_section = text[exc_start:inc_start]
            inc_section = text[inc_start:]
        inclusion = _extract_bullet_items(inc_section)
        exclusion = _extract_bullet_items(exc_section)
    elif inc_start != -1:
        inclusion = _extract_bullet_items(text[inc_start:])
    elif exc_start != -1:
        exclusion = _extract_bullet_items(text[exc_start:])
    else:
        inclusion = _extract_bullet_items(text)

    return inclusion, exclusion


def _extract_bullet_items(section: str) -> list[str]:
    """Extract individual criteria items from a section of text."""
    items: list[str] = []

    for line in section.strip().splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        lower = stripped.lower()
        if lower.startswith("inclusion criteria") or lower.startswith("exclusion criteria"):
            continue

        for prefix in ("-", "*", "•"):
            if stripped.startswith(prefix):
                stripped = stripped[len(prefix):].strip()
                break
        else:
            numbered = re.match(r"^\d+[.)]\s*", stripped)
            if numbered:
                stripped = stripped[numbered.end():].strip()

        if stripped:
            items.append(stripped)

    return items


def _age_range(study: RegistryStudy) -> str | None:
    parts = []
    if study.minimum_age and study.minimum_age != "N/A":
        parts.append(f"{study.minimum_age} or older")
    if study.maximum_age and study.maximum_age != "N/A":
        parts.append(f"up to {study.maximum_age}")
    return ", ".join(parts) or None


def summarize_eligibility(study: RegistryStudy) -> dict[str, Any]:
    """Key eligibility facts: age range, sex restriction, first 5 inclusion / 3 exclusion items."""
    inclusion, exclusion = parse_criteria_text(study.eligibility_criteria)
    return {
        "ageRange": _age_range(study),
        "sex": study.sex if study.sex and study.sex.upper() != "ALL" else None,
        "inclusion": inclusion[:_MAX_INCLUSION],
        "additionalInclusionCount": max(len(inclusion) - _MAX_INCLUSION, 0),
        "exclusion": exclusion[:_MAX_EXCLUSION],
        "additionalExclusionCount": max(len(exclusion) - _MAX_EXCLUSION, 0),
    }


def format_eligibility_for_display(study: RegistryStudy) -> str:
    summary = summarize_eligibility(study)
    parts: list[str] = []

    if summary["ageRange"]:
        parts.append(f"**Age:** {summary['ageRange']}")
    if summary["sex"]:
        parts.append(f"**Sex:** {summary['sex']}")

    if summary["inclusion"]:
        parts.append("\n**Key Inclusion Criteria:**")
        parts.extend(f"{i}. {c}" for i, c in enumerate(summary["inclusion"], start=1))
        if summary["additionalInclusionCount"]:
            parts.append(f"   _(and {summary['additionalInclusionCount']} more)_")

    if summary["exclusion"]:
        parts.append("\n**Key Exclusion Criteria:**")
        parts.extend(f"{i}. {c}" for i, c in enumerate(summary["exclusion"], start=1))
        if summary["additionalExclusionCount"]:
            parts.append(f"   _(and {summary['additionalExclusionCount']} more)_")

    if not parts:
        return "Eligibility criteria not available. Please contact the trial site for details."
    return "\n".join(parts)


def truncate_description(text: str | None, limit: int = _MAX_DESCRIPTION) -> str | None:
    if text is None or len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def summarize_treatments(study: RegistryStudy) -> list[dict[str, Any]]:
    return [
        {
            "name": i.name,
            "type": i.type,
            "description": truncate_description(i.description),
        }
        for i in study.interventions
    ]


def format_treatment_info(study: RegistryStudy) -> str:
    if not study.interventions:
        return "Treatment information not available."

    lines = ["**Study Treatments:**"]
    for idx, item in enumerate(summarize_treatments(study), start=1):
        line = f"{idx}. **{item['name']}** ({item['type']})"
        if item["description"]:
            line += f": {item['description']}"
        lines.append(line)
    return "\n".join(lines)
