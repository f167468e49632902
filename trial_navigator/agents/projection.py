"""Project raw trial-source records into the views the agent and UI consume."""

from __future__ import annotations

from trial_navigator.config import settings
from trial_navigator.models.trial import (
    LocationSummary,
    ScriSite,
    ScriTrial,
    TrialSearchResult,
    TrialSummary,
)
from trial_navigator.sources.geocoding import calculate_distance, get_zip_coordinates

Origin = tuple[float, float]


def resolve_origin(zip_code: str | None) -> Origin | None:
    if not zip_code:
        return None
    found = get_zip_coordinates(zip_code)
    return (found.lat, found.lon) if found else None


def _distance_to(site: ScriSite, origin: Origin | None) -> float | None:
    if origin is None:
        return None
    coords = site.coordinates()
    if coords is None:
        return None
    return round(calculate_distance(origin[0], origin[1], coords[0], coords[1]), 1)


def scri_url(study_id: str) -> str:
    return f"{settings.scri_portal_url}/{study_id}"


def ct_gov_url(nct_id: str) -> str:
    return f"{settings.ctgov_study_url}/{nct_id}" if nct_id else ""


def to_trial_summary(trial: ScriTrial, zip_code: str | None = None) -> TrialSummary:
    """Full view: every site with its distance, closest first when the ZIP resolves."""
    origin = resolve_origin(zip_code)
    locations = trial.locations

    summaries = [
        LocationSummary(
            name=site.display_name or site.site_name1,
            city=site.city.strip(),
            state=site.state,
            phone=site.phone_number1 or None,
            distance=_distance_to(site, origin),
        )
        for site in locations
    ]
    ranked = sorted((s for s in summaries if s.distance is not None), key=lambda s: s.distance)
    unranked = [s for s in summaries if s.distance is None]
    ordered = ranked + unranked

    return TrialSummary(
        id=trial.study_id,
        name=trial.study_name,
        title=trial.protocol_title,
        nct_id=trial.nct,
        phases=trial.phase_names,
        cancer_types=trial.program_type_names,
        location_count=len(locations),
        closest_location=ordered[0] if ordered else None,
        all_locations=ordered,
        scri_url=scri_url(trial.study_id),
        ct_gov_url=ct_gov_url(trial.nct),
    )


def to_search_result(trial: ScriTrial, origin: Origin | None = None) -> TrialSearchResult:
    """Slim view: identifiers, phases and the closest site's city/state/distance."""
    locations = trial.locations
    closest: ScriSite | None = None
    best: float | None = None

    for site in locations:
        distance = _distance_to(site, origin)
        if distance is not None and (best is None or distance < best):
            closest, best = site, distance

    if closest is None and locations:
        closest = locations[0]

    return TrialSearchResult(
        id=trial.study_id,
        name=trial.study_name,
        nct_id=trial.nct,
        phases=trial.phase_names,
        closest_city=closest.city.strip() if closest else None,
        closest_state=closest.state if closest else None,
        distance=best,
        scri_url=scri_url(trial.study_id),
    )


def rank_search_results(
    trials: list[ScriTrial], zip_code: str | None, limit: int
) -> list[TrialSearchResult]:
    """Slim results, nearest first when the ZIP resolves; unplaceable trials trail."""
    origin = resolve_origin(zip_code)
    results = [to_search_result(t, origin) for t in trials]
    if origin is None:
        return results[:limit]

    placed = sorted((r for r in results if r.distance is not None), key=lambda r: r.distance)
    unplaced = [r for r in results if r.distance is None]
    return (placed + unplaced)[:limit]


def format_trials_for_display(trials: list[TrialSummary | TrialSearchResult]) -> str:
    if not trials:
        return "No trials found matching your criteria."

    blocks = []
    for index, trial in enumerate(trials, start=1):
        lines = [f"{index}. {trial.name or trial.id} ({trial.nct_id or 'no NCT id'})"]
        if trial.phases:
            lines[0] += f" - {', '.join(trial.phases)}"

        if isinstance(trial, TrialSummary):
            if trial.title:
                lines.append(f"   {trial.title}")
            loc = trial.closest_location
            if loc:
                where = f"   Closest site: {loc.name} - {loc.city}, {loc.state}"
                if loc.distance is not None:
                    where += f" ({loc.distance:g} miles)"
                lines.append(where)
                if loc.phone:
                    lines.append(f"   Phone: {loc.phone}")
            lines.append(f"   {trial.location_count} location(s) available")
        else:
            if trial.closest_city or trial.closest_state:
                where = f"   Closest site: {trial.closest_city}, {trial.closest_state}"
                if trial.distance is not None:
                    where += f" ({trial.distance:g} miles)"
                lines.append(where)
        lines.append(f"   {trial.scri_url}")
        blocks.append("\n".join(lines))

    return "\n\n".join(blocks)
