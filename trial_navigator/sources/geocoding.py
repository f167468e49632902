"""Geo resolution for trial distance ranking.

ZIP codes resolve against a bundled table of the areas the trial source
serves; anything else goes through the Open-Meteo geocoding API
(https://open-meteo.com/en/docs/geocoding-api, no authentication).
Distances are great-circle miles (Haversine).
"""

from __future__ import annotations

import logging
import math
import re

import httpx
from pydantic import BaseModel

from trial_navigator.config import settings

logger = logging.getLogger(__name__)

_EARTH_RADIUS_MILES = 3958.8

_ZIP_PATTERN = re.compile(r"^\d{5}(?:-\d{4})?$")


class ZipLocation(BaseModel):
    lat: float
    lon: float
    city: str
    state: str


def _z(lat: float, lon: float, city: str, state: str) -> ZipLocation:
    return ZipLocation(lat=lat, lon=lon, city=city, state=state)


ZIP_COORDINATES: dict[str, ZipLocation] = {
    # Massachusetts
    "02101": _z(42.3601, -71.0589, "Boston", "MA"),
    "02102": _z(42.3601, -71.0589, "Boston", "MA"),
    "02108": _z(42.3576, -71.0636, "Boston", "MA"),
    "02109": _z(42.3604, -71.0535, "Boston", "MA"),
    "02110": _z(42.3570, -71.0513, "Boston", "MA"),
    "02115": _z(42.3420, -71.0904, "Boston", "MA"),
    "02116": _z(42.3503, -71.0766, "Boston", "MA"),
    "02134": _z(42.3554, -71.1317, "Allston", "MA"),
    "02138": _z(42.3809, -71.1342, "Cambridge", "MA"),
    "02139": _z(42.3650, -71.1042, "Cambridge", "MA"),
    # New York
    "10001": _z(40.7506, -73.9971, "New York", "NY"),
    "10016": _z(40.7459, -73.9778, "New York", "NY"),
    "10019": _z(40.7654, -73.9854, "New York", "NY"),
    "10021": _z(40.7693, -73.9588, "New York", "NY"),
    "10022": _z(40.7587, -73.9681, "New York", "NY"),
    # Tennessee
    "37203": _z(36.1503, -86.7958, "Nashville", "TN"),
    "37215": _z(36.1048, -86.8417, "Nashville", "TN"),
    "37232": _z(36.1412, -86.8031, "Nashville", "TN"),
    # Washington
    "75001": _z(32.9545, -96.8389, "Addison", "TX"),
    "75093": _z(33.0340, -96.8073, "Plano", "TX"),
    "77001": _z(29.7543, -95.3532, "Houston", "TX"),
    "77030": _z(29.7070, -95.3964, "Houston", "TX"),
    "78701": _z(30.2729, -97.7444, "Austin", "TX"),
    "75201": _z(32.7872, -96.7985, "Dallas", "TX"),
    # California
    "90001": _z(33.9425, -118.2551, "Los Angeles", "CA"),
    "90210": _z(34.0901, -118.4065, "Beverly Hills", "CA"),
    "94102": _z(37.7813, -122.4167, "San Francisco", "CA"),
    "92101": _z(32.7194, -117.1628, "San Diego", "CA"),
    "93101": _z(34.4208, -119.6982, "Santa Barbara", "CA"),
    # Florida
    "32801": _z(28.5421, -81.3790, "Orlando", "FL"),
    "33101": _z(25.7753, -80.1946, "Miami", "FL"),
    "33602": _z(27.9517, -82.4588, "Tampa", "FL"),
    # Maryland
    "21401": _z(38.9784, -76.4922, "Annapolis", "MD"),
    "20814": _z(38.9970, -77.0975, "Bethesda", "MD"),
    "21201": _z(39.2904, -76.6122, "Baltimore", "MD"),
    # Pennsylvania
    "19101": _z(39.9526, -75.1652, "Philadelphia", "PA"),
    "15201": _z(40.4681, -79.9513, "Pittsburgh", "PA"),
    # Illinois
    "60601": _z(41.8819, -87.6278, "Chicago", "IL"),
    "60611": _z(41.8930, -87.6246, "Chicago", "IL"),
    # Colorado
    "80202": _z(39.7530, -104.9996, "Denver", "CO"),
    # Virginia
    "22201": _z(38.8851, -77.0946, "Arlington", "VA"),
    "23219": _z(37.5407, -77.4360, "Richmond", "VA"),
    # Ohio
    "43215": _z(39.9611, -83.0000, "Columbus", "OH"),
    "44101": _z(41.4822, -81.6697, "Cleveland", "OH"),
    # Oregon
    "97201": _z(45.5051, -122.6750, "Portland", "OR"),
    "97015": _z(45.4340, -122.5344, "Clackamas", "OR"),
    "97227": _z(45.5351, -122.6699, "Portland", "OR"),
    # Washington
    "98101": _z(47.6097, -122.3331, "Seattle", "WA"),
    "98684": _z(45.6198, -122.5344, "Vancouver", "WA"),
    # Other states with trial sites
    "35203": _z(33.5186, -86.8104, "Birmingham", "AL"),
    "19801": _z(39.7391, -75.5398, "Wilmington", "DE"),
    "55401": _z(44.9833, -93.2667, "Minneapolis", "MN"),
    "63101": _z(38.6270, -90.1994, "St. Louis", "MO"),
    "87101": _z(35.0853, -106.6056, "Albuquerque", "NM"),
    "53201": _z(43.0389, -87.9065, "Milwaukee", "WI"),
}

# States where the trial source runs sites, with centroids for "nearest" hints.
COVERAGE_STATE_CENTROIDS: dict[str, tuple[float, float]] = {
    "AL": (32.806671, -86.791130),
    "CA": (36.778259, -119.417931),
    "CO": (39.550051, -105.782067),
    "DE": (39.318523, -75.507141),
    "FL": (27.994402, -81.760254),
    "IL": (40.349457, -88.986137),
    "MD": (39.063946, -76.802101),
    "MN": (45.694454, -93.900192),
    "MO": (38.573936, -92.603760),
    "NM": (34.840515, -106.248482),
    "OH": (40.388783, -82.764915),
    "OR": (43.804133, -120.554201),
    "PA": (41.203322, -77.194525),
    "TN": (35.860119, -86.660156),
    "TX": (31.968599, -99.901810),
    "VA": (37.769337, -78.169968),
    "WA": (47.400902, -121.490494),
    "WI": (44.268543, -89.616508),
}

COVERAGE_STATES: list[str] = sorted(COVERAGE_STATE_CENTROIDS)


def is_zip_code(value: str) -> bool:
    return bool(_ZIP_PATTERN.match(value.strip()))


def get_zip_coordinates(zip_code: str) -> ZipLocation | None:
    """Look up a ZIP (ZIP+4 accepted) in the bundled table."""
    normalized = zip_code.strip()[:5]
    return ZIP_COORDINATES.get(normalized)


def calculate_distance(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """Calculate the great-circle distance between two points using the Haversine formula.

    Args:
        lat1: Latitude of point 1 in decimal degrees.
        lon1: Longitude of point 1 in decimal degrees.
        lat2: Latitude of point 2 in decimal degrees.
        lon2: Longitude of point 2 in decimal degrees.

    Returns:
        Distance in miles.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return _EARTH_RADIUS_MILES * c


def has_state_coverage(state: str) -> bool:
    return state.strip().upper() in COVERAGE_STATE_CENTROIDS


def nearest_coverage_states(lat: float, lon: float, count: int = 3) -> list[tuple[str, float]]:
    distances = [
        (state, calculate_distance(lat, lon, c_lat, c_lon))
        for state, (c_lat, c_lon) in COVERAGE_STATE_CENTROIDS.items()
    ]
    distances.sort(key=lambda item: item[1])
    return distances[:count]


def coverage_message(zip_code: str) -> str:
    """Describe whether the patient's state has trial sites, and if not, the closest ones."""
    location = get_zip_coordinates(zip_code)
    if location is None:
        return (
            "I couldn't find your location. Trial sites are available in: "
            + ", ".join(COVERAGE_STATES)
            + "."
        )

    if has_state_coverage(location.state):
        return f"Great news! There are trial sites in {location.state}."

    nearest = ", ".join(
        f"{state} (~{round(miles)} miles)"
        for state, miles in nearest_coverage_states(location.lat, location.lon)
    )
    return (
        f"There are currently no trial sites in {location.state} ({location.city}). "
        f"The nearest states with trial sites are: {nearest}. "
        "Would you be willing to travel to one of these locations for treatment?"
    )


async def geocode_location(location_string: str) -> dict | None:
    """Convert a location string (city, address, etc.) to coordinates.

    Args:
        location_string: Free-text location query, e.g. "Nashville, TN".

    Returns:
        Dict with latitude, longitude, name, country, and admin1 (state/province),
        or None if the location could not be resolved.
    """
    try:
        # Open-Meteo works best with just city names. Try the full query first,
        # then fall back to just the city name (before the comma).
        queries = [location_string]
        city_part = location_string.split(",")[0].strip()
        if city_part != location_string.strip():
            queries.append(city_part)

        results = None
        async with httpx.AsyncClient(
            base_url=settings.geocoding_base_url,
            timeout=settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
        ) as client:
            for query in queries:
                response = await client.get(
                    "/search",
                    params={
                        "name": query,
                        "count": 5,
                        "language": "en",
                        "format": "json",
                    },
                )
                response.raise_for_status()
                results = response.json().get("results")
                if results:
                    break

        if not results:
            logger.info("No geocoding results for query: %r", location_string)
            return None

        result = results[0]
        return {
            "latitude": result.get("latitude"),
            "longitude": result.get("longitude"),
            "name": result.get("name"),
            "country": result.get("country"),
            "admin1": result.get("admin1"),
        }

    except httpx.HTTPStatusError as exc:
        logger.error(
            "Geocoding API HTTP error %s for query=%r: %s",
            exc.response.status_code,
            location_string,
            exc,
        )
        return None
    except httpx.HTTPError as exc:
        logger.error(
            "Geocoding API request failed for query=%r: %s",
            location_string,
            exc,
        )
        return None
    except Exception as exc:
        logger.error(
            "Unexpected error geocoding query=%r: %s",
            location_string,
            exc,
        )
        return None


async def resolve_location(location: str) -> tuple[float, float] | None:
    """Resolve a ZIP or free-text place to (lat, lon); ZIPs never hit the network."""
    if is_zip_code(location):
        found = get_zip_coordinates(location)
        return (found.lat, found.lon) if found else None
    geocoded = await geocode_location(location)
    if not geocoded or geocoded.get("latitude") is None or geocoded.get("longitude") is None:
        return None
    return geocoded["latitude"], geocoded["longitude"]
