"""
Distance resolution between UK postcodes.

Providers are tried in a fixed order and the first full answer wins:
Google Distance Matrix, Mapbox directions, postcodes.io + haversine,
then an offline outward-code table that always answers for a
non-blank postcode. Successful results are cached per postcode pair.
"""
import logging
import math
import threading
import time
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from config import Settings, get_settings
from errors import DistanceUnavailableError
from models import DistanceResult, service_operation

logger = logging.getLogger(__name__)

GOOGLE_DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
MAPBOX_GEOCODING_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json"
MAPBOX_DIRECTIONS_URL = "https://api.mapbox.com/directions/v5/mapbox/driving/{coordinates}"
POSTCODES_IO_URL = "https://api.postcodes.io/postcodes/{postcode}"

EARTH_RADIUS_KM = 6371
MINUTES_PER_KM_ESTIMATE = 2  # rough driving estimate when only a straight line is known

# Road distance from the Nottingham base, by outward code
OFFLINE_OUTWARD_DISTANCES_KM = {
    "NG1": 3,
    "NG2": 4,
    "NG3": 6,
    "NG4": 8,
    "NG5": 2,  # Business location
    "NG6": 7,
    "NG7": 5,
    "NG8": 9,
    "DE1": 15,  # Derby
    "LE1": 25,  # Leicester
    "S1": 35,   # Sheffield
    "M1": 45,   # Manchester
}

# Fallback by postcode area when the outward code is not listed
OFFLINE_AREA_DISTANCES_KM = {
    "NG": 8,
    "DE": 15,
    "LE": 25,
    "S": 35,
    "M": 45,
}


class ProviderError(Exception):
    """A provider could not produce a full answer."""


class ProviderNotConfigured(ProviderError):
    """A provider has no credentials and was skipped."""


def normalize_postcode(postcode: Optional[str]) -> str:
    """Uppercase and collapse whitespace: ' ng5  1fb ' -> 'NG5 1FB'."""
    return " ".join((postcode or "").upper().split())


def outward_code(postcode: str) -> str:
    """Outward part of a postcode ('NG5 1FB' -> 'NG5', 'NG51FB' -> 'NG5')."""
    if " " in postcode:
        return postcode.split(" ")[0]
    # Inward code is always digit + two letters
    return postcode[:-3] if len(postcode) > 4 else postcode


def postcode_area(postcode: str) -> str:
    """Leading letters of a postcode ('NG5 1FB' -> 'NG')."""
    area = ""
    for char in postcode:
        if not char.isalpha():
            break
        area += char
    return area


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_within_service_area(distance_km: float, max_distance_km: float = 50) -> bool:
    """Check if a location is close enough to be served."""
    return distance_km <= max_distance_km


class DistanceResolver:
    """
    Resolve driving distance between two postcodes.

    The cache is process-wide when the resolver comes from
    get_distance_resolver(); it is only ever populated with successful
    provider answers, so losing it costs latency, never correctness.
    """

    def __init__(
        self,
        settings: Settings = None,
        client: httpx.Client = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or get_settings()
        self.client = client or httpx.Client(timeout=self.settings.external_request_timeout_seconds)
        self.clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[DistanceResult, float]] = {}
        self._lock = threading.Lock()
        self._providers: List[Tuple[str, Callable[[str, str], DistanceResult]]] = [
            ("google", self._from_google),
            ("mapbox", self._from_mapbox),
            ("haversine", self._from_haversine),
            ("offline", self._from_offline),
        ]

    # ---------- public API ----------

    def resolve(self, from_postcode: str, to_postcode: str) -> DistanceResult:
        """
        Resolve a postcode pair, trying each provider in turn.

        Raises:
            DistanceUnavailableError: every provider failed.
        """
        origin = normalize_postcode(from_postcode)
        destination = normalize_postcode(to_postcode)
        if not origin or not destination:
            raise DistanceUnavailableError("A postcode is required to calculate distance")

        cached = self._cache_get(origin, destination)
        if cached:
            return cached

        failures = {}
        for name, provider in self._providers:
            try:
                result = provider(origin, destination)
            except ProviderNotConfigured as e:
                logger.debug(f"Distance provider {name} skipped: {e}")
                failures[name] = str(e)
                continue
            except ProviderError as e:
                logger.warning(f"Distance provider {name} failed for {origin} -> {destination}: {e}")
                failures[name] = str(e)
                continue
            except Exception as e:
                logger.warning(
                    f"Distance provider {name} errored for {origin} -> {destination}: {type(e).__name__}: {e}"
                )
                failures[name] = f"{type(e).__name__}: {e}"
                continue

            self._cache_put(origin, destination, result)
            return result

        logger.error(f"All distance providers failed for {origin} -> {destination}")
        raise DistanceUnavailableError(details=failures)

    def distance_from_base(self, postcode: str) -> DistanceResult:
        """Distance from the business postcode."""
        return self.resolve(self.settings.business_postcode, postcode)

    @service_operation("Failed to calculate distance")
    def distance(self, from_postcode: str, to_postcode: str) -> DistanceResult:
        return self.resolve(from_postcode, to_postcode)

    def clear_cache(self):
        with self._lock:
            self._cache.clear()

    # ---------- cache ----------

    @staticmethod
    def _cache_key(a: str, b: str) -> Tuple[str, str]:
        return (a, b) if a <= b else (b, a)

    def _cache_get(self, a: str, b: str) -> Optional[DistanceResult]:
        key = self._cache_key(a, b)
        ttl_seconds = self.settings.distance_cache_ttl_hours * 3600
        with self._lock:
            entry = self._cache.get(key)
            if not entry:
                return None
            result, stored_at = entry
            if self.clock() - stored_at >= ttl_seconds:
                del self._cache[key]
                return None
            return result

    def _cache_put(self, a: str, b: str, result: DistanceResult):
        with self._lock:
            self._cache[self._cache_key(a, b)] = (result, self.clock())

    # ---------- providers ----------

    def _get_json(self, url: str, params: dict = None) -> dict:
        """GET a JSON payload; any transport, status or decode problem is a ProviderError."""
        try:
            response = self.client.get(url, params=params, headers={"Accept": "application/json"})
        except httpx.TimeoutException:
            raise ProviderError("request timed out")
        except httpx.HTTPError as e:
            raise ProviderError(f"request failed: {e}")

        if response.status_code != 200:
            raise ProviderError(f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise ProviderError("invalid JSON payload")
        if not isinstance(data, dict):
            raise ProviderError("invalid JSON payload")
        return data

    def _from_google(self, origin: str, destination: str) -> DistanceResult:
        api_key = self.settings.google_maps_api_key
        if not api_key:
            raise ProviderNotConfigured("Google Maps API key not configured")

        data = self._get_json(GOOGLE_DISTANCE_MATRIX_URL, params={
            "origins": origin,
            "destinations": destination,
            "units": "metric",
            "mode": "driving",
            "key": api_key,
        })

        if data.get("status") != "OK":
            raise ProviderError(f"Google API status: {data.get('status')}")
        try:
            element = data["rows"][0]["elements"][0]
            if element.get("status") != "OK":
                raise ProviderError(f"Element status: {element.get('status')}")
            meters = float(element["distance"]["value"])
            seconds = float(element["duration"]["value"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderError(f"malformed payload: {e}")

        return DistanceResult(
            distance_km=round(meters / 1000, 1),
            duration_min=round(seconds / 60),
            provider="google",
        )

    def _mapbox_geocode(self, postcode: str, token: str) -> Tuple[float, float]:
        data = self._get_json(
            MAPBOX_GEOCODING_URL.format(query=quote(postcode)),
            params={"country": "GB", "types": "postcode", "access_token": token},
        )
        try:
            lng, lat = data["features"][0]["geometry"]["coordinates"][:2]
            return float(lng), float(lat)
        except (KeyError, IndexError, TypeError, ValueError):
            raise ProviderError(f"no geocoding result for {postcode}")

    def _from_mapbox(self, origin: str, destination: str) -> DistanceResult:
        token = self.settings.mapbox_access_token
        if not token:
            raise ProviderNotConfigured("Mapbox access token not configured")

        from_lng, from_lat = self._mapbox_geocode(origin, token)
        to_lng, to_lat = self._mapbox_geocode(destination, token)

        data = self._get_json(
            MAPBOX_DIRECTIONS_URL.format(coordinates=f"{from_lng},{from_lat};{to_lng},{to_lat}"),
            params={"access_token": token, "geometries": "geojson"},
        )
        try:
            route = data["routes"][0]
            meters = float(route["distance"])
            seconds = float(route["duration"])
        except (KeyError, IndexError, TypeError, ValueError):
            raise ProviderError("no route found")

        return DistanceResult(
            distance_km=round(meters / 1000, 1),
            duration_min=round(seconds / 60),
            provider="mapbox",
        )

    def _postcodes_io_lookup(self, postcode: str) -> Tuple[float, float]:
        data = self._get_json(POSTCODES_IO_URL.format(postcode=quote(postcode)))
        try:
            if data["status"] != 200:
                raise ProviderError(f"invalid postcode {postcode}")
            return float(data["result"]["latitude"]), float(data["result"]["longitude"])
        except (KeyError, TypeError, ValueError):
            raise ProviderError(f"invalid postcode {postcode}")

    def _from_haversine(self, origin: str, destination: str) -> DistanceResult:
        if not self.settings.postcodes_io_enabled:
            raise ProviderNotConfigured("postcodes.io lookups disabled")

        from_lat, from_lng = self._postcodes_io_lookup(origin)
        to_lat, to_lng = self._postcodes_io_lookup(destination)
        km = haversine_km(from_lat, from_lng, to_lat, to_lng)

        return DistanceResult(
            distance_km=round(km, 1),
            duration_min=round(km * MINUTES_PER_KM_ESTIMATE),
            provider="haversine",
        )

    def _offline_leg_km(self, postcode: str) -> float:
        """Approximate distance from the base for one postcode."""
        if postcode == normalize_postcode(self.settings.business_postcode):
            return 0.0
        outward = outward_code(postcode)
        if outward in OFFLINE_OUTWARD_DISTANCES_KM:
            return float(OFFLINE_OUTWARD_DISTANCES_KM[outward])
        area = postcode_area(postcode)
        if area in OFFLINE_AREA_DISTANCES_KM:
            return float(OFFLINE_AREA_DISTANCES_KM[area])
        return float(self.settings.offline_default_distance_km)

    def _from_offline(self, origin: str, destination: str) -> DistanceResult:
        base = normalize_postcode(self.settings.business_postcode)
        if origin == destination:
            km = 0.0
        elif origin == base:
            km = self._offline_leg_km(destination)
        elif destination == base:
            km = self._offline_leg_km(origin)
        else:
            # Neither end is the base: route through it
            km = self._offline_leg_km(origin) + self._offline_leg_km(destination)

        return DistanceResult(
            distance_km=round(km, 1),
            duration_min=round(km * MINUTES_PER_KM_ESTIMATE),
            provider="offline",
        )


@lru_cache()
def get_distance_resolver() -> DistanceResolver:
    """Process-wide resolver sharing one cache and one HTTP client."""
    return DistanceResolver()
