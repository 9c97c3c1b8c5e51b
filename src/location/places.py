"""Places search: Google Places Nearby Search over REST."""

import logging
from typing import Any, Protocol

import httpx

from src.core.config import settings
from src.core.exceptions import ConfigurationMissing, PlacesSearchError
from src.core.schemas.places import PlaceResult
from src.location.geo import has_coordinates

logger = logging.getLogger(__name__)

MAPS_API_BASE = "https://maps.googleapis.com/maps/api"


class PlacesClient(Protocol):
    async def search_nearby(
        self, lat: float, lng: float, keyword: str, *, radius: int
    ) -> list[PlaceResult]: ...


class GooglePlacesClient:
    def __init__(
        self,
        api_key: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.google_maps_api_key
        self.timeout = timeout or settings.places_timeout_seconds
        self._transport = transport

    async def search_nearby(
        self, lat: float, lng: float, keyword: str, *, radius: int
    ) -> list[PlaceResult]:
        """Places ranked by the API around ``lat,lng``. Empty list on ZERO_RESULTS."""
        if not self.api_key:
            raise ConfigurationMissing("GOOGLE_MAPS_API_KEY is not set")

        url = f"{MAPS_API_BASE}/place/nearbysearch/json"
        params = {
            "location": f"{lat},{lng}",
            "radius": radius,
            "keyword": keyword,
            "key": self.api_key,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.get(url, params=params)
                resp.raise_for_status()
                data = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Places nearby search failed for %r: %s", keyword, e)
                raise PlacesSearchError(f"Places request failed: {e}") from e

        status = data.get("status", "OK")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            message = data.get("error_message") or status
            logger.error("Places API error for %r: %s", keyword, message)
            raise PlacesSearchError(f"Places API returned {status}: {message}")

        places = [p for p in (_parse_place(r) for r in data.get("results", [])) if p]
        logger.debug("Places search %r near %s,%s: %d results", keyword, lat, lng, len(places))
        return places


def _parse_place(raw: dict[str, Any]) -> PlaceResult | None:
    location = raw.get("geometry", {}).get("location", {})
    lat, lng = location.get("lat"), location.get("lng")
    if not has_coordinates(lat, lng) or not raw.get("place_id"):
        return None
    return PlaceResult(
        name=raw.get("name", "Unknown"),
        address=raw.get("vicinity") or raw.get("formatted_address", ""),
        lat=lat,
        lng=lng,
        place_id=raw["place_id"],
        rating=raw.get("rating"),
        open_now=raw.get("opening_hours", {}).get("open_now"),
    )
