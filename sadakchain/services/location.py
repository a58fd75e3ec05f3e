"""
Location resolution: reverse lookup of the user's pincode, place
autocomplete, and a debounced last-query-wins searcher.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .. import config
from ..errors import DataStoreError, SearchError
from ..gateway.base import DataStore
from ..schemas import PlaceSuggestion, SearchOutcome, SelectedLocation

logger = logging.getLogger(__name__)


class GeocodingClient:
    """Geoapify autocomplete plus Nominatim reverse geocoding."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, settings: Optional[Dict[str, Any]] = None):
        self.settings = settings or config.search_config()
        self.client = client or httpx.AsyncClient(timeout=self.settings["timeout"])

    async def autocomplete(self, query: str) -> List[PlaceSuggestion]:
        if not self.settings["geoapify_key"]:
            raise SearchError("Geoapify API key is missing. Set GEOAPIFY_API_KEY.")
        params = {
            "text": query,
            "filter": f"countrycode:{self.settings['country']}",
            "limit": self.settings["limit"],
            "apiKey": self.settings["geoapify_key"],
        }
        try:
            resp = await self.client.get(f"{self.settings['geoapify_url']}/v1/geocode/autocomplete", params=params)
        except httpx.HTTPError as e:
            logger.error(f"Autocomplete request failed for '{query}': {e}")
            raise SearchError("Network error. Please check your connection and try again.") from e
        if resp.status_code == 429:
            raise SearchError("Too many requests. Please wait a moment and try again.")
        if resp.status_code == 403:
            raise SearchError("Invalid API key. Please check your Geoapify configuration.")
        if resp.is_error:
            raise SearchError("Failed to fetch locations. Please try again.")
        features = resp.json().get("features") or []
        results = []
        for feature in features[: self.settings["limit"]]:
            props = feature.get("properties") or {}
            results.append(
                PlaceSuggestion(
                    place_id=props.get("place_id"),
                    formatted=props.get("formatted") or props.get("name") or "Unknown location",
                    postcode=props.get("postcode") or "",
                )
            )
        return results

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.HTTPStatusError)),
        reraise=True,
    )
    async def _reverse(self, lat: float, lon: float) -> Dict[str, Any]:
        resp = await self.client.get(
            f"{self.settings['nominatim_url']}/reverse",
            params={"format": "jsonv2", "lat": lat, "lon": lon, "addressdetails": 1},
            headers={"User-Agent": self.settings["user_agent"], "Accept": "application/json"},
        )
        resp.raise_for_status()
        return resp.json()

    async def reverse_pincode(self, lat: float, lon: float) -> Optional[str]:
        try:
            data = await self._reverse(lat, lon)
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Reverse geocode error for ({lat}, {lon}): {e}")
            return None
        address = data.get("address") or {}
        postcode = address.get("postcode") or address.get("postal_code") or address.get("post_code")
        if isinstance(postcode, str) and postcode.strip():
            return postcode.strip()
        return None

    async def aclose(self) -> None:
        await self.client.aclose()


class LocationSearcher:
    """Debounced place search where only the latest query is ever answered.

    Scheduling a query cancels the pending or in-flight one; the cancelled
    caller gets a `superseded` outcome instead of stale results.
    """

    def __init__(self, geocoder: GeocodingClient, debounce: Optional[float] = None, min_chars: Optional[int] = None):
        settings = geocoder.settings
        self.geocoder = geocoder
        self.debounce = settings["debounce"] if debounce is None else debounce
        self.min_chars = settings["min_chars"] if min_chars is None else min_chars
        self._task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, query: str, delay: float) -> SearchOutcome:
        if delay:
            await asyncio.sleep(delay)
        try:
            results = await self.geocoder.autocomplete(query)
        except SearchError as e:
            return SearchOutcome(query=query, error=str(e))
        if not results:
            return SearchOutcome(query=query, error="No locations found. Try a different search term.")
        return SearchOutcome(query=query, results=results)

    async def _start(self, query: str, delay: float) -> SearchOutcome:
        self.cancel()
        if len(query) < self.min_chars:
            return SearchOutcome(query=query)
        task = asyncio.ensure_future(self._run(query, delay))
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._task is not task:
                return SearchOutcome(query=query, superseded=True)
            raise
        finally:
            if self._task is task:
                self._task = None

    async def schedule(self, query: str) -> SearchOutcome:
        return await self._start(query.strip(), self.debounce)

    async def search_now(self, query: str) -> SearchOutcome:
        return await self._start(query.strip(), 0)


def selected_location(location: str, pincode: Optional[str]) -> SelectedLocation:
    return SelectedLocation(location=location, pincode=pincode or "", timestamp=datetime.utcnow().isoformat())


async def save_profile_pincode(store: DataStore, user_id: str, pincode: str) -> bool:
    try:
        await store.update("profiles", {"pincode": pincode}, {"id": user_id})
    except DataStoreError as e:
        logger.warning(f"Failed to update profile pincode for {user_id}: {e}")
        return False
    return True


async def resolve_user_pincode(geocoder: Optional[GeocodingClient], lat: Optional[float], lon: Optional[float]) -> str:
    """Pincode for the permission step, falling back to the configured default."""
    if geocoder is not None and lat is not None and lon is not None:
        pincode = await geocoder.reverse_pincode(lat, lon)
        if pincode:
            return pincode
    return config.fallback_pincode()
