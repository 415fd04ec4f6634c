"""Address to coordinate oracle backed by the Google Maps web services."""

import logging
from typing import Any, Protocol

import httpx

from ridehail.core.exceptions import LocationUnresolvableError
from ridehail.settings import GeocodingSettings

from .coordinates import GeocodedLocation

logger = logging.getLogger(__name__)


class LocationOracle(Protocol):
    def geocode(self, address: str) -> GeocodedLocation: ...

    def travel_time(self, origin: str, destination: str) -> int: ...


class GoogleLocationOracle:
    """Geocoding and travel-time lookups.

    Every failure, whether transport, HTTP status or payload, surfaces as
    LocationUnresolvableError so the calling flow aborts instead of pricing a
    ride against a guessed coordinate.
    """

    def __init__(self, settings: GeocodingSettings, client: httpx.Client | None = None):
        if not settings.api_key:
            raise LocationUnresolvableError("Geocoding API key is not configured")
        self._settings = settings
        self._client = client or httpx.Client(timeout=settings.timeout_seconds)

    def geocode(self, address: str) -> GeocodedLocation:
        if not address or not address.strip():
            raise LocationUnresolvableError("Address must not be empty")

        data = self._get_json(
            "/geocode/json", {"address": address, "key": self._settings.api_key}
        )

        status = data.get("status")
        if status != "OK":
            raise LocationUnresolvableError(
                f"Geocoding failed: {status} - {data.get('error_message', 'Unknown error')}",
                {"address": address, "status": status},
            )

        results = data.get("results") or []
        if not results:
            raise LocationUnresolvableError(
                f"No location found for address: {address}", {"address": address}
            )

        result = results[0]
        location = (result.get("geometry") or {}).get("location")
        if not location or "lat" not in location or "lng" not in location:
            raise LocationUnresolvableError(
                f"Invalid location data received for address: {address}",
                {"address": address},
            )

        logger.debug("Geocoded address to %s,%s", location["lat"], location["lng"])
        return GeocodedLocation(
            lat=float(location["lat"]),
            lng=float(location["lng"]),
            formatted_address=result.get("formatted_address") or address,
            place_id=result.get("place_id"),
        )

    def travel_time(self, origin: str, destination: str) -> int:
        """Driving time in seconds between two addresses."""
        data = self._get_json(
            "/distancematrix/json",
            {
                "units": "metric",
                "origins": origin,
                "destinations": destination,
                "key": self._settings.api_key,
            },
        )
        try:
            element = data["rows"][0]["elements"][0]
            if element.get("status", "OK") != "OK":
                raise LocationUnresolvableError(
                    f"No route between addresses: {element.get('status')}",
                    {"origin": origin, "destination": destination},
                )
            return int(element["duration"]["value"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LocationUnresolvableError(
                "Malformed distance matrix response",
                {"origin": origin, "destination": destination},
            ) from e

    def _get_json(self, path: str, params: dict[str, str]) -> dict[str, Any]:
        url = f"{self._settings.base_url}{path}"
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.TimeoutException as e:
            raise LocationUnresolvableError(
                f"Geocoding request timed out after {self._settings.timeout_seconds}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise LocationUnresolvableError(
                f"Google Maps API error: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise LocationUnresolvableError(f"Network error: {e}") from e
        except ValueError as e:
            raise LocationUnresolvableError("Geocoding response is not valid JSON") from e
        return data

    def close(self) -> None:
        self._client.close()
