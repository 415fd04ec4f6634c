import logging

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ridehail.core.exceptions import WeatherServiceError
from ridehail.settings import WeatherSettings

logger = logging.getLogger(__name__)


class WeatherConditions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rain: bool = False
    rain_intensity: float | None = Field(default=None, alias="rainIntensity")
    snow: bool = False
    storm: bool = False
    temperature: float | None = None


class RapidApiWeatherClient:
    """Current conditions at a coordinate from the open-weather RapidAPI proxy."""

    def __init__(self, settings: WeatherSettings, client: httpx.Client | None = None):
        self._settings = settings
        self._host = httpx.URL(settings.base_url).host
        self._client = client or httpx.Client(timeout=settings.timeout_seconds)

    def current(self, lat: float, lng: float) -> WeatherConditions:
        try:
            response = self._client.get(
                f"{self._settings.base_url}/city",
                params={"latitude": str(lat), "longitude": str(lng), "lang": "EN"},
                headers={
                    "x-rapidapi-key": self._settings.api_key,
                    "x-rapidapi-host": self._host,
                },
            )
            response.raise_for_status()
            return WeatherConditions.model_validate(response.json())
        except httpx.TimeoutException as e:
            raise WeatherServiceError(
                f"Weather request timed out after {self._settings.timeout_seconds}s"
            ) from e
        except httpx.HTTPStatusError as e:
            raise WeatherServiceError(
                f"Weather service error: {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise WeatherServiceError(f"Network error: {e}") from e
        except (ValueError, PydanticValidationError) as e:
            raise WeatherServiceError("Unusable weather payload") from e

    def close(self) -> None:
        self._client.close()
