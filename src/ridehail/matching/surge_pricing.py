"""Surge signals added on top of the distance fare.

Each calculator returns a SignalResult instead of raising, so the fare engine
can tell a zero surge apart from a signal that could not be computed.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Protocol
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from ridehail.core.exceptions import UpstreamError

if TYPE_CHECKING:
    from ridehail.geo.geo_index import GeoIndex
    from ridehail.geo.weather_client import WeatherConditions
    from ridehail.settings import FareSettings

logger = logging.getLogger(__name__)

TIME = "time"
WEATHER = "weather"
DEMAND = "demand"


class SignalResult(BaseModel):
    name: str
    amount: float = Field(default=0.0, ge=0.0)
    available: bool = True
    reason: str | None = None

    @classmethod
    def unavailable(cls, name: str, reason: str) -> "SignalResult":
        return cls(name=name, amount=0.0, available=False, reason=reason)


class WeatherOracle(Protocol):
    def current(self, lat: float, lng: float) -> "WeatherConditions": ...


class TimeSurgeCalculator:
    """Time-of-day surge by local hour and weekday. Cannot fail."""

    def __init__(self, settings: "FareSettings") -> None:
        self._settings = settings
        self._tz = ZoneInfo(settings.timezone)

    def compute(self, now: datetime) -> SignalResult:
        s = self._settings
        local = now.astimezone(self._tz)
        hour = local.hour
        weekday = local.weekday()

        if hour >= s.night_start_hour or hour <= s.night_end_hour:
            return SignalResult(name=TIME, amount=s.night_surge, reason="night")

        if weekday < 5 and any(start <= hour <= end for start, end in s.rush_windows):
            return SignalResult(name=TIME, amount=s.rush_surge, reason="rush_hour")

        if weekday in s.weekend_night_days and (
            hour >= s.weekend_night_start_hour or hour <= s.weekend_night_end_hour
        ):
            return SignalResult(name=TIME, amount=s.weekend_night_surge, reason="weekend_night")

        return SignalResult(name=TIME, amount=0.0)


class WeatherSurgeCalculator:
    """Additive weather surge from the current conditions at the pickup."""

    def __init__(self, oracle: WeatherOracle | None, settings: "FareSettings") -> None:
        self._oracle = oracle
        self._settings = settings

    def compute(self, lat: float, lng: float) -> SignalResult:
        if self._oracle is None:
            return SignalResult.unavailable(WEATHER, "no weather oracle configured")

        try:
            conditions = self._oracle.current(lat, lng)
        except UpstreamError as e:
            logger.warning(
                "Weather signal unavailable, surge degraded to 0: %s",
                e.message,
                extra={"signal": WEATHER},
            )
            return SignalResult.unavailable(WEATHER, e.message)

        return SignalResult(name=WEATHER, amount=self.surge_for(conditions))

    def surge_for(self, conditions: "WeatherConditions") -> float:
        s = self._settings
        surge = 0.0
        if conditions.rain:
            if (conditions.rain_intensity or 0.0) > s.heavy_rain_intensity:
                surge += s.heavy_rain_surge
            else:
                surge += s.rain_surge
        if conditions.snow:
            surge += s.snow_surge
        if conditions.storm:
            surge += s.storm_surge
        if conditions.temperature is not None and (
            conditions.temperature < s.extreme_cold_celsius
            or conditions.temperature > s.extreme_heat_celsius
        ):
            surge += s.extreme_temperature_surge
        return surge


class DemandSurgeCalculator:
    """Surge tier from the ratio of nearby riders to nearby available drivers."""

    def __init__(
        self,
        driver_index: "GeoIndex",
        rider_index: "GeoIndex",
        settings: "FareSettings",
    ) -> None:
        self._drivers = driver_index
        self._riders = rider_index
        self._settings = settings

    def compute(self, lat: float, lng: float, radius_km: float) -> SignalResult:
        drivers = self._drivers.count_within(lat, lng, radius_km, available_only=True)
        riders = self._riders.count_within(lat, lng, radius_km)
        ratio = riders / drivers if drivers > 0 else float(riders)
        return SignalResult(
            name=DEMAND,
            amount=self.surge_for_ratio(ratio),
            reason=f"riders={riders} drivers={drivers}",
        )

    def surge_for_ratio(self, ratio: float) -> float:
        s = self._settings
        if ratio > s.demand_high_ratio:
            return s.demand_high_surge
        if ratio > s.demand_mid_ratio:
            return s.demand_mid_surge
        return s.demand_low_surge
