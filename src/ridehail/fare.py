import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ridehail.core.exceptions import ValidationError
from ridehail.db.utils import utc_now
from ridehail.matching.surge_pricing import (
    DEMAND,
    WEATHER,
    DemandSurgeCalculator,
    SignalResult,
    TimeSurgeCalculator,
    WeatherSurgeCalculator,
)
from ridehail.settings import FareSettings

logger = logging.getLogger(__name__)


class FareBreakdown(BaseModel):
    """Detailed breakdown of fare components. Never mutated once quoted."""

    model_config = ConfigDict(frozen=True)

    base_fare: float = Field(ge=0)
    distance_fare: float = Field(ge=0)
    time_surge: float = Field(default=0.0, ge=0)
    weather_surge: float = Field(default=0.0, ge=0)
    demand_surge: float = Field(default=0.0, ge=0)
    total_fare: float = Field(ge=0)
    degraded_signals: tuple[str, ...] = ()


class FareEngine:
    """Quotes a fare from distance, vehicle class and three surge signals.

    The time surge is computed inline. Weather and demand run concurrently on
    a worker pool, each bounded by ``signal_timeout_seconds``; a signal that
    times out or errors contributes 0 and is listed in ``degraded_signals``.
    """

    def __init__(
        self,
        settings: FareSettings,
        time_surge: TimeSurgeCalculator,
        weather_surge: WeatherSurgeCalculator,
        demand_surge: DemandSurgeCalculator,
        default_radius_km: float,
    ) -> None:
        self._settings = settings
        self._time = time_surge
        self._weather = weather_surge
        self._demand = demand_surge
        self._default_radius_km = default_radius_km
        self._executor = ThreadPoolExecutor(
            max_workers=settings.surge_workers, thread_name_prefix="surge"
        )

    def base_rate(self, vehicle_type: str | None) -> float:
        rates = self._settings.base_rates
        if vehicle_type and vehicle_type.upper() in rates:
            return rates[vehicle_type.upper()]
        return rates[self._settings.default_vehicle_type.upper()]

    def quote(
        self,
        distance_km: float,
        vehicle_type: str | None,
        lat: float,
        lng: float,
        now: datetime | None = None,
        radius_km: float | None = None,
    ) -> FareBreakdown:
        if distance_km < 0:
            raise ValidationError("Distance must be non-negative", {"distance_km": distance_km})

        now = now or utc_now()
        radius = radius_km if radius_km is not None else self._default_radius_km

        rate = self.base_rate(vehicle_type)
        distance_fare = round(distance_km * rate, 2)

        weather_future = self._executor.submit(self._weather.compute, lat, lng)
        demand_future = self._executor.submit(self._demand.compute, lat, lng, radius)
        time_result = self._time.compute(now)
        weather_result = self._await_signal(WEATHER, weather_future)
        demand_result = self._await_signal(DEMAND, demand_future)

        signals = (time_result, weather_result, demand_result)
        total = round(distance_fare + sum(s.amount for s in signals), 2)

        return FareBreakdown(
            base_fare=rate,
            distance_fare=distance_fare,
            time_surge=time_result.amount,
            weather_surge=weather_result.amount,
            demand_surge=demand_result.amount,
            total_fare=total,
            degraded_signals=tuple(s.name for s in signals if not s.available),
        )

    def _await_signal(self, name: str, future: "Future[SignalResult]") -> SignalResult:
        try:
            return future.result(timeout=self._settings.signal_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(
                "Surge signal timed out after %.1fs, degraded to 0",
                self._settings.signal_timeout_seconds,
                extra={"signal": name},
            )
            return SignalResult.unavailable(name, "timeout")
        except Exception as e:
            logger.warning(
                "Surge signal failed, degraded to 0: %s", e, extra={"signal": name}, exc_info=True
            )
            return SignalResult.unavailable(name, str(e))

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
