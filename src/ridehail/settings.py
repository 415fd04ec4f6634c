from decimal import Decimal
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"
    environment: str = "development"

    model_config = SettingsConfigDict(env_prefix="RIDEHAIL_")


class DatabaseSettings(BaseSettings):
    path: str = "./db/ridehail.db"
    busy_timeout_seconds: float = Field(default=30.0, ge=1.0, le=300.0)

    model_config = SettingsConfigDict(env_prefix="DB_")


class MatchingSettings(BaseSettings):
    """Driver search and ride request configuration."""

    search_radius_km: float = Field(default=5.0, gt=0.0, le=100.0)
    request_timeout_seconds: int = Field(
        default=120,
        ge=10,
        le=3600,
        description="Seconds a driver has to answer a ride request before it times out",
    )
    h3_resolution: int = Field(default=9, ge=0, le=15)
    watchdog_tick_seconds: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="Wall-clock interval at which the timeout watchdog is advanced",
    )

    model_config = SettingsConfigDict(env_prefix="MATCHING_")


class FareSettings(BaseSettings):
    """Rate table and surge bands. Defaults mirror the production tariff."""

    base_rates: dict[str, float] = Field(
        default_factory=lambda: {"ECONOMY": 10.0, "PREMIUM": 20.0, "LUXURY": 30.0}
    )
    default_vehicle_type: str = "ECONOMY"
    timezone: str = "UTC"

    # Time-of-day bands, evaluated in this order
    night_surge: float = Field(default=5.0, ge=0.0)
    night_start_hour: int = Field(default=22, ge=0, le=23)
    night_end_hour: int = Field(default=6, ge=0, le=23)
    rush_surge: float = Field(default=3.0, ge=0.0)
    rush_windows: list[tuple[int, int]] = Field(default_factory=lambda: [(7, 9), (16, 19)])
    weekend_night_surge: float = Field(default=4.0, ge=0.0)
    weekend_night_start_hour: int = Field(default=19, ge=0, le=23)
    weekend_night_end_hour: int = Field(default=2, ge=0, le=23)
    # datetime.weekday(): Friday=4, Saturday=5
    weekend_night_days: list[int] = Field(default_factory=lambda: [4, 5])

    # Weather increments (additive)
    rain_surge: float = Field(default=2.0, ge=0.0)
    heavy_rain_surge: float = Field(default=4.0, ge=0.0)
    heavy_rain_intensity: float = Field(default=5.0, ge=0.0)
    snow_surge: float = Field(default=5.0, ge=0.0)
    storm_surge: float = Field(default=7.0, ge=0.0)
    extreme_cold_celsius: float = -10.0
    extreme_heat_celsius: float = 40.0
    extreme_temperature_surge: float = Field(default=2.0, ge=0.0)

    # Demand tiers by riders / available drivers
    demand_high_ratio: float = Field(default=3.0, gt=0.0)
    demand_mid_ratio: float = Field(default=2.0, gt=0.0)
    demand_high_surge: float = Field(default=8.0, ge=0.0)
    demand_mid_surge: float = Field(default=5.0, ge=0.0)
    demand_low_surge: float = Field(default=2.0, ge=0.0)

    signal_timeout_seconds: float = Field(
        default=2.0,
        gt=0.0,
        le=30.0,
        description="Upper bound for each external surge signal before it degrades to zero",
    )
    surge_workers: int = Field(default=4, ge=1, le=64)

    model_config = SettingsConfigDict(env_prefix="FARE_")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @field_validator("base_rates")
    @classmethod
    def normalize_rates(cls, v: dict[str, float]) -> dict[str, float]:
        if any(rate < 0 for rate in v.values()):
            raise ValueError("Base rates must be non-negative")
        return {name.upper(): rate for name, rate in v.items()}

    @model_validator(mode="after")
    def validate_tables(self) -> "FareSettings":
        if self.default_vehicle_type.upper() not in self.base_rates:
            raise ValueError(
                f"Default vehicle type {self.default_vehicle_type} has no base rate"
            )
        if self.demand_mid_ratio > self.demand_high_ratio:
            raise ValueError("demand_mid_ratio must not exceed demand_high_ratio")
        for start, end in self.rush_windows:
            if not (0 <= start <= end <= 23):
                raise ValueError(f"Invalid rush window ({start}, {end})")
        return self


class WalletSettings(BaseSettings):
    driver_share: Decimal = Field(
        default=Decimal("0.80"),
        gt=Decimal("0"),
        lt=Decimal("1"),
        description="Fraction of each ride fare credited to the driver; the platform keeps the rest",
    )
    top_up_ceiling: Decimal = Field(default=Decimal("10000"), gt=Decimal("0"))
    platform_owner_id: str = "platform"
    currency: str = "usd"
    statement_limit: int = Field(default=10, ge=1, le=500)

    model_config = SettingsConfigDict(env_prefix="WALLET_")


class WeatherSettings(BaseSettings):
    base_url: str = "https://open-weather13.p.rapidapi.com"
    api_key: str = ""
    timeout_seconds: float = Field(default=2.0, gt=0.0, le=30.0)

    model_config = SettingsConfigDict(env_prefix="WEATHER_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Weather base URL must start with http:// or https://")
        return v.rstrip("/")


class GeocodingSettings(BaseSettings):
    base_url: str = "https://maps.googleapis.com/maps/api"
    api_key: str = ""
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=30.0)

    model_config = SettingsConfigDict(env_prefix="GEOCODING_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Geocoding base URL must start with http:// or https://")
        return v.rstrip("/")


class GatewaySettings(BaseSettings):
    base_url: str = "https://api.stripe.com/v1"
    secret_key: str = ""
    timeout_seconds: float = Field(default=10.0, gt=0.0, le=60.0)

    model_config = SettingsConfigDict(env_prefix="GATEWAY_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Gateway base URL must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_credentials_provided(self) -> "GatewaySettings":
        if not self.secret_key:
            raise ValueError("Required credential not provided: GATEWAY_SECRET_KEY")
        return self


class Settings(BaseSettings):
    service: ServiceSettings = Field(default_factory=ServiceSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    fare: FareSettings = Field(default_factory=FareSettings)
    wallet: WalletSettings = Field(default_factory=WalletSettings)
    weather: WeatherSettings = Field(default_factory=WeatherSettings)
    geocoding: GeocodingSettings = Field(default_factory=GeocodingSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
