import os

# Credential fields have no defaults (services must fail without secrets).
# Provide test values so Settings() can be constructed in tests.
os.environ.setdefault("GATEWAY_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("GEOCODING_API_KEY", "test-maps-key")
os.environ.setdefault("WEATHER_API_KEY", "test-weather-key")

from collections.abc import Callable, Iterator
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any
from unittest.mock import Mock

import pytest

from ridehail.db import init_database
from ridehail.driver import Driver
from ridehail.geo.coordinates import Coordinate
from ridehail.payment import Payment
from ridehail.service import RideHailService
from ridehail.settings import DatabaseSettings, FareSettings, Settings
from tests.factories import (
    PAULISTA_AVE,
    FakeClock,
    FakeGateway,
    FakeLocationOracle,
    RideHailFactory,
    create_faker_instance,
)

if TYPE_CHECKING:
    from faker.proxy import Faker


@pytest.fixture
def fake() -> "Faker":
    """Seeded Faker instance for deterministic test data."""
    return create_faker_instance(seed=42)


@pytest.fixture
def factory() -> RideHailFactory:
    return RideHailFactory(seed=42)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "ridehail.db")


@pytest.fixture
def session_maker(db_path: str):
    """File-backed SQLite session factory, fresh for every test."""
    return init_database(db_path, busy_timeout_seconds=10.0)


@pytest.fixture
def settings(db_path: str) -> Settings:
    """Settings with demand surge zeroed so fares depend on distance and time only."""
    return Settings(
        database=DatabaseSettings(path=db_path),
        fare=FareSettings(demand_low_surge=0.0, signal_timeout_seconds=1.0),
    )


@pytest.fixture
def notifier() -> Mock:
    """Mock notification channel; inspect with notification_titles()."""
    return Mock()


@pytest.fixture
def location_oracle() -> FakeLocationOracle:
    return FakeLocationOracle()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def service(
    settings: Settings,
    session_maker,
    location_oracle: FakeLocationOracle,
    gateway: FakeGateway,
    notifier: Mock,
    clock: FakeClock,
) -> Iterator[RideHailService]:
    svc = RideHailService(
        settings=settings,
        session_factory=session_maker,
        location_oracle=location_oracle,
        weather_oracle=None,
        gateway=gateway,
        notifier=notifier,
        clock=clock,
    )
    yield svc
    svc.stop()


@pytest.fixture
def add_driver(service: RideHailService, factory: RideHailFactory) -> Callable[..., Driver]:
    """Register a driver standing at Paulista Ave unless told otherwise."""

    def _add(location: tuple[float, float] | None = PAULISTA_AVE, **overrides: Any) -> Driver:
        profile = factory.driver_profile(**overrides)
        coordinate = Coordinate(lat=location[0], lng=location[1]) if location else None
        return service.register_driver(location=coordinate, **profile)

    return _add


@pytest.fixture
def fund_wallet(service: RideHailService, gateway: FakeGateway) -> Callable[[str, Decimal], Payment]:
    """Run a complete top-up so the rider's wallet holds ``amount``."""

    def _fund(user_id: str, amount: Decimal) -> Payment:
        intent = service.top_up_wallet(user_id, amount)
        assert intent.payment.gateway_reference is not None
        gateway.succeed(intent.payment.gateway_reference)
        return service.confirm_top_up(intent.payment.gateway_reference)

    return _fund

