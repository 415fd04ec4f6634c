"""Caller-facing facade over dispatch, ride lifecycles and the wallet ledger."""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import sessionmaker

from ridehail.core.exceptions import ConflictError, NotFoundError, ValidationError
from ridehail.core.locks import KeyedLocks
from ridehail.db import init_database
from ridehail.db.repositories import (
    DriverRepository,
    RatingRepository,
    RideRepository,
    RideRequestRepository,
)
from ridehail.db.transaction import transaction
from ridehail.db.utils import utc_now
from ridehail.driver import Driver, DriverStatus, VehicleType
from ridehail.fare import FareEngine
from ridehail.geo.coordinates import Coordinate
from ridehail.geo.distance import haversine_distance_km
from ridehail.geo.geo_index import GeoIndex, IndexedLocation
from ridehail.geo.location_oracle import GoogleLocationOracle, LocationOracle
from ridehail.geo.weather_client import RapidApiWeatherClient
from ridehail.matching.dispatch_matcher import DispatchCandidate, DispatchMatcher
from ridehail.matching.notification_dispatch import LoggingNotifier, NotificationDispatch, Notifier
from ridehail.matching.surge_pricing import (
    DemandSurgeCalculator,
    TimeSurgeCalculator,
    WeatherOracle,
    WeatherSurgeCalculator,
)
from ridehail.payment import Payment, TopUpIntent, WalletStatement
from ridehail.ride import Ride, RideStatus, SettlementStatus
from ridehail.ride_request import RideRequest
from ridehail.settings import Settings
from ridehail.trips import RideRequestStateMachine, RideStateMachine
from ridehail.wallet.ledger import WalletLedger
from ridehail.wallet.payment_gateway import PaymentGateway, StripePaymentGateway

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


class RideHailService:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker[Any],
        location_oracle: LocationOracle,
        weather_oracle: WeatherOracle | None,
        gateway: PaymentGateway,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
        notification_executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory
        self._location_oracle = location_oracle
        self._clock = clock
        self._notification_executor = notification_executor

        self.driver_index = GeoIndex(settings.matching.h3_resolution)
        self.rider_index = GeoIndex(settings.matching.h3_resolution)
        driver_locks = KeyedLocks()
        self._driver_locks = driver_locks
        wallet_locks = KeyedLocks()

        self.notifications = NotificationDispatch(
            notifier or LoggingNotifier(), notification_executor
        )
        self.fare_engine = FareEngine(
            settings.fare,
            TimeSurgeCalculator(settings.fare),
            WeatherSurgeCalculator(weather_oracle, settings.fare),
            DemandSurgeCalculator(self.driver_index, self.rider_index, settings.fare),
            default_radius_km=settings.matching.search_radius_km,
        )
        self.matcher = DispatchMatcher(
            session_factory,
            self.driver_index,
            self.fare_engine,
            driver_locks,
            default_radius_km=settings.matching.search_radius_km,
            clock=clock,
        )
        self.ledger = WalletLedger(
            session_factory, wallet_locks, gateway, settings.wallet, self.notifications, clock
        )
        self.requests = RideRequestStateMachine(
            session_factory,
            self.matcher,
            self.notifications,
            driver_locks,
            timeout_seconds=settings.matching.request_timeout_seconds,
            tick_seconds=settings.matching.watchdog_tick_seconds,
            clock=clock,
            on_rider_idle=self._release_rider,
        )
        self.rides = RideStateMachine(
            session_factory,
            self.matcher,
            self.ledger,
            self.notifications,
            driver_locks,
            clock,
            on_rider_idle=self._release_rider,
        )

    # Lifecycle

    def start(self) -> None:
        rearmed = self.requests.reschedule_pending()
        self.requests.watchdog.start()
        logger.info("Ride-hail core started, %d pending requests re-armed", rearmed)

    def stop(self) -> None:
        self.requests.watchdog.stop()
        self.fare_engine.close()
        if self._notification_executor is not None:
            self._notification_executor.shutdown(wait=True)
        logger.info("Ride-hail core stopped")

    # Drivers and positions

    def register_driver(
        self,
        driver_id: str,
        name: str | None = None,
        vehicle_id: str | None = None,
        vehicle_type: VehicleType | None = None,
        location: Coordinate | None = None,
    ) -> Driver:
        with self._session_factory() as session, transaction(session):
            repo = DriverRepository(session)
            if repo.get(driver_id) is not None:
                raise ConflictError(f"Driver {driver_id} already exists", {"driver_id": driver_id})
            driver = repo.create(driver_id, name, vehicle_id, vehicle_type)

        self.driver_index.set_availability(driver_id, driver.status == DriverStatus.AVAILABLE)
        self.driver_index.set_rating(driver_id, driver.rating)
        if location is not None:
            self.driver_index.upsert(driver_id, location.lat, location.lng)
        return driver

    def set_driver_active(self, driver_id: str, is_active: bool) -> Driver:
        # Serialized with ride completion on the driver lock
        with self._driver_locks.hold(driver_id):
            with self._session_factory() as session, transaction(session):
                repo = DriverRepository(session)
                self._require_driver(repo, driver_id)
                repo.set_active(driver_id, is_active)
                driver = self._require_driver(repo, driver_id)

            self.driver_index.set_availability(
                driver_id, driver.is_active and driver.status == DriverStatus.AVAILABLE
            )
        return driver

    def update_driver_location(self, driver_id: str, lat: float, lng: float) -> IndexedLocation:
        with self._session_factory() as session:
            driver = self._require_driver(DriverRepository(session), driver_id)
        entry = self.driver_index.upsert(driver_id, lat, lng, updated_at=self._clock())
        self.driver_index.set_availability(
            driver_id, driver.is_active and driver.status == DriverStatus.AVAILABLE
        )
        return entry

    def update_driver_address(self, driver_id: str, address: str) -> IndexedLocation:
        location = self._location_oracle.geocode(address)
        return self.update_driver_location(driver_id, location.lat, location.lng)

    def update_rider_location(self, user_id: str, lat: float, lng: float) -> IndexedLocation:
        return self.rider_index.upsert(user_id, lat, lng, updated_at=self._clock())

    def get_nearby_drivers(
        self, pickup: str, destination: str, radius_km: float | None = None
    ) -> list[DispatchCandidate]:
        if not pickup:
            raise ValidationError("Location is required")
        if not destination:
            raise ValidationError("Destination is required")
        pickup_location = self._location_oracle.geocode(pickup)
        destination_location = self._location_oracle.geocode(destination)
        return self.matcher.find_candidates(
            Coordinate(lat=pickup_location.lat, lng=pickup_location.lng),
            Coordinate(lat=destination_location.lat, lng=destination_location.lng),
            radius_km=radius_km,
            now=self._clock(),
        )

    def estimate_travel_time(self, origin: str, destination: str) -> int:
        """Driving time in seconds between two addresses, straight from the location oracle."""
        return self._location_oracle.travel_time(origin, destination)

    # Ride requests

    def request_ride(self, user_id: str, driver_id: str, pickup: str, destination: str) -> RideRequest:
        if not pickup or not destination:
            raise ValidationError("Pickup and destination are required")

        with self._session_factory() as session:
            driver = self._require_driver(DriverRepository(session), driver_id)

        pickup_geo = self._location_oracle.geocode(pickup)
        destination_geo = self._location_oracle.geocode(destination)
        pickup_location = Coordinate(lat=pickup_geo.lat, lng=pickup_geo.lng)
        destination_location = Coordinate(lat=destination_geo.lat, lng=destination_geo.lng)
        distance = haversine_distance_km(
            pickup_location.lat, pickup_location.lng,
            destination_location.lat, destination_location.lng,
        )

        if driver.vehicle_type is not None:
            vehicle_type = driver.vehicle_type.value
        else:
            vehicle_type = self.settings.fare.default_vehicle_type.upper()
        now = self._clock()
        fare = self.fare_engine.quote(
            distance, vehicle_type, pickup_location.lat, pickup_location.lng, now=now
        )
        request = self.requests.create(
            user_id=user_id,
            driver_id=driver_id,
            pickup=pickup_geo.formatted_address,
            destination=destination_geo.formatted_address,
            pickup_location=pickup_location,
            destination_location=destination_location,
            distance=distance,
            vehicle_type=vehicle_type,
            fare=fare,
            now=now,
        )
        self.rider_index.upsert(user_id, pickup_location.lat, pickup_location.lng, updated_at=now)
        return request

    def respond_to_request(
        self, request_id: str, driver_id: str, accept: bool
    ) -> Ride | RideRequest:
        if accept:
            return self.requests.accept(request_id, driver_id)
        return self.requests.reject(request_id, driver_id)

    def cancel_request(self, request_id: str, user_id: str) -> RideRequest:
        return self.requests.cancel(request_id, user_id)

    # Rides

    def mark_pickup(self, ride_id: str, driver_id: str) -> Ride:
        return self.rides.mark_pickup(ride_id, driver_id)

    def complete_ride(self, ride_id: str, driver_id: str) -> Ride:
        return self.rides.complete(ride_id, driver_id)

    def settle_ride(self, ride_id: str) -> Payment:
        """Retry settlement for a ride, e.g. one flagged NEEDS_RECONCILIATION."""
        ride = self.rides.get(ride_id)
        return self.ledger.settle_ride(ride.driver_id, ride.user_id, ride.id)

    def list_unsettled_rides(self) -> list[Ride]:
        """Completed rides whose settlement failed and awaits a retry."""
        with self._session_factory() as session:
            return RideRepository(session).list_by_settlement_status(
                SettlementStatus.NEEDS_RECONCILIATION
            )

    def rate_driver(self, ride_id: str, user_id: str, rating: int, comment: str | None = None) -> float:
        """Record the rider's rating for a completed ride and return the driver's new average."""
        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(
                f"Rating must be between {MIN_RATING} and {MAX_RATING}", {"rating": rating}
            )

        with self._session_factory() as session, transaction(session):
            ride = RideRepository(session).get(ride_id)
            if ride is None:
                raise NotFoundError(f"Ride {ride_id} not found", {"ride_id": ride_id})
            if ride.user_id != user_id:
                raise ValidationError("Ride belongs to another rider", {"ride_id": ride_id})
            if ride.status != RideStatus.COMPLETED:
                raise ConflictError("Only completed rides can be rated", {"ride_id": ride_id})

            ratings = RatingRepository(session)
            if ratings.exists_for_ride(ride_id):
                raise ConflictError(f"Ride {ride_id} is already rated", {"ride_id": ride_id})
            ratings.create(ride_id, ride.driver_id, user_id, rating, comment)
            average = ratings.average_for_driver(ride.driver_id)
            assert average is not None
            DriverRepository(session).update_rating(ride.driver_id, average)

        self.driver_index.set_rating(ride.driver_id, average)
        return average

    # Wallet

    def top_up_wallet(self, user_id: str, amount: Decimal) -> TopUpIntent:
        return self.ledger.top_up(user_id, amount)

    def confirm_top_up(self, gateway_reference: str) -> Payment:
        return self.ledger.confirm_top_up(gateway_reference)

    def fail_top_up(self, gateway_reference: str, reason: str | None = None) -> Payment:
        return self.ledger.fail_top_up(gateway_reference, reason)

    def handle_gateway_event(self, event: dict[str, Any]) -> Payment | None:
        return self.ledger.handle_gateway_event(event)

    def refund_payment(self, payment_id: str, amount: Decimal | None = None) -> Payment:
        return self.ledger.refund(payment_id, amount)

    def get_wallet_statement(self, owner_id: str, limit: int | None = None) -> WalletStatement:
        return self.ledger.get_statement(owner_id, limit)

    def _release_rider(self, user_id: str) -> None:
        """Drop a rider from the demand index once no request of theirs is waiting."""
        with self._session_factory() as session:
            if RideRequestRepository(session).has_pending_for_rider(user_id):
                return
        self.rider_index.remove(user_id)

    @staticmethod
    def _require_driver(repo: DriverRepository, driver_id: str) -> Driver:
        driver = repo.get(driver_id)
        if driver is None:
            raise NotFoundError(f"Driver {driver_id} not found", {"driver_id": driver_id})
        return driver


def build_service(
    settings: Settings,
    location_oracle: LocationOracle | None = None,
    weather_oracle: WeatherOracle | None = None,
    gateway: PaymentGateway | None = None,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> RideHailService:
    """Wire the service against the configured database and HTTP clients."""
    session_factory = init_database(
        settings.database.path, settings.database.busy_timeout_seconds
    )
    return RideHailService(
        settings=settings,
        session_factory=session_factory,
        location_oracle=location_oracle or GoogleLocationOracle(settings.geocoding),
        weather_oracle=weather_oracle or RapidApiWeatherClient(settings.weather),
        gateway=gateway or StripePaymentGateway(settings.gateway),
        notifier=notifier,
        clock=clock,
        notification_executor=ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify"),
    )
