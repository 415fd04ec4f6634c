import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy.orm import sessionmaker

from ridehail.core.exceptions import (
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundError,
    PickupTimeMissingError,
    RideAlreadySettledError,
    RideHailError,
    ValidationError,
)
from ridehail.core.locks import KeyedLocks
from ridehail.db.repositories import DriverRepository, RideRepository
from ridehail.db.transaction import transaction
from ridehail.db.utils import utc_now
from ridehail.matching import notification_messages as messages
from ridehail.matching.dispatch_matcher import DispatchMatcher
from ridehail.matching.notification_dispatch import NotificationDispatch
from ridehail.ride import Ride, RideStatus, check_transition
from ridehail.ride_logging import log_ride_context
from ridehail.wallet.ledger import WalletLedger

logger = logging.getLogger(__name__)


def _changed_concurrently(ride_id: str) -> InvalidTransitionError:
    return InvalidTransitionError(
        f"Ride {ride_id} changed status concurrently", {"ride_id": ride_id}
    )


def duration_minutes(pickup_time: datetime, drop_time: datetime) -> int:
    """Whole minutes between pickup and drop-off, never negative."""
    seconds = (drop_time - pickup_time).total_seconds()
    return max(0, int(seconds // 60))


class RideStateMachine:
    """ACCEPTED -> IN_PROGRESS -> COMPLETED, then settlement.

    Completion, the driver's cumulative totals and the driver's return to
    AVAILABLE commit together. Settlement runs afterwards in its own
    transaction; if it fails the ride stays COMPLETED and is flagged
    NEEDS_RECONCILIATION.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Any],
        matcher: DispatchMatcher,
        ledger: WalletLedger,
        notifications: NotificationDispatch,
        driver_locks: KeyedLocks,
        clock: Callable[[], datetime] = utc_now,
        on_rider_idle: Callable[[str], None] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._matcher = matcher
        self._on_rider_idle = on_rider_idle
        self._ledger = ledger
        self._notifications = notifications
        self._driver_locks = driver_locks
        self._clock = clock

    def mark_pickup(self, ride_id: str, driver_id: str, now: datetime | None = None) -> Ride:
        now = now or self._clock()
        with log_ride_context(ride_id, driver_id=driver_id):
            with self._session_factory() as session, transaction(session):
                rides = RideRepository(session)
                ride = self._load(rides, ride_id, driver_id)
                check_transition(ride.id, ride.status, RideStatus.IN_PROGRESS)
                if not rides.mark_in_progress(ride_id, now):
                    raise _changed_concurrently(ride_id)

            logger.info("Rider picked up")
            self._notifications.send(ride.user_id, messages.ride_started(ride.destination))
            return ride.model_copy(update={"status": RideStatus.IN_PROGRESS, "pickup_time": now})

    def complete(self, ride_id: str, driver_id: str, now: datetime | None = None) -> Ride:
        now = now or self._clock()
        with self._driver_locks.hold(driver_id), log_ride_context(ride_id, driver_id=driver_id):
            with self._session_factory() as session, transaction(session):
                rides = RideRepository(session)
                ride = self._load(rides, ride_id, driver_id)
                check_transition(ride.id, ride.status, RideStatus.COMPLETED)
                if ride.pickup_time is None:
                    logger.error("Ride reached completion without a pickup time")
                    raise PickupTimeMissingError(
                        f"Ride {ride_id} has no pickup time", {"ride_id": ride_id}
                    )

                minutes = duration_minutes(ride.pickup_time, now)
                if not rides.mark_completed(ride_id, now, minutes):
                    raise _changed_concurrently(ride_id)
                drivers = DriverRepository(session)
                drivers.record_completed_ride(driver_id, ride.distance, minutes, ride.total_fare)
                drivers.release(driver_id)
                driver = drivers.get(driver_id)

            self._matcher.publish_availability(
                driver_id, driver is not None and driver.is_active
            )
            logger.info("Ride completed after %d minutes", minutes)
            if self._on_rider_idle is not None:
                self._on_rider_idle(ride.user_id)
            self._notifications.send(ride.user_id, messages.ride_completed(ride.total_fare))

        self._settle(ride)
        return self.get(ride_id)

    def _settle(self, ride: Ride) -> None:
        try:
            self._ledger.settle_ride(ride.driver_id, ride.user_id, ride.id)
        except RideAlreadySettledError:
            logger.info("Ride already settled", extra={"ride_id": ride.id})
        except InsufficientBalanceError:
            self._notifications.send(ride.user_id, messages.payment_failed(ride.total_fare))
        except RideHailError as e:
            logger.warning(
                "Settlement failed: %s",
                e.message,
                extra={"ride_id": ride.id, "anomaly": "settlement_failed"},
            )
            self._ledger.mark_needs_reconciliation(ride.id)
            self._notifications.send(ride.user_id, messages.payment_failed(ride.total_fare))

    def get(self, ride_id: str) -> Ride:
        with self._session_factory() as session:
            ride = RideRepository(session).get(ride_id)
        if ride is None:
            raise NotFoundError(f"Ride {ride_id} not found", {"ride_id": ride_id})
        return ride

    @staticmethod
    def _load(rides: RideRepository, ride_id: str, driver_id: str) -> Ride:
        ride = rides.get(ride_id)
        if ride is None:
            raise NotFoundError(f"Ride {ride_id} not found", {"ride_id": ride_id})
        if ride.driver_id != driver_id:
            raise ValidationError("Ride is assigned to another driver", {"ride_id": ride_id})
        return ride
