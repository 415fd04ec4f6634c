import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from ridehail.core.exceptions import (
    DriverUnavailableError,
    NotFoundError,
    RequestAlreadyFinalizedError,
    ValidationError,
)
from ridehail.core.locks import KeyedLocks
from ridehail.db.repositories import DriverRepository, RideRequestRepository
from ridehail.db.transaction import transaction
from ridehail.db.utils import utc_now
from ridehail.fare import FareBreakdown
from ridehail.geo.coordinates import Coordinate
from ridehail.matching import notification_messages as messages
from ridehail.matching.dispatch_matcher import DispatchMatcher
from ridehail.matching.notification_dispatch import NotificationDispatch
from ridehail.matching.request_timeout import RequestTimeoutWatchdog
from ridehail.ride import Ride
from ridehail.ride_logging import log_context
from ridehail.ride_request import RideRequest, RideRequestStatus, check_transition

logger = logging.getLogger(__name__)


class RideRequestStateMachine:
    """Drives a ride request from PENDING to exactly one terminal status.

    Every exit from PENDING is a conditional UPDATE on the request row, so
    driver actions, rider cancellation and the timeout watchdog can race
    freely and only the first one wins. A driver or rider action that arrives
    at or after ``expires_at`` finalizes the request as TIMED_OUT (if nobody
    has yet) and is then refused as already finalized.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Any],
        matcher: DispatchMatcher,
        notifications: NotificationDispatch,
        driver_locks: KeyedLocks,
        timeout_seconds: int,
        tick_seconds: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
        on_rider_idle: Callable[[str], None] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._matcher = matcher
        self._on_rider_idle = on_rider_idle
        self._notifications = notifications
        self._driver_locks = driver_locks
        self._timeout = timedelta(seconds=timeout_seconds)
        self._clock = clock
        self.watchdog = RequestTimeoutWatchdog(
            on_expire=self.expire, tick_seconds=tick_seconds, clock=clock
        )

    def create(
        self,
        user_id: str,
        driver_id: str,
        pickup: str,
        destination: str,
        pickup_location: Coordinate,
        destination_location: Coordinate,
        distance: float,
        vehicle_type: str,
        fare: FareBreakdown,
        now: datetime | None = None,
    ) -> RideRequest:
        if not user_id or not driver_id:
            raise ValidationError("Rider and driver are required")
        if not pickup or not destination:
            raise ValidationError("Pickup and destination are required")
        if distance <= 0:
            raise ValidationError("Distance must be positive", {"distance": distance})

        now = now or self._clock()
        request = RideRequest(
            id=str(uuid4()),
            user_id=user_id,
            driver_id=driver_id,
            pickup=pickup,
            destination=destination,
            pickup_location=pickup_location,
            destination_location=destination_location,
            distance=distance,
            vehicle_type=vehicle_type,
            fare=fare,
            status=RideRequestStatus.PENDING,
            created_at=now,
            expires_at=now + self._timeout,
        )

        with self._session_factory() as session, transaction(session):
            driver = DriverRepository(session).get(driver_id)
            if driver is None:
                raise NotFoundError(f"Driver {driver_id} not found", {"driver_id": driver_id})
            if not driver.is_dispatchable:
                raise DriverUnavailableError(
                    f"Driver {driver_id} is not available", {"driver_id": driver_id}
                )
            RideRequestRepository(session).create(request)

        self.watchdog.schedule(request.id, request.expires_at)
        with log_context(request_id=request.id, driver_id=driver_id):
            logger.info("Ride request created, expires at %s", request.expires_at.isoformat())
        self._notifications.send(driver_id, messages.new_ride_request(user_id, pickup))
        self._notifications.send(
            user_id,
            messages.ride_requested(distance, fare.total_fare, destination, pickup),
        )
        return request

    def accept(self, request_id: str, driver_id: str, now: datetime | None = None) -> Ride:
        """Accept as the addressed driver and create the ride in the same transaction.

        If the driver was claimed by another ride in the meantime the whole
        accept rolls back, the request stays PENDING and the driver receives
        DriverUnavailableError.
        """
        now = now or self._clock()
        lock = self._driver_locks.hold(driver_id)
        with lock, log_context(request_id=request_id, driver_id=driver_id):
            with self._session_factory() as session:
                with transaction(session):
                    request = self._load(session, request_id)
                    self._check_driver(request, driver_id)
                    timed_out = self._finalize_if_expired(session, request, now)
                    if not timed_out:
                        self._finalize(session, request, RideRequestStatus.ACCEPTED, now)
                        ride = self._matcher.create_ride(
                            driver_id, request.user_id, request.id, session=session, now=now
                        )
                        driver = DriverRepository(session).get(driver_id)
                if timed_out:
                    self._after_timeout(request)
                    raise self._already_finalized(request, RideRequestStatus.TIMED_OUT)

            self.watchdog.cancel(request_id)
            self._matcher.publish_availability(driver_id, False)
            logger.info("Ride request accepted", extra={"ride_id": ride.id})
            driver_name = (driver.name if driver else None) or driver_id
            self._notifications.send(request.user_id, messages.ride_accepted(driver_name))
            return ride

    def reject(self, request_id: str, driver_id: str, now: datetime | None = None) -> RideRequest:
        now = now or self._clock()
        with log_context(request_id=request_id, driver_id=driver_id):
            request = self._finalize_by_actor(
                request_id, RideRequestStatus.REJECTED, now, driver_id=driver_id
            )
            logger.info("Ride request rejected")
            self._rider_idle(request.user_id)
            self._notifications.send(request.user_id, messages.ride_rejected())
            return request

    def cancel(self, request_id: str, user_id: str, now: datetime | None = None) -> RideRequest:
        now = now or self._clock()
        with log_context(request_id=request_id, rider_id=user_id):
            request = self._finalize_by_actor(
                request_id, RideRequestStatus.CANCELLED, now, user_id=user_id
            )
            logger.info("Ride request cancelled by rider")
            self._rider_idle(request.user_id)
            self._notifications.send(request.driver_id, messages.ride_cancelled())
            return request

    def expire(self, request_id: str, now: datetime | None = None) -> bool:
        """Watchdog entry point. Returns True only for the call that timed the request out."""
        now = now or self._clock()
        with self._session_factory() as session:
            with transaction(session):
                request = RideRequestRepository(session).get(request_id)
                if request is None or request.status != RideRequestStatus.PENDING:
                    return False
                if not request.is_expired(now):
                    return False
                timed_out = self._finalize_if_expired(session, request, now)
        if timed_out:
            self._after_timeout(request)
        return timed_out

    def get(self, request_id: str) -> RideRequest:
        with self._session_factory() as session:
            return self._load(session, request_id)

    def reschedule_pending(self) -> int:
        """Re-arm timeouts for PENDING requests, e.g. after a restart."""
        with self._session_factory() as session:
            pending = RideRequestRepository(session).list_pending()
        for request in pending:
            self.watchdog.schedule(request.id, request.expires_at)
        return len(pending)

    def _finalize_by_actor(
        self,
        request_id: str,
        status: RideRequestStatus,
        now: datetime,
        driver_id: str | None = None,
        user_id: str | None = None,
    ) -> RideRequest:
        with self._session_factory() as session:
            with transaction(session):
                request = self._load(session, request_id)
                if driver_id is not None:
                    self._check_driver(request, driver_id)
                if user_id is not None and request.user_id != user_id:
                    raise ValidationError(
                        "Ride request belongs to another rider", {"request_id": request_id}
                    )
                timed_out = self._finalize_if_expired(session, request, now)
                if not timed_out:
                    self._finalize(session, request, status, now)
            if timed_out:
                self._after_timeout(request)
                raise self._already_finalized(request, RideRequestStatus.TIMED_OUT)
        self.watchdog.cancel(request_id)
        return request.model_copy(update={"status": status, "finalized_at": now})

    def _finalize(
        self, session: Session, request: RideRequest, status: RideRequestStatus, now: datetime
    ) -> None:
        check_transition(request.id, request.status, status)
        if not RideRequestRepository(session).finalize(request.id, status, now):
            # Lost the race to another finalizer between read and write
            current = RideRequestRepository(session).get(request.id)
            raise self._already_finalized(request, current.status if current else status)

    def _finalize_if_expired(self, session: Session, request: RideRequest, now: datetime) -> bool:
        if request.status != RideRequestStatus.PENDING or not request.is_expired(now):
            return False
        return RideRequestRepository(session).finalize(
            request.id, RideRequestStatus.TIMED_OUT, now
        )

    def _after_timeout(self, request: RideRequest) -> None:
        self.watchdog.cancel(request.id)
        logger.info(
            "Ride request timed out", extra={"request_id": request.id, "driver_id": request.driver_id}
        )
        self._rider_idle(request.user_id)
        self._notifications.send(request.user_id, messages.ride_timed_out())

    def _rider_idle(self, user_id: str) -> None:
        if self._on_rider_idle is not None:
            self._on_rider_idle(user_id)

    def _load(self, session: Session, request_id: str) -> RideRequest:
        request = RideRequestRepository(session).get(request_id)
        if request is None:
            raise NotFoundError(f"Ride request {request_id} not found", {"request_id": request_id})
        return request

    @staticmethod
    def _check_driver(request: RideRequest, driver_id: str) -> None:
        if request.driver_id != driver_id:
            raise ValidationError(
                "Ride request is addressed to another driver", {"request_id": request.id}
            )

    @staticmethod
    def _already_finalized(
        request: RideRequest, status: RideRequestStatus
    ) -> RequestAlreadyFinalizedError:
        return RequestAlreadyFinalizedError(
            f"Ride request {request.id} already finalized as {status.value}",
            {"request_id": request.id, "status": status.value},
        )
