"""End-to-end flows through the RideHailService facade."""

from decimal import Decimal

import pytest

from ridehail.core.exceptions import (
    ConflictError,
    LocationUnresolvableError,
    NotFoundError,
    ValidationError,
)
from ridehail.db.repositories import DriverRepository, PaymentRepository
from ridehail.driver import DriverStatus
from ridehail.geo.distance import haversine_distance_km
from ridehail.payment import PaymentStatus
from ridehail.ride import RideStatus, SettlementStatus
from ridehail.ride_request import RideRequestStatus
from ridehail.service import RideHailService
from tests.factories import (
    IBIRAPUERA_PARK,
    PAULISTA_AVE,
    SE_CATHEDRAL,
    notification_titles,
)


@pytest.fixture
def rider_id(factory) -> str:
    return factory.rider_id()


@pytest.fixture
def completed_trip(service, add_driver, rider_id, fund_wallet, clock):
    """Request, accept, pick up and drop off one funded rider."""
    driver = add_driver()
    fund_wallet(rider_id, Decimal("100"))
    request = service.request_ride(rider_id, driver.id, "Paulista Ave", "Ibirapuera Park")
    ride = service.respond_to_request(request.id, driver.id, accept=True)
    clock.advance(120)
    service.mark_pickup(ride.id, driver.id)
    clock.advance(14 * 60 + 30)
    return service.complete_ride(ride.id, driver.id)


@pytest.mark.integration
class TestRideLifecycle:
    def test_full_trip_settles_wallets(self, service, completed_trip, rider_id):
        ride = completed_trip
        trip = haversine_distance_km(*PAULISTA_AVE, *IBIRAPUERA_PARK)
        fare = Decimal(str(round(trip * 10.0, 2)))

        assert ride.status == RideStatus.COMPLETED
        assert ride.settlement_status == SettlementStatus.SETTLED
        assert ride.duration_minutes == 14
        assert ride.total_fare == fare
        assert service.ledger.get_balance(rider_id) == Decimal("100.00") - fare
        driver_balance = service.ledger.get_balance(ride.driver_id)
        platform_balance = service.ledger.get_balance("platform")
        assert driver_balance + platform_balance == fare

    def test_driver_available_again_after_trip(self, service, completed_trip):
        assert service.driver_index.is_available(completed_trip.driver_id)
        candidates = service.get_nearby_drivers("Paulista Ave", "Se Cathedral")
        assert [c.driver.id for c in candidates] == [completed_trip.driver_id]
        assert candidates[0].driver.status == DriverStatus.AVAILABLE
        assert candidates[0].driver.total_rides == 1

    def test_rider_hears_every_step(self, completed_trip, notifier, rider_id):
        titles = notification_titles(notifier, rider_id)

        for title in ("Ride Requested", "Driver Assigned", "Ride Started", "Ride Completed"):
            assert title in titles
        assert "Payment Successful" in titles

    def test_rejected_request_leaves_driver_free(self, service, add_driver, rider_id):
        driver = add_driver()
        request = service.request_ride(rider_id, driver.id, "Paulista Ave", "Ibirapuera Park")

        rejected = service.respond_to_request(request.id, driver.id, accept=False)

        assert rejected.status == RideRequestStatus.REJECTED
        assert service.driver_index.is_available(driver.id)

    def test_cancelled_by_rider(self, service, add_driver, rider_id):
        driver = add_driver()
        request = service.request_ride(rider_id, driver.id, "Paulista Ave", "Ibirapuera Park")

        cancelled = service.cancel_request(request.id, rider_id)

        assert cancelled.status == RideRequestStatus.CANCELLED

    def test_unpaid_trip_listed_for_reconciliation(
        self, service, add_driver, rider_id, fund_wallet, clock
    ):
        driver = add_driver()
        request = service.request_ride(rider_id, driver.id, "Paulista Ave", "Ibirapuera Park")
        ride = service.respond_to_request(request.id, driver.id, accept=True)
        service.mark_pickup(ride.id, driver.id)
        clock.advance(600)
        service.complete_ride(ride.id, driver.id)

        assert [r.id for r in service.list_unsettled_rides()] == [ride.id]

        fund_wallet(rider_id, Decimal("50"))
        payment = service.settle_ride(ride.id)

        assert payment.status == PaymentStatus.COMPLETED
        assert service.list_unsettled_rides() == []

    def test_refund_through_facade(self, service, completed_trip, rider_id, session_maker):
        with session_maker() as session:
            payment = PaymentRepository(session).get_by_ride(completed_trip.id)

        refunded = service.refund_payment(payment.id)

        assert refunded.status == PaymentStatus.REFUNDED
        assert service.ledger.get_balance(rider_id) == Decimal("100.00")


@pytest.mark.unit
class TestRateDriver:
    def test_rating_updates_average(self, service, completed_trip, rider_id, session_maker):
        average = service.rate_driver(completed_trip.id, rider_id, 3, "Took a long route")

        assert average == 3.0
        with session_maker() as session:
            assert DriverRepository(session).get(completed_trip.driver_id).rating == 3.0

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_bounds(self, service, completed_trip, rider_id, rating):
        with pytest.raises(ValidationError):
            service.rate_driver(completed_trip.id, rider_id, rating)

    def test_only_the_rider_may_rate(self, service, completed_trip):
        with pytest.raises(ValidationError):
            service.rate_driver(completed_trip.id, "someone-else", 5)

    def test_rate_once(self, service, completed_trip, rider_id):
        service.rate_driver(completed_trip.id, rider_id, 5)

        with pytest.raises(ConflictError):
            service.rate_driver(completed_trip.id, rider_id, 4)

    def test_ride_must_be_completed(self, service, add_driver, rider_id):
        driver = add_driver()
        request = service.request_ride(rider_id, driver.id, "Paulista Ave", "Ibirapuera Park")
        ride = service.respond_to_request(request.id, driver.id, accept=True)

        with pytest.raises(ConflictError):
            service.rate_driver(ride.id, rider_id, 5)

    def test_unknown_ride(self, service, rider_id):
        with pytest.raises(NotFoundError):
            service.rate_driver("missing", rider_id, 5)


@pytest.mark.unit
class TestDriversAndPositions:
    def test_duplicate_registration(self, service, add_driver):
        driver = add_driver()

        with pytest.raises(ConflictError):
            service.register_driver(driver.id)

    def test_update_driver_address_geocodes(self, service, add_driver):
        driver = add_driver()

        entry = service.update_driver_address(driver.id, "Se Cathedral")

        assert (entry.lat, entry.lng) == SE_CATHEDRAL
        assert service.driver_index.get(driver.id).lat == SE_CATHEDRAL[0]

    def test_update_unknown_driver(self, service):
        with pytest.raises(NotFoundError):
            service.update_driver_location("ghost", *PAULISTA_AVE)

    def test_unresolvable_address(self, service, add_driver):
        driver = add_driver()

        with pytest.raises(LocationUnresolvableError):
            service.update_driver_address(driver.id, "Atlantis")

    def test_inactive_driver_not_offered(self, service, add_driver):
        driver = add_driver()
        service.set_driver_active(driver.id, False)

        assert service.get_nearby_drivers("Paulista Ave", "Ibirapuera Park") == []

    @pytest.mark.parametrize("pickup,destination", [("", "Pinheiros"), ("Pinheiros", "")])
    def test_nearby_requires_both_addresses(self, service, pickup, destination):
        with pytest.raises(ValidationError):
            service.get_nearby_drivers(pickup, destination)

    def test_rider_location_tracked(self, service, rider_id):
        service.update_rider_location(rider_id, *SE_CATHEDRAL)

        assert service.rider_index.get(rider_id).lng == SE_CATHEDRAL[1]

    def test_estimate_travel_time(self, service):
        assert service.estimate_travel_time("Paulista Ave", "Pinheiros") == 600

    def test_driver_deactivated_mid_ride_stays_unavailable(
        self, service, add_driver, rider_id, clock
    ):
        driver = add_driver()
        request = service.request_ride(rider_id, driver.id, "Paulista Ave", "Ibirapuera Park")
        ride = service.respond_to_request(request.id, driver.id, accept=True)
        service.mark_pickup(ride.id, driver.id)
        service.set_driver_active(driver.id, False)
        clock.advance(600)

        service.complete_ride(ride.id, driver.id)

        assert not service.driver_index.is_available(driver.id)
        assert service.driver_index.count_within(*PAULISTA_AVE, 5.0, available_only=True) == 0
        assert service.get_nearby_drivers("Paulista Ave", "Se Cathedral") == []


@pytest.mark.unit
class TestRiderDemandIndex:
    @pytest.fixture
    def driver(self, add_driver):
        return add_driver()

    def request(self, service, driver, rider):
        return service.request_ride(rider, driver.id, "Paulista Ave", "Ibirapuera Park")

    def test_waiting_rider_counted(self, service, driver, rider_id):
        self.request(service, driver, rider_id)

        assert service.rider_index.count_within(*PAULISTA_AVE, 5.0) == 1

    def test_cancelled_riders_no_longer_counted(self, service, driver, factory):
        riders = [factory.rider_id() for _ in range(4)]
        requests = [self.request(service, driver, rider) for rider in riders]

        for request in requests:
            service.cancel_request(request.id, request.user_id)

        assert service.rider_index.count_within(*PAULISTA_AVE, 5.0) == 0
        assert len(service.rider_index) == 0

    def test_rejected_rider_removed(self, service, driver, rider_id):
        request = self.request(service, driver, rider_id)

        service.respond_to_request(request.id, driver.id, accept=False)

        assert service.rider_index.get(rider_id) is None

    def test_timed_out_rider_removed(self, service, driver, rider_id):
        request = self.request(service, driver, rider_id)

        assert service.requests.expire(request.id, now=request.expires_at)
        assert service.rider_index.get(rider_id) is None

    def test_rider_with_another_pending_request_kept(self, service, driver, rider_id):
        first = self.request(service, driver, rider_id)
        self.request(service, driver, rider_id)

        service.cancel_request(first.id, rider_id)

        assert service.rider_index.get(rider_id) is not None

    def test_rider_removed_after_trip(self, service, completed_trip, rider_id):
        assert service.rider_index.get(rider_id) is None

    def test_failed_request_does_not_register_rider(self, service, rider_id):
        with pytest.raises(NotFoundError):
            service.request_ride(rider_id, "missing-driver", "Paulista Ave", "Ibirapuera Park")

        assert service.rider_index.get(rider_id) is None


@pytest.mark.unit
class TestFareRecord:
    def test_degraded_quote_recorded_on_request_and_ride(self, service, add_driver, rider_id):
        driver = add_driver()
        request = service.request_ride(rider_id, driver.id, "Paulista Ave", "Ibirapuera Park")
        ride = service.respond_to_request(request.id, driver.id, accept=True)

        assert request.fare.degraded_signals == ("weather",)
        assert service.requests.get(request.id).fare.degraded_signals == ("weather",)
        assert service.rides.get(ride.id).fare.degraded_signals == ("weather",)


@pytest.mark.unit
class TestLifecycle:
    def test_start_rearms_pending_requests(
        self, service, add_driver, rider_id, settings, session_maker, location_oracle,
        gateway, notifier, clock,
    ):
        driver = add_driver()
        request = service.request_ride(rider_id, driver.id, "Paulista Ave", "Ibirapuera Park")

        restarted = RideHailService(
            settings=settings,
            session_factory=session_maker,
            location_oracle=location_oracle,
            weather_oracle=None,
            gateway=gateway,
            notifier=notifier,
            clock=clock,
        )
        try:
            restarted.start()
            assert restarted.requests.watchdog.is_scheduled(request.id)
        finally:
            restarted.stop()


@pytest.mark.unit
class TestWalletFacade:
    def test_statement_after_top_up(self, service, fund_wallet, rider_id):
        fund_wallet(rider_id, Decimal("42"))

        statement = service.get_wallet_statement(rider_id)

        assert statement.wallet.balance == Decimal("42.00")
        assert [e.description for e in statement.entries] == ["Wallet top-up"]

    def test_failed_top_up_via_webhook_and_direct(self, service, rider_id):
        first = service.top_up_wallet(rider_id, Decimal("10"))
        second = service.top_up_wallet(rider_id, Decimal("15"))

        service.fail_top_up(first.payment.gateway_reference, "expired_card")
        failed = service.handle_gateway_event(
            {
                "type": "payment_intent.payment_failed",
                "data": {"object": {"id": second.payment.gateway_reference}},
            }
        )

        assert failed.status == PaymentStatus.FAILED
        assert failed.failure_reason is None
        assert service.ledger.get_payment(first.payment.id).failure_reason == "expired_card"
        assert service.get_wallet_statement(rider_id).wallet.balance == Decimal("0.00")
