"""Tests for repository compare-and-swap updates and ledger posting."""

from datetime import timedelta
from decimal import Decimal

import pytest

from ridehail.core.exceptions import InsufficientBalanceError, InvalidTransitionError
from ridehail.db import transaction
from ridehail.db.repositories import (
    DriverRepository,
    PaymentRepository,
    RideRequestRepository,
    WalletRepository,
)
from ridehail.driver import DriverStatus, VehicleType
from ridehail.payment import PaymentKind, PaymentStatus, TransactionType
from ridehail.ride_request import RideRequestStatus
from tests.factories import QUIET_NOON


@pytest.fixture
def driver_id(session_maker, factory) -> str:
    profile = factory.driver_profile()
    with session_maker() as session, transaction(session):
        DriverRepository(session).create(**profile)
    return profile["driver_id"]


@pytest.mark.unit
class TestDriverRepository:
    def test_create_defaults(self, session_maker, driver_id):
        with session_maker() as session:
            driver = DriverRepository(session).get(driver_id)

        assert driver.status == DriverStatus.AVAILABLE
        assert driver.is_active
        assert driver.vehicle_type == VehicleType.ECONOMY
        assert driver.rating == 5.0
        assert driver.total_earnings == Decimal("0.00")

    def test_claim_only_once(self, session_maker, driver_id):
        with session_maker() as session, transaction(session):
            repo = DriverRepository(session)
            assert repo.claim(driver_id)
            assert not repo.claim(driver_id)

        with session_maker() as session:
            assert DriverRepository(session).get(driver_id).status == DriverStatus.UNAVAILABLE

    def test_inactive_driver_cannot_be_claimed(self, session_maker, driver_id):
        with session_maker() as session, transaction(session):
            repo = DriverRepository(session)
            repo.set_active(driver_id, False)
            assert not repo.claim(driver_id)

    def test_release_makes_driver_claimable(self, session_maker, driver_id):
        with session_maker() as session, transaction(session):
            repo = DriverRepository(session)
            repo.claim(driver_id)
            repo.release(driver_id)
            assert repo.claim(driver_id)

    def test_record_completed_ride_accumulates(self, session_maker, driver_id):
        with session_maker() as session, transaction(session):
            repo = DriverRepository(session)
            repo.record_completed_ride(driver_id, 2.5, 12, Decimal("30.10"))
            repo.record_completed_ride(driver_id, 1.5, 8, Decimal("12.45"))

        with session_maker() as session:
            driver = DriverRepository(session).get(driver_id)
        assert driver.total_rides == 2
        assert driver.total_distance == pytest.approx(4.0)
        assert driver.total_time == 20
        assert driver.total_earnings == Decimal("42.55")

    def test_get_many(self, session_maker, driver_id):
        with session_maker() as session:
            repo = DriverRepository(session)
            assert set(repo.get_many([driver_id, "ghost"])) == {driver_id}
            assert repo.get_many([]) == {}


@pytest.mark.unit
class TestRideRequestRepository:
    @pytest.fixture
    def request_id(self, session_maker, factory, driver_id) -> str:
        request = factory.ride_request(driver_id=driver_id)
        with session_maker() as session, transaction(session):
            RideRequestRepository(session).create(request)
        return request.id

    def test_finalize_only_from_pending(self, session_maker, request_id):
        finalized_at = QUIET_NOON + timedelta(seconds=30)
        with session_maker() as session, transaction(session):
            repo = RideRequestRepository(session)
            assert repo.finalize(request_id, RideRequestStatus.REJECTED, finalized_at)
            assert not repo.finalize(request_id, RideRequestStatus.TIMED_OUT, finalized_at)

        with session_maker() as session:
            stored = RideRequestRepository(session).get(request_id)
        assert stored.status == RideRequestStatus.REJECTED
        assert stored.finalized_at == finalized_at

    def test_list_pending_ordered_by_expiry(self, session_maker, factory, driver_id, request_id):
        earlier = factory.ride_request(
            driver_id=driver_id, created_at=QUIET_NOON - timedelta(seconds=60)
        )
        with session_maker() as session, transaction(session):
            RideRequestRepository(session).create(earlier)

        with session_maker() as session:
            pending = RideRequestRepository(session).list_pending()

        assert [r.id for r in pending] == [earlier.id, request_id]

    def test_find_accepted_matches_both_parties(self, session_maker, request_id):
        with session_maker() as session, transaction(session):
            repo = RideRequestRepository(session)
            stored = repo.get(request_id)
            repo.finalize(request_id, RideRequestStatus.ACCEPTED, QUIET_NOON)

        with session_maker() as session:
            repo = RideRequestRepository(session)
            assert repo.find_accepted(request_id, stored.driver_id, stored.user_id) is not None
            assert repo.find_accepted(request_id, stored.driver_id, "someone-else") is None

    def test_has_pending_for_rider(self, session_maker, request_id):
        with session_maker() as session:
            stored = RideRequestRepository(session).get(request_id)

        with session_maker() as session, transaction(session):
            repo = RideRequestRepository(session)
            assert repo.has_pending_for_rider(stored.user_id)
            assert not repo.has_pending_for_rider("someone-else")
            repo.finalize(request_id, RideRequestStatus.CANCELLED, QUIET_NOON)
            assert not repo.has_pending_for_rider(stored.user_id)

    def test_degraded_signals_survive_reload(self, session_maker, factory, driver_id):
        request = factory.ride_request(
            driver_id=driver_id, fare=factory.fare(degraded_signals=("weather", "demand"))
        )
        with session_maker() as session, transaction(session):
            RideRequestRepository(session).create(request)

        with session_maker() as session:
            stored = RideRequestRepository(session).get(request.id)

        assert stored.fare.degraded_signals == ("weather", "demand")


@pytest.mark.unit
class TestWalletRepository:
    def test_post_records_before_and_after(self, session_maker):
        with session_maker() as session, transaction(session):
            repo = WalletRepository(session)
            repo.post("w1", Decimal("20"), TransactionType.CREDIT, "ref-1")
            entry = repo.post("w1", Decimal("7.5"), TransactionType.DEBIT, "ref-2")

        assert entry.balance_before == Decimal("20.00")
        assert entry.balance_after == Decimal("12.50")
        assert entry.signed_amount == Decimal("-7.50")

    def test_debit_below_zero_rejected(self, session_maker):
        with pytest.raises(InsufficientBalanceError):
            with session_maker() as session, transaction(session):
                repo = WalletRepository(session)
                repo.post("w1", Decimal("5"), TransactionType.CREDIT, "ref-1")
                repo.post("w1", Decimal("5.01"), TransactionType.DEBIT, "ref-2")

        with session_maker() as session:
            assert WalletRepository(session).get_by_owner("w1") is None

    def test_entries_order_and_limit(self, session_maker):
        with session_maker() as session, transaction(session):
            repo = WalletRepository(session)
            for i in range(1, 4):
                repo.post("w1", Decimal(i), TransactionType.CREDIT, f"ref-{i}")

        with session_maker() as session:
            repo = WalletRepository(session)
            oldest = repo.entries("w1")
            newest = repo.entries("w1", limit=2, newest_first=True)
            assert repo.entries("nobody") == []

        assert [e.reference_id for e in oldest] == ["ref-1", "ref-2", "ref-3"]
        assert [e.reference_id for e in newest] == ["ref-3", "ref-2"]


@pytest.mark.unit
class TestPaymentRepository:
    def test_transition_enforces_lifecycle(self, session_maker):
        with session_maker() as session, transaction(session):
            repo = PaymentRepository(session)
            payment = repo.create(
                payment_id="pay-1", user_id="rider-1", kind=PaymentKind.TOP_UP,
                amount=Decimal("10"), gateway_reference="pi_1",
            )
            repo.transition(payment.id, PaymentStatus.FAILED, failure_reason="declined")

        with session_maker() as session:
            repo = PaymentRepository(session)
            with pytest.raises(InvalidTransitionError):
                repo.transition("pay-1", PaymentStatus.COMPLETED)
            stored = repo.get_by_reference("pi_1")

        assert stored.status == PaymentStatus.FAILED
        assert stored.failure_reason == "declined"
