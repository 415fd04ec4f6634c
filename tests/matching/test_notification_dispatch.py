import logging
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from unittest.mock import Mock

import pytest

from ridehail.matching import notification_messages as messages
from ridehail.matching.notification_dispatch import (
    LoggingNotifier,
    NotificationDispatch,
)


@pytest.mark.unit
class TestNotificationDispatch:
    def test_delivers_inline_without_executor(self):
        notifier = Mock()

        NotificationDispatch(notifier).send("rider-1", messages.ride_timed_out())

        notifier.notify.assert_called_once_with(
            "rider-1", "Driver is Busy", "Driver is Busy. Please try another time.", "RIDE"
        )

    def test_delivery_failure_is_logged_not_raised(self, caplog):
        notifier = Mock()
        notifier.notify.side_effect = ConnectionError("push service down")

        with caplog.at_level(logging.WARNING, logger="ridehail.matching.notification_dispatch"):
            NotificationDispatch(notifier).send("rider-1", messages.ride_rejected())

        assert notifier.notify.call_count == 1
        assert "Notification delivery failed for rider-1" in caplog.text

    def test_delivers_through_executor(self):
        notifier = Mock()
        executor = ThreadPoolExecutor(max_workers=1)

        NotificationDispatch(notifier, executor).send("driver-1", messages.ride_cancelled())
        executor.shutdown(wait=True)

        notifier.notify.assert_called_once()
        assert notifier.notify.call_args.args[1] == "Ride Canceled"

    def test_logging_notifier(self, caplog):
        with caplog.at_level(logging.INFO, logger="ridehail.matching.notification_dispatch"):
            LoggingNotifier().notify("rider-1", "Ride Started", "Enjoy", "RIDE")

        assert "Notify rider-1 [RIDE] Ride Started: Enjoy" in caplog.text


@pytest.mark.unit
class TestMessages:
    def test_amounts_rendered_with_two_decimals(self):
        assert "Fare: 32.50" in messages.ride_completed(32.5).message
        assert messages.wallet_top_up_success(Decimal("50")).message == (
            "50.00 added to your wallet."
        )

    def test_ride_requested_mentions_trip(self):
        note = messages.ride_requested(2.74, 27.4, "Ibirapuera Park", "Paulista Ave")

        assert note.title == "Ride Requested"
        assert "Distance: 2.74 km" in note.message
        assert "Fare: 27.40" in note.message
        assert note.category == messages.RIDE

    def test_payment_categories(self):
        assert messages.payment_failed(Decimal("80")).category == messages.PAYMENT
        assert messages.refund_issued(Decimal("5")).category == messages.WALLET
