"""Best-effort delivery of notifications to riders and drivers."""

import logging
from concurrent.futures import Executor
from typing import Protocol

from .notification_messages import NotificationMessage

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, user_id: str, title: str, message: str, category: str) -> None: ...


class LoggingNotifier:
    """Default notifier when no delivery channel is configured."""

    def notify(self, user_id: str, title: str, message: str, category: str) -> None:
        logger.info("Notify %s [%s] %s: %s", user_id, category, title, message)


class NotificationDispatch:
    """Dispatches notifications without letting delivery failures propagate.

    Each call is attempted once. With an executor the call runs in the
    background; without one it runs inline. Failures are logged and dropped.
    """

    def __init__(self, notifier: Notifier, executor: Executor | None = None):
        self._notifier = notifier
        self._executor = executor

    def send(self, user_id: str, notification: NotificationMessage) -> None:
        if self._executor is None:
            self._deliver(user_id, notification)
            return
        self._executor.submit(self._deliver, user_id, notification)

    def _deliver(self, user_id: str, notification: NotificationMessage) -> None:
        try:
            self._notifier.notify(
                user_id, notification.title, notification.message, notification.category
            )
        except Exception:
            logger.warning(
                "Notification delivery failed for %s (%s)",
                user_id,
                notification.title,
                exc_info=True,
            )
