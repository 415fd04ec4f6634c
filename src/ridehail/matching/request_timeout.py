import logging
import threading
from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import simpy

from ridehail.db.utils import utc_now

logger = logging.getLogger(__name__)


def _defuse_interrupt(event: simpy.Event) -> None:
    # A process interrupted before its first step fails with the Interrupt
    # itself instead of seeing it inside the generator.
    if not event.ok and isinstance(event.value, simpy.Interrupt):
        event.defused = True


@dataclass
class PendingTimeout:
    request_id: str
    expires_at: datetime
    timeout_process: simpy.Process


class RequestTimeoutWatchdog:
    """Times out PENDING ride requests using SimPy processes.

    The SimPy clock runs in epoch seconds and is advanced to the wall clock by
    ``advance_to``, either from the background ticker started with ``start``
    or directly by a caller. Each request gets one process that either
    reaches its deadline and fires ``on_expire`` or is interrupted by
    ``cancel`` when the request is finalized first.

    ``on_expire`` runs outside the internal lock and must go through the same
    PENDING guard as driver and rider actions, so a timeout racing an accept
    finalizes the request at most once.
    """

    def __init__(
        self,
        on_expire: Callable[[str], None],
        tick_seconds: float = 1.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._on_expire = on_expire
        self._tick_seconds = tick_seconds
        self._clock = clock
        self.env = simpy.Environment(initial_time=clock().timestamp())
        self.pending: dict[str, PendingTimeout] = {}
        self._expired: list[str] = []
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def schedule(self, request_id: str, expires_at: datetime) -> None:
        with self._lock:
            self._cancel_locked(request_id)
            delay = max(0.0, expires_at.timestamp() - self.env.now)
            process = self.env.process(self._timeout_process(request_id, delay))
            process.callbacks.append(_defuse_interrupt)
            self.pending[request_id] = PendingTimeout(
                request_id=request_id, expires_at=expires_at, timeout_process=process
            )

    def _timeout_process(self, request_id: str, delay: float) -> Generator[Any, Any]:
        try:
            yield self.env.timeout(delay)
            pending = self.pending.get(request_id)
            if pending is not None and pending.timeout_process is self.env.active_process:
                del self.pending[request_id]
                self._expired.append(request_id)
        except simpy.Interrupt:
            pass

    def cancel(self, request_id: str) -> None:
        with self._lock:
            self._cancel_locked(request_id)

    def _cancel_locked(self, request_id: str) -> None:
        pending = self.pending.pop(request_id, None)
        if pending is not None and not pending.timeout_process.triggered:
            pending.timeout_process.interrupt()

    def advance_to(self, now: datetime) -> list[str]:
        """Run every timeout due at or before ``now`` and return the expired ids."""
        target = now.timestamp()
        with self._lock:
            while self.env.peek() <= target:
                self.env.step()
            expired, self._expired = self._expired, []

        for request_id in expired:
            try:
                self._on_expire(request_id)
            except Exception:
                logger.exception(
                    "Timeout handler failed for request %s", request_id,
                    extra={"request_id": request_id},
                )
        return expired

    def is_scheduled(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self.pending

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="request-timeout-watchdog", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self._tick_seconds):
            self.advance_to(self._clock())

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._tick_seconds * 5)
            self._thread = None
