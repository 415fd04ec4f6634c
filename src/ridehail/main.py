"""
Ride-hail core - process entry point

Builds the service from environment settings and runs the request timeout
watchdog until SIGINT or SIGTERM. Transport layers embed RideHailService
directly; this entry point exists for running the watchdog as a worker.
"""

import logging
import signal
import threading

from ridehail.ride_logging import setup_logging
from ridehail.service import build_service
from ridehail.settings import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging(
        level=settings.service.log_level,
        json_output=settings.service.log_format == "json",
        environment=settings.service.environment,
    )

    service = build_service(settings)
    stop = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    service.start()
    try:
        stop.wait()
    finally:
        service.stop()


if __name__ == "__main__":
    main()
