"""Long-running worker entrypoint for the factory poller."""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading

from civitas.errors import IndexerStartupError
from civitas.services.factories import build_poller
from civitas.settings import get_settings

LOGGER = logging.getLogger("civitas.worker.jobs.poller")


def _configure_logging() -> None:
    level_name = os.getenv("CIVITAS_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _install_signal_handlers(stop_event: threading.Event) -> None:
    def _request_stop(signum, _frame) -> None:
        LOGGER.info("Received signal %s; stopping poller", signum)
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _request_stop)


def main(stop_event: threading.Event | None = None) -> int:
    """Run the factory poller until interrupted."""

    _configure_logging()
    settings = get_settings()
    LOGGER.info(
        "Starting factory poller network=%s chain_id=%s factory=%s",
        settings.chain.network_mode,
        settings.chain.chain_id,
        settings.factory_address,
    )

    try:
        poller = build_poller(settings)
    except Exception:
        LOGGER.exception("Failed to initialise factory poller")
        return 1

    if stop_event is None:
        stop_event = threading.Event()
        _install_signal_handlers(stop_event)

    try:
        poller.run_forever(stop_event)
    except IndexerStartupError:
        LOGGER.exception("Factory poller could not reach the chain; giving up")
        return 1
    finally:
        poller.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
