"""One-shot job that resyncs every registered clone."""

from __future__ import annotations

import logging
import os
import sys

from civitas.chain.abis import ContractKind
from civitas.errors import UnknownContractKindError
from civitas.services.factories import build_session_factory, build_synchronizer, build_transaction_store
from civitas.settings import get_settings

LOGGER = logging.getLogger("civitas.worker.jobs.sync_contracts")


def _configure_logging() -> None:
    level_name = os.getenv("CIVITAS_RUNTIME__LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def main() -> int:
    """Entry point executed by the scheduled resync job."""

    _configure_logging()
    settings = get_settings()

    kind_filter = os.getenv("CIVITAS_SYNC_CONTRACTS__KIND") or None
    dry_run = os.getenv("CIVITAS_SYNC_CONTRACTS__DRY_RUN", "false").lower() in {"1", "true", "yes", "on"}

    try:
        store = build_transaction_store(settings, session_factory=build_session_factory(settings))
        synchronizer = build_synchronizer(settings, store=store)
    except Exception:
        LOGGER.exception("Failed to initialise contract synchronizer")
        return 1

    if kind_filter:
        try:
            kind_filter = ContractKind.parse(kind_filter).value
        except UnknownContractKindError:
            LOGGER.error("Unsupported kind filter %r", kind_filter)
            return 1

    contracts = store.list_cloned_contracts(kind=kind_filter)
    if not contracts:
        LOGGER.info("No registered contracts to sync; exiting")
        return 0

    LOGGER.info("Syncing %s contract(s) dry_run=%s", len(contracts), dry_run)
    if dry_run:
        for contract in contracts:
            LOGGER.info("Dry run: would sync %s kind=%s", contract.address, contract.kind)
        return 0

    successes = 0
    failures = 0
    processed = 0
    for contract in contracts:
        try:
            result = synchronizer.sync(contract.address, contract.kind)
        except Exception:
            failures += 1
            LOGGER.exception("Sync failed for contract=%s kind=%s", contract.address, contract.kind)
            continue
        successes += 1
        processed += result.processed

    LOGGER.info(
        "Contract sync complete: successes=%s failures=%s logs_processed=%s",
        successes,
        failures,
        processed,
    )
    return 0 if failures == 0 else 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
