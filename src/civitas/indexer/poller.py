"""Factory poller: watch the clone factory and dispatch creation events."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

from civitas.chain.abis import CREATION_EVENTS, ContractKind
from civitas.chain.client import ChainClient, RawLog
from civitas.chain.decoder import decode_creation_log
from civitas.errors import ChainRPCError, EventDecodeError, IndexerStartupError
from civitas.indexer.creation_handler import ContractCreationHandler, CreationEvent
from civitas.observability import Observability
from civitas.store.cursor_store import CursorStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PollCursor:
    """Last block height fully processed for a watched address."""

    watched_address: str
    last_processed: int


@dataclass(slots=True)
class PollResult:
    """Summary of one poll tick."""

    head: Optional[int] = None
    from_block: Optional[int] = None
    to_block: Optional[int] = None
    creation_events: int = 0
    handler_failures: int = 0
    signature_failures: int = 0
    decode_failures: int = 0

    @property
    def scanned(self) -> bool:
        """bool: True when the tick requested logs for a block range."""

        return self.from_block is not None


class FactoryPoller:
    """Poll the factory for creation events on a fixed cadence.

    Each tick fetches logs for ``(last_processed, head]`` once per creation
    event signature in parallel, hands every decoded creation event to the
    creation handler concurrently, and then advances the cursor to ``head``
    whatever the handlers' outcomes. A failed handler is logged and not
    retried here.
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        handler: ContractCreationHandler,
        factory_address: str,
        cursor_store: CursorStore | None = None,
        interval_seconds: float = 10.0,
        startup_lookback_blocks: int = 2,
        max_catchup_blocks: int = 10_000,
        startup_max_attempts: int = 0,
        max_workers: int = 4,
        observability: Observability | None = None,
    ) -> None:
        self.chain = chain
        self.handler = handler
        self.factory_address = factory_address.lower()
        self.cursor_store = cursor_store
        self.interval_seconds = max(0.0, interval_seconds)
        self.startup_lookback_blocks = max(0, startup_lookback_blocks)
        self.max_catchup_blocks = max(0, max_catchup_blocks)
        self.startup_max_attempts = max(0, startup_max_attempts)
        self.observability = observability
        self.cursor: PollCursor | None = None
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="civitas-poller")

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Cursor management
    # ------------------------------------------------------------------

    def seed_cursor(self, head: int) -> PollCursor:
        """Initialise the cursor from persisted state or ``head - lookback``."""

        persisted = self.cursor_store.load(self.factory_address) if self.cursor_store else None
        if persisted is None:
            start = max(0, head - self.startup_lookback_blocks)
            LOGGER.info("Seeding poll cursor at %s (head=%s, lookback=%s)", start, head, self.startup_lookback_blocks)
        elif head - persisted > self.max_catchup_blocks:
            start = head - self.max_catchup_blocks
            LOGGER.warning(
                "Persisted cursor %s is %s blocks behind head %s; clamping to %s",
                persisted,
                head - persisted,
                head,
                start,
            )
        else:
            start = min(persisted, head)
            LOGGER.info("Resuming poll cursor at %s (head=%s)", start, head)
        self.cursor = PollCursor(watched_address=self.factory_address, last_processed=start)
        return self.cursor

    def initialize(self, stop_event: threading.Event | None = None) -> PollCursor | None:
        """Read the chain head and seed the cursor, retrying until both succeed.

        Returns ``None`` when ``stop_event`` is set before the head is reachable.

        Raises:
            IndexerStartupError: When ``startup_max_attempts`` consecutive attempts fail.
        """

        stop_event = stop_event or threading.Event()
        attempts = 0
        while not stop_event.is_set():
            try:
                return self.seed_cursor(self.chain.get_block_number())
            except Exception as exc:
                attempts += 1
                LOGGER.error(
                    "Cannot initialise poll cursor at startup (attempt %d%s): %s",
                    attempts,
                    f"/{self.startup_max_attempts}" if self.startup_max_attempts else "",
                    exc,
                )
                if self.startup_max_attempts and attempts >= self.startup_max_attempts:
                    raise IndexerStartupError(
                        f"poller startup failed after {attempts} attempts: {exc}"
                    ) from exc
                stop_event.wait(self.interval_seconds)
        return None

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def tick(self) -> PollResult:
        """Run a single poll iteration."""

        result = PollResult()
        try:
            head = self.chain.get_block_number()
        except ChainRPCError as exc:
            LOGGER.error("Skipping poll tick, chain head unavailable: %s", exc)
            self._record(result)
            return result
        result.head = head

        if self.cursor is None:
            self.seed_cursor(head)
            return result
        if head <= self.cursor.last_processed:
            return result

        from_block = self.cursor.last_processed + 1
        result.from_block, result.to_block = from_block, head

        logs = self._fetch_creation_logs(from_block, head, result)
        self._dispatch(logs, result)

        self.cursor.last_processed = head
        self._persist_cursor()
        self._record(result)
        return result

    def run_forever(self, stop_event: threading.Event) -> None:
        """Tick every ``interval_seconds`` until ``stop_event`` is set.

        A tick that raises is logged and the loop carries on at the next interval.
        """

        if self.cursor is None and self.initialize(stop_event) is None:
            return
        LOGGER.info("Factory poller started for %s every %ss", self.factory_address, self.interval_seconds)
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception:
                LOGGER.exception("Poll tick failed; retrying in %ss", self.interval_seconds)
            stop_event.wait(self.interval_seconds)
        LOGGER.info("Factory poller stopped at block %s", self.cursor.last_processed if self.cursor else None)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fetch_creation_logs(self, from_block: int, to_block: int, result: PollResult) -> list[RawLog]:
        futures: dict[ContractKind, Future] = {
            kind: self._executor.submit(
                self.chain.get_logs, self.factory_address, from_block, to_block, [schema.topic0]
            )
            for kind, schema in CREATION_EVENTS.items()
        }
        logs: list[RawLog] = []
        for kind, future in futures.items():
            try:
                logs.extend(future.result())
            except Exception as exc:
                result.signature_failures += 1
                LOGGER.error(
                    "Lost %s logs for blocks [%s, %s]: %s",
                    CREATION_EVENTS[kind].name,
                    from_block,
                    to_block,
                    exc,
                )
        return logs

    def _dispatch(self, logs: list[RawLog], result: PollResult) -> None:
        pending: list[tuple[CreationEvent, Future]] = []
        for log in logs:
            try:
                kind, decoded = decode_creation_log(log)
            except EventDecodeError as exc:
                result.decode_failures += 1
                LOGGER.warning(
                    "Skipping undecodable factory log tx=%s log_index=%s: %s",
                    log.transaction_hash,
                    log.log_index,
                    exc,
                )
                continue
            event = CreationEvent.from_decoded(kind, decoded)
            result.creation_events += 1
            pending.append((event, self._executor.submit(self.handler.handle, event)))

        for event, future in pending:
            try:
                future.result()
            except Exception as exc:
                result.handler_failures += 1
                LOGGER.error("Creation handler failed for clone=%s tx=%s: %s", event.clone, event.tx_hash, exc)

    def _persist_cursor(self) -> None:
        if not self.cursor_store or self.cursor is None:
            return
        try:
            self.cursor_store.save(self.cursor.watched_address, self.cursor.last_processed)
        except Exception:
            LOGGER.exception("Failed to persist poll cursor at block %s", self.cursor.last_processed)

    def _record(self, result: PollResult) -> None:
        if not self.observability:
            return
        self.observability.emit_event(
            "poller.tick",
            head=result.head,
            from_block=result.from_block,
            to_block=result.to_block,
            creation_events=result.creation_events,
            handler_failures=result.handler_failures,
            signature_failures=result.signature_failures,
            decode_failures=result.decode_failures,
        )
        self.observability.increment("poller.ticks")
        if result.handler_failures:
            self.observability.increment("poller.handler_failures", value=result.handler_failures)
        if result.signature_failures:
            self.observability.increment("poller.signature_failures", value=result.signature_failures)


__all__ = ["FactoryPoller", "PollCursor", "PollResult"]
