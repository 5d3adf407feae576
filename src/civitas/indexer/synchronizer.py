"""Rebuild the normalized transaction history of one clone over a bounded window."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from civitas.chain.abis import ContractKind
from civitas.chain.client import ChainClient, RawLog
from civitas.chain.decoder import decode_log
from civitas.classification.classifier import classify_event, resolve_initiator
from civitas.errors import EventDecodeError
from civitas.observability import Observability
from civitas.store.transaction_store import NormalizedTransaction, TransactionStore

LOGGER = logging.getLogger(__name__)

DEFAULT_WINDOW_BLOCKS = 10_000


@dataclass(slots=True)
class SyncResult:
    """Outcome of one synchronizer run."""

    address: str
    kind: ContractKind
    processed: int
    skipped: int
    from_block: int
    to_block: int

    def as_dict(self) -> dict[str, object]:
        return {
            "address": self.address,
            "kind": self.kind.value,
            "processed": self.processed,
            "skipped": self.skipped,
            "from_block": self.from_block,
            "to_block": self.to_block,
        }


class BlockTimestamps:
    """Per-run cache of block timestamps."""

    def __init__(self, chain: ChainClient) -> None:
        self._chain = chain
        self._cache: dict[int, datetime] = {}

    def get(self, block_number: int) -> datetime:
        cached = self._cache.get(block_number)
        if cached is None:
            block = self._chain.get_block(block_number)
            cached = datetime.fromtimestamp(block.timestamp, tz=timezone.utc)
            self._cache[block_number] = cached
        return cached


class ContractSynchronizer:
    """Fetch, decode, classify, and upsert every log of a clone within the lookback window.

    Logs are processed sequentially in (block number, log index) order. Logs
    that do not decode against the kind's schemas are skipped. RPC failures on
    the head or log fetch and persistence failures propagate to the caller.
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        store: TransactionStore,
        window_blocks: int = DEFAULT_WINDOW_BLOCKS,
        chain_id: int | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.chain = chain
        self.store = store
        self.window_blocks = max(0, window_blocks)
        self.chain_id = chain_id
        self.observability = observability

    def sync(self, address: str, kind: ContractKind | str) -> SyncResult:
        """Synchronize ``address`` as a clone of ``kind`` and return the run summary."""

        started = time.perf_counter()
        contract_kind = ContractKind.parse(kind)
        address = address.lower()
        head = self.chain.get_block_number()
        from_block = max(0, head - self.window_blocks)

        logs = self.chain.get_logs(address, from_block, head)
        LOGGER.info(
            "Syncing contract=%s kind=%s range=[%s, %s] logs=%d",
            address,
            contract_kind.value,
            from_block,
            head,
            len(logs),
        )

        timestamps = BlockTimestamps(self.chain)
        processed = skipped = 0
        for log in sorted(logs, key=lambda item: (item.block_number, item.log_index)):
            record = self._build_record(contract_kind, address, log, timestamps)
            if record is None:
                skipped += 1
                continue
            self.store.upsert_transaction(record)
            processed += 1

        result = SyncResult(
            address=address,
            kind=contract_kind,
            processed=processed,
            skipped=skipped,
            from_block=from_block,
            to_block=head,
        )
        if self.observability:
            self.observability.emit_event("contract.synced", **result.as_dict())
            self.observability.increment("sync.logs_processed", value=processed, tags={"kind": contract_kind.value})
            self.observability.record_timing(
                "sync.duration", (time.perf_counter() - started) * 1000.0, tags={"kind": contract_kind.value}
            )
            if skipped:
                self.observability.increment("sync.logs_skipped", value=skipped, tags={"kind": contract_kind.value})
        return result

    def _build_record(
        self,
        kind: ContractKind,
        address: str,
        log: RawLog,
        timestamps: BlockTimestamps,
    ) -> NormalizedTransaction | None:
        try:
            event = decode_log(kind, log)
        except EventDecodeError as exc:
            LOGGER.warning(
                "Skipping undecodable log contract=%s tx=%s log_index=%s: %s",
                address,
                log.transaction_hash,
                log.log_index,
                exc,
            )
            return None

        classification = classify_event(event.name, event.args)
        initiator = resolve_initiator(
            classification,
            log.transaction_hash,
            lambda tx_hash: self.chain.get_transaction(tx_hash).sender,
        )
        return NormalizedTransaction(
            tx_hash=log.transaction_hash,
            log_index=log.log_index,
            contract_address=address,
            kind=kind.value,
            transaction_type=classification.transaction_type,
            payload=event.payload(),
            block_number=log.block_number,
            block_timestamp=timestamps.get(log.block_number),
            initiator=initiator,
            amount=classification.amount,
            chain_id=self.chain_id,
        )


__all__ = ["ContractSynchronizer", "SyncResult", "BlockTimestamps", "DEFAULT_WINDOW_BLOCKS"]
