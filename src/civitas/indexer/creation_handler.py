"""Register newly deployed clones and trigger their first synchronization."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict

from civitas.chain.abis import ContractKind
from civitas.chain.client import ChainClient
from civitas.chain.decoder import DecodedEvent
from civitas.classification.classifier import DEPLOYMENT
from civitas.indexer.synchronizer import BlockTimestamps, ContractSynchronizer, SyncResult
from civitas.observability import Observability
from civitas.store.transaction_store import ClonedContract, NormalizedTransaction, TransactionStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CreationEvent:
    """A decoded factory event announcing a new clone."""

    kind: ContractKind
    clone: str
    creator: str
    tx_hash: str
    log_index: int
    block_number: int
    event_name: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_decoded(cls, kind: ContractKind, event: DecodedEvent) -> "CreationEvent":
        return cls(
            kind=kind,
            clone=str(event.args["clone"]).lower(),
            creator=str(event.args["creator"]).lower(),
            tx_hash=event.log.transaction_hash.lower(),
            log_index=event.log.log_index,
            block_number=event.log.block_number,
            event_name=event.name,
            fields=dict(event.args),
        )


class ContractCreationHandler:
    """Persist the clone and its deployment record, then run an initial sync.

    Failures are logged with the clone address and re-raised so the poller can
    isolate them per dispatch.
    """

    def __init__(
        self,
        *,
        chain: ChainClient,
        store: TransactionStore,
        synchronizer: ContractSynchronizer,
        chain_id: int | None = None,
        observability: Observability | None = None,
    ) -> None:
        self.chain = chain
        self.store = store
        self.synchronizer = synchronizer
        self.chain_id = chain_id
        self.observability = observability

    def handle(self, event: CreationEvent) -> SyncResult:
        clone = event.clone.lower()
        creator = event.creator.lower()
        try:
            self.store.upsert_cloned_contract(
                ClonedContract(
                    address=clone,
                    kind=event.kind.value,
                    creator=creator,
                    creation_block=event.block_number,
                    creation_tx_hash=event.tx_hash,
                    config={},
                    chain_id=self.chain_id,
                )
            )
            block_timestamp = BlockTimestamps(self.chain).get(event.block_number)
            self.store.upsert_transaction(
                NormalizedTransaction(
                    tx_hash=event.tx_hash,
                    log_index=event.log_index,
                    contract_address=clone,
                    kind=event.kind.value,
                    transaction_type=DEPLOYMENT,
                    payload={"event_name": event.event_name, "args": dict(event.fields)},
                    block_number=event.block_number,
                    block_timestamp=block_timestamp,
                    initiator=creator,
                    chain_id=self.chain_id,
                )
            )
            LOGGER.info(
                "Registered %s clone=%s creator=%s block=%s",
                event.kind.value,
                clone,
                creator,
                event.block_number,
            )
            if self.observability:
                self.observability.emit_event(
                    "contract.registered",
                    address=clone,
                    kind=event.kind.value,
                    creator=creator,
                    block_number=event.block_number,
                    tx_hash=event.tx_hash,
                )
            return self.synchronizer.sync(clone, event.kind)
        except Exception:
            LOGGER.exception("Failed to handle %s creation for clone=%s", event.kind.value, clone)
            raise


__all__ = ["ContractCreationHandler", "CreationEvent"]
