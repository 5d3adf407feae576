"""Unit tests for the contract creation handler."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from civitas.chain.abis import CREATION_EVENTS, ContractKind
from civitas.chain.decoder import decode_creation_log
from civitas.indexer.creation_handler import ContractCreationHandler, CreationEvent
from civitas.indexer.synchronizer import SyncResult

FACTORY = "0x" + "fa" * 20
CREATOR = "0x" + "CC" * 20
CLONE = "0x" + "DD" * 20
RECIPIENT = "0x" + "ee" * 20
TX = "0x" + "0a" * 32


def _event(make_log) -> CreationEvent:
    log = make_log(
        CREATION_EVENTS[ContractKind.GROUP_BUY_ESCROW],
        {"creator": CREATOR.lower(), "clone": CLONE.lower(), "recipient": RECIPIENT},
        address=FACTORY,
        block_number=1_234,
        tx_hash=TX,
        log_index=7,
    )
    kind, decoded = decode_creation_log(log)
    return CreationEvent.from_decoded(kind, decoded)


def _sync_result() -> SyncResult:
    return SyncResult(
        address=CLONE.lower(),
        kind=ContractKind.GROUP_BUY_ESCROW,
        processed=0,
        skipped=0,
        from_block=0,
        to_block=1_240,
    )


def test_registers_clone_records_deployment_and_syncs(fake_chain, make_log, store):
    synchronizer = Mock()
    synchronizer.sync.return_value = _sync_result()
    handler = ContractCreationHandler(chain=fake_chain, store=store, synchronizer=synchronizer, chain_id=84532)

    result = handler.handle(_event(make_log))

    assert result.to_block == 1_240
    synchronizer.sync.assert_called_once_with(CLONE.lower(), ContractKind.GROUP_BUY_ESCROW)

    contract = store.get_cloned_contract(CLONE)
    assert contract is not None
    assert contract.kind == "group_buy_escrow"
    assert contract.creator == CREATOR.lower()
    assert contract.creation_block == 1_234
    assert contract.creation_tx_hash == TX
    assert contract.config == {}
    assert contract.chain_id == 84532

    (deployment,) = store.list_transactions(CLONE)
    assert deployment.transaction_type == "deployment"
    assert deployment.initiator == CREATOR.lower()
    assert (deployment.tx_hash, deployment.log_index) == (TX, 7)
    assert deployment.payload == {
        "event_name": "GroupBuyEscrowCreated",
        "args": {"creator": CREATOR.lower(), "clone": CLONE.lower(), "recipient": RECIPIENT},
    }
    assert fake_chain.get_block_calls == [1_234]


def test_redelivery_is_idempotent(fake_chain, make_log, store):
    synchronizer = Mock()
    synchronizer.sync.return_value = _sync_result()
    handler = ContractCreationHandler(chain=fake_chain, store=store, synchronizer=synchronizer)

    handler.handle(_event(make_log))
    handler.handle(_event(make_log))

    assert len(store.list_cloned_contracts()) == 1
    assert store.count_transactions(CLONE) == 1


def test_sync_failure_is_reraised_after_registration(fake_chain, make_log, store):
    synchronizer = Mock()
    synchronizer.sync.side_effect = RuntimeError("db down")
    handler = ContractCreationHandler(chain=fake_chain, store=store, synchronizer=synchronizer)

    with pytest.raises(RuntimeError):
        handler.handle(_event(make_log))

    assert store.get_cloned_contract(CLONE) is not None
