"""Unit tests for the transaction store upserts and read helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import sqlalchemy as sa

from civitas.store import sql as sql_schema
from civitas.store.transaction_store import ClonedContract, NormalizedTransaction

CLONE = "0x" + "11" * 20
CREATOR = "0x" + "22" * 20
TX = "0x" + "03" * 32


def _transaction(**overrides) -> NormalizedTransaction:
    values = dict(
        tx_hash=TX,
        log_index=3,
        contract_address=CLONE,
        kind="rent_vault",
        transaction_type="deposit",
        payload={"event_name": "Deposited", "args": {"amount": "500000"}},
        block_number=100,
        block_timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        initiator="0x" + "aa" * 20,
        amount=Decimal("500000"),
        chain_id=84532,
    )
    values.update(overrides)
    return NormalizedTransaction(**values)


def _contract(**overrides) -> ClonedContract:
    values = dict(
        address=CLONE,
        kind="rent_vault",
        creator=CREATOR,
        creation_block=90,
        creation_tx_hash="0x" + "04" * 32,
        chain_id=84532,
    )
    values.update(overrides)
    return ClonedContract(**values)


def test_upsert_transaction_is_idempotent(store):
    store.upsert_transaction(_transaction())
    store.upsert_transaction(_transaction(transaction_type="refund", amount=Decimal("7")))

    assert store.count_transactions() == 1
    (stored,) = store.list_transactions(CLONE)
    assert stored.transaction_type == "refund"
    assert stored.amount == Decimal("7")
    assert stored.block_timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_same_hash_different_log_index_are_distinct(store):
    store.upsert_transaction(_transaction(log_index=1))
    store.upsert_transaction(_transaction(log_index=2))

    assert store.count_transactions(CLONE) == 2


def test_amount_keeps_full_uint256_precision(store):
    big = Decimal("123456789012345678901234567890")
    store.upsert_transaction(_transaction(amount=big))

    (stored,) = store.list_transactions(CLONE)
    assert stored.amount == big
    assert str(stored.amount) == "123456789012345678901234567890"


def test_list_transactions_newest_first_and_limited(store):
    store.upsert_transaction(_transaction(tx_hash="0x" + "05" * 32, block_number=100, log_index=0))
    store.upsert_transaction(_transaction(tx_hash="0x" + "06" * 32, block_number=105, log_index=0))
    store.upsert_transaction(_transaction(tx_hash="0x" + "07" * 32, block_number=105, log_index=4))

    items = store.list_transactions(CLONE.upper().replace("0X", "0x"), limit=2)

    assert [(item.block_number, item.log_index) for item in items] == [(105, 4), (105, 0)]


def test_upsert_cloned_contract_preserves_config_and_label(store, sessions):
    store.upsert_cloned_contract(_contract())
    session = sessions()
    try:
        session.execute(
            sa.update(sql_schema.cloned_contracts)
            .where(sql_schema.cloned_contracts.c.address == CLONE)
            .values(config={"rentAmount": "1000"}, label="apartment-4b")
        )
        session.commit()
    finally:
        session.close()

    store.upsert_cloned_contract(_contract(creation_block=91))

    contract = store.get_cloned_contract(CLONE)
    assert contract is not None
    assert contract.creation_block == 91
    assert contract.config == {"rentAmount": "1000"}
    assert contract.label == "apartment-4b"


def test_addresses_are_lowercased(store):
    store.upsert_cloned_contract(_contract(address="0x" + "AB" * 20, creator="0x" + "CD" * 20))

    contract = store.get_cloned_contract("0x" + "ab" * 20)
    assert contract is not None
    assert contract.creator == "0x" + "cd" * 20
    assert contract.config == {}


def test_list_cloned_contracts_filters_by_kind(store):
    store.upsert_cloned_contract(_contract())
    store.upsert_cloned_contract(_contract(address="0x" + "12" * 20, kind="group_buy_escrow", creation_block=95))

    assert [c.address for c in store.list_cloned_contracts()] == [CLONE, "0x" + "12" * 20]
    assert [c.kind for c in store.list_cloned_contracts(kind="group_buy_escrow")] == ["group_buy_escrow"]
    assert store.get_cloned_contract("0x" + "99" * 20) is None
