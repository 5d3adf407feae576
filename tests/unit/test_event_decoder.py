"""Unit tests for the ABI registry and event decoder."""

from __future__ import annotations

import pytest

from civitas.chain.abis import CREATION_EVENTS, KIND_EVENTS, ContractKind, EventParam, EventSchema
from civitas.chain.client import RawLog
from civitas.chain.decoder import decode_creation_log, decode_log
from civitas.errors import EventDecodeError, UnknownContractKindError

VAULT = "0x" + "11" * 20
TENANT = "0x" + "aa" * 20
TX = "0x" + "01" * 32


def _schema(kind: ContractKind, name: str):
    return next(schema for schema in KIND_EVENTS[kind] if schema.name == name)


def test_topic0_matches_canonical_signature():
    deposited = _schema(ContractKind.RENT_VAULT, "Deposited")
    assert deposited.signature == "Deposited(address,uint256,uint256)"
    transfer = EventSchema(
        name="Transfer",
        inputs=(
            EventParam("from", "address", True),
            EventParam("to", "address", True),
            EventParam("value", "uint256", False),
        ),
    )
    assert transfer.topic0 == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def test_decode_rent_vault_deposit(make_log):
    schema = _schema(ContractKind.RENT_VAULT, "Deposited")
    log = make_log(
        schema,
        {"tenant": TENANT, "amount": 500000, "totalDeposited": 500000},
        address=VAULT,
        block_number=10,
        tx_hash=TX,
        log_index=3,
    )

    event = decode_log(ContractKind.RENT_VAULT, log)

    assert event.name == "Deposited"
    assert event.args == {"tenant": TENANT, "amount": "500000", "totalDeposited": "500000"}
    assert event.payload() == {"event_name": "Deposited", "args": event.args}


def test_large_integers_stay_exact_decimal_strings(make_log):
    schema = _schema(ContractKind.GROUP_BUY_ESCROW, "FundsReleased")
    big = 123456789012345678901234567890
    log = make_log(schema, {"purchaser": TENANT, "amount": big}, address=VAULT, block_number=1, tx_hash=TX)

    event = decode_log(ContractKind.GROUP_BUY_ESCROW, log)

    assert event.args["amount"] == "123456789012345678901234567890"
    assert isinstance(event.args["amount"], str)


def test_string_fields_and_small_ints_are_serialized(make_log):
    schema = _schema(ContractKind.GROUP_BUY_ESCROW, "DeliveryConfirmed")
    log = make_log(
        schema,
        {"recipient": TENANT, "proof": "ipfs://proof", "timestamp": 1_700_000_000},
        address=VAULT,
        block_number=1,
        tx_hash=TX,
    )

    event = decode_log(ContractKind.GROUP_BUY_ESCROW, log)

    assert event.args == {"recipient": TENANT, "proof": "ipfs://proof", "timestamp": "1700000000"}


def test_unknown_topic_for_kind_raises(make_log):
    # A treasury event is not part of the rent vault ABI.
    schema = _schema(ContractKind.STABLE_ALLOWANCE_TREASURY, "StateChanged")
    log = make_log(schema, {"oldState": 0, "newState": 1}, address=VAULT, block_number=1, tx_hash=TX)

    with pytest.raises(EventDecodeError):
        decode_log(ContractKind.RENT_VAULT, log)


def test_topic_count_mismatch_raises(make_log):
    schema = _schema(ContractKind.RENT_VAULT, "Refunded")
    log = make_log(schema, {"tenant": TENANT, "amount": 1}, address=VAULT, block_number=1, tx_hash=TX)
    truncated = RawLog(
        address=log.address,
        topics=log.topics[:1],
        data=log.data,
        block_number=log.block_number,
        transaction_hash=log.transaction_hash,
        log_index=log.log_index,
    )

    with pytest.raises(EventDecodeError):
        decode_log(ContractKind.RENT_VAULT, truncated)


def test_malformed_data_raises(make_log):
    schema = _schema(ContractKind.RENT_VAULT, "Deposited")
    log = make_log(
        schema, {"tenant": TENANT, "amount": 1, "totalDeposited": 1}, address=VAULT, block_number=1, tx_hash=TX
    )
    short = RawLog(
        address=log.address,
        topics=log.topics,
        data="0x1234",
        block_number=log.block_number,
        transaction_hash=log.transaction_hash,
        log_index=log.log_index,
    )

    with pytest.raises(EventDecodeError):
        decode_log(ContractKind.RENT_VAULT, short)


def test_log_without_topics_raises():
    log = RawLog(address=VAULT, topics=(), data="0x", block_number=1, transaction_hash=TX, log_index=0)

    with pytest.raises(EventDecodeError):
        decode_log(ContractKind.RENT_VAULT, log)


def test_decode_creation_log_resolves_kind(make_log):
    creator = "0x" + "cc" * 20
    clone = "0x" + "dd" * 20
    owner = "0x" + "ee" * 20
    schema = CREATION_EVENTS[ContractKind.STABLE_ALLOWANCE_TREASURY]
    log = make_log(
        schema,
        {"creator": creator, "clone": clone, "owner_": owner},
        address="0x" + "ff" * 20,
        block_number=5,
        tx_hash=TX,
    )

    kind, event = decode_creation_log(log)

    assert kind is ContractKind.STABLE_ALLOWANCE_TREASURY
    assert event.name == "TreasuryCreated"
    assert event.args == {"creator": creator, "clone": clone, "owner_": owner}


def test_decode_creation_log_rejects_clone_events(make_log):
    schema = _schema(ContractKind.RENT_VAULT, "RentFullyFunded")
    log = make_log(schema, {"totalDeposited": 1}, address=VAULT, block_number=1, tx_hash=TX)

    with pytest.raises(EventDecodeError):
        decode_creation_log(log)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("rent_vault", ContractKind.RENT_VAULT),
        ("RentVault", ContractKind.RENT_VAULT),
        ("group-buy-escrow", ContractKind.GROUP_BUY_ESCROW),
        ("GroupBuyEscrow", ContractKind.GROUP_BUY_ESCROW),
        ("StableAllowanceTreasury", ContractKind.STABLE_ALLOWANCE_TREASURY),
        ("allowance-treasury", ContractKind.STABLE_ALLOWANCE_TREASURY),
    ],
)
def test_contract_kind_parse_accepts_template_names(raw, expected):
    assert ContractKind.parse(raw) is expected


def test_contract_kind_parse_rejects_unknown():
    with pytest.raises(UnknownContractKindError):
        ContractKind.parse("lottery")


def test_every_kind_carries_schemas():
    for kind in ContractKind:
        assert kind.events
        assert kind.creation_event.name.endswith("Created")
