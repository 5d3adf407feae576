"""Shared fixtures: an in-memory chain double, log builders, and SQLite stores."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List

import pytest
import sqlalchemy as sa
from eth_abi import encode as abi_encode
from eth_utils import encode_hex
from sqlalchemy.orm import sessionmaker

from civitas.chain.abis import EventSchema
from civitas.chain.client import Block, RawLog, Transaction
from civitas.errors import ChainRPCError
from civitas.store import sql as sql_schema
from civitas.store.cursor_store import CursorStore
from civitas.store.transaction_store import TransactionStore

BASE_TIMESTAMP = 1_700_000_000


class FakeChain:
    """Answers RPC calls from in-memory logs, filtering like a node would."""

    def __init__(self, head: int = 0) -> None:
        self.head = head
        self.head_errors: List[Exception] = []
        self.logs: List[RawLog] = []
        self.log_errors: Dict[str, Exception] = {}
        self.senders: Dict[str, str] = {}
        self.get_logs_calls: List[tuple] = []
        self.get_block_calls: List[int] = []
        self.get_transaction_calls: List[str] = []
        self._lock = threading.Lock()

    def get_block_number(self) -> int:
        if self.head_errors:
            raise self.head_errors.pop(0)
        return self.head

    def get_logs(self, address, from_block, to_block, topics=None):
        topic0 = topics[0] if topics else None
        with self._lock:
            self.get_logs_calls.append((address, from_block, to_block, topic0))
        if topic0 in self.log_errors:
            raise self.log_errors[topic0]
        return [
            log
            for log in self.logs
            if log.address == address.lower()
            and from_block <= log.block_number <= to_block
            and (topic0 is None or log.topic0 == topic0)
        ]

    def get_block(self, number: int) -> Block:
        with self._lock:
            self.get_block_calls.append(number)
        return Block(number=number, timestamp=BASE_TIMESTAMP + number * 2)

    def get_transaction(self, tx_hash: str) -> Transaction:
        with self._lock:
            self.get_transaction_calls.append(tx_hash)
        sender = self.senders.get(tx_hash)
        if sender is None:
            raise ChainRPCError("eth_getTransactionByHash", f"transaction {tx_hash} not found")
        return Transaction(hash=tx_hash, sender=sender)


def build_log(
    schema: EventSchema,
    args: Dict[str, Any],
    *,
    address: str,
    block_number: int,
    tx_hash: str,
    log_index: int = 0,
) -> RawLog:
    """ABI-encode ``args`` into a log the way the contract would emit it."""

    topics = [schema.topic0]
    for param in schema.indexed_inputs:
        topics.append(encode_hex(abi_encode([param.type], [args[param.name]])))
    data_inputs = schema.data_inputs
    data = abi_encode([param.type for param in data_inputs], [args[param.name] for param in data_inputs])
    return RawLog(
        address=address.lower(),
        topics=tuple(topics),
        data=encode_hex(data),
        block_number=block_number,
        transaction_hash=tx_hash.lower(),
        log_index=log_index,
    )


@pytest.fixture
def fake_chain() -> FakeChain:
    return FakeChain(head=20_000)


@pytest.fixture
def make_log() -> Callable[..., RawLog]:
    return build_log


@pytest.fixture
def sessions(tmp_path):
    engine = sa.create_engine(f"sqlite:///{tmp_path / 'indexer.db'}", future=True)
    sql_schema.METADATA.create_all(engine)
    try:
        yield sessionmaker(bind=engine, future=True)
    finally:
        engine.dispose()


@pytest.fixture
def store(sessions) -> TransactionStore:
    return TransactionStore(session_factory=sessions)


@pytest.fixture
def cursor_store(sessions) -> CursorStore:
    return CursorStore(session_factory=sessions)
