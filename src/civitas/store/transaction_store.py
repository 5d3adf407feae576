"""Persistence gateway for cloned contracts and their normalized transactions."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from civitas.store import sql as sql_schema
from civitas.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)

# Columns owned by out-of-band collaborators; redelivered creation events must not reset them.
_CONTRACT_PRESERVED = {"address", "config", "label", "created_at"}
_TRANSACTION_KEY = ("tx_hash", "log_index")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True)
class ClonedContract:
    """One deployed agreement clone."""

    address: str
    kind: str
    creator: str
    creation_block: int
    creation_tx_hash: str
    config: Dict[str, Any] = field(default_factory=dict)
    chain_id: Optional[int] = None
    label: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(slots=True)
class NormalizedTransaction:
    """One decoded and classified log emitted by a cloned contract."""

    tx_hash: str
    log_index: int
    contract_address: str
    kind: str
    transaction_type: str
    payload: Dict[str, Any]
    block_number: int
    block_timestamp: datetime
    initiator: Optional[str] = None
    amount: Optional[Decimal] = None
    chain_id: Optional[int] = None
    indexed_at: Optional[datetime] = None


class TransactionStore:
    """Keyed upserts and read helpers over ``cloned_contracts`` and ``contract_transactions``."""

    def __init__(self, *, session_factory: sessionmaker | None = None) -> None:
        self._session_factory = session_factory or default_session_factory()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert_cloned_contract(self, record: ClonedContract) -> None:
        """Insert ``record`` or refresh its creation fields, keyed on address."""

        timestamp = _utcnow()
        values = {
            "address": record.address.lower(),
            "kind": record.kind,
            "creator": record.creator.lower(),
            "creation_block": record.creation_block,
            "creation_tx_hash": record.creation_tx_hash.lower(),
            "config": dict(record.config or {}),
            "chain_id": record.chain_id,
            "label": record.label,
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        with self._session_scope() as session:
            sql_schema.upsert(
                session,
                sql_schema.cloned_contracts,
                values,
                conflict_columns=("address",),
                update_columns=[column for column in values if column not in _CONTRACT_PRESERVED],
            )
        LOGGER.debug("Upserted cloned contract address=%s kind=%s", values["address"], record.kind)

    def upsert_transaction(self, record: NormalizedTransaction) -> None:
        """Insert ``record`` or overwrite the row sharing its (tx_hash, log_index)."""

        values = {
            "tx_hash": record.tx_hash.lower(),
            "log_index": record.log_index,
            "contract_address": record.contract_address.lower(),
            "kind": record.kind,
            "transaction_type": record.transaction_type,
            "payload": record.payload,
            "block_number": record.block_number,
            "block_timestamp": _as_utc(record.block_timestamp),
            "initiator": record.initiator.lower() if record.initiator else None,
            "amount": record.amount,
            "chain_id": record.chain_id,
            "indexed_at": _as_utc(record.indexed_at) or _utcnow(),
        }
        with self._session_scope() as session:
            sql_schema.upsert(
                session,
                sql_schema.contract_transactions,
                values,
                conflict_columns=_TRANSACTION_KEY,
                update_columns=[column for column in values if column not in _TRANSACTION_KEY],
            )
        LOGGER.debug(
            "Upserted transaction tx=%s log_index=%s type=%s",
            values["tx_hash"],
            record.log_index,
            record.transaction_type,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_cloned_contract(self, address: str) -> Optional[ClonedContract]:
        """Return the clone registered at ``address`` or ``None``."""

        table = sql_schema.cloned_contracts
        with self._session_scope() as session:
            row = session.execute(sa.select(table).where(table.c.address == address.lower())).one_or_none()
        return _contract_from_row(row) if row else None

    def list_cloned_contracts(self, *, kind: str | None = None) -> List[ClonedContract]:
        """Return registered clones ordered by creation block."""

        table = sql_schema.cloned_contracts
        stmt = sa.select(table).order_by(table.c.creation_block.asc(), table.c.address.asc())
        if kind:
            stmt = stmt.where(table.c.kind == kind)
        with self._session_scope() as session:
            rows = session.execute(stmt).fetchall()
        return [_contract_from_row(row) for row in rows]

    def list_transactions(self, contract_address: str, *, limit: int = 100) -> List[NormalizedTransaction]:
        """Return stored transactions for a contract, newest first."""

        table = sql_schema.contract_transactions
        stmt = (
            sa.select(table)
            .where(table.c.contract_address == contract_address.lower())
            .order_by(table.c.block_number.desc(), table.c.log_index.desc())
            .limit(max(1, limit))
        )
        with self._session_scope() as session:
            rows = session.execute(stmt).fetchall()
        return [_transaction_from_row(row) for row in rows]

    def count_transactions(self, contract_address: str | None = None) -> int:
        table = sql_schema.contract_transactions
        stmt = sa.select(sa.func.count()).select_from(table)
        if contract_address:
            stmt = stmt.where(table.c.contract_address == contract_address.lower())
        with self._session_scope() as session:
            return int(session.execute(stmt).scalar_one())


def _contract_from_row(row: Any) -> ClonedContract:
    return ClonedContract(
        address=row.address,
        kind=row.kind,
        creator=row.creator,
        creation_block=row.creation_block,
        creation_tx_hash=row.creation_tx_hash,
        config=row.config or {},
        chain_id=row.chain_id,
        label=row.label,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _transaction_from_row(row: Any) -> NormalizedTransaction:
    return NormalizedTransaction(
        tx_hash=row.tx_hash,
        log_index=row.log_index,
        contract_address=row.contract_address,
        kind=row.kind,
        transaction_type=row.transaction_type,
        payload=row.payload or {},
        block_number=row.block_number,
        block_timestamp=_as_utc(row.block_timestamp),
        initiator=row.initiator,
        amount=row.amount,
        chain_id=row.chain_id,
        indexed_at=_as_utc(row.indexed_at),
    )


__all__ = ["TransactionStore", "ClonedContract", "NormalizedTransaction"]
