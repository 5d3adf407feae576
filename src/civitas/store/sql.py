"""SQLAlchemy metadata and engine helpers for the indexer tables."""

from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Mapping

import sqlalchemy as sa
from sqlalchemy import Engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import URL
from sqlalchemy.orm import Session, sessionmaker

from civitas.settings import Settings, get_settings


class _DecimalText(sa.types.TypeDecorator):
    """Stores exact decimals as text where the backend has no wide NUMERIC."""

    impl = sa.Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> str | None:
        if value is None:
            return None
        return str(Decimal(str(value)))

    def process_result_value(self, value: Any, dialect: Any) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
TIMESTAMP = sa.DateTime(timezone=True)
ADDRESS = sa.String(length=42)
TX_HASH = sa.String(length=66)
# uint256 needs 78 digits; SQLite NUMERIC would round through a float.
AMOUNT_TYPE = sa.Numeric(78, 0, asdecimal=True).with_variant(_DecimalText(), "sqlite")

METADATA = sa.MetaData()

cloned_contracts = sa.Table(
    "cloned_contracts",
    METADATA,
    sa.Column("address", ADDRESS, primary_key=True),
    sa.Column("kind", sa.Text(), nullable=False),
    sa.Column("creator", ADDRESS, nullable=False),
    sa.Column("creation_block", sa.BigInteger(), nullable=False),
    sa.Column("creation_tx_hash", TX_HASH, nullable=False),
    sa.Column("config", JSON_TYPE, nullable=False),
    sa.Column("chain_id", sa.Integer(), nullable=True),
    sa.Column("label", sa.Text(), nullable=True),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_cloned_contracts_kind", cloned_contracts.c.kind)
sa.Index("idx_cloned_contracts_creator", cloned_contracts.c.creator)

contract_transactions = sa.Table(
    "contract_transactions",
    METADATA,
    sa.Column("tx_hash", TX_HASH, nullable=False),
    sa.Column("log_index", sa.Integer(), nullable=False),
    sa.Column("contract_address", ADDRESS, nullable=False),
    sa.Column("kind", sa.Text(), nullable=False),
    sa.Column("transaction_type", sa.Text(), nullable=False),
    sa.Column("payload", JSON_TYPE, nullable=False),
    sa.Column("block_number", sa.BigInteger(), nullable=False),
    sa.Column("block_timestamp", TIMESTAMP, nullable=False),
    sa.Column("initiator", ADDRESS, nullable=True),
    sa.Column("amount", AMOUNT_TYPE, nullable=True),
    sa.Column("chain_id", sa.Integer(), nullable=True),
    sa.Column("indexed_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.PrimaryKeyConstraint("tx_hash", "log_index", name="pk_contract_transactions"),
)
sa.Index(
    "idx_contract_transactions_contract_block",
    contract_transactions.c.contract_address,
    contract_transactions.c.block_number,
)
sa.Index("idx_contract_transactions_initiator", contract_transactions.c.initiator)

poll_cursors = sa.Table(
    "poll_cursors",
    METADATA,
    sa.Column("watched_address", ADDRESS, primary_key=True),
    sa.Column("last_processed_block", sa.BigInteger(), nullable=False),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)


def _resolve_database_url(settings: Settings | None = None) -> str:
    """Return the SQLAlchemy URL considering overrides and configured storage."""

    url_override = os.getenv("CIVITAS_DATABASE_URL")
    if url_override:
        return url_override

    resolved = settings or get_settings()
    if resolved.storage.database_url:
        return resolved.storage.database_url
    sqlite_path = Path(resolved.storage.sqlite_path)
    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return URL.create("sqlite", database=sqlite_path.as_posix()).render_as_string(hide_password=False)


def build_engine(*, echo: bool = False, settings: Settings | None = None) -> Engine:
    """Instantiate a SQLAlchemy engine aligned with project settings."""

    url = _resolve_database_url(settings)
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite:///"):
        connect_args["check_same_thread"] = False
    return sa.create_engine(url, echo=echo, future=True, pool_pre_ping=True, connect_args=connect_args)


def session_factory(*, settings: Settings | None = None, engine: Engine | None = None) -> sessionmaker:
    """Return a sessionmaker bound to ``engine`` or the configured one."""

    bound = engine or build_engine(settings=settings)
    return sessionmaker(bind=bound, autoflush=False, autocommit=False, future=True)


def ensure_schema(engine: Engine) -> None:
    """Create any missing indexer tables."""

    METADATA.create_all(engine)


def upsert(
    session: Session,
    table: sa.Table,
    values: Mapping[str, Any],
    *,
    conflict_columns: Iterable[str],
    update_columns: Iterable[str],
) -> None:
    """Execute a dialect-native ``INSERT ... ON CONFLICT DO UPDATE``.

    The database resolves concurrent writers on the conflict key, so callers
    need no locking of their own.
    """

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values)
    else:
        raise NotImplementedError(f"Upserts are not supported on dialect '{dialect}'")
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    session.execute(stmt)


__all__ = [
    "METADATA",
    "cloned_contracts",
    "contract_transactions",
    "poll_cursors",
    "build_engine",
    "session_factory",
    "ensure_schema",
    "upsert",
]
