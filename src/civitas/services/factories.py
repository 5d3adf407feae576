"""Factory helpers that wire indexer components from configuration.

Every builder accepts optional collaborators so callers (worker entrypoints,
the API, tests) can share a chain client or session factory between
components instead of opening one per object.
"""

from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from civitas.chain.client import ChainClient
from civitas.indexer.creation_handler import ContractCreationHandler
from civitas.indexer.poller import FactoryPoller
from civitas.indexer.synchronizer import ContractSynchronizer
from civitas.observability import get_observability
from civitas.settings import Settings, get_settings
from civitas.store.cursor_store import CursorStore
from civitas.store.sql import build_engine, ensure_schema
from civitas.store.sql import session_factory as build_sql_session_factory
from civitas.store.transaction_store import TransactionStore


def build_session_factory(settings: Settings | None = None) -> sessionmaker:
    """Return a sessionmaker for the configured database with tables created."""

    resolved = settings or get_settings()
    engine = build_engine(settings=resolved)
    ensure_schema(engine)
    return build_sql_session_factory(engine=engine)


def build_chain_client(settings: Settings | None = None) -> ChainClient:
    """Instantiate a :class:`ChainClient` for the configured RPC endpoint."""

    return ChainClient.from_settings(settings or get_settings())


def build_transaction_store(
    settings: Settings | None = None, *, session_factory: sessionmaker | None = None
) -> TransactionStore:
    """Instantiate a :class:`TransactionStore` on the configured database."""

    return TransactionStore(session_factory=session_factory or build_session_factory(settings))


def build_cursor_store(settings: Settings | None = None, *, session_factory: sessionmaker | None = None) -> CursorStore:
    """Instantiate a :class:`CursorStore` on the configured database."""

    return CursorStore(session_factory=session_factory or build_session_factory(settings))


def build_synchronizer(
    settings: Settings | None = None,
    *,
    chain: ChainClient | None = None,
    store: TransactionStore | None = None,
) -> ContractSynchronizer:
    """Instantiate a :class:`ContractSynchronizer` honoring the indexer window."""

    resolved = settings or get_settings()
    return ContractSynchronizer(
        chain=chain or build_chain_client(resolved),
        store=store or build_transaction_store(resolved),
        window_blocks=resolved.indexer.sync_window_blocks,
        chain_id=resolved.chain.chain_id,
        observability=get_observability(component="synchronizer", settings=resolved),
    )


def build_poller(settings: Settings | None = None, *, chain: ChainClient | None = None) -> FactoryPoller:
    """Assemble the factory poller with its creation handler and stores."""

    resolved = settings or get_settings()
    chain = chain or build_chain_client(resolved)
    sessions = build_session_factory(resolved)
    store = build_transaction_store(resolved, session_factory=sessions)
    synchronizer = build_synchronizer(resolved, chain=chain, store=store)
    handler = ContractCreationHandler(
        chain=chain,
        store=store,
        synchronizer=synchronizer,
        chain_id=resolved.chain.chain_id,
        observability=get_observability(component="creation_handler", settings=resolved),
    )
    indexer = resolved.indexer
    return FactoryPoller(
        chain=chain,
        handler=handler,
        factory_address=resolved.factory_address,
        cursor_store=build_cursor_store(resolved, session_factory=sessions) if indexer.persist_cursor else None,
        interval_seconds=indexer.poll_interval_seconds,
        startup_lookback_blocks=indexer.startup_lookback_blocks,
        max_catchup_blocks=indexer.max_catchup_blocks,
        startup_max_attempts=indexer.startup_max_attempts,
        max_workers=indexer.max_workers,
        observability=get_observability(component="poller", settings=resolved),
    )


__all__ = [
    "build_session_factory",
    "build_chain_client",
    "build_transaction_store",
    "build_cursor_store",
    "build_synchronizer",
    "build_poller",
]
