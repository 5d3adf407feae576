"""Durable storage for the factory poller's last processed block."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

import sqlalchemy as sa
from sqlalchemy.orm import Session, sessionmaker

from civitas.store import sql as sql_schema
from civitas.store.sql import session_factory as default_session_factory

LOGGER = logging.getLogger(__name__)


class CursorStore:
    """Read and write rows of the ``poll_cursors`` table, one per watched address."""

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

    def load(self, watched_address: str) -> Optional[int]:
        """Return the persisted height for ``watched_address``, if any."""

        table = sql_schema.poll_cursors
        with self._session_scope() as session:
            value = session.execute(
                sa.select(table.c.last_processed_block).where(table.c.watched_address == watched_address.lower())
            ).scalar_one_or_none()
        return int(value) if value is not None else None

    def save(self, watched_address: str, block_number: int) -> None:
        """Persist ``block_number`` as the last processed height."""

        with self._session_scope() as session:
            sql_schema.upsert(
                session,
                sql_schema.poll_cursors,
                {
                    "watched_address": watched_address.lower(),
                    "last_processed_block": block_number,
                    "updated_at": datetime.now(timezone.utc),
                },
                conflict_columns=("watched_address",),
                update_columns=("last_processed_block", "updated_at"),
            )
        LOGGER.debug("Saved poll cursor address=%s block=%s", watched_address, block_number)


__all__ = ["CursorStore"]
