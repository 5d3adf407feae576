"""Exception hierarchy shared by the indexing pipeline."""

from __future__ import annotations


class IndexerError(Exception):
    """Base class for every error raised by the Civitas indexer."""


class ChainRPCError(IndexerError):
    """Raised when a JSON-RPC call fails after retries or returns an error object."""

    def __init__(self, method: str, message: str, *, code: int | None = None) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.code = code


class EventDecodeError(IndexerError):
    """Raised when a raw log does not match any event schema for the contract kind."""


class UnknownContractKindError(IndexerError, ValueError):
    """Raised when a contract kind string does not name a supported template."""


class IndexerStartupError(IndexerError):
    """Raised when the chain head stays unreachable for the configured startup attempts."""


__all__ = [
    "IndexerError",
    "ChainRPCError",
    "EventDecodeError",
    "UnknownContractKindError",
    "IndexerStartupError",
]
