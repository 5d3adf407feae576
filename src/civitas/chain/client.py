"""Read-only JSON-RPC client for an EVM chain."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import httpx

from civitas.errors import ChainRPCError
from civitas.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass(frozen=True, slots=True)
class RawLog:
    """An undecoded log entry as returned by ``eth_getLogs``."""

    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    log_index: int

    @property
    def topic0(self) -> str | None:
        return self.topics[0] if self.topics else None


@dataclass(frozen=True, slots=True)
class Block:
    number: int
    timestamp: int


@dataclass(frozen=True, slots=True)
class Transaction:
    hash: str
    sender: str
    block_number: int | None = None


def _to_int(value: Any, method: str) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if not isinstance(value, str):
        raise ChainRPCError(method, f"expected a hex quantity, got {value!r}")
    try:
        return int(value, 16)
    except ValueError as exc:
        raise ChainRPCError(method, f"malformed hex quantity {value!r}") from exc


def _quantity(value: int) -> str:
    return hex(value)


def parse_log(payload: dict[str, Any]) -> RawLog:
    """Normalise one JSON-RPC log object into a :class:`RawLog`.

    Raises:
        ChainRPCError: When a required field is missing or malformed.
    """

    try:
        return RawLog(
            address=str(payload["address"]).lower(),
            topics=tuple(str(topic).lower() for topic in payload.get("topics") or ()),
            data=str(payload.get("data") or "0x"),
            block_number=_to_int(payload["blockNumber"], "eth_getLogs"),
            transaction_hash=str(payload["transactionHash"]).lower(),
            log_index=_to_int(payload["logIndex"], "eth_getLogs"),
        )
    except (KeyError, TypeError, AttributeError) as exc:
        raise ChainRPCError("eth_getLogs", f"malformed log object: {exc!r}") from exc


class ChainClient:
    """Thin JSON-RPC wrapper with explicit timeouts and bounded retries.

    Transport errors and HTTP 429/5xx responses are retried with exponential
    backoff (``backoff_seconds * 2**attempt``) up to ``max_retries`` times.
    JSON-RPC error objects are not retried.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.rpc_url = rpc_url
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = max(0.0, backoff_seconds)
        self._sleep = sleep
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()
        self._client = httpx.Client(timeout=timeout, transport=transport, headers={"Content-Type": "application/json"})

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ChainClient":
        resolved = settings or get_settings()
        return cls(
            resolved.rpc_url,
            timeout=resolved.chain.request_timeout_seconds,
            max_retries=resolved.chain.max_retries,
            backoff_seconds=resolved.chain.backoff_seconds,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ChainClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # RPC methods
    # ------------------------------------------------------------------

    def get_block_number(self) -> int:
        """Return the current chain head height."""

        return _to_int(self.call("eth_blockNumber", []), "eth_blockNumber")

    def get_logs(
        self,
        address: str,
        from_block: int,
        to_block: int,
        topics: Sequence[str | None] | None = None,
    ) -> list[RawLog]:
        """Return logs emitted by ``address`` in the inclusive block range."""

        params: dict[str, Any] = {
            "address": address.lower(),
            "fromBlock": _quantity(from_block),
            "toBlock": _quantity(to_block),
        }
        if topics:
            params["topics"] = list(topics)
        result = self.call("eth_getLogs", [params]) or []
        if not isinstance(result, list):
            raise ChainRPCError("eth_getLogs", f"expected a list of logs, got {type(result).__name__}")
        return [parse_log(item) for item in result]

    def get_block(self, number: int) -> Block:
        """Return the block header for ``number`` (transactions omitted)."""

        result = self.call("eth_getBlockByNumber", [_quantity(number), False])
        method = "eth_getBlockByNumber"
        if not result:
            raise ChainRPCError(method, f"block {number} not found")
        if not isinstance(result, dict):
            raise ChainRPCError(method, f"malformed block object for {number}")
        return Block(
            number=_to_int(result.get("number"), method),
            timestamp=_to_int(result.get("timestamp"), method),
        )

    def get_transaction(self, tx_hash: str) -> Transaction:
        """Return the transaction envelope for ``tx_hash``.

        Raises:
            ChainRPCError: When the node has no such transaction or omits its sender.
        """

        method = "eth_getTransactionByHash"
        result = self.call(method, [tx_hash])
        if not result:
            raise ChainRPCError(method, f"transaction {tx_hash} not found")
        if not isinstance(result, dict) or not isinstance(result.get("from"), str):
            raise ChainRPCError(method, f"transaction {tx_hash} has no sender")
        block_number = result.get("blockNumber")
        return Transaction(
            hash=str(result.get("hash") or tx_hash).lower(),
            sender=result["from"].lower(),
            block_number=_to_int(block_number, method) if block_number is not None else None,
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def call(self, method: str, params: list[Any]) -> Any:
        """Issue one JSON-RPC request, retrying transient failures.

        Raises:
            ChainRPCError: On a JSON-RPC error object or once retries are exhausted.
        """

        with self._id_lock:
            request_id = next(self._ids)
        body = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}

        attempt = 0
        while True:
            try:
                response = self._client.post(self.rpc_url, json=body)
                if response.status_code in _RETRYABLE_STATUS:
                    raise _TransientStatus(response.status_code)
                response.raise_for_status()
                payload = response.json()
            except (httpx.TransportError, _TransientStatus) as exc:
                if attempt >= self.max_retries:
                    raise ChainRPCError(method, f"gave up after {attempt + 1} attempts: {exc}") from exc
                delay = self.backoff_seconds * (2**attempt)
                LOGGER.warning(
                    "RPC %s failed (attempt %d/%d): %s; retrying in %.2fs",
                    method,
                    attempt + 1,
                    self.max_retries + 1,
                    exc,
                    delay,
                )
                attempt += 1
                self._sleep(delay)
                continue
            except (httpx.HTTPStatusError, ValueError) as exc:
                raise ChainRPCError(method, str(exc)) from exc

            if not isinstance(payload, dict):
                raise ChainRPCError(method, "malformed JSON-RPC response")
            error = payload.get("error")
            if error:
                if isinstance(error, dict):
                    raise ChainRPCError(method, str(error.get("message", error)), code=error.get("code"))
                raise ChainRPCError(method, str(error))
            return payload.get("result")


class _TransientStatus(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


__all__ = ["ChainClient", "RawLog", "Block", "Transaction", "parse_log"]
