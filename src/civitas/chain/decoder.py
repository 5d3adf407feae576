"""Decode raw logs against the event schemas of a contract kind."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex, encode_hex

from civitas.chain.abis import CREATION_TOPICS, ContractKind, EventSchema
from civitas.chain.client import RawLog
from civitas.errors import EventDecodeError


@dataclass(slots=True)
class DecodedEvent:
    """A log matched to its event schema with JSON-safe arguments."""

    name: str
    args: dict[str, Any]
    log: RawLog
    schema: EventSchema = field(repr=False)

    def payload(self) -> dict[str, Any]:
        """Return the ``{"event_name", "args"}`` map stored with the transaction."""

        return {"event_name": self.name, "args": dict(self.args)}


def _is_dynamic(abi_type: str) -> bool:
    return abi_type in {"string", "bytes"} or abi_type.endswith("]") or abi_type.startswith("(")


def serialize_value(abi_type: str, value: Any) -> Any:
    """Convert a decoded ABI value into a JSON-safe, precision-preserving form.

    Integers become decimal strings, addresses are lower-cased, and byte strings
    are rendered as ``0x`` hex.
    """

    if abi_type.endswith("]"):
        inner = abi_type[: abi_type.rindex("[")]
        return [serialize_value(inner, item) for item in value]
    if isinstance(value, bool):
        return value
    if abi_type == "address":
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return encode_hex(bytes(value))
    if isinstance(value, (list, tuple)):
        return [serialize_value("", item) for item in value]
    return value


def decode_with_schema(schema: EventSchema, log: RawLog) -> DecodedEvent:
    """Decode ``log`` assuming it was emitted as ``schema``.

    Raises:
        EventDecodeError: On topic mismatch or malformed data.
    """

    indexed = schema.indexed_inputs
    if log.topic0 != schema.topic0:
        raise EventDecodeError(f"topic0 {log.topic0} does not match {schema.signature}")
    if len(log.topics) != len(indexed) + 1:
        raise EventDecodeError(
            f"{schema.name} expects {len(indexed)} indexed topics, log carries {len(log.topics) - 1}"
        )

    args: dict[str, Any] = {}
    try:
        for param, topic in zip(indexed, log.topics[1:]):
            if _is_dynamic(param.type):
                # Indexed dynamic values are stored as their keccak hash.
                args[param.name] = topic
                continue
            (value,) = abi_decode([param.type], decode_hex(topic))
            args[param.name] = serialize_value(param.type, value)

        data_inputs = schema.data_inputs
        values = abi_decode([param.type for param in data_inputs], decode_hex(log.data or "0x"))
        for param, value in zip(data_inputs, values):
            args[param.name] = serialize_value(param.type, value)
    except (DecodingError, ValueError, TypeError) as exc:
        raise EventDecodeError(f"failed to decode {schema.name}: {exc}") from exc

    ordered = {param.name: args[param.name] for param in schema.inputs}
    return DecodedEvent(name=schema.name, args=ordered, log=log, schema=schema)


def decode_log(kind: ContractKind, log: RawLog) -> DecodedEvent:
    """Decode ``log`` against the events of ``kind``.

    Raises:
        EventDecodeError: When topic0 is unknown for the kind or decoding fails.
    """

    if not log.topic0:
        raise EventDecodeError("anonymous log without topic0")
    schema = kind.event_for_topic(log.topic0)
    if schema is None:
        raise EventDecodeError(f"topic0 {log.topic0} is not a {kind.value} event")
    return decode_with_schema(schema, log)


def decode_creation_log(log: RawLog) -> tuple[ContractKind, DecodedEvent]:
    """Decode a factory log into the kind it creates and its fields."""

    kind = CREATION_TOPICS.get(log.topic0 or "")
    if kind is None:
        raise EventDecodeError(f"topic0 {log.topic0} is not a factory creation event")
    return kind, decode_with_schema(kind.creation_event, log)


__all__ = ["DecodedEvent", "decode_log", "decode_creation_log", "decode_with_schema", "serialize_value"]
