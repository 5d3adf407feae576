"""Event schemas for the clone factory and each agreement contract kind.

The registry is static configuration mirroring the deployed contracts' ABI
surface. Each :class:`ContractKind` member carries its compiled event schemas so
adding a kind without schemas fails at import time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from eth_utils import encode_hex, keccak

from civitas.errors import UnknownContractKindError


@dataclass(frozen=True, slots=True)
class EventParam:
    """One typed input of an event."""

    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True, slots=True)
class EventSchema:
    """Compiled event definition keyed by its topic0 hash."""

    name: str
    inputs: tuple[EventParam, ...]
    topic0: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "topic0", encode_hex(keccak(text=self.signature)))

    @property
    def signature(self) -> str:
        """str: Canonical ``Name(type,...)`` form hashed into topic0."""

        return f"{self.name}({','.join(param.type for param in self.inputs)})"

    @property
    def indexed_inputs(self) -> tuple[EventParam, ...]:
        return tuple(param for param in self.inputs if param.indexed)

    @property
    def data_inputs(self) -> tuple[EventParam, ...]:
        return tuple(param for param in self.inputs if not param.indexed)


def _event(name: str, *params: tuple[str, str, bool]) -> EventSchema:
    return EventSchema(name=name, inputs=tuple(EventParam(*param) for param in params))


class ContractKind(str, Enum):
    """Agreement templates the factory can clone."""

    RENT_VAULT = "rent_vault"
    GROUP_BUY_ESCROW = "group_buy_escrow"
    STABLE_ALLOWANCE_TREASURY = "stable_allowance_treasury"

    @property
    def events(self) -> tuple[EventSchema, ...]:
        """Event schemas emitted by clones of this kind."""

        return KIND_EVENTS[self]

    @property
    def creation_event(self) -> EventSchema:
        """Factory event announcing a new clone of this kind."""

        return CREATION_EVENTS[self]

    def event_for_topic(self, topic0: str) -> EventSchema | None:
        """Return the schema whose topic0 matches, or ``None``."""

        return _TOPIC_INDEX[self].get(topic0.lower())

    @classmethod
    def parse(cls, value: "str | ContractKind") -> "ContractKind":
        """Resolve snake_case, kebab-case, or PascalCase template names.

        Raises:
            UnknownContractKindError: When ``value`` names no supported kind.
        """

        if isinstance(value, cls):
            return value
        raw = str(value or "").strip()
        normalized = raw.replace("-", "_").lower()
        if normalized in _ALIASES:
            return _ALIASES[normalized]
        raise UnknownContractKindError(f"Unknown contract kind '{raw}'")


KIND_EVENTS: dict[ContractKind, tuple[EventSchema, ...]] = {
    ContractKind.RENT_VAULT: (
        _event("Deposited", ("tenant", "address", True), ("amount", "uint256", False), ("totalDeposited", "uint256", False)),
        _event("RentFullyFunded", ("totalDeposited", "uint256", False)),
        _event("WithdrawnToLandlord", ("landlord", "address", True), ("amount", "uint256", False)),
        _event("Refunded", ("tenant", "address", True), ("amount", "uint256", False)),
    ),
    ContractKind.GROUP_BUY_ESCROW: (
        _event(
            "Deposited",
            ("participant", "address", True),
            ("amount", "uint256", False),
            ("totalDeposited", "uint256", False),
        ),
        _event("GoalReached", ("totalDeposited", "uint256", False), ("timestamp", "uint256", False)),
        _event("Refunded", ("participant", "address", True), ("amount", "uint256", False)),
        _event(
            "DeliveryConfirmed",
            ("recipient", "address", True),
            ("proof", "string", False),
            ("timestamp", "uint256", False),
        ),
        _event("VoteCast", ("participant", "address", True), ("yesVotes", "uint256", False)),
        _event("FundsReleased", ("purchaser", "address", True), ("amount", "uint256", False)),
        _event("TimelockRefund", ("participant", "address", True), ("amount", "uint256", False)),
    ),
    ContractKind.STABLE_ALLOWANCE_TREASURY: (
        _event(
            "ApprovalIncremented",
            ("owner", "address", True),
            ("newApprovalCount", "uint256", False),
            ("incrementAmount", "uint256", False),
        ),
        _event(
            "AllowanceClaimed",
            ("recipient", "address", True),
            ("amount", "uint256", False),
            ("claimNumber", "uint256", False),
        ),
        _event("Deposited", ("from", "address", True), ("amount", "uint256", False), ("newBalance", "uint256", False)),
        _event("StateChanged", ("oldState", "uint8", False), ("newState", "uint8", False)),
        _event("EmergencyWithdrawal", ("to", "address", True), ("amount", "uint256", False)),
    ),
}

# Emitted by the factory; every field is indexed so the payload lives in topics.
CREATION_EVENTS: dict[ContractKind, EventSchema] = {
    ContractKind.RENT_VAULT: _event(
        "RentVaultCreated", ("creator", "address", True), ("clone", "address", True), ("recipient", "address", True)
    ),
    ContractKind.GROUP_BUY_ESCROW: _event(
        "GroupBuyEscrowCreated", ("creator", "address", True), ("clone", "address", True), ("recipient", "address", True)
    ),
    ContractKind.STABLE_ALLOWANCE_TREASURY: _event(
        "TreasuryCreated", ("creator", "address", True), ("clone", "address", True), ("owner_", "address", True)
    ),
}

_missing = set(ContractKind) - set(KIND_EVENTS) | set(ContractKind) - set(CREATION_EVENTS)
if _missing:  # pragma: no cover - guards registry edits
    raise RuntimeError(f"Contract kinds without event schemas: {sorted(kind.value for kind in _missing)}")

_TOPIC_INDEX: dict[ContractKind, dict[str, EventSchema]] = {
    kind: {schema.topic0: schema for schema in schemas} for kind, schemas in KIND_EVENTS.items()
}

_ALIASES: dict[str, ContractKind] = {}
for _kind in ContractKind:
    _ALIASES[_kind.value] = _kind
    _ALIASES[_kind.value.replace("_", "")] = _kind
_ALIASES["allowance_treasury"] = ContractKind.STABLE_ALLOWANCE_TREASURY

CREATION_TOPICS: dict[str, ContractKind] = {schema.topic0: kind for kind, schema in CREATION_EVENTS.items()}


__all__ = [
    "ContractKind",
    "EventParam",
    "EventSchema",
    "KIND_EVENTS",
    "CREATION_EVENTS",
    "CREATION_TOPICS",
]
