"""Map decoded contract events onto the normalized transaction taxonomy.

The classifier is table driven:

* ``EVENT_TYPES`` maps an event name to its normalized transaction type.
  Unknown names fall through to ``interaction``.
* ``INITIATOR_FIELDS`` lists, per normalized type, the argument names that may
  hold the initiating address, in priority order.
* ``SYSTEM_TYPES`` are emitted by the contract itself and never have an
  initiator, so no transaction lookup is attempted for them.

Adding an event only requires touching the tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Mapping

from eth_utils import is_hex_address

from civitas.errors import ChainRPCError

LOGGER = logging.getLogger(__name__)

INTERACTION = "interaction"
DEPLOYMENT = "deployment"

EVENT_TYPES: dict[str, str] = {
    "Deposited": "deposit",
    "Withdrawn": "withdrawal",
    "WithdrawnToLandlord": "withdrawal",
    "Refunded": "refund",
    "Claimed": "claim",
    "AllowanceClaimed": "claim",
    "ApprovalIncremented": "approval",
    "EmergencyWithdrawal": "withdrawal",
    "GoalReached": "goal_reached",
    "RentFullyFunded": "goal_reached",
    "FundsReleased": "funds_released",
    "DeliveryConfirmed": "delivery_confirmed",
    "VoteCast": "vote",
    "TimelockRefund": "refund",
    "StateChanged": "state_change",
}

INITIATOR_FIELDS: dict[str, tuple[str, ...]] = {
    "deposit": ("from", "tenant", "participant", "depositor", "sender"),
    "withdrawal": ("landlord", "recipient", "owner", "to"),
    "refund": ("tenant", "participant", "recipient"),
    "claim": ("recipient",),
    "approval": ("owner",),
    "funds_released": ("purchaser",),
    "delivery_confirmed": ("recipient",),
    "vote": ("participant",),
    "goal_reached": (),
    "state_change": (),
    INTERACTION: (),
}

SYSTEM_TYPES = frozenset({"goal_reached", "state_change"})
VALUE_TRANSFER_TYPES = frozenset({"deposit", "withdrawal", "refund", "claim", "funds_released"})


@dataclass(frozen=True, slots=True)
class Classification:
    """Normalized view of one decoded event."""

    event_name: str
    transaction_type: str
    initiator: str | None
    amount: Decimal | None

    @property
    def is_system(self) -> bool:
        return self.transaction_type in SYSTEM_TYPES

    @property
    def needs_sender_lookup(self) -> bool:
        """bool: True when the initiator must come from the transaction sender."""

        return self.initiator is None and not self.is_system


def classify_event(event_name: str, args: Mapping[str, Any]) -> Classification:
    """Classify a decoded event by name and extract initiator and amount from ``args``."""

    transaction_type = EVENT_TYPES.get(event_name, INTERACTION)
    return Classification(
        event_name=event_name,
        transaction_type=transaction_type,
        initiator=extract_initiator(transaction_type, args),
        amount=extract_amount(transaction_type, args),
    )


def extract_initiator(transaction_type: str, args: Mapping[str, Any]) -> str | None:
    """Return the first candidate field holding an address, lower-cased."""

    if transaction_type in SYSTEM_TYPES:
        return None
    for field_name in INITIATOR_FIELDS.get(transaction_type, ()):
        value = args.get(field_name)
        if isinstance(value, str) and is_hex_address(value):
            return value.lower()
    return None


def extract_amount(transaction_type: str, args: Mapping[str, Any]) -> Decimal | None:
    """Return the exact ``amount`` argument for value-transfer types."""

    if transaction_type not in VALUE_TRANSFER_TYPES:
        return None
    raw = args.get("amount")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        LOGGER.warning("Non-numeric amount %r on %s event", raw, transaction_type)
        return None


def resolve_initiator(
    classification: Classification,
    tx_hash: str,
    fetch_sender: Callable[[str], str],
) -> str | None:
    """Return the classified initiator, falling back to the transaction sender.

    The fallback costs one RPC round trip, so it only runs for non-system
    events whose arguments carried no address. Lookup failures yield ``None``.
    """

    if not classification.needs_sender_lookup:
        return classification.initiator
    try:
        sender = fetch_sender(tx_hash)
    except ChainRPCError as exc:
        LOGGER.warning("Failed to fetch sender for tx=%s: %s", tx_hash, exc)
        return None
    return sender.lower() if sender else None


__all__ = [
    "Classification",
    "classify_event",
    "extract_initiator",
    "extract_amount",
    "resolve_initiator",
    "EVENT_TYPES",
    "INITIATOR_FIELDS",
    "SYSTEM_TYPES",
    "VALUE_TRANSFER_TYPES",
    "INTERACTION",
    "DEPLOYMENT",
]
