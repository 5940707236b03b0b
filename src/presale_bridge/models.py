"""
Shared data models for the presale bridge.

This module contains the canonical event record stored in the queue, the
typed event variants the dispatcher acts on, and the custodial identity
binding for a source-chain user.
"""

import datetime as dt
import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class EventType(enum.StrEnum):
    """Presale contract events relayed by the bridge."""

    ROUND_CREATED = "RoundCreated"
    TOKENS_BOUGHT = "TokensBought"
    TOKENS_CLAIMED = "TokensClaimed"


# Events whose first argument is the acting user
USER_EVENTS: frozenset[str] = frozenset(
    {EventType.TOKENS_BOUGHT.value, EventType.TOKENS_CLAIMED.value}
)


def make_event_id(transaction_hash: str, log_index: int) -> str:
    """Derive the stable event identity from its log position."""
    return f"{transaction_hash}-{log_index}"


@dataclass(frozen=True, slots=True)
class RawEvent:
    """A decoded contract log as delivered by either ingestion channel.

    Attributes:
        event_type: Event name from the contract ABI
        transaction_hash: 0x-prefixed hash of the emitting transaction
        log_index: Position of the log within its block
        block_number: Block the log was emitted in
        args: Event parameters in ABI order
    """
    event_type: str
    transaction_hash: str
    log_index: int
    block_number: int
    args: tuple[Any, ...] = ()

    @property
    def event_id(self) -> str:
        return make_event_id(self.transaction_hash, self.log_index)


@dataclass(frozen=True, slots=True)
class RoundPurchase:
    """Snapshot of a user's purchase/claim state in one presale round."""
    amount_bought: str = "0"
    amount_claimed: str = "0"
    total_claimable: str = "0"
    cliff_completed: bool = False
    last_claim_time: str = "0"
    unclaimed_periods_passed: str = "0"

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted JSON shape."""
        return {
            "amountBought": self.amount_bought,
            "amountClaimed": self.amount_claimed,
            "totalClaimable": self.total_claimable,
            "cliffCompleted": self.cliff_completed,
            "lastClaimTime": self.last_claim_time,
            "unclaimedPeriodsPassed": self.unclaimed_periods_passed,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RoundPurchase":
        return cls(
            amount_bought=str(data.get("amountBought", "0")),
            amount_claimed=str(data.get("amountClaimed", "0")),
            total_claimable=str(data.get("totalClaimable", "0")),
            cliff_completed=bool(data.get("cliffCompleted", False)),
            last_claim_time=str(data.get("lastClaimTime", "0")),
            unclaimed_periods_passed=str(data.get("unclaimedPeriodsPassed", "0")),
        )


@dataclass(frozen=True, slots=True)
class UserContext:
    """The acting user's on-chain presale state captured at ingestion time."""
    address: str
    rounds: tuple[int, ...] = ()
    purchase_details: Mapping[str, RoundPurchase] = field(default_factory=dict)

    def rounds_json(self) -> list[int]:
        return list(self.rounds)

    def purchase_details_json(self) -> dict[str, dict[str, Any]]:
        return {round_id: p.to_dict() for round_id, p in self.purchase_details.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "rounds": self.rounds_json(),
            "purchaseDetails": self.purchase_details_json(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserContext | None":
        """Rebuild a context from persisted JSON, None when no address is present."""
        address = data.get("address")
        if not address:
            return None
        return cls(
            address=str(address),
            rounds=parse_rounds(data.get("rounds")),
            purchase_details=parse_purchase_details(data.get("purchaseDetails")),
        )


def parse_rounds(value: Any) -> tuple[int, ...]:
    """Parse a persisted round list, falling back to empty on malformed data."""
    if not isinstance(value, list):
        return ()
    try:
        return tuple(int(r) for r in value)
    except (TypeError, ValueError):
        logger.warning(f"Malformed round list {value!r}, using empty default")
        return ()


def parse_purchase_details(value: Any) -> dict[str, RoundPurchase]:
    """Parse persisted purchase details, falling back to empty on malformed data."""
    if not isinstance(value, Mapping):
        return {}
    details: dict[str, RoundPurchase] = {}
    for round_id, purchase in value.items():
        if isinstance(purchase, Mapping):
            details[str(round_id)] = RoundPurchase.from_dict(purchase)
    return details


@dataclass(frozen=True, slots=True)
class EventRecord:
    """One observed source-chain occurrence, as stored in the event queue.

    Attributes:
        event_id: Stable identity derived from (transaction_hash, log_index)
        transaction_hash: Hash of the emitting transaction
        block_number: Block the event was emitted in
        log_index: Position of the log within its block
        event_type: Event name; unknown names are tolerated on read
        args: Raw event parameters in ABI order
        user_context: Enrichment snapshot for TokensBought/TokensClaimed
        processed: Whether the destination-chain effect has been confirmed
        created_at: Queue insertion time, defines FIFO order
        processed_at: Set once when processed flips to True
        destination_tx_id: Destination transaction recorded for audit
    """
    event_id: str
    transaction_hash: str
    block_number: int
    log_index: int
    event_type: str
    args: tuple[Any, ...] = ()
    user_context: UserContext | None = None
    processed: bool = False
    created_at: dt.datetime | None = None
    processed_at: dt.datetime | None = None
    destination_tx_id: str | None = None

    @classmethod
    def from_raw(cls, raw: RawEvent, user_context: UserContext | None = None) -> "EventRecord":
        return cls(
            event_id=raw.event_id,
            transaction_hash=raw.transaction_hash,
            block_number=raw.block_number,
            log_index=raw.log_index,
            event_type=raw.event_type,
            args=tuple(raw.args),
            user_context=user_context,
        )

    @property
    def source_address(self) -> str | None:
        """Source-chain account the event acts on, None for round-level events."""
        if self.user_context is not None:
            return self.user_context.address
        if self.event_type in USER_EVENTS and self.args:
            return str(self.args[0])
        return None

    def __str__(self) -> str:
        return (
            f"EventRecord({self.event_type}, id={self.event_id[:14]}..., "
            f"block={self.block_number})"
        )


# Typed variants interpreted by the dispatcher

@dataclass(frozen=True, slots=True)
class RoundCreated:
    record: EventRecord


@dataclass(frozen=True, slots=True)
class TokensBought:
    record: EventRecord
    buyer: str
    round_id: int
    amount: int


@dataclass(frozen=True, slots=True)
class TokensClaimed:
    record: EventRecord
    user: str
    round_id: int
    amount: int


@dataclass(frozen=True, slots=True)
class UnknownEvent:
    record: EventRecord


BridgeEvent = RoundCreated | TokensBought | TokensClaimed | UnknownEvent


class MalformedEventError(ValueError):
    """Event arguments do not match the layout expected for its type."""


def decode_event(record: EventRecord) -> BridgeEvent:
    """Interpret a queued record's opaque args according to its event type.

    Raises:
        MalformedEventError: If a known event type carries unusable arguments
    """
    match record.event_type:
        case EventType.ROUND_CREATED:
            return RoundCreated(record)
        case EventType.TOKENS_BOUGHT:
            address, round_id, amount = _user_amount_args(record)
            return TokensBought(record, buyer=address, round_id=round_id, amount=amount)
        case EventType.TOKENS_CLAIMED:
            address, round_id, amount = _user_amount_args(record)
            return TokensClaimed(record, user=address, round_id=round_id, amount=amount)
        case _:
            return UnknownEvent(record)


def _user_amount_args(record: EventRecord) -> tuple[str, int, int]:
    if len(record.args) < 3:
        raise MalformedEventError(
            f"{record.event_type} {record.event_id} has {len(record.args)} args, expected >= 3"
        )
    try:
        return str(record.args[0]), int(record.args[1]), int(record.args[2])
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"{record.event_type} {record.event_id}: {e}") from e


@dataclass(frozen=True, slots=True)
class DestinationWallet:
    """Custodial destination-chain wallet; secrets are stored as ciphertext."""
    address: str
    public_key: str
    encrypted_mnemonic: str = field(repr=False)
    encrypted_private_key: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class IdentityBinding:
    """Durable mapping from one source address to its custodial wallet."""
    source_address: str
    wallet: DestinationWallet
    rounds: tuple[int, ...] = ()
    purchase_details: Mapping[str, RoundPurchase] = field(default_factory=dict)
    created_at: dt.datetime | None = None
    last_updated: dt.datetime | None = None

    @property
    def destination_address(self) -> str:
        return self.wallet.address


@dataclass(frozen=True, slots=True)
class DelegateVote:
    """A delegate the destination wallet currently votes for."""
    delegate_address: str
    delegate_public_key: str
    name: str
    weight: int
