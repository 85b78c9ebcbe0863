"""
EventShare - Domain Records

Events, investments, tickets and distributions as they are persisted,
plus the derived payout calculation.

Key Concepts:
- The Event row is the root; the other records reference it by id
- Event status only moves forward along a fixed transition graph
- Distribution status moves PENDING -> PROCESSING -> COMPLETED | FAILED
- Investments and tickets are immutable once created
"""

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from amounts import ZERO, quantize_down
from errors import InvalidStateError

# =============================================================================
# Enums
# =============================================================================


class EventStatus(Enum):
    """Lifecycle states of an event."""

    DRAFT = "DRAFT"
    WALLET_CREATED = "WALLET_CREATED"
    FUNDING_OPEN = "FUNDING_OPEN"
    FUNDED = "FUNDED"
    LIVE = "LIVE"
    COMPLETED = "COMPLETED"


EVENT_TRANSITIONS: dict[EventStatus, set[EventStatus]] = {
    EventStatus.DRAFT: {EventStatus.WALLET_CREATED},
    EventStatus.WALLET_CREATED: {EventStatus.FUNDING_OPEN},
    EventStatus.FUNDING_OPEN: {EventStatus.FUNDED},
    EventStatus.FUNDED: {EventStatus.LIVE, EventStatus.COMPLETED},
    EventStatus.LIVE: {EventStatus.COMPLETED},
    EventStatus.COMPLETED: set(),
}

# States in which revenue may be recorded and distributed
REVENUE_STATES = frozenset({EventStatus.FUNDED, EventStatus.LIVE})


class DistributionStatus(Enum):
    """Status of one payout attempt."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


DISTRIBUTION_TRANSITIONS: dict[DistributionStatus, set[DistributionStatus]] = {
    DistributionStatus.PENDING: {DistributionStatus.PROCESSING},
    DistributionStatus.PROCESSING: {DistributionStatus.COMPLETED, DistributionStatus.FAILED},
    DistributionStatus.COMPLETED: set(),
    DistributionStatus.FAILED: set(),
}


def can_transition(current: EventStatus, target: EventStatus) -> bool:
    return target in EVENT_TRANSITIONS[current]


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _dec(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def generate_id(prefix: str = "") -> str:
    return f"{prefix}{secrets.token_hex(12)}"


# =============================================================================
# Records
# =============================================================================


@dataclass
class Event:
    """A tokenized real-world event."""

    event_id: str
    name: str
    funding_goal: Decimal
    token_price: Decimal
    revenue_share_pct: Decimal
    ticket_price: Decimal = field(default_factory=lambda: ZERO)
    description: str = ""
    organizer_id: str | None = None
    status: EventStatus = EventStatus.DRAFT
    # Set exactly once by initialize_wallet
    custodial_public_key: str | None = None
    custodial_secret_encrypted: str | None = None
    asset_code: str | None = None
    asset_setup_tx: str | None = None
    total_tokens_issued: Decimal = field(default_factory=lambda: ZERO)
    total_revenue: Decimal = field(default_factory=lambda: ZERO)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def token_supply(self) -> Decimal:
        """Funding goal / token price, rounded down to ledger precision."""
        return quantize_down(self.funding_goal / self.token_price)

    @property
    def tokens_remaining(self) -> Decimal:
        return self.token_supply - self.total_tokens_issued

    @property
    def has_wallet(self) -> bool:
        return bool(self.custodial_public_key and self.custodial_secret_encrypted)

    def touch(self) -> None:
        self.updated_at = _now()

    def to_dict(self, include_secret: bool = False) -> dict[str, Any]:
        """Convert to dictionary. The encrypted secret is omitted unless asked for."""
        data = {
            "event_id": self.event_id,
            "name": self.name,
            "description": self.description,
            "organizer_id": self.organizer_id,
            "funding_goal": str(self.funding_goal),
            "token_price": str(self.token_price),
            "revenue_share_pct": str(self.revenue_share_pct),
            "ticket_price": str(self.ticket_price),
            "status": self.status.value,
            "custodial_public_key": self.custodial_public_key,
            "asset_code": self.asset_code,
            "asset_setup_tx": self.asset_setup_tx,
            "total_tokens_issued": str(self.total_tokens_issued),
            "total_revenue": str(self.total_revenue),
            "token_supply": str(self.token_supply),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if include_secret:
            data["custodial_secret_encrypted"] = self.custodial_secret_encrypted
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        return cls(
            event_id=data["event_id"],
            name=data["name"],
            description=data.get("description", ""),
            organizer_id=data.get("organizer_id"),
            funding_goal=_dec(data["funding_goal"]),
            token_price=_dec(data["token_price"]),
            revenue_share_pct=_dec(data["revenue_share_pct"]),
            ticket_price=_dec(data.get("ticket_price", "0")),
            status=EventStatus(data.get("status", "DRAFT")),
            custodial_public_key=data.get("custodial_public_key"),
            custodial_secret_encrypted=data.get("custodial_secret_encrypted"),
            asset_code=data.get("asset_code"),
            asset_setup_tx=data.get("asset_setup_tx"),
            total_tokens_issued=_dec(data.get("total_tokens_issued", "0")),
            total_revenue=_dec(data.get("total_revenue", "0")),
            created_at=data.get("created_at") or _now(),
            updated_at=data.get("updated_at") or _now(),
        )


@dataclass
class Investment:
    """A confirmed token purchase."""

    investment_id: str
    event_id: str
    investor_address: str
    token_amount: Decimal
    amount_paid: Decimal
    transaction_hash: str
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "investment_id": self.investment_id,
            "event_id": self.event_id,
            "investor_address": self.investor_address,
            "token_amount": str(self.token_amount),
            "amount_paid": str(self.amount_paid),
            "transaction_hash": self.transaction_hash,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Investment":
        return cls(
            investment_id=data["investment_id"],
            event_id=data["event_id"],
            investor_address=data["investor_address"],
            token_amount=_dec(data["token_amount"]),
            amount_paid=_dec(data["amount_paid"]),
            transaction_hash=data["transaction_hash"],
            created_at=data.get("created_at") or _now(),
        )


@dataclass
class Ticket:
    """A ticket sale. ``transaction_hash`` is unique when present."""

    ticket_id: str
    event_id: str
    buyer_address: str
    amount_paid: Decimal
    transaction_hash: str | None = None
    created_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "event_id": self.event_id,
            "buyer_address": self.buyer_address,
            "amount_paid": str(self.amount_paid),
            "transaction_hash": self.transaction_hash,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Ticket":
        return cls(
            ticket_id=data["ticket_id"],
            event_id=data["event_id"],
            buyer_address=data["buyer_address"],
            amount_paid=_dec(data["amount_paid"]),
            transaction_hash=data.get("transaction_hash"),
            created_at=data.get("created_at") or _now(),
        )


@dataclass
class Distribution:
    """One payout cycle attempt."""

    distribution_id: str
    event_id: str
    total_amount: Decimal
    payout_per_token: Decimal
    status: DistributionStatus = DistributionStatus.PENDING
    transaction_hash: str | None = None  # Last submitted batch
    batch_hashes: list[str] = field(default_factory=list)
    paid_holders: dict[str, Decimal] = field(default_factory=dict)  # address -> amount paid
    holders_count: int = 0
    error: str | None = None
    created_at: str = field(default_factory=_now)
    completed_at: str | None = None

    def advance(self, target: DistributionStatus) -> None:
        """Move to ``target``; raises InvalidStateError on a backward or skipped step."""
        if target not in DISTRIBUTION_TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Distribution cannot move from {self.status.value} to {target.value}",
                operation="advance_distribution",
                event_id=self.event_id,
                details={"distribution_id": self.distribution_id},
            )
        self.status = target
        if target in (DistributionStatus.COMPLETED, DistributionStatus.FAILED):
            self.completed_at = _now()

    @property
    def amount_paid(self) -> Decimal:
        return sum(self.paid_holders.values(), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "distribution_id": self.distribution_id,
            "event_id": self.event_id,
            "total_amount": str(self.total_amount),
            "payout_per_token": str(self.payout_per_token),
            "status": self.status.value,
            "transaction_hash": self.transaction_hash,
            "batch_hashes": list(self.batch_hashes),
            "paid_holders": {k: str(v) for k, v in self.paid_holders.items()},
            "holders_count": self.holders_count,
            "amount_paid": str(self.amount_paid),
            "error": self.error,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Distribution":
        return cls(
            distribution_id=data["distribution_id"],
            event_id=data["event_id"],
            total_amount=_dec(data["total_amount"]),
            payout_per_token=_dec(data["payout_per_token"]),
            status=DistributionStatus(data.get("status", "PENDING")),
            transaction_hash=data.get("transaction_hash"),
            batch_hashes=list(data.get("batch_hashes", [])),
            paid_holders={k: _dec(v) for k, v in data.get("paid_holders", {}).items()},
            holders_count=int(data.get("holders_count", 0)),
            error=data.get("error"),
            created_at=data.get("created_at") or _now(),
            completed_at=data.get("completed_at"),
        )


# =============================================================================
# Derived values (never persisted)
# =============================================================================


@dataclass
class HolderPayout:
    address: str
    balance: Decimal
    payout: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "balance": str(self.balance),
            "payout": str(self.payout),
        }


@dataclass
class PayoutCalculation:
    """A payout computed from current on-ledger holder balances."""

    event_id: str
    total_revenue: Decimal
    revenue_share_pct: Decimal
    distributable_amount: Decimal
    total_tokens_issued: Decimal
    payout_per_token: Decimal
    holders: list[HolderPayout] = field(default_factory=list)

    @property
    def total_payout(self) -> Decimal:
        return sum((h.payout for h in self.holders), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "total_revenue": str(self.total_revenue),
            "revenue_share_pct": str(self.revenue_share_pct),
            "distributable_amount": str(self.distributable_amount),
            "total_tokens_issued": str(self.total_tokens_issued),
            "payout_per_token": str(self.payout_per_token),
            "holders_count": len(self.holders),
            "total_payout": str(self.total_payout),
            "holders": [h.to_dict() for h in self.holders],
        }
