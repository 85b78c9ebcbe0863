"""
Ledger Gateway contract.

The settlement core never talks to a ledger client library directly. It
describes transactions with the plain dataclasses in this module and
hands them to a ``LedgerGateway``, which owns key generation, envelope
encoding, signing, submission and account queries.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

MAX_OPERATIONS_PER_TX = 100


# =============================================================================
# Errors
# =============================================================================


class LedgerError(Exception):
    """Base exception for ledger gateway failures."""
    pass


class LedgerTransportError(LedgerError):
    """Connection failure, timeout, or rate limiting. Safe to retry."""
    pass


class LedgerAccountNotFoundError(LedgerError):
    """The requested account does not exist on the ledger."""

    def __init__(self, public_key: str):
        super().__init__(f"Account not found: {public_key}")
        self.public_key = public_key


class RejectionReason(Enum):
    """Why the ledger refused a transaction."""

    RESOURCE_EXHAUSTED = "resource_exhausted"  # Underfunded, low reserve, fee
    BAD_SEQUENCE = "bad_sequence"
    MALFORMED = "malformed"
    OTHER = "other"


class LedgerRejectedError(LedgerError):
    """The ledger received the transaction and rejected it."""

    def __init__(
        self,
        message: str,
        reason: RejectionReason = RejectionReason.OTHER,
        result_codes: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.result_codes = result_codes or {}

    @property
    def retryable(self) -> bool:
        return self.reason in (RejectionReason.BAD_SEQUENCE, RejectionReason.RESOURCE_EXHAUSTED)


# =============================================================================
# Value types
# =============================================================================


@dataclass(frozen=True)
class AssetRef:
    """A non-native asset: code plus issuing account."""

    code: str
    issuer: str

    @property
    def key(self) -> str:
        return f"{self.code}:{self.issuer}"

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "issuer": self.issuer}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> "AssetRef":
        return cls(code=data["code"], issuer=data["issuer"])


@dataclass
class Keypair:
    """A freshly generated ledger keypair. The secret never appears in repr."""

    public_key: str
    secret: str = field(repr=False)


@dataclass
class AccountState:
    """Current on-ledger state of an account."""

    public_key: str
    sequence: int
    balances: dict[str, Decimal] = field(default_factory=dict)  # asset key -> balance
    native_balance: Decimal = field(default_factory=lambda: Decimal("0"))

    def balance_of(self, asset: AssetRef) -> Decimal | None:
        """Balance for an asset, or None when no trust line exists."""
        return self.balances.get(asset.key)


@dataclass
class HolderBalance:
    address: str
    balance: Decimal


@dataclass
class IncomingPayment:
    """A payment received by an account."""

    payment_id: str
    from_address: str
    to_address: str
    amount: Decimal
    asset: AssetRef
    transaction_hash: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.payment_id,
            "from": self.from_address,
            "to": self.to_address,
            "amount": str(self.amount),
            "asset": self.asset.to_dict(),
            "transaction_hash": self.transaction_hash,
            "created_at": self.created_at,
        }


@dataclass
class SubmitResult:
    transaction_hash: str
    ledger: int | None = None


# =============================================================================
# Operations
# =============================================================================


@dataclass
class PaymentOp:
    """Pay ``amount`` of ``asset`` to ``destination``."""

    destination: str
    asset: AssetRef
    amount: Decimal
    source: str | None = None  # Defaults to the transaction source

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "payment",
            "destination": self.destination,
            "asset": self.asset.to_dict(),
            "amount": str(self.amount),
            "source": self.source,
        }


@dataclass
class SetFlagsOp:
    """Set account authorization flags on an issuing account."""

    auth_revocable: bool = False
    auth_clawback_enabled: bool = False
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "set_flags",
            "auth_revocable": self.auth_revocable,
            "auth_clawback_enabled": self.auth_clawback_enabled,
            "source": self.source,
        }


@dataclass
class ChangeTrustOp:
    """Create or update a trust line to ``asset`` up to ``limit``."""

    asset: AssetRef
    limit: str
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "change_trust",
            "asset": self.asset.to_dict(),
            "limit": self.limit,
            "source": self.source,
        }


Operation = PaymentOp | SetFlagsOp | ChangeTrustOp


def operation_from_dict(data: dict[str, Any]) -> Operation:
    op_type = data.get("type")
    if op_type == "payment":
        return PaymentOp(
            destination=data["destination"],
            asset=AssetRef.from_dict(data["asset"]),
            amount=Decimal(data["amount"]),
            source=data.get("source"),
        )
    if op_type == "set_flags":
        return SetFlagsOp(
            auth_revocable=data.get("auth_revocable", False),
            auth_clawback_enabled=data.get("auth_clawback_enabled", False),
            source=data.get("source"),
        )
    if op_type == "change_trust":
        return ChangeTrustOp(
            asset=AssetRef.from_dict(data["asset"]),
            limit=data["limit"],
            source=data.get("source"),
        )
    raise ValueError(f"Unknown operation type: {op_type}")


@dataclass
class TransactionDraft:
    """
    An unsigned transaction description.

    ``sequence`` is the source account's sequence as loaded; the built
    transaction consumes ``sequence + 1``.
    """

    source: str
    sequence: int
    operations: list[Operation] = field(default_factory=list)
    base_fee: int = 100
    timeout_seconds: int = 30

    def signers_required(self) -> set[str]:
        """Every account whose authority the transaction uses."""
        signers = {self.source}
        for op in self.operations:
            if op.source:
                signers.add(op.source)
        return signers

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "sequence": self.sequence,
            "operations": [op.to_dict() for op in self.operations],
            "base_fee": self.base_fee,
            "timeout_seconds": self.timeout_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransactionDraft":
        return cls(
            source=data["source"],
            sequence=int(data["sequence"]),
            operations=[operation_from_dict(op) for op in data.get("operations", [])],
            base_fee=int(data.get("base_fee", 100)),
            timeout_seconds=int(data.get("timeout_seconds", 30)),
        )


# =============================================================================
# Gateway
# =============================================================================


class LedgerGateway(ABC):
    """
    Abstract base class for ledger gateways.

    Implementations must apply a timeout to every network call and raise
    ``LedgerTransportError`` when it expires.
    """

    network: str = "testnet"
    max_operations_per_tx: int = MAX_OPERATIONS_PER_TX

    @property
    def is_test_network(self) -> bool:
        return self.network != "mainnet"

    @abstractmethod
    def generate_keypair(self) -> Keypair:
        """Create a fresh random keypair."""
        pass

    @abstractmethod
    def load_account(self, public_key: str) -> AccountState:
        """
        Load an account's current sequence and balances.

        Raises:
            LedgerAccountNotFoundError: If the account does not exist
            LedgerTransportError: On transport failure
        """
        pass

    @abstractmethod
    def build_envelope(self, draft: TransactionDraft) -> str:
        """Encode a draft as an unsigned, serialized transaction envelope."""
        pass

    @abstractmethod
    def sign_envelope(self, envelope: str, secret: str) -> str:
        """Add a signature made with ``secret``; returns the new envelope."""
        pass

    @abstractmethod
    def submit(self, envelope: str) -> SubmitResult:
        """
        Submit a signed envelope.

        Raises:
            LedgerRejectedError: If the ledger refuses the transaction
            LedgerTransportError: On transport failure
        """
        pass

    @abstractmethod
    def query_asset_holders(self, asset: AssetRef) -> list[HolderBalance]:
        """Every account holding a trust line to ``asset``, with balances."""
        pass

    @abstractmethod
    def fetch_incoming_payments(
        self, public_key: str, asset: AssetRef, limit: int = 20
    ) -> list[IncomingPayment]:
        """Most recent payments of ``asset`` received by ``public_key``, newest first."""
        pass

    @abstractmethod
    def fund_test_account(self, public_key: str) -> None:
        """Create and fund an account from the test-network faucet."""
        pass

    def is_available(self) -> bool:
        return True

    def get_info(self) -> dict[str, Any]:
        return {
            "gateway_type": self.__class__.__name__,
            "network": self.network,
            "available": self.is_available(),
        }

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
