"""
EventShare - Error Taxonomy

Every failure the settlement core can surface is an ``EventShareError``
carrying a machine-readable ``ErrorKind``, a category, and an explicit
``recoverable`` flag. Components raise them; the caller-facing facade
turns them into ``(False, {"error": ...})`` results so the retry-vs-fatal
decision is visible at every call site.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ledger.base import (
    LedgerAccountNotFoundError,
    LedgerRejectedError,
    LedgerTransportError,
    RejectionReason,
)


class ErrorCategory(Enum):
    """Broad classes of failure."""

    VALIDATION = "validation"  # Bad input, nothing touched
    STATE = "state"  # Caller sequencing mistake
    BUSINESS = "business"  # Terminal for this attempt
    SETTLEMENT = "settlement"  # Ledger / transport failures
    INFRASTRUCTURE = "infrastructure"  # Storage, vault


class ErrorKind(Enum):
    """Machine-readable error kinds."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_RECORD = "DUPLICATE_RECORD"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    WALLET_NOT_INITIALIZED = "WALLET_NOT_INITIALIZED"
    ASSET_NOT_CONFIGURED = "ASSET_NOT_CONFIGURED"
    INSUFFICIENT_SUPPLY = "INSUFFICIENT_SUPPLY"
    NO_TOKENS_ISSUED = "NO_TOKENS_ISSUED"
    NO_HOLDERS = "NO_HOLDERS"
    NOTHING_TO_DISTRIBUTE = "NOTHING_TO_DISTRIBUTE"
    NETWORK_ERROR = "NETWORK_ERROR"
    NETWORK_MISMATCH = "NETWORK_MISMATCH"
    TX_FAILED = "TX_FAILED"
    TX_BUILD_FAILED = "TX_BUILD_FAILED"
    FUNDING_FAILED = "FUNDING_FAILED"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    VAULT_ERROR = "VAULT_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class OperationContext:
    """Which operation failed, and for which event."""

    operation: str | None = None
    event_id: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "event_id": self.event_id,
            "timestamp": self.timestamp,
            "details": self.details,
        }


class EventShareError(Exception):
    """
    Base exception for all settlement-core errors.

    Subclasses fix ``kind``, ``category`` and the default ``recoverable``
    flag; settlement errors may override recoverability per instance.
    """

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    category: ErrorCategory = ErrorCategory.INFRASTRUCTURE
    default_recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        event_id: str | None = None,
        recoverable: bool | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.recoverable = self.default_recoverable if recoverable is None else recoverable
        self.context = OperationContext(
            operation=operation,
            event_id=event_id,
            details=details or {},
        )
        self.cause = cause
        if cause:
            self.__cause__ = cause

    @property
    def operation(self) -> str | None:
        return self.context.operation

    @property
    def event_id(self) -> str | None:
        return self.context.event_id

    def with_context(self, operation: str, event_id: str | None = None) -> "EventShareError":
        """Attach operation context without overwriting what is already known."""
        if self.context.operation is None:
            self.context.operation = operation
        if self.context.event_id is None and event_id is not None:
            self.context.event_id = event_id
        return self

    def to_dict(self) -> dict[str, Any]:
        """Structured error description returned to callers."""
        result = {
            "kind": self.kind.value,
            "category": self.category.value,
            "message": self.message,
            "recoverable": self.recoverable,
            **self.context.to_dict(),
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result

    def __str__(self) -> str:
        if self.context.operation:
            return f"[{self.context.operation}] {self.message}"
        return self.message


# =============================================================================
# Validation
# =============================================================================


class ValidationError(EventShareError):
    """Bad input shape or range; rejected before any state is touched."""

    kind = ErrorKind.VALIDATION_ERROR
    category = ErrorCategory.VALIDATION
    default_recoverable = True


class DuplicateRecordError(ValidationError):
    """A settlement reference was already recorded."""

    kind = ErrorKind.DUPLICATE_RECORD


# =============================================================================
# State preconditions
# =============================================================================


class NotFoundError(EventShareError):
    kind = ErrorKind.NOT_FOUND
    category = ErrorCategory.STATE


class InvalidStateError(EventShareError):
    kind = ErrorKind.INVALID_STATE
    category = ErrorCategory.STATE


class WalletNotInitializedError(EventShareError):
    kind = ErrorKind.WALLET_NOT_INITIALIZED
    category = ErrorCategory.STATE


class AssetNotConfiguredError(EventShareError):
    kind = ErrorKind.ASSET_NOT_CONFIGURED
    category = ErrorCategory.STATE


# =============================================================================
# Business rules
# =============================================================================


class InsufficientSupplyError(EventShareError):
    kind = ErrorKind.INSUFFICIENT_SUPPLY
    category = ErrorCategory.BUSINESS


class NoTokensIssuedError(EventShareError):
    kind = ErrorKind.NO_TOKENS_ISSUED
    category = ErrorCategory.BUSINESS


class NoHoldersError(EventShareError):
    kind = ErrorKind.NO_HOLDERS
    category = ErrorCategory.BUSINESS


class NothingToDistributeError(EventShareError):
    kind = ErrorKind.NOTHING_TO_DISTRIBUTE
    category = ErrorCategory.BUSINESS


# =============================================================================
# Settlement
# =============================================================================


class SettlementError(EventShareError):
    """
    A ledger transaction could not be built, submitted, or funded.

    ``code`` selects the kind (TX_FAILED, TX_BUILD_FAILED, FUNDING_FAILED).
    """

    kind = ErrorKind.TX_FAILED
    category = ErrorCategory.SETTLEMENT
    default_recoverable = True

    def __init__(self, message: str, code: ErrorKind = ErrorKind.TX_FAILED, **kwargs):
        super().__init__(message, **kwargs)
        self.kind = code

    @property
    def code(self) -> str:
        return self.kind.value


class NetworkError(SettlementError):
    """Transport failure or timeout talking to the ledger. Retryable."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, code=ErrorKind.NETWORK_ERROR, **kwargs)


class NetworkMismatchError(SettlementError):
    """Operation not available on the configured network. Not retryable."""

    def __init__(self, message: str, **kwargs):
        kwargs["recoverable"] = False
        super().__init__(message, code=ErrorKind.NETWORK_MISMATCH, **kwargs)


# =============================================================================
# Infrastructure
# =============================================================================


class PersistenceError(EventShareError):
    kind = ErrorKind.PERSISTENCE_ERROR
    category = ErrorCategory.INFRASTRUCTURE
    default_recoverable = True


class VaultError(EventShareError):
    """The secret vault could not encrypt or decrypt (e.g. no master key)."""

    kind = ErrorKind.VAULT_ERROR
    category = ErrorCategory.INFRASTRUCTURE


# =============================================================================
# Ledger failure mapping
# =============================================================================


def ledger_failure(
    error: Exception,
    *,
    operation: str,
    event_id: str | None = None,
    code: ErrorKind = ErrorKind.TX_FAILED,
) -> SettlementError:
    """
    Translate a ledger gateway exception into a settlement error.

    Transport failures become retryable ``NetworkError``s. Rejections keep
    their reason and result codes in ``details``; only malformed
    transactions are marked non-recoverable.
    """
    if isinstance(error, LedgerTransportError):
        return NetworkError(str(error), operation=operation, event_id=event_id, cause=error)

    details: dict[str, Any] = {}
    recoverable = True
    if isinstance(error, LedgerRejectedError):
        details = {"reason": error.reason.value, "result_codes": error.result_codes}
        recoverable = error.reason != RejectionReason.MALFORMED
    elif isinstance(error, LedgerAccountNotFoundError):
        details = {"account": error.public_key}

    return SettlementError(
        str(error),
        code=code,
        operation=operation,
        event_id=event_id,
        recoverable=recoverable,
        details=details,
        cause=error,
    )


__all__ = [
    "ledger_failure",
    "ErrorCategory",
    "ErrorKind",
    "OperationContext",
    "EventShareError",
    "ValidationError",
    "DuplicateRecordError",
    "NotFoundError",
    "InvalidStateError",
    "WalletNotInitializedError",
    "AssetNotConfiguredError",
    "InsufficientSupplyError",
    "NoTokensIssuedError",
    "NoHoldersError",
    "NothingToDistributeError",
    "SettlementError",
    "NetworkError",
    "NetworkMismatchError",
    "PersistenceError",
    "VaultError",
]
