"""
Ledger gateway layer for EventShare.

The settlement core talks to the ledger only through ``LedgerGateway``:

- Memory (simulated ledger, default; tests and demo)
- Horizon (Stellar network via stellar-sdk)

Usage:
    from ledger import get_ledger_gateway

    gateway = get_ledger_gateway(config)
    keypair = gateway.generate_keypair()
"""

from typing import TYPE_CHECKING

from ledger.base import (
    AccountState,
    AssetRef,
    ChangeTrustOp,
    HolderBalance,
    IncomingPayment,
    Keypair,
    LedgerAccountNotFoundError,
    LedgerError,
    LedgerGateway,
    LedgerRejectedError,
    LedgerTransportError,
    PaymentOp,
    RejectionReason,
    SetFlagsOp,
    SubmitResult,
    TransactionDraft,
)
from ledger.memory import MemoryLedgerGateway

# Lazy import for Horizon to avoid requiring stellar-sdk
if TYPE_CHECKING:
    from config import SettlementConfig
    from ledger.horizon import HorizonGateway

__all__ = [
    "AccountState",
    "AssetRef",
    "ChangeTrustOp",
    "HolderBalance",
    "IncomingPayment",
    "Keypair",
    "LedgerAccountNotFoundError",
    "LedgerError",
    "LedgerGateway",
    "LedgerRejectedError",
    "LedgerTransportError",
    "MemoryLedgerGateway",
    "PaymentOp",
    "RejectionReason",
    "SetFlagsOp",
    "SubmitResult",
    "TransactionDraft",
    "get_ledger_gateway",
]


def get_ledger_gateway(config: "SettlementConfig") -> LedgerGateway:
    """
    Get the ledger gateway selected by ``config.ledger_backend``.

    Returns:
        Configured LedgerGateway instance
    """
    backend = config.ledger_backend

    if backend == "memory":
        return MemoryLedgerGateway(
            network=config.network,
            max_operations_per_tx=config.max_operations_per_tx,
        )

    if backend in ("horizon", "stellar"):
        from ledger.horizon import HorizonGateway

        return HorizonGateway(
            horizon_url=config.horizon_url,
            network=config.network,
            friendbot_url=config.friendbot_url,
            request_timeout=config.request_timeout,
            submit_timeout=config.submit_timeout,
            max_operations_per_tx=config.max_operations_per_tx,
        )

    raise ValueError(f"Unknown ledger backend: {backend}. Use 'memory' or 'horizon'.")
