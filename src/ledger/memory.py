"""
In-memory ledger gateway.

Simulates the parts of a Stellar-style ledger the settlement core relies
on, useful for:
- Unit testing
- Development and the demo walk-through
- Reproducing partial-failure scenarios (see ``fail_next_submit``)

Modeled behavior: accounts with sequence numbers, trust lines and
balances, issuer accounts minting their own asset, signature checks for
every source account, the per-transaction operation limit, all-or-nothing
application of a transaction's operations, and payment history.
"""

import base64
import copy
import hashlib
import json
import secrets
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from ledger.base import (
    AccountState,
    AssetRef,
    ChangeTrustOp,
    HolderBalance,
    IncomingPayment,
    Keypair,
    LedgerAccountNotFoundError,
    LedgerGateway,
    LedgerRejectedError,
    MAX_OPERATIONS_PER_TX,
    PaymentOp,
    RejectionReason,
    SetFlagsOp,
    SubmitResult,
    TransactionDraft,
)

FRIENDBOT_STARTING_BALANCE = Decimal("10000")
BASE_RESERVE = Decimal("0.5")
_BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"


@dataclass
class _Account:
    public_key: str
    sequence: int
    native_balance: Decimal
    trustlines: dict[str, Decimal] = field(default_factory=dict)  # asset key -> balance
    trust_limits: dict[str, Decimal] = field(default_factory=dict)
    auth_revocable: bool = False
    auth_clawback_enabled: bool = False


def _random_key(prefix: str) -> str:
    return prefix + "".join(secrets.choice(_BASE32_ALPHABET) for _ in range(55))


def _public_from_secret(secret: str) -> str:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return "G" + "".join(_BASE32_ALPHABET[b % 32] for b in (digest * 2)[:55])


class MemoryLedgerGateway(LedgerGateway):
    """
    In-memory ledger gateway.

    All state is lost when the process exits. Thread-safe operations.
    """

    def __init__(
        self,
        network: str = "testnet",
        max_operations_per_tx: int = MAX_OPERATIONS_PER_TX,
    ):
        self.network = network
        self.max_operations_per_tx = max_operations_per_tx
        self._accounts: dict[str, _Account] = {}
        self._secrets: dict[str, str] = {}  # public key -> secret, for signature checks
        self._payments: list[IncomingPayment] = []
        self._submitted: list[dict[str, Any]] = []
        self._failures: deque[tuple[int, Exception]] = deque()
        self._ledger_seq = 1
        self._lock = threading.RLock()

    # =========================================================================
    # Test helpers
    # =========================================================================

    def open_account(
        self,
        public_key: str,
        native_balance: Decimal = FRIENDBOT_STARTING_BALANCE,
        balances: dict[AssetRef, Decimal] | None = None,
    ) -> None:
        """Create an account directly, with optional trust lines and balances."""
        with self._lock:
            account = _Account(
                public_key=public_key,
                sequence=self._ledger_seq << 32,
                native_balance=Decimal(native_balance),
            )
            for asset, amount in (balances or {}).items():
                account.trustlines[asset.key] = Decimal(amount)
                account.trust_limits[asset.key] = Decimal("922337203685.4775807")
            self._accounts[public_key] = account

    def trust(self, public_key: str, asset: AssetRef) -> None:
        """Establish a trust line without going through a transaction."""
        with self._lock:
            account = self._get(public_key)
            account.trustlines.setdefault(asset.key, Decimal("0"))
            account.trust_limits.setdefault(asset.key, Decimal("922337203685.4775807"))

    def credit(self, public_key: str, asset: AssetRef, amount: Decimal) -> None:
        """Mint ``amount`` of ``asset`` into an existing trust line."""
        with self._lock:
            account = self._get(public_key)
            if asset.key not in account.trustlines:
                raise LedgerRejectedError("op_no_trust", RejectionReason.OTHER)
            account.trustlines[asset.key] += Decimal(amount)

    def balance(self, public_key: str, asset: AssetRef) -> Decimal:
        with self._lock:
            return self._get(public_key).trustlines.get(asset.key, Decimal("0"))

    def account_flags(self, public_key: str) -> dict[str, bool]:
        with self._lock:
            account = self._get(public_key)
            return {
                "auth_revocable": account.auth_revocable,
                "auth_clawback_enabled": account.auth_clawback_enabled,
            }

    def fail_next_submit(self, error: Exception, after: int = 0) -> None:
        """
        Make a future ``submit`` raise ``error``.

        Args:
            error: Exception to raise
            after: Number of successful submissions to allow first
        """
        with self._lock:
            self._failures.append((after, error))

    @property
    def submitted(self) -> list[dict[str, Any]]:
        """Decoded envelopes of every transaction applied so far."""
        with self._lock:
            return copy.deepcopy(self._submitted)

    # =========================================================================
    # Gateway contract
    # =========================================================================

    def generate_keypair(self) -> Keypair:
        secret = _random_key("S")
        public_key = _public_from_secret(secret)
        with self._lock:
            self._secrets[public_key] = secret
        return Keypair(public_key=public_key, secret=secret)

    def load_account(self, public_key: str) -> AccountState:
        with self._lock:
            account = self._get(public_key)
            return AccountState(
                public_key=public_key,
                sequence=account.sequence,
                balances=dict(account.trustlines),
                native_balance=account.native_balance,
            )

    def build_envelope(self, draft: TransactionDraft) -> str:
        payload = {
            "tx": draft.to_dict(),
            "network": self.network,
            "expires_at": time.time() + draft.timeout_seconds,
            "signatures": [],
        }
        return self._encode(payload)

    def sign_envelope(self, envelope: str, secret: str) -> str:
        payload = self._decode(envelope)
        public_key = _public_from_secret(secret)
        payload["signatures"].append({
            "public_key": public_key,
            "signature": self._signature(secret, payload["tx"]),
        })
        return self._encode(payload)

    def submit(self, envelope: str) -> SubmitResult:
        payload = self._decode(envelope)
        draft = TransactionDraft.from_dict(payload["tx"])

        with self._lock:
            self._maybe_fail()

            if payload.get("network") != self.network:
                raise LedgerRejectedError("Envelope built for another network", RejectionReason.MALFORMED)
            if time.time() > payload.get("expires_at", 0):
                raise LedgerRejectedError("tx_too_late", RejectionReason.OTHER, {"transaction": "tx_too_late"})
            if not draft.operations:
                raise LedgerRejectedError("tx_missing_operation", RejectionReason.MALFORMED)
            if len(draft.operations) > self.max_operations_per_tx:
                raise LedgerRejectedError(
                    f"Too many operations: {len(draft.operations)} > {self.max_operations_per_tx}",
                    RejectionReason.MALFORMED,
                    {"transaction": "tx_malformed"},
                )

            source = self._accounts.get(draft.source)
            if source is None:
                raise LedgerRejectedError("tx_no_source_account", RejectionReason.OTHER)
            if draft.sequence != source.sequence:
                raise LedgerRejectedError(
                    "tx_bad_seq", RejectionReason.BAD_SEQUENCE, {"transaction": "tx_bad_seq"}
                )

            self._check_signatures(draft, payload["signatures"])

            fee = Decimal(draft.base_fee * len(draft.operations)) / Decimal("10000000")
            if source.native_balance - fee < BASE_RESERVE:
                raise LedgerRejectedError(
                    "tx_insufficient_balance",
                    RejectionReason.RESOURCE_EXHAUSTED,
                    {"transaction": "tx_insufficient_balance"},
                )

            # Apply to a scratch copy so a failing operation leaves nothing behind
            scratch = copy.deepcopy(self._accounts)
            tx_hash = hashlib.sha256(envelope.encode("utf-8")).hexdigest()
            now = datetime.now(UTC).isoformat()
            new_payments = []
            op_codes = []
            for index, op in enumerate(draft.operations):
                code = self._apply(scratch, draft.source, op)
                op_codes.append(code)
                if code != "op_success":
                    reason = (
                        RejectionReason.RESOURCE_EXHAUSTED
                        if code in ("op_underfunded", "op_line_full", "op_low_reserve")
                        else RejectionReason.OTHER
                    )
                    raise LedgerRejectedError(
                        f"tx_failed: operation {index} {code}",
                        reason,
                        {"transaction": "tx_failed", "operations": op_codes},
                    )
                if isinstance(op, PaymentOp):
                    new_payments.append(IncomingPayment(
                        payment_id=f"{self._ledger_seq}-{index}-{secrets.token_hex(4)}",
                        from_address=op.source or draft.source,
                        to_address=op.destination,
                        amount=Decimal(op.amount),
                        asset=op.asset,
                        transaction_hash=tx_hash,
                        created_at=now,
                    ))

            scratch[draft.source].sequence += 1
            scratch[draft.source].native_balance -= fee
            self._accounts = scratch
            self._payments.extend(new_payments)
            self._submitted.append({"hash": tx_hash, **payload})
            self._ledger_seq += 1
            return SubmitResult(transaction_hash=tx_hash, ledger=self._ledger_seq)

    def query_asset_holders(self, asset: AssetRef) -> list[HolderBalance]:
        with self._lock:
            return [
                HolderBalance(address=account.public_key, balance=account.trustlines[asset.key])
                for account in self._accounts.values()
                if asset.key in account.trustlines
            ]

    def fetch_incoming_payments(
        self, public_key: str, asset: AssetRef, limit: int = 20
    ) -> list[IncomingPayment]:
        with self._lock:
            matching = [
                p for p in reversed(self._payments)
                if p.to_address == public_key and p.asset == asset
            ]
            return matching[:limit]

    def fund_test_account(self, public_key: str) -> None:
        if not self.is_test_network:
            raise LedgerRejectedError("Faucet is only available on test networks")
        with self._lock:
            if public_key in self._accounts:
                raise LedgerRejectedError("createAccountAlreadyExist", RejectionReason.OTHER)
            self.open_account(public_key)

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        with self._lock:
            info.update({
                "account_count": len(self._accounts),
                "transaction_count": len(self._submitted),
            })
        return info

    # =========================================================================
    # Internals
    # =========================================================================

    def _get(self, public_key: str) -> _Account:
        account = self._accounts.get(public_key)
        if account is None:
            raise LedgerAccountNotFoundError(public_key)
        return account

    def _maybe_fail(self) -> None:
        if not self._failures:
            return
        after, error = self._failures[0]
        if after > 0:
            self._failures[0] = (after - 1, error)
            return
        self._failures.popleft()
        raise error

    def _check_signatures(self, draft: TransactionDraft, signatures: list[dict[str, str]]) -> None:
        valid = set()
        for entry in signatures:
            secret = self._secrets.get(entry["public_key"])
            if secret and secrets.compare_digest(entry["signature"], self._signature(secret, draft.to_dict())):
                valid.add(entry["public_key"])
        missing = draft.signers_required() - valid
        if missing:
            raise LedgerRejectedError(
                "tx_bad_auth", RejectionReason.MALFORMED, {"transaction": "tx_bad_auth"}
            )

    def _apply(self, accounts: dict[str, _Account], tx_source: str, op) -> str:
        source_key = op.source or tx_source
        source = accounts.get(source_key)
        if source is None:
            return "op_no_source_account"

        if isinstance(op, SetFlagsOp):
            source.auth_revocable = source.auth_revocable or op.auth_revocable
            source.auth_clawback_enabled = source.auth_clawback_enabled or op.auth_clawback_enabled
            return "op_success"

        if isinstance(op, ChangeTrustOp):
            if op.asset.issuer == source_key:
                return "op_malformed"
            if source.native_balance < BASE_RESERVE * 2:
                return "op_low_reserve"
            source.trustlines.setdefault(op.asset.key, Decimal("0"))
            source.trust_limits[op.asset.key] = Decimal(op.limit)
            return "op_success"

        if isinstance(op, PaymentOp):
            amount = Decimal(op.amount)
            if amount <= 0:
                return "op_malformed"
            destination = accounts.get(op.destination)
            if destination is None:
                return "op_no_destination"
            key = op.asset.key
            source_is_issuer = op.asset.issuer == source_key
            dest_is_issuer = op.asset.issuer == op.destination

            if not source_is_issuer:
                if key not in source.trustlines:
                    return "op_src_no_trust"
                if source.trustlines[key] < amount:
                    return "op_underfunded"
            if not dest_is_issuer:
                if key not in destination.trustlines:
                    return "op_no_trust"
                limit = destination.trust_limits.get(key)
                if limit is not None and destination.trustlines[key] + amount > limit:
                    return "op_line_full"

            if not source_is_issuer:
                source.trustlines[key] -= amount
            if not dest_is_issuer:
                destination.trustlines[key] += amount
            return "op_success"

        return "op_not_supported"

    @staticmethod
    def _signature(secret: str, tx: dict[str, Any]) -> str:
        body = json.dumps(tx, sort_keys=True).encode("utf-8")
        return hashlib.sha256(secret.encode("utf-8") + b":" + body).hexdigest()

    @staticmethod
    def _encode(payload: dict[str, Any]) -> str:
        return base64.b64encode(json.dumps(payload, sort_keys=True).encode("utf-8")).decode("ascii")

    @staticmethod
    def _decode(envelope: str) -> dict[str, Any]:
        try:
            return json.loads(base64.b64decode(envelope.encode("ascii")))
        except (ValueError, TypeError) as e:
            raise LedgerRejectedError(f"Malformed envelope: {e}", RejectionReason.MALFORMED) from e
