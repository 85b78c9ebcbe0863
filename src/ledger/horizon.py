"""
Stellar Horizon ledger gateway.

Talks to a Horizon server through the stellar-sdk package, supporting:
- Keypair generation and XDR envelope building/signing
- Transaction submission with result-code mapping
- Paged holder queries for an issued asset
- Recent incoming payments for an account
- Friendbot funding on the test network

Requires stellar-sdk (pip install stellar-sdk).
"""

from decimal import Decimal
from typing import Any

import requests

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
    MAX_OPERATIONS_PER_TX,
    PaymentOp,
    RejectionReason,
    SetFlagsOp,
    SubmitResult,
    TransactionDraft,
)
from monitoring.logging import get_logger

logger = get_logger(__name__)

HOLDER_PAGE_SIZE = 200
FRIENDBOT_TIMEOUT = 30

# Result codes that mean the source ran out of something
_EXHAUSTED_CODES = {
    "tx_insufficient_balance",
    "tx_insufficient_fee",
    "op_underfunded",
    "op_low_reserve",
    "op_line_full",
}


class HorizonGateway(LedgerGateway):
    """
    Ledger gateway backed by a Stellar Horizon server.

    Every HTTP call is bounded by ``request_timeout`` (reads) or
    ``submit_timeout`` (submission); expiry surfaces as
    ``LedgerTransportError``.
    """

    def __init__(
        self,
        horizon_url: str,
        network: str = "testnet",
        friendbot_url: str = "https://friendbot.stellar.org",
        request_timeout: float = 20.0,
        submit_timeout: float = 60.0,
        max_operations_per_tx: int = MAX_OPERATIONS_PER_TX,
    ):
        try:
            import stellar_sdk
            from stellar_sdk.client.requests_client import RequestsClient
        except ImportError:
            raise LedgerError(
                "stellar-sdk not installed. Install with: pip install stellar-sdk"
            )

        self._sdk = stellar_sdk
        self.horizon_url = horizon_url
        self.network = network
        self.friendbot_url = friendbot_url
        self.request_timeout = request_timeout
        self.submit_timeout = submit_timeout
        self.max_operations_per_tx = max_operations_per_tx
        self.network_passphrase = (
            stellar_sdk.Network.PUBLIC_NETWORK_PASSPHRASE
            if network == "mainnet"
            else stellar_sdk.Network.TESTNET_NETWORK_PASSPHRASE
        )
        self._client = RequestsClient(
            request_timeout=request_timeout,
            post_timeout=submit_timeout,
        )
        self._server = stellar_sdk.Server(horizon_url=horizon_url, client=self._client)

    # =========================================================================
    # Keys and envelopes
    # =========================================================================

    def generate_keypair(self) -> Keypair:
        kp = self._sdk.Keypair.random()
        return Keypair(public_key=kp.public_key, secret=kp.secret)

    def build_envelope(self, draft: TransactionDraft) -> str:
        sdk = self._sdk
        try:
            builder = sdk.TransactionBuilder(
                source_account=sdk.Account(draft.source, draft.sequence),
                network_passphrase=self.network_passphrase,
                base_fee=draft.base_fee,
            )
            for op in draft.operations:
                self._append(builder, op)
            tx = builder.set_timeout(draft.timeout_seconds).build()
        except (ValueError, TypeError, sdk.exceptions.SdkError) as e:
            raise LedgerRejectedError(f"Cannot build transaction: {e}", RejectionReason.MALFORMED) from e
        return tx.to_xdr()

    def sign_envelope(self, envelope: str, secret: str) -> str:
        sdk = self._sdk
        try:
            tx = sdk.TransactionEnvelope.from_xdr(envelope, self.network_passphrase)
            tx.sign(sdk.Keypair.from_secret(secret))
        except (ValueError, sdk.exceptions.SdkError) as e:
            raise LedgerRejectedError(f"Cannot sign envelope: {e}", RejectionReason.MALFORMED) from e
        return tx.to_xdr()

    def _append(self, builder, op) -> None:
        sdk = self._sdk
        if isinstance(op, PaymentOp):
            builder.append_payment_op(
                destination=op.destination,
                asset=self._asset(op.asset),
                amount=f"{op.amount:.7f}",
                source=op.source,
            )
        elif isinstance(op, SetFlagsOp):
            flags = 0
            if op.auth_revocable:
                flags |= sdk.AuthorizationFlag.AUTHORIZATION_REVOCABLE
            if op.auth_clawback_enabled:
                flags |= sdk.AuthorizationFlag.AUTHORIZATION_CLAWBACK_ENABLED
            builder.append_set_options_op(set_flags=flags, source=op.source)
        elif isinstance(op, ChangeTrustOp):
            builder.append_change_trust_op(
                asset=self._asset(op.asset),
                limit=op.limit,
                source=op.source,
            )
        else:
            raise ValueError(f"Unsupported operation: {type(op).__name__}")

    def _asset(self, asset: AssetRef):
        return self._sdk.Asset(asset.code, asset.issuer)

    # =========================================================================
    # Horizon calls
    # =========================================================================

    def load_account(self, public_key: str) -> AccountState:
        record = self._call(lambda: self._server.accounts().account_id(public_key).call(), public_key)
        balances: dict[str, Decimal] = {}
        native = Decimal("0")
        for line in record.get("balances", []):
            if line.get("asset_type") == "native":
                native = Decimal(line["balance"])
            elif "asset_code" in line:
                key = AssetRef(line["asset_code"], line["asset_issuer"]).key
                balances[key] = Decimal(line["balance"])
        return AccountState(
            public_key=public_key,
            sequence=int(record["sequence"]),
            balances=balances,
            native_balance=native,
        )

    def submit(self, envelope: str) -> SubmitResult:
        response = self._call(lambda: self._server.submit_transaction(envelope))
        return SubmitResult(transaction_hash=response["hash"], ledger=response.get("ledger"))

    def query_asset_holders(self, asset: AssetRef) -> list[HolderBalance]:
        sdk_asset = self._asset(asset)
        holders = []
        cursor = None
        while True:
            builder = self._server.accounts().for_asset(sdk_asset).limit(HOLDER_PAGE_SIZE)
            if cursor:
                builder = builder.cursor(cursor)
            page = self._call(builder.call)
            records = page.get("_embedded", {}).get("records", [])
            for record in records:
                for line in record.get("balances", []):
                    if line.get("asset_code") == asset.code and line.get("asset_issuer") == asset.issuer:
                        holders.append(HolderBalance(
                            address=record["account_id"],
                            balance=Decimal(line["balance"]),
                        ))
            if len(records) < HOLDER_PAGE_SIZE:
                break
            cursor = records[-1].get("paging_token")
            if not cursor:
                break
        return holders

    def fetch_incoming_payments(
        self, public_key: str, asset: AssetRef, limit: int = 20
    ) -> list[IncomingPayment]:
        page = self._call(
            lambda: self._server.payments().for_account(public_key).limit(limit).order(desc=True).call(),
            public_key,
        )
        payments = []
        for record in page.get("_embedded", {}).get("records", []):
            if record.get("type") != "payment" or record.get("to") != public_key:
                continue
            if record.get("asset_code") != asset.code or record.get("asset_issuer") != asset.issuer:
                continue
            payments.append(IncomingPayment(
                payment_id=record["id"],
                from_address=record["from"],
                to_address=record["to"],
                amount=Decimal(record["amount"]),
                asset=asset,
                transaction_hash=record["transaction_hash"],
                created_at=record.get("created_at", ""),
            ))
        return payments

    def fund_test_account(self, public_key: str) -> None:
        if not self.is_test_network:
            raise LedgerRejectedError("Friendbot is only available on testnet")
        try:
            response = requests.get(
                self.friendbot_url,
                params={"addr": public_key},
                timeout=FRIENDBOT_TIMEOUT,
            )
        except requests.RequestException as e:
            raise LedgerTransportError(f"Friendbot request failed: {e}") from e
        if not response.ok:
            raise LedgerRejectedError(
                f"Friendbot returned {response.status_code}: {response.text[:200]}",
                RejectionReason.OTHER,
            )

    def is_available(self) -> bool:
        try:
            self._server.root().call()
            return True
        except Exception:
            return False

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info["horizon_url"] = self.horizon_url
        return info

    def close(self) -> None:
        self._server.close()

    # =========================================================================
    # Error mapping
    # =========================================================================

    def _call(self, fn, public_key: str | None = None):
        """Run a Horizon request, translating SDK exceptions to gateway errors."""
        exc = self._sdk.exceptions
        try:
            return fn()
        except exc.NotFoundError as e:
            if public_key:
                raise LedgerAccountNotFoundError(public_key) from e
            raise LedgerRejectedError(f"Not found: {e}") from e
        except exc.BadRequestError as e:
            raise self._rejection(e) from e
        except exc.ConnectionError as e:
            raise LedgerTransportError(f"Horizon unreachable: {e}") from e
        except exc.BaseHorizonError as e:
            # 429 rate limiting and 5xx/504 submission timeouts are transient
            if e.status == 429 or e.status >= 500:
                raise LedgerTransportError(f"Horizon error {e.status}: {e}") from e
            raise self._rejection(e) from e

    @staticmethod
    def _rejection(error) -> LedgerRejectedError:
        extras = getattr(error, "extras", None) or {}
        codes = extras.get("result_codes", {}) or {}
        all_codes = {codes.get("transaction")} | set(codes.get("operations", []) or [])
        if all_codes & _EXHAUSTED_CODES:
            reason = RejectionReason.RESOURCE_EXHAUSTED
        elif "tx_bad_seq" in all_codes:
            reason = RejectionReason.BAD_SEQUENCE
        elif "tx_malformed" in all_codes or "tx_bad_auth" in all_codes:
            reason = RejectionReason.MALFORMED
        else:
            reason = RejectionReason.OTHER
        logger.warning("Transaction rejected: %s", codes or error)
        return LedgerRejectedError(f"Transaction rejected: {codes or error}", reason, codes)
