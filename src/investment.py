"""
EventShare - Investment Transaction Builder

Builds the atomic swap an investor signs to buy revenue-share tokens:

    op 1: investor  -> event wallet   stable currency (cost)
    op 2: event wallet -> investor    event tokens    (token_amount)

The transaction is co-signed with the event's custodial key only. The
investor adds the remaining signature and submits it; the system never
takes custody of investor funds. ``record_investment`` runs only after
the swap is confirmed on the ledger.
"""

from decimal import Decimal
from typing import Any

from amounts import format_amount, quantize
from config import SettlementConfig
from errors import (
    DuplicateRecordError,
    ErrorKind,
    InsufficientSupplyError,
    InvalidStateError,
    ledger_failure,
)
from ledger.base import AssetRef, LedgerError, LedgerGateway, PaymentOp, TransactionDraft
from lifecycle import LifecycleEngine
from models import Event, EventStatus, Investment, generate_id
from monitoring.logging import get_logger
from monitoring.metrics import MetricsCollector
from provisioning import WalletProvisioner, require_asset
from schemas import PurchaseRequest, RecordInvestmentRequest
from storage.base import SettlementStore, StorageIntegrityError

logger = get_logger(__name__)


def event_asset(event: Event) -> AssetRef:
    """The event's revenue-share token, issued by its custodial account."""
    return AssetRef(code=event.asset_code, issuer=event.custodial_public_key)


class InvestmentService:
    """Purchase transactions and investment records."""

    def __init__(
        self,
        store: SettlementStore,
        ledger: LedgerGateway,
        provisioner: WalletProvisioner,
        lifecycle: LifecycleEngine,
        config: SettlementConfig,
        metrics: MetricsCollector,
    ):
        self.store = store
        self.ledger = ledger
        self.provisioner = provisioner
        self.lifecycle = lifecycle
        self.config = config
        self.metrics = metrics

    def _require_funding_open(self, event: Event, operation: str) -> None:
        if event.status != EventStatus.FUNDING_OPEN:
            raise InvalidStateError(
                f"Event is not open for funding (status {event.status.value})",
                operation=operation,
                event_id=event.event_id,
            )

    def _require_supply(self, event: Event, token_amount: Decimal, operation: str) -> None:
        remaining = event.tokens_remaining
        if token_amount > remaining:
            raise InsufficientSupplyError(
                f"Only {remaining} tokens remaining, requested {token_amount}",
                operation=operation,
                event_id=event.event_id,
                details={"requested": str(token_amount), "remaining": str(remaining)},
            )

    def build_purchase_transaction(
        self, event_id: str, investor_address: str, token_amount: Decimal
    ) -> dict[str, Any]:
        """
        Build the partially signed atomic swap.

        Returns:
            Dict with the envelope (event signature only), the stable-currency
            cost rounded to ledger precision, and the asset being bought
        """
        operation = "build_purchase_transaction"
        event = self.store.require_event(event_id, operation)
        require_asset(event, operation)

        cost = quantize(token_amount * event.token_price)
        token = event_asset(event)

        try:
            account = self.ledger.load_account(investor_address)
            draft = TransactionDraft(
                source=investor_address,
                sequence=account.sequence,
                operations=[
                    PaymentOp(
                        destination=event.custodial_public_key,
                        asset=self.config.stable_asset,
                        amount=cost,
                        source=investor_address,
                    ),
                    PaymentOp(
                        destination=investor_address,
                        asset=token,
                        amount=quantize(token_amount),
                        source=event.custodial_public_key,
                    ),
                ],
                base_fee=self.config.base_fee,
                timeout_seconds=self.config.purchase_timeout,
            )
            envelope = self.provisioner.sign_as_event(event, self.ledger.build_envelope(draft))
        except LedgerError as e:
            raise ledger_failure(
                e, operation=operation, event_id=event_id, code=ErrorKind.TX_BUILD_FAILED
            ) from e

        logger.info(
            "Purchase transaction built",
            extra={"event_id": event_id, "investor": investor_address, "tokens": str(token_amount)},
        )
        return {
            "event_id": event_id,
            "investor_address": investor_address,
            "token_amount": format_amount(token_amount),
            "amount": format_amount(cost),
            "asset": token.to_dict(),
            "payment_asset": self.config.stable_asset.to_dict(),
            "envelope": envelope,
            "expires_in_seconds": self.config.purchase_timeout,
        }

    def purchase_tokens(self, request: PurchaseRequest) -> dict[str, Any]:
        """Check funding status and remaining supply, then build the swap."""
        operation = "purchase_tokens"
        event = self.store.require_event(request.event_id, operation)
        self._require_funding_open(event, operation)
        self._require_supply(event, request.token_amount, operation)
        return self.build_purchase_transaction(
            request.event_id, request.investor_address, request.token_amount
        )

    def record_investment(self, request: RecordInvestmentRequest) -> tuple[Investment, Event]:
        """
        Persist a confirmed purchase and add its tokens to the event.

        Moves the event to FUNDED when the supply is exhausted.

        Raises:
            DuplicateRecordError: If the transaction was already recorded
            InvalidStateError: If funding is not open
            InsufficientSupplyError: If the tokens exceed the remaining supply
        """
        operation = "record_investment"
        investment = Investment(
            investment_id=generate_id("inv_"),
            event_id=request.event_id,
            investor_address=request.investor_address,
            token_amount=request.token_amount,
            amount_paid=request.amount_paid,
            transaction_hash=request.transaction_hash,
        )

        with self.store.atomic():
            event = self.store.require_event(request.event_id, operation)
            if self.store.get_investment_by_reference(request.transaction_hash):
                raise DuplicateRecordError(
                    f"Investment already recorded for transaction {request.transaction_hash}",
                    operation=operation,
                    event_id=request.event_id,
                )
            self._require_funding_open(event, operation)
            self._require_supply(event, request.token_amount, operation)

            try:
                self.store.insert_investment(investment)
            except StorageIntegrityError as e:
                raise DuplicateRecordError(
                    str(e), operation=operation, event_id=request.event_id, cause=e
                ) from e

            event.total_tokens_issued += request.token_amount
            event.touch()
            if event.tokens_remaining <= 0:
                self.lifecycle.advance(event, EventStatus.FUNDED, operation)
            self.store.update_event(event)

        self.metrics.increment("investments_recorded_total")
        logger.info(
            "Investment recorded",
            extra={
                "event_id": event.event_id,
                "tokens": str(request.token_amount),
                "total_tokens_issued": str(event.total_tokens_issued),
                "status": event.status.value,
            },
        )
        return investment, event

    def list_investments(
        self, event_id: str | None = None, investor_address: str | None = None
    ) -> list[Investment]:
        return self.store.list_investments(event_id=event_id, investor_address=investor_address)
