"""
EventShare - Payout Calculator & Batched Settlement Executor

Distributes an event's revenue share to its token holders.

Key Concepts:
- The calculation is a pure read of current on-ledger holder balances
- Each payout is rounded down to ledger precision, so the sum never
  exceeds the distributable amount
- Settlement is split into batches bounded by the ledger's per-transaction
  operation limit and submitted strictly in sequence
- The Distribution row is written before, during and after settlement:
  PENDING -> PROCESSING -> COMPLETED | FAILED
- Submitted batches are final. Each batch's payees are recorded on the
  row, and a later attempt for the same event only pays what earlier
  unfinished attempts did not
"""

import time
from collections.abc import Callable
from decimal import Decimal

from amounts import ZERO, percentage_of, quantize_down
from config import SettlementConfig
from errors import (
    EventShareError,
    NoHoldersError,
    NoTokensIssuedError,
    NotFoundError,
    NothingToDistributeError,
    ledger_failure,
)
from investment import event_asset
from ledger.base import LedgerError, LedgerGateway, PaymentOp, TransactionDraft
from lifecycle import LifecycleEngine
from models import (
    Distribution,
    DistributionStatus,
    Event,
    EventStatus,
    HolderPayout,
    PayoutCalculation,
    generate_id,
)
from monitoring.logging import LoggingContext, get_logger
from monitoring.metrics import MetricsCollector
from provisioning import WalletProvisioner, require_asset, require_wallet
from revenue import require_revenue_state
from storage.base import SettlementStore

logger = get_logger(__name__)


def batched(items: list, size: int) -> list[list]:
    """Split ``items`` into consecutive groups of at most ``size``."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


# =============================================================================
# Payout Calculator
# =============================================================================


class PayoutCalculator:
    """Computes the distributable pool and each holder's share."""

    def __init__(self, store: SettlementStore, ledger: LedgerGateway):
        self.store = store
        self.ledger = ledger

    def calculate_payout(self, event_id: str) -> PayoutCalculation:
        """
        Compute payouts from current holder balances. No side effects.

        Raises:
            AssetNotConfiguredError / WalletNotInitializedError: Preconditions
            NoTokensIssuedError: If no tokens have been issued
        """
        operation = "calculate_payout"
        event = self.store.require_event(event_id, operation)
        require_asset(event, operation)
        if event.total_tokens_issued <= ZERO:
            raise NoTokensIssuedError(
                "No tokens issued for this event", operation=operation, event_id=event_id
            )

        distributable = percentage_of(event.total_revenue, event.revenue_share_pct)
        payout_per_token = distributable / event.total_tokens_issued

        try:
            balances = self.ledger.query_asset_holders(event_asset(event))
        except LedgerError as e:
            raise ledger_failure(e, operation=operation, event_id=event_id) from e

        holders = [
            HolderPayout(
                address=h.address,
                balance=h.balance,
                payout=quantize_down(h.balance * payout_per_token),
            )
            for h in sorted(balances, key=lambda h: h.address)
            if h.address != event.custodial_public_key and h.balance > ZERO
        ]

        return PayoutCalculation(
            event_id=event_id,
            total_revenue=event.total_revenue,
            revenue_share_pct=event.revenue_share_pct,
            distributable_amount=distributable,
            total_tokens_issued=event.total_tokens_issued,
            payout_per_token=payout_per_token,
            holders=holders,
        )


# =============================================================================
# Batched Settlement Executor
# =============================================================================


class SettlementExecutor:
    """
    Submits a distribution as sequential payment batches.

    Assumes one distribution runs per event at a time; a concurrent run
    submitting with a stale sequence number is rejected by the ledger.
    """

    def __init__(
        self,
        store: SettlementStore,
        ledger: LedgerGateway,
        provisioner: WalletProvisioner,
        lifecycle: LifecycleEngine,
        calculator: PayoutCalculator,
        config: SettlementConfig,
        metrics: MetricsCollector,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.ledger = ledger
        self.provisioner = provisioner
        self.lifecycle = lifecycle
        self.calculator = calculator
        self.config = config
        self.metrics = metrics
        self._sleep = sleep

    @property
    def batch_size(self) -> int:
        return min(self.config.max_operations_per_tx, self.ledger.max_operations_per_tx)

    def previously_paid(self, event_id: str) -> dict[str, Decimal]:
        """Amounts already paid per holder by earlier unfinished attempts."""
        paid: dict[str, Decimal] = {}
        for attempt in self.store.list_distributions(event_id=event_id):
            if attempt.status == DistributionStatus.COMPLETED:
                continue
            for address, amount in attempt.paid_holders.items():
                paid[address] = paid.get(address, ZERO) + amount
        return paid

    def remaining_payouts(self, calculation: PayoutCalculation) -> list[HolderPayout]:
        """Fresh payouts net of earlier partial settlement, zero payouts dropped."""
        prior = self.previously_paid(calculation.event_id)
        payable = []
        for holder in calculation.holders:
            remaining = holder.payout - prior.get(holder.address, ZERO)
            if remaining > ZERO:
                payable.append(HolderPayout(holder.address, holder.balance, remaining))
        return payable

    def execute_distribution(self, event_id: str) -> Distribution:
        """
        Pay every holder their share and complete the event.

        Raises:
            InvalidStateError / WalletNotInitializedError: Preconditions
            NoHoldersError / NothingToDistributeError: Terminal, no row written
            SettlementError / NetworkError: A batch failed; the row is FAILED
        """
        operation = "execute_distribution"
        started = time.perf_counter()

        with LoggingContext(event_id=event_id, operation=operation):
            event = self.store.require_event(event_id, operation)
            require_revenue_state(event, operation)
            require_wallet(event, operation)

            calculation = self.calculator.calculate_payout(event_id)
            if not calculation.holders:
                raise NoHoldersError("Event has no token holders", operation=operation, event_id=event_id)
            if calculation.distributable_amount <= ZERO:
                raise NothingToDistributeError(
                    "Distributable amount is zero", operation=operation, event_id=event_id
                )
            if not any(h.payout > ZERO for h in calculation.holders):
                raise NothingToDistributeError(
                    "No valid payouts to process: every holder share rounds to zero",
                    operation=operation,
                    event_id=event_id,
                )

            payable = self.remaining_payouts(calculation)

            distribution = Distribution(
                distribution_id=generate_id("dist_"),
                event_id=event_id,
                total_amount=calculation.distributable_amount,
                payout_per_token=calculation.payout_per_token,
                holders_count=len(payable),
            )
            self.store.insert_distribution(distribution)
            logger.info(
                "Distribution created",
                extra={"distribution_id": distribution.distribution_id, "holders": len(payable)},
            )

            # PROCESSING is durable before any ledger call; if this write fails
            # the row stays PENDING, meaning no money moved
            distribution.advance(DistributionStatus.PROCESSING)
            try:
                self.store.update_distribution(distribution)
            except Exception:
                self.metrics.increment("distributions_total", labels={"status": "failed"})
                logger.error(
                    "Could not mark distribution PROCESSING; left PENDING",
                    extra={"distribution_id": distribution.distribution_id},
                )
                raise

            try:
                batches = batched(payable, self.batch_size)
                for number, batch in enumerate(batches, start=1):
                    if number > 1:
                        self._sleep(self.config.batch_pause_seconds)
                    self._submit_batch(event, distribution, batch, number, len(batches))

                self._complete(event_id, distribution, operation)
            except Exception as e:
                self._mark_failed(distribution.distribution_id, e)
                self.metrics.increment("distributions_total", labels={"status": "failed"})
                if isinstance(e, LedgerError):
                    raise ledger_failure(e, operation=operation, event_id=event_id) from e
                if isinstance(e, EventShareError):
                    raise e.with_context(operation, event_id)
                raise

            elapsed_ms = (time.perf_counter() - started) * 1000
            self.metrics.increment("distributions_total", labels={"status": "completed"})
            self.metrics.timing("distribution_duration_ms", elapsed_ms)
            logger.info(
                "Distribution completed",
                extra={
                    "distribution_id": distribution.distribution_id,
                    "batches": len(distribution.batch_hashes),
                    "amount_paid": str(distribution.amount_paid),
                    "duration_ms": round(elapsed_ms, 2),
                },
            )
            return distribution

    def _submit_batch(
        self,
        event: Event,
        distribution: Distribution,
        batch: list[HolderPayout],
        number: int,
        total: int,
    ) -> None:
        started = time.perf_counter()
        try:
            # Reload every time: the previous batch consumed a sequence number
            account = self.ledger.load_account(event.custodial_public_key)
            draft = TransactionDraft(
                source=event.custodial_public_key,
                sequence=account.sequence,
                operations=[
                    PaymentOp(destination=h.address, asset=self.config.stable_asset, amount=h.payout)
                    for h in batch
                ],
                base_fee=self.config.base_fee,
                timeout_seconds=self.config.payout_timeout,
            )
            envelope = self.provisioner.sign_as_event(event, self.ledger.build_envelope(draft))
            result = self.ledger.submit(envelope)
        except Exception:
            self.metrics.increment("settlement_batches_total", labels={"outcome": "failed"})
            logger.warning(
                "Settlement batch %d/%d failed", number, total,
                extra={"distribution_id": distribution.distribution_id, "batch": number},
            )
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.metrics.increment("settlement_batches_total", labels={"outcome": "submitted"})
        self.metrics.timing("settlement_batch_duration_ms", elapsed_ms)

        distribution.transaction_hash = result.transaction_hash
        distribution.batch_hashes.append(result.transaction_hash)
        for holder in batch:
            distribution.paid_holders[holder.address] = holder.payout
        self.store.update_distribution(distribution)

        logger.info(
            "Settlement batch %d/%d submitted", number, total,
            extra={
                "distribution_id": distribution.distribution_id,
                "batch": number,
                "operations": len(batch),
                "tx_hash": result.transaction_hash,
                "duration_ms": round(elapsed_ms, 2),
            },
        )

    def _complete(self, event_id: str, distribution: Distribution, operation: str) -> None:
        """Distribution and event reach COMPLETED in one write."""
        completed = Distribution.from_dict(distribution.to_dict())
        completed.advance(DistributionStatus.COMPLETED)
        with self.store.atomic():
            event = self.store.require_event(event_id, operation)
            self.lifecycle.advance(event, EventStatus.COMPLETED, operation)
            self.store.update_distribution(completed)
            self.store.update_event(event)
        distribution.status = completed.status
        distribution.completed_at = completed.completed_at

    def _mark_failed(self, distribution_id: str, error: Exception) -> None:
        """Best effort; a failure here is logged and never replaces ``error``."""
        try:
            current = self.store.get_distribution(distribution_id)
            if current is None or current.status != DistributionStatus.PROCESSING:
                return
            current.error = str(error)
            current.advance(DistributionStatus.FAILED)
            self.store.update_distribution(current)
        except Exception:
            logger.exception(
                "Could not mark distribution FAILED",
                extra={"distribution_id": distribution_id},
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def list_distributions(self, event_id: str) -> list[Distribution]:
        """Every attempt for an event, newest first."""
        self.store.require_event(event_id, "list_distributions")
        return self.store.list_distributions(event_id=event_id)

    def get_distribution(self, distribution_id: str) -> Distribution:
        distribution = self.store.get_distribution(distribution_id)
        if distribution is None:
            raise NotFoundError(
                f"Distribution not found: {distribution_id}", operation="get_distribution"
            )
        return distribution
