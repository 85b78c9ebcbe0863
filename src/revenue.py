"""
EventShare - Revenue Ledger

Records ticket-sale proceeds against an event and reconciles them with
incoming stable-currency payments seen on the ledger.

Key Concepts:
- A ticket row and the event's revenue total are written together
- A ticket's settlement reference is unique, so reconciliation is idempotent
- Payout per token is zero, not an error, while no tokens are issued
"""

from typing import Any

from amounts import ZERO, percentage_of
from config import SettlementConfig
from errors import DuplicateRecordError, InvalidStateError, ledger_failure
from ledger.base import IncomingPayment, LedgerError, LedgerGateway
from models import REVENUE_STATES, Event, Ticket, generate_id
from monitoring.logging import get_logger
from monitoring.metrics import MetricsCollector
from provisioning import require_wallet
from schemas import TicketSaleRequest
from storage.base import SettlementStore, StorageIntegrityError

logger = get_logger(__name__)

DEFAULT_SYNC_LIMIT = 100


def require_revenue_state(event: Event, operation: str) -> None:
    if event.status not in REVENUE_STATES:
        raise InvalidStateError(
            f"Event must be FUNDED or LIVE, is {event.status.value}",
            operation=operation,
            event_id=event.event_id,
            details={"current": event.status.value},
        )


class RevenueLedger:
    """Ticket revenue accounting and on-ledger reconciliation."""

    def __init__(
        self,
        store: SettlementStore,
        ledger: LedgerGateway,
        config: SettlementConfig,
        metrics: MetricsCollector,
    ):
        self.store = store
        self.ledger = ledger
        self.config = config
        self.metrics = metrics

    def record_ticket_sale(self, request: TicketSaleRequest) -> tuple[Ticket, Event]:
        """
        Persist a ticket and add its proceeds to the event, atomically.

        Raises:
            InvalidStateError: Unless the event is FUNDED or LIVE
            DuplicateRecordError: If the settlement reference is already recorded
        """
        operation = "record_ticket_sale"
        ticket = Ticket(
            ticket_id=generate_id("tkt_"),
            event_id=request.event_id,
            buyer_address=request.buyer_address,
            amount_paid=request.amount_paid,
            transaction_hash=request.transaction_hash,
        )

        with self.store.atomic():
            event = self.store.require_event(request.event_id, operation)
            require_revenue_state(event, operation)
            try:
                self.store.insert_ticket(ticket)
            except StorageIntegrityError as e:
                raise DuplicateRecordError(
                    f"Ticket already recorded for transaction {request.transaction_hash}",
                    operation=operation,
                    event_id=request.event_id,
                    cause=e,
                ) from e
            event.total_revenue += request.amount_paid
            event.touch()
            self.store.update_event(event)

        self.metrics.increment("tickets_recorded_total")
        logger.info(
            "Ticket sale recorded",
            extra={"event_id": event.event_id, "amount": str(request.amount_paid)},
        )
        return ticket, event

    def get_revenue_stats(self, event_id: str) -> dict[str, Any]:
        event = self.store.require_event(event_id, "get_revenue_stats")
        distributable = percentage_of(event.total_revenue, event.revenue_share_pct)
        if event.total_tokens_issued > ZERO:
            payout_per_token = distributable / event.total_tokens_issued
        else:
            payout_per_token = ZERO

        return {
            "event_id": event_id,
            "total_revenue": str(event.total_revenue),
            "ticket_count": self.store.count_tickets(event_id),
            "revenue_share_pct": str(event.revenue_share_pct),
            "distributable_amount": str(distributable),
            "total_tokens_issued": str(event.total_tokens_issued),
            "payout_per_token": str(payout_per_token),
        }

    def fetch_recent_payments(self, event_id: str, limit: int = DEFAULT_SYNC_LIMIT) -> list[IncomingPayment]:
        """Most recent stable-currency payments received by the event wallet."""
        operation = "fetch_recent_payments"
        event = self.store.require_event(event_id, operation)
        require_wallet(event, operation)
        try:
            return self.ledger.fetch_incoming_payments(
                event.custodial_public_key, self.config.stable_asset, limit
            )
        except LedgerError as e:
            raise ledger_failure(e, operation=operation, event_id=event_id) from e

    def sync_payments(self, event_id: str, limit: int = DEFAULT_SYNC_LIMIT) -> dict[str, Any]:
        """
        Record every recent incoming payment not yet recorded as a ticket.

        Payments that settled an investment are not revenue and are skipped.
        Running it again with no new payments records nothing.
        """
        operation = "sync_payments"
        require_revenue_state(self.store.require_event(event_id, operation), operation)
        payments = self.fetch_recent_payments(event_id, limit)
        known = self.store.ticket_references(event_id)

        recorded = []
        skipped = 0
        # Oldest first so tickets are recorded in settlement order
        for payment in reversed(payments):
            ref = payment.transaction_hash
            if ref in known or self.store.get_investment_by_reference(ref):
                skipped += 1
                continue
            try:
                ticket, _ = self.record_ticket_sale(TicketSaleRequest(
                    event_id=event_id,
                    buyer_address=payment.from_address,
                    amount_paid=payment.amount,
                    transaction_hash=ref,
                ))
            except DuplicateRecordError:
                # Recorded concurrently since we read the references
                skipped += 1
                continue
            known.add(ref)
            recorded.append(ticket)

        self.metrics.increment("payments_synced_total", len(recorded))
        logger.info(
            "Payments synced",
            extra={"event_id": event_id, "fetched": len(payments), "recorded": len(recorded)},
        )
        return {
            "event_id": event_id,
            "fetched": len(payments),
            "recorded": len(recorded),
            "skipped": skipped,
            "tickets": [t.to_dict() for t in recorded],
        }

    def list_tickets(self, event_id: str) -> list[Ticket]:
        self.store.require_event(event_id, "list_tickets")
        return self.store.list_tickets(event_id)
