"""
EventShare - Caller-Facing Service

``EventShareService`` is the single entry point for the API and CLI.
Every operation returns ``(success, payload)``:

    ok, data = service.create_event({...})
    if not ok:
        error = data["error"]          # kind, category, message, recoverable, ...
        if error["recoverable"]:
            ...retry later...

Components raise typed errors; this facade attaches operation context and
turns them into structured results. ``build_services`` wires every
component with its dependencies; there is no module-level state.
"""

import time
from collections.abc import Callable
from typing import Any

from config import SettlementConfig
from distribution import PayoutCalculator, SettlementExecutor
from errors import (
    DuplicateRecordError,
    EventShareError,
    PersistenceError,
    ValidationError,
    ledger_failure,
)
from investment import InvestmentService
from ledger import LedgerError, LedgerGateway, get_ledger_gateway
from lifecycle import LifecycleEngine
from models import EventStatus
from monitoring.logging import get_logger
from monitoring.metrics import MetricsCollector
from provisioning import WalletProvisioner
from revenue import DEFAULT_SYNC_LIMIT, RevenueLedger
from schemas import CreateEventRequest, PurchaseRequest, RecordInvestmentRequest, TicketSaleRequest
from storage import SettlementStore, StorageError, StorageIntegrityError, get_settlement_store
from vault import SecretVault

logger = get_logger(__name__)

Result = tuple[bool, dict[str, Any]]


class EventShareService:
    """Caller-facing operations over the settlement core."""

    def __init__(
        self,
        config: SettlementConfig,
        store: SettlementStore,
        ledger: LedgerGateway,
        vault: SecretVault,
        metrics: MetricsCollector,
        lifecycle: LifecycleEngine,
        provisioner: WalletProvisioner,
        investments: InvestmentService,
        revenue: RevenueLedger,
        calculator: PayoutCalculator,
        executor: SettlementExecutor,
    ):
        self.config = config
        self.store = store
        self.ledger = ledger
        self.vault = vault
        self.metrics = metrics
        self.lifecycle = lifecycle
        self.provisioner = provisioner
        self.investments = investments
        self.revenue = revenue
        self.calculator = calculator
        self.executor = executor

    # =========================================================================
    # Result handling
    # =========================================================================

    def _run(self, operation: str, fn: Callable[[], dict[str, Any]], event_id: str | None = None) -> Result:
        try:
            return True, fn()
        except EventShareError as e:
            error = e.with_context(operation, event_id)
        except StorageIntegrityError as e:
            error = DuplicateRecordError(str(e), operation=operation, event_id=event_id, cause=e)
        except StorageError as e:
            error = PersistenceError(
                f"Storage failure: {e}", operation=operation, event_id=event_id, cause=e
            )
        except LedgerError as e:
            error = ledger_failure(e, operation=operation, event_id=event_id)
        except Exception as e:
            logger.exception("Unexpected error in %s", operation, extra={"event_id": event_id})
            error = EventShareError(
                "Internal error", operation=operation, event_id=event_id, cause=e
            )

        log = logger.warning if error.category.value in ("settlement", "infrastructure") else logger.info
        log(
            "%s failed: %s", operation, error.message,
            extra={"event_id": event_id, "kind": error.kind.value, "recoverable": error.recoverable},
        )
        return False, {"error": error.to_dict()}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_event(self, data: dict[str, Any]) -> Result:
        def run():
            event = self.lifecycle.create_event(CreateEventRequest.from_dict(data))
            return {"event": event.to_dict()}
        return self._run("create_event", run, data.get("event_id"))

    def get_event(self, event_id: str) -> Result:
        return self._run("get_event", lambda: {"event": self.lifecycle.get_event(event_id).to_dict()}, event_id)

    def list_events(self, status: str | None = None, organizer_id: str | None = None) -> Result:
        def run():
            status_filter = None
            if status:
                try:
                    status_filter = EventStatus(status.upper())
                except ValueError as e:
                    raise ValidationError(f"Unknown status: {status}", details={"field": "status"}) from e
            events = self.lifecycle.list_events(status=status_filter, organizer_id=organizer_id)
            return {"events": [e.to_dict() for e in events], "count": len(events)}
        return self._run("list_events", run)

    def initialize_wallet(self, event_id: str) -> Result:
        return self._run(
            "initialize_wallet",
            lambda: {"event": self.lifecycle.initialize_wallet(event_id).to_dict()},
            event_id,
        )

    def fund_wallet(self, event_id: str) -> Result:
        return self._run("fund_wallet", lambda: self.lifecycle.fund_wallet(event_id), event_id)

    def open_funding(self, event_id: str) -> Result:
        return self._run(
            "open_funding", lambda: {"event": self.lifecycle.open_funding(event_id).to_dict()}, event_id
        )

    def setup_asset(self, event_id: str) -> Result:
        def run():
            tx_hash = self.provisioner.setup_event_asset(event_id)
            return {"event_id": event_id, "transaction_hash": tx_hash}
        return self._run("setup_event_asset", run, event_id)

    def open_ticket_sales(self, event_id: str) -> Result:
        return self._run(
            "open_ticket_sales",
            lambda: {"event": self.lifecycle.open_ticket_sales(event_id).to_dict()},
            event_id,
        )

    # =========================================================================
    # Investment
    # =========================================================================

    def build_purchase_transaction(self, data: dict[str, Any]) -> Result:
        def run():
            request = PurchaseRequest.from_dict(data)
            return self.investments.build_purchase_transaction(
                request.event_id, request.investor_address, request.token_amount
            )
        return self._run("build_purchase_transaction", run, data.get("event_id"))

    def purchase_tokens(self, data: dict[str, Any]) -> Result:
        return self._run(
            "purchase_tokens",
            lambda: self.investments.purchase_tokens(PurchaseRequest.from_dict(data)),
            data.get("event_id"),
        )

    def record_investment(self, data: dict[str, Any]) -> Result:
        def run():
            investment, event = self.investments.record_investment(RecordInvestmentRequest.from_dict(data))
            return {"investment": investment.to_dict(), "event": event.to_dict()}
        return self._run("record_investment", run, data.get("event_id"))

    def list_investments(self, event_id: str | None = None, investor_address: str | None = None) -> Result:
        def run():
            if event_id:
                self.store.require_event(event_id, "list_investments")
            items = self.investments.list_investments(event_id, investor_address)
            return {"investments": [i.to_dict() for i in items], "count": len(items)}
        return self._run("list_investments", run, event_id)

    # =========================================================================
    # Revenue
    # =========================================================================

    def record_ticket_sale(self, data: dict[str, Any]) -> Result:
        def run():
            ticket, event = self.revenue.record_ticket_sale(TicketSaleRequest.from_dict(data))
            return {"ticket": ticket.to_dict(), "event": event.to_dict()}
        return self._run("record_ticket_sale", run, data.get("event_id"))

    def list_tickets(self, event_id: str) -> Result:
        def run():
            tickets = self.revenue.list_tickets(event_id)
            return {"tickets": [t.to_dict() for t in tickets], "count": len(tickets)}
        return self._run("list_tickets", run, event_id)

    def fetch_recent_payments(self, event_id: str, limit: int = DEFAULT_SYNC_LIMIT) -> Result:
        def run():
            payments = self.revenue.fetch_recent_payments(event_id, limit)
            return {"payments": [p.to_dict() for p in payments], "count": len(payments)}
        return self._run("fetch_recent_payments", run, event_id)

    def sync_payments(self, event_id: str) -> Result:
        return self._run("sync_payments", lambda: self.revenue.sync_payments(event_id), event_id)

    def get_revenue_stats(self, event_id: str) -> Result:
        return self._run("get_revenue_stats", lambda: self.revenue.get_revenue_stats(event_id), event_id)

    # =========================================================================
    # Distribution
    # =========================================================================

    def calculate_payout(self, event_id: str) -> Result:
        return self._run(
            "calculate_payout", lambda: self.calculator.calculate_payout(event_id).to_dict(), event_id
        )

    def execute_distribution(self, event_id: str) -> Result:
        return self._run(
            "execute_distribution",
            lambda: {"distribution": self.executor.execute_distribution(event_id).to_dict()},
            event_id,
        )

    def list_distributions(self, event_id: str) -> Result:
        def run():
            items = self.executor.list_distributions(event_id)
            return {"distributions": [d.to_dict() for d in items], "count": len(items)}
        return self._run("list_distributions", run, event_id)

    def get_distribution(self, distribution_id: str) -> Result:
        return self._run(
            "get_distribution",
            lambda: {"distribution": self.executor.get_distribution(distribution_id).to_dict()},
        )

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def health(self) -> dict[str, Any]:
        storage_ok = self.store.is_available()
        ledger_ok = self.ledger.is_available()
        return {
            "status": "healthy" if storage_ok and ledger_ok else "degraded",
            "storage": self.store.get_info(),
            "ledger": self.ledger.get_info(),
            "vault_configured": self.vault.is_configured,
            "network": self.config.network,
        }

    def close(self) -> None:
        self.ledger.close()
        self.store.close()


def build_services(
    config: SettlementConfig,
    store: SettlementStore | None = None,
    ledger: LedgerGateway | None = None,
    vault: SecretVault | None = None,
    metrics: MetricsCollector | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> EventShareService:
    """
    Construct every component with its dependencies injected.

    Collaborators not passed in are built from ``config``.
    """
    store = store or get_settlement_store(config)
    ledger = ledger or get_ledger_gateway(config)
    vault = vault or SecretVault(config.vault_key, iterations=config.vault_iterations)
    metrics = metrics or MetricsCollector()

    provisioner = WalletProvisioner(store, ledger, vault, config)
    lifecycle = LifecycleEngine(store, ledger, provisioner, config, metrics)
    investments = InvestmentService(store, ledger, provisioner, lifecycle, config, metrics)
    revenue = RevenueLedger(store, ledger, config, metrics)
    calculator = PayoutCalculator(store, ledger)
    executor = SettlementExecutor(
        store, ledger, provisioner, lifecycle, calculator, config, metrics, sleep=sleep
    )

    logger.info("Services initialized", extra={"config": config.to_dict()})
    return EventShareService(
        config=config,
        store=store,
        ledger=ledger,
        vault=vault,
        metrics=metrics,
        lifecycle=lifecycle,
        provisioner=provisioner,
        investments=investments,
        revenue=revenue,
        calculator=calculator,
        executor=executor,
    )
