"""
EventShare - Event Lifecycle Engine

Owns the event state machine:

    DRAFT -> WALLET_CREATED -> FUNDING_OPEN -> FUNDED -> LIVE -> COMPLETED
                                               FUNDED -----------> COMPLETED

Every guard is checked against a fresh read of the event immediately
before the write that depends on it.
"""

import re

from config import SettlementConfig
from errors import (
    ErrorKind,
    InvalidStateError,
    NetworkMismatchError,
    WalletNotInitializedError,
    ledger_failure,
)
from ledger.base import LedgerError, LedgerGateway
from models import Event, EventStatus, can_transition, generate_id
from monitoring.logging import get_logger
from monitoring.metrics import MetricsCollector
from provisioning import WalletProvisioner
from schemas import CreateEventRequest
from storage.base import SettlementStore

logger = get_logger(__name__)

_NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")


def derive_asset_code(event_id: str, prefix: str = "EVT", suffix_length: int = 8) -> str:
    """Fixed prefix plus the event id with non-alphanumerics removed, truncated, uppercased."""
    return prefix + _NON_ALPHANUMERIC.sub("", event_id)[:suffix_length].upper()


class LifecycleEngine:
    """Validates and performs every event state transition."""

    def __init__(
        self,
        store: SettlementStore,
        ledger: LedgerGateway,
        provisioner: WalletProvisioner,
        config: SettlementConfig,
        metrics: MetricsCollector,
    ):
        self.store = store
        self.ledger = ledger
        self.provisioner = provisioner
        self.config = config
        self.metrics = metrics

    def advance(self, event: Event, target: EventStatus, operation: str) -> None:
        """
        Move ``event`` to ``target`` in memory; the caller persists it.

        Raises:
            InvalidStateError: If the transition graph does not allow it
        """
        if not can_transition(event.status, target):
            raise InvalidStateError(
                f"Cannot move event from {event.status.value} to {target.value}",
                operation=operation,
                event_id=event.event_id,
                details={"current": event.status.value, "target": target.value},
            )
        previous = event.status
        event.status = target
        event.touch()
        self.metrics.increment(
            "lifecycle_transitions_total",
            labels={"from": previous.value, "to": target.value},
        )
        logger.info(
            "Event %s: %s -> %s", event.event_id, previous.value, target.value,
            extra={"event_id": event.event_id, "operation": operation},
        )

    def _require_status(self, event: Event, expected: EventStatus, operation: str) -> None:
        if event.status != expected:
            raise InvalidStateError(
                f"Event must be {expected.value}, is {event.status.value}",
                operation=operation,
                event_id=event.event_id,
                details={"current": event.status.value, "required": expected.value},
            )

    # =========================================================================
    # Operations
    # =========================================================================

    def create_event(self, request: CreateEventRequest) -> Event:
        """
        Create an event in DRAFT.

        With ``replace_draft`` and an existing ``event_id``, a DRAFT event is
        replaced in place; any other status is an InvalidStateError.
        """
        operation = "create_event"
        event = Event(
            event_id=request.event_id or generate_id(),
            name=request.name,
            description=request.description,
            organizer_id=request.organizer_id,
            funding_goal=request.funding_goal,
            token_price=request.token_price,
            revenue_share_pct=request.revenue_share_pct,
            ticket_price=request.ticket_price,
        )

        with self.store.atomic():
            existing = self.store.get_event(event.event_id)
            if existing is not None:
                if not request.replace_draft:
                    raise InvalidStateError(
                        f"Event already exists: {event.event_id}",
                        operation=operation,
                        event_id=event.event_id,
                    )
                self._require_status(existing, EventStatus.DRAFT, operation)
                event.created_at = existing.created_at
                self.store.delete_event(event.event_id)
            self.store.insert_event(event)

        logger.info("Event created", extra={"event_id": event.event_id, "replaced": existing is not None})
        return event

    def initialize_wallet(self, event_id: str) -> Event:
        """Generate and store the custodial wallet, derive the asset code, move to WALLET_CREATED."""
        operation = "initialize_wallet"
        self._require_status(self.store.require_event(event_id, operation), EventStatus.DRAFT, operation)

        # Key generation and encryption happen outside the write transaction
        public_key, encrypted_secret = self.provisioner.create_event_wallet()

        with self.store.atomic():
            event = self.store.require_event(event_id, operation)
            self._require_status(event, EventStatus.DRAFT, operation)
            if event.custodial_public_key:
                raise InvalidStateError(
                    "Custodial wallet already set", operation=operation, event_id=event_id
                )
            event.custodial_public_key = public_key
            event.custodial_secret_encrypted = encrypted_secret
            event.asset_code = derive_asset_code(
                event_id,
                self.config.asset_code_prefix,
                self.config.asset_code_suffix_length,
            )
            self.advance(event, EventStatus.WALLET_CREATED, operation)
            self.store.update_event(event)

        logger.info(
            "Custodial wallet initialized",
            extra={"event_id": event_id, "public_key": public_key, "asset_code": event.asset_code},
        )
        return event

    def fund_wallet(self, event_id: str) -> dict:
        """Fund the custodial account from the test-network faucet."""
        operation = "fund_wallet"
        event = self.store.require_event(event_id, operation)
        if not event.custodial_public_key:
            raise WalletNotInitializedError(
                "Event wallet not initialized", operation=operation, event_id=event_id
            )
        if not self.ledger.is_test_network:
            raise NetworkMismatchError(
                f"Test funding is unavailable on {self.ledger.network}",
                operation=operation,
                event_id=event_id,
            )

        try:
            self.ledger.fund_test_account(event.custodial_public_key)
        except LedgerError as e:
            raise ledger_failure(
                e, operation=operation, event_id=event_id, code=ErrorKind.FUNDING_FAILED
            ) from e

        logger.info("Custodial wallet funded", extra={"event_id": event_id})
        return {"event_id": event_id, "public_key": event.custodial_public_key, "funded": True}

    def open_funding(self, event_id: str) -> Event:
        return self._transition(event_id, EventStatus.WALLET_CREATED, EventStatus.FUNDING_OPEN, "open_funding")

    def open_ticket_sales(self, event_id: str) -> Event:
        """Operator action: a funded event starts selling tickets."""
        return self._transition(event_id, EventStatus.FUNDED, EventStatus.LIVE, "open_ticket_sales")

    def _transition(self, event_id: str, expected: EventStatus, target: EventStatus, operation: str) -> Event:
        with self.store.atomic():
            event = self.store.require_event(event_id, operation)
            self._require_status(event, expected, operation)
            self.advance(event, target, operation)
            self.store.update_event(event)
        return event

    # =========================================================================
    # Queries
    # =========================================================================

    def get_event(self, event_id: str) -> Event:
        return self.store.require_event(event_id, "get_event")

    def list_events(
        self, status: EventStatus | None = None, organizer_id: str | None = None
    ) -> list[Event]:
        return self.store.list_events(status=status, organizer_id=organizer_id)
