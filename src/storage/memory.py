"""
In-memory settlement store.

This backend keeps every record in memory only, useful for:
- Unit testing
- Development and the demo walk-through
- Base class for the JSON file backend
"""

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from models import Distribution, DistributionStatus, Event, EventStatus, Investment, Ticket
from storage.base import SettlementStore, StorageIntegrityError, StorageWriteError


class MemoryStore(SettlementStore):
    """
    In-memory settlement store.

    All data is lost when the process exits. Thread-safe operations;
    an ``atomic()`` block holds the store lock and restores a snapshot if
    the block raises.
    """

    def __init__(self):
        self._data: dict[str, Any] = self._empty()
        # RLock so writes made inside atomic() re-enter the lock
        self._lock = threading.RLock()
        self._local = threading.local()

    @staticmethod
    def _empty() -> dict[str, Any]:
        return {
            "events": {},
            "investments": [],
            "tickets": [],
            "distributions": {},
        }

    # =========================================================================
    # Transactions
    # =========================================================================

    @property
    def _depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            snapshot = copy.deepcopy(self._data) if outermost else None
            self._local.depth = self._depth + 1
            try:
                yield
            except BaseException:
                if outermost:
                    self._data = snapshot
                raise
            finally:
                self._local.depth -= 1
            if outermost:
                self._commit()

    def _written(self) -> None:
        """Called after every write; commits immediately outside atomic()."""
        if self._depth == 0:
            self._commit()

    def _commit(self) -> None:
        """Hook for persistent subclasses. Memory has nothing to flush."""
        pass

    # =========================================================================
    # Events
    # =========================================================================

    def get_event(self, event_id: str) -> Event | None:
        with self._lock:
            row = self._data["events"].get(event_id)
            return Event.from_dict(row) if row else None

    def insert_event(self, event: Event) -> None:
        with self._lock:
            if event.event_id in self._data["events"]:
                raise StorageIntegrityError(
                    f"Event already exists: {event.event_id}", "event_id", event.event_id
                )
            self._data["events"][event.event_id] = event.to_dict(include_secret=True)
            self._written()

    def update_event(self, event: Event) -> None:
        with self._lock:
            if event.event_id not in self._data["events"]:
                raise StorageWriteError(f"Event not found: {event.event_id}")
            self._data["events"][event.event_id] = event.to_dict(include_secret=True)
            self._written()

    def delete_event(self, event_id: str) -> None:
        with self._lock:
            self._data["events"].pop(event_id, None)
            self._written()

    def list_events(
        self, status: EventStatus | None = None, organizer_id: str | None = None
    ) -> list[Event]:
        with self._lock:
            events = [Event.from_dict(row) for row in reversed(self._data["events"].values())]
        if status is not None:
            events = [e for e in events if e.status == status]
        if organizer_id is not None:
            events = [e for e in events if e.organizer_id == organizer_id]
        return events

    # =========================================================================
    # Investments
    # =========================================================================

    def insert_investment(self, investment: Investment) -> None:
        with self._lock:
            for row in self._data["investments"]:
                if row["transaction_hash"] == investment.transaction_hash:
                    raise StorageIntegrityError(
                        f"Investment already recorded for transaction {investment.transaction_hash}",
                        "transaction_hash",
                        investment.transaction_hash,
                    )
            self._data["investments"].append(investment.to_dict())
            self._written()

    def list_investments(
        self, event_id: str | None = None, investor_address: str | None = None
    ) -> list[Investment]:
        with self._lock:
            rows = list(self._data["investments"])
        return [
            Investment.from_dict(row)
            for row in rows
            if (event_id is None or row["event_id"] == event_id)
            and (investor_address is None or row["investor_address"] == investor_address)
        ]

    def get_investment_by_reference(self, transaction_hash: str) -> Investment | None:
        with self._lock:
            for row in self._data["investments"]:
                if row["transaction_hash"] == transaction_hash:
                    return Investment.from_dict(row)
        return None

    # =========================================================================
    # Tickets
    # =========================================================================

    def insert_ticket(self, ticket: Ticket) -> None:
        with self._lock:
            if ticket.transaction_hash:
                for row in self._data["tickets"]:
                    if row["transaction_hash"] == ticket.transaction_hash:
                        raise StorageIntegrityError(
                            f"Ticket already recorded for transaction {ticket.transaction_hash}",
                            "transaction_hash",
                            ticket.transaction_hash,
                        )
            self._data["tickets"].append(ticket.to_dict())
            self._written()

    def list_tickets(self, event_id: str) -> list[Ticket]:
        with self._lock:
            return [
                Ticket.from_dict(row)
                for row in self._data["tickets"]
                if row["event_id"] == event_id
            ]

    def get_ticket_by_reference(self, transaction_hash: str) -> Ticket | None:
        with self._lock:
            for row in self._data["tickets"]:
                if row["transaction_hash"] == transaction_hash:
                    return Ticket.from_dict(row)
        return None

    # =========================================================================
    # Distributions
    # =========================================================================

    def insert_distribution(self, distribution: Distribution) -> None:
        with self._lock:
            if distribution.distribution_id in self._data["distributions"]:
                raise StorageIntegrityError(
                    f"Distribution already exists: {distribution.distribution_id}",
                    "distribution_id",
                    distribution.distribution_id,
                )
            self._data["distributions"][distribution.distribution_id] = distribution.to_dict()
            self._written()

    def update_distribution(self, distribution: Distribution) -> None:
        with self._lock:
            if distribution.distribution_id not in self._data["distributions"]:
                raise StorageWriteError(f"Distribution not found: {distribution.distribution_id}")
            self._data["distributions"][distribution.distribution_id] = distribution.to_dict()
            self._written()

    def get_distribution(self, distribution_id: str) -> Distribution | None:
        with self._lock:
            row = self._data["distributions"].get(distribution_id)
            return Distribution.from_dict(row) if row else None

    def list_distributions(
        self, event_id: str | None = None, status: DistributionStatus | None = None
    ) -> list[Distribution]:
        with self._lock:
            rows = list(reversed(self._data["distributions"].values()))
        return [
            Distribution.from_dict(row)
            for row in rows
            if (event_id is None or row["event_id"] == event_id)
            and (status is None or row["status"] == status.value)
        ]

    # =========================================================================
    # Housekeeping
    # =========================================================================

    def is_available(self) -> bool:
        """Memory storage is always available."""
        return True

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        with self._lock:
            info.update({
                "event_count": len(self._data["events"]),
                "investment_count": len(self._data["investments"]),
                "ticket_count": len(self._data["tickets"]),
                "distribution_count": len(self._data["distributions"]),
            })
        return info

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._data = self._empty()
            self._written()
