"""
Abstract base class for settlement stores.

This module defines the interface that all persistence backends must
implement. The settlement core relies on two guarantees beyond plain
reads and writes:

- ``atomic()``: every write inside the block commits together or not at all
- Ticket settlement references (and investment references) are unique
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any

from errors import NotFoundError
from models import Distribution, DistributionStatus, Event, EventStatus, Investment, Ticket


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageConnectionError(StorageError):
    """Raised when connection to storage backend fails."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class StorageIntegrityError(StorageWriteError):
    """Raised when a write would violate a uniqueness constraint."""

    def __init__(self, message: str, field: str | None = None, value: str | None = None):
        super().__init__(message)
        self.field = field
        self.value = value


class SettlementStore(ABC):
    """
    Abstract base class for settlement record storage.

    Records are passed in and out as model objects; backends never hand
    out references to their internal state.
    """

    # =========================================================================
    # Events
    # =========================================================================

    @abstractmethod
    def get_event(self, event_id: str) -> Event | None:
        pass

    def require_event(self, event_id: str, operation: str) -> Event:
        """Fresh read of an event, or NotFoundError tagged with ``operation``."""
        event = self.get_event(event_id)
        if event is None:
            raise NotFoundError(
                f"Event not found: {event_id}", operation=operation, event_id=event_id
            )
        return event

    @abstractmethod
    def insert_event(self, event: Event) -> None:
        """
        Raises:
            StorageIntegrityError: If an event with the same id exists
        """
        pass

    @abstractmethod
    def update_event(self, event: Event) -> None:
        """
        Raises:
            StorageWriteError: If the event does not exist
        """
        pass

    @abstractmethod
    def delete_event(self, event_id: str) -> None:
        """Remove an event. Only used to reset a DRAFT before provisioning."""
        pass

    @abstractmethod
    def list_events(
        self, status: EventStatus | None = None, organizer_id: str | None = None
    ) -> list[Event]:
        """Events matching the filters, newest first."""
        pass

    # =========================================================================
    # Investments
    # =========================================================================

    @abstractmethod
    def insert_investment(self, investment: Investment) -> None:
        """
        Raises:
            StorageIntegrityError: If the transaction hash is already recorded
        """
        pass

    @abstractmethod
    def list_investments(
        self, event_id: str | None = None, investor_address: str | None = None
    ) -> list[Investment]:
        """Investments matching the filters, oldest first."""
        pass

    @abstractmethod
    def get_investment_by_reference(self, transaction_hash: str) -> Investment | None:
        pass

    # =========================================================================
    # Tickets
    # =========================================================================

    @abstractmethod
    def insert_ticket(self, ticket: Ticket) -> None:
        """
        Raises:
            StorageIntegrityError: If the ticket's transaction hash is already recorded
        """
        pass

    @abstractmethod
    def list_tickets(self, event_id: str) -> list[Ticket]:
        """Tickets for an event, oldest first."""
        pass

    @abstractmethod
    def get_ticket_by_reference(self, transaction_hash: str) -> Ticket | None:
        pass

    def count_tickets(self, event_id: str) -> int:
        return len(self.list_tickets(event_id))

    def ticket_references(self, event_id: str) -> set[str]:
        """Settlement references of every ticket recorded for an event."""
        return {t.transaction_hash for t in self.list_tickets(event_id) if t.transaction_hash}

    # =========================================================================
    # Distributions
    # =========================================================================

    @abstractmethod
    def insert_distribution(self, distribution: Distribution) -> None:
        pass

    @abstractmethod
    def update_distribution(self, distribution: Distribution) -> None:
        pass

    @abstractmethod
    def get_distribution(self, distribution_id: str) -> Distribution | None:
        pass

    @abstractmethod
    def list_distributions(
        self, event_id: str | None = None, status: DistributionStatus | None = None
    ) -> list[Distribution]:
        """Distributions matching the filters, newest first."""
        pass

    # =========================================================================
    # Transactions and housekeeping
    # =========================================================================

    @abstractmethod
    def atomic(self) -> AbstractContextManager:
        """
        Context manager grouping writes into one all-or-nothing unit.

        Nested ``atomic()`` blocks join the outermost one.
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        pass

    def get_info(self) -> dict[str, Any]:
        """
        Get information about the storage backend.

        Returns:
            Dictionary with backend type, status, and configuration
        """
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }

    def close(self) -> None:
        """
        Close the storage connection and release resources.

        Default implementation does nothing - backends with connections
        should override this.
        """
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
