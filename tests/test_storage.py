"""
Tests for storage backends.
"""

import json
import os
import sys
import threading
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from config import SettlementConfig
from errors import NotFoundError
from models import Distribution, DistributionStatus, Event, EventStatus, Investment, Ticket
from storage import (
    JSONFileStore,
    MemoryStore,
    StorageError,
    StorageIntegrityError,
    StorageReadError,
    StorageWriteError,
    get_settlement_store,
)


def _event(event_id="evt-1", **overrides):
    fields = {
        "event_id": event_id,
        "name": "Harbor Lights Festival",
        "funding_goal": Decimal("2500"),
        "token_price": Decimal("10"),
        "revenue_share_pct": Decimal("30"),
    }
    fields.update(overrides)
    return Event(**fields)


def _investment(tx_hash="tx-1", event_id="evt-1", investor="GALICE", tokens="50"):
    return Investment(
        investment_id=f"inv-{tx_hash}",
        event_id=event_id,
        investor_address=investor,
        token_amount=Decimal(tokens),
        amount_paid=Decimal(tokens) * 10,
        transaction_hash=tx_hash,
    )


def _ticket(tx_hash=None, event_id="evt-1", ticket_id=None):
    return Ticket(
        ticket_id=ticket_id or f"tkt-{tx_hash}",
        event_id=event_id,
        buyer_address="GBUYER",
        amount_paid=Decimal("15"),
        transaction_hash=tx_hash,
    )


def _distribution(distribution_id="dist-1", event_id="evt-1"):
    return Distribution(
        distribution_id=distribution_id,
        event_id=event_id,
        total_amount=Decimal("45"),
        payout_per_token=Decimal("0.18"),
    )


@pytest.fixture(params=["memory", "json"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return JSONFileStore(str(tmp_path / "data.json"))


class TestEvents:
    def test_insert_and_get(self, any_store):
        any_store.insert_event(_event(custodial_secret_encrypted="ciphertext"))

        event = any_store.get_event("evt-1")

        assert event.name == "Harbor Lights Festival"
        assert event.funding_goal == Decimal("2500")
        assert event.custodial_secret_encrypted == "ciphertext"

    def test_missing_event(self, any_store):
        assert any_store.get_event("missing") is None

    def test_require_event_raises_not_found(self, any_store):
        with pytest.raises(NotFoundError):
            any_store.require_event("missing", "get_event")

    def test_duplicate_insert(self, any_store):
        any_store.insert_event(_event())

        with pytest.raises(StorageIntegrityError) as exc_info:
            any_store.insert_event(_event())

        assert exc_info.value.field == "event_id"

    def test_update_requires_existing(self, any_store):
        with pytest.raises(StorageWriteError):
            any_store.update_event(_event())

    def test_returned_events_are_copies(self, any_store):
        any_store.insert_event(_event())

        event = any_store.get_event("evt-1")
        event.total_revenue = Decimal("999")

        assert any_store.get_event("evt-1").total_revenue == 0

    def test_list_newest_first_with_filters(self, any_store):
        any_store.insert_event(_event("evt-1", organizer_id="org-1"))
        any_store.insert_event(_event("evt-2", organizer_id="org-2", status=EventStatus.FUNDED))
        any_store.insert_event(_event("evt-3", organizer_id="org-1"))

        assert [e.event_id for e in any_store.list_events()] == ["evt-3", "evt-2", "evt-1"]
        assert [e.event_id for e in any_store.list_events(organizer_id="org-1")] == ["evt-3", "evt-1"]
        assert [e.event_id for e in any_store.list_events(status=EventStatus.FUNDED)] == ["evt-2"]

    def test_delete(self, any_store):
        any_store.insert_event(_event())

        any_store.delete_event("evt-1")

        assert any_store.get_event("evt-1") is None


class TestReferences:
    def test_investment_reference_unique(self, any_store):
        any_store.insert_investment(_investment("tx-1"))

        with pytest.raises(StorageIntegrityError):
            any_store.insert_investment(_investment("tx-1", investor="GBOB"))

        assert any_store.get_investment_by_reference("tx-1").investor_address == "GALICE"

    def test_list_investments_filters(self, any_store):
        any_store.insert_investment(_investment("tx-1", investor="GALICE"))
        any_store.insert_investment(_investment("tx-2", investor="GBOB"))
        any_store.insert_investment(_investment("tx-3", event_id="evt-2"))

        assert len(any_store.list_investments(event_id="evt-1")) == 2
        assert len(any_store.list_investments(investor_address="GBOB")) == 1

    def test_ticket_reference_unique(self, any_store):
        any_store.insert_ticket(_ticket("pay-1"))

        with pytest.raises(StorageIntegrityError):
            any_store.insert_ticket(_ticket("pay-1", ticket_id="tkt-other"))

    def test_tickets_without_reference(self, any_store):
        any_store.insert_ticket(_ticket(ticket_id="tkt-a"))
        any_store.insert_ticket(_ticket(ticket_id="tkt-b"))

        assert any_store.count_tickets("evt-1") == 2
        assert any_store.ticket_references("evt-1") == set()

    def test_ticket_references(self, any_store):
        any_store.insert_ticket(_ticket("pay-1"))
        any_store.insert_ticket(_ticket("pay-2"))
        any_store.insert_ticket(_ticket("pay-3", event_id="evt-2"))

        assert any_store.ticket_references("evt-1") == {"pay-1", "pay-2"}
        assert any_store.get_ticket_by_reference("pay-3").event_id == "evt-2"


class TestDistributions:
    def test_insert_update_get(self, any_store):
        distribution = _distribution()
        any_store.insert_distribution(distribution)

        distribution.advance(DistributionStatus.PROCESSING)
        distribution.paid_holders["GALICE"] = Decimal("9")
        distribution.batch_hashes.append("hash-1")
        any_store.update_distribution(distribution)

        stored = any_store.get_distribution("dist-1")
        assert stored.status == DistributionStatus.PROCESSING
        assert stored.paid_holders == {"GALICE": Decimal("9")}
        assert stored.batch_hashes == ["hash-1"]

    def test_update_requires_existing(self, any_store):
        with pytest.raises(StorageWriteError):
            any_store.update_distribution(_distribution())

    def test_list_newest_first(self, any_store):
        any_store.insert_distribution(_distribution("dist-1"))
        any_store.insert_distribution(_distribution("dist-2"))
        any_store.insert_distribution(_distribution("dist-3", event_id="evt-2"))

        listed = any_store.list_distributions(event_id="evt-1")

        assert [d.distribution_id for d in listed] == ["dist-2", "dist-1"]

    def test_list_by_status(self, any_store):
        first = _distribution("dist-1")
        any_store.insert_distribution(first)
        any_store.insert_distribution(_distribution("dist-2"))
        first.advance(DistributionStatus.PROCESSING)
        any_store.update_distribution(first)

        listed = any_store.list_distributions(status=DistributionStatus.PROCESSING)

        assert [d.distribution_id for d in listed] == ["dist-1"]


class TestAtomic:
    def test_rolls_back_every_write(self, any_store):
        any_store.insert_event(_event())

        with pytest.raises(RuntimeError):
            with any_store.atomic():
                event = any_store.get_event("evt-1")
                event.total_revenue += Decimal("15")
                any_store.insert_ticket(_ticket("pay-1"))
                any_store.update_event(event)
                raise RuntimeError("boom")

        assert any_store.get_event("evt-1").total_revenue == 0
        assert any_store.count_tickets("evt-1") == 0

    def test_integrity_error_rolls_back(self, any_store):
        any_store.insert_event(_event())
        any_store.insert_ticket(_ticket("pay-1"))

        with pytest.raises(StorageIntegrityError):
            with any_store.atomic():
                event = any_store.get_event("evt-1")
                event.total_revenue += Decimal("15")
                any_store.update_event(event)
                any_store.insert_ticket(_ticket("pay-1", ticket_id="tkt-dup"))

        assert any_store.get_event("evt-1").total_revenue == 0

    def test_nested_blocks_join_outer(self, any_store):
        any_store.insert_event(_event())

        with pytest.raises(RuntimeError):
            with any_store.atomic():
                with any_store.atomic():
                    any_store.insert_ticket(_ticket("pay-1"))
                raise RuntimeError("outer fails")

        assert any_store.count_tickets("evt-1") == 0

    def test_commits_on_success(self, any_store):
        with any_store.atomic():
            any_store.insert_event(_event())
            any_store.insert_ticket(_ticket("pay-1"))

        assert any_store.count_tickets("evt-1") == 1

    def test_concurrent_increments(self, any_store):
        any_store.insert_event(_event())

        def add_revenue():
            for _ in range(20):
                with any_store.atomic():
                    event = any_store.get_event("evt-1")
                    event.total_revenue += Decimal("1")
                    any_store.update_event(event)

        threads = [threading.Thread(target=add_revenue) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert any_store.get_event("evt-1").total_revenue == Decimal("100")


class TestMemoryStore:
    def test_info_counts(self):
        store = MemoryStore()
        store.insert_event(_event())
        store.insert_ticket(_ticket("pay-1"))

        info = store.get_info()

        assert info["backend_type"] == "MemoryStore"
        assert info["available"] is True
        assert info["event_count"] == 1
        assert info["ticket_count"] == 1

    def test_clear(self):
        store = MemoryStore()
        store.insert_event(_event())

        store.clear()

        assert store.list_events() == []


class TestJSONFileStore:
    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "data.json")
        store = JSONFileStore(path)
        store.insert_event(_event(total_revenue=Decimal("150")))
        store.insert_ticket(_ticket("pay-1"))

        reloaded = JSONFileStore(path)

        assert reloaded.get_event("evt-1").total_revenue == Decimal("150")
        assert reloaded.ticket_references("evt-1") == {"pay-1"}

    def test_file_is_valid_json_and_leaves_no_temp(self, tmp_path):
        path = tmp_path / "data.json"
        store = JSONFileStore(str(path))
        store.insert_event(_event())

        data = json.loads(path.read_text(encoding="utf-8"))

        assert "evt-1" in data["events"]
        assert not (tmp_path / "data.json.tmp").exists()

    def test_rolled_back_block_is_not_written(self, tmp_path):
        path = str(tmp_path / "data.json")
        store = JSONFileStore(path)
        store.insert_event(_event())

        with pytest.raises(RuntimeError):
            with store.atomic():
                store.insert_ticket(_ticket("pay-1"))
                raise RuntimeError("boom")

        assert JSONFileStore(path).count_tickets("evt-1") == 0

    def test_empty_file_starts_empty(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("", encoding="utf-8")

        assert JSONFileStore(str(path)).list_events() == []

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StorageReadError):
            JSONFileStore(str(path))

    def test_info(self, tmp_path):
        store = JSONFileStore(str(tmp_path / "data.json"))
        store.insert_event(_event())

        info = store.get_info()

        assert info["backend_type"] == "JSONFileStore"
        assert info["file_exists"] is True
        assert info["file_size_bytes"] > 0

    def test_backup(self, tmp_path):
        store = JSONFileStore(str(tmp_path / "data.json"))
        store.insert_event(_event())

        backup_path = store.backup(str(tmp_path / "copy.json"))

        assert JSONFileStore(backup_path).get_event("evt-1") is not None

    def test_backup_without_file(self, tmp_path):
        store = JSONFileStore(str(tmp_path / "data.json"))

        with pytest.raises(StorageError):
            store.backup()


class TestGetSettlementStore:
    def test_memory(self):
        assert isinstance(get_settlement_store(SettlementConfig(storage_backend="memory")), MemoryStore)

    def test_json(self, tmp_path):
        config = SettlementConfig(storage_backend="json", data_file=str(tmp_path / "d.json"))

        assert isinstance(get_settlement_store(config), JSONFileStore)

    def test_postgresql_requires_url(self):
        with pytest.raises(ValueError, match="DATABASE_URL"):
            get_settlement_store(SettlementConfig(storage_backend="postgresql", database_url=None))

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown storage backend"):
            get_settlement_store(SettlementConfig(storage_backend="redis"))
