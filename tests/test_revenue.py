"""
Tests for ticket revenue accounting and payment reconciliation.
"""

import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from conftest import expect_ok
from errors import DuplicateRecordError, InvalidStateError
from schemas import TicketSaleRequest


def _sale(event_id, amount="15", tx_hash=None, buyer="GBUYER"):
    return TicketSaleRequest(
        event_id=event_id,
        buyer_address=buyer,
        amount_paid=Decimal(amount),
        transaction_hash=tx_hash,
    )


class TestRecordTicketSale:
    def test_adds_to_revenue(self, driver, service, store):
        event, _ = driver.funded()

        ticket, updated = service.revenue.record_ticket_sale(_sale(event["event_id"], tx_hash="t-1"))

        assert ticket.amount_paid == Decimal("15")
        assert updated.total_revenue == Decimal("15")
        assert store.get_event(event["event_id"]).total_revenue == Decimal("15")
        assert store.count_tickets(event["event_id"]) == 1

    def test_requires_funded_or_live(self, driver, service, store):
        event = driver.provisioned()

        with pytest.raises(InvalidStateError):
            service.revenue.record_ticket_sale(_sale(event["event_id"]))

        assert store.count_tickets(event["event_id"]) == 0

    def test_allowed_when_live(self, driver, service):
        event, _ = driver.funded()
        expect_ok(service.open_ticket_sales(event["event_id"]))

        _, updated = service.revenue.record_ticket_sale(_sale(event["event_id"]))

        assert updated.total_revenue == Decimal("15")

    def test_duplicate_reference_leaves_revenue_unchanged(self, driver, service, store):
        event, _ = driver.funded()
        service.revenue.record_ticket_sale(_sale(event["event_id"], tx_hash="t-1"))

        with pytest.raises(DuplicateRecordError):
            service.revenue.record_ticket_sale(_sale(event["event_id"], tx_hash="t-1"))

        assert store.get_event(event["event_id"]).total_revenue == Decimal("15")
        assert store.count_tickets(event["event_id"]) == 1

    def test_tickets_without_reference_are_not_deduplicated(self, driver, service, store):
        event, _ = driver.funded()
        service.revenue.record_ticket_sale(_sale(event["event_id"]))
        service.revenue.record_ticket_sale(_sale(event["event_id"]))

        assert store.count_tickets(event["event_id"]) == 2


class TestRevenueStats:
    def test_festival_numbers(self, driver, service):
        event, _ = driver.funded()
        driver.sell_tickets(event, 10)

        stats = expect_ok(service.get_revenue_stats(event["event_id"]))

        assert Decimal(stats["total_revenue"]) == Decimal("150")
        assert stats["ticket_count"] == 10
        assert Decimal(stats["distributable_amount"]) == Decimal("45")
        assert Decimal(stats["payout_per_token"]) == Decimal("0.18")

    def test_zero_tokens_gives_zero_payout_per_token(self, driver, service):
        event = driver.create()

        stats = expect_ok(service.get_revenue_stats(event["event_id"]))

        assert Decimal(stats["payout_per_token"]) == 0
        assert stats["ticket_count"] == 0


class TestSyncPayments:
    def test_records_new_payments_once(self, driver, service, store):
        event, _ = driver.funded()
        for _ in range(3):
            driver.pay_event(event, Decimal("15"))

        first = expect_ok(service.sync_payments(event["event_id"]))
        second = expect_ok(service.sync_payments(event["event_id"]))

        assert first["recorded"] == 3
        assert second["recorded"] == 0
        assert store.count_tickets(event["event_id"]) == 3
        assert store.get_event(event["event_id"]).total_revenue == Decimal("45")

    def test_investment_swaps_are_not_revenue(self, driver, service):
        event, _ = driver.funded(investors=2, tokens_each=125)

        result = expect_ok(service.sync_payments(event["event_id"]))

        assert result["fetched"] == 2
        assert result["recorded"] == 0
        assert result["skipped"] == 2

    def test_skips_payments_already_recorded_manually(self, driver, service, store):
        event, _ = driver.funded()
        tx_hash = driver.pay_event(event, Decimal("15"))
        service.revenue.record_ticket_sale(_sale(event["event_id"], tx_hash=tx_hash))

        result = expect_ok(service.sync_payments(event["event_id"]))

        assert result["recorded"] == 0
        assert store.get_event(event["event_id"]).total_revenue == Decimal("15")

    def test_requires_revenue_state(self, driver, service):
        event = driver.provisioned()

        ok, data = service.sync_payments(event["event_id"])

        assert not ok
        assert data["error"]["kind"] == "INVALID_STATE"

    def test_fetch_recent_payments_newest_first(self, driver, service):
        event, _ = driver.funded(investors=1, tokens_each=250)
        driver.pay_event(event, Decimal("1"))
        driver.pay_event(event, Decimal("2"))

        data = expect_ok(service.fetch_recent_payments(event["event_id"], limit=2))

        assert [p["amount"] for p in data["payments"]] == ["2", "1"]

    def test_payments_counted(self, driver, service, metrics):
        event, _ = driver.funded()
        driver.pay_event(event, Decimal("15"))

        service.sync_payments(event["event_id"])

        assert metrics.get_counter("payments_synced_total") == 1
        assert metrics.get_counter("tickets_recorded_total") == 1
