"""
Pytest configuration and shared fixtures for EventShare tests.

This module provides shared fixtures and test configuration including:
- Simulated ledger and memory store
- A vault with a low iteration count
- A fully wired service and Flask test client
- Helpers that drive an event through its lifecycle on the simulated ledger
"""

import os
import sys
from decimal import Decimal

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from config import SettlementConfig
from ledger import MemoryLedgerGateway, PaymentOp, TransactionDraft
from ledger.base import AssetRef
from monitoring.metrics import MetricsCollector
from service import build_services
from storage import MemoryStore
from vault import SecretVault, generate_vault_key

TEST_API_KEY = "test-api-key-12345"

FESTIVAL = {
    "name": "Harbor Lights Festival",
    "funding_goal": "2500",
    "token_price": "10",
    "revenue_share_pct": "30",
    "ticket_price": "15",
}


@pytest.fixture
def config():
    """Test-network config with no pause between settlement batches."""
    return SettlementConfig(
        vault_key=generate_vault_key(),
        vault_iterations=1_000,
        batch_pause_seconds=0.0,
    )


@pytest.fixture
def gateway(config):
    return MemoryLedgerGateway(network=config.network)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def vault(config):
    return SecretVault(config.vault_key, iterations=config.vault_iterations)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def sleeps():
    """Records every pause the settlement executor takes."""
    return []


@pytest.fixture
def service(config, store, gateway, vault, metrics, sleeps):
    return build_services(
        config, store=store, ledger=gateway, vault=vault, metrics=metrics, sleep=sleeps.append
    )


@pytest.fixture
def flask_app(service):
    from api import create_app

    app = create_app(service, api_key=TEST_API_KEY, require_auth=True)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def flask_client(flask_app):
    """Create Flask test client."""
    return flask_app.test_client()


@pytest.fixture
def auth_headers():
    """Headers for authenticated requests."""
    return {
        "Content-Type": "application/json",
        "X-API-Key": TEST_API_KEY,
    }


# =============================================================================
# Lifecycle drivers
# =============================================================================


def expect_ok(result):
    ok, data = result
    assert ok, data
    return data


def token_of(event: dict) -> AssetRef:
    return AssetRef(code=event["asset_code"], issuer=event["custodial_public_key"])


class EventDriver:
    """Walks events through the lifecycle against the simulated ledger."""

    def __init__(self, service, gateway, config):
        self.service = service
        self.gateway = gateway
        self.config = config

    def new_account(self, usdc: Decimal = Decimal("1000")):
        keypair = self.gateway.generate_keypair()
        self.gateway.open_account(keypair.public_key, balances={self.config.stable_asset: usdc})
        return keypair

    def create(self, **overrides) -> dict:
        return expect_ok(self.service.create_event({**FESTIVAL, **overrides}))["event"]

    def provisioned(self, **overrides) -> dict:
        """An event with a funded, configured wallet in FUNDING_OPEN."""
        event_id = self.create(**overrides)["event_id"]
        expect_ok(self.service.initialize_wallet(event_id))
        expect_ok(self.service.fund_wallet(event_id))
        expect_ok(self.service.setup_asset(event_id))
        return expect_ok(self.service.open_funding(event_id))["event"]

    def invest(self, event: dict, token_amount, investor=None) -> tuple:
        """Build, counter-sign, submit and record a purchase. Returns (investor, result)."""
        investor = investor or self.new_account()
        self.gateway.trust(investor.public_key, token_of(event))
        purchase = expect_ok(self.service.purchase_tokens({
            "event_id": event["event_id"],
            "investor_address": investor.public_key,
            "token_amount": str(token_amount),
        }))
        submitted = self.gateway.submit(self.gateway.sign_envelope(purchase["envelope"], investor.secret))
        recorded = expect_ok(self.service.record_investment({
            "event_id": event["event_id"],
            "investor_address": investor.public_key,
            "token_amount": str(token_amount),
            "amount_paid": purchase["amount"],
            "transaction_hash": submitted.transaction_hash,
        }))
        return investor, recorded

    def pay_event(self, event: dict, amount: Decimal, payer=None) -> str:
        """A plain stable-currency payment into the event wallet. Returns the tx hash."""
        payer = payer or self.new_account()
        draft = TransactionDraft(
            source=payer.public_key,
            sequence=self.gateway.load_account(payer.public_key).sequence,
            operations=[PaymentOp(
                destination=event["custodial_public_key"],
                asset=self.config.stable_asset,
                amount=Decimal(amount),
            )],
            base_fee=self.config.base_fee,
            timeout_seconds=30,
        )
        envelope = self.gateway.sign_envelope(self.gateway.build_envelope(draft), payer.secret)
        return self.gateway.submit(envelope).transaction_hash

    def funded(self, investors: int = 5, tokens_each: int = 50) -> tuple[dict, list]:
        """A FUNDED event held by ``investors`` accounts."""
        event = self.provisioned(funding_goal=str(investors * tokens_each * 10))
        holders = []
        for _ in range(investors):
            investor, _ = self.invest(event, tokens_each)
            holders.append(investor)
        return expect_ok(self.service.get_event(event["event_id"]))["event"], holders

    def sell_tickets(self, event: dict, count: int, price: str = "15") -> None:
        for n in range(count):
            expect_ok(self.service.record_ticket_sale({
                "event_id": event["event_id"],
                "buyer_address": f"buyer-{n}",
                "amount_paid": price,
                "transaction_hash": f"ticket-{event['event_id']}-{n}",
            }))


@pytest.fixture
def driver(service, gateway, config):
    return EventDriver(service, gateway, config)
