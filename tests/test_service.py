"""
Tests for the caller-facing service: result shape and error mapping.
"""

import os
import sys
from unittest.mock import patch

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from conftest import FESTIVAL, expect_ok
from config import SettlementConfig
from ledger import LedgerTransportError, MemoryLedgerGateway
from service import EventShareService, build_services
from storage import MemoryStore, StorageIntegrityError, StorageWriteError


class TestResultShape:
    def test_success(self, service):
        ok, data = service.create_event(FESTIVAL)

        assert ok is True
        assert data["event"]["status"] == "DRAFT"

    def test_validation_failure(self, service):
        ok, data = service.create_event({**FESTIVAL, "name": ""})

        assert ok is False
        error = data["error"]
        assert error["kind"] == "VALIDATION_ERROR"
        assert error["category"] == "validation"
        assert error["recoverable"] is True
        assert error["operation"] == "create_event"
        assert error["details"] == {"field": "name"}

    def test_not_found_carries_event_id(self, service):
        ok, data = service.get_event("missing")

        assert not ok
        assert data["error"]["kind"] == "NOT_FOUND"
        assert data["error"]["event_id"] == "missing"

    def test_invalid_status_filter(self, service):
        ok, data = service.list_events(status="ARCHIVED")

        assert not ok
        assert data["error"]["details"] == {"field": "status"}

    def test_status_filter_is_case_insensitive(self, service, driver):
        driver.create()

        data = expect_ok(service.list_events(status="draft"))

        assert data["count"] == 1

    def test_event_payload_has_no_secret(self, service, driver):
        event_id = driver.create()["event_id"]

        event = expect_ok(service.initialize_wallet(event_id))["event"]

        assert "custodial_secret_encrypted" not in event
        assert event["custodial_public_key"]


class TestErrorMapping:
    def test_storage_failure_is_persistence_error(self, service, store):
        with patch.object(store, "insert_event", side_effect=StorageWriteError("disk full")):
            ok, data = service.create_event(FESTIVAL)

        assert not ok
        assert data["error"]["kind"] == "PERSISTENCE_ERROR"
        assert data["error"]["category"] == "infrastructure"
        assert data["error"]["recoverable"] is True

    def test_integrity_violation_is_duplicate(self, service, store):
        with patch.object(store, "insert_event", side_effect=StorageIntegrityError("duplicate", "event_id")):
            ok, data = service.create_event(FESTIVAL)

        assert not ok
        assert data["error"]["kind"] == "DUPLICATE_RECORD"

    def test_raw_ledger_error_is_mapped(self, service, gateway, driver):
        event_id = driver.create()["event_id"]

        with patch.object(gateway, "generate_keypair", side_effect=LedgerTransportError("unreachable")):
            ok, data = service.initialize_wallet(event_id)

        assert not ok
        assert data["error"]["kind"] == "NETWORK_ERROR"
        assert data["error"]["recoverable"] is True
        assert data["error"]["event_id"] == event_id

    def test_unexpected_error_is_internal(self, service):
        with patch.object(service.lifecycle, "get_event", side_effect=RuntimeError("boom")):
            ok, data = service.get_event("evt")

        assert not ok
        assert data["error"]["kind"] == "INTERNAL_ERROR"
        assert data["error"]["recoverable"] is False
        assert data["error"]["cause"] == {"type": "RuntimeError", "message": "boom"}

    def test_vault_without_key(self, config, store, gateway, metrics):
        config.vault_key = None
        keyless = build_services(config, store=store, ledger=gateway, metrics=metrics)
        event_id = expect_ok(keyless.create_event(FESTIVAL))["event"]["event_id"]

        ok, data = keyless.initialize_wallet(event_id)

        assert not ok
        assert data["error"]["kind"] == "VAULT_ERROR"
        assert data["error"]["recoverable"] is False


class TestBuildServices:
    def test_defaults_from_config(self):
        built = build_services(SettlementConfig(vault_key="k", vault_iterations=1_000))

        assert isinstance(built, EventShareService)
        assert isinstance(built.store, MemoryStore)
        assert isinstance(built.ledger, MemoryLedgerGateway)
        assert built.executor.calculator is built.calculator
        assert built.investments.lifecycle is built.lifecycle

    def test_health(self, service):
        report = service.health()

        assert report["status"] == "healthy"
        assert report["network"] == "testnet"
        assert report["vault_configured"] is True
        assert report["storage"]["backend_type"] == "MemoryStore"
