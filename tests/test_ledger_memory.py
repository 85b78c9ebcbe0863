"""
Tests for the in-memory ledger gateway.
"""

import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from config import SettlementConfig
from ledger import (
    AssetRef,
    ChangeTrustOp,
    LedgerAccountNotFoundError,
    LedgerRejectedError,
    LedgerTransportError,
    MemoryLedgerGateway,
    PaymentOp,
    RejectionReason,
    SetFlagsOp,
    TransactionDraft,
    get_ledger_gateway,
)

USD = AssetRef(code="USDC", issuer="GISSUER")


@pytest.fixture
def ledger():
    return MemoryLedgerGateway()


def _account(ledger, usd="100"):
    keypair = ledger.generate_keypair()
    ledger.open_account(keypair.public_key, balances={USD: Decimal(usd)})
    return keypair


def _submit(ledger, signer, operations, *extra_signers, timeout=30):
    draft = TransactionDraft(
        source=signer.public_key,
        sequence=ledger.load_account(signer.public_key).sequence,
        operations=operations,
        timeout_seconds=timeout,
    )
    envelope = ledger.build_envelope(draft)
    for keypair in (signer, *extra_signers):
        envelope = ledger.sign_envelope(envelope, keypair.secret)
    return ledger.submit(envelope)


class TestAccounts:
    def test_generate_keypair(self, ledger):
        keypair = ledger.generate_keypair()

        assert keypair.public_key.startswith("G")
        assert keypair.secret.startswith("S")
        assert len(keypair.public_key) == 56
        assert keypair.secret not in repr(keypair)

    def test_unknown_account(self, ledger):
        with pytest.raises(LedgerAccountNotFoundError):
            ledger.load_account("GMISSING")

    def test_faucet(self, ledger):
        keypair = ledger.generate_keypair()

        ledger.fund_test_account(keypair.public_key)

        assert ledger.load_account(keypair.public_key).native_balance == Decimal("10000")

    def test_faucet_twice(self, ledger):
        keypair = ledger.generate_keypair()
        ledger.fund_test_account(keypair.public_key)

        with pytest.raises(LedgerRejectedError):
            ledger.fund_test_account(keypair.public_key)

    def test_no_faucet_on_mainnet(self):
        mainnet = MemoryLedgerGateway(network="mainnet")

        with pytest.raises(LedgerRejectedError):
            mainnet.fund_test_account(mainnet.generate_keypair().public_key)


class TestSubmit:
    def test_payment_moves_balance_and_sequence(self, ledger):
        alice, bob = _account(ledger), _account(ledger)
        before = ledger.load_account(alice.public_key).sequence

        result = _submit(ledger, alice, [PaymentOp(bob.public_key, USD, Decimal("40"))])

        assert result.transaction_hash
        assert ledger.balance(alice.public_key, USD) == Decimal("60")
        assert ledger.balance(bob.public_key, USD) == Decimal("140")
        assert ledger.load_account(alice.public_key).sequence == before + 1

    def test_unsigned_is_rejected(self, ledger):
        alice, bob = _account(ledger), _account(ledger)
        draft = TransactionDraft(
            source=alice.public_key,
            sequence=ledger.load_account(alice.public_key).sequence,
            operations=[PaymentOp(bob.public_key, USD, Decimal("1"))],
        )

        with pytest.raises(LedgerRejectedError, match="tx_bad_auth"):
            ledger.submit(ledger.build_envelope(draft))

    def test_operation_source_must_sign(self, ledger):
        alice, bob = _account(ledger), _account(ledger)
        op = PaymentOp(alice.public_key, USD, Decimal("5"), source=bob.public_key)

        with pytest.raises(LedgerRejectedError):
            _submit(ledger, alice, [op])

        _submit(ledger, alice, [op], bob)
        assert ledger.balance(alice.public_key, USD) == Decimal("105")

    def test_stale_sequence(self, ledger):
        alice, bob = _account(ledger), _account(ledger)
        draft = TransactionDraft(
            source=alice.public_key,
            sequence=ledger.load_account(alice.public_key).sequence,
            operations=[PaymentOp(bob.public_key, USD, Decimal("1"))],
        )
        envelope = ledger.sign_envelope(ledger.build_envelope(draft), alice.secret)
        ledger.submit(envelope)

        with pytest.raises(LedgerRejectedError) as exc_info:
            ledger.submit(envelope)

        assert exc_info.value.reason == RejectionReason.BAD_SEQUENCE
        assert exc_info.value.retryable

    def test_underfunded_applies_nothing(self, ledger):
        alice, bob, carol = _account(ledger), _account(ledger), _account(ledger)

        with pytest.raises(LedgerRejectedError) as exc_info:
            _submit(ledger, alice, [
                PaymentOp(bob.public_key, USD, Decimal("60")),
                PaymentOp(carol.public_key, USD, Decimal("60")),
            ])

        assert exc_info.value.reason == RejectionReason.RESOURCE_EXHAUSTED
        assert exc_info.value.result_codes["operations"] == ["op_success", "op_underfunded"]
        assert ledger.balance(alice.public_key, USD) == Decimal("100")
        assert ledger.balance(bob.public_key, USD) == Decimal("100")

    def test_destination_needs_trust_line(self, ledger):
        alice = _account(ledger)
        stranger = ledger.generate_keypair()
        ledger.open_account(stranger.public_key)

        with pytest.raises(LedgerRejectedError) as exc_info:
            _submit(ledger, alice, [PaymentOp(stranger.public_key, USD, Decimal("1"))])

        assert exc_info.value.result_codes["operations"] == ["op_no_trust"]

    def test_operation_limit(self, ledger):
        alice, bob = _account(ledger), _account(ledger)
        ops = [PaymentOp(bob.public_key, USD, Decimal("0.1")) for _ in range(101)]

        with pytest.raises(LedgerRejectedError, match="Too many operations"):
            _submit(ledger, alice, ops)

    def test_expired_envelope(self, ledger):
        alice, bob = _account(ledger), _account(ledger)

        with pytest.raises(LedgerRejectedError, match="tx_too_late"):
            _submit(ledger, alice, [PaymentOp(bob.public_key, USD, Decimal("1"))], timeout=-1)

    def test_other_network(self, ledger):
        alice, bob = _account(ledger), _account(ledger)
        draft = TransactionDraft(
            source=alice.public_key,
            sequence=ledger.load_account(alice.public_key).sequence,
            operations=[PaymentOp(bob.public_key, USD, Decimal("1"))],
        )
        envelope = MemoryLedgerGateway(network="mainnet").build_envelope(draft)

        with pytest.raises(LedgerRejectedError):
            ledger.submit(envelope)

    def test_malformed_envelope(self, ledger):
        with pytest.raises(LedgerRejectedError) as exc_info:
            ledger.submit("not-an-envelope!")

        assert exc_info.value.reason == RejectionReason.MALFORMED

    def test_issuer_mints_and_sets_flags(self, ledger):
        issuer = ledger.generate_keypair()
        ledger.open_account(issuer.public_key)
        holder = _account(ledger)
        token = AssetRef(code="EVTTEST", issuer=issuer.public_key)
        ledger.trust(holder.public_key, token)

        _submit(ledger, issuer, [
            SetFlagsOp(auth_revocable=True, auth_clawback_enabled=True),
            PaymentOp(holder.public_key, token, Decimal("25")),
        ])

        assert ledger.balance(holder.public_key, token) == Decimal("25")
        assert ledger.account_flags(issuer.public_key) == {
            "auth_revocable": True,
            "auth_clawback_enabled": True,
        }

    def test_change_trust(self, ledger):
        holder = _account(ledger)
        token = AssetRef(code="EVTTEST", issuer="GSOMEONE")

        _submit(ledger, holder, [ChangeTrustOp(token, "1000")])

        assert ledger.load_account(holder.public_key).balance_of(token) == Decimal("0")


class TestFailureInjection:
    def test_fails_after_successes(self, ledger):
        alice, bob = _account(ledger), _account(ledger)
        ledger.fail_next_submit(LedgerTransportError("timeout"), after=1)

        _submit(ledger, alice, [PaymentOp(bob.public_key, USD, Decimal("1"))])
        with pytest.raises(LedgerTransportError):
            _submit(ledger, alice, [PaymentOp(bob.public_key, USD, Decimal("1"))])
        _submit(ledger, alice, [PaymentOp(bob.public_key, USD, Decimal("1"))])

        assert len(ledger.submitted) == 2


class TestQueries:
    def test_asset_holders(self, ledger):
        alice, bob = _account(ledger, "5"), _account(ledger, "0")

        holders = {h.address: h.balance for h in ledger.query_asset_holders(USD)}

        assert holders == {alice.public_key: Decimal("5"), bob.public_key: Decimal("0")}

    def test_incoming_payments_newest_first(self, ledger):
        alice, bob = _account(ledger), _account(ledger)
        _submit(ledger, alice, [PaymentOp(bob.public_key, USD, Decimal("1"))])
        _submit(ledger, alice, [PaymentOp(bob.public_key, USD, Decimal("2"))])

        payments = ledger.fetch_incoming_payments(bob.public_key, USD, limit=5)

        assert [p.amount for p in payments] == [Decimal("2"), Decimal("1")]
        assert payments[0].from_address == alice.public_key
        assert ledger.fetch_incoming_payments(bob.public_key, USD, limit=1)[0].amount == Decimal("2")

    def test_info(self, ledger):
        _account(ledger)

        info = ledger.get_info()

        assert info["account_count"] == 1
        assert info["transaction_count"] == 0


class TestGetLedgerGateway:
    def test_memory(self):
        gateway = get_ledger_gateway(SettlementConfig(ledger_backend="memory"))

        assert isinstance(gateway, MemoryLedgerGateway)
        assert gateway.network == "testnet"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown ledger backend"):
            get_ledger_gateway(SettlementConfig(ledger_backend="carrier-pigeon"))
