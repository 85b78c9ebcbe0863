"""
EventShare - Wallet & Asset Provisioner

Produces exactly one custodial identity per event and configures it for
compliant asset issuance:

- ``create_event_wallet`` generates a keypair and protects its secret
- ``setup_event_asset`` enables revocation and clawback on the issuing
  account and opens a stable-currency trust line, in one transaction

The decrypted custodial secret exists only inside ``sign_as_event``.
"""

from config import SettlementConfig
from errors import (
    AssetNotConfiguredError,
    ErrorKind,
    SettlementError,
    VaultError,
    WalletNotInitializedError,
)
from ledger.base import (
    ChangeTrustOp,
    LedgerError,
    LedgerGateway,
    LedgerRejectedError,
    SetFlagsOp,
    TransactionDraft,
)
from models import Event
from monitoring.logging import get_logger
from storage.base import SettlementStore
from vault import SecretVault

logger = get_logger(__name__)


def require_wallet(event: Event, operation: str) -> None:
    if not event.has_wallet:
        raise WalletNotInitializedError(
            "Event wallet not initialized", operation=operation, event_id=event.event_id
        )


def require_asset(event: Event, operation: str) -> None:
    require_wallet(event, operation)
    if not event.asset_code:
        raise AssetNotConfiguredError(
            "Event asset not configured", operation=operation, event_id=event.event_id
        )


class WalletProvisioner:
    """Creates custodial wallets and configures event assets."""

    def __init__(
        self,
        store: SettlementStore,
        ledger: LedgerGateway,
        vault: SecretVault,
        config: SettlementConfig,
    ):
        self.store = store
        self.ledger = ledger
        self.vault = vault
        self.config = config

    def create_event_wallet(self) -> tuple[str, str]:
        """
        Generate a fresh keypair.

        Returns:
            (public_key, encrypted_secret); nothing is persisted here
        """
        keypair = self.ledger.generate_keypair()
        return keypair.public_key, self.vault.encrypt(keypair.secret)

    def sign_as_event(self, event: Event, envelope: str) -> str:
        """Sign ``envelope`` with the event's custodial key."""
        secret = self.vault.decrypt(event.custodial_secret_encrypted)
        return self.ledger.sign_envelope(envelope, secret)

    def setup_event_asset(self, event_id: str) -> str:
        """
        Set compliance flags and the stable-currency trust line on the
        event's custodial account.

        Returns:
            Transaction hash

        Raises:
            WalletNotInitializedError / AssetNotConfiguredError: Preconditions
            SettlementError: TX_FAILED, recoverable, for any ledger or signing failure
        """
        operation = "setup_event_asset"
        event = self.store.require_event(event_id, operation)
        require_asset(event, operation)
        public_key = event.custodial_public_key

        try:
            account = self.ledger.load_account(public_key)
            draft = TransactionDraft(
                source=public_key,
                sequence=account.sequence,
                operations=[
                    SetFlagsOp(auth_revocable=True, auth_clawback_enabled=True),
                    ChangeTrustOp(asset=self.config.stable_asset, limit=self.config.trustline_limit),
                ],
                base_fee=self.config.base_fee,
                timeout_seconds=self.config.setup_timeout,
            )
            envelope = self.sign_as_event(event, self.ledger.build_envelope(draft))
            result = self.ledger.submit(envelope)
        except (LedgerError, VaultError) as e:
            details = {}
            if isinstance(e, LedgerRejectedError):
                details = {"reason": e.reason.value, "result_codes": e.result_codes}
            logger.warning(
                "Asset setup failed: %s", e,
                extra={"event_id": event_id, "error_type": type(e).__name__},
            )
            raise SettlementError(
                f"Failed to set up event asset: {e}",
                code=ErrorKind.TX_FAILED,
                operation=operation,
                event_id=event_id,
                recoverable=True,
                details=details,
                cause=e,
            ) from e

        with self.store.atomic():
            fresh = self.store.require_event(event_id, operation)
            fresh.asset_setup_tx = result.transaction_hash
            fresh.touch()
            self.store.update_event(fresh)

        logger.info(
            "Event asset configured",
            extra={"event_id": event_id, "asset_code": event.asset_code, "tx_hash": result.transaction_hash},
        )
        return result.transaction_hash
