"""
EventShare - Runtime Configuration

All settings are read from environment variables so the same code runs
against the simulated ledger in tests and against Stellar Horizon in
production.

Environment Variables:
    EVENTSHARE_NETWORK=testnet          # testnet | mainnet
    HORIZON_URL=https://horizon-testnet.stellar.org
    FRIENDBOT_URL=https://friendbot.stellar.org
    LEDGER_BACKEND=memory               # memory | horizon
    STORAGE_BACKEND=memory              # memory | json | postgresql
    EVENTSHARE_DATA_FILE=eventshare_data.json
    DATABASE_URL=postgresql://...
    EVENTSHARE_VAULT_KEY=<base64 key>
    LEDGER_REQUEST_TIMEOUT=20
    LEDGER_SUBMIT_TIMEOUT=60
    SETTLEMENT_MAX_OPS_PER_TX=100
    SETTLEMENT_BATCH_PAUSE=1.0
"""

import os
from dataclasses import dataclass

from ledger.base import AssetRef

TESTNET = "testnet"
MAINNET = "mainnet"

DEFAULT_HORIZON_URLS = {
    TESTNET: "https://horizon-testnet.stellar.org",
    MAINNET: "https://horizon.stellar.org",
}

# Circle USDC issuers
USDC_ISSUERS = {
    TESTNET: "GBBD47IF6LWK7P7MDEVSCWR7DPUWV3NY3DTQEVFL4NAT4AQH3ZLLFLA5",
    MAINNET: "GA5ZSEJYB37JRC5AVCIA5MOP4RHTM335X2KGX3IHOJAPP5RE34K4KZVN",
}

STABLE_ASSET_CODE = "USDC"


@dataclass
class SettlementConfig:
    """Configuration for the settlement core and its collaborators."""

    # Ledger network
    network: str = TESTNET
    horizon_url: str = DEFAULT_HORIZON_URLS[TESTNET]
    friendbot_url: str = "https://friendbot.stellar.org"
    ledger_backend: str = "memory"

    # Persistence
    storage_backend: str = "memory"
    data_file: str = "eventshare_data.json"
    database_url: str | None = None

    # Secret vault
    vault_key: str | None = None
    vault_iterations: int = 600_000

    # Timeouts for every gateway call (seconds)
    request_timeout: float = 20.0
    submit_timeout: float = 60.0

    # Transaction shape
    max_operations_per_tx: int = 100
    batch_pause_seconds: float = 1.0
    base_fee: int = 100_000  # stroops per operation
    purchase_timeout: int = 300  # investor counter-signs asynchronously
    setup_timeout: int = 30
    payout_timeout: int = 60
    trustline_limit: str = "10000000"

    # Asset naming
    asset_code_prefix: str = "EVT"
    asset_code_suffix_length: int = 8

    @property
    def is_test_network(self) -> bool:
        return self.network != MAINNET

    @property
    def stable_asset(self) -> AssetRef:
        """The stable-currency asset investors pay with."""
        return AssetRef(code=STABLE_ASSET_CODE, issuer=USDC_ISSUERS[self.network])

    @classmethod
    def from_env(cls) -> "SettlementConfig":
        """Create configuration from environment variables."""
        network = os.getenv("EVENTSHARE_NETWORK", TESTNET).lower()
        if network not in USDC_ISSUERS:
            raise ValueError(f"Unknown network: {network}")

        return cls(
            network=network,
            horizon_url=os.getenv("HORIZON_URL", DEFAULT_HORIZON_URLS[network]),
            friendbot_url=os.getenv("FRIENDBOT_URL", "https://friendbot.stellar.org"),
            ledger_backend=os.getenv("LEDGER_BACKEND", "memory").lower(),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory").lower(),
            data_file=os.getenv("EVENTSHARE_DATA_FILE", "eventshare_data.json"),
            database_url=os.getenv("DATABASE_URL"),
            vault_key=os.getenv("EVENTSHARE_VAULT_KEY"),
            vault_iterations=int(os.getenv("EVENTSHARE_VAULT_ITERATIONS", "600000")),
            request_timeout=float(os.getenv("LEDGER_REQUEST_TIMEOUT", "20")),
            submit_timeout=float(os.getenv("LEDGER_SUBMIT_TIMEOUT", "60")),
            max_operations_per_tx=int(os.getenv("SETTLEMENT_MAX_OPS_PER_TX", "100")),
            batch_pause_seconds=float(os.getenv("SETTLEMENT_BATCH_PAUSE", "1.0")),
        )

    def to_dict(self) -> dict:
        """Non-secret view for diagnostics."""
        return {
            "network": self.network,
            "horizon_url": self.horizon_url,
            "ledger_backend": self.ledger_backend,
            "storage_backend": self.storage_backend,
            "vault_configured": bool(self.vault_key),
            "request_timeout": self.request_timeout,
            "submit_timeout": self.submit_timeout,
            "max_operations_per_tx": self.max_operations_per_tx,
            "batch_pause_seconds": self.batch_pause_seconds,
            "stable_asset": self.stable_asset.to_dict(),
        }
