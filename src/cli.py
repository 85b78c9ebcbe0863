#!/usr/bin/env python3
"""
EventShare Command Line Interface.

Provides commands for running and managing EventShare:
    - serve: Start the API server
    - check: Verify installation and configuration
    - demo: Walk an event through its full lifecycle on the simulated ledger

Usage:
    eventshare serve [--host HOST] [--port PORT] [--debug] [--production]
    eventshare check
    eventshare demo
    eventshare --version
"""

import argparse
import os
import sys
from decimal import Decimal

__version__ = "0.1.0"

# Ensure src is in path when running from source
if os.path.exists(os.path.join(os.path.dirname(__file__), "service.py")):
    sys.path.insert(0, os.path.dirname(__file__))


def _load_config():
    from dotenv import load_dotenv

    from config import SettlementConfig

    load_dotenv()
    return SettlementConfig.from_env()


def cmd_serve(args):
    """Start the EventShare API server."""
    from api import create_app
    from monitoring import configure_logging
    from service import build_services

    config = _load_config()
    configure_logging()

    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", 5000))
    debug = args.debug or os.getenv("FLASK_DEBUG", "").lower() == "true"

    flask_app = create_app(build_services(config))
    print(f"Starting EventShare API server on {host}:{port} ({config.network})")

    if not args.production:
        flask_app.run(host=host, port=port, debug=debug)
        return 0

    # Use gunicorn for production
    try:
        import gunicorn.app.base
    except ImportError:
        print("Error: gunicorn not installed. Install with: pip install eventshare[production]")
        return 1

    class StandaloneApplication(gunicorn.app.base.BaseApplication):
        """Gunicorn WSGI application wrapper for the Flask app."""

        def __init__(self, app, options=None):
            self.options = options or {}
            self.application = app
            super().__init__()

        def load_config(self):
            for key, value in self.options.items():
                if key in self.cfg.settings and value is not None:
                    self.cfg.set(key.lower(), value)

        def load(self):
            return self.application

    # One worker: settlement assumes a single writer per event
    options = {
        "bind": f"{host}:{port}",
        "workers": 1,
        "threads": args.threads or int(os.getenv("THREADS", 4)),
        "worker_class": "gthread",
        "timeout": 120,
        "accesslog": "-",
        "errorlog": "-",
    }
    StandaloneApplication(flask_app, options).run()
    return 0


def cmd_check(args):
    """Check installation and configuration."""
    print("EventShare Installation Check")
    print("=" * 40)

    checks = []

    try:
        config = _load_config()
        checks.append((f"Configuration ({config.network})", "OK"))
    except ValueError as e:
        print(f"  ✗ Configuration: FAIL: {e}")
        return 1

    try:
        import flask  # noqa: F401

        checks.append(("Flask API", "OK"))
    except ImportError as e:
        checks.append(("Flask API", f"FAIL: {e}"))

    if config.vault_key:
        checks.append(("Secret vault", "OK"))
    else:
        checks.append(("Secret vault", "FAIL (EVENTSHARE_VAULT_KEY not set)"))

    try:
        from storage import StorageError, get_settlement_store

        store = get_settlement_store(config)
        status = "OK" if store.is_available() else "WARN (not available)"
        checks.append((f"Storage ({store.__class__.__name__})", status))
        store.close()
    except (ImportError, ValueError, StorageError) as e:
        checks.append(("Storage", f"FAIL: {e}"))

    try:
        from ledger import LedgerError, get_ledger_gateway

        gateway = get_ledger_gateway(config)
        status = "OK" if gateway.is_available() else "WARN (not reachable)"
        checks.append((f"Ledger ({gateway.__class__.__name__})", status))
        gateway.close()
    except (ValueError, LedgerError) as e:
        checks.append(("Ledger", f"FAIL: {e}"))

    try:
        import stellar_sdk  # noqa: F401

        checks.append(("Stellar SDK", "OK"))
    except ImportError:
        checks.append(("Stellar SDK", "SKIP (stellar-sdk not installed)"))

    try:
        import psycopg2  # noqa: F401

        checks.append(("PostgreSQL support", "OK"))
    except ImportError:
        checks.append(("PostgreSQL support", "SKIP (psycopg2 not installed)"))

    # Print results
    print()
    all_ok = True
    for name, status in checks:
        icon = "✓" if status == "OK" else ("○" if "SKIP" in status or "WARN" in status else "✗")
        print(f"  {icon} {name}: {status}")
        if "FAIL" in status:
            all_ok = False

    print()
    if all_ok:
        print("All checks passed!")
        return 0
    print("Some checks failed. See above for details.")
    return 1


# =============================================================================
# Demo
# =============================================================================


class DemoFailed(Exception):
    pass


def _expect(label: str, result: tuple[bool, dict]) -> dict:
    ok, data = result
    if not ok:
        error = data["error"]
        raise DemoFailed(f"{label}: {error['kind']} - {error['message']}")
    print(f"  ✓ {label}")
    return data


def run_demo(investors: int = 5, tokens_each: int = 50, tickets: int = 10) -> dict:
    """
    Run a full event lifecycle against the simulated ledger.

    Returns:
        The completed distribution as a dict

    Raises:
        DemoFailed: If any step returns an error
    """
    from config import SettlementConfig
    from ledger import MemoryLedgerGateway, PaymentOp, TransactionDraft
    from ledger.base import AssetRef
    from service import build_services
    from storage import MemoryStore
    from vault import generate_vault_key

    config = SettlementConfig(
        vault_key=generate_vault_key(),
        vault_iterations=100_000,
        batch_pause_seconds=0.0,
    )
    ledger = MemoryLedgerGateway(network=config.network)
    service = build_services(config, store=MemoryStore(), ledger=ledger)
    stable = config.stable_asset

    def new_account(usdc: Decimal):
        keypair = ledger.generate_keypair()
        ledger.open_account(keypair.public_key, balances={stable: usdc})
        return keypair

    print("\n1. Event setup")
    event = _expect("create event", service.create_event({
        "name": "Harbor Lights Festival",
        "funding_goal": str(investors * tokens_each * 10),
        "token_price": "10",
        "revenue_share_pct": "30",
        "ticket_price": "15",
    }))["event"]
    event_id = event["event_id"]
    event = _expect("initialize wallet", service.initialize_wallet(event_id))["event"]
    _expect("fund wallet", service.fund_wallet(event_id))
    _expect("set up asset", service.setup_asset(event_id))
    _expect("open funding", service.open_funding(event_id))
    token = AssetRef(code=event["asset_code"], issuer=event["custodial_public_key"])

    print(f"\n2. Investment ({investors} investors x {tokens_each} tokens)")
    for n in range(investors):
        investor = new_account(Decimal("1000"))
        ledger.trust(investor.public_key, token)
        purchase = _expect(f"investor {n + 1} purchase built", service.purchase_tokens({
            "event_id": event_id,
            "investor_address": investor.public_key,
            "token_amount": tokens_each,
        }))
        signed = ledger.sign_envelope(purchase["envelope"], investor.secret)
        result = ledger.submit(signed)
        recorded = _expect(f"investor {n + 1} investment recorded", service.record_investment({
            "event_id": event_id,
            "investor_address": investor.public_key,
            "token_amount": tokens_each,
            "amount_paid": purchase["amount"],
            "transaction_hash": result.transaction_hash,
        }))
    print(f"    event status: {recorded['event']['status']}")

    print(f"\n3. Ticket sales ({tickets} tickets)")
    _expect("open ticket sales", service.open_ticket_sales(event_id))
    for _ in range(tickets):
        buyer = new_account(Decimal("100"))
        draft = TransactionDraft(
            source=buyer.public_key,
            sequence=ledger.load_account(buyer.public_key).sequence,
            operations=[PaymentOp(
                destination=event["custodial_public_key"],
                asset=stable,
                amount=Decimal(event["ticket_price"]),
            )],
            base_fee=config.base_fee,
            timeout_seconds=config.setup_timeout,
        )
        ledger.submit(ledger.sign_envelope(ledger.build_envelope(draft), buyer.secret))
    synced = _expect("sync payments", service.sync_payments(event_id))
    print(f"    recorded {synced['recorded']} tickets, skipped {synced['skipped']} payments")

    print("\n4. Distribution")
    stats = _expect("revenue stats", service.get_revenue_stats(event_id))
    print(f"    revenue {stats['total_revenue']}, distributable {stats['distributable_amount']}")
    payout = _expect("calculate payout", service.calculate_payout(event_id))
    for holder in payout["holders"]:
        print(f"    {holder['address'][:8]}... {holder['balance']} tokens -> {holder['payout']}")
    distribution = _expect("execute distribution", service.execute_distribution(event_id))["distribution"]
    final = _expect("event completed", service.get_event(event_id))["event"]
    print(f"    distribution {distribution['status']}, paid {distribution['amount_paid']}")
    print(f"    event status: {final['status']}")
    return distribution


def cmd_demo(args):
    """Run the lifecycle walk-through."""
    from monitoring import configure_logging

    configure_logging("WARNING")
    print("EventShare Demo")
    print("=" * 40)
    try:
        run_demo(investors=args.investors, tokens_each=args.tokens, tickets=args.tickets)
    except DemoFailed as e:
        print(f"\nDemo failed: {e}")
        return 1
    print("\nDemo complete!")
    return 0


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="eventshare",
        description="EventShare - revenue-share tokens for real-world events",
    )
    parser.add_argument("--version", "-V", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", "-H", help="Host to bind to (default: 0.0.0.0)")
    serve_parser.add_argument("--port", "-p", type=int, help="Port to listen on (default: 5000)")
    serve_parser.add_argument("--debug", "-d", action="store_true", help="Enable debug mode")
    serve_parser.add_argument("--production", "-P", action="store_true", help="Use gunicorn production server")
    serve_parser.add_argument("--threads", "-t", type=int, help="Gunicorn threads (default: 4)")
    serve_parser.set_defaults(func=cmd_serve)

    # check command
    check_parser = subparsers.add_parser("check", help="Verify installation and configuration")
    check_parser.set_defaults(func=cmd_check)

    # demo command
    demo_parser = subparsers.add_parser("demo", help="Run a full lifecycle on the simulated ledger")
    demo_parser.add_argument("--investors", type=int, default=5, help="Number of investors (default: 5)")
    demo_parser.add_argument("--tokens", type=int, default=50, help="Tokens per investor (default: 50)")
    demo_parser.add_argument("--tickets", type=int, default=10, help="Tickets sold (default: 10)")
    demo_parser.set_defaults(func=cmd_demo)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
