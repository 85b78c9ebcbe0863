"""
Event settlement blueprint.

This blueprint exposes the caller-facing operations:
- Event creation, queries and lifecycle transitions
- Custodial wallet and asset provisioning
- Token purchase transactions and investment records
- Ticket revenue and payment reconciliation
- Payout calculation and distribution
"""

from flask import Blueprint, request

from .utils import (
    bad_request,
    bounded_limit,
    get_service,
    json_body,
    require_api_key,
    respond,
)

# Create the blueprint
events_bp = Blueprint("events", __name__)


def _body_for(event_id: str):
    """JSON body with the path's event id applied, or None if the body is not an object."""
    data = json_body()
    if data is None:
        return None
    return {**data, "event_id": event_id}


# ============================================================
# Events
# ============================================================

@events_bp.route("/events", methods=["POST"])
@require_api_key
def create_event():
    """
    Create an event in DRAFT.

    Request body:
    {
        "name": "Summer Festival",
        "funding_goal": "2500",
        "token_price": "10",
        "revenue_share_pct": "30",
        "ticket_price": "15" (optional),
        "description": "..." (optional),
        "organizer_id": "..." (optional),
        "event_id": "..." (optional),
        "replace_draft": false (optional)
    }
    """
    data = json_body()
    if data is None:
        return bad_request("Request body must be a JSON object")
    return respond(*get_service().create_event(data), status=201)


@events_bp.route("/events", methods=["GET"])
@require_api_key
def list_events():
    return respond(*get_service().list_events(
        status=request.args.get("status"),
        organizer_id=request.args.get("organizer_id"),
    ))


@events_bp.route("/events/<event_id>", methods=["GET"])
@require_api_key
def get_event(event_id: str):
    return respond(*get_service().get_event(event_id))


@events_bp.route("/events/<event_id>/wallet", methods=["POST"])
@require_api_key
def initialize_wallet(event_id: str):
    """Generate the custodial wallet and move the event to WALLET_CREATED."""
    return respond(*get_service().initialize_wallet(event_id))


@events_bp.route("/events/<event_id>/wallet/fund", methods=["POST"])
@require_api_key
def fund_wallet(event_id: str):
    """Fund the custodial wallet from the test-network faucet."""
    return respond(*get_service().fund_wallet(event_id))


@events_bp.route("/events/<event_id>/asset", methods=["POST"])
@require_api_key
def setup_asset(event_id: str):
    """Set compliance flags and the stable-currency trust line."""
    return respond(*get_service().setup_asset(event_id))


@events_bp.route("/events/<event_id>/funding/open", methods=["POST"])
@require_api_key
def open_funding(event_id: str):
    return respond(*get_service().open_funding(event_id))


@events_bp.route("/events/<event_id>/tickets/open", methods=["POST"])
@require_api_key
def open_ticket_sales(event_id: str):
    return respond(*get_service().open_ticket_sales(event_id))


# ============================================================
# Investment
# ============================================================

@events_bp.route("/events/<event_id>/purchase", methods=["POST"])
@require_api_key
def purchase_tokens(event_id: str):
    """
    Build the partially signed swap an investor signs to buy tokens.

    Request body:
    {
        "investor_address": "G...",
        "token_amount": "50"
    }
    """
    data = _body_for(event_id)
    if data is None:
        return bad_request("Request body must be a JSON object")
    return respond(*get_service().purchase_tokens(data))


@events_bp.route("/events/<event_id>/investments", methods=["POST"])
@require_api_key
def record_investment(event_id: str):
    """
    Record a purchase confirmed on the ledger.

    Request body:
    {
        "investor_address": "G...",
        "token_amount": "50",
        "amount_paid": "500",
        "transaction_hash": "..."
    }
    """
    data = _body_for(event_id)
    if data is None:
        return bad_request("Request body must be a JSON object")
    return respond(*get_service().record_investment(data), status=201)


@events_bp.route("/events/<event_id>/investments", methods=["GET"])
@require_api_key
def list_investments(event_id: str):
    return respond(*get_service().list_investments(
        event_id=event_id,
        investor_address=request.args.get("investor_address"),
    ))


# ============================================================
# Revenue
# ============================================================

@events_bp.route("/events/<event_id>/tickets", methods=["POST"])
@require_api_key
def record_ticket_sale(event_id: str):
    """
    Record a ticket sale.

    Request body:
    {
        "buyer_address": "G...",
        "amount_paid": "15",
        "transaction_hash": "..." (optional, unique)
    }
    """
    data = _body_for(event_id)
    if data is None:
        return bad_request("Request body must be a JSON object")
    return respond(*get_service().record_ticket_sale(data), status=201)


@events_bp.route("/events/<event_id>/tickets", methods=["GET"])
@require_api_key
def list_tickets(event_id: str):
    return respond(*get_service().list_tickets(event_id))


@events_bp.route("/events/<event_id>/payments", methods=["GET"])
@require_api_key
def fetch_recent_payments(event_id: str):
    limit = bounded_limit(request.args.get("limit"))
    return respond(*get_service().fetch_recent_payments(event_id, limit))


@events_bp.route("/events/<event_id>/payments/sync", methods=["POST"])
@require_api_key
def sync_payments(event_id: str):
    """Record recent incoming payments that are not yet tickets."""
    return respond(*get_service().sync_payments(event_id))


@events_bp.route("/events/<event_id>/revenue", methods=["GET"])
@require_api_key
def get_revenue_stats(event_id: str):
    return respond(*get_service().get_revenue_stats(event_id))


# ============================================================
# Distribution
# ============================================================

@events_bp.route("/events/<event_id>/payout", methods=["GET"])
@require_api_key
def calculate_payout(event_id: str):
    """Preview each holder's payout. Nothing is submitted."""
    return respond(*get_service().calculate_payout(event_id))


@events_bp.route("/events/<event_id>/distributions", methods=["POST"])
@require_api_key
def execute_distribution(event_id: str):
    """Pay every holder their share and complete the event."""
    return respond(*get_service().execute_distribution(event_id), status=201)


@events_bp.route("/events/<event_id>/distributions", methods=["GET"])
@require_api_key
def list_distributions(event_id: str):
    return respond(*get_service().list_distributions(event_id))


@events_bp.route("/distributions/<distribution_id>", methods=["GET"])
@require_api_key
def get_distribution(distribution_id: str):
    return respond(*get_service().get_distribution(distribution_id))
