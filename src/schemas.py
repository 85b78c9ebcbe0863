"""
Request structs for the caller-facing operations.

Each request is parsed from a plain dict (JSON body, CLI arguments) and
validated before it reaches a component, so components can assume
well-formed input.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from amounts import HUNDRED, ZERO, has_ledger_precision, quantize_down, to_decimal
from errors import ValidationError

MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000


def _require(data: dict[str, Any], name: str) -> Any:
    value = data.get(name)
    if value is None or value == "":
        raise ValidationError(f"Missing required field: {name}", details={"field": name})
    return value


def _amount(data: dict[str, Any], name: str, required: bool = True) -> Decimal | None:
    raw = _require(data, name) if required else data.get(name)
    if raw is None:
        return None
    try:
        return to_decimal(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be a number", details={"field": name}) from e


def _positive(value: Decimal, name: str) -> None:
    if value <= ZERO:
        raise ValidationError(f"{name} must be greater than 0", details={"field": name})


def _ledger_precision(value: Decimal, name: str) -> None:
    if not has_ledger_precision(value):
        raise ValidationError(
            f"{name} supports at most 7 decimal places", details={"field": name}
        )


def _address(data: dict[str, Any], name: str) -> str:
    value = _require(data, name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string", details={"field": name})
    return value.strip()


@dataclass
class CreateEventRequest:
    name: str
    funding_goal: Decimal
    token_price: Decimal
    revenue_share_pct: Decimal
    ticket_price: Decimal = ZERO
    description: str = ""
    organizer_id: str | None = None
    event_id: str | None = None
    replace_draft: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CreateEventRequest":
        name = _require(data, "name")
        if not isinstance(name, str) or len(name.strip()) == 0:
            raise ValidationError("name must be a non-empty string", details={"field": "name"})
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"name exceeds {MAX_NAME_LENGTH} characters", details={"field": "name"})

        description = data.get("description") or ""
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"description exceeds {MAX_DESCRIPTION_LENGTH} characters",
                details={"field": "description"},
            )

        funding_goal = _amount(data, "funding_goal")
        token_price = _amount(data, "token_price")
        revenue_share_pct = _amount(data, "revenue_share_pct")
        ticket_price = _amount(data, "ticket_price", required=False)

        _positive(funding_goal, "funding_goal")
        _positive(token_price, "token_price")
        _ledger_precision(token_price, "token_price")
        if quantize_down(funding_goal / token_price) <= ZERO:
            raise ValidationError(
                "funding_goal buys less than one ledger unit of token",
                details={"field": "funding_goal"},
            )
        if not ZERO <= revenue_share_pct <= HUNDRED:
            raise ValidationError(
                "revenue_share_pct must be between 0 and 100",
                details={"field": "revenue_share_pct"},
            )
        if ticket_price is not None and ticket_price < ZERO:
            raise ValidationError("ticket_price cannot be negative", details={"field": "ticket_price"})

        return cls(
            name=name.strip(),
            description=description,
            funding_goal=funding_goal,
            token_price=token_price,
            revenue_share_pct=revenue_share_pct,
            ticket_price=ticket_price if ticket_price is not None else ZERO,
            organizer_id=data.get("organizer_id"),
            event_id=data.get("event_id"),
            replace_draft=bool(data.get("replace_draft", False)),
        )


@dataclass
class PurchaseRequest:
    event_id: str
    investor_address: str
    token_amount: Decimal

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PurchaseRequest":
        token_amount = _amount(data, "token_amount")
        _positive(token_amount, "token_amount")
        _ledger_precision(token_amount, "token_amount")
        return cls(
            event_id=_address(data, "event_id"),
            investor_address=_address(data, "investor_address"),
            token_amount=token_amount,
        )


@dataclass
class RecordInvestmentRequest:
    event_id: str
    investor_address: str
    token_amount: Decimal
    amount_paid: Decimal
    transaction_hash: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RecordInvestmentRequest":
        token_amount = _amount(data, "token_amount")
        amount_paid = _amount(data, "amount_paid")
        _positive(token_amount, "token_amount")
        _ledger_precision(token_amount, "token_amount")
        _positive(amount_paid, "amount_paid")
        return cls(
            event_id=_address(data, "event_id"),
            investor_address=_address(data, "investor_address"),
            token_amount=token_amount,
            amount_paid=amount_paid,
            transaction_hash=_address(data, "transaction_hash"),
        )


@dataclass
class TicketSaleRequest:
    event_id: str
    buyer_address: str
    amount_paid: Decimal
    transaction_hash: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TicketSaleRequest":
        amount_paid = _amount(data, "amount_paid")
        _positive(amount_paid, "amount_paid")
        _ledger_precision(amount_paid, "amount_paid")
        tx_hash = data.get("transaction_hash") or None
        return cls(
            event_id=_address(data, "event_id"),
            buyer_address=_address(data, "buyer_address"),
            amount_paid=amount_paid,
            transaction_hash=tx_hash,
        )
