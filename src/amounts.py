"""
Fixed-point amount helpers.

The ledger represents every amount with 7 fractional digits; all money
and token arithmetic in EventShare is done in ``Decimal`` and rounded to
that precision only at the boundaries where an amount becomes a ledger
operation.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation

LEDGER_DECIMAL_PLACES = 7
LEDGER_QUANTUM = Decimal("0." + "0" * (LEDGER_DECIMAL_PLACES - 1) + "1")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value) -> Decimal:
    """
    Convert ints, strings and Decimals to Decimal.

    Floats go through ``str`` so 0.1 stays 0.1. Raises ValueError for
    anything that is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a numeric amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, TypeError) as e:
            raise ValueError(f"Not a numeric amount: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Amount must be finite: {value!r}")
    return result


def quantize(amount: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round to ledger precision."""
    return amount.quantize(LEDGER_QUANTUM, rounding=rounding)


def quantize_down(amount: Decimal) -> Decimal:
    """Round toward zero to ledger precision (never overpays)."""
    return quantize(amount, rounding=ROUND_DOWN)


def has_ledger_precision(amount: Decimal) -> bool:
    """True if the amount needs no more than 7 fractional digits."""
    return quantize(amount) == amount


def format_amount(amount: Decimal) -> str:
    """Ledger string form, always 7 fractional digits."""
    return f"{quantize(amount):.{LEDGER_DECIMAL_PLACES}f}"


def percentage_of(amount: Decimal, pct: Decimal) -> Decimal:
    return amount * pct / HUNDRED
