"""
Monetary and VAT helpers.

Tax convention (authoritative for the whole system):
- Shelf prices are VAT-EXCLUSIVE.
- A sale's subtotal is the sum of net line totals.
- tax = vat_on_net(subtotal); total = subtotal + tax.

All arithmetic is Decimal, rounded half-up to whole cents. Amounts are
persisted as integer cents and converted at the model boundary.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from flask import current_app, has_app_context

from .validation import MAX_PRICE_CENTS, ValidationError

CENT = Decimal("0.01")
DEFAULT_VAT_RATE = Decimal("0.12")
DEFAULT_CURRENCY_SYMBOL = "₱"

Amount = Union[Decimal, int, str]


def _configured_rate() -> Decimal:
    if has_app_context():
        return Decimal(str(current_app.config.get("STOCKROOM_VAT_RATE", DEFAULT_VAT_RATE)))
    return DEFAULT_VAT_RATE


def _rate(rate: Amount | None) -> Decimal:
    value = _configured_rate() if rate is None else Decimal(str(rate))
    if value.is_nan() or value < 0:
        raise ValidationError("VAT rate must be a non-negative number")
    return value


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value: Amount, field: str = "amount") -> Decimal:
    """
    Coerce input to a non-negative 2-place Decimal.

    Floats are refused because their binary representation drifts; pass
    strings or Decimals instead.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(
            f"{field} must be a decimal string or integer, not {type(value).__name__}",
            details={"field": field},
        )
    try:
        amount = Decimal(value) if not isinstance(value, Decimal) else value
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field})

    if amount.is_nan() or amount.is_infinite():
        raise ValidationError(f"{field} must be a finite number", details={"field": field})
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", details={"field": field})
    if amount != amount.quantize(CENT, rounding=ROUND_HALF_UP):
        raise ValidationError(f"{field} can have at most 2 decimal places", details={"field": field})
    return amount.quantize(CENT)


def validate_price(value: Amount) -> Decimal:
    price = to_money(value, field="price")
    if to_cents(price) > MAX_PRICE_CENTS:
        raise ValidationError("price exceeds the maximum allowed", details={"field": "price"})
    return price


def to_cents(amount: Decimal) -> int:
    return int(quantize(amount) * 100)


def from_cents(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)


def net_from_gross(gross: Amount, rate: Amount | None = None) -> Decimal:
    """Remove VAT from a VAT-inclusive amount."""
    value = to_money(gross, field="gross")
    return quantize(value / (1 + _rate(rate)))


def vat_from_gross(gross: Amount, rate: Amount | None = None) -> Decimal:
    """
    VAT contained in a VAT-inclusive amount.

    Derived as gross - net so that net + vat always equals gross exactly.
    """
    value = to_money(gross, field="gross")
    return value - net_from_gross(value, rate)


def gross_from_net(net: Amount, rate: Amount | None = None) -> Decimal:
    """Add VAT to a VAT-exclusive amount."""
    value = to_money(net, field="net")
    return value + vat_on_net(value, rate)


def vat_on_net(net: Amount, rate: Amount | None = None) -> Decimal:
    """VAT charged on top of a VAT-exclusive amount."""
    value = to_money(net, field="net")
    return quantize(value * _rate(rate))


def sale_totals(line_totals: list[Decimal], rate: Amount | None = None) -> tuple[Decimal, Decimal, Decimal]:
    """Return (subtotal, tax, total) for VAT-exclusive line totals."""
    subtotal = quantize(sum(line_totals, Decimal("0")))
    tax = vat_on_net(subtotal, rate)
    return subtotal, tax, subtotal + tax


def format_number(amount: Amount) -> str:
    """1234.5 -> '1,234.50'. Presentation only."""
    value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    value = quantize(value)
    sign = "-" if value < 0 else ""
    return f"{sign}{abs(value):,.2f}"


def format_currency(amount: Amount, symbol: str | None = None) -> str:
    """1234.5 -> '₱1,234.50'. Presentation only."""
    if symbol is None:
        symbol = DEFAULT_CURRENCY_SYMBOL
        if has_app_context():
            symbol = current_app.config.get("STOCKROOM_CURRENCY_SYMBOL", symbol)
    text = format_number(amount)
    if text.startswith("-"):
        return f"-{symbol}{text[1:]}"
    return f"{symbol}{text}"


def format_vat_label(rate: Amount | None = None) -> str:
    percent = (_rate(rate) * 100).normalize()
    return f"VAT ({percent:f}%)"
