from decimal import Decimal

import pytest

from stockroom import money
from stockroom.validation import ValidationError


@pytest.mark.parametrize("gross", ["0.01", "1.00", "99.99", "112.00", "1234.57", "0.00", "999999.99"])
def test_net_plus_vat_equals_gross(gross):
    g = Decimal(gross)
    assert money.net_from_gross(g) + money.vat_from_gross(g) == g


def test_vat_exclusive_convention():
    assert money.vat_on_net("100.00") == Decimal("12.00")
    assert money.gross_from_net("100.00") == Decimal("112.00")
    assert money.net_from_gross("112.00") == Decimal("100.00")
    assert money.vat_from_gross("112.00") == Decimal("12.00")


def test_rounding_is_half_up():
    # 0.10 * 0.05 = 0.005
    assert money.vat_on_net("0.10", rate="0.05") == Decimal("0.01")
    assert money.vat_on_net("0.13") == Decimal("0.02")
    assert money.vat_on_net("0.04") == Decimal("0.00")


def test_sale_totals():
    subtotal, tax, total = money.sale_totals([Decimal("50.00"), Decimal("50.00")])
    assert (subtotal, tax, total) == (Decimal("100.00"), Decimal("12.00"), Decimal("112.00"))


def test_explicit_rate_overrides_default():
    assert money.vat_on_net("100.00", rate="0.05") == Decimal("5.00")


@pytest.mark.parametrize("bad", ["-1", "NaN", "Infinity", "abc", "1.005", 1.5, True, None])
def test_invalid_amounts_rejected(bad):
    with pytest.raises(ValidationError):
        money.to_money(bad)


def test_to_money_normalises_places():
    assert money.to_money("5") == Decimal("5.00")
    assert money.to_money(7) == Decimal("7.00")
    assert str(money.to_money("5.5")) == "5.50"


def test_price_ceiling():
    assert money.validate_price("9999999.99") == Decimal("9999999.99")
    with pytest.raises(ValidationError):
        money.validate_price("10000000.00")


def test_cents_conversion():
    assert money.to_cents(Decimal("12.34")) == 1234
    assert money.from_cents(1234) == Decimal("12.34")
    assert money.from_cents(None) is None


def test_formatting():
    assert money.format_currency(Decimal("1234.5")) == "₱1,234.50"
    assert money.format_currency("0") == "₱0.00"
    assert money.format_currency("-5", symbol="$") == "-$5.00"
    assert money.format_number("1000000") == "1,000,000.00"
    assert money.format_vat_label() == "VAT (12%)"
    assert money.format_vat_label("0.125") == "VAT (12.5%)"


def test_configured_rate_is_used(app):
    with app.app_context():
        app.config["STOCKROOM_VAT_RATE"] = "0.10"
        try:
            assert money.vat_on_net("100.00") == Decimal("10.00")
            assert money.format_vat_label() == "VAT (10%)"
        finally:
            app.config["STOCKROOM_VAT_RATE"] = "0.12"
