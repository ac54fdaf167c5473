from decimal import Decimal

import pytest

from showpass.utils.money import (
    TaxPolicy,
    compute_breakdown,
    from_minor_units,
    quantize,
    to_decimal,
    to_minor_units,
)


class TestMinorUnits:
    def test_rounds_half_up(self):
        assert to_minor_units(Decimal("10.005")) == 1001
        assert to_minor_units(Decimal("10.004")) == 1000

    def test_float_input_keeps_its_printed_value(self):
        assert to_decimal(29.99) == Decimal("29.99")
        assert to_minor_units(29.99) == 2999

    def test_zero_decimal_currency(self):
        assert to_minor_units(Decimal("1500"), "JPY") == 1500
        assert from_minor_units(1500, "JPY") == Decimal("1500")

    def test_three_decimal_currency(self):
        assert to_minor_units(Decimal("1.2345"), "KWD") == 1235

    def test_from_minor_units(self):
        assert from_minor_units(49950) == Decimal("499.50")


class TestBreakdown:
    def test_fee_and_tax_on_discounted_amount(self):
        policy = TaxPolicy(Decimal("2"), Decimal("18"))
        b = compute_breakdown(Decimal("500"), policy, Decimal("10"))
        assert b.fees == Decimal("10.00")
        assert b.tax == Decimal("90.00")  # 18% of 500 + 10 - 10
        assert b.final == Decimal("590.00")

    def test_no_tax_policy(self):
        b = compute_breakdown("400", TaxPolicy.no_tax())
        assert b.final == Decimal("400.00")
        assert b.fees == b.tax == Decimal("0.00")

    def test_discount_capped_at_total(self):
        b = compute_breakdown("100", TaxPolicy.no_tax(), "250")
        assert b.discount == Decimal("100.00")
        assert b.final == Decimal("0.00")

    def test_negative_discount_rejected(self):
        with pytest.raises(ValueError):
            compute_breakdown("100", TaxPolicy.no_tax(), "-1")

    def test_quantize(self):
        assert quantize("2.675") == Decimal("2.68")
