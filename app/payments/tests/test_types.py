"""
Tests for amount conversion between major and minor currency units.
"""

from decimal import Decimal

import pytest

from payments.gateways.types import as_decimal, from_minor_units, to_minor_units


class TestMinorUnits:
    @pytest.mark.parametrize("amount", ["0.01", "1.00", "100.00", "249.99", "99999.99"])
    @pytest.mark.parametrize("currency", ["ZAR", "NGN", "USD"])
    def test_two_decimal_round_trip(self, amount, currency):
        value = Decimal(amount)

        assert from_minor_units(to_minor_units(value, currency), currency) == value

    @pytest.mark.parametrize("amount", ["1", "1500", "999999"])
    def test_zero_decimal_round_trip(self, amount):
        value = Decimal(amount)

        assert to_minor_units(value, "JPY") == int(amount)
        assert from_minor_units(to_minor_units(value, "JPY"), "JPY") == value

    def test_cents_and_kobo(self):
        assert to_minor_units(Decimal("100.00"), "ZAR") == 10000
        assert to_minor_units(Decimal("5000.00"), "NGN") == 500000

    def test_rounds_half_up_to_the_minor_unit(self):
        assert to_minor_units(Decimal("10.005"), "ZAR") == 1001
        assert to_minor_units(Decimal("10.004"), "ZAR") == 1000

    def test_currency_code_is_case_insensitive(self):
        assert to_minor_units(Decimal("1500"), "jpy") == 1500

    def test_from_minor_units_keeps_two_places(self):
        assert str(from_minor_units(500000, "NGN")) == "5000.00"


@pytest.mark.parametrize(
    "raw,expected",
    [("100.00", Decimal("100.00")), (100, Decimal("100")), (None, None), ("", None)],
)
def test_as_decimal(raw, expected):
    assert as_decimal(raw) == expected
