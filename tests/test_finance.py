from decimal import Decimal

import pytest

from cma_engine.core.finance import (
    amortization_schedule,
    money,
    monthly_payment,
    mortgage_breakdown,
    percent_band,
    percent_change,
    price_per_area,
    round_to_thousand,
    to_decimal,
)


class TestDecimalHelpers:
    def test_percent_band_is_exact(self):
        low, high = percent_band(500_000, 15)
        assert low == Decimal("425000")
        assert high == Decimal("575000")

    def test_float_input_has_no_binary_noise(self):
        assert to_decimal(0.1) + to_decimal(0.2) == Decimal("0.3")

    def test_money_rounds_half_up(self):
        assert money("2.345") == Decimal("2.35")
        assert money("2.344") == Decimal("2.34")

    def test_round_to_thousand(self):
        assert round_to_thousand(487_500) == Decimal("4.88E5")
        assert int(round_to_thousand(487_499)) == 487_000

    def test_percent_change(self):
        assert percent_change(300_000, 330_000) == Decimal("10.00")
        assert percent_change(200, 150) == Decimal("-25.00")
        assert percent_change(0, 10) is None

    def test_price_per_area(self):
        assert price_per_area(500_000, 2000) == Decimal("250.00")
        assert price_per_area(500_000, 0) is None
        assert price_per_area(None, 2000) is None

    def test_to_decimal_rejects_junk(self):
        with pytest.raises(ValueError):
            to_decimal("not a number")


class TestMortgage:
    def test_standard_payment(self):
        # $400k at 6% over 30 years
        assert monthly_payment(400_000, 6, 30) == Decimal("2398.20")

    def test_zero_rate_is_straight_line(self):
        assert monthly_payment(360_000, 0, 30) == Decimal("1000.00")

    def test_schedule_pays_off_the_loan(self):
        rows = amortization_schedule(100_000, 5, 15)
        assert len(rows) == 180
        assert rows[-1]["balance"] <= Decimal("5.00")
        assert rows[0]["interest"] == Decimal("416.67")

    def test_breakdown_with_pmi(self):
        b = mortgage_breakdown(500_000, 10, 6, years=30, property_tax_monthly=400, insurance_monthly=100)
        assert b.down_payment == Decimal("50000.00")
        assert b.loan_amount == Decimal("450000.00")
        assert b.pmi == Decimal("187.50")
        assert b.total_monthly == b.principal_and_interest + b.pmi + Decimal("500.00")
        assert b.closing_costs == Decimal("15000.00")
        assert b.cash_needed == Decimal("65000.00")

    def test_no_pmi_at_twenty_percent_down(self):
        b = mortgage_breakdown(500_000, 20, 6)
        assert b.pmi == Decimal("0.00")

    def test_to_dict_is_json_ready(self):
        d = mortgage_breakdown(300_000, 20, 5).to_dict()
        assert isinstance(d["total_monthly"], float)
