"""
Pricing tests.

Verifies:
- GST-inclusive unit price is fixed when the line is created
- Quantity changes never reprice a line
- Order totals and the final amount formula
- Rupee/paise parsing and formatting
"""

import pytest

from tvanamm.money import format_inr, rate_to_bps, to_paise, to_rupees
from tvanamm.services.pricing_service import (
    CartLine,
    OrderTotals,
    compute_final_amount,
    compute_totals,
    inclusive_unit_price,
    redemption_cap_points,
)
from tvanamm.validation import ValidationError


# =============================================================================
# UNIT PRICE DERIVATION
# =============================================================================


class TestInclusiveUnitPrice:

    @pytest.mark.parametrize(
        "base,rate,expected",
        [
            (10_000, 1800, 11_800),   # Rs 100 @ 18% -> Rs 118
            (5_000, 500, 5_250),      # Rs 50 @ 5% -> Rs 52.50
            (999, 500, 1_049),        # 49.95 paise of GST rounds half up to 50
            (12_345, 1200, 13_826),   # 1481.4 -> 1481
            (500_000, 0, 500_000),
        ],
    )
    def test_rounds_half_up_to_the_paisa(self, base, rate, expected):
        assert inclusive_unit_price(base, rate) == expected

    def test_missing_rate_defaults_to_18_percent(self):
        line = CartLine.from_catalog(1, "Masala Tea", 10_000, None)
        assert line.gst_rate_bps == 1800
        assert line.price_paise == 11_800

    def test_zero_rate_is_kept(self):
        line = CartLine.from_catalog(1, "Exempt Pack", 10_000, 0)
        assert line.gst_rate_bps == 0
        assert line.price_paise == 10_000


class TestQuantityChanges:

    def test_quantity_change_keeps_unit_price(self):
        line = CartLine.from_catalog(1, "Masala Tea", 10_000, 1800, quantity=1)
        bigger = line.with_quantity(7)
        assert bigger.price_paise == line.price_paise
        assert bigger.line_total_paise == 7 * 11_800
        assert bigger.line_gst_paise == 7 * 1_800

    def test_storage_round_trip_keeps_fixed_price(self):
        # A stored line keeps its price even if it no longer matches base x rate
        stored = {
            "id": 3, "name": "Old Price Tea", "base_price_paise": 10_000,
            "price_paise": 11_200, "quantity": 2, "gst_rate_bps": 1200,
        }
        line = CartLine.from_storage(stored)
        assert line.price_paise == 11_200
        assert line.to_storage() == stored


# =============================================================================
# TOTALS
# =============================================================================


class TestTotals:

    def test_compute_totals_sums_inclusive_lines(self):
        lines = [
            CartLine.from_catalog(1, "Tea", 10_000, 1800, quantity=2),
            CartLine.from_catalog(2, "Biscuits", 5_000, 500, quantity=1),
        ]
        totals = compute_totals(lines)
        assert totals.subtotal_paise == 28_850
        assert totals.gst_amount_paise == 3_850
        assert totals.final_amount_paise == 28_850

    def test_empty_cart_totals_are_zero(self):
        totals = compute_totals([])
        assert totals.subtotal_paise == 0
        assert totals.gst_amount_paise == 0

    def test_final_amount_formula(self):
        assert compute_final_amount(28_850, 2_000, 4_000) == 30_850
        assert compute_final_amount(28_850, 0, None) == 28_850

    def test_loyalty_discount_is_one_rupee_per_point(self):
        totals = OrderTotals(subtotal_paise=28_850, gst_amount_paise=3_850).with_loyalty_discount(20)
        assert totals.loyalty_discount_paise == 2_000
        assert totals.final_amount_paise == 26_850

    def test_to_dict_renders_rupees(self):
        data = OrderTotals(28_850, 3_850, 2_000, 4_000).to_dict()
        assert data["final_amount"] == "308.50"
        assert data["delivery_fee"] == "40.00"


class TestRedemptionCap:

    @pytest.mark.parametrize(
        "subtotal,expected",
        [
            (100_000, 300),   # Rs 1000 -> 300 points
            (28_850, 86),     # Rs 288.50 -> 86.55 floored
            (99, 0),
            (0, 0),
        ],
    )
    def test_cap_is_thirty_percent_floored(self, subtotal, expected):
        assert redemption_cap_points(subtotal) == expected

    def test_cap_percent_override(self):
        assert redemption_cap_points(100_000, cap_percent=10) == 100


# =============================================================================
# MONEY PARSING
# =============================================================================


class TestMoney:

    @pytest.mark.parametrize(
        "value,expected",
        [("12.50", 1_250), (12.5, 1_250), (40, 4_000), ("0", 0)],
    )
    def test_to_paise(self, value, expected):
        assert to_paise(value) == expected

    @pytest.mark.parametrize("value", ["-1", "1.005", "abc", None, True, "NaN"])
    def test_to_paise_rejects(self, value):
        with pytest.raises(ValidationError):
            to_paise(value)

    def test_rate_to_bps(self):
        assert rate_to_bps("18") == 1800
        assert rate_to_bps(2.5) == 250
        with pytest.raises(ValidationError):
            rate_to_bps("101")

    def test_formatting(self):
        assert to_rupees(30_850) == "308.50"
        assert format_inr(30_850) == "₹308.50"
        assert format_inr(-2_000) == "-₹20.00"
        assert format_inr(None) == ""
