# Overview: GST-inclusive cart pricing and order total arithmetic; pure functions, no database access.

"""
Pricing calculator

Catalog prices are GST-exclusive. When a product enters the cart its
GST-inclusive unit price is fixed once:

    unit_gst   = round_half_up(base x rate / 100)      (to the paisa)
    unit_price = base + unit_gst

and never recomputed afterwards, so a catalog rate change mid-session
cannot silently reprice the cart. Line GST is unit_gst x quantity, i.e.
rounding happens per unit/line before anything is summed.

    subtotal     = sum(unit_price x quantity)          (GST-inclusive)
    gst_amount   = sum(unit_gst x quantity)
    final_amount = subtotal - loyalty_discount + delivery_fee
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable

from flask import current_app, has_app_context

from ..money import PAISE_PER_RUPEE, percent_of, to_rupees, bps_to_percent


DEFAULT_GST_RATE_BPS = 1800
DEFAULT_REDEMPTION_CAP_PERCENT = 30


def default_gst_rate_bps() -> int:
    if has_app_context():
        return current_app.config.get("DEFAULT_GST_RATE_BPS", DEFAULT_GST_RATE_BPS)
    return DEFAULT_GST_RATE_BPS


def unit_gst_paise(base_price_paise: int, gst_rate_bps: int) -> int:
    return percent_of(base_price_paise, gst_rate_bps)


def inclusive_unit_price(base_price_paise: int, gst_rate_bps: int) -> int:
    return base_price_paise + unit_gst_paise(base_price_paise, gst_rate_bps)


@dataclass(frozen=True)
class CartLine:
    id: int
    name: str
    base_price_paise: int
    price_paise: int
    quantity: int
    gst_rate_bps: int

    @classmethod
    def from_catalog(cls, product_id: int, name: str, base_price_paise: int,
                     gst_rate_bps: int | None, quantity: int = 1) -> "CartLine":
        rate = default_gst_rate_bps() if gst_rate_bps is None else gst_rate_bps
        return cls(
            id=product_id,
            name=name,
            base_price_paise=base_price_paise,
            price_paise=inclusive_unit_price(base_price_paise, rate),
            quantity=quantity,
            gst_rate_bps=rate,
        )

    def with_quantity(self, quantity: int) -> "CartLine":
        # price_paise is carried over untouched
        return replace(self, quantity=quantity)

    @property
    def unit_gst_paise(self) -> int:
        return self.price_paise - self.base_price_paise

    @property
    def line_total_paise(self) -> int:
        return self.price_paise * self.quantity

    @property
    def line_gst_paise(self) -> int:
        return self.unit_gst_paise * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "base_price_paise": self.base_price_paise,
            "price_paise": self.price_paise,
            "quantity": self.quantity,
            "gst_rate_bps": self.gst_rate_bps,
            "base_price": to_rupees(self.base_price_paise),
            "price": to_rupees(self.price_paise),
            "gst_rate": bps_to_percent(self.gst_rate_bps),
            "line_total": to_rupees(self.line_total_paise),
            "line_gst": to_rupees(self.line_gst_paise),
        }

    def to_storage(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "base_price_paise": self.base_price_paise,
            "price_paise": self.price_paise,
            "quantity": self.quantity,
            "gst_rate_bps": self.gst_rate_bps,
        }

    @classmethod
    def from_storage(cls, data: dict) -> "CartLine":
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            base_price_paise=int(data["base_price_paise"]),
            price_paise=int(data["price_paise"]),
            quantity=int(data["quantity"]),
            gst_rate_bps=int(data["gst_rate_bps"]),
        )


@dataclass(frozen=True)
class OrderTotals:
    subtotal_paise: int
    gst_amount_paise: int
    loyalty_discount_paise: int = 0
    delivery_fee_paise: int | None = None

    @property
    def final_amount_paise(self) -> int:
        return compute_final_amount(
            self.subtotal_paise, self.loyalty_discount_paise, self.delivery_fee_paise
        )

    def with_loyalty_discount(self, points: int) -> "OrderTotals":
        return replace(self, loyalty_discount_paise=points_to_paise(points))

    def to_dict(self) -> dict:
        return {
            "subtotal_paise": self.subtotal_paise,
            "gst_amount_paise": self.gst_amount_paise,
            "loyalty_discount_paise": self.loyalty_discount_paise,
            "delivery_fee_paise": self.delivery_fee_paise,
            "final_amount_paise": self.final_amount_paise,
            "subtotal": to_rupees(self.subtotal_paise),
            "gst_amount": to_rupees(self.gst_amount_paise),
            "loyalty_discount": to_rupees(self.loyalty_discount_paise),
            "delivery_fee": to_rupees(self.delivery_fee_paise),
            "final_amount": to_rupees(self.final_amount_paise),
        }


def points_to_paise(points: int) -> int:
    """1 loyalty point = 1 rupee."""
    return points * PAISE_PER_RUPEE


def compute_totals(lines: Iterable[CartLine]) -> OrderTotals:
    subtotal = 0
    gst = 0
    for line in lines:
        subtotal += line.line_total_paise
        gst += line.line_gst_paise
    return OrderTotals(subtotal_paise=subtotal, gst_amount_paise=gst)


def compute_final_amount(subtotal_paise: int, loyalty_discount_paise: int,
                         delivery_fee_paise: int | None) -> int:
    return subtotal_paise - loyalty_discount_paise + (delivery_fee_paise or 0)


def redemption_cap_points(subtotal_paise: int, cap_percent: int | None = None) -> int:
    """
    Most points usable as a cash discount on one order:
    floor(subtotal_rupees x cap_percent / 100).
    """
    if cap_percent is None:
        cap_percent = (
            current_app.config.get("LOYALTY_REDEMPTION_CAP_PERCENT", DEFAULT_REDEMPTION_CAP_PERCENT)
            if has_app_context()
            else DEFAULT_REDEMPTION_CAP_PERCENT
        )
    if subtotal_paise <= 0:
        return 0
    return (subtotal_paise * cap_percent) // (100 * PAISE_PER_RUPEE)
