# Overview: Tax invoice generation: independent re-derivation of order totals, reconciliation, HTML rendering.

"""
Invoice generator

The invoice never trusts the order's stored totals. It re-reads the
immutable OrderItems and the loyalty ledger and recomputes:

    subtotal = sum(unit_price x qty)                       (GST-exclusive)
    tax      = sum(round_half_up(unit_price x qty x rate)) (rounded per line)
    discount = sum(|points|) of cash redemptions for the order, in rupees
    expected = subtotal + tax + (delivery_fee or 0) - discount

Checkout rounds GST per unit while the invoice rounds per line, so the two
may differ by up to half a paisa per unit. A difference larger than one
paisa per unit ordered is pricing drift and raises ReconciliationError;
no document is produced.

Generation is idempotent. The Invoice row (and its number) is created on
the first call; later calls re-derive and re-render from the same
persisted inputs. Nothing time-dependent is rendered beyond the stored
invoice date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from flask import current_app, render_template
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, LoyaltyTransaction, Order
from ..money import PAISE_PER_RUPEE, round_half_up
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError
from .identifier_service import next_invoice_number


DEFAULT_DUE_DAYS = 7
DEFAULT_EXPIRY_DAYS = 30


class ReconciliationError(Exception):
    """Invoice totals do not match the order's settled amount."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class InvoiceLine:
    sno: int
    product_name: str
    quantity: int
    unit_price_paise: int
    gst_rate_bps: int
    subtotal_paise: int
    gst_paise: int

    @property
    def total_paise(self) -> int:
        return self.subtotal_paise + self.gst_paise


@dataclass(frozen=True)
class InvoiceBreakdown:
    lines: tuple[InvoiceLine, ...]
    subtotal_paise: int
    tax_paise: int
    delivery_fee_paise: int | None
    loyalty_discount_paise: int
    units: int

    @property
    def computed_total_paise(self) -> int:
        return (
            self.subtotal_paise
            + self.tax_paise
            + (self.delivery_fee_paise or 0)
            - self.loyalty_discount_paise
        )

    @property
    def tolerance_paise(self) -> int:
        return self.units

    def to_dict(self) -> dict:
        return {
            "subtotal_paise": self.subtotal_paise,
            "tax_paise": self.tax_paise,
            "delivery_fee_paise": self.delivery_fee_paise,
            "loyalty_discount_paise": self.loyalty_discount_paise,
            "computed_total_paise": self.computed_total_paise,
            "units": self.units,
        }


@dataclass(frozen=True)
class InvoiceDocument:
    invoice: Invoice
    order: Order
    breakdown: InvoiceBreakdown
    html: str

    def to_dict(self) -> dict:
        data = self.invoice.to_dict()
        data["order_number"] = self.order.order_number
        data["breakdown"] = self.breakdown.to_dict()
        return data


def _line_gst(unit_price_paise: int, quantity: int, rate_bps: int) -> int:
    return round_half_up(Decimal(unit_price_paise * quantity) * Decimal(rate_bps) / Decimal(10_000))


def cash_discount_paise(order_id: int) -> int:
    """Cash-discount redemptions only; reward redemptions carry a reward_code and are not money."""
    rows = (
        db.session.query(LoyaltyTransaction.points)
        .filter(
            LoyaltyTransaction.order_id == order_id,
            LoyaltyTransaction.type == "redeemed",
            LoyaltyTransaction.reward_code.is_(None),
        )
        .all()
    )
    return sum(abs(points) for (points,) in rows) * PAISE_PER_RUPEE


def compute_breakdown(order: Order) -> InvoiceBreakdown:
    lines = []
    for sno, item in enumerate(order.items, start=1):
        lines.append(InvoiceLine(
            sno=sno,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price_paise=item.unit_price_paise,
            gst_rate_bps=item.gst_rate_bps,
            subtotal_paise=item.unit_price_paise * item.quantity,
            gst_paise=_line_gst(item.unit_price_paise, item.quantity, item.gst_rate_bps),
        ))

    return InvoiceBreakdown(
        lines=tuple(lines),
        subtotal_paise=sum(line.subtotal_paise for line in lines),
        tax_paise=sum(line.gst_paise for line in lines),
        delivery_fee_paise=order.delivery_fee_paise,
        loyalty_discount_paise=cash_discount_paise(order.id),
        units=sum(line.quantity for line in lines),
    )


def reconcile(breakdown: InvoiceBreakdown, order: Order) -> None:
    difference = breakdown.computed_total_paise - order.final_amount_paise
    if abs(difference) > breakdown.tolerance_paise:
        details = {
            "order_id": order.id,
            "order_number": order.order_number,
            "order_final_amount_paise": order.final_amount_paise,
            "computed_total_paise": breakdown.computed_total_paise,
            "difference_paise": difference,
            "tolerance_paise": breakdown.tolerance_paise,
        }
        current_app.logger.error("Invoice reconciliation failed: %s", details)
        raise ReconciliationError(
            f"Invoice totals for order {order.order_number} do not match the order amount",
            details=details,
        )


def _due_date(order: Order, invoice_date):
    if order.payment_status == "completed":
        return None
    return invoice_date + timedelta(days=current_app.config.get("INVOICE_DUE_DAYS", DEFAULT_DUE_DAYS))


def _create_invoice(order: Order, breakdown: InvoiceBreakdown) -> Invoice:
    invoice_number = next_invoice_number()
    invoice_date = utcnow().replace(microsecond=0)
    invoice = Invoice(
        order_id=order.id,
        user_id=order.user_id,
        invoice_number=invoice_number,
        status="issued",
        invoice_date=invoice_date,
        due_date=_due_date(order, invoice_date),
        expires_at=invoice_date + timedelta(
            days=current_app.config.get("INVOICE_EXPIRY_DAYS", DEFAULT_EXPIRY_DAYS)
        ),
        subtotal_amount_paise=breakdown.subtotal_paise,
        tax_amount_paise=breakdown.tax_paise,
        total_amount_paise=order.final_amount_paise,
    )
    db.session.add(invoice)
    try:
        db.session.commit()
    except IntegrityError:
        # A concurrent first call won on uq_invoices_order
        db.session.rollback()
        invoice = db.session.query(Invoice).filter_by(order_id=order.id).first()
        if invoice is None:
            raise
        return invoice

    current_app.logger.info("Invoice %s issued for order %s", invoice.invoice_number, order.order_number)
    return invoice


def _sync_amounts(invoice: Invoice, order: Order, breakdown: InvoiceBreakdown) -> None:
    """Keep the stored header in line with the (re-derived) amounts."""
    changed = (
        invoice.subtotal_amount_paise != breakdown.subtotal_paise
        or invoice.tax_amount_paise != breakdown.tax_paise
        or invoice.total_amount_paise != order.final_amount_paise
    )
    if order.payment_status == "completed" and invoice.due_date is not None:
        invoice.due_date = None
        changed = True
    if not changed:
        return
    invoice.subtotal_amount_paise = breakdown.subtotal_paise
    invoice.tax_amount_paise = breakdown.tax_paise
    invoice.total_amount_paise = order.final_amount_paise
    db.session.commit()


def render_invoice_html(invoice: Invoice, order: Order, breakdown: InvoiceBreakdown) -> str:
    config = current_app.config
    return render_template(
        "invoice.html",
        invoice=invoice,
        order=order,
        customer=order.user,
        address=order.shipping_address or {},
        breakdown=breakdown,
        company={
            "name": config["COMPANY_NAME"],
            "tagline": config["COMPANY_TAGLINE"],
            "subtitle": config["COMPANY_SUBTITLE"],
            "gstin": config["COMPANY_GSTIN"],
            "email": config["COMPANY_EMAIL"],
            "phones": config["COMPANY_PHONES"],
        },
    )


def generate_invoice(order_id: int, user_id: int | None = None) -> InvoiceDocument:
    """
    Issue (first call) or re-render (later calls) the tax invoice for an order.

    With user_id, only that user's order is visible.

    Raises:
        NotFoundError: unknown order (or not the user's).
        ConflictError: the order is cancelled.
        ReconciliationError: re-derived totals disagree with the order.
    """
    order = db.session.get(Order, order_id)
    if order is None or (user_id is not None and order.user_id != user_id):
        raise NotFoundError("Order not found", details={"order_id": order_id})
    if order.status == "cancelled":
        raise ConflictError(
            "Cancelled orders cannot be invoiced",
            current_state=order.state.to_dict(),
        )

    breakdown = compute_breakdown(order)
    reconcile(breakdown, order)

    invoice = db.session.query(Invoice).filter_by(order_id=order.id).first()
    if invoice is None:
        invoice = _create_invoice(order, breakdown)
    else:
        _sync_amounts(invoice, order, breakdown)

    html = render_invoice_html(invoice, order, breakdown)
    return InvoiceDocument(invoice=invoice, order=order, breakdown=breakdown, html=html)


def get_invoice_for_order(order_id: int) -> Invoice | None:
    return db.session.query(Invoice).filter_by(order_id=order_id).first()
