from __future__ import annotations

from ..extensions import db
from tvanamm.money import to_rupees
from tvanamm.time_utils import to_utc_z


class Invoice(db.Model):
    """
    Tax invoice header for one order.

    Amounts are a projection of the order's immutable items and loyalty
    ledger, never an independent pricing source.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_invoices_order"),
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    invoice_number = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="issued")
    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    subtotal_amount_paise = db.Column(db.Integer, nullable=False)
    tax_amount_paise = db.Column(db.Integer, nullable=False)
    total_amount_paise = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "invoice_date": to_utc_z(self.invoice_date),
            "due_date": to_utc_z(self.due_date),
            "expires_at": to_utc_z(self.expires_at),
            "subtotal_amount_paise": self.subtotal_amount_paise,
            "tax_amount_paise": self.tax_amount_paise,
            "total_amount_paise": self.total_amount_paise,
            "subtotal_amount": to_rupees(self.subtotal_amount_paise),
            "tax_amount": to_rupees(self.tax_amount_paise),
            "total_amount": to_rupees(self.total_amount_paise),
        }
