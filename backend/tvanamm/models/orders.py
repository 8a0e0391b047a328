from __future__ import annotations

from ..extensions import db
from ..services.lifecycle_service import OrderState
from tvanamm.money import to_rupees, bps_to_percent
from tvanamm.time_utils import to_utc_z


class Order(db.Model):
    """
    Checkout result and fulfillment document.

    Money columns are paise. total_amount_paise is the GST-inclusive subtotal
    before discount; final_amount_paise is what is collected and is always
    re-derived as total - loyalty_discount + delivery_fee.

    status (workflow stage) and payment_status (money stage) only change
    together through lifecycle_service.next_state.

    unpaid_guard_user_id holds user_id while the order is open and unpaid and
    is NULL otherwise; its unique constraint allows one such order per user.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.UniqueConstraint("unpaid_guard_user_id", name="uq_orders_unpaid_guard_user"),
        db.Index("ix_orders_user_status", "user_id", "status"),
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    payment_status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    unpaid_guard_user_id = db.Column(db.Integer, nullable=True)

    # Settled totals (paise)
    total_amount_paise = db.Column(db.Integer, nullable=False)
    gst_amount_paise = db.Column(db.Integer, nullable=False)
    loyalty_discount_paise = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_used = db.Column(db.Integer, nullable=False, default=0)
    reward_code = db.Column(db.String(32), nullable=True)
    delivery_fee_paise = db.Column(db.Integer, nullable=True)
    final_amount_paise = db.Column(db.Integer, nullable=False)

    shipping_address = db.Column(db.JSON, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # Payment signal
    payment_id = db.Column(db.String(128), nullable=True)
    payment_method = db.Column(db.String(32), nullable=True)
    payment_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Lifecycle audit trail
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    confirmed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    delivery_fee_added_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    packing_started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    packing_started_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    packed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    packed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    # Shipping details entered by staff
    transport_company = db.Column(db.String(128), nullable=True)
    vehicle_number = db.Column(db.String(32), nullable=True)
    driver_name = db.Column(db.String(128), nullable=True)
    driver_contact = db.Column(db.String(32), nullable=True)
    tracking_info = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    user = db.relationship("User", foreign_keys=[user_id], backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def state(self) -> OrderState:
        return OrderState(self.status, self.payment_status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "status": self.status,
            "payment_status": self.payment_status,
            "total_amount_paise": self.total_amount_paise,
            "gst_amount_paise": self.gst_amount_paise,
            "loyalty_discount_paise": self.loyalty_discount_paise,
            "loyalty_points_used": self.loyalty_points_used,
            "reward_code": self.reward_code,
            "delivery_fee_paise": self.delivery_fee_paise,
            "final_amount_paise": self.final_amount_paise,
            "total_amount": to_rupees(self.total_amount_paise),
            "gst_amount": to_rupees(self.gst_amount_paise),
            "loyalty_discount": to_rupees(self.loyalty_discount_paise),
            "delivery_fee": to_rupees(self.delivery_fee_paise),
            "final_amount": to_rupees(self.final_amount_paise),
            "shipping_address": self.shipping_address,
            "notes": self.notes,
            "payment_id": self.payment_id,
            "payment_method": self.payment_method,
            "payment_completed_at": to_utc_z(self.payment_completed_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "confirmed_by": self.confirmed_by,
            "delivery_fee_added_by": self.delivery_fee_added_by,
            "packing_started_at": to_utc_z(self.packing_started_at),
            "packing_started_by": self.packing_started_by,
            "packed_at": to_utc_z(self.packed_at),
            "packed_by": self.packed_by,
            "shipped_at": to_utc_z(self.shipped_at),
            "shipped_by": self.shipped_by,
            "delivered_at": to_utc_z(self.delivered_at),
            "delivered_by": self.delivered_by,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "cancel_reason": self.cancel_reason,
            "transport_company": self.transport_company,
            "vehicle_number": self.vehicle_number,
            "driver_name": self.driver_name,
            "driver_contact": self.driver_contact,
            "tracking_info": self.tracking_info,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class OrderItem(db.Model):
    """
    Immutable pricing record of one order line.

    unit_price_paise is GST-exclusive; total_price_paise is the GST-inclusive
    line total settled at checkout. Never updated after insert.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_paise = db.Column(db.Integer, nullable=False)
    total_price_paise = db.Column(db.Integer, nullable=False)
    gst_rate_bps = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_paise": self.unit_price_paise,
            "total_price_paise": self.total_price_paise,
            "gst_rate_bps": self.gst_rate_bps,
            "unit_price": to_rupees(self.unit_price_paise),
            "total_price": to_rupees(self.total_price_paise),
            "gst_rate": bps_to_percent(self.gst_rate_bps),
        }


class PackingItem(db.Model):
    """Packing checklist entry, one per order line, created when packing starts."""
    __tablename__ = "packing_items"
    __table_args__ = (
        db.UniqueConstraint("order_item_id", name="uq_packing_items_order_item"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    packed_quantity = db.Column(db.Integer, nullable=False, default=0)
    is_packed = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.String(255), nullable=True)

    packed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    packed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("packing_items", lazy=True, order_by="PackingItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "packed_quantity": self.packed_quantity,
            "is_packed": self.is_packed,
            "notes": self.notes,
            "packed_at": to_utc_z(self.packed_at),
            "packed_by": self.packed_by,
        }


class OrderStatusEvent(db.Model):
    """
    Append-only history of order state changes.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "order_status_events"
    __table_args__ = (
        db.Index("ix_order_status_events_order_occurred", "order_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=False)
    from_payment_status = db.Column(db.String(16), nullable=True)
    to_payment_status = db.Column(db.String(16), nullable=False)
    trigger = db.Column(db.String(16), nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.String(500), nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "from_payment_status": self.from_payment_status,
            "to_payment_status": self.to_payment_status,
            "trigger": self.trigger,
            "actor_user_id": self.actor_user_id,
            "notes": self.notes,
            "occurred_at": to_utc_z(self.occurred_at),
        }
