# Overview: Checkout and persisted order lifecycle (confirm, fee, packing, shipping, delivery, cancel, payment).

"""
Order service

Checkout writes the Order, its OrderItems, the loyalty debit, its ledger
rows and any gift stock decrement in ONE transaction; any failure rolls
all of it back.

Every later change loads the order under lock_for_update, validates the
*persisted* state with lifecycle_service.next_state immediately before
writing, and appends an OrderStatusEvent. Staff transitions run under
run_with_retry so a lost optimistic-version race re-validates against the
winner's state.

Duplicate in-flight checkouts are blocked by has_pending_unpaid_orders and,
for the race between two simultaneous checkouts, by the unique
orders.unpaid_guard_user_id column.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderItem, OrderStatusEvent, PackingItem
from ..time_utils import hours_ago, to_utc_z, utcnow
from ..validation import ConflictError, NotFoundError, ValidationError, optional_text, validate_shipping_address
from . import loyalty_service
from .concurrency import lock_for_update, run_with_retry
from .identifier_service import next_order_number
from .lifecycle_service import (
    INITIAL_STATE,
    STATUS_STAMPS,
    TRIGGER_CHECKOUT,
    TRIGGER_CUSTOMER,
    TRIGGER_PAYMENT,
    TRIGGER_STAFF,
    TRIGGER_TIMEOUT,
    LifecycleError,
    OrderState,
    next_state,
    payment_failed_state,
    refunded_state,
)
from .loyalty_service import FREE_DELIVERY, RedemptionRequest
from .pricing_service import CartLine, compute_final_amount, compute_totals


DEFAULT_STALE_ORDER_HOURS = 72
PAYMENT_SIGNALS = ("completed", "failed", "refunded")

# Target statuses the generic update_order_status refuses
DEDICATED_STATUSES = {
    "shipped": "ship_order",
}


class OrderError(ValidationError):
    """Raised for order input errors."""


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _open_unpaid_filter(query):
    return query.filter(
        Order.status.notin_(("delivered", "cancelled")),
        Order.payment_status != "completed",
    )


def has_pending_unpaid_orders(user_id: int) -> bool:
    query = _open_unpaid_filter(db.session.query(Order.id).filter(Order.user_id == user_id))
    return query.first() is not None


def get_order(order_id: int, user_id: int | None = None) -> Order:
    """Fetch an order; with user_id, only that user's order is visible."""
    order = db.session.get(Order, order_id)
    if order is None or (user_id is not None and order.user_id != user_id):
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_orders(user_id: int | None = None, status: str | None = None, limit: int = 100) -> list[Order]:
    query = db.session.query(Order)
    if user_id is not None:
        query = query.filter(Order.user_id == user_id)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()


def list_status_events(order_id: int) -> list[OrderStatusEvent]:
    return (
        db.session.query(OrderStatusEvent)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusEvent.occurred_at, OrderStatusEvent.id)
        .all()
    )


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

def _validate_lines(lines: list[CartLine]) -> None:
    if not lines:
        raise OrderError("Cart is empty")
    seen = set()
    for line in lines:
        if line.quantity < 1:
            raise OrderError("Quantities must be at least 1", details={"product_id": line.id})
        if line.id in seen:
            raise OrderError("Duplicate cart line", details={"product_id": line.id})
        seen.add(line.id)


def _insert_order(**values) -> Order:
    order = Order(**values)
    db.session.add(order)
    db.session.flush()
    return order


def _record_event(order: Order, from_state: OrderState | None, to_state: OrderState, trigger: str,
                  actor_user_id: int | None, notes: str | None = None) -> None:
    db.session.add(OrderStatusEvent(
        order_id=order.id,
        from_status=from_state.status if from_state else None,
        to_status=to_state.status,
        from_payment_status=from_state.payment_status if from_state else None,
        to_payment_status=to_state.payment_status,
        trigger=trigger,
        actor_user_id=actor_user_id,
        notes=notes,
    ))


def create_order(user_id: int, lines: Iterable[CartLine], shipping_address: dict,
                 redemption: RedemptionRequest | None = None, notes: str | None = None) -> Order:
    """
    Checkout: turn cart lines into a pending order.

    Raises:
        ValidationError: empty cart, bad address, or redemption rejected
            (InsufficientBalance / ExceedsRedemptionCap / RewardUnavailable).
        ConflictError: the user already has an open unpaid order.
    """
    lines = list(lines)
    _validate_lines(lines)
    address = validate_shipping_address(shipping_address)
    notes = optional_text(notes, "notes")
    redemption = redemption or RedemptionRequest()

    if has_pending_unpaid_orders(user_id):
        raise ConflictError(
            "You have a pending order awaiting payment. Complete it before placing a new order.",
            details={"user_id": user_id},
        )

    totals = compute_totals(lines)
    gift = loyalty_service.validate_request(
        redemption, loyalty_service.current_balance(user_id), totals.subtotal_paise
    )
    reward_code = gift.code if gift else None
    reward_points = gift.points_required if gift else 0
    totals = totals.with_loyalty_discount(redemption.points)
    if reward_code == FREE_DELIVERY:
        totals = replace(totals, delivery_fee_paise=0)

    # Committed separately; a rolled-back checkout leaves a gap in the sequence
    order_number = next_order_number()

    try:
        loyalty_service.reserve_points(user_id, redemption.points + reward_points)
        if gift is not None:
            loyalty_service.reserve_gift(gift)

        order = _insert_order(
            order_number=order_number,
            user_id=user_id,
            status=INITIAL_STATE.status,
            payment_status=INITIAL_STATE.payment_status,
            unpaid_guard_user_id=user_id,
            total_amount_paise=totals.subtotal_paise,
            gst_amount_paise=totals.gst_amount_paise,
            loyalty_discount_paise=totals.loyalty_discount_paise,
            loyalty_points_used=redemption.points,
            reward_code=reward_code,
            delivery_fee_paise=totals.delivery_fee_paise,
            final_amount_paise=totals.final_amount_paise,
            shipping_address=address,
            notes=notes,
        )

        for line in lines:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.id,
                product_name=line.name,
                quantity=line.quantity,
                unit_price_paise=line.base_price_paise,
                total_price_paise=line.line_total_paise,
                gst_rate_bps=line.gst_rate_bps,
            ))

        if redemption.points:
            loyalty_service.record_redemption(
                user_id, redemption.points, order.id,
                f"Redeemed on order {order_number}",
            )
        if gift is not None:
            loyalty_service.record_redemption(
                user_id, reward_points, order.id,
                f"{gift.name} on order {order_number}",
                reward_code=reward_code,
            )

        _record_event(order, None, INITIAL_STATE, TRIGGER_CHECKOUT, user_id)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if "unpaid_guard" in str(exc):
            raise ConflictError(
                "You have a pending order awaiting payment. Complete it before placing a new order.",
                details={"user_id": user_id},
            )
        raise
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s placed user=%s final=%s points=%s reward=%s",
        order.order_number, user_id, order.final_amount_paise,
        redemption.points, reward_code,
    )
    return order


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def _create_packing_items(order: Order) -> None:
    existing = {p.order_item_id for p in order.packing_items}
    for item in order.items:
        if item.id in existing:
            continue
        db.session.add(PackingItem(
            order_id=order.id,
            order_item_id=item.id,
            product_id=item.product_id,
            quantity=item.quantity,
            packed_quantity=0,
            is_packed=False,
        ))


def _require_all_packed(order: Order) -> None:
    unpacked = [p.id for p in order.packing_items if not p.is_packed]
    if not order.packing_items or unpacked:
        raise LifecycleError(
            "All items must be packed before packing is complete",
            order.state,
            details={"unpacked_item_ids": unpacked},
        )


def _apply_transition(order: Order, to_status: str, trigger: str, actor_user_id: int | None,
                      notes: str | None = None) -> OrderState:
    from_state = order.state
    new_state = next_state(from_state, to_status, trigger)

    # Entry conditions and side effects of the target stage
    if to_status == "packing":
        _create_packing_items(order)
    elif to_status == "packed":
        _require_all_packed(order)

    now = utcnow()
    at_col, by_col = STATUS_STAMPS.get(to_status, (None, None))
    if at_col:
        setattr(order, at_col, now)
    if by_col:
        setattr(order, by_col, actor_user_id)
    if to_status == "cancelled":
        order.cancel_reason = notes

    order.status = new_state.status
    order.payment_status = new_state.payment_status
    if not new_state.is_open_unpaid:
        order.unpaid_guard_user_id = None

    if to_status == "payment_completed":
        loyalty_service.award_order_points(order)

    _record_event(order, from_state, new_state, trigger, actor_user_id, notes)
    return new_state


def _transition(order_id: int, mutate: Callable[[Order], None], *, retry: bool = True) -> Order:
    """Lock, mutate, commit; domain errors roll back and propagate."""
    def _op():
        order = _lock_order(order_id)
        try:
            mutate(order)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return order

    return run_with_retry(_op) if retry else _op()


def _check_expected(order: Order, expected_status: str | None) -> None:
    if expected_status is not None and order.status != expected_status:
        raise ConflictError(
            f"Order is '{order.status}', expected '{expected_status}'",
            current_state=order.state.to_dict(),
        )


def update_order_status(order_id: int, new_status: str, actor_user_id: int | None,
                        notes: str | None = None, expected_status: str | None = None,
                        trigger: str = TRIGGER_STAFF) -> Order:
    """
    Move an order to new_status.

    expected_status makes the call conditional: it fails with ConflictError
    unless the persisted status still matches what the caller saw.

    Statuses whose entry records extra data (shipped needs the carrier) are
    rejected here; use their dedicated helper instead.
    """
    notes = optional_text(notes, "notes")
    helper = DEDICATED_STATUSES.get(new_status)
    if helper is not None:
        raise ValidationError(
            f"Orders move to '{new_status}' through {helper}",
            details={"status": new_status, "use": helper},
        )

    def _mutate(order: Order) -> None:
        _check_expected(order, expected_status)
        _apply_transition(order, new_status, trigger, actor_user_id, notes)

    order = _transition(order_id, _mutate)
    current_app.logger.info(
        "Order %s -> %s by user=%s (%s)", order.order_number, new_status, actor_user_id, trigger
    )
    return order


def _apply_delivery_fee(order: Order, fee_paise: int, actor_user_id: int | None) -> None:
    if isinstance(fee_paise, bool) or not isinstance(fee_paise, int) or fee_paise < 0:
        raise ValidationError("delivery_fee must be a non-negative amount")
    if order.status not in ("pending", "confirmed") or order.payment_status == "completed":
        raise ConflictError(
            "Delivery fee can only be set before payment",
            current_state=order.state.to_dict(),
        )
    if order.reward_code == FREE_DELIVERY:
        fee_paise = 0
    order.delivery_fee_paise = fee_paise
    order.delivery_fee_added_by = actor_user_id
    order.final_amount_paise = compute_final_amount(
        order.total_amount_paise, order.loyalty_discount_paise, order.delivery_fee_paise
    )


def confirm_order(order_id: int, actor_user_id: int, delivery_fee_paise: int | None = None,
                  notes: str | None = None, expected_status: str | None = None) -> Order:
    notes = optional_text(notes, "notes")

    def _mutate(order: Order) -> None:
        _check_expected(order, expected_status)
        if delivery_fee_paise is not None:
            _apply_delivery_fee(order, delivery_fee_paise, actor_user_id)
        _apply_transition(order, "confirmed", TRIGGER_STAFF, actor_user_id, notes)

    order = _transition(order_id, _mutate)
    current_app.logger.info(
        "Order %s confirmed by user=%s fee=%s", order.order_number, actor_user_id, order.delivery_fee_paise
    )
    return order


def set_delivery_fee(order_id: int, fee_paise: int, actor_user_id: int) -> Order:
    """Set (or change) the delivery fee; final_amount is re-derived, never patched."""
    order = _transition(order_id, lambda o: _apply_delivery_fee(o, fee_paise, actor_user_id))
    current_app.logger.info(
        "Order %s delivery fee=%s by user=%s", order.order_number, order.delivery_fee_paise, actor_user_id
    )
    return order


def start_packing(order_id: int, actor_user_id: int, notes: str | None = None) -> Order:
    return update_order_status(order_id, "packing", actor_user_id, notes=notes)


def update_packing_item(order_id: int, packing_item_id: int, actor_user_id: int,
                        packed_quantity: int | None = None, is_packed: bool | None = None,
                        notes: str | None = None) -> PackingItem:
    result: dict = {}

    def _mutate(order: Order) -> None:
        if order.status != "packing":
            raise ConflictError(
                "Packing checklist can only be changed while packing",
                current_state=order.state.to_dict(),
            )
        item = next((p for p in order.packing_items if p.id == packing_item_id), None)
        if item is None:
            raise NotFoundError("Packing item not found", details={"packing_item_id": packing_item_id})

        quantity = packed_quantity
        if quantity is None:
            if is_packed is None:
                quantity = item.packed_quantity
            else:
                quantity = item.quantity if is_packed else 0
        if quantity < 0 or quantity > item.quantity:
            raise ValidationError(
                f"packed_quantity must be between 0 and {item.quantity}",
                details={"packing_item_id": item.id},
            )
        if is_packed and quantity < item.quantity:
            raise ValidationError(
                "An item is packed only when its full quantity is packed",
                details={"packing_item_id": item.id},
            )

        item.packed_quantity = quantity
        item.is_packed = quantity == item.quantity
        if item.is_packed:
            item.packed_at = utcnow()
            item.packed_by = actor_user_id
        else:
            item.packed_at = None
            item.packed_by = None
        if notes is not None:
            item.notes = optional_text(notes, "notes")
        result["item"] = item

    _transition(order_id, _mutate)
    return result["item"]


def complete_packing(order_id: int, actor_user_id: int, notes: str | None = None) -> Order:
    return update_order_status(order_id, "packed", actor_user_id, notes=notes)


def ship_order(order_id: int, actor_user_id: int, transport_company: str,
               vehicle_number: str | None = None, driver_name: str | None = None,
               driver_contact: str | None = None, tracking_number: str | None = None,
               notes: str | None = None) -> Order:
    transport_company = optional_text(transport_company, "transport_company")
    vehicle_number = optional_text(vehicle_number, "vehicle_number")
    driver_name = optional_text(driver_name, "driver_name")
    driver_contact = optional_text(driver_contact, "driver_contact")
    tracking_number = optional_text(tracking_number, "tracking_number")
    notes = optional_text(notes, "notes")
    if not transport_company:
        raise ValidationError("transport_company is required")

    def _mutate(order: Order) -> None:
        _apply_transition(order, "shipped", TRIGGER_STAFF, actor_user_id, notes)
        order.transport_company = transport_company
        order.vehicle_number = vehicle_number
        order.driver_name = driver_name
        order.driver_contact = driver_contact
        order.tracking_info = {
            "tracking_number": tracking_number,
            "courier_partner": transport_company,
            "shipped_date": to_utc_z(order.shipped_at),
        }

    order = _transition(order_id, _mutate)
    current_app.logger.info("Order %s shipped via %s", order.order_number, transport_company)
    return order


def mark_delivered(order_id: int, actor_user_id: int, *, by_customer: bool = False) -> Order:
    """Staff confirm delivery, or the ordering user acknowledges receipt."""
    def _mutate(order: Order) -> None:
        if by_customer and order.user_id != actor_user_id:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        trigger = TRIGGER_CUSTOMER if by_customer else TRIGGER_STAFF
        _apply_transition(order, "delivered", trigger, actor_user_id)

    order = _transition(order_id, _mutate)
    current_app.logger.info("Order %s delivered (user=%s)", order.order_number, actor_user_id)
    return order


def cancel_order(order_id: int, actor_user_id: int | None, reason: str | None = None,
                 trigger: str = TRIGGER_STAFF) -> Order:
    """
    Cancel a not-yet-shipped order.

    Redeemed points are not returned automatically; staff use a manual
    loyalty adjustment when a refund of points is warranted.
    """
    reason = optional_text(reason, "reason")
    order = update_order_status(order_id, "cancelled", actor_user_id, notes=reason, trigger=trigger)
    return order


def cancel_stale_orders(older_than_hours: float | None = None) -> list[str]:
    """Timeout-cancel open unpaid orders created before the cutoff; returns order numbers."""
    if older_than_hours is None:
        older_than_hours = current_app.config.get("STALE_ORDER_HOURS", DEFAULT_STALE_ORDER_HOURS)
    cutoff = hours_ago(older_than_hours)

    stale_ids = [
        row.id for row in _open_unpaid_filter(
            db.session.query(Order.id).filter(Order.created_at < cutoff)
        ).order_by(Order.id).all()
    ]

    cancelled = []
    for order_id in stale_ids:
        try:
            order = cancel_order(order_id, None, reason="Payment not received in time",
                                 trigger=TRIGGER_TIMEOUT)
        except ConflictError as exc:
            # Moved on (paid or cancelled) since the scan
            current_app.logger.info("Skipping stale order id=%s: %s", order_id, exc)
            continue
        cancelled.append(order.order_number)

    if cancelled:
        current_app.logger.warning("Cancelled %d stale unpaid orders", len(cancelled))
    return cancelled


# ---------------------------------------------------------------------------
# Payment signal
# ---------------------------------------------------------------------------

def record_payment(order_id: int, status: str, payment_id: str | None = None,
                   payment_method: str | None = None) -> Order:
    """
    Apply the payment gateway's confirmation signal.

    completed: confirmed -> payment_completed, releases the unpaid guard and
        credits loyalty earning. A repeat of an already applied completion
        with the same payment_id is a no-op.
    failed: payment axis only; the order stays where it is.
    refunded: cancelled + completed -> cancelled + refunded.
    """
    if status not in PAYMENT_SIGNALS:
        raise ValidationError(
            f"Invalid payment status '{status}'. Must be one of: {', '.join(PAYMENT_SIGNALS)}"
        )
    payment_id = optional_text(payment_id, "payment_id")
    payment_method = optional_text(payment_method, "payment_method")

    def _mutate(order: Order) -> None:
        if status == "completed":
            if order.payment_status == "completed" and payment_id and order.payment_id == payment_id:
                return
            _apply_transition(order, "payment_completed", TRIGGER_PAYMENT, None)
        else:
            from_state = order.state
            new_state = payment_failed_state(from_state) if status == "failed" else refunded_state(from_state)
            order.payment_status = new_state.payment_status
            _record_event(order, from_state, new_state, TRIGGER_PAYMENT, None)

        if payment_id:
            order.payment_id = payment_id
        if payment_method:
            order.payment_method = payment_method

    order = _transition(order_id, _mutate)
    current_app.logger.info(
        "Payment %s for order %s (payment_id=%s)", status, order.order_number, payment_id
    )
    return order
