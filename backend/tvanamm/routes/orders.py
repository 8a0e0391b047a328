# backend/tvanamm/routes/orders.py
"""
Order API: checkout, visibility and the staff lifecycle actions.

- POST /api/orders                          checkout the session cart
- GET  /api/orders                          own orders (staff: all, ?user_id=, ?status=)
- GET  /api/orders/can-place                pending-unpaid guard for the UI
- GET  /api/orders/:id                      order with items and packing checklist
- POST /api/orders/:id/status               generic transition {status, notes, expected_status}
- POST /api/orders/:id/confirm              pending -> confirmed (optional delivery_fee)
- PUT  /api/orders/:id/delivery-fee         set fee before payment
- POST /api/orders/:id/packing/start        payment_completed -> packing
- PATCH /api/orders/:id/packing/items/:iid  tick the packing checklist
- POST /api/orders/:id/packing/complete     packing -> packed
- POST /api/orders/:id/ship                 packed -> shipped
- POST /api/orders/:id/deliver              shipped -> delivered (staff or the buyer)
- POST /api/orders/:id/cancel               any pre-shipped state -> cancelled
- POST /api/orders/:id/payment              payment gateway signal
- GET  /api/orders/:id/events               status history

Actor ids always come from the authenticated session, never the body.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_any_permission, require_auth, require_permission
from ..money import to_paise
from ..services import order_service
from ..services.catalog_service import get_catalog_entry
from ..services.loyalty_service import RedemptionRequest
from ..services.pricing_service import CartLine
from ..validation import DomainError, ValidationError, require_int
from . import domain_error_response, json_body
from .cart import current_cart


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

# Permission needed to drive the generic status endpoint to each target
STATUS_PERMISSIONS = {
    "confirmed": "CONFIRM_ORDER",
    "payment_completed": "RECORD_PAYMENT",
    "packing": "MANAGE_FULFILLMENT",
    "packed": "MANAGE_FULFILLMENT",
    "delivered": "MANAGE_FULFILLMENT",
    "cancelled": "CANCEL_ORDER",
}

# Targets that carry extra data and have their own endpoint
DEDICATED_ENDPOINTS = {
    "shipped": "ship",
}


def _can_view_all() -> bool:
    return g.current_user.has_permission("VIEW_ALL_ORDERS")


def _visible_order(order_id: int):
    user_id = None if _can_view_all() else g.current_user.id
    return order_service.get_order(order_id, user_id=user_id)


def _order_detail(order) -> dict:
    data = order.to_dict()
    data["items"] = [item.to_dict() for item in order.items]
    data["packing_items"] = [p.to_dict() for p in order.packing_items]
    data["invoice_number"] = order.invoice.invoice_number if order.invoice else None
    return data


def _lines_from_payload(items) -> list[CartLine]:
    if not isinstance(items, list):
        raise ValidationError("items must be a list")
    lines = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("Each item must be an object")
        product_id = require_int(raw.get("product_id"), "product_id", minimum=1)
        quantity = require_int(raw.get("quantity", 1), "quantity", minimum=1)
        entry = get_catalog_entry(product_id)
        lines.append(CartLine.from_catalog(
            product_id=entry.id,
            name=entry.name,
            base_price_paise=entry.price_paise,
            gst_rate_bps=entry.gst_rate_bps,
            quantity=quantity,
        ))
    return lines


def _optional_fee(data: dict) -> int | None:
    if data.get("delivery_fee") is None:
        return None
    return to_paise(data["delivery_fee"], field="delivery_fee")


@orders_bp.post("")
@require_auth
@require_permission("PLACE_ORDER")
def checkout_route():
    """
    Place an order from the session cart (or an explicit "items" list).

    Request body:
        {
            "shipping_address": {"name", "phone", "address", "city", "state", "pincode", "landmark"?},
            "loyalty_points": 100,         // optional cash discount, 1 point = Rs 1
            "reward_code": "FREE_DELIVERY", // optional
            "notes": "..."                  // optional
        }

    Error responses:
        400: empty cart, bad address, redemption rejected
        409: an open unpaid order already exists
    """
    try:
        data = json_body()
        user = g.current_user

        points = require_int(data.get("loyalty_points", 0) or 0, "loyalty_points", minimum=0)
        reward_code = data.get("reward_code") or None
        if reward_code is not None and not isinstance(reward_code, str):
            return jsonify({"error": "reward_code must be a string"}), 400
        if (points or reward_code) and not user.has_permission("REDEEM_LOYALTY"):
            return jsonify({"error": "Permission denied", "required_permission": "REDEEM_LOYALTY"}), 403

        cart = None
        if "items" in data:
            lines = _lines_from_payload(data["items"])
        else:
            cart = current_cart()
            lines = cart.lines()

        order = order_service.create_order(
            user_id=user.id,
            lines=lines,
            shipping_address=data.get("shipping_address"),
            redemption=RedemptionRequest(points=points, reward_code=reward_code),
            notes=data.get("notes"),
        )
        if cart is not None:
            cart.clear()

        return jsonify({"order": _order_detail(order)}), 201

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Checkout failed")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_auth
@require_any_permission("VIEW_OWN_ORDERS", "VIEW_ALL_ORDERS")
def list_orders_route():
    try:
        status = request.args.get("status")
        limit = request.args.get("limit", type=int, default=100)
        if _can_view_all():
            user_id = request.args.get("user_id", type=int)
        else:
            user_id = g.current_user.id

        orders = order_service.list_orders(user_id=user_id, status=status, limit=limit)
        return jsonify({
            "orders": [o.to_dict() for o in orders],
            "count": len(orders),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/can-place")
@require_auth
@require_permission("PLACE_ORDER")
def can_place_route():
    blocked = order_service.has_pending_unpaid_orders(g.current_user.id)
    return jsonify({"can_place": not blocked}), 200


@orders_bp.get("/<int:order_id>")
@require_auth
@require_any_permission("VIEW_OWN_ORDERS", "VIEW_ALL_ORDERS")
def get_order_route(order_id: int):
    try:
        return jsonify({"order": _order_detail(_visible_order(order_id))}), 200
    except DomainError as e:
        return domain_error_response(e)


@orders_bp.post("/<int:order_id>/status")
@require_auth
@require_permission("VIEW_ALL_ORDERS")
def update_status_route(order_id: int):
    """
    Request body:
        {"status": "packing", "notes": "...", "expected_status": "payment_completed"}

    expected_status makes the update conditional on the status the caller saw.
    """
    try:
        data = json_body()
        new_status = data.get("status")
        if not new_status:
            return jsonify({"error": "status is required"}), 400
        if not isinstance(new_status, str):
            return jsonify({"error": "status must be a string"}), 400
        if new_status in DEDICATED_ENDPOINTS:
            endpoint = DEDICATED_ENDPOINTS[new_status]
            return jsonify({
                "error": f"Use POST /api/orders/{order_id}/{endpoint} to move an order to '{new_status}'",
            }), 400

        required = STATUS_PERMISSIONS.get(new_status)
        if required and not g.current_user.has_permission(required):
            return jsonify({"error": "Permission denied", "required_permission": required}), 403

        order = order_service.update_order_status(
            order_id,
            new_status,
            actor_user_id=g.current_user.id,
            notes=data.get("notes"),
            expected_status=data.get("expected_status"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/confirm")
@require_auth
@require_permission("CONFIRM_ORDER")
def confirm_route(order_id: int):
    """Body: {"delivery_fee": "40.00"?, "notes"?}"""
    try:
        data = json_body()
        fee = _optional_fee(data)
        if fee is not None and not g.current_user.has_permission("SET_DELIVERY_FEE"):
            return jsonify({"error": "Permission denied", "required_permission": "SET_DELIVERY_FEE"}), 403

        order = order_service.confirm_order(
            order_id,
            actor_user_id=g.current_user.id,
            delivery_fee_paise=fee,
            notes=data.get("notes"),
            expected_status=data.get("expected_status"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/delivery-fee")
@require_auth
@require_permission("SET_DELIVERY_FEE")
def delivery_fee_route(order_id: int):
    """Body: {"delivery_fee": "40.00"}"""
    try:
        fee = _optional_fee(json_body())
        if fee is None:
            return jsonify({"error": "delivery_fee is required"}), 400

        order = order_service.set_delivery_fee(order_id, fee, actor_user_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set delivery fee")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/packing/start")
@require_auth
@require_permission("MANAGE_FULFILLMENT")
def start_packing_route(order_id: int):
    try:
        order = order_service.start_packing(
            order_id, actor_user_id=g.current_user.id, notes=json_body().get("notes")
        )
        return jsonify({"order": _order_detail(order)}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start packing")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/packing/items/<int:item_id>")
@require_auth
@require_permission("MANAGE_FULFILLMENT")
def update_packing_item_route(order_id: int, item_id: int):
    """Body: {"packed_quantity": 2} or {"is_packed": true}, optional "notes"."""
    try:
        data = json_body()
        packed_quantity = data.get("packed_quantity")
        if packed_quantity is not None:
            packed_quantity = require_int(packed_quantity, "packed_quantity", minimum=0)
        is_packed = data.get("is_packed")
        if is_packed is not None and not isinstance(is_packed, bool):
            return jsonify({"error": "is_packed must be a boolean"}), 400

        item = order_service.update_packing_item(
            order_id,
            item_id,
            actor_user_id=g.current_user.id,
            packed_quantity=packed_quantity,
            is_packed=is_packed,
            notes=data.get("notes"),
        )
        return jsonify({"packing_item": item.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update packing item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/packing/complete")
@require_auth
@require_permission("MANAGE_FULFILLMENT")
def complete_packing_route(order_id: int):
    try:
        order = order_service.complete_packing(
            order_id, actor_user_id=g.current_user.id, notes=json_body().get("notes")
        )
        return jsonify({"order": _order_detail(order)}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete packing")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/ship")
@require_auth
@require_permission("MANAGE_FULFILLMENT")
def ship_route(order_id: int):
    """
    Request body:
        {
            "transport_company": "...",   // required
            "vehicle_number": "...",
            "driver_name": "...",
            "driver_contact": "...",
            "tracking_number": "..."
        }
    """
    try:
        data = json_body()
        order = order_service.ship_order(
            order_id,
            actor_user_id=g.current_user.id,
            transport_company=data.get("transport_company"),
            vehicle_number=data.get("vehicle_number"),
            driver_name=data.get("driver_name"),
            driver_contact=data.get("driver_contact"),
            tracking_number=data.get("tracking_number"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to ship order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/deliver")
@require_auth
@require_any_permission("MANAGE_FULFILLMENT", "CONFIRM_DELIVERY")
def deliver_route(order_id: int):
    """Staff mark delivery; a buyer may only acknowledge their own order."""
    try:
        by_customer = not g.current_user.has_permission("MANAGE_FULFILLMENT")
        order = order_service.mark_delivered(
            order_id, actor_user_id=g.current_user.id, by_customer=by_customer
        )
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark order delivered")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_permission("CANCEL_ORDER")
def cancel_route(order_id: int):
    """Body: {"reason": "..."}"""
    try:
        order = order_service.cancel_order(
            order_id, actor_user_id=g.current_user.id, reason=json_body().get("reason")
        )
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/payment")
@require_auth
@require_permission("RECORD_PAYMENT")
def payment_route(order_id: int):
    """Body: {"status": "completed" | "failed" | "refunded", "payment_id", "payment_method"}"""
    try:
        data = json_body()
        status = data.get("status")
        if not status:
            return jsonify({"error": "status is required"}), 400
        if not isinstance(status, str):
            return jsonify({"error": "status must be a string"}), 400

        order = order_service.record_payment(
            order_id,
            status=status,
            payment_id=data.get("payment_id"),
            payment_method=data.get("payment_method"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/events")
@require_auth
@require_any_permission("VIEW_OWN_ORDERS", "VIEW_ALL_ORDERS")
def events_route(order_id: int):
    try:
        order = _visible_order(order_id)
        events = order_service.list_status_events(order.id)
        return jsonify({"events": [e.to_dict() for e in events]}), 200
    except DomainError as e:
        return domain_error_response(e)
