# Overview: Cart API for the signed-in buyer; the cart lives in the signed session cookie.

from flask import Blueprint, current_app, g, jsonify

from ..decorators import require_auth, require_permission
from ..services.cart_service import CartService, SessionCartStore
from ..validation import DomainError, require_int
from . import domain_error_response, json_body


cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def current_cart() -> CartService:
    return CartService(SessionCartStore(g.current_user.id))


@cart_bp.get("")
@require_auth
@require_permission("PLACE_ORDER")
def get_cart_route():
    return jsonify({"cart": current_cart().to_dict()}), 200


@cart_bp.post("/items")
@require_auth
@require_permission("PLACE_ORDER")
def add_item_route():
    """
    Body: {"product_id": 1, "quantity": 2}

    Adding a product already in the cart increases its quantity.
    """
    try:
        data = json_body()
        product_id = require_int(data.get("product_id"), "product_id", minimum=1)
        quantity = require_int(data.get("quantity", 1), "quantity", minimum=1)

        cart = current_cart()
        line = cart.add(product_id, quantity)
        return jsonify({"item": line.to_dict(), "cart": cart.to_dict()}), 201

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.patch("/items/<int:product_id>")
@require_auth
@require_permission("PLACE_ORDER")
def update_item_route(product_id: int):
    """Body: {"quantity": 3}; zero or less removes the item."""
    try:
        quantity = require_int(json_body().get("quantity"), "quantity")

        cart = current_cart()
        cart.update_quantity(product_id, quantity)
        return jsonify({"cart": cart.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:product_id>")
@require_auth
@require_permission("PLACE_ORDER")
def remove_item_route(product_id: int):
    cart = current_cart()
    cart.remove(product_id)
    return jsonify({"cart": cart.to_dict()}), 200


@cart_bp.delete("")
@require_auth
@require_permission("PLACE_ORDER")
def clear_cart_route():
    cart = current_cart()
    cart.clear()
    return jsonify({"cart": cart.to_dict()}), 200
