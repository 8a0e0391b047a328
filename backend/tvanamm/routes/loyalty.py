# Overview: Loyalty API: balance, rewards, redemption pre-check, manual adjustment, reconciliation, gift catalog.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..money import to_paise
from ..services import loyalty_service
from ..services.pricing_service import points_to_paise, redemption_cap_points
from ..validation import DomainError, require_int
from . import domain_error_response, json_body
from .cart import current_cart


loyalty_bp = Blueprint("loyalty", __name__, url_prefix="/api/loyalty")


@loyalty_bp.get("/me")
@require_auth
@require_permission("VIEW_LOYALTY")
def my_loyalty_route():
    user_id = g.current_user.id
    account = loyalty_service.get_account(user_id)
    limit = request.args.get("limit", type=int, default=50)
    return jsonify({
        "account": account.to_dict() if account else None,
        "current_balance": account.current_balance if account else 0,
        "transactions": [t.to_dict() for t in loyalty_service.list_transactions(user_id, limit)],
    }), 200


@loyalty_bp.get("/rewards")
@require_auth
@require_permission("VIEW_LOYALTY")
def rewards_route():
    """Active gifts, cheapest first; out-of-stock gifts are listed with in_stock false."""
    return jsonify({
        "rewards": [gift.to_dict() for gift in loyalty_service.list_gifts(active_only=True)],
    }), 200


@loyalty_bp.post("/validate")
@require_auth
@require_permission("REDEEM_LOYALTY")
def validate_route():
    """
    Pre-check a redemption before checkout.

    Request body:
        {"points": 100, "reward_code": "TEA_CUPS_30"?, "subtotal": "1000.00"?}

    Without "subtotal" the session cart's subtotal is used.
    """
    try:
        data = json_body()
        points = require_int(data.get("points", 0) or 0, "points", minimum=0)
        if data.get("subtotal") is not None:
            subtotal = to_paise(data["subtotal"], field="subtotal")
        else:
            subtotal = current_cart().totals().subtotal_paise

        reward_code = data.get("reward_code") or None
        if reward_code is not None and not isinstance(reward_code, str):
            return jsonify({"error": "reward_code must be a string"}), 400

        redemption = loyalty_service.RedemptionRequest(points=points, reward_code=reward_code)
        balance = loyalty_service.current_balance(g.current_user.id)
        loyalty_service.validate_request(redemption, balance, subtotal)

        return jsonify({
            "valid": True,
            "current_balance": balance,
            "max_redeemable": redemption_cap_points(subtotal),
            "discount_paise": points_to_paise(points),
        }), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to validate redemption")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/adjust")
@require_auth
@require_permission("ADJUST_LOYALTY")
def adjust_route():
    """Body: {"user_id": 5, "points": -50, "description": "Goodwill correction"}"""
    try:
        data = json_body()
        user_id = require_int(data.get("user_id"), "user_id", minimum=1)
        points = require_int(data.get("points"), "points")

        txn = loyalty_service.adjust_points(
            user_id, points, data.get("description"), actor_user_id=g.current_user.id
        )
        return jsonify({
            "transaction": txn.to_dict(),
            "current_balance": loyalty_service.current_balance(user_id),
        }), 201

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust loyalty points")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.get("/accounts/<int:user_id>/reconcile")
@require_auth
@require_permission("ADJUST_LOYALTY")
def reconcile_route(user_id: int):
    return jsonify(loyalty_service.reconcile_account(user_id)), 200


@loyalty_bp.get("/gifts")
@require_auth
@require_permission("MANAGE_LOYALTY_GIFTS")
def list_gifts_route():
    gifts = loyalty_service.list_gifts(active_only=False)
    return jsonify({"gifts": [gift.to_dict() for gift in gifts], "count": len(gifts)}), 200


@loyalty_bp.post("/gifts")
@require_auth
@require_permission("MANAGE_LOYALTY_GIFTS")
def create_gift_route():
    """
    Request body:
        {
            "code": "TEA_CUPS_30",
            "name": "30 Tea Cups",
            "points_required": 500,
            "stock_quantity": 100,        // optional, default 0
            "description": "...",         // optional
            "is_active": true,            // optional
            "auto_update_stock": true     // optional; false = unlimited
        }
    """
    try:
        data = json_body()
        gift = loyalty_service.create_gift(
            code=data.get("code"),
            name=data.get("name"),
            points_required=data.get("points_required"),
            stock_quantity=data.get("stock_quantity", 0),
            description=data.get("description"),
            is_active=data.get("is_active", True),
            auto_update_stock=data.get("auto_update_stock", True),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"gift": gift.to_dict()}), 201

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create loyalty gift")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.patch("/gifts/<int:gift_id>")
@require_auth
@require_permission("MANAGE_LOYALTY_GIFTS")
def update_gift_route(gift_id: int):
    """Body: any of name, description, points_required, is_active, auto_update_stock."""
    try:
        gift = loyalty_service.update_gift(gift_id, json_body(), actor_user_id=g.current_user.id)
        return jsonify({"gift": gift.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update loyalty gift")
        return jsonify({"error": "Internal server error"}), 500


@loyalty_bp.post("/gifts/<int:gift_id>/stock")
@require_auth
@require_permission("MANAGE_LOYALTY_GIFTS")
def adjust_gift_stock_route(gift_id: int):
    """Body: {"stock_quantity": 80, "reason": "Physical count"}"""
    try:
        data = json_body()
        gift = loyalty_service.adjust_gift_stock(
            gift_id,
            data.get("stock_quantity"),
            data.get("reason"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"gift": gift.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust loyalty gift stock")
        return jsonify({"error": "Internal server error"}), 500
