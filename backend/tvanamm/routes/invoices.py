# Overview: Invoice API: issue/re-derive an order's tax invoice and serve its HTML.

from flask import Blueprint, Response, current_app, g, jsonify

from ..decorators import require_any_permission, require_auth
from ..services import invoice_service
from ..services.invoice_service import ReconciliationError
from ..validation import DomainError
from . import domain_error_response


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _generate(order_id: int):
    user_id = None if g.current_user.has_permission("VIEW_ALL_INVOICES") else g.current_user.id
    return invoice_service.generate_invoice(order_id, user_id=user_id)


@invoices_bp.post("/orders/<int:order_id>")
@require_auth
@require_any_permission("VIEW_OWN_INVOICES", "VIEW_ALL_INVOICES")
def generate_invoice_route(order_id: int):
    """
    Issue the invoice for an order (first call) or return it re-derived.

    Error responses:
        404: order not found
        409: order cancelled
        500: totals failed reconciliation; no document is returned
    """
    try:
        document = _generate(order_id)
        return jsonify({"invoice": document.to_dict()}), 200

    except DomainError as e:
        return domain_error_response(e)
    except ReconciliationError as e:
        return jsonify({"error": "Invoice totals failed reconciliation", "details": e.details}), 500
    except Exception:
        current_app.logger.exception("Failed to generate invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/orders/<int:order_id>/html")
@require_auth
@require_any_permission("VIEW_OWN_INVOICES", "VIEW_ALL_INVOICES")
def invoice_html_route(order_id: int):
    try:
        document = _generate(order_id)
        return Response(document.html, mimetype="text/html")

    except DomainError as e:
        return domain_error_response(e)
    except ReconciliationError as e:
        return jsonify({"error": "Invoice totals failed reconciliation", "details": e.details}), 500
    except Exception:
        current_app.logger.exception("Failed to render invoice")
        return jsonify({"error": "Internal server error"}), 500
