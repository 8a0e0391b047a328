# Overview: Shared response helpers for the API blueprints.

from flask import jsonify, request

from ..validation import ConflictError, DomainError, NotFoundError


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def domain_error_response(e: DomainError):
    """Map a domain error to its JSON body and status code."""
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details

    if isinstance(e, NotFoundError):
        return jsonify(body), 404
    if isinstance(e, ConflictError):
        if e.current_state is not None:
            body["current_state"] = e.current_state
        return jsonify(body), 409
    return jsonify(body), 400
