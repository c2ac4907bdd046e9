# backend/co2ledger/routes/reversals.py
"""
Reversal API route.

A reversal never deletes; it stamps the row reversed and applies the
inverse state change. A second reversal of the same row returns 409.
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import reversal_service


reversals_bp = Blueprint("reversals", __name__, url_prefix="/api/reversals")


@reversals_bp.post("/<kind>/<int:record_id>")
def reverse_route(kind: str, record_id: int):
    """
    Request body: {"reversed_by": str, "reason": str?}

    Returns:
        200: Row reversed
        400: Unknown or non-reversible kind, missing actor
        404: Row not found
        409: Already reversed, cylinder moved on, or tank guard
    """
    try:
        data = request.get_json(silent=True) or {}
        row = reversal_service.reverse_record(
            kind,
            record_id,
            reversed_by=data.get("reversed_by"),
            reason=data.get("reason"),
        )
        return jsonify({"record": row.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reverse %s %s", kind, record_id)
        return jsonify({"error": "Internal server error"}), 500
