# backend/co2ledger/routes/adjustments.py
"""
Physical count adjustment API routes.
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import adjustment_service


adjustments_bp = Blueprint("adjustments", __name__, url_prefix="/api/adjustments")


@adjustments_bp.get("")
def list_adjustments_route():
    try:
        adjustments = adjustment_service.list_adjustments(
            location=request.args.get("location") or None,
            cylinder_id=request.args.get("cylinder_id", type=int),
            adjustment_type=request.args.get("adjustment_type") or None,
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"adjustments": [a.to_dict() for a in adjustments]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list adjustments")
        return jsonify({"error": "Internal server error"}), 500


@adjustments_bp.post("")
def apply_adjustments_route():
    """
    Record a physical count correction.

    Request body:
    {
        "location": str,
        "cylinder_ids": [int],
        "adjustment_type": "status_change" | "location_change" | "correction",
        "reason": str,
        "performed_by": str,
        "new_status": str (status_change),
        "new_location": str (location_change)
    }

    Returns:
        201: Adjustments recorded
        400: Invalid request
        404: Cylinder not found
        409: Cylinder no longer at location
    """
    try:
        data = request.get_json(silent=True) or {}
        adjustments = adjustment_service.apply_adjustments(
            data.get("location"),
            data.get("cylinder_ids") or [],
            data.get("adjustment_type"),
            data.get("reason"),
            data.get("performed_by"),
            new_status=data.get("new_status"),
            new_location=data.get("new_location"),
        )
        return jsonify({"adjustments": [a.to_dict() for a in adjustments]}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to apply adjustments")
        return jsonify({"error": "Internal server error"}), 500
