# Overview: Flask API routes for the cylinder registry; parses input and returns JSON responses.

# backend/co2ledger/routes/cylinders.py
"""Cylinder registry API routes"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import cylinder_service


cylinders_bp = Blueprint("cylinders", __name__, url_prefix="/api/cylinders")


def _optional_bool(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() == "true"


@cylinders_bp.get("")
def list_cylinders_route():
    """
    Active cylinders, filterable by location, status, capacity and
    customer_owned.
    """
    try:
        cylinders = cylinder_service.list_active(
            location=request.args.get("location") or None,
            status=request.args.get("status") or None,
            capacity=request.args.get("capacity") or None,
            customer_owned=_optional_bool("customer_owned"),
        )
        return jsonify({"cylinders": [c.to_dict() for c in cylinders]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list cylinders")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.post("")
def register_cylinder_route():
    """
    Register a cylinder.

    Request body:
    {
        "serial_number": str,
        "capacity": "9kg" | "22kg" | "25kg",
        "manufacturing_date": "YYYY-MM-DD",
        "last_hydrostatic_test": "YYYY-MM-DD",
        "valve_type", "current_status", "current_location",
        "customer_owned", "customer_info", "observations" (optional)
    }
    """
    try:
        cylinder = cylinder_service.register_cylinder(request.get_json(silent=True) or {})
        return jsonify({"cylinder": cylinder.to_dict()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register cylinder")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.post("/state")
def set_state_route():
    """
    Batch status/location update, all-or-nothing.

    Request body: {"cylinder_ids": [int], "status": str?, "location": str?}
    """
    try:
        data = request.get_json(silent=True) or {}
        cylinders = cylinder_service.apply_status_and_location(
            data.get("cylinder_ids") or [],
            status=data.get("status"),
            location=data.get("location"),
        )
        return jsonify({"cylinders": [c.to_dict() for c in cylinders]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cylinder state")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.get("/<int:cylinder_id>")
def get_cylinder_route(cylinder_id: int):
    try:
        cylinder = cylinder_service.get_cylinder(cylinder_id, active_only=False)
        return jsonify({"cylinder": cylinder.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cylinder")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.patch("/<int:cylinder_id>")
def edit_cylinder_route(cylinder_id: int):
    """
    Manual edit.

    Request body: {"changes": {...}, "comments": str, "performed_by": str}
    """
    try:
        data = request.get_json(silent=True) or {}
        cylinder = cylinder_service.edit_cylinder(
            cylinder_id,
            data.get("changes") or {},
            data.get("comments"),
            performed_by=data.get("performed_by"),
        )
        return jsonify({"cylinder": cylinder.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to edit cylinder")
        return jsonify({"error": "Internal server error"}), 500


@cylinders_bp.delete("/<int:cylinder_id>")
def delete_cylinder_route(cylinder_id: int):
    """Soft delete. Request body: {"comments": str, "performed_by": str}"""
    try:
        data = request.get_json(silent=True) or {}
        cylinder = cylinder_service.soft_delete_cylinder(
            cylinder_id,
            data.get("comments"),
            performed_by=data.get("performed_by"),
        )
        return jsonify({"cylinder": cylinder.to_dict()}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete cylinder")
        return jsonify({"error": "Internal server error"}), 500
