# Overview: Flask API routes for the CO2 tank ledger; parses input and returns JSON responses.

# backend/co2ledger/routes/tank.py
"""Tank ledger API routes"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import tank_service


tank_bp = Blueprint("tank", __name__, url_prefix="/api/tank")


@tank_bp.get("")
def current_level_route():
    try:
        return jsonify(tank_service.current_level()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to read tank level")
        return jsonify({"error": "Internal server error"}), 500


@tank_bp.get("/movements")
def list_movements_route():
    try:
        movements = tank_service.list_movements(
            movement_type=request.args.get("movement_type") or None,
            include_reversed=request.args.get("include_reversed", "true").lower() == "true",
            include_consumption=request.args.get("include_consumption", "true").lower() == "true",
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list tank movements")
        return jsonify({"error": "Internal server error"}), 500


@tank_bp.post("/entrances")
def record_entrance_route():
    """
    Refill the tank: level += quantity + 3%.

    Request body: {"quantity": number, "operator_name": str, "supplier": str?, "observations": str?}
    """
    try:
        data = request.get_json(silent=True) or {}
        movement = tank_service.record_entrance(
            data.get("quantity"),
            data.get("operator_name"),
            supplier=data.get("supplier"),
            observations=data.get("observations"),
        )
        return jsonify({"movement": movement.to_dict(), "tank": tank_service.current_level()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record tank entrance")
        return jsonify({"error": "Internal server error"}), 500


@tank_bp.post("/exits")
def record_exit_route():
    """
    Draw from the tank: level -= quantity + 3%.

    Request body: {"quantity": number, "operator_name": str, "observations": str?}
    """
    try:
        data = request.get_json(silent=True) or {}
        movement = tank_service.record_exit(
            data.get("quantity"),
            data.get("operator_name"),
            observations=data.get("observations"),
        )
        return jsonify({"movement": movement.to_dict(), "tank": tank_service.current_level()}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record tank exit")
        return jsonify({"error": "Internal server error"}), 500
