# Overview: Flask API routes for cylinder transfers; parses input and returns JSON responses.

# backend/co2ledger/routes/transfers.py
"""Transfer API routes"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError, ValidationError
from ..services import transfer_service


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _optional_bool(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() == "true"


@transfers_bp.get("")
def list_transfers_route():
    try:
        transfers = transfer_service.list_transfers(
            location=request.args.get("location") or None,
            reference=request.args.get("reference") or None,
            cylinder_id=request.args.get("cylinder_id", type=int),
            trip_closure=_optional_bool("trip_closure"),
            is_reversed=_optional_bool("is_reversed"),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"transfers": [t.to_dict() for t in transfers]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list transfers")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("")
def create_transfer_route():
    """
    Move a batch of cylinders.

    Request body:
    {
        "cylinder_ids": [int],
        "from_location": str,
        "to_location": str,
        "operator_name": str,
        "transfer_number" | "nota_envio_number" | "delivery_order_number": str (optional),
        "trip_closure": bool (optional),
        "driver_name", "customer_name", "transfer_date", "observations" (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        transfers = transfer_service.create_transfer_batch(
            data.get("cylinder_ids") or [],
            from_location=data.get("from_location"),
            to_location=data.get("to_location"),
            operator_name=data.get("operator_name"),
            transfer_number=data.get("transfer_number"),
            nota_envio_number=data.get("nota_envio_number"),
            delivery_order_number=data.get("delivery_order_number"),
            trip_closure=bool(data.get("trip_closure", False)),
            driver_name=data.get("driver_name"),
            customer_name=data.get("customer_name"),
            transfer_date=data.get("transfer_date"),
            observations=data.get("observations"),
        )
        return jsonify({"transfers": [t.to_dict() for t in transfers]}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create transfer batch")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.get("/open-batches")
def open_batches_route():
    try:
        location = request.args.get("location")
        if not location:
            raise ValidationError("location is required")
        return jsonify({"batches": transfer_service.list_open_batches(location)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list open batches")
        return jsonify({"error": "Internal server error"}), 500


@transfers_bp.post("/trips/<reference>/close")
def close_trip_route(reference: str):
    """Request body: {"closed_by": str}"""
    try:
        data = request.get_json(silent=True) or {}
        closed = transfer_service.close_trip(reference, closed_by=data.get("closed_by"))
        return jsonify({"reference_number": reference, "closed": closed}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close trip")
        return jsonify({"error": "Internal server error"}), 500
