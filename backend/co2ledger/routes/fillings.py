# Overview: Flask API routes for filling batches; parses input and returns JSON responses.

# backend/co2ledger/routes/fillings.py
"""Filling batch API routes"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import filling_service


fillings_bp = Blueprint("fillings", __name__, url_prefix="/api/fillings")


def _optional_bool(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.lower() == "true"


@fillings_bp.get("")
def list_fillings_route():
    try:
        fillings = filling_service.list_fillings(
            batch_number=request.args.get("batch_number") or None,
            is_approved=_optional_bool("is_approved"),
            is_reversed=_optional_bool("is_reversed"),
            cylinder_id=request.args.get("cylinder_id", type=int),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"fillings": [f.to_dict() for f in fillings]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list fillings")
        return jsonify({"error": "Internal server error"}), 500


@fillings_bp.post("")
def record_batch_route():
    """
    Fill a batch of empty cylinders.

    Request body:
    {
        "items": [{"cylinder_id": int, "weight_filled": number}],
        "operator_name": str,
        "is_approved": true,
        "approved_by": str,
        "batch_number": str (optional),
        "filling_datetime": ISO-8601 (optional),
        "observations": str (optional)
    }

    Returns:
        201: batch recorded
        400: validation / approval missing
        409: stale selection or insufficient CO2
    """
    try:
        data = request.get_json(silent=True) or {}
        result = filling_service.record_filling_batch(
            data.get("items") or [],
            operator_name=data.get("operator_name"),
            is_approved=data.get("is_approved"),
            approved_by=data.get("approved_by"),
            batch_number=data.get("batch_number"),
            filling_datetime=data.get("filling_datetime"),
            observations=data.get("observations"),
        )
        return jsonify(result.to_dict()), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record filling batch")
        return jsonify({"error": "Internal server error"}), 500


@fillings_bp.get("/batches/<batch_number>")
def batch_summary_route(batch_number: str):
    try:
        return jsonify(filling_service.batch_summary(batch_number)), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load filling batch")
        return jsonify({"error": "Internal server error"}), 500


@fillings_bp.patch("/batches/<batch_number>/weights")
def update_weights_route(batch_number: str):
    """
    Request body: {"weights": {"<filling_id>": number}, "performed_by": str, "comments": str?}
    """
    try:
        data = request.get_json(silent=True) or {}
        result = filling_service.update_batch_weights(
            batch_number,
            data.get("weights") or {},
            performed_by=data.get("performed_by"),
            comments=data.get("comments"),
        )
        return jsonify(result.to_dict()), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update batch weights")
        return jsonify({"error": "Internal server error"}), 500


@fillings_bp.post("/batches/<batch_number>/approval")
def set_approval_route(batch_number: str):
    """Request body: {"is_approved": bool, "approved_by": str, "comments": str?}"""
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data.get("is_approved"), bool):
            return jsonify({"error": "is_approved must be a boolean"}), 400
        fillings = filling_service.set_batch_approval(
            batch_number,
            data["is_approved"],
            approved_by=data.get("approved_by"),
            comments=data.get("comments"),
        )
        return jsonify({"fillings": [f.to_dict() for f in fillings]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to set batch approval")
        return jsonify({"error": "Internal server error"}), 500
