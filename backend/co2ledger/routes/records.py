# Overview: Flask API routes for generic record actions and the approval log.

# backend/co2ledger/routes/records.py
"""Generic record actions keyed by record kind (cylinder, filling, transfer, tank_movement, adjustment)"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..models import RecordKind
from ..services import record_service
from ..services.audit_service import list_approval_logs


records_bp = Blueprint("records", __name__, url_prefix="/api")


@records_bp.get("/records/<kind>/<int:record_id>")
def load_record_route(kind: str, record_id: int):
    try:
        return jsonify({"record": record_service.load_snapshot(kind, record_id)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load %s %s", kind, record_id)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.patch("/records/<kind>/<int:record_id>")
def submit_draft_route(kind: str, record_id: int):
    """Request body: {"draft": {...}, "performed_by": str, "comments": str}"""
    try:
        data = request.get_json(silent=True) or {}
        record = record_service.submit_draft(
            kind,
            record_id,
            data.get("draft") or {},
            performed_by=data.get("performed_by"),
            comments=data.get("comments"),
        )
        return jsonify({"record": record}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to edit %s %s", kind, record_id)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.delete("/records/<kind>/<int:record_id>")
def delete_record_route(kind: str, record_id: int):
    """Request body: {"performed_by": str, "comments": str}"""
    try:
        data = request.get_json(silent=True) or {}
        record = record_service.delete_record(
            kind,
            record_id,
            performed_by=data.get("performed_by"),
            comments=data.get("comments"),
        )
        return jsonify({"record": record}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete %s %s", kind, record_id)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.post("/records/<kind>/<int:record_id>/approve")
def approve_record_route(kind: str, record_id: int):
    try:
        data = request.get_json(silent=True) or {}
        record = record_service.approve_record(
            kind, record_id, performed_by=data.get("performed_by"), comments=data.get("comments"),
        )
        return jsonify({"record": record}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve %s %s", kind, record_id)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.post("/records/<kind>/<int:record_id>/reject")
def reject_record_route(kind: str, record_id: int):
    try:
        data = request.get_json(silent=True) or {}
        record = record_service.reject_record(
            kind, record_id, performed_by=data.get("performed_by"), comments=data.get("comments"),
        )
        return jsonify({"record": record}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject %s %s", kind, record_id)
        return jsonify({"error": "Internal server error"}), 500


@records_bp.get("/audit-logs")
def audit_logs_route():
    """Approval log, newest first. Filters: kind, record_id, action, limit."""
    try:
        kind = request.args.get("kind")
        logs = list_approval_logs(
            table_name=RecordKind.parse(kind).table_name if kind else None,
            record_id=request.args.get("record_id", type=int),
            action=request.args.get("action") or None,
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({"logs": [log.to_dict() for log in logs]}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list audit logs")
        return jsonify({"error": "Internal server error"}), 500
