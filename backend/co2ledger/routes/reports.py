# Overview: Flask API routes for dashboard reports; parses input and returns JSON responses.

from flask import Blueprint, current_app, jsonify, request

from ..errors import LedgerError
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/summary")
def summary_report():
    try:
        return jsonify({
            "inventory": reporting_service.inventory_summary(),
            "tank": reporting_service.tank_status(),
        }), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build summary report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/test-due")
def test_due_report():
    try:
        return jsonify(reporting_service.test_due_alerts(request.args.get("days"))), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build test-due report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/shrinkage")
def shrinkage_report():
    try:
        return jsonify(reporting_service.shrinkage_summary(request.args.get("days"))), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build shrinkage report")
        return jsonify({"error": "Internal server error"}), 500


@reports_bp.get("/customers")
def customers_report():
    try:
        return jsonify({"customers": reporting_service.cylinders_by_customer()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build customers report")
        return jsonify({"error": "Internal server error"}), 500
