# Overview: Flask API route for the integrity validation report (read-only).

from flask import Blueprint, request, jsonify, current_app

from ..services import integrity_service


integrity_bp = Blueprint("integrity", __name__, url_prefix="/api/integrity")


@integrity_bp.get("")
def validate_integrity_route():
    product_id = request.args.get("product_id")
    collector_id = request.args.get("collector_id")
    try:
        issues = integrity_service.validate(product_id=product_id, collector_id=collector_id)
        return jsonify({
            "issues_found": len(issues),
            "critical": sum(1 for i in issues if i.severity == integrity_service.SEVERITY_CRITICAL),
            "issues": [i.to_dict() for i in issues],
            "scope": {
                "product_id": product_id or "all",
                "collector_id": collector_id or "all",
            },
        }), 200
    except Exception:
        current_app.logger.exception("Failed to validate data integrity")
        return jsonify({"error": "Internal server error"}), 500
