# Overview: Flask API routes for the collector view; editions a collector currently owns.

from flask import Blueprint, jsonify, current_app

from ..services import collector_service


collectors_bp = Blueprint("collectors", __name__, url_prefix="/api/collectors")


@collectors_bp.get("/<collector_id>/editions")
def collector_editions_route(collector_id: str):
    """collector_id is an email address or a platform customer id."""
    try:
        editions = collector_service.editions_for(collector_id)
        return jsonify({
            "collector_id": collector_id,
            "total_editions": len(editions),
            "editions": [li.to_dict() for li in editions],
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load collector editions")
        return jsonify({"error": "Internal server error"}), 500
