# Overview: Flask API routes for product editions; listing, reassignment and duplicate checks.

from flask import Blueprint, request, jsonify, current_app

from ..services import edition_service, integrity_service
from ..services.errors import ConcurrencyConflict


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/<product_id>/editions")
def product_editions_route(product_id: str):
    include_history = request.args.get("include_history", "false").lower() in ("1", "true", "yes")
    try:
        return jsonify(edition_service.get_product_editions(product_id, include_history=include_history)), 200
    except Exception:
        current_app.logger.exception("Failed to load product editions")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<product_id>/reassign")
def reassign_editions_route(product_id: str):
    """Recompute edition numbers for every active line item of a product."""
    data = request.get_json(silent=True) or {}
    actor = data.get("actor") or request.headers.get("X-Actor") or "admin"
    try:
        result = edition_service.reassign_editions(product_id, actor=actor)
        return jsonify(result.to_dict()), 200
    except ConcurrencyConflict as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to reassign editions")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<product_id>/duplicates")
def check_duplicates_route(product_id: str):
    try:
        return jsonify(integrity_service.check_duplicates(product_id)), 200
    except Exception:
        current_app.logger.exception("Failed to check duplicate editions")
        return jsonify({"error": "Internal server error"}), 500
