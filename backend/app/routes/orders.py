# Overview: Flask API routes for order sync; parses input and returns JSON responses.

"""
Order Sync API Routes

- POST /api/orders/sync   body: an order payload, {"order": {...}} or {"orders": [...]}
  options (top-level): skip_editions, force_warehouse, actor

Single order: 200 on success, 422 when the order was rejected or failed
(prior state untouched). Batch: always 200 with one result per order.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import sync_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("/sync")
def sync_orders_route():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "JSON object body required"}), 400

    options = {
        "skip_editions": bool(data.get("skip_editions", False)),
        "force_warehouse": bool(data.get("force_warehouse", False)),
        "actor": data.get("actor") or request.headers.get("X-Actor") or sync_service.ACTOR_SYNC,
    }

    try:
        if "orders" in data:
            orders = data.get("orders")
            if not isinstance(orders, list):
                return jsonify({"error": "orders must be a list"}), 400
            results = sync_service.sync_orders(orders, **options)
            return jsonify({
                "results": [r.to_dict() for r in results],
                "succeeded": sum(1 for r in results if r.success),
                "failed": sum(1 for r in results if not r.success),
            }), 200

        order = data.get("order", data)
        result = sync_service.sync_order(order, **options)
        return jsonify(result.to_dict()), (200 if result.success else 422)

    except Exception:
        current_app.logger.exception("Failed to sync orders")
        return jsonify({"error": "Internal server error"}), 500
