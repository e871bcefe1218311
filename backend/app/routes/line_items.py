# Overview: Flask API routes for line item editions; verification, history and audited corrections.

from flask import Blueprint, request, jsonify, current_app

from ..services import edition_service, ledger_service, lifecycle_service
from ..services.errors import LineItemNotFound, ConcurrencyConflict, LedgerError


line_items_bp = Blueprint("line_items", __name__, url_prefix="/api/line-items")


def _actor(data: dict) -> str:
    return data.get("actor") or request.headers.get("X-Actor") or "admin"


@line_items_bp.get("/<line_item_id>")
def verify_edition_route(line_item_id: str):
    """Current owner, status, edition number and certificate of a line item."""
    try:
        payload = edition_service.verify_edition(line_item_id, order_id=request.args.get("order_id"))
        return jsonify(payload), 200
    except LineItemNotFound as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to verify edition")
        return jsonify({"error": "Internal server error"}), 500


@line_items_bp.get("/<line_item_id>/history")
def edition_history_route(line_item_id: str):
    try:
        events = ledger_service.get_edition_history(line_item_id)
        return jsonify({
            "line_item_id": line_item_id,
            "event_count": len(events),
            "events": [ev.to_dict() for ev in events],
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load edition history")
        return jsonify({"error": "Internal server error"}), 500


@line_items_bp.get("/<line_item_id>/ownership")
def ownership_history_route(line_item_id: str):
    try:
        events = ledger_service.get_ownership_history(line_item_id)
        return jsonify({
            "line_item_id": line_item_id,
            "transfer_count": len(events),
            "transfers": [ev.to_dict() for ev in events],
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load ownership history")
        return jsonify({"error": "Internal server error"}), 500


@line_items_bp.post("/<line_item_id>/deactivate")
def deactivate_line_item_route(line_item_id: str):
    """
    Mark a line item inactive with an audited override.

    Request body:
    {
        "reason": "refunded" | "restocked" | "removed" | "manual",
        "notes": "Chargeback opened 2024-03-02",  (optional)
        "actor": "ops@example.com"  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    reason = data.get("reason")
    if not reason:
        return jsonify({"error": "reason required"}), 400
    try:
        result = lifecycle_service.mark_line_item_inactive(
            line_item_id, reason, notes=data.get("notes"), actor=_actor(data)
        )
        return jsonify(result), 200
    except LineItemNotFound as e:
        return jsonify({"error": str(e)}), 404
    except ConcurrencyConflict as e:
        return jsonify({"error": str(e)}), 409
    except LedgerError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to deactivate line item")
        return jsonify({"error": "Internal server error"}), 500


@line_items_bp.post("/<line_item_id>/override/clear")
def clear_override_route(line_item_id: str):
    data = request.get_json(silent=True) or {}
    try:
        result = lifecycle_service.clear_override(line_item_id, actor=_actor(data))
        return jsonify(result), 200
    except LineItemNotFound as e:
        return jsonify({"error": str(e)}), 404
    except ConcurrencyConflict as e:
        return jsonify({"error": str(e)}), 409
    except LedgerError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to clear override")
        return jsonify({"error": "Internal server error"}), 500


@line_items_bp.post("/<line_item_id>/transfer")
def transfer_ownership_route(line_item_id: str):
    """
    Transfer an edition to a new owner.

    Request body:
    {
        "new_owner_email": "buyer@example.com",
        "new_owner_name": "Ada Lovelace",  (optional)
        "new_owner_id": "8812",  (optional)
        "notes": "Secondary sale"  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        item = lifecycle_service.transfer_ownership(
            line_item_id,
            new_owner_email=data.get("new_owner_email"),
            new_owner_name=data.get("new_owner_name"),
            new_owner_id=data.get("new_owner_id"),
            notes=data.get("notes"),
            actor=_actor(data),
        )
        return jsonify({"line_item": item.to_dict()}), 200
    except LineItemNotFound as e:
        return jsonify({"error": str(e)}), 404
    except LedgerError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to transfer ownership")
        return jsonify({"error": "Internal server error"}), 500
