# Overview: Flask API routes for the edition ledger; read-only audit queries.

from flask import Blueprint, request, jsonify, current_app

from app.time_utils import parse_iso_datetime
from ..services import ledger_service

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive.
- Results are newest first; cursor is "<ISO-8601>|<id>" of the last row returned.
"""

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")


@ledger_bp.get("")
def list_ledger_events_route():
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, ledger_service.MAX_PAGE_SIZE))

    event_type = request.args.get("event_type")
    if event_type and event_type not in ledger_service.EVENT_TYPES:
        return jsonify({"error": f"event_type must be one of {sorted(ledger_service.EVENT_TYPES)}"}), 400

    try:
        start_dt = parse_iso_datetime(request.args.get("start_date"))
        end_dt = parse_iso_datetime(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 datetimes"}), 400

    cursor = None
    cursor_raw = request.args.get("cursor")
    if cursor_raw:
        try:
            cursor_parts = cursor_raw.split("|")
            cursor = (parse_iso_datetime(cursor_parts[0]), int(cursor_parts[1]))
        except (ValueError, IndexError):
            return jsonify({"error": "cursor must be in format <ISO-8601>|<id>"}), 400

    try:
        rows = ledger_service.list_events(
            line_item_id=request.args.get("line_item_id"),
            product_id=request.args.get("product_id"),
            event_type=event_type,
            start=start_dt,
            end=end_dt,
            cursor=cursor,
            limit=limit,
        )
    except Exception:
        current_app.logger.exception("Failed to list ledger events")
        return jsonify({"error": "Internal server error"}), 500

    next_cursor = None
    if len(rows) == limit:
        last = rows[-1]
        # Cursor keeps microseconds (to_utc_z truncates them)
        next_cursor = f"{last.created_at.isoformat()}|{last.id}"

    return jsonify({
        "items": [r.to_dict() for r in rows],
        "next_cursor": next_cursor,
        "limit": limit,
    }), 200
