# backend/stockflow/routes/movements.py
"""
Stock Movement API Routes

- GET  /api/movements                 - filtered, paginated ledger read
- POST /api/movements                 - record a movement (tagged by movement_type)
- POST /api/movements/<id>/approve    - pending -> completed (manager/admin)
- POST /api/movements/<id>/reject     - pending -> rejected (manager/admin)
- POST /api/movements/<id>/cancel     - pending -> cancelled (requester only)
- GET  /api/movements/stock-additions - delivery records (product / date filters)
- GET  /api/movements/damaged         - damage reports (product / date filters)

Damage reports complete immediately (201); every other type is filed as
pending (202).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import DOMAIN_ERRORS, error_response, require_actor
from ..services import approval_service, ledger_service
from ..services.movement_requests import request_from_payload


movements_bp = Blueprint("movements", __name__, url_prefix="/api/movements")


@movements_bp.get("")
@require_actor
def list_movements_route():
    """
    Query params:
        product_id, movement_type, status, date_from, date_to (ISO-8601),
        limit (default 50), offset (default 0)
    """
    max_page = current_app.config.get("STOCKFLOW_MAX_PAGE_SIZE", 200)
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, max_page))
    offset = max(0, request.args.get("offset", default=0, type=int))

    try:
        page = ledger_service.list_movements(
            g.actor,
            product_id=request.args.get("product_id", type=int),
            movement_type=request.args.get("movement_type") or None,
            status=request.args.get("status") or None,
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            limit=limit,
            offset=offset,
        )
        return jsonify(page), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list movements")
        return jsonify({"error": "Internal server error"}), 500


def _source_record_page(list_fn, label: str):
    max_page = current_app.config.get("STOCKFLOW_MAX_PAGE_SIZE", 200)
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, max_page))
    offset = max(0, request.args.get("offset", default=0, type=int))

    try:
        page = list_fn(
            g.actor,
            product_id=request.args.get("product_id", type=int),
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            limit=limit,
            offset=offset,
        )
        return jsonify(page), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list %s", label)
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.get("/stock-additions")
@require_actor
def list_stock_additions_route():
    """Query params: product_id, date_from, date_to, limit, offset"""
    return _source_record_page(ledger_service.list_stock_additions, "stock additions")


@movements_bp.get("/damaged")
@require_actor
def list_damaged_products_route():
    """Query params: product_id, date_from, date_to, limit, offset"""
    return _source_record_page(ledger_service.list_damaged_products, "damage reports")


@movements_bp.post("")
@require_actor
def create_movement_route():
    """
    Body: {"movement_type": "new_stock", "product_id": 1, "boxes_added": 5, ...}

    The remaining keys depend on movement_type; see movement_requests.
    """
    data = request.get_json(silent=True) or {}
    try:
        req = request_from_payload(data.get("movement_type"), data)
        movement = ledger_service.create_movement(g.actor, req)
        code = 201 if movement.status == "completed" else 202
        return jsonify({"movement": movement.to_dict()}), code
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.post("/<int:movement_id>/approve")
@require_actor
def approve_movement_route(movement_id: int):
    try:
        movement = approval_service.approve_movement(g.actor, movement_id)
        return jsonify({
            "movement": movement.to_dict(),
            "message": f"Movement {movement_id} approved",
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.post("/<int:movement_id>/reject")
@require_actor
def reject_movement_route(movement_id: int):
    """Body: {"reason": "..."} (required)"""
    data = request.get_json(silent=True) or {}
    try:
        movement = approval_service.reject_movement(g.actor, movement_id, data.get("reason"))
        return jsonify({
            "movement": movement.to_dict(),
            "message": f"Movement {movement_id} rejected",
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject movement")
        return jsonify({"error": "Internal server error"}), 500


@movements_bp.post("/<int:movement_id>/cancel")
@require_actor
def cancel_movement_route(movement_id: int):
    try:
        movement = approval_service.cancel_movement(g.actor, movement_id)
        return jsonify({"movement": movement.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel movement")
        return jsonify({"error": "Internal server error"}), 500
