# backend/stockflow/routes/products.py
"""
Product API Routes

Reads serve the live stock projection. Every product mutation (create,
edit, delete) is filed as a pending movement and returns 202; nothing
changes until a manager approves it via /api/movements/<id>/approve.

SECURITY:
- All routes require an actor (require_actor)
- requester ids come from g.actor, never from the body
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import DOMAIN_ERRORS, error_response, require_actor
from ..services import inventory_service, ledger_service


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


@products_bp.get("")
@require_actor
def list_products_route():
    """
    List products with their current stock.

    Query params:
        include_inactive: include soft-deleted products
        low_stock: only products at or below their box threshold
    """
    try:
        items = inventory_service.list_projection(
            g.actor,
            include_inactive=_flag("include_inactive"),
            low_stock_only=_flag("low_stock"),
        )
        return jsonify({"items": items, "count": len(items)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
@require_actor
def get_product_route(product_id: int):
    try:
        return jsonify({"product": inventory_service.get_projection(g.actor, product_id)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/summary")
@require_actor
def product_summary_route(product_id: int):
    """Current stock plus completed/pending ledger totals."""
    try:
        return jsonify(inventory_service.get_stock_summary(g.actor, product_id)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build stock summary")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("")
@require_actor
def create_product_route():
    """
    Request a new product.

    Body:
        {"attributes": {"name": ..., "box_to_kg_ratio": ..., ...}, "reason": "..."}

    Returns 202 with the pending product_create movement.
    """
    data = request.get_json(silent=True) or {}
    try:
        movement = ledger_service.request_product_create(
            g.actor, data.get("attributes") or {}, data.get("reason")
        )
        return jsonify({"movement": movement.to_dict()}), 202
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request product creation")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>")
@require_actor
def edit_product_route(product_id: int):
    """
    Request field edits; one pending product_edit per changed field.

    Body:
        {"changes": {"price_per_kg": "12.50"}, "reason": "..."}
    """
    data = request.get_json(silent=True) or {}
    try:
        movements = ledger_service.request_product_edit(
            g.actor, product_id, data.get("changes") or {}, data.get("reason")
        )
        return jsonify({"movements": [m.to_dict() for m in movements]}), 202
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request product edit")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/<int:product_id>")
@require_actor
def delete_product_route(product_id: int):
    """Request a soft delete. Body: {"reason": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        movement = ledger_service.request_product_delete(g.actor, product_id, data.get("reason"))
        return jsonify({"movement": movement.to_dict()}), 202
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request product deletion")
        return jsonify({"error": "Internal server error"}), 500
