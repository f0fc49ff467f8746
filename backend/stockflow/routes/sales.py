# backend/stockflow/routes/sales.py
"""
Sales API Routes

POST /api/sales allocates and records a sale in one transaction.
POST /api/sales/preview runs the same allocation without writing anything.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import DOMAIN_ERRORS, error_response, require_actor
from ..services import inventory_service, sales_service
from ..services.allocation_service import allocate
from ..validation import parse_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_actor
def create_sale_route():
    """
    Body:
        {
            "product_id": 1,
            "requested_kg": "12.5",
            "requested_boxes": 2,
            "payment": {"payment_method": "cash", "payment_status": "paid", ...}
        }

    Response 201:
        {"sale": {...}, "allocation": {... "steps": [...]}}
    """
    data = request.get_json(silent=True) or {}
    try:
        sale, allocation = sales_service.create_fish_sale(
            g.actor,
            data.get("product_id"),
            data.get("requested_kg", 0),
            data.get("requested_boxes", 0),
            data.get("payment"),
        )
        return jsonify({"sale": sale.to_dict(), "allocation": allocation.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/preview")
@require_actor
def preview_sale_route():
    """Allocation plan for a request against current stock; read-only."""
    data = request.get_json(silent=True) or {}
    try:
        product = inventory_service.get_product(
            g.actor.tenant_id, parse_int(data.get("product_id"), "product_id", minimum=1), require_active=True
        )
        allocation = allocate(product, data.get("requested_kg", 0), data.get("requested_boxes", 0))
        return jsonify({"allocation": allocation.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to preview sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_actor
def list_sales_route():
    max_page = current_app.config.get("STOCKFLOW_MAX_PAGE_SIZE", 200)
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, max_page))
    offset = max(0, request.args.get("offset", default=0, type=int))

    try:
        page = sales_service.list_sales(
            g.actor,
            product_id=request.args.get("product_id", type=int),
            payment_status=request.args.get("payment_status") or None,
            date_from=request.args.get("date_from"),
            date_to=request.args.get("date_to"),
            limit=limit,
            offset=offset,
        )
        return jsonify(page), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
@require_actor
def get_sale_route(sale_id: int):
    try:
        return jsonify({"sale": sales_service.get_sale(g.actor, sale_id).to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500
