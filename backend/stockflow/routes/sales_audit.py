# backend/stockflow/routes/sales_audit.py
"""
Sales Audit API Routes

- POST /api/sales-audit/sales/<sale_id>/edit      - propose quantity or payment method change
- POST /api/sales-audit/sales/<sale_id>/deletion  - propose deletion
- GET  /api/sales-audit                           - list audits
- POST /api/sales-audit/<audit_id>/approve        - manager/admin
- POST /api/sales-audit/<audit_id>/reject         - manager/admin
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import DOMAIN_ERRORS, error_response, require_actor
from ..services import sales_audit_service


sales_audit_bp = Blueprint("sales_audit", __name__, url_prefix="/api/sales-audit")


@sales_audit_bp.post("/sales/<int:sale_id>/edit")
@require_actor
def propose_edit_route(sale_id: int):
    """Body: {"changes": {"kg_quantity": "8"}, "reason": "..."}"""
    data = request.get_json(silent=True) or {}
    try:
        audit = sales_audit_service.propose_sale_edit(
            g.actor, sale_id, data.get("changes") or {}, data.get("reason")
        )
        return jsonify({"audit": audit.to_dict()}), 202
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to propose sale edit")
        return jsonify({"error": "Internal server error"}), 500


@sales_audit_bp.post("/sales/<int:sale_id>/deletion")
@require_actor
def propose_deletion_route(sale_id: int):
    data = request.get_json(silent=True) or {}
    try:
        audit = sales_audit_service.propose_sale_deletion(g.actor, sale_id, data.get("reason"))
        return jsonify({"audit": audit.to_dict()}), 202
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to propose sale deletion")
        return jsonify({"error": "Internal server error"}), 500


@sales_audit_bp.get("")
@require_actor
def list_audits_route():
    max_page = current_app.config.get("STOCKFLOW_MAX_PAGE_SIZE", 200)
    limit = request.args.get("limit", default=50, type=int)
    limit = max(1, min(limit, max_page))
    offset = max(0, request.args.get("offset", default=0, type=int))

    try:
        page = sales_audit_service.list_sale_audits(
            g.actor,
            sale_id=request.args.get("sale_id", type=int),
            approval_status=request.args.get("approval_status") or None,
            audit_type=request.args.get("audit_type") or None,
            limit=limit,
            offset=offset,
        )
        return jsonify(page), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sale audits")
        return jsonify({"error": "Internal server error"}), 500


@sales_audit_bp.post("/<int:audit_id>/approve")
@require_actor
def approve_audit_route(audit_id: int):
    try:
        audit = sales_audit_service.approve_sale_audit(g.actor, audit_id)
        return jsonify({"audit": audit.to_dict(), "message": f"Audit {audit_id} approved"}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve sale audit")
        return jsonify({"error": "Internal server error"}), 500


@sales_audit_bp.post("/<int:audit_id>/reject")
@require_actor
def reject_audit_route(audit_id: int):
    """Body: {"reason": "..."} (required)"""
    data = request.get_json(silent=True) or {}
    try:
        audit = sales_audit_service.reject_sale_audit(g.actor, audit_id, data.get("reason"))
        return jsonify({"audit": audit.to_dict(), "message": f"Audit {audit_id} rejected"}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject sale audit")
        return jsonify({"error": "Internal server error"}), 500
