# Overview: Request decorators and error mapping for API routes.

from functools import wraps
from flask import request, jsonify, g

from .context import ActorContext
from .errors import (
    AlreadyResolvedError,
    ConflictingPendingAuditError,
    InsufficientStockError,
    InvalidMovementReferenceError,
    NotFoundError,
    StockError,
    TransientStoreError,
    UnauthorizedActionError,
)
from .validation import ConflictError, ValidationError


# Most specific first: ConflictingPendingAuditError is also a ConflictError
ERROR_STATUS = (
    (InsufficientStockError, 400),
    (InvalidMovementReferenceError, 400),
    (ValidationError, 400),
    (UnauthorizedActionError, 403),
    (NotFoundError, 404),
    (AlreadyResolvedError, 409),
    (ConflictingPendingAuditError, 409),
    (ConflictError, 409),
    (TransientStoreError, 503),
)

DOMAIN_ERRORS = (StockError, ValidationError, ConflictError)


def require_actor(f):
    """
    Establish the caller's ActorContext from gateway headers.

    The upstream auth layer authenticates the request and forwards:
    - X-Tenant-Id: opaque tenant id
    - X-Actor-Id: opaque user id
    - X-Actor-Role: worker | manager | admin (defaults to worker)

    Sets g.actor. Returns 401 when tenant or actor is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_id = (request.headers.get("X-Tenant-Id") or "").strip()
        actor_id = (request.headers.get("X-Actor-Id") or "").strip()
        role = (request.headers.get("X-Actor-Role") or "worker").strip().lower()

        if not tenant_id or not actor_id:
            return jsonify({"error": "Authentication required"}), 401

        try:
            g.actor = ActorContext(tenant_id=tenant_id, actor_id=actor_id, role=role)
        except ValidationError as e:
            return jsonify({"error": str(e)}), 401

        return f(*args, **kwargs)

    return decorated_function


def error_response(exc: Exception):
    """Map one of DOMAIN_ERRORS to (json, status)."""
    for exc_type, status in ERROR_STATUS:
        if isinstance(exc, exc_type):
            body = {"error": str(exc)}
            if isinstance(exc, InsufficientStockError):
                body["details"] = exc.to_dict()
            return jsonify(body), status
    return jsonify({"error": str(exc)}), 400
