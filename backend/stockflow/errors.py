"""
Typed failures raised by the stock core.

Every failure here is recoverable: the operation is rejected, nothing is
partially written, and the HTTP layer maps the class to a status code.
"""

from __future__ import annotations

from decimal import Decimal

from .validation import ConflictError, ValidationError, decimal_str

__all__ = [
    "StockError",
    "NotFoundError",
    "InsufficientStockError",
    "InvalidMovementReferenceError",
    "AlreadyResolvedError",
    "UnauthorizedActionError",
    "ConflictingPendingAuditError",
    "TransientStoreError",
    "ValidationError",
]


class StockError(ValueError):
    """Base class for domain failures."""


class NotFoundError(StockError):
    """Unknown id, or an id that belongs to another tenant."""


class InsufficientStockError(StockError):
    """The requested amount exceeds the total available box + kg equivalent."""

    def __init__(
        self,
        message: str,
        *,
        requested_kg: Decimal = Decimal("0"),
        requested_boxes: int = 0,
        available_kg: Decimal = Decimal("0"),
        available_boxes: int | None = None,
    ):
        super().__init__(message)
        self.requested_kg = requested_kg
        self.requested_boxes = requested_boxes
        self.available_kg = available_kg
        self.available_boxes = available_boxes

    def to_dict(self) -> dict:
        return {
            "requested_kg": decimal_str(self.requested_kg),
            "requested_boxes": self.requested_boxes,
            "available_kg": decimal_str(self.available_kg),
            "available_boxes": self.available_boxes,
        }


class InvalidMovementReferenceError(StockError):
    """movement_type and reference id do not match."""


class AlreadyResolvedError(StockError):
    """Approve/reject/cancel lost the race or hit a terminal record."""


class UnauthorizedActionError(StockError):
    """The actor's role does not allow the action."""


class ConflictingPendingAuditError(ConflictError):
    """The sale already has an outstanding audit proposal."""


class TransientStoreError(StockError):
    """Lock timeout or deadlock that survived the retry budget; safe to resubmit."""
