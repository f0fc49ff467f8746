# Overview: One request type per movement kind, each carrying only its own fields.

"""
Movement request variants

Callers never build a StockMovement row by hand. They describe what happened
with one of the frozen request types below and hand it to
ledger_service.record_movement(), which picks the source record, the
reference column and the initial status from the variant itself:

    NewStockRequest          -> stock_additions + pending new_stock
    StockCorrectionRequest   -> stock_corrections + pending stock_correction
    DamageReport             -> damaged_products + completed damaged (applied now)
    ProductEditRequest       -> pending product_edit (one field)
    ProductDeleteRequest     -> pending product_delete
    ProductCreateRequest     -> pending product_create (no product row yet)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import ClassVar, Union

from ..time_utils import parse_iso_datetime
from ..validation import (
    MAX_MONEY,
    MONEY_PLACES,
    ValidationError,
    parse_decimal,
    parse_int,
    parse_kg,
    parse_text,
)


# Product fields a product_edit may target, with their display names
EDITABLE_PRODUCT_FIELDS = {
    "name": "Product Name",
    "box_to_kg_ratio": "Box to KG Ratio",
    "cost_per_box": "Cost per Box",
    "cost_per_kg": "Cost per KG",
    "price_per_box": "Price per Box",
    "price_per_kg": "Price per KG",
    "boxed_low_stock_threshold": "Low Stock Threshold",
}


def _parse_date(value, field_name: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 date")
    return parsed.date() if parsed else None


@dataclass(frozen=True)
class NewStockRequest:
    movement_type: ClassVar[str] = "new_stock"

    product_id: int
    boxes_added: int = 0
    kg_added: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")
    delivery_date: date | None = None

    def check(self) -> None:
        if self.boxes_added < 0 or self.kg_added < 0:
            raise ValidationError("Stock additions cannot be negative")
        if self.boxes_added == 0 and self.kg_added == 0:
            raise ValidationError("At least one quantity (boxes or kg) must be greater than 0")

    @classmethod
    def from_payload(cls, payload: dict) -> "NewStockRequest":
        return cls(
            product_id=parse_int(payload.get("product_id"), "product_id", minimum=1),
            boxes_added=parse_int(payload.get("boxes_added", 0), "boxes_added"),
            kg_added=parse_kg(payload.get("kg_added", 0), "kg_added"),
            total_cost=parse_decimal(payload.get("total_cost", 0), "total_cost", maximum=MAX_MONEY, places=MONEY_PLACES),
            delivery_date=_parse_date(payload.get("delivery_date"), "delivery_date"),
        )


@dataclass(frozen=True)
class StockCorrectionRequest:
    movement_type: ClassVar[str] = "stock_correction"

    product_id: int
    box_adjustment: int
    kg_adjustment: Decimal
    correction_reason: str

    def check(self) -> None:
        if self.box_adjustment == 0 and self.kg_adjustment == 0:
            raise ValidationError("A correction must change boxes or kg")

    @classmethod
    def from_payload(cls, payload: dict) -> "StockCorrectionRequest":
        return cls(
            product_id=parse_int(payload.get("product_id"), "product_id", minimum=1),
            box_adjustment=parse_int(payload.get("box_adjustment", 0), "box_adjustment", minimum=None),
            kg_adjustment=parse_kg(payload.get("kg_adjustment", 0), "kg_adjustment", signed=True),
            correction_reason=parse_text(payload.get("correction_reason"), "correction_reason", max_length=255),
        )


@dataclass(frozen=True)
class DamageReport:
    movement_type: ClassVar[str] = "damaged"

    product_id: int
    damaged_boxes: int
    damaged_kg: Decimal
    damaged_reason: str
    description: str | None = None

    def check(self) -> None:
        if self.damaged_boxes < 0 or self.damaged_kg < 0:
            raise ValidationError("Damaged quantities cannot be negative")
        if self.damaged_boxes == 0 and self.damaged_kg == 0:
            raise ValidationError("At least one damaged quantity (boxes or kg) must be greater than 0")

    @classmethod
    def from_payload(cls, payload: dict) -> "DamageReport":
        return cls(
            product_id=parse_int(payload.get("product_id"), "product_id", minimum=1),
            damaged_boxes=parse_int(payload.get("damaged_boxes", 0), "damaged_boxes"),
            damaged_kg=parse_kg(payload.get("damaged_kg", 0), "damaged_kg"),
            damaged_reason=parse_text(payload.get("damaged_reason"), "damaged_reason", max_length=255),
            description=parse_text(payload.get("description"), "description", required=False),
        )


@dataclass(frozen=True)
class ProductEditRequest:
    movement_type: ClassVar[str] = "product_edit"

    product_id: int
    field_name: str
    new_value: object
    reason: str | None = None

    def check(self) -> None:
        if self.field_name not in EDITABLE_PRODUCT_FIELDS:
            raise ValidationError(
                f"Field '{self.field_name}' cannot be edited. Editable: {', '.join(sorted(EDITABLE_PRODUCT_FIELDS))}"
            )

    @classmethod
    def from_payload(cls, payload: dict) -> "ProductEditRequest":
        return cls(
            product_id=parse_int(payload.get("product_id"), "product_id", minimum=1),
            field_name=parse_text(payload.get("field_changed"), "field_changed", max_length=64),
            new_value=payload.get("new_value"),
            reason=parse_text(payload.get("reason"), "reason", required=False),
        )


@dataclass(frozen=True)
class ProductDeleteRequest:
    movement_type: ClassVar[str] = "product_delete"

    product_id: int
    reason: str

    def check(self) -> None:
        return None

    @classmethod
    def from_payload(cls, payload: dict) -> "ProductDeleteRequest":
        return cls(
            product_id=parse_int(payload.get("product_id"), "product_id", minimum=1),
            reason=parse_text(payload.get("reason"), "reason", max_length=500),
        )


@dataclass(frozen=True)
class ProductCreateRequest:
    movement_type: ClassVar[str] = "product_create"

    attributes: dict = field(default_factory=dict)
    reason: str | None = None

    def check(self) -> None:
        if not isinstance(self.attributes, dict) or not self.attributes:
            raise ValidationError("Product attributes are required")

    @classmethod
    def from_payload(cls, payload: dict) -> "ProductCreateRequest":
        return cls(
            attributes=payload.get("attributes") or {},
            reason=parse_text(payload.get("reason"), "reason", required=False),
        )


MovementRequest = Union[
    NewStockRequest,
    StockCorrectionRequest,
    DamageReport,
    ProductEditRequest,
    ProductDeleteRequest,
    ProductCreateRequest,
]

REQUEST_TYPES = {
    cls.movement_type: cls
    for cls in (
        NewStockRequest,
        StockCorrectionRequest,
        DamageReport,
        ProductEditRequest,
        ProductDeleteRequest,
        ProductCreateRequest,
    )
}


def request_from_payload(movement_type: str, payload: dict) -> MovementRequest:
    """Build the typed variant for movement_type from a JSON body."""
    cls = REQUEST_TYPES.get(movement_type)
    if cls is None:
        raise ValidationError(
            f"Invalid movement_type '{movement_type}'. Must be one of: {', '.join(sorted(REQUEST_TYPES))}"
        )
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return cls.from_payload(payload)
