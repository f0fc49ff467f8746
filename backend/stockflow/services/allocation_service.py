# Overview: Pure box/kg allocation for sales; no database access.

"""
Kg-priority allocation (authoritative)

Given a request for some kg and/or some whole boxes, decide how it is drawn
from a product's stock:

1. Whole boxes are taken as boxes; no conversion.
2. Kg comes from loose stock first. Any shortfall is covered by breaking
   ceil(shortfall / box_to_kg_ratio) boxes; whatever those boxes yield
   beyond the shortfall goes back to loose stock.
3. Price = requested_kg * price_per_kg + requested_boxes * price_per_box.
   kg and box portions are priced independently.

Conservation: kg_from_loose + kg_from_boxes - kg_returned_to_loose == requested_kg.

Arithmetic is Decimal end to end; only total_amount is rounded (half-up,
2 dp) and only at the very end.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

from ..errors import InsufficientStockError
from ..validation import (
    MONEY_QUANTUM,
    ValidationError,
    decimal_str,
    enforce_sale_request,
    parse_decimal,
    parse_int,
    to_decimal,
)


@dataclass(frozen=True)
class StockLevels:
    """The subset of a product the engine needs."""
    quantity_box: int
    quantity_kg: Decimal
    box_to_kg_ratio: Decimal
    price_per_box: Decimal = Decimal("0")
    price_per_kg: Decimal = Decimal("0")

    @classmethod
    def of(cls, product, *, extra_boxes: int = 0, extra_kg: Decimal = Decimal("0")) -> "StockLevels":
        """Snapshot a product row, optionally with quantities added back."""
        return cls(
            quantity_box=int(product.quantity_box or 0) + extra_boxes,
            quantity_kg=to_decimal(product.quantity_kg) + extra_kg,
            box_to_kg_ratio=to_decimal(product.box_to_kg_ratio),
            price_per_box=to_decimal(product.price_per_box),
            price_per_kg=to_decimal(product.price_per_kg),
        )

    @property
    def total_available_kg(self) -> Decimal:
        return self.quantity_kg + self.quantity_box * self.box_to_kg_ratio


@dataclass(frozen=True)
class Allocation:
    requested_kg: Decimal
    requested_boxes: int

    boxes_direct: int
    boxes_converted: int
    kg_from_loose: Decimal
    kg_from_boxes: Decimal
    kg_returned_to_loose: Decimal

    final_boxes: int
    final_kg: Decimal

    box_change: int
    kg_change: Decimal

    total_amount: Decimal
    steps: tuple[str, ...] = field(default_factory=tuple)

    @property
    def boxes_used(self) -> int:
        return self.boxes_direct + self.boxes_converted

    def to_dict(self) -> dict:
        return {
            "requested_kg": decimal_str(self.requested_kg),
            "requested_boxes": self.requested_boxes,
            "boxes_used": self.boxes_used,
            "boxes_converted": self.boxes_converted,
            "kg_from_loose": decimal_str(self.kg_from_loose),
            "kg_from_boxes": decimal_str(self.kg_from_boxes),
            "kg_returned_to_loose": decimal_str(self.kg_returned_to_loose),
            "final_stock": {"boxes": self.final_boxes, "kg": decimal_str(self.final_kg)},
            "deltas": {"box_change": self.box_change, "kg_change": decimal_str(self.kg_change)},
            "total_amount": decimal_str(self.total_amount),
            "steps": list(self.steps),
        }


def _fmt(value: Decimal) -> str:
    """Human format for step traces: 10, 5.5, 0.25 (no exponent, no trailing zeros)."""
    return format(value.normalize(), "f")


def price_of(requested_kg: Decimal, requested_boxes: int, *, price_per_kg: Decimal, price_per_box: Decimal) -> Decimal:
    amount = requested_kg * price_per_kg + requested_boxes * price_per_box
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def allocate(product, requested_kg, requested_boxes=0) -> Allocation:
    """
    Plan how a sale request is fulfilled from product stock.

    product is anything with quantity_box, quantity_kg, box_to_kg_ratio,
    price_per_box and price_per_kg (a Product row or StockLevels).

    Raises:
        ValidationError: negative or all-zero request, non-positive ratio
        InsufficientStockError: stock cannot cover the request
    """
    requested_kg = parse_decimal(requested_kg, "requested_kg")
    requested_boxes = parse_int(requested_boxes, "requested_boxes")
    enforce_sale_request(requested_kg, requested_boxes)

    levels = product if isinstance(product, StockLevels) else StockLevels.of(product)
    ratio = levels.box_to_kg_ratio
    if ratio <= 0:
        raise ValidationError("box_to_kg_ratio must be > 0")

    start_boxes = levels.quantity_box
    start_kg = levels.quantity_kg
    available_boxes = start_boxes
    available_kg = start_kg
    steps: list[str] = []

    # Step 1: whole boxes
    boxes_direct = 0
    if requested_boxes > 0:
        if available_boxes < requested_boxes:
            raise InsufficientStockError(
                f"Not enough box stock: need {requested_boxes} box(es), "
                f"have {available_boxes} ({_fmt(levels.total_available_kg)}kg total available)",
                requested_kg=requested_kg,
                requested_boxes=requested_boxes,
                available_kg=levels.total_available_kg,
                available_boxes=available_boxes,
            )
        boxes_direct = requested_boxes
        available_boxes -= requested_boxes
        steps.append(f"Used {requested_boxes} box(es) directly")

    # Step 2: kg, loose first
    kg_from_loose = Decimal("0")
    kg_from_boxes = Decimal("0")
    kg_returned = Decimal("0")
    boxes_converted = 0
    if requested_kg > 0:
        shortfall = max(Decimal("0"), requested_kg - available_kg)
        kg_from_loose = requested_kg - shortfall
        available_kg -= kg_from_loose
        if kg_from_loose > 0:
            steps.append(f"Used {_fmt(kg_from_loose)}kg from loose stock")

        if shortfall > 0:
            boxes_needed = int((shortfall / ratio).to_integral_value(rounding=ROUND_CEILING))
            if available_boxes < boxes_needed:
                total_available = available_kg + kg_from_loose + available_boxes * ratio
                raise InsufficientStockError(
                    f"Not enough stock: need {_fmt(requested_kg)}kg, "
                    f"have {_fmt(total_available)}kg available",
                    requested_kg=requested_kg,
                    requested_boxes=requested_boxes,
                    available_kg=total_available,
                    available_boxes=available_boxes,
                )
            boxes_converted = boxes_needed
            available_boxes -= boxes_needed
            kg_from_boxes = boxes_needed * ratio
            kg_returned = kg_from_boxes - shortfall
            available_kg += kg_returned
            if kg_returned > 0:
                steps.append(
                    f"Converted {boxes_needed} box(es) to {_fmt(kg_from_boxes)}kg, used "
                    f"{_fmt(shortfall)}kg, returned {_fmt(kg_returned)}kg to loose stock"
                )
            else:
                steps.append(f"Converted {boxes_needed} box(es) to {_fmt(kg_from_boxes)}kg")

    total_amount = price_of(
        requested_kg,
        requested_boxes,
        price_per_kg=levels.price_per_kg,
        price_per_box=levels.price_per_box,
    )

    return Allocation(
        requested_kg=requested_kg,
        requested_boxes=requested_boxes,
        boxes_direct=boxes_direct,
        boxes_converted=boxes_converted,
        kg_from_loose=kg_from_loose,
        kg_from_boxes=kg_from_boxes,
        kg_returned_to_loose=kg_returned,
        final_boxes=available_boxes,
        final_kg=available_kg,
        box_change=available_boxes - start_boxes,
        kg_change=available_kg - start_kg,
        total_amount=total_amount,
        steps=tuple(steps),
    )
