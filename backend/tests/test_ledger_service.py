# Overview: Pytest coverage for the movement recorder and ledger reads.

from decimal import Decimal

import pytest

from conftest import make_product, TENANT_B
from stockflow.errors import InsufficientStockError, InvalidMovementReferenceError, NotFoundError
from stockflow.extensions import db
from stockflow.models import DamagedProduct, Product, StockAddition, StockMovement
from stockflow.services import inventory_service, ledger_service
from stockflow.services.movement_requests import (
    NewStockRequest,
    ProductEditRequest,
    request_from_payload,
)
from stockflow.validation import ValidationError


class TestPendingMovements:
    """Additions, corrections and product mutations wait for approval."""

    def test_stock_addition_is_pending_and_leaves_projection(self, db_session, worker, product):
        movement = ledger_service.request_stock_addition(worker, product.id, boxes_added=5, kg_added="2.5")

        assert movement.status == "pending"
        assert movement.movement_type == "new_stock"
        assert movement.box_change == 5
        assert movement.kg_change == Decimal("2.5")
        assert movement.stock_addition_id is not None
        assert movement.performed_by == "worker-1"

        addition = db.session.get(StockAddition, movement.stock_addition_id)
        assert addition.boxes_added == 5
        assert addition.delivery_date is not None

        db.session.refresh(product)
        assert product.quantity_box == 10
        assert product.quantity_kg == Decimal("15.5")

    def test_stock_addition_requires_a_quantity(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            ledger_service.request_stock_addition(worker, product.id)

    def test_correction_carries_signed_deltas(self, db_session, worker, product):
        movement = ledger_service.request_stock_correction(
            worker, product.id, box_adjustment=-2, kg_adjustment="1.25", correction_reason="Recount"
        )
        assert movement.status == "pending"
        assert movement.box_change == -2
        assert movement.kg_change == Decimal("1.25")
        assert movement.correction_id is not None
        assert movement.reason == "Recount"

    def test_product_edit_one_movement_per_changed_field(self, db_session, worker, product):
        movements = ledger_service.request_product_edit(
            worker,
            product.id,
            {"price_per_kg": "3.10", "name": "Tilapia", "boxed_low_stock_threshold": 4},
            reason="New supplier pricing",
        )
        # name did not change
        fields = sorted(m.field_changed for m in movements)
        assert fields == ["boxed_low_stock_threshold", "price_per_kg"]

        price_edit = next(m for m in movements if m.field_changed == "price_per_kg")
        assert Decimal(price_edit.old_value) == Decimal("2.60")
        assert price_edit.new_value == "3.10"
        assert price_edit.status == "pending"

    def test_product_edit_without_changes_rejected(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            ledger_service.request_product_edit(worker, product.id, {"name": "Tilapia"})

    def test_product_edit_of_stock_field_rejected(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            ledger_service.request_product_edit(worker, product.id, {"quantity_box": 99})

    def test_product_delete_marker(self, db_session, worker, product):
        movement = ledger_service.request_product_delete(worker, product.id, "Discontinued")
        assert movement.field_changed == "product_deletion"
        assert movement.old_value == f"Product: Tilapia (ID: {product.id})"
        assert movement.new_value == "PENDING_DELETION"

    def test_product_create_has_no_product_yet(self, db_session, worker):
        movement = ledger_service.request_product_create(
            worker, {"name": "Catfish", "box_to_kg_ratio": "12", "price_per_kg": "3.00"}
        )
        assert movement.product_id is None
        assert movement.status == "pending"
        assert db.session.query(Product).count() == 0

    def test_product_create_requires_ratio(self, db_session, worker):
        with pytest.raises(ValidationError):
            ledger_service.request_product_create(worker, {"name": "Catfish"})


class TestDamageReports:
    """Damage is written off immediately."""

    def test_damage_completes_and_debits_projection(self, db_session, worker, product):
        movement = ledger_service.record_damaged_product(
            worker, product.id, damaged_boxes=1, damaged_kg="2", damaged_reason="Spoiled"
        )
        assert movement.status == "completed"
        assert movement.box_change == -1
        assert movement.kg_change == Decimal("-2")
        assert movement.resolved_by == "worker-1"

        damaged = db.session.get(DamagedProduct, movement.damaged_id)
        # 1 * 25.00 + 2 * 2.60
        assert damaged.loss_value == Decimal("30.20")

        db.session.refresh(product)
        assert product.quantity_box == 9
        assert product.quantity_kg == Decimal("13.5")

    def test_damage_beyond_stock_rejected(self, db_session, worker, product):
        with pytest.raises(InsufficientStockError):
            ledger_service.record_damaged_product(
                worker, product.id, damaged_kg="16", damaged_reason="Spoiled"
            )
        assert db.session.query(StockMovement).count() == 0
        assert db.session.query(DamagedProduct).count() == 0


class TestReferenceRule:
    def test_stock_movement_needs_its_reference(self, db_session, worker, product):
        with pytest.raises(InvalidMovementReferenceError):
            ledger_service.append_movement(
                tenant_id=worker.tenant_id,
                product_id=product.id,
                movement_type="new_stock",
                performed_by=worker.actor_id,
                box_change=1,
            )

    def test_wrong_reference_column_rejected(self, db_session, worker, product):
        movement = ledger_service.record_damaged_product(
            worker, product.id, damaged_boxes=1, damaged_reason="Spoiled"
        )
        with pytest.raises(InvalidMovementReferenceError):
            ledger_service.append_movement(
                tenant_id=worker.tenant_id,
                product_id=product.id,
                movement_type="new_stock",
                performed_by=worker.actor_id,
                box_change=1,
                damaged_id=movement.damaged_id,
            )

    def test_reference_must_belong_to_same_product(self, db_session, worker, product):
        other = make_product(db_session, name="Catfish")
        movement = ledger_service.record_damaged_product(
            worker, product.id, damaged_boxes=1, damaged_reason="Spoiled"
        )
        with pytest.raises(InvalidMovementReferenceError):
            ledger_service.append_movement(
                tenant_id=worker.tenant_id,
                product_id=other.id,
                movement_type="damaged",
                performed_by=worker.actor_id,
                box_change=-1,
                damaged_id=movement.damaged_id,
            )

    def test_product_mutation_cannot_carry_reference(self, db_session, worker, product):
        with pytest.raises(InvalidMovementReferenceError):
            ledger_service.append_movement(
                tenant_id=worker.tenant_id,
                product_id=product.id,
                movement_type="product_edit",
                performed_by=worker.actor_id,
                field_changed="name",
                correction_id=1,
            )


class TestRequestVariants:
    def test_payload_dispatch(self):
        req = request_from_payload("new_stock", {"product_id": 3, "boxes_added": "4"})
        assert isinstance(req, NewStockRequest)
        assert req.boxes_added == 4

    def test_unknown_movement_type(self):
        with pytest.raises(ValidationError):
            request_from_payload("teleport", {})

    def test_edit_field_allowlist(self):
        with pytest.raises(ValidationError):
            ProductEditRequest(product_id=1, field_name="tenant_id", new_value="x").check()

    def test_boolean_quantities_rejected(self):
        with pytest.raises(ValidationError):
            request_from_payload("new_stock", {"product_id": 1, "boxes_added": True})


class TestTenantScoping:
    def test_foreign_product_is_not_found(self, db_session, worker):
        foreign = make_product(db_session, tenant_id=TENANT_B)
        with pytest.raises(NotFoundError):
            ledger_service.request_stock_addition(worker, foreign.id, boxes_added=1)

    def test_inactive_product_cannot_receive_stock(self, db_session, worker, product):
        product.is_active = False
        db_session.commit()
        with pytest.raises(NotFoundError):
            ledger_service.request_stock_addition(worker, product.id, boxes_added=1)


class TestListMovements:
    def test_filters_and_pagination(self, db_session, worker, product):
        ledger_service.request_stock_addition(worker, product.id, boxes_added=1)
        ledger_service.request_stock_addition(worker, product.id, boxes_added=2)
        ledger_service.record_damaged_product(worker, product.id, damaged_boxes=1, damaged_reason="Spoiled")

        page = ledger_service.list_movements(worker, product_id=product.id)
        assert page["total"] == 3

        pending = ledger_service.list_movements(worker, status="pending")
        assert pending["total"] == 2
        assert {m["movement_type"] for m in pending["items"]} == {"new_stock"}

        first = ledger_service.list_movements(worker, limit=1)
        assert first["total"] == 3
        assert len(first["items"]) == 1

    def test_other_tenant_sees_nothing(self, db_session, worker, foreign_manager, product):
        ledger_service.request_stock_addition(worker, product.id, boxes_added=1)
        assert ledger_service.list_movements(foreign_manager)["total"] == 0

    def test_invalid_filters_rejected(self, db_session, worker):
        with pytest.raises(ValidationError):
            ledger_service.list_movements(worker, status="done")
        with pytest.raises(ValidationError):
            ledger_service.list_movements(worker, date_from="yesterday")
        with pytest.raises(ValidationError):
            ledger_service.list_movements(worker, date_from="2026-02-01", date_to="2026-01-01")


class TestProjectionReads:
    def test_snapshot(self, db_session, worker, product):
        snap = inventory_service.get_projection(worker, product.id)
        assert snap["quantity_box"] == 10
        assert Decimal(snap["total_available_kg"]) == Decimal("115.5")
        assert snap["is_low_stock"] is False

    def test_summary_splits_completed_and_pending(self, db_session, worker, product):
        ledger_service.request_stock_addition(worker, product.id, boxes_added=5)
        ledger_service.record_damaged_product(worker, product.id, damaged_kg="1.5", damaged_reason="Spoiled")

        summary = inventory_service.get_stock_summary(worker, product.id)
        assert summary["pending"]["count"] == 1
        assert summary["pending"]["box_change"] == 5
        assert Decimal(summary["movements"]["kg_damaged"]) == Decimal("1.5")
        assert summary["movements"]["boxes_in"] == 0

    def test_apply_stock_delta_refuses_negative(self, db_session, product):
        with pytest.raises(InsufficientStockError):
            inventory_service.apply_stock_delta(product, -11, Decimal("0"))


class TestColumnScale:
    """Inputs finer than the column scale are refused, never rounded."""

    def test_sub_gram_stock_addition_rejected(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            ledger_service.request_stock_addition(worker, product.id, kg_added="0.0004")
        assert db.session.query(StockMovement).count() == 0
        assert db.session.query(StockAddition).count() == 0

    def test_sub_gram_correction_rejected(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            ledger_service.request_stock_correction(
                worker, product.id, kg_adjustment="-0.0005", correction_reason="Recount"
            )

    def test_sub_gram_damage_rejected(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            ledger_service.record_damaged_product(
                worker, product.id, damaged_kg="1.2345", damaged_reason="Spoiled"
            )
        db.session.refresh(product)
        assert product.quantity_kg == Decimal("15.5")

    def test_fractional_cent_cost_rejected(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            ledger_service.request_stock_addition(worker, product.id, boxes_added=1, total_cost="10.005")

    def test_trailing_zeros_accepted(self, db_session, worker, product):
        movement = ledger_service.request_stock_addition(worker, product.id, kg_added="2.50000")
        assert movement.kg_change == Decimal("2.5")

    @pytest.mark.parametrize("attributes", [
        {"name": "Catfish", "box_to_kg_ratio": "3.3333"},
        {"name": "Catfish", "box_to_kg_ratio": "12", "price_per_kg": "2.555"},
        {"name": "Catfish", "box_to_kg_ratio": "12", "quantity_kg": "0.0001"},
    ])
    def test_product_create_beyond_scale_rejected(self, db_session, worker, attributes):
        with pytest.raises(ValidationError):
            ledger_service.request_product_create(worker, attributes)
        assert db.session.query(StockMovement).count() == 0

    def test_product_edit_beyond_scale_rejected(self, db_session, worker, product):
        with pytest.raises(ValidationError):
            ledger_service.request_product_edit(worker, product.id, {"price_per_box": "25.001"})


class TestSourceRecordReads:
    def test_stock_additions_listed_with_product(self, db_session, worker, product):
        other = make_product(db_session, name="Catfish")
        ledger_service.request_stock_addition(worker, product.id, boxes_added=1, total_cost="20.00")
        ledger_service.request_stock_addition(worker, other.id, kg_added="3")

        page = ledger_service.list_stock_additions(worker)
        assert page["total"] == 2
        # Newest first
        assert page["items"][0]["product_name"] == "Catfish"
        assert Decimal(page["items"][0]["kg_added"]) == Decimal("3")

        only_tilapia = ledger_service.list_stock_additions(worker, product_id=product.id)
        assert only_tilapia["total"] == 1
        assert only_tilapia["items"][0]["boxes_added"] == 1
        assert Decimal(only_tilapia["items"][0]["total_cost"]) == Decimal("20.00")

    def test_damage_reports_listed(self, db_session, worker, product):
        ledger_service.record_damaged_product(worker, product.id, damaged_boxes=1, damaged_reason="Spoiled")
        page = ledger_service.list_damaged_products(worker, product_id=product.id)
        assert page["total"] == 1
        item = page["items"][0]
        assert item["damaged_reason"] == "Spoiled"
        assert Decimal(item["loss_value"]) == Decimal("25.00")
        assert item["product_name"] == "Tilapia"

    def test_source_records_are_tenant_scoped(self, db_session, worker, foreign_manager, product):
        ledger_service.request_stock_addition(worker, product.id, boxes_added=1)
        ledger_service.record_damaged_product(worker, product.id, damaged_boxes=1, damaged_reason="Spoiled")
        assert ledger_service.list_stock_additions(foreign_manager)["total"] == 0
        assert ledger_service.list_damaged_products(foreign_manager)["total"] == 0

    def test_source_record_date_window(self, db_session, worker, product):
        ledger_service.request_stock_addition(worker, product.id, boxes_added=1)
        assert ledger_service.list_stock_additions(worker, date_to="2000-01-01")["total"] == 0
        assert ledger_service.list_stock_additions(worker, date_from="2000-01-01")["total"] == 1
        with pytest.raises(ValidationError):
            ledger_service.list_damaged_products(worker, date_from="2026-02-01", date_to="2026-01-01")

    def test_pagination(self, db_session, worker, product):
        for boxes in (1, 2, 3):
            ledger_service.request_stock_addition(worker, product.id, boxes_added=boxes)
        page = ledger_service.list_stock_additions(worker, limit=2, offset=2)
        assert page["total"] == 3
        assert len(page["items"]) == 1
